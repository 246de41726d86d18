"""
Benjamini–Hochberg false discovery rate control.

Shared by the differential and trend testers. Each tester corrects its own
family of p-values; the two families are never pooled.

NaN p-values (genes skipped as statistically degenerate) are not part of the
family: they stay NaN and do not count toward the number of tests m.

References:
    - Benjamini & Hochberg (1995) J R Stat Soc B 57(1):289-300
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from statsmodels.stats.multitest import multipletests

__all__ = ['fdr_correction']


def fdr_correction(pvalues: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Benjamini–Hochberg step-up adjustment.

    Args:
        pvalues: Array of raw p-values (NaN allowed).

    Returns:
        Array of adjusted p-values, NaN where the input was NaN.
        Adjusted values are >= the raw values and non-decreasing in the raw
        p-value order.
    """
    pvalues = np.asarray(pvalues, dtype=np.float64)
    valid_mask = ~np.isnan(pvalues)
    adj_pvals = np.full_like(pvalues, np.nan)

    if not np.any(valid_mask):
        return adj_pvals

    _, adj_pvals[valid_mask], _, _ = multipletests(pvalues[valid_mask], method="fdr_bh")

    return adj_pvals
