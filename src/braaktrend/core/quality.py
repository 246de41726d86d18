"""
Per-value provenance flags for expression matrices.

Every value in a BioMatrix carries an integer flag recording which
preprocessing steps touched it. Flags combine bitwise, so a collapsed gene
row that was log-transformed and quantile normalized carries
``LOG_TRANSFORMED | QUANTILE_NORMALIZED | COLLAPSED_PROBE``.

Examples:
    >>> import numpy as np
    >>> from braaktrend.core.quality import QualityFlag
    >>> flags = np.zeros((2, 3), dtype=int)
    >>> flags |= QualityFlag.LOG_TRANSFORMED
    >>> bool(flags[0, 0] & QualityFlag.LOG_TRANSFORMED)
    True
"""

from __future__ import annotations

from enum import IntFlag

__all__ = ['QualityFlag']


class QualityFlag(IntFlag):
    """
    Bitwise flags for per-value quality tracking.

    Attributes:
        ORIGINAL: Raw intensity as supplied (0)
        LOG_TRANSFORMED: log2 applied (1)
        QUANTILE_NORMALIZED: Replaced by the cross-sample rank mean (2)
        COLLAPSED_PROBE: Row chosen as the representative of several probes (4)
        DEGENERATE: Row skipped by at least one statistical test (8)
    """

    ORIGINAL = 0
    LOG_TRANSFORMED = 1
    QUANTILE_NORMALIZED = 2
    COLLAPSED_PROBE = 4
    DEGENERATE = 8
