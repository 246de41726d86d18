"""
Two-group differential expression with moderated t-statistics.

For each gene a linear model contrasts Disease against Control tissue:

    y_g = β₀ + β₁ × Disease + ε        (Control is the reference level)

β₁ is the log2 fold change. Residual variances are stabilized by empirical
Bayes shrinkage toward a common prior (see braaktrend.stats.shrinkage), which
matters because samples per group are few relative to the number of genes.

Statistical Model:
    1. OLS: β = (XᵀX)⁻¹Xᵀy for every gene at once
    2. Residual variance: σ²_g = RSS_g / (n - 2)
    3. Shrinkage: σ²_post,g = (d0 × s0² + df × σ²_g) / (d0 + df)
    4. Moderated t: t_g = β₁ / sqrt(σ²_post,g × c), c = [(XᵀX)⁻¹]₁₁
    5. Two-sided p from t with d0 + df degrees of freedom (normal when d0 = ∞)
    6. BH across tested genes; significant iff adjusted p <= 0.05

Direction:
    Up when log2fc > 0, Down when log2fc < 0, None when the gene is not
    significant or the effect is exactly zero.

Degenerate genes:
    A gene with identical values in every sample cannot be tested; it keeps
    its row with NaN statistics and note 'zero_variance'. If either group is
    empty, every gene is flagged 'empty_group'.

References:
    - Smyth (2004) Statistical Applications in Genetics and Molecular Biology 3:3
    - Benjamini & Hochberg (1995) J R Stat Soc B 57(1):289-300
"""

# Warning convention:
#   warnings.warn() -- user-facing (statistical caveats)
#   logger.warning() -- operator-facing (fallback, retry, missing data)

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats as scipy_stats

from braaktrend.core.biomatrix import BioMatrix
from braaktrend.core.errors import InputIntegrityError, StatisticalDegeneracy
from braaktrend.io.metadata import CONTROL, DISEASE
from braaktrend.stats.multiple_testing import fdr_correction
from braaktrend.stats.shrinkage import EmpiricalBayesShrinker, VarianceShrinker

logger = logging.getLogger(__name__)

__all__ = [
    'UP',
    'DOWN',
    'NO_DIRECTION',
    'DIFFERENTIAL_COLUMNS',
    'DifferentialResult',
    'DifferentialTester',
]

UP = "Up"
DOWN = "Down"
NO_DIRECTION = "None"

DIFFERENTIAL_COLUMNS = [
    'gene', 'log2fc', 't_statistic', 'p_value', 'adj_p_value',
    'significant', 'direction', 'note',
]

# Groups smaller than this fraction of the larger group trigger a warning
_IMBALANCE_RATIO = 0.2


@dataclass(frozen=True)
class DifferentialResult:
    """
    Output of the two-group test.

    Attributes:
        table: One row per gene, columns DIFFERENTIAL_COLUMNS, gene order of
            the input matrix
        alpha: Adjusted p-value threshold used for ``significant``
        n_control: Control samples
        n_disease: Disease samples
        d0: Prior degrees of freedom of the shrinkage (NaN if not fitted)
        s0_sq: Prior variance of the shrinkage (NaN if not fitted)
    """

    table: pd.DataFrame
    alpha: float
    n_control: int
    n_disease: int
    d0: float
    s0_sq: float

    @property
    def n_tested(self) -> int:
        return int(self.table['p_value'].notna().sum())

    @property
    def n_degenerate(self) -> int:
        return int((self.table['note'] != "").sum())

    def significant_genes(self, direction: Optional[str] = None) -> set[str]:
        """Significant gene symbols, optionally restricted to one direction."""
        sig = self.table[self.table['significant']]
        if direction is not None:
            sig = sig[sig['direction'] == direction]
        return set(sig['gene'])


class DifferentialTester:
    """
    Control vs Disease moderated t-test for every gene.

    Args:
        alpha: Significance threshold on the BH-adjusted p-value (default 0.05)
        shrinker: Variance moderation strategy (default EmpiricalBayesShrinker)
        status_col: Sample metadata column holding Control/Disease labels

    Examples:
        >>> tester = DifferentialTester()
        >>> result = tester.test(cleaned_matrix)
        >>> result.significant_genes("Up")
    """

    def __init__(
        self,
        alpha: float = 0.05,
        shrinker: Optional[VarianceShrinker] = None,
        status_col: str = 'status',
    ):
        if not 0 < alpha <= 1:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self.shrinker = shrinker or EmpiricalBayesShrinker()
        self.status_col = status_col

    def test(self, matrix: BioMatrix) -> DifferentialResult:
        if self.status_col not in matrix.sample_metadata.columns:
            raise InputIntegrityError(
                "differential", None, f"sample metadata has no '{self.status_col}' column"
            )

        status = matrix.sample_metadata[self.status_col].astype(str).values
        unknown = sorted(set(status) - {CONTROL, DISEASE})
        if unknown:
            raise InputIntegrityError("differential", unknown[0], "unknown disease status label")

        is_disease = (status == DISEASE).astype(np.float64)
        n_disease = int(is_disease.sum())
        n_control = int(len(status) - n_disease)
        genes = matrix.feature_ids.astype(str)

        if n_control == 0 or n_disease == 0:
            warnings.warn(
                f"Differential test skipped: {n_control} Control and {n_disease} Disease "
                f"samples; every gene is flagged '{StatisticalDegeneracy.EMPTY_GROUP.value}'"
            )
            return DifferentialResult(
                table=self._degenerate_table(genes, StatisticalDegeneracy.EMPTY_GROUP),
                alpha=self.alpha,
                n_control=n_control,
                n_disease=n_disease,
                d0=np.nan,
                s0_sq=np.nan,
            )

        if min(n_control, n_disease) < _IMBALANCE_RATIO * max(n_control, n_disease):
            warnings.warn(
                f"Highly unbalanced groups ({n_control} Control vs {n_disease} Disease); "
                f"the variance of the smaller group dominates the test"
            )

        Y = np.asarray(matrix.data, dtype=np.float64)
        n_samples = Y.shape[1]
        df_residual = n_samples - 2
        if df_residual < 1:
            raise InputIntegrityError(
                "differential", None,
                f"need at least 3 samples for the two-group model, got {n_samples}",
            )

        # Design: intercept + Disease indicator
        X = np.column_stack([np.ones(n_samples), is_disease])
        XtX_inv = np.linalg.inv(X.T @ X)
        beta = Y @ X @ XtX_inv.T
        residuals = Y - beta @ X.T
        sigma2 = np.sum(residuals ** 2, axis=1) / df_residual

        constant = np.ptp(Y, axis=1) == 0
        testable = ~constant

        shrunk = self.shrinker.shrink(sigma2[testable], df_residual)
        sigma2_post = np.full_like(sigma2, np.nan)
        sigma2_post[testable] = shrunk.sigma2_post

        log2fc = beta[:, 1]
        se = np.sqrt(sigma2_post * XtX_inv[1, 1])
        with np.errstate(divide='ignore', invalid='ignore'):
            t_statistic = np.where(se > 0, log2fc / se, np.nan)

        if np.isinf(shrunk.df_total):
            p_value = 2 * scipy_stats.norm.sf(np.abs(t_statistic))
        else:
            p_value = 2 * scipy_stats.t.sf(np.abs(t_statistic), shrunk.df_total)
        p_value = np.where(testable, p_value, np.nan)
        t_statistic = np.where(testable, t_statistic, np.nan)

        adj_p = fdr_correction(p_value)
        significant = np.nan_to_num(adj_p, nan=np.inf) <= self.alpha

        direction = np.full(len(genes), NO_DIRECTION, dtype=object)
        direction[significant & (log2fc > 0)] = UP
        direction[significant & (log2fc < 0)] = DOWN

        note = np.where(constant, StatisticalDegeneracy.ZERO_VARIANCE.value, "")
        if constant.any():
            logger.warning(
                f"{int(constant.sum())} genes have zero variance and were not tested"
            )

        table = pd.DataFrame({
            'gene': genes,
            'log2fc': np.where(constant, 0.0, log2fc),
            't_statistic': t_statistic,
            'p_value': p_value,
            'adj_p_value': adj_p,
            'significant': significant,
            'direction': direction,
            'note': note,
        }, columns=DIFFERENTIAL_COLUMNS)

        logger.info(
            f"Differential test: {int(testable.sum())} genes tested "
            f"({n_control} Control, {n_disease} Disease), "
            f"{int(significant.sum())} significant at adj p <= {self.alpha} "
            f"({int((direction == UP).sum())} Up, {int((direction == DOWN).sum())} Down)"
        )

        return DifferentialResult(
            table=table,
            alpha=self.alpha,
            n_control=n_control,
            n_disease=n_disease,
            d0=shrunk.d0,
            s0_sq=shrunk.s0_sq,
        )

    @staticmethod
    def _degenerate_table(genes: pd.Index, reason: StatisticalDegeneracy) -> pd.DataFrame:
        n = len(genes)
        return pd.DataFrame({
            'gene': genes,
            'log2fc': np.full(n, np.nan),
            't_statistic': np.full(n, np.nan),
            'p_value': np.full(n, np.nan),
            'adj_p_value': np.full(n, np.nan),
            'significant': np.zeros(n, dtype=bool),
            'direction': [NO_DIRECTION] * n,
            'note': [reason.value] * n,
        }, columns=DIFFERENTIAL_COLUMNS)
