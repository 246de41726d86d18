"""
Statistical testing module.

Exports:
- Normalization (log2 + quantile)
- Two-group moderated t-test with empirical Bayes shrinkage
- Jonckheere–Terpstra trend test with weighted-effects direction
- Benjamini–Hochberg correction
- Cross-method overlap reconciliation
"""

from .multiple_testing import fdr_correction
from .normalization import ExpressionNormalizer, log2_transform, quantile_normalization
from .shrinkage import EmpiricalBayesShrinker, VarianceShrinker
from .differential import DifferentialResult, DifferentialTester
from .trend import TrendResult, TrendTester, jonckheere_terpstra
from .overlap import OverlapReconciler, OverlapSummary

__all__ = [
    "fdr_correction",
    "ExpressionNormalizer",
    "log2_transform",
    "quantile_normalization",
    "EmpiricalBayesShrinker",
    "VarianceShrinker",
    "DifferentialResult",
    "DifferentialTester",
    "TrendResult",
    "TrendTester",
    "jonckheere_terpstra",
    "OverlapReconciler",
    "OverlapSummary",
]
