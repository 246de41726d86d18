"""Matrix quality stages: probe collapse and sample outlier screening."""

from braaktrend.quality.deduplication import GeneDeduplicator
from braaktrend.quality.outliers import Decomposer, OutlierDetector, SklearnPCADecomposer

__all__ = [
    "GeneDeduplicator",
    "Decomposer",
    "OutlierDetector",
    "SklearnPCADecomposer",
]
