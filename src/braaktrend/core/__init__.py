"""
Core data structures for the Braak-stage expression pipeline.

1. BioMatrix: Expression matrix with aligned sample/feature tables and flags
2. QualityFlag: Bitwise flags tracking which preprocessing touched each value
3. Transform: Abstract base class for immutable preprocessing stages
4. errors: Fatal and recoverable error taxonomy
"""

from braaktrend.core.biomatrix import BioMatrix
from braaktrend.core.quality import QualityFlag
from braaktrend.core.transform import Transform
from braaktrend.core.errors import (
    AnnotationResolutionGap,
    BraakTrendError,
    ExternalServiceFailure,
    InputIntegrityError,
    StatisticalDegeneracy,
)

__all__ = [
    'BioMatrix',
    'QualityFlag',
    'Transform',
    'AnnotationResolutionGap',
    'BraakTrendError',
    'ExternalServiceFailure',
    'InputIntegrityError',
    'StatisticalDegeneracy',
]
