"""
braaktrend - Differential and Braak-stage trend analysis of brain expression arrays

A pipeline for finding genes that differ between Alzheimer's disease and
control tissue and genes whose expression trends with Braak stage.
"""

__version__ = "0.1.0"

from braaktrend.core.biomatrix import BioMatrix
from braaktrend.core.transform import Transform
from braaktrend.core.quality import QualityFlag
from braaktrend.core.errors import (
    BraakTrendError,
    InputIntegrityError,
    ExternalServiceFailure,
)

__all__ = [
    "BioMatrix",
    "Transform",
    "QualityFlag",
    "BraakTrendError",
    "InputIntegrityError",
    "ExternalServiceFailure",
]
