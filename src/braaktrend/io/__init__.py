"""
I/O module for loading inputs and resolving sample metadata.

Key Functions:
    - load_expression_matrix: Probes × samples intensities into a BioMatrix
    - read_table: CSV/TSV reader (separator chosen from the suffix)
    - SampleMetadataResolver: Canonical sample table with Braak stage
    - ControlProbeFilter / AnnotationCompletenessFilter: Probe exclusion

Result tables are written by ``braaktrend.io.writers``.
"""

from braaktrend.io.loaders import load_expression_matrix, read_table
from braaktrend.io.metadata import (
    DiseaseStage,
    SampleMetadataResolver,
    align_metadata,
    parse_stage,
)
from braaktrend.io.data_filters import AnnotationCompletenessFilter, ControlProbeFilter

__all__ = [
    "load_expression_matrix",
    "read_table",
    "DiseaseStage",
    "SampleMetadataResolver",
    "align_metadata",
    "parse_stage",
    "AnnotationCompletenessFilter",
    "ControlProbeFilter",
]
