"""
External annotation and enrichment collaborators.

Both are fallible network services behind small interfaces; every remote call
goes through the retry policy in ``braaktrend.utils.retry``.
"""

from braaktrend.annotation.probes import (
    CachedProbeResolver,
    MyGeneProbeResolver,
    ProbeAnnotationResolver,
    TableProbeResolver,
)
from braaktrend.annotation.enrichment import (
    EnrichmentClient,
    EnrichmentRecord,
    GProfilerEnrichmentClient,
    HypergeometricEnrichmentClient,
    load_gmt,
)

__all__ = [
    "CachedProbeResolver",
    "MyGeneProbeResolver",
    "ProbeAnnotationResolver",
    "TableProbeResolver",
    "EnrichmentClient",
    "EnrichmentRecord",
    "GProfilerEnrichmentClient",
    "HypergeometricEnrichmentClient",
    "load_gmt",
]
