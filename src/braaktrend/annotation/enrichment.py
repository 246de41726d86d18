"""
Gene-set enrichment collaborators.

The pipeline hands each directional gene set (e.g. genes significantly
up-regulated by the trend test) to an EnrichmentClient and receives back
term / p-value / count records. Scoring against GO/KEGG itself is the
collaborator's business.

Implementations:
    HypergeometricEnrichmentClient:
        Local over-representation test against a term → genes mapping
        (e.g. a GMT file), one-sided hypergeometric p-values, BH across terms.
    GProfilerEnrichmentClient:
        g:Profiler web service; every request goes through the retry policy.

Examples:
    >>> from braaktrend.annotation.enrichment import HypergeometricEnrichmentClient
    >>> client = HypergeometricEnrichmentClient({'T1': {'A', 'B', 'C'}})
    >>> records = client.enrich({'A', 'B'}, background={'A', 'B', 'C', 'D', 'E'})
    >>> records[0].count
    2
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Set

import numpy as np
import pandas as pd
from scipy.stats import hypergeom

from braaktrend.stats.multiple_testing import fdr_correction
from braaktrend.utils.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

__all__ = [
    'EnrichmentRecord',
    'EnrichmentClient',
    'HypergeometricEnrichmentClient',
    'GProfilerEnrichmentClient',
    'load_gmt',
    'records_to_frame',
]


@dataclass(frozen=True)
class EnrichmentRecord:
    """
    One enriched term returned by a collaborator.

    Attributes:
        term_id: Term identifier (e.g. 'GO:0006915', 'KEGG:05010')
        term_name: Human-readable name
        p_value: Raw p-value
        adj_p_value: Multiple-testing adjusted p-value
        count: Number of query genes annotated to the term
    """

    term_id: str
    term_name: str
    p_value: float
    adj_p_value: float
    count: int


def records_to_frame(records: List[EnrichmentRecord]) -> pd.DataFrame:
    columns = ['term_id', 'term_name', 'p_value', 'adj_p_value', 'count']
    if not records:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([asdict(r) for r in records], columns=columns)


class EnrichmentClient(ABC):
    """Abstract interface for enrichment collaborators."""

    @abstractmethod
    def enrich(
        self,
        genes: Set[str],
        background: Optional[Set[str]] = None,
    ) -> List[EnrichmentRecord]:
        """
        Score a gene set against curated term gene sets.

        Args:
            genes: Query gene symbols
            background: Universe of tested genes (None = collaborator default)

        Returns:
            Records sorted by ascending p-value, then term id
        """


def load_gmt(path: Path | str) -> Dict[str, Set[str]]:
    """
    Read a GMT gene-set file.

    Each line: ``term_id <TAB> description <TAB> gene1 <TAB> gene2 ...``

    Returns:
        Mapping term_id → set of gene symbols
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Gene set file not found: {path}")

    gene_sets: Dict[str, Set[str]] = {}
    with open(path) as f:
        for line in f:
            fields = line.rstrip('\n').split('\t')
            if len(fields) < 3:
                continue
            gene_sets[fields[0]] = {g for g in fields[2:] if g}
    return gene_sets


class HypergeometricEnrichmentClient(EnrichmentClient):
    """
    Local over-representation analysis.

    For each term: N = background size, K = term genes in background,
    n = query size, k = query genes in term; p = P(X >= k) under
    Hypergeom(N, K, n). Terms are BH-corrected together.

    Args:
        gene_sets: term_id → gene symbols
        term_names: Optional term_id → name
        min_count: Terms with fewer query hits are not reported
    """

    def __init__(
        self,
        gene_sets: Mapping[str, Iterable[str]],
        term_names: Optional[Mapping[str, str]] = None,
        min_count: int = 1,
    ):
        self.gene_sets = {term: set(genes) for term, genes in gene_sets.items()}
        self.term_names = dict(term_names or {})
        self.min_count = min_count

    def enrich(
        self,
        genes: Set[str],
        background: Optional[Set[str]] = None,
    ) -> List[EnrichmentRecord]:
        if background is None:
            background = set().union(*self.gene_sets.values()) if self.gene_sets else set()
        background = set(background)
        query = set(genes) & background

        if not query:
            return []

        N = len(background)
        n = len(query)

        terms, pvals, counts = [], [], []
        for term in sorted(self.gene_sets):
            term_genes = self.gene_sets[term] & background
            K = len(term_genes)
            k = len(query & term_genes)
            if K == 0 or k < self.min_count:
                continue
            terms.append(term)
            pvals.append(float(hypergeom.sf(k - 1, N, K, n)))
            counts.append(k)

        if not terms:
            return []

        adj = fdr_correction(np.array(pvals))
        records = [
            EnrichmentRecord(
                term_id=term,
                term_name=self.term_names.get(term, term),
                p_value=p,
                adj_p_value=float(q),
                count=c,
            )
            for term, p, q, c in zip(terms, pvals, adj, counts)
        ]
        records.sort(key=lambda r: (r.p_value, r.term_id))
        return records


class GProfilerEnrichmentClient(EnrichmentClient):
    """
    Enrichment via the g:Profiler web service.

    Args:
        organism: g:Profiler organism code
        sources: Term sources to query
        threshold: User significance threshold passed to g:Profiler
        retry_policy: Backoff settings; exhausted retries raise
            ExternalServiceFailure
    """

    def __init__(
        self,
        organism: str = "hsapiens",
        sources: Optional[List[str]] = None,
        threshold: float = 0.05,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.organism = organism
        self.sources = sources or ["GO:BP", "GO:CC", "GO:MF", "KEGG"]
        self.threshold = threshold
        self.retry_policy = retry_policy or RetryPolicy()
        self._gp = None

    def _get_client(self):
        if self._gp is None:
            from gprofiler import GProfiler
            self._gp = GProfiler(return_dataframe=False)
        return self._gp

    def enrich(
        self,
        genes: Set[str],
        background: Optional[Set[str]] = None,
    ) -> List[EnrichmentRecord]:
        if not genes:
            return []

        gp = self._get_client()
        query = sorted(genes)
        kwargs = dict(
            organism=self.organism,
            query=query,
            sources=self.sources,
            user_threshold=self.threshold,
        )
        if background:
            kwargs['background'] = sorted(background)
            kwargs['domain_scope'] = 'custom'

        result = call_with_retry(
            lambda: gp.profile(**kwargs),
            service='gprofiler',
            policy=self.retry_policy,
        )

        records = [
            EnrichmentRecord(
                term_id=r['native'],
                term_name=r['name'],
                p_value=float(r['p_value']),
                # g:Profiler reports p-values already adjusted
                adj_p_value=float(r['p_value']),
                count=int(r['intersection_size']),
            )
            for r in (result or [])
        ]
        records.sort(key=lambda r: (r.p_value, r.term_id))
        return records
