"""
Probe → gene annotation resolvers.

Microarray probes are mapped to a gene symbol, a numeric (Entrez) gene
identifier, a gene name and optionally a pathway category by an external
annotation collaborator. The pipeline only depends on the
ProbeAnnotationResolver interface; filtering of unresolved probes happens in
the pipeline (see braaktrend.io.data_filters), not here.

Implementations:
    TableProbeResolver:  platform annotation file (GPL table export)
    MyGeneProbeResolver: mygene.info batch queries on the ``reporter`` scope
    CachedProbeResolver: per-run in-memory cache around any resolver

Examples:
    >>> from braaktrend.annotation.probes import MyGeneProbeResolver, CachedProbeResolver
    >>> resolver = CachedProbeResolver(MyGeneProbeResolver())
    >>> table = resolver.resolve(['1007_s_at', '1053_at'])
    >>> table.loc['1053_at', 'symbol']
    'RFC2'
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from braaktrend.utils.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

__all__ = [
    'ANNOTATION_COLUMNS',
    'ProbeAnnotationResolver',
    'TableProbeResolver',
    'MyGeneProbeResolver',
    'CachedProbeResolver',
]

ANNOTATION_COLUMNS = ['symbol', 'entrez_id', 'gene_name', 'pathway']


def _empty_table(probe_ids: Sequence[str]) -> pd.DataFrame:
    table = pd.DataFrame(
        {col: pd.Series([np.nan] * len(probe_ids), dtype=object) for col in ANNOTATION_COLUMNS},
        index=pd.Index(list(probe_ids), name='probe_id'),
    )
    return table


class ProbeAnnotationResolver(ABC):
    """Abstract interface for probe annotation collaborators."""

    @abstractmethod
    def resolve(self, probe_ids: Sequence[str]) -> pd.DataFrame:
        """
        Resolve probes to gene annotations.

        Args:
            probe_ids: Probe identifiers to resolve

        Returns:
            DataFrame indexed by probe id (same order as input, unique) with
            columns symbol, entrez_id, gene_name, pathway. Unresolved fields
            are NaN; unknown probes get an all-NaN row.
        """


class TableProbeResolver(ProbeAnnotationResolver):
    """
    Resolve probes from a platform annotation table.

    Args:
        table: DataFrame with a probe id column and annotation columns
        column_map: Raw column name → canonical column
            (probe_id, symbol, entrez_id, gene_name, pathway)
    """

    DEFAULT_COLUMN_MAP = {
        'ID': 'probe_id',
        'probe_id': 'probe_id',
        'Gene Symbol': 'symbol',
        'symbol': 'symbol',
        'ENTREZ_GENE_ID': 'entrez_id',
        'Entrez Gene': 'entrez_id',
        'entrez_id': 'entrez_id',
        'Gene Title': 'gene_name',
        'gene_name': 'gene_name',
        'pathway': 'pathway',
        'Pathway': 'pathway',
    }

    def __init__(self, table: pd.DataFrame, column_map: Optional[Dict[str, str]] = None):
        mapping = dict(self.DEFAULT_COLUMN_MAP)
        if column_map:
            mapping.update(column_map)

        renamed = table.rename(columns={k: v for k, v in mapping.items() if k in table.columns})
        if 'probe_id' not in renamed.columns:
            if renamed.index.name is not None:
                renamed = renamed.reset_index().rename(columns={renamed.index.name: 'probe_id'})
            else:
                raise ValueError("Annotation table has no probe id column")

        renamed = renamed.loc[:, ~renamed.columns.duplicated()]
        renamed['probe_id'] = renamed['probe_id'].astype(str)
        renamed = renamed.drop_duplicates(subset='probe_id', keep='first').set_index('probe_id')

        for col in ANNOTATION_COLUMNS:
            if col not in renamed.columns:
                renamed[col] = np.nan

        # GPL tables list multi-gene probes as "A /// B"; such probes are ambiguous
        for col in ('symbol', 'entrez_id'):
            values = renamed[col].astype(object)
            multi = values.astype(str).str.contains('///', regex=False) & values.notna()
            renamed.loc[multi, col] = np.nan

        self._table = renamed[ANNOTATION_COLUMNS]

    @classmethod
    def from_file(cls, path: Path | str, column_map: Optional[Dict[str, str]] = None) -> 'TableProbeResolver':
        """Load an annotation table (CSV, or TSV when the suffix is .tsv/.txt)."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Annotation table not found: {path}")
        sep = '\t' if path.suffix.lower() in ('.tsv', '.txt') else ','
        table = pd.read_csv(path, sep=sep, comment='#', dtype=str)
        return cls(table, column_map=column_map)

    def resolve(self, probe_ids: Sequence[str]) -> pd.DataFrame:
        probe_ids = list(dict.fromkeys(str(p) for p in probe_ids))
        resolved = self._table.reindex(probe_ids)
        resolved.index.name = 'probe_id'
        return resolved


class MyGeneProbeResolver(ProbeAnnotationResolver):
    """
    Resolve probes with mygene.info batch queries.

    mygene.info indexes microarray reporters (Affymetrix, Illumina, Agilent)
    under the ``reporter`` scope, returning symbol, entrezgene and name.
    Each batch is wrapped in the retry policy; a batch that keeps failing
    raises ExternalServiceFailure.

    Args:
        species: Species for the query (default: 'human')
        batch_size: Probes per request
        retry_policy: Backoff settings for transient failures
        pathway_field: Optional mygene field used as the pathway tag
            (e.g. 'pathway.kegg.id'); first value is used
    """

    def __init__(
        self,
        species: str = 'human',
        batch_size: int = 1000,
        retry_policy: Optional[RetryPolicy] = None,
        pathway_field: Optional[str] = None,
    ):
        import mygene
        self.mg = mygene.MyGeneInfo()
        self.species = species
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.pathway_field = pathway_field

    @staticmethod
    def _get_nested(item: dict, dotted: str):
        value = item
        for part in dotted.split('.'):
            if isinstance(value, list):
                value = value[0] if value else None
            if isinstance(value, dict):
                value = value.get(part)
            else:
                return None
        if isinstance(value, list):
            value = value[0] if value else None
        return value

    def _query_batch(self, batch: List[str]) -> List[dict]:
        fields = 'symbol,entrezgene,name'
        if self.pathway_field:
            fields += f',{self.pathway_field}'
        result = self.mg.querymany(
            batch,
            scopes='reporter',
            fields=fields,
            species=self.species,
            returnall=True,
            verbose=False,
        )
        return result['out']

    def resolve(self, probe_ids: Sequence[str]) -> pd.DataFrame:
        probe_ids = list(dict.fromkeys(str(p) for p in probe_ids))
        table = _empty_table(probe_ids)

        batches = [
            probe_ids[i:i + self.batch_size]
            for i in range(0, len(probe_ids), self.batch_size)
        ]
        seen: set = set()
        for n, batch in enumerate(batches):
            logger.debug(f"Querying mygene batch {n + 1}/{len(batches)} ({len(batch)} probes)")
            hits = call_with_retry(
                lambda: self._query_batch(batch),
                service='mygene',
                policy=self.retry_policy,
            )
            for item in hits:
                probe_id = item.get('query')
                if probe_id not in table.index or item.get('notfound'):
                    continue
                # First hit wins for probes matching several genes
                if probe_id in seen:
                    continue
                seen.add(probe_id)
                table.at[probe_id, 'symbol'] = item.get('symbol', np.nan)
                table.at[probe_id, 'entrez_id'] = item.get('entrezgene', np.nan)
                table.at[probe_id, 'gene_name'] = item.get('name', np.nan)
                if self.pathway_field:
                    pathway = self._get_nested(item, self.pathway_field)
                    table.at[probe_id, 'pathway'] = pathway if pathway is not None else np.nan

        n_resolved = int(table['symbol'].notna().sum())
        logger.info(f"mygene resolved {n_resolved}/{len(probe_ids)} probes")
        return table


class CachedProbeResolver(ProbeAnnotationResolver):
    """
    Per-run in-memory cache around another resolver.

    Only probes not seen earlier in the run are forwarded to the wrapped
    resolver. The cache lives as long as this object; nothing is written to
    disk, so separate runs never share state.
    """

    def __init__(self, resolver: ProbeAnnotationResolver):
        self.resolver = resolver
        self._cache: Dict[str, dict] = {}
        self.n_lookups_ = 0

    def resolve(self, probe_ids: Sequence[str]) -> pd.DataFrame:
        probe_ids = list(dict.fromkeys(str(p) for p in probe_ids))
        todo = [p for p in probe_ids if p not in self._cache]

        if todo:
            self.n_lookups_ += len(todo)
            fetched = self.resolver.resolve(todo)
            for probe_id in todo:
                if probe_id in fetched.index:
                    row = fetched.loc[probe_id]
                    self._cache[probe_id] = {col: row.get(col, np.nan) for col in ANNOTATION_COLUMNS}
                else:
                    self._cache[probe_id] = {col: np.nan for col in ANNOTATION_COLUMNS}

        table = pd.DataFrame.from_dict(
            {p: self._cache[p] for p in probe_ids}, orient='index', columns=ANNOTATION_COLUMNS
        )
        table.index.name = 'probe_id'
        return table.astype(object)
