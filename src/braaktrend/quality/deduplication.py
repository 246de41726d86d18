"""
Probe → gene collapse.

Several probes often target the same gene. After filtering, each gene symbol
is represented by exactly one expression vector: the probe with the highest
mean expression across samples. Ties are broken by ascending probe id so the
choice is reproducible.

The output matrix is indexed by gene symbol. A duplicated symbol surviving
the collapse means an upstream logic error and is fatal.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from braaktrend.core.biomatrix import BioMatrix
from braaktrend.core.errors import InputIntegrityError
from braaktrend.core.quality import QualityFlag
from braaktrend.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = ['GeneDeduplicator', 'select_representative_probes']


def select_representative_probes(
    probe_ids: pd.Index,
    symbols: pd.Series,
    row_means: np.ndarray,
) -> np.ndarray:
    """
    Pick one probe per symbol.

    Args:
        probe_ids: Probe identifiers (row order of the matrix)
        symbols: Gene symbol per probe, aligned with probe_ids
        row_means: Mean expression per probe

    Returns:
        Boolean keep-mask over probe_ids
    """
    table = pd.DataFrame({
        'pos': np.arange(len(probe_ids)),
        'probe_id': probe_ids.astype(str),
        'symbol': np.asarray(symbols, dtype=object),
        'mean': row_means,
    })
    # Highest mean first, then lowest probe id; keep the first row per symbol
    table = table.sort_values(
        ['symbol', 'mean', 'probe_id'],
        ascending=[True, False, True],
        kind='mergesort',
    )
    winners = table.drop_duplicates(subset='symbol', keep='first')['pos'].values

    keep = np.zeros(len(probe_ids), dtype=bool)
    keep[winners] = True
    return keep


class GeneDeduplicator(Transform):
    """
    Collapse probes to one row per gene symbol (max row mean).

    Requires ``matrix.feature_metadata`` with a ``symbol`` column. The
    returned matrix is indexed by symbol; its feature_metadata keeps the
    chosen probe id in a ``probe_id`` column plus ``n_probes``.
    """

    def __init__(self, symbol_col: str = 'symbol'):
        super().__init__(name="GeneDeduplicator", params={"symbol_col": symbol_col})
        self.symbol_col = symbol_col
        self.n_dropped_: int | None = None

    def validate(self, matrix: BioMatrix) -> list[str]:
        errors = super().validate(matrix)
        if matrix.feature_metadata is None or self.symbol_col not in matrix.feature_metadata.columns:
            errors.append(f"feature_metadata with a '{self.symbol_col}' column is required")
        elif matrix.feature_metadata[self.symbol_col].isna().any():
            errors.append("all probes must have a gene symbol before deduplication")
        return errors

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        annotations = matrix.feature_metadata
        symbols = annotations[self.symbol_col].astype(str)

        keep = select_representative_probes(
            matrix.feature_ids, symbols, matrix.data.mean(axis=1)
        )
        n_probes = symbols.value_counts()

        collapsed = matrix.select_features(keep)
        new_annotations = collapsed.feature_metadata.copy()
        new_annotations['probe_id'] = collapsed.feature_ids.astype(str)
        gene_index = pd.Index(new_annotations[self.symbol_col].astype(str).values, name='gene')
        new_annotations['n_probes'] = n_probes.reindex(gene_index).values
        new_annotations.index = gene_index

        if not gene_index.is_unique:
            dup = gene_index[gene_index.duplicated()][0]
            raise InputIntegrityError(self.name, dup, "gene symbol survived deduplication twice")

        flags = collapsed.quality_flags.copy()
        flags[new_annotations['n_probes'].values > 1, :] |= int(QualityFlag.COLLAPSED_PROBE)

        self.n_dropped_ = int(matrix.n_features - collapsed.n_features)
        logger.info(
            f"Collapsed {matrix.n_features} probes to {collapsed.n_features} genes "
            f"({self.n_dropped_} redundant probes dropped)"
        )

        return BioMatrix(
            data=collapsed.data,
            feature_ids=gene_index,
            sample_ids=collapsed.sample_ids,
            sample_metadata=collapsed.sample_metadata,
            quality_flags=flags,
            feature_metadata=new_annotations,
        )
