"""
Probe filters applied before any statistical step.

Two kinds of probe never reach normalization:

    1. Platform control probes, recognised by a fixed identifier prefix
       (Affymetrix AFFX-* hybridization/housekeeping controls by default).
    2. Probes the annotation collaborator could not resolve to both a gene
       symbol and a numeric gene identifier. Each of these is recorded as an
       AnnotationResolutionGap and counted, never fatal.

Example:
    >>> import pandas as pd
    >>> from braaktrend.io.data_filters import ControlProbeFilter
    >>> f = ControlProbeFilter(prefixes=["AFFX"])
    >>> f.keep_mask(pd.Index(["1007_s_at", "AFFX-BioB-5_at", "affx-r2-P1-cre-3_at"]))
    array([ True, False, False])
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

import numpy as np
import pandas as pd

from braaktrend.core.errors import AnnotationResolutionGap

logger = logging.getLogger(__name__)

__all__ = ['ControlProbeFilter', 'AnnotationCompletenessFilter', 'DEFAULT_CONTROL_PREFIXES']

DEFAULT_CONTROL_PREFIXES = ("AFFX",)


class ControlProbeFilter:
    """
    Exclude probes whose identifier starts with a control prefix.

    Args:
        prefixes: Identifier prefixes marking control probes
        case_sensitive: Whether prefix matching is case-sensitive (default: False)

    Attributes:
        n_filtered_: Number of probes removed by the last filter() call
    """

    def __init__(
        self,
        prefixes: Sequence[str] = DEFAULT_CONTROL_PREFIXES,
        case_sensitive: bool = False,
    ):
        if not prefixes:
            raise ValueError("At least one prefix must be provided")

        self.prefixes = list(prefixes)
        self.case_sensitive = case_sensitive
        self.n_filtered_: int | None = None

    def _matches(self, probe_ids: pd.Index) -> np.ndarray:
        pattern = '^(?:' + '|'.join(re.escape(p) for p in self.prefixes) + ')'
        matches = pd.Index(probe_ids.astype(str)).str.contains(
            pattern,
            case=self.case_sensitive,
            na=False,
            regex=True,
        )
        return np.asarray(matches, dtype=bool)

    def keep_mask(self, probe_ids: pd.Index) -> np.ndarray:
        """Boolean mask of probes to keep."""
        matches = self._matches(probe_ids)
        self.n_filtered_ = int(matches.sum())
        return ~matches

    def __repr__(self) -> str:
        return (
            f"ControlProbeFilter(prefixes={self.prefixes}, "
            f"case_sensitive={self.case_sensitive})"
        )


class AnnotationCompletenessFilter:
    """
    Exclude probes lacking a gene symbol or a numeric gene identifier.

    Works on the annotation table produced by a ProbeAnnotationResolver
    (indexed by probe id, columns ``symbol`` and ``entrez_id``). Probes absent
    from the table are treated as unresolved.

    Attributes:
        gaps_: AnnotationResolutionGap records from the last call
    """

    def __init__(self, symbol_col: str = 'symbol', gene_id_col: str = 'entrez_id'):
        self.symbol_col = symbol_col
        self.gene_id_col = gene_id_col
        self.gaps_: list[AnnotationResolutionGap] = []

    def keep_mask(self, probe_ids: pd.Index, annotations: pd.DataFrame) -> np.ndarray:
        """
        Boolean mask over probe_ids of fully annotated probes.

        Side effect: records one AnnotationResolutionGap per excluded probe.
        """
        table = annotations.reindex(probe_ids)

        symbol = table[self.symbol_col] if self.symbol_col in table.columns else pd.Series(
            np.nan, index=probe_ids
        )
        gene_id = table[self.gene_id_col] if self.gene_id_col in table.columns else pd.Series(
            np.nan, index=probe_ids
        )

        has_symbol = symbol.notna() & (symbol.astype(str).str.strip() != "")
        has_gene_id = pd.to_numeric(gene_id, errors='coerce').notna()

        keep = (has_symbol & has_gene_id).values
        gaps = []
        for probe_id, s, g in zip(probe_ids, has_symbol.values, has_gene_id.values):
            if s and g:
                continue
            if not s and not g:
                reason = "unresolved"
            elif not s:
                reason = "missing gene symbol"
            else:
                reason = "missing gene identifier"
            gaps.append(AnnotationResolutionGap(probe_id=str(probe_id), reason=reason))
        self.gaps_ = gaps

        if gaps:
            logger.warning(f"Excluding {len(gaps)} probes without complete gene annotation")
        return keep
