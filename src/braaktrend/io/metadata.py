"""
Canonical sample table construction from raw phenotype records.

Raw per-sample records from a public repository arrive as arbitrary key/value
sets ("braak stage: IV", "tissue: Pre-frontal cortex", "Sex: F", ...). This
module turns them into the canonical sample table used by every downstream
stage:

    sample_id (index) | brain_region | stage | age | sex | genotype | status | stage_imputed

Stage policy:
    Braak stage is a closed ordered enumeration {0, I, II, III, IV, V, VI}.
    A sample whose stage is unset is assigned stage 0 (Control) rather than
    dropped. This affects group sizes downstream and must not be changed.
    The derived status (Control iff stage 0) is always recomputed from the
    stage column, never stored independently.

Examples:
    >>> import pandas as pd
    >>> from braaktrend.io.metadata import SampleMetadataResolver
    >>> raw = pd.DataFrame({
    ...     'geo_accession': ['GSM1', 'GSM2'],
    ...     'braak stage': ['IV', None],
    ...     'tissue': ['Prefrontal Cortex', 'pre-frontal cortex'],
    ... })
    >>> table = SampleMetadataResolver().resolve(raw)
    >>> table['status'].tolist()
    ['Disease', 'Control']
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from braaktrend.core.errors import InputIntegrityError

logger = logging.getLogger(__name__)

__all__ = [
    'DiseaseStage',
    'STAGE_LABELS',
    'CONTROL',
    'DISEASE',
    'parse_stage',
    'derive_status',
    'SampleMetadataResolver',
    'ResolutionSummary',
    'align_metadata',
]

CONTROL = "Control"
DISEASE = "Disease"


class DiseaseStage(Enum):
    """Braak neurofibrillary stage, ordered 0 (none) through VI (most severe)."""

    STAGE_0 = "0"
    STAGE_I = "I"
    STAGE_II = "II"
    STAGE_III = "III"
    STAGE_IV = "IV"
    STAGE_V = "V"
    STAGE_VI = "VI"

    @property
    def rank(self) -> int:
        return _STAGE_ORDER.index(self)

    def __lt__(self, other: DiseaseStage) -> bool:
        if not isinstance(other, DiseaseStage):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: DiseaseStage) -> bool:
        if not isinstance(other, DiseaseStage):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: DiseaseStage) -> bool:
        if not isinstance(other, DiseaseStage):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: DiseaseStage) -> bool:
        if not isinstance(other, DiseaseStage):
            return NotImplemented
        return self.rank >= other.rank


_STAGE_ORDER = list(DiseaseStage)
STAGE_LABELS: list[str] = [s.value for s in _STAGE_ORDER]

_ARABIC_TO_STAGE = {str(i): s for i, s in enumerate(_STAGE_ORDER)}
_ROMAN_TO_STAGE = {s.value: s for s in _STAGE_ORDER}
_STAGE_PREFIX = re.compile(r'^(braak(\s*stage)?|stage)[\s:_-]*', re.IGNORECASE)


def _is_unset(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and np.isnan(value):
        return True
    if value is pd.NA or value is pd.NaT:
        return True
    text = str(value).strip().lower()
    return text in ("", "na", "n/a", "nan", "none", "null", "unknown", "missing")


def parse_stage(value: Any) -> Optional[DiseaseStage]:
    """
    Parse a raw Braak stage label.

    Accepts roman numerals ("IV"), arabic digits ("4", 4, 4.0) and prefixed
    forms ("Braak IV", "braak stage: 4"). Returns None for unset values.

    Raises:
        ValueError: If the label is set but not a valid stage
    """
    if isinstance(value, DiseaseStage):
        return value
    if _is_unset(value):
        return None

    if isinstance(value, (int, np.integer)) or (
        isinstance(value, (float, np.floating)) and float(value).is_integer()
    ):
        text = str(int(value))
    else:
        text = _STAGE_PREFIX.sub("", str(value).strip()).strip()

    if text in _ARABIC_TO_STAGE:
        return _ARABIC_TO_STAGE[text]
    if text.upper() in _ROMAN_TO_STAGE:
        return _ROMAN_TO_STAGE[text.upper()]
    raise ValueError(f"Unrecognized Braak stage label: {value!r}")


def derive_status(stage: pd.Series) -> pd.Series:
    """Control iff stage is '0', Disease otherwise."""
    return pd.Series(
        np.where(stage.astype(str) == DiseaseStage.STAGE_0.value, CONTROL, DISEASE),
        index=stage.index,
        name='status',
    )


# Raw field names seen in GEO series matrices and phenotype exports.
DEFAULT_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    'sample_id': ('sample_id', 'geo_accession', 'gsm', 'sample', 'id', 'identifier'),
    'brain_region': ('brain_region', 'brain region', 'region', 'tissue', 'brain_area'),
    'stage': ('stage', 'braak', 'braak stage', 'braak_stage', 'braak.stage', 'braak score'),
    'age': ('age', 'age at death', 'age_at_death', 'age (years)'),
    'sex': ('sex', 'gender'),
    'genotype': ('genotype', 'apoe', 'apoe genotype', 'apoe_genotype'),
}

# Semantically identical anatomical labels.
DEFAULT_REGION_SYNONYMS: dict[str, str] = {
    'prefrontal cortex': 'prefrontal cortex',
    'pre-frontal cortex': 'prefrontal cortex',
    'pre frontal cortex': 'prefrontal cortex',
    'pfc': 'prefrontal cortex',
    'dorsolateral prefrontal cortex': 'prefrontal cortex',
    'visual cortex': 'visual cortex',
    'primary visual cortex': 'visual cortex',
    'cerebellum': 'cerebellum',
    'cerebellar cortex': 'cerebellum',
    'entorhinal cortex': 'entorhinal cortex',
    'hippocampus': 'hippocampus',
    'temporal cortex': 'temporal cortex',
    'middle temporal gyrus': 'temporal cortex',
}


def _region_key(value: Any) -> str:
    """Lower-cased label with whitespace runs squashed."""
    return re.sub(r'\s+', ' ', str(value).strip().lower())


_SEX_LABELS = {
    'm': 'male', 'male': 'male', 'man': 'male',
    'f': 'female', 'female': 'female', 'woman': 'female',
}


@dataclass
class ResolutionSummary:
    """Counts recorded while building the sample table."""

    n_samples: int
    n_stage_imputed: int
    n_regions_canonicalized: int
    stage_counts: dict[str, int] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"ResolutionSummary(\n"
            f"  samples: {self.n_samples}\n"
            f"  stage imputed to 0: {self.n_stage_imputed}\n"
            f"  regions canonicalized: {self.n_regions_canonicalized}\n"
            f"  stages: {self.stage_counts}\n"
            f")"
        )


class SampleMetadataResolver:
    """
    Build the canonical sample table from raw phenotype records.

    Args:
        field_aliases: Canonical field → accepted raw column names
            (case-insensitive). Defaults cover common GEO exports.
        region_synonyms: Lower-cased region label → canonical region label.
            Labels not in the map are kept (lower-cased, whitespace squashed).

    Raises (from resolve):
        InputIntegrityError: Missing or duplicate sample identifiers, or a
            stage label that is set but not a valid Braak stage.
    """

    def __init__(
        self,
        field_aliases: Optional[Mapping[str, Sequence[str]]] = None,
        region_synonyms: Optional[Mapping[str, str]] = None,
    ):
        aliases = dict(DEFAULT_FIELD_ALIASES)
        if field_aliases:
            for key, names in field_aliases.items():
                aliases[key] = tuple(names) + aliases.get(key, ())
        self.field_aliases = aliases

        synonyms = dict(DEFAULT_REGION_SYNONYMS)
        if region_synonyms:
            synonyms.update({k.lower(): v for k, v in region_synonyms.items()})
        self.region_synonyms = synonyms

        self._summary: Optional[ResolutionSummary] = None

    def _find_column(self, columns: Iterable[str], canonical: str) -> Optional[str]:
        lookup = {str(c).strip().lower(): c for c in columns}
        for alias in self.field_aliases.get(canonical, ()):
            if alias.lower() in lookup:
                return lookup[alias.lower()]
        return None

    def _canonical_region(self, value: Any) -> Any:
        if _is_unset(value):
            return np.nan
        key = _region_key(value)
        return self.region_synonyms.get(key, key)

    def resolve(self, raw: pd.DataFrame | Sequence[Mapping[str, Any]]) -> pd.DataFrame:
        """
        Build the canonical sample table.

        Args:
            raw: DataFrame or list of dicts, one record per sample

        Returns:
            DataFrame indexed by sample_id with columns brain_region, stage
            (ordered categorical over STAGE_LABELS), age, sex, genotype,
            status and stage_imputed
        """
        df = raw.copy() if isinstance(raw, pd.DataFrame) else pd.DataFrame(list(raw))
        if df.index.name is not None and self._find_column(df.columns, 'sample_id') is None:
            df = df.reset_index()

        id_col = self._find_column(df.columns, 'sample_id')
        if id_col is None:
            raise InputIntegrityError("metadata", None, "no sample identifier column")

        ids = df[id_col]
        missing = ids.map(_is_unset)
        if missing.any():
            row = int(np.flatnonzero(missing.values)[0])
            raise InputIntegrityError("metadata", f"row {row}", "sample has no identifier")
        ids = ids.astype(str).str.strip()
        if ids.duplicated().any():
            raise InputIntegrityError(
                "metadata", ids[ids.duplicated()].iloc[0], "duplicate sample identifier"
            )

        table = pd.DataFrame(index=pd.Index(ids.values, name='sample_id'))

        # Stage: parse, impute unset to 0
        stage_col = self._find_column(df.columns, 'stage')
        raw_stage = df[stage_col].values if stage_col is not None else [None] * len(df)
        stages = []
        imputed = []
        for sid, value in zip(table.index, raw_stage):
            try:
                stage = parse_stage(value)
            except ValueError as e:
                raise InputIntegrityError("metadata", sid, str(e)) from e
            imputed.append(stage is None)
            stages.append((stage or DiseaseStage.STAGE_0).value)

        table['stage'] = pd.Categorical(stages, categories=STAGE_LABELS, ordered=True)
        table['stage_imputed'] = imputed
        table['status'] = derive_status(table['stage']).values

        # Brain region
        region_col = self._find_column(df.columns, 'brain_region')
        n_canonicalized = 0
        if region_col is not None:
            original = df[region_col].values
            regions = [self._canonical_region(v) for v in original]
            n_canonicalized = sum(
                1 for o, r in zip(original, regions)
                if not _is_unset(o) and _region_key(o) != r
            )
            table['brain_region'] = pd.Categorical(regions)
        else:
            table['brain_region'] = pd.Categorical([np.nan] * len(table))

        age_col = self._find_column(df.columns, 'age')
        if age_col is not None:
            table['age'] = pd.to_numeric(
                df[age_col].astype(str).str.extract(r'([-+]?\d*\.?\d+)')[0],
                errors='coerce',
            ).values
        else:
            table['age'] = np.nan

        sex_col = self._find_column(df.columns, 'sex')
        if sex_col is not None:
            table['sex'] = pd.Categorical([
                np.nan if _is_unset(v) else _SEX_LABELS.get(str(v).strip().lower(), str(v).strip())
                for v in df[sex_col].values
            ])
        else:
            table['sex'] = pd.Categorical([np.nan] * len(table))

        genotype_col = self._find_column(df.columns, 'genotype')
        if genotype_col is not None:
            table['genotype'] = pd.Categorical([
                np.nan if _is_unset(v) else str(v).strip() for v in df[genotype_col].values
            ])
        else:
            table['genotype'] = pd.Categorical([np.nan] * len(table))

        table = table[['brain_region', 'stage', 'age', 'sex', 'genotype', 'status', 'stage_imputed']]

        n_imputed = int(np.sum(imputed))
        if n_imputed:
            logger.warning(f"Imputed Braak stage 0 for {n_imputed} samples with unset stage")

        self._summary = ResolutionSummary(
            n_samples=len(table),
            n_stage_imputed=n_imputed,
            n_regions_canonicalized=n_canonicalized,
            stage_counts={k: int(v) for k, v in table['stage'].value_counts(sort=False).items()},
        )
        logger.info(
            f"Resolved {len(table)} samples "
            f"({int((table['status'] == CONTROL).sum())} Control, "
            f"{int((table['status'] == DISEASE).sum())} Disease)"
        )
        return table

    @property
    def summary(self) -> Optional[ResolutionSummary]:
        """Resolution counts (available after resolve() called)."""
        return self._summary


def align_metadata(metadata: pd.DataFrame, sample_ids: pd.Index) -> pd.DataFrame:
    """
    Reorder the sample table to the matrix column order.

    The metadata must cover every matrix column; rows for samples absent from
    the matrix are dropped.

    Raises:
        InputIntegrityError: If a matrix column has no metadata row
    """
    missing = sample_ids.difference(metadata.index)
    if len(missing) > 0:
        raise InputIntegrityError(
            "alignment", str(sorted(missing)[0]),
            f"{len(missing)} matrix samples have no metadata row",
        )
    extra = metadata.index.difference(sample_ids)
    if len(extra) > 0:
        logger.info(f"Dropping {len(extra)} metadata rows with no expression column")
    aligned = metadata.loc[sample_ids]
    aligned.index.name = metadata.index.name
    return aligned
