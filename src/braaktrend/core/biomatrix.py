"""
Expression matrix container with aligned sample and feature annotations.

BioMatrix keeps the numerical matrix, the sample table and the per-value
quality flags together so that every subsetting operation applies to all of
them at once. Columns of the matrix and rows of the sample table must stay
index-aligned for the whole run; any mismatch is an InputIntegrityError,
never a recoverable condition.

Layout:
    - Rows = features (probes before deduplication, gene symbols after)
    - Columns = samples (brain tissue arrays)
    - Values = intensities (raw, then log2, then quantile normalized)

Engineering Design:
    - Immutable: operations return new instances
    - Validated: constructor checks shapes and index alignment
    - Optional feature annotation table (symbol, entrez_id, pathway, ...)

Examples:
    >>> import numpy as np
    >>> import pandas as pd
    >>> from braaktrend.core.biomatrix import BioMatrix
    >>> sample_ids = pd.Index(["GSM1", "GSM2"])
    >>> matrix = BioMatrix(
    ...     data=np.array([[10.0, 20.0], [30.0, 40.0]]),
    ...     feature_ids=pd.Index(["1007_s_at", "1053_at"]),
    ...     sample_ids=sample_ids,
    ...     sample_metadata=pd.DataFrame({'status': ['Control', 'Disease']}, index=sample_ids),
    ... )
    >>> disease = matrix.select_samples(matrix.sample_metadata['status'] == 'Disease')
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd

from braaktrend.core.errors import InputIntegrityError
from braaktrend.core.quality import QualityFlag

__all__ = ['BioMatrix']


class BioMatrix:
    """
    Immutable container for expression matrix + sample table + quality flags.

    Attributes:
        data: Expression matrix (features × samples)
        feature_ids: Row identifiers (probe ids or gene symbols)
        sample_ids: Column identifiers
        sample_metadata: Sample table indexed by sample id
        quality_flags: Per-value QualityFlag matrix (same shape as data)
        feature_metadata: Optional annotation table indexed by feature id

    Shape Invariants:
        - data.shape == (len(feature_ids), len(sample_ids))
        - quality_flags.shape == data.shape
        - sample_metadata.index equals sample_ids
        - feature_metadata.index equals feature_ids (when present)
    """

    def __init__(
        self,
        data: np.ndarray,
        feature_ids: pd.Index,
        sample_ids: pd.Index,
        sample_metadata: pd.DataFrame,
        quality_flags: Optional[np.ndarray] = None,
        feature_metadata: Optional[pd.DataFrame] = None,
    ):
        """
        Initialize BioMatrix with validation.

        Raises:
            TypeError: If argument types are wrong
            InputIntegrityError: If shapes or indices are not aligned
        """
        if not isinstance(data, np.ndarray):
            raise TypeError(f"data must be np.ndarray, got {type(data)}")
        if not isinstance(feature_ids, pd.Index):
            raise TypeError(f"feature_ids must be pd.Index, got {type(feature_ids)}")
        if not isinstance(sample_ids, pd.Index):
            raise TypeError(f"sample_ids must be pd.Index, got {type(sample_ids)}")
        if not isinstance(sample_metadata, pd.DataFrame):
            raise TypeError(f"sample_metadata must be pd.DataFrame, got {type(sample_metadata)}")

        if quality_flags is None:
            quality_flags = np.full(data.shape, int(QualityFlag.ORIGINAL), dtype=int)

        if data.ndim != 2:
            raise InputIntegrityError("matrix", None, f"data must be 2D, got shape {data.shape}")

        n_features, n_samples = data.shape

        if len(feature_ids) != n_features:
            raise InputIntegrityError(
                "matrix", None,
                f"feature_ids length ({len(feature_ids)}) must match data rows ({n_features})",
            )
        if len(sample_ids) != n_samples:
            raise InputIntegrityError(
                "matrix", None,
                f"sample_ids length ({len(sample_ids)}) must match data columns ({n_samples})",
            )
        if quality_flags.shape != data.shape:
            raise InputIntegrityError(
                "matrix", None,
                f"quality_flags shape {quality_flags.shape} must match data shape {data.shape}",
            )
        if not sample_ids.is_unique:
            dup = sample_ids[sample_ids.duplicated()][0]
            raise InputIntegrityError("matrix", str(dup), "duplicate sample identifier")

        if not sample_metadata.index.equals(sample_ids):
            raise InputIntegrityError(
                "alignment", None,
                "sample_metadata.index must match sample_ids exactly. "
                f"Got {len(sample_metadata.index)} metadata rows for {len(sample_ids)} samples.",
            )
        if feature_metadata is not None and not feature_metadata.index.equals(feature_ids):
            raise InputIntegrityError(
                "alignment", None,
                "feature_metadata.index must match feature_ids exactly.",
            )

        self._data = data
        self._feature_ids = feature_ids
        self._sample_ids = sample_ids
        self._sample_metadata = sample_metadata
        self._quality_flags = quality_flags
        self._feature_metadata = feature_metadata

    @property
    def data(self) -> np.ndarray:
        """Expression matrix (features × samples)."""
        return self._data

    @property
    def feature_ids(self) -> pd.Index:
        return self._feature_ids

    @property
    def sample_ids(self) -> pd.Index:
        return self._sample_ids

    @property
    def sample_metadata(self) -> pd.DataFrame:
        return self._sample_metadata

    @property
    def quality_flags(self) -> np.ndarray:
        return self._quality_flags

    @property
    def feature_metadata(self) -> Optional[pd.DataFrame]:
        return self._feature_metadata

    @property
    def shape(self) -> tuple[int, int]:
        return self._data.shape

    @property
    def n_features(self) -> int:
        return self._data.shape[0]

    @property
    def n_samples(self) -> int:
        return self._data.shape[1]

    def validate_alignment(self, stage: str) -> None:
        """
        Re-check that matrix columns and sample table rows are aligned.

        Called at every pipeline boundary that reorders or filters samples.

        Raises:
            InputIntegrityError: If the sample table no longer matches the columns
        """
        if not self._sample_metadata.index.equals(self._sample_ids):
            raise InputIntegrityError(
                stage, None, "sample table is not aligned with matrix columns"
            )
        if self._data.shape[1] != len(self._sample_ids):
            raise InputIntegrityError(
                stage, None, "matrix column count does not match sample ids"
            )

    def select_samples(self, mask: np.ndarray | pd.Series) -> BioMatrix:
        """
        Subset matrix by samples (columns), keeping the sample table aligned.

        Args:
            mask: Boolean array/Series of length n_samples. Series index is ignored.

        Returns:
            New BioMatrix with selected samples
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_samples:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_samples ({self.n_samples})"
            )

        kept = self._sample_ids[mask]
        return BioMatrix(
            data=self._data[:, mask],
            feature_ids=self._feature_ids,
            sample_ids=kept,
            sample_metadata=self._sample_metadata.loc[kept],
            quality_flags=self._quality_flags[:, mask],
            feature_metadata=self._feature_metadata,
        )

    def select_features(self, mask: np.ndarray | pd.Series) -> BioMatrix:
        """
        Subset matrix by features (rows), keeping feature annotations aligned.

        Args:
            mask: Boolean array/Series of length n_features. Series index is ignored.

        Returns:
            New BioMatrix with selected features
        """
        if isinstance(mask, pd.Series):
            mask = mask.values
        mask = np.asarray(mask, dtype=bool)

        if len(mask) != self.n_features:
            raise ValueError(
                f"mask length ({len(mask)}) must match n_features ({self.n_features})"
            )

        feature_metadata = None
        if self._feature_metadata is not None:
            feature_metadata = self._feature_metadata.loc[self._feature_ids[mask]]

        return BioMatrix(
            data=self._data[mask, :],
            feature_ids=self._feature_ids[mask],
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata,
            quality_flags=self._quality_flags[mask, :],
            feature_metadata=feature_metadata,
        )

    def with_data(
        self,
        data: np.ndarray,
        add_flag: QualityFlag = QualityFlag.ORIGINAL,
    ) -> BioMatrix:
        """
        Return a copy with new values (same shape) and an extra flag on every value.

        Args:
            data: Replacement matrix, same shape as the current one
            add_flag: Flag OR-ed into every value's quality flags
        """
        if data.shape != self._data.shape:
            raise ValueError(f"data shape {data.shape} must match {self._data.shape}")
        return BioMatrix(
            data=data,
            feature_ids=self._feature_ids,
            sample_ids=self._sample_ids,
            sample_metadata=self._sample_metadata,
            quality_flags=self._quality_flags | int(add_flag),
            feature_metadata=self._feature_metadata,
        )

    def to_frame(self) -> pd.DataFrame:
        """Expression values as a features × samples DataFrame."""
        return pd.DataFrame(self._data, index=self._feature_ids, columns=self._sample_ids)

    def __repr__(self) -> str:
        if self.n_features == 0 or self.n_samples == 0:
            return f"BioMatrix({self.n_features} features × {self.n_samples} samples)"
        return (
            f"BioMatrix({self.n_features} features × {self.n_samples} samples)\n"
            f"  Features: {self.feature_ids[0]}...{self.feature_ids[-1]}\n"
            f"  Samples: {self.sample_ids[0]}...{self.sample_ids[-1]}\n"
            f"  Metadata columns: {list(self.sample_metadata.columns)}"
        )

    def __str__(self) -> str:
        return self.__repr__()
