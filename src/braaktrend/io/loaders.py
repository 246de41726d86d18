"""
Readers for the pipeline's tabular inputs.

Expression matrix:
    Probes × samples, first column = probe id, header = sample ids.
    Comma-separated (.csv) or tab-separated (.tsv, .txt, GEO series matrix
    exports). Values are raw intensities; positivity is checked later by the
    normalizer so the offending probe/sample can be named there.

Sample metadata:
    One row per sample with arbitrary column names; canonicalization is the
    SampleMetadataResolver's job.

Examples:
    >>> from braaktrend.io.loaders import load_expression_matrix, read_table
    >>> matrix = load_expression_matrix("GSE106241_series_matrix.tsv")
    >>> raw_metadata = read_table("GSE106241_samples.csv")
"""

from __future__ import annotations

import warnings
from pathlib import Path

import numpy as np
import pandas as pd

from braaktrend.core.biomatrix import BioMatrix
from braaktrend.core.errors import InputIntegrityError
from braaktrend.core.quality import QualityFlag

__all__ = ['read_table', 'load_expression_matrix']

_TAB_SUFFIXES = {'.tsv', '.txt', '.tab'}


def _separator(path: Path) -> str:
    suffixes = [s.lower() for s in path.suffixes if s.lower() != '.gz']
    return '\t' if suffixes and suffixes[-1] in _TAB_SUFFIXES else ','


def read_table(path: Path | str, index_col: int | None = None) -> pd.DataFrame:
    """
    Read a CSV/TSV table, choosing the separator from the file suffix.

    Lines starting with '!' (GEO header lines) are skipped.

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file is empty or unreadable
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    try:
        df = pd.read_csv(path, sep=_separator(path), index_col=index_col, comment='!')
    except pd.errors.EmptyDataError as e:
        raise ValueError(f"File is empty: {path}") from e
    except Exception as e:
        raise ValueError(f"Failed to read {path}: {e}") from e

    if df.empty:
        raise ValueError(f"File contains no data: {path}")
    return df


def load_expression_matrix(path: Path | str) -> BioMatrix:
    """
    Load a probes × samples intensity matrix.

    Returns:
        BioMatrix with an empty sample table (filled in by the pipeline once
        metadata is resolved) and all quality flags ORIGINAL

    Raises:
        InputIntegrityError: Duplicate probe or sample identifiers
        ValueError: Malformed or non-numeric content
    """
    path = Path(path)
    df = read_table(path, index_col=0)

    df.index = df.index.astype(str).str.strip().str.strip('"')
    df.columns = df.columns.astype(str).str.strip().str.strip('"')

    if df.index.duplicated().any():
        raise InputIntegrityError(
            "load", df.index[df.index.duplicated()][0], "duplicate probe identifier"
        )
    if df.columns.duplicated().any():
        raise InputIntegrityError(
            "load", df.columns[df.columns.duplicated()][0], "duplicate sample identifier"
        )

    try:
        data = df.values.astype(float)
    except ValueError as e:
        raise ValueError(f"Expression matrix {path} contains non-numeric values: {e}") from e

    if np.isnan(data).any():
        n_nan = int(np.isnan(data).sum())
        warnings.warn(
            f"Found {n_nan:,} missing values ({100 * n_nan / data.size:.2f}% of data); "
            "normalization requires a complete matrix.",
            UserWarning,
        )

    sample_ids = pd.Index(df.columns, name='sample_id')
    return BioMatrix(
        data=data,
        feature_ids=pd.Index(df.index, name='probe_id'),
        sample_ids=sample_ids,
        sample_metadata=pd.DataFrame(index=sample_ids),
        quality_flags=np.full(data.shape, QualityFlag.ORIGINAL, dtype=int),
    )
