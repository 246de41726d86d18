"""
Pytest configuration and shared fixtures.

Synthetic data generators for the Braak-stage pipeline. Every generator takes
an explicit seed so that runs are reproducible.
"""

import numpy as np
import pandas as pd
import pytest

from braaktrend.core.biomatrix import BioMatrix
from braaktrend.io.metadata import STAGE_LABELS, derive_status


def make_matrix(data, feature_ids=None, sample_ids=None, sample_metadata=None, feature_metadata=None):
    """Build a BioMatrix with default ids and an empty sample table."""
    data = np.asarray(data, dtype=float)
    n_features, n_samples = data.shape
    feature_ids = pd.Index(feature_ids if feature_ids is not None else [f"G{i:03d}" for i in range(n_features)])
    sample_ids = pd.Index(sample_ids if sample_ids is not None else [f"S{j:03d}" for j in range(n_samples)])
    if sample_metadata is None:
        sample_metadata = pd.DataFrame(index=sample_ids)
    return BioMatrix(
        data=data,
        feature_ids=feature_ids,
        sample_ids=sample_ids,
        sample_metadata=sample_metadata,
        feature_metadata=feature_metadata,
    )


def staged_metadata(stages, sample_ids=None):
    """Canonical sample table for a list of stage labels."""
    sample_ids = pd.Index(sample_ids if sample_ids is not None else [f"S{j:03d}" for j in range(len(stages))])
    stage = pd.Series(
        pd.Categorical(list(stages), categories=STAGE_LABELS, ordered=True),
        index=sample_ids,
        name='stage',
    )
    return pd.DataFrame({
        'stage': stage,
        'status': derive_status(stage).values,
    }, index=sample_ids)


def two_group_metadata(n_control, n_disease):
    """Sample table with Control first, then Disease (stage IV)."""
    return staged_metadata(["0"] * n_control + ["IV"] * n_disease)


def centered_noise(rng, size, scale):
    """Noise with an exact zero mean."""
    noise = rng.normal(0.0, scale, size=size)
    return noise - noise.mean()


def synthetic_study(n_per_stage=8, n_background=30, seed=7):
    """
    Raw inputs for an end-to-end run.

    Returns:
        (matrix, raw_metadata, annotation_table) where the matrix holds raw
        positive intensities for background genes, two stage-trending genes,
        a gene measured by two probes, two AFFX control probes and two
        probes without annotation.
    """
    rng = np.random.default_rng(seed)
    stages = [label for label in STAGE_LABELS for _ in range(n_per_stage)]
    rank = np.array([STAGE_LABELS.index(s) for s in stages], dtype=float)
    n_samples = len(stages)
    sample_ids = [f"GSM{1000 + j}" for j in range(n_samples)]

    rows, probe_ids, annotation = [], [], []

    def add(probe_id, log2_values, symbol, entrez, pathway=None):
        rows.append(np.exp2(log2_values))
        probe_ids.append(probe_id)
        annotation.append({
            'ID': probe_id,
            'Gene Symbol': symbol,
            'ENTREZ_GENE_ID': entrez,
            'pathway': pathway,
        })

    for i in range(n_background):
        base = 6.0 + 0.2 * i
        add(f"{200000 + i}_at", base + rng.normal(0, 0.15, n_samples), f"BG{i:02d}", str(5000 + i),
            "KEGG:04110" if i % 3 == 0 else None)

    add("209001_at", 9.0 + 0.6 * rank + rng.normal(0, 0.1, n_samples), "TRENDUP", "101", "KEGG:05010")
    add("209002_at", 11.0 - 0.6 * rank + rng.normal(0, 0.1, n_samples), "TRENDDOWN", "102", "KEGG:05010")
    add("209003_s_at", 7.5 + rng.normal(0, 0.15, n_samples), "DUPGENE", "103")
    add("209004_at", 8.5 + rng.normal(0, 0.15, n_samples), "DUPGENE", "103")
    add("AFFX-BioB-5_at", 12.0 + rng.normal(0, 0.1, n_samples), "AFFXB", "900")
    add("AFFX-r2-P1-cre-3_at", 12.5 + rng.normal(0, 0.1, n_samples), "AFFXC", "901")
    add("209005_at", 7.0 + rng.normal(0, 0.15, n_samples), None, None)
    add("209006_at", 7.2 + rng.normal(0, 0.15, n_samples), "NOID", None)

    data = np.vstack(rows)
    matrix = BioMatrix(
        data=data,
        feature_ids=pd.Index(probe_ids, name='probe_id'),
        sample_ids=pd.Index(sample_ids, name='sample_id'),
        sample_metadata=pd.DataFrame(index=pd.Index(sample_ids, name='sample_id')),
    )

    raw_metadata = pd.DataFrame({
        'geo_accession': sample_ids,
        'braak stage': [f"Braak {s}" if s != "0" else "0" for s in stages],
        'tissue': ['Pre-frontal cortex' if j % 2 else 'prefrontal cortex' for j in range(n_samples)],
        'Sex': ['F' if j % 3 else 'M' for j in range(n_samples)],
        'age': [f"{70 + j % 20} years" for j in range(n_samples)],
    })
    annotation_table = pd.DataFrame(annotation)
    return matrix, raw_metadata, annotation_table


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def study():
    return synthetic_study()
