"""
Tests for the PC1 outlier screen.
"""

import numpy as np
import pytest

from braaktrend.core.errors import InputIntegrityError
from braaktrend.quality.outliers import (
    Decomposer,
    OutlierDetector,
    SklearnPCADecomposer,
    pc1_outlier_mask,
    standardize_genes,
)
from conftest import make_matrix, staged_metadata


class FixedScores(Decomposer):
    """Decomposer returning preset PC1 scores."""

    def __init__(self, scores):
        self.scores = np.asarray(scores, dtype=float)

    def first_component_scores(self, X):
        assert X.shape[0] == len(self.scores)
        return self.scores


@pytest.fixture
def shifted_data(rng):
    """40 genes × 20 samples with sample 7 pushed far away from the rest."""
    data = rng.normal(8.0, 1.0, size=(40, 20))
    data[:20, 7] += 5.0
    data[20:, 7] -= 5.0
    return data


class TestStandardizeGenes:

    def test_shape_and_scaling(self, rng):
        data = rng.normal(5, 3, size=(10, 6))
        X = standardize_genes(data)
        assert X.shape == (6, 10)
        np.testing.assert_allclose(X.mean(axis=0), 0.0, atol=1e-12)
        np.testing.assert_allclose(X.std(axis=0), 1.0)

    def test_constant_genes_dropped(self, rng):
        data = rng.normal(5, 1, size=(4, 6))
        data[2] = 3.0
        assert standardize_genes(data).shape == (6, 3)


class TestPC1OutlierMask:

    def test_extreme_sample_flagged(self, shifted_data):
        mask, scores, threshold = pc1_outlier_mask(shifted_data)
        assert np.flatnonzero(mask).tolist() == [7]
        assert abs(scores[7]) > threshold

    def test_cut_is_percentile_of_absolute_scores(self, rng):
        data = rng.normal(size=(5, 11))
        scores = np.array([0, 1, 2, 3, 4, 5, 6, 7, 8, 9, -100], dtype=float)
        mask, _, threshold = pc1_outlier_mask(data, decomposer=FixedScores(scores))
        assert threshold == pytest.approx(np.percentile(np.abs(scores), 99))
        assert mask.tolist() == [False] * 10 + [True]

    def test_tie_at_cut_not_flagged(self, rng):
        """Two equally extreme samples on opposite sides sit at the cut, not above it."""
        data = rng.normal(size=(5, 11))
        scores = np.array([-100, 0, 1, 2, 3, 4, 5, 6, 7, 8, 100], dtype=float)
        mask, _, threshold = pc1_outlier_mask(data, decomposer=FixedScores(scores))
        assert threshold == 100.0
        assert not mask.any()

    def test_lower_percentile_flags_more(self, rng):
        data = rng.normal(size=(5, 10))
        scores = np.arange(10, dtype=float)
        mask, _, _ = pc1_outlier_mask(data, percentile=50, decomposer=FixedScores(scores))
        assert mask.sum() == 5

    def test_all_constant_flags_nothing(self):
        mask, scores, threshold = pc1_outlier_mask(np.ones((5, 8)))
        assert not mask.any()
        assert threshold == 0.0

    def test_sklearn_decomposer_deterministic(self, shifted_data):
        X = standardize_genes(shifted_data)
        a = SklearnPCADecomposer().first_component_scores(X)
        b = SklearnPCADecomposer().first_component_scores(X)
        np.testing.assert_array_equal(a, b)


class TestOutlierDetector:

    def test_removes_sample_and_metadata_row(self, shifted_data):
        stages = ["0", "I", "II", "III", "IV"] * 4
        matrix = make_matrix(shifted_data, sample_metadata=staged_metadata(stages))
        detector = OutlierDetector()
        out = detector(matrix)

        assert detector.outlier_ids_ == ["S007"]
        assert out.n_samples == 19
        assert "S007" not in out.sample_ids
        assert out.sample_metadata.index.equals(out.sample_ids)
        assert detector.pc1_scores_.index.equals(matrix.sample_ids)
        assert detector.threshold_ is not None

    def test_no_outlier_returns_same_samples(self, rng):
        data = rng.normal(size=(6, 10))
        detector = OutlierDetector(decomposer=FixedScores([-1, 1] * 5))
        out = detector(make_matrix(data))
        assert detector.outlier_ids_ == []
        assert out.n_samples == 10

    def test_too_few_samples(self):
        with pytest.raises(InputIntegrityError, match="at least 3"):
            OutlierDetector()(make_matrix(np.ones((4, 2))))

    def test_invalid_percentile(self):
        with pytest.raises(ValueError):
            OutlierDetector(percentile=0)
