"""
Tests for log2 transform and quantile normalization.
"""

import numpy as np
import pytest

from braaktrend.core.errors import InputIntegrityError
from braaktrend.core.quality import QualityFlag
from braaktrend.stats.normalization import (
    ExpressionNormalizer,
    log2_transform,
    quantile_normalization,
)
from conftest import make_matrix


class TestLog2Transform:

    def test_values(self):
        out = log2_transform(np.array([[1.0, 2.0], [8.0, 0.5]]))
        np.testing.assert_allclose(out, [[0.0, 1.0], [3.0, -1.0]])

    @pytest.mark.parametrize("bad", [0.0, -3.0, np.nan, np.inf])
    def test_non_positive_is_fatal(self, bad):
        data = np.array([[1.0, 2.0], [3.0, bad]])
        with pytest.raises(InputIntegrityError) as exc_info:
            log2_transform(data, feature_ids=['p1', 'p2'], sample_ids=['s1', 's2'])
        assert exc_info.value.stage == "normalization"
        assert exc_info.value.record == "p2/s2"


class TestQuantileNormalization:

    def test_textbook_example(self):
        data = np.array([
            [5.0, 4.0, 3.0],
            [2.0, 1.0, 4.0],
            [3.0, 4.5, 6.0],
            [4.0, 2.0, 8.0],
        ])
        result = quantile_normalization(data)

        # sorted columns averaged row-wise
        np.testing.assert_allclose(result.target, [2.0, 3.0, 14.0 / 3, 17.5 / 3])
        np.testing.assert_allclose(result.data[:, 0], [17.5 / 3, 2.0, 3.0, 14.0 / 3])

    def test_identical_sorted_columns(self, rng):
        data = rng.lognormal(3, 1, size=(50, 6))
        result = quantile_normalization(data)
        sorted_cols = np.sort(result.data, axis=0)
        for j in range(1, 6):
            np.testing.assert_allclose(sorted_cols[:, j], sorted_cols[:, 0])

    def test_preserves_within_sample_ranks(self, rng):
        data = rng.normal(8, 2, size=(40, 5))
        result = quantile_normalization(data)
        for j in range(5):
            np.testing.assert_array_equal(np.argsort(data[:, j]), np.argsort(result.data[:, j]))

    def test_ties_still_yield_target(self):
        """Tied values are ranked by position so every column sorts to the target."""
        data = np.array([[1.0, 5.0], [1.0, 6.0], [2.0, 7.0]])
        result = quantile_normalization(data)
        np.testing.assert_allclose(np.sort(result.data[:, 0]), result.target)

    def test_missing_values_rejected(self):
        with pytest.raises(InputIntegrityError):
            quantile_normalization(np.array([[1.0, np.nan], [2.0, 3.0]]))


class TestExpressionNormalizer:

    def test_log_then_quantile(self, rng):
        raw = rng.lognormal(6, 1, size=(30, 8))
        matrix = make_matrix(raw)
        out = ExpressionNormalizer()(matrix)

        expected = quantile_normalization(np.log2(raw)).data
        np.testing.assert_allclose(out.data, expected)
        assert (out.quality_flags & QualityFlag.LOG_TRANSFORMED).all()
        assert (out.quality_flags & QualityFlag.QUANTILE_NORMALIZED).all()

    def test_input_untouched(self, rng):
        raw = rng.lognormal(6, 1, size=(10, 4))
        matrix = make_matrix(raw.copy())
        ExpressionNormalizer()(matrix)
        np.testing.assert_array_equal(matrix.data, raw)

    def test_skip_log(self, rng):
        data = rng.normal(8, 1, size=(10, 4))
        out = ExpressionNormalizer(log_transform=False)(make_matrix(data))
        np.testing.assert_allclose(out.data, quantile_normalization(data).data)

    def test_zero_intensity_names_probe_and_sample(self):
        data = np.ones((3, 3))
        data[1, 2] = 0.0
        matrix = make_matrix(data)
        with pytest.raises(InputIntegrityError, match="G001/S002"):
            ExpressionNormalizer()(matrix)
