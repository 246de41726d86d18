"""
Tests for probe → gene collapse.
"""

import numpy as np
import pandas as pd
import pytest

from braaktrend.core.errors import InputIntegrityError
from braaktrend.core.quality import QualityFlag
from braaktrend.quality.deduplication import GeneDeduplicator, select_representative_probes
from conftest import make_matrix


def annotated_matrix(data, probe_ids, symbols):
    annotations = pd.DataFrame(
        {'symbol': symbols, 'entrez_id': [str(i) for i in range(len(symbols))]},
        index=pd.Index(probe_ids),
    )
    return make_matrix(data, feature_ids=probe_ids, feature_metadata=annotations)


class TestSelectRepresentativeProbes:

    def test_highest_mean_wins(self):
        keep = select_representative_probes(
            pd.Index(['p1', 'p2', 'p3']),
            pd.Series(['APP', 'APP', 'MAPT']),
            np.array([5.0, 7.0, 1.0]),
        )
        assert keep.tolist() == [False, True, True]

    def test_tie_broken_by_probe_id(self):
        keep = select_representative_probes(
            pd.Index(['p9', 'p2', 'p5']),
            pd.Series(['APP', 'APP', 'APP']),
            np.array([3.0, 3.0, 3.0]),
        )
        assert keep.tolist() == [False, True, False]


class TestGeneDeduplicator:

    def test_one_row_per_symbol(self):
        data = np.array([
            [1.0, 1.0, 1.0],
            [4.0, 5.0, 6.0],
            [2.0, 2.0, 2.0],
            [9.0, 9.0, 9.0],
        ])
        matrix = annotated_matrix(data, ['p1', 'p2', 'p3', 'p4'], ['APP', 'APP', 'MAPT', 'SNCA'])
        dedup = GeneDeduplicator()
        out = dedup(matrix)

        assert out.feature_ids.tolist() == ['APP', 'MAPT', 'SNCA']
        assert out.feature_ids.is_unique
        np.testing.assert_array_equal(out.data[0], [4.0, 5.0, 6.0])
        assert out.feature_metadata.loc['APP', 'probe_id'] == 'p2'
        assert out.feature_metadata.loc['APP', 'n_probes'] == 2
        assert out.feature_metadata.loc['MAPT', 'n_probes'] == 1
        assert dedup.n_dropped_ == 1

    def test_collapsed_rows_flagged(self):
        data = np.array([[1.0, 2.0], [3.0, 4.0], [5.0, 6.0]])
        matrix = annotated_matrix(data, ['p1', 'p2', 'p3'], ['APP', 'APP', 'MAPT'])
        out = GeneDeduplicator()(matrix)
        assert (out.quality_flags[0] & QualityFlag.COLLAPSED_PROBE).all()
        assert not (out.quality_flags[1] & QualityFlag.COLLAPSED_PROBE).any()

    def test_deterministic_on_equal_means(self):
        data = np.array([[2.0, 2.0], [2.0, 2.0]])
        out_a = GeneDeduplicator()(annotated_matrix(data, ['b_at', 'a_at'], ['APP', 'APP']))
        out_b = GeneDeduplicator()(annotated_matrix(data, ['b_at', 'a_at'], ['APP', 'APP']))
        assert out_a.feature_metadata.loc['APP', 'probe_id'] == 'a_at'
        assert out_b.feature_metadata.loc['APP', 'probe_id'] == 'a_at'

    def test_sample_table_untouched(self):
        data = np.ones((2, 3))
        matrix = annotated_matrix(data, ['p1', 'p2'], ['A', 'B'])
        out = GeneDeduplicator()(matrix)
        assert out.sample_ids.equals(matrix.sample_ids)

    def test_requires_symbols(self):
        matrix = make_matrix(np.ones((2, 2)))
        with pytest.raises(InputIntegrityError, match="symbol"):
            GeneDeduplicator()(matrix)

    def test_missing_symbol_rejected(self):
        matrix = annotated_matrix(np.ones((2, 2)), ['p1', 'p2'], ['A', None])
        with pytest.raises(InputIntegrityError):
            GeneDeduplicator()(matrix)
