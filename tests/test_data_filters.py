"""
Tests for control-probe and annotation-completeness filters.
"""

import numpy as np
import pandas as pd
import pytest

from braaktrend.core.errors import AnnotationResolutionGap
from braaktrend.io.data_filters import AnnotationCompletenessFilter, ControlProbeFilter


class TestControlProbeFilter:

    def test_drops_affx_probes(self):
        ids = pd.Index(["1007_s_at", "AFFX-BioB-5_at", "1053_at", "AFFX-r2-P1-cre-3_at"])
        f = ControlProbeFilter()
        assert ids[f.keep_mask(ids)].tolist() == ["1007_s_at", "1053_at"]
        assert f.n_filtered_ == 2

    def test_case_insensitive_by_default(self):
        ids = pd.Index(["affx-hum_alu_at", "200000_s_at"])
        assert ControlProbeFilter().keep_mask(ids).tolist() == [False, True]

    def test_case_sensitive(self):
        ids = pd.Index(["affx-hum_alu_at", "AFFX-BioC-5_at"])
        assert ControlProbeFilter(case_sensitive=True).keep_mask(ids).tolist() == [True, False]

    def test_prefix_only_matches_start(self):
        """An identifier containing the prefix elsewhere is not a control."""
        ids = pd.Index(["X_AFFX_at", "AFFX_at"])
        assert ControlProbeFilter().keep_mask(ids).tolist() == [True, False]

    def test_multiple_prefixes(self):
        ids = pd.Index(["ILMN_1", "NEG_2", "AFFX-3", "1007_s_at"])
        f = ControlProbeFilter(prefixes=["AFFX", "NEG"])
        assert f.keep_mask(ids).tolist() == [True, False, False, True]
        assert f.n_filtered_ == 2

    def test_empty_prefixes_rejected(self):
        with pytest.raises(ValueError):
            ControlProbeFilter(prefixes=[])


class TestAnnotationCompletenessFilter:

    @pytest.fixture
    def annotations(self):
        return pd.DataFrame({
            'symbol': ['APP', None, 'MAPT', '', 'SNCA'],
            'entrez_id': ['351', '4137', np.nan, '6622', 'not-a-number'],
        }, index=['p1', 'p2', 'p3', 'p4', 'p5'])

    def test_keeps_only_complete(self, annotations):
        f = AnnotationCompletenessFilter()
        ids = pd.Index(['p1', 'p2', 'p3', 'p4', 'p5'])
        keep = f.keep_mask(ids, annotations)
        assert keep.tolist() == [True, False, False, False, False]

    def test_records_gap_per_probe(self, annotations):
        f = AnnotationCompletenessFilter()
        f.keep_mask(pd.Index(['p1', 'p2', 'p3', 'p6']), annotations)

        assert f.gaps_ == [
            AnnotationResolutionGap('p2', 'missing gene symbol'),
            AnnotationResolutionGap('p3', 'missing gene identifier'),
            AnnotationResolutionGap('p6', 'unresolved'),
        ]

    def test_numeric_identifier_required(self, annotations):
        """A non-numeric gene identifier counts as missing."""
        f = AnnotationCompletenessFilter()
        keep = f.keep_mask(pd.Index(['p5']), annotations)
        assert not keep[0]
        assert f.gaps_[0].reason == 'missing gene identifier'

    def test_all_complete_no_gaps(self):
        annotations = pd.DataFrame({'symbol': ['A'], 'entrez_id': [1]}, index=['p1'])
        f = AnnotationCompletenessFilter()
        assert f.keep_mask(pd.Index(['p1']), annotations).all()
        assert f.gaps_ == []
