"""
End-to-end tests for the Braak-stage workflow and the run command.
"""

import json
from unittest.mock import patch

import numpy as np
import pandas as pd
import pytest

from braaktrend.annotation.enrichment import HypergeometricEnrichmentClient
from braaktrend.annotation.probes import TableProbeResolver
from braaktrend.cli import main
from braaktrend.cli.config import OutlierConfig, PipelineConfig
from braaktrend.core.biomatrix import BioMatrix
from braaktrend.core.errors import InputIntegrityError
from braaktrend.pipeline import (
    annotate_probes,
    run_pipeline,
    start_context,
    write_outputs,
)
from braaktrend.stats.trend import DOWN_REGULATED, UP_REGULATED
from conftest import synthetic_study


@pytest.fixture
def finished_run(study):
    matrix, raw_metadata, annotation = study
    client = HypergeometricEnrichmentClient({'AD_CORE': {'TRENDUP', 'TRENDDOWN', 'BG00'}})
    return run_pipeline(matrix, raw_metadata, TableProbeResolver(annotation), enrichment_client=client)


def write_inputs(tmp_path, study):
    matrix, raw_metadata, annotation = study
    expression = tmp_path / "matrix.csv"
    metadata = tmp_path / "samples.csv"
    platform = tmp_path / "platform.tsv"

    frame = matrix.to_frame()
    frame.index.name = 'ID_REF'
    frame.to_csv(expression)
    raw_metadata.to_csv(metadata, index=False)
    annotation.to_csv(platform, sep='\t', index=False)
    return expression, metadata, platform


class TestRunProvenance:
    """Every probe and sample is accounted for."""

    def test_probe_counts(self, finished_run):
        p = finished_run.provenance
        assert p.n_probes_input == 38
        assert p.n_control_probes_dropped == 2
        assert p.n_annotation_lookups == 36
        assert p.n_annotation_gaps == 2
        assert p.annotation_gap_reasons == {'missing gene identifier': 1, 'unresolved': 1}
        assert p.n_probes_annotated == 34
        assert p.n_genes == 33
        assert p.n_redundant_probes_dropped == 1

    def test_sample_counts(self, finished_run):
        p = finished_run.provenance
        assert p.n_samples_input == 56
        assert p.n_stage_imputed == 0
        assert p.n_regions_canonicalized == 28
        assert len(p.outlier_samples) == 1
        assert p.n_samples_analyzed == 55
        assert sum(p.stage_counts.values()) == 55

    def test_parameters_recorded(self, finished_run):
        params = finished_run.provenance.parameters
        assert params['differential_alpha'] == 0.05
        assert params['trend_alpha'] == 0.01
        assert params['outlier_percentile'] == 99.0


class TestPipelineResults:

    def test_matrix_indexed_by_gene(self, finished_run):
        matrix = finished_run.matrix
        assert matrix.feature_ids.is_unique
        assert 'DUPGENE' in matrix.feature_ids
        assert matrix.feature_metadata.loc['DUPGENE', 'probe_id'] == '209004_at'
        assert not any(str(g).startswith('AFFX') for g in matrix.feature_ids)
        assert matrix.sample_metadata.index.equals(matrix.sample_ids)

    def test_outlier_removed_from_matrix(self, finished_run):
        removed = finished_run.provenance.outlier_samples[0]
        assert removed not in finished_run.matrix.sample_ids

    def test_trend_genes_detected(self, finished_run):
        trend = finished_run.trend
        assert 'TRENDUP' in trend.significant_genes(UP_REGULATED)
        assert 'TRENDDOWN' in trend.significant_genes(DOWN_REGULATED)

    def test_differential_direction(self, finished_run):
        differential = finished_run.differential
        assert 'TRENDUP' in differential.significant_genes('Up')
        assert 'TRENDDOWN' in differential.significant_genes('Down')
        assert differential.n_control + differential.n_disease == 55

    def test_overlap(self, finished_run):
        up, down = finished_run.overlap
        assert up.direction == 'Up'
        assert 'TRENDUP' in up.genes
        assert 'TRENDDOWN' in down.genes
        assert 0.0 < up.pct_intersection <= 100.0

    def test_pathway_summary(self, finished_run):
        summary = finished_run.pathway_summary
        assert set(summary['pathway']) == {'KEGG:04110', 'KEGG:05010'}
        row = summary.set_index('pathway').loc['KEGG:05010']
        assert row['n_genes'] == 2
        assert row['n_trend_up'] == 1
        assert row['n_trend_down'] == 1

    def test_enrichment_for_non_empty_sets(self, finished_run):
        assert ('trend', 'Up') in finished_run.enrichment
        assert finished_run.enrichment[('trend', 'Up')][0].term_id == 'AD_CORE'
        for key, records in finished_run.enrichment.items():
            assert key[0] in ('differential', 'trend', 'overlap')


class TestPipelineFailures:

    def test_non_positive_intensity_aborts(self, study):
        matrix, raw_metadata, annotation = study
        data = matrix.data.copy()
        data[0, 3] = 0.0
        bad = matrix.with_data(data)
        with pytest.raises(InputIntegrityError) as exc_info:
            run_pipeline(bad, raw_metadata, TableProbeResolver(annotation))
        assert exc_info.value.stage == "normalization"

    def test_sample_without_metadata_aborts(self, study):
        matrix, raw_metadata, annotation = study
        with pytest.raises(InputIntegrityError) as exc_info:
            run_pipeline(matrix, raw_metadata.iloc[1:], TableProbeResolver(annotation))
        assert exc_info.value.stage == "alignment"

    def test_nothing_annotated_aborts(self, study):
        matrix, raw_metadata, _ = study
        empty = TableProbeResolver(pd.DataFrame({'ID': ['x'], 'Gene Symbol': ['X'], 'ENTREZ_GENE_ID': ['1']}))
        ctx = start_context(matrix, raw_metadata)
        with pytest.raises(InputIntegrityError, match="no probe"):
            annotate_probes(ctx, empty)

    def test_outlier_screen_can_be_disabled(self, study):
        matrix, raw_metadata, annotation = study
        config = PipelineConfig(outliers=OutlierConfig(enabled=False))
        ctx = run_pipeline(matrix, raw_metadata, TableProbeResolver(annotation), config)
        assert ctx.provenance.outlier_samples == ()
        assert ctx.provenance.n_samples_analyzed == 56


class TestWriteOutputs:

    def test_files_written(self, finished_run, tmp_path):
        paths = write_outputs(finished_run, tmp_path, top_n=5)
        names = {p.relative_to(tmp_path).as_posix() for p in paths}

        for expected in (
            'differential.csv', 'differential_top.csv', 'trend.csv', 'trend_significant.csv',
            'overlap.csv', 'pathway_summary.csv', 'provenance.json',
            'gene_sets/differential_up.txt', 'gene_sets/trend_down.txt', 'gene_sets/overlap_up.txt',
            'enrichment_trend_up.csv',
        ):
            assert expected in names

        assert len(pd.read_csv(tmp_path / 'differential_top.csv')) == 5
        provenance = json.loads((tmp_path / 'provenance.json').read_text())
        assert provenance['n_genes'] == 33
        assert len(provenance['outlier_samples']) == 1

    def test_idempotent(self, study, tmp_path):
        """Two runs on identical inputs give byte-identical outputs."""
        matrix, raw_metadata, annotation = study
        for name in ('a', 'b'):
            ctx = run_pipeline(matrix, raw_metadata, TableProbeResolver(annotation))
            write_outputs(ctx, tmp_path / name)

        files_a = sorted(p.relative_to(tmp_path / 'a') for p in (tmp_path / 'a').rglob('*') if p.is_file())
        files_b = sorted(p.relative_to(tmp_path / 'b') for p in (tmp_path / 'b').rglob('*') if p.is_file())
        assert files_a == files_b
        for rel in files_a:
            assert (tmp_path / 'a' / rel).read_bytes() == (tmp_path / 'b' / rel).read_bytes()

    def test_input_matrix_untouched(self, study):
        matrix, raw_metadata, annotation = study
        before = matrix.data.copy()
        run_pipeline(matrix, raw_metadata, TableProbeResolver(annotation))
        np.testing.assert_array_equal(matrix.data, before)
        assert isinstance(matrix, BioMatrix)


class TestRunCommand:

    def test_run_from_files(self, study, tmp_path):
        expression, metadata, platform = write_inputs(tmp_path, study)
        output = tmp_path / "results"

        code = main([
            'run',
            '--expression', str(expression),
            '--metadata', str(metadata),
            '--annotation', str(platform),
            '--output', str(output),
            '--top-n', '10',
        ])

        assert code == 0
        assert (output / 'differential.csv').exists()
        assert len(pd.read_csv(output / 'differential_top.csv')) == 10
        trend = pd.read_csv(output / 'trend_significant.csv')
        assert 'TRENDUP' in set(trend['gene'])

    def test_run_from_config(self, study, tmp_path):
        expression, metadata, platform = write_inputs(tmp_path, study)
        config = tmp_path / "pipeline.yaml"
        config.write_text(
            f"expression: {expression}\n"
            f"metadata: {metadata}\n"
            f"output: {tmp_path / 'from_config'}\n"
            f"annotation:\n"
            f"  path: {platform}\n"
            f"outliers:\n"
            f"  enabled: false\n"
        )
        assert main(['run', '--config', str(config)]) == 0
        provenance = json.loads((tmp_path / 'from_config' / 'provenance.json').read_text())
        assert provenance['n_samples_analyzed'] == 56

    def test_missing_required_argument(self, tmp_path):
        assert main(['run', '--expression', str(tmp_path / 'm.csv')]) == 1

    def test_bad_intensity_exit_code(self, study, tmp_path):
        matrix, raw_metadata, annotation = study
        data = matrix.data.copy()
        data[5, 5] = -1.0
        expression, metadata, platform = write_inputs(tmp_path, (matrix.with_data(data), raw_metadata, annotation))
        code = main([
            'run', '--expression', str(expression), '--metadata', str(metadata),
            '--annotation', str(platform), '--output', str(tmp_path / 'out'),
        ])
        assert code == 1
        assert not (tmp_path / 'out' / 'differential.csv').exists()

    def test_enrichment_rate_limit_exit_code(self, study, tmp_path):
        expression, metadata, platform = write_inputs(tmp_path, study)
        config = tmp_path / "pipeline.yaml"
        config.write_text(
            "enrichment:\n"
            "  provider: gprofiler\n"
            "  max_retries: 1\n"
            "  backoff_factor: 0.0\n"
        )
        with patch('gprofiler.GProfiler') as gprofiler_cls:
            gprofiler_cls.return_value.profile.side_effect = AssertionError("query failed with error 429")
            code = main([
                'run', '--config', str(config),
                '--expression', str(expression), '--metadata', str(metadata),
                '--annotation', str(platform), '--output', str(tmp_path / 'out'),
            ])

        assert code == 1
        assert gprofiler_cls.return_value.profile.call_count == 2

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert 'braaktrend' in capsys.readouterr().out
