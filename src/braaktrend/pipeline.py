"""
End-to-end Braak-stage analysis workflow.

The run is a chain of stage functions over an explicit, immutable
PipelineContext. Every stage takes a context and returns a new one (possibly
with a filtered matrix); nothing is mutated in place, and sample/matrix
alignment is re-checked at every boundary that touches samples.

Stages:
    1. start_context        raw matrix + raw metadata → resolved sample table
    2. annotate_probes      control-probe filter, annotation lookup, drop gaps
    3. normalize            log2 + quantile normalization
    4. deduplicate          one probe per gene symbol (max row mean)
    5. remove_outliers      |PC1| > 99th percentile screen
    6. run_differential     Control vs Disease moderated t, BH, adj p <= 0.05
    7. run_trend            Jonckheere–Terpstra over stages, BH, adj p <= 0.01
    8. reconcile            Up/Down overlap of the two testers
    9. summarize_pathways   per-pathway counts (when genes carry pathway tags)
   10. enrich               directional gene sets → EnrichmentClient

Either the run completes with full provenance (counts at every stage) or it
aborts with InputIntegrityError / ExternalServiceFailure naming the stage
and the record at fault.

Examples:
    >>> from braaktrend.pipeline import run_pipeline, write_outputs
    >>> from braaktrend.annotation.probes import TableProbeResolver
    >>> ctx = run_pipeline(matrix, raw_metadata, TableProbeResolver.from_file("GPL.tsv"))
    >>> write_outputs(ctx, Path("results"))
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from braaktrend.annotation.enrichment import EnrichmentClient, EnrichmentRecord
from braaktrend.annotation.probes import CachedProbeResolver, ProbeAnnotationResolver
from braaktrend.cli.config import PipelineConfig
from braaktrend.core.biomatrix import BioMatrix
from braaktrend.core.errors import InputIntegrityError
from braaktrend.io import writers
from braaktrend.io.data_filters import AnnotationCompletenessFilter, ControlProbeFilter
from braaktrend.io.metadata import SampleMetadataResolver, align_metadata
from braaktrend.quality.deduplication import GeneDeduplicator
from braaktrend.quality.outliers import Decomposer, OutlierDetector
from braaktrend.stats.differential import DOWN, UP, DifferentialResult, DifferentialTester
from braaktrend.stats.normalization import ExpressionNormalizer
from braaktrend.stats.overlap import OverlapReconciler
from braaktrend.stats.pathways import summarize_pathways as pathway_summary_table
from braaktrend.stats.shrinkage import VarianceShrinker
from braaktrend.stats.trend import DOWN_REGULATED, UP_REGULATED, TrendResult, TrendTester

logger = logging.getLogger(__name__)

__all__ = [
    'RunProvenance',
    'PipelineContext',
    'start_context',
    'annotate_probes',
    'normalize',
    'deduplicate',
    'remove_outliers',
    'run_differential',
    'run_trend',
    'reconcile',
    'summarize_pathways',
    'directional_gene_sets',
    'enrich',
    'run_pipeline',
    'write_outputs',
]

DIRECTIONS = ("Up", "Down")
_TREND_LABELS = {"Up": UP_REGULATED, "Down": DOWN_REGULATED}
_DIFFERENTIAL_LABELS = {"Up": UP, "Down": DOWN}


@dataclass(frozen=True)
class RunProvenance:
    """
    Counts and parameters recorded along the run.

    Written to provenance.json so that every filtered probe and sample is
    accounted for.
    """

    n_samples_input: int = 0
    n_stage_imputed: int = 0
    n_regions_canonicalized: int = 0
    n_probes_input: int = 0
    n_control_probes_dropped: int = 0
    n_annotation_gaps: int = 0
    annotation_gap_reasons: Dict[str, int] = field(default_factory=dict)
    n_annotation_lookups: int = 0
    n_probes_annotated: int = 0
    n_genes: int = 0
    n_redundant_probes_dropped: int = 0
    outlier_samples: tuple = ()
    pc1_threshold: Optional[float] = None
    n_samples_analyzed: int = 0
    stage_counts: Dict[str, int] = field(default_factory=dict)
    differential: Dict[str, Any] = field(default_factory=dict)
    trend: Dict[str, Any] = field(default_factory=dict)
    overlap: Dict[str, Any] = field(default_factory=dict)
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PipelineContext:
    """
    State threaded through the stage functions.

    Attributes:
        matrix: Current expression matrix with aligned sample table
        provenance: Counts recorded so far
        differential: Two-group test result (after run_differential)
        trend: Trend test result (after run_trend)
        overlap: Per-direction overlap (after reconcile)
        pathway_summary: Per-pathway counts (after summarize_pathways)
        enrichment: (method, direction) → records (after enrich)
    """

    matrix: BioMatrix
    provenance: RunProvenance = field(default_factory=RunProvenance)
    differential: Optional[DifferentialResult] = None
    trend: Optional[TrendResult] = None
    overlap: tuple = ()
    pathway_summary: Optional[pd.DataFrame] = None
    enrichment: Mapping[tuple, List[EnrichmentRecord]] = field(default_factory=dict)


def _require(ctx: PipelineContext, attr: str, stage: str):
    value = getattr(ctx, attr)
    if value is None:
        raise InputIntegrityError(stage, None, f"'{attr}' stage has not run")
    return value


def start_context(
    matrix: BioMatrix,
    raw_metadata: pd.DataFrame | Sequence[Mapping[str, Any]],
    config: Optional[PipelineConfig] = None,
) -> PipelineContext:
    """Resolve the sample table and attach it to the matrix columns."""
    config = config or PipelineConfig()
    resolver = SampleMetadataResolver(
        field_aliases=config.sample_metadata.field_aliases,
        region_synonyms=config.sample_metadata.region_synonyms,
    )
    metadata = resolver.resolve(raw_metadata)
    aligned = align_metadata(metadata, matrix.sample_ids)

    result = BioMatrix(
        data=matrix.data,
        feature_ids=matrix.feature_ids,
        sample_ids=matrix.sample_ids,
        sample_metadata=aligned,
        quality_flags=matrix.quality_flags,
        feature_metadata=matrix.feature_metadata,
    )
    result.validate_alignment("metadata")

    summary = resolver.summary
    aligned_imputed = int(aligned['stage_imputed'].sum())
    provenance = RunProvenance(
        n_samples_input=matrix.n_samples,
        n_stage_imputed=aligned_imputed,
        n_regions_canonicalized=summary.n_regions_canonicalized if summary else 0,
        n_probes_input=matrix.n_features,
        parameters=_parameters(config),
    )
    return PipelineContext(matrix=result, provenance=provenance)


def annotate_probes(
    ctx: PipelineContext,
    resolver: ProbeAnnotationResolver,
    config: Optional[PipelineConfig] = None,
) -> PipelineContext:
    """
    Drop control probes, resolve annotations, drop unresolved probes.

    Unresolved probes are AnnotationResolutionGaps: counted and logged, never
    fatal.
    """
    config = config or PipelineConfig()
    matrix = ctx.matrix

    control_filter = ControlProbeFilter(prefixes=config.annotation.control_prefixes)
    keep_control = control_filter.keep_mask(matrix.feature_ids)
    matrix = matrix.select_features(keep_control)
    if control_filter.n_filtered_:
        logger.info(f"Dropped {control_filter.n_filtered_} control probes")

    cached = resolver if isinstance(resolver, CachedProbeResolver) else CachedProbeResolver(resolver)
    probe_ids = [str(p) for p in matrix.feature_ids]
    annotations = cached.resolve(probe_ids)
    annotations = annotations.reindex(probe_ids)
    annotations.index = matrix.feature_ids

    completeness = AnnotationCompletenessFilter()
    keep = completeness.keep_mask(matrix.feature_ids, annotations)
    gaps = completeness.gaps_

    annotated = BioMatrix(
        data=matrix.data,
        feature_ids=matrix.feature_ids,
        sample_ids=matrix.sample_ids,
        sample_metadata=matrix.sample_metadata,
        quality_flags=matrix.quality_flags,
        feature_metadata=annotations,
    ).select_features(keep)

    if annotated.n_features == 0:
        raise InputIntegrityError("annotation", None, "no probe could be annotated")

    provenance = replace(
        ctx.provenance,
        n_control_probes_dropped=int(control_filter.n_filtered_ or 0),
        n_annotation_gaps=len(gaps),
        annotation_gap_reasons=dict(sorted(Counter(g.reason for g in gaps).items())),
        n_annotation_lookups=cached.n_lookups_,
        n_probes_annotated=annotated.n_features,
    )
    return replace(ctx, matrix=annotated, provenance=provenance)


def normalize(ctx: PipelineContext, config: Optional[PipelineConfig] = None) -> PipelineContext:
    config = config or PipelineConfig()
    normalizer = ExpressionNormalizer(
        log_transform=config.normalization.log_transform,
        quantile=config.normalization.quantile,
    )
    return replace(ctx, matrix=normalizer(ctx.matrix))


def deduplicate(ctx: PipelineContext) -> PipelineContext:
    deduplicator = GeneDeduplicator()
    matrix = deduplicator(ctx.matrix)
    provenance = replace(
        ctx.provenance,
        n_genes=matrix.n_features,
        n_redundant_probes_dropped=int(deduplicator.n_dropped_),
    )
    return replace(ctx, matrix=matrix, provenance=provenance)


def remove_outliers(
    ctx: PipelineContext,
    config: Optional[PipelineConfig] = None,
    decomposer: Optional[Decomposer] = None,
) -> PipelineContext:
    config = config or PipelineConfig()
    matrix = ctx.matrix
    outlier_ids: tuple = ()
    threshold = None

    if config.outliers.enabled:
        detector = OutlierDetector(percentile=config.outliers.percentile, decomposer=decomposer)
        matrix = detector(matrix)
        outlier_ids = tuple(detector.outlier_ids_)
        threshold = detector.threshold_
    matrix.validate_alignment("outliers")

    stage_counts = {
        str(k): int(v)
        for k, v in matrix.sample_metadata['stage'].value_counts(sort=False).items()
    }
    provenance = replace(
        ctx.provenance,
        outlier_samples=outlier_ids,
        pc1_threshold=threshold,
        n_samples_analyzed=matrix.n_samples,
        stage_counts=stage_counts,
    )
    return replace(ctx, matrix=matrix, provenance=provenance)


def run_differential(
    ctx: PipelineContext,
    config: Optional[PipelineConfig] = None,
    shrinker: Optional[VarianceShrinker] = None,
) -> PipelineContext:
    config = config or PipelineConfig()
    result = DifferentialTester(alpha=config.differential.alpha, shrinker=shrinker).test(ctx.matrix)
    counts = {
        'alpha': result.alpha,
        'n_control': result.n_control,
        'n_disease': result.n_disease,
        'n_tested': result.n_tested,
        'n_degenerate': result.n_degenerate,
        'n_up': len(result.significant_genes(UP)),
        'n_down': len(result.significant_genes(DOWN)),
        'prior_df': result.d0,
        'prior_variance': result.s0_sq,
    }
    return replace(ctx, differential=result, provenance=replace(ctx.provenance, differential=counts))


def run_trend(ctx: PipelineContext, config: Optional[PipelineConfig] = None) -> PipelineContext:
    config = config or PipelineConfig()
    tester = TrendTester(
        alpha=config.trend.alpha,
        n_jobs=config.trend.n_jobs,
        chunk_size=config.trend.chunk_size,
    )
    result = tester.test(ctx.matrix)
    counts = {
        'alpha': result.alpha,
        'n_tested': result.n_tested,
        'n_degenerate': result.n_degenerate,
        'n_up': len(result.significant_genes(UP_REGULATED)),
        'n_down': len(result.significant_genes(DOWN_REGULATED)),
    }
    return replace(ctx, trend=result, provenance=replace(ctx.provenance, trend=counts))


def directional_gene_sets(ctx: PipelineContext) -> Dict[tuple, set]:
    """(method, direction) → significant genes, for both testers and their overlap."""
    differential = _require(ctx, 'differential', 'gene_sets')
    trend = _require(ctx, 'trend', 'gene_sets')

    sets: Dict[tuple, set] = {}
    for direction in DIRECTIONS:
        sets[('differential', direction)] = differential.significant_genes(_DIFFERENTIAL_LABELS[direction])
        sets[('trend', direction)] = trend.significant_genes(_TREND_LABELS[direction])
    for summary in ctx.overlap:
        sets[('overlap', summary.direction)] = set(summary.genes)
    return sets


def reconcile(ctx: PipelineContext) -> PipelineContext:
    differential = _require(ctx, 'differential', 'overlap')
    trend = _require(ctx, 'trend', 'overlap')

    summaries = OverlapReconciler(DIRECTIONS).reconcile(
        {d: differential.significant_genes(_DIFFERENTIAL_LABELS[d]) for d in DIRECTIONS},
        {d: trend.significant_genes(_TREND_LABELS[d]) for d in DIRECTIONS},
    )
    overlap_counts = {
        s.direction: {
            'n_intersection': s.n_intersection,
            'pct_intersection': s.pct_intersection,
        }
        for s in summaries
    }
    return replace(
        ctx,
        overlap=tuple(summaries),
        provenance=replace(ctx.provenance, overlap=overlap_counts),
    )


def summarize_pathways(ctx: PipelineContext, pathway_col: str = 'pathway') -> PipelineContext:
    differential = _require(ctx, 'differential', 'pathways')
    trend = _require(ctx, 'trend', 'pathways')

    annotations = ctx.matrix.feature_metadata
    if annotations is None or pathway_col not in annotations.columns:
        return ctx
    summary = pathway_summary_table(annotations[pathway_col], differential, trend)
    if summary.empty:
        logger.info("No pathway tags on the tested genes; pathway summary skipped")
        return ctx
    return replace(ctx, pathway_summary=summary)


def enrich(ctx: PipelineContext, client: EnrichmentClient) -> PipelineContext:
    """Send each non-empty directional gene set to the enrichment collaborator."""
    background = {str(g) for g in ctx.matrix.feature_ids}
    results: Dict[tuple, List[EnrichmentRecord]] = {}
    for key, genes in sorted(directional_gene_sets(ctx).items()):
        if not genes:
            logger.info(f"Skipping enrichment for empty gene set {key[0]}/{key[1]}")
            continue
        records = client.enrich(genes, background=background)
        logger.info(f"Enrichment {key[0]}/{key[1]}: {len(records)} terms for {len(genes)} genes")
        results[key] = records
    return replace(ctx, enrichment=results)


def run_pipeline(
    matrix: BioMatrix,
    raw_metadata: pd.DataFrame | Sequence[Mapping[str, Any]],
    resolver: ProbeAnnotationResolver,
    config: Optional[PipelineConfig] = None,
    enrichment_client: Optional[EnrichmentClient] = None,
    decomposer: Optional[Decomposer] = None,
    shrinker: Optional[VarianceShrinker] = None,
) -> PipelineContext:
    """
    Run every stage in order.

    Args:
        matrix: Raw probes × samples intensities
        raw_metadata: Raw per-sample records
        resolver: Probe annotation collaborator (wrapped in a per-run cache)
        config: Pipeline settings (defaults when None)
        enrichment_client: Optional enrichment collaborator
        decomposer: Optional PC1 provider for the outlier screen
        shrinker: Optional variance moderation for the two-group test

    Returns:
        Final PipelineContext
    """
    config = config or PipelineConfig()

    ctx = start_context(matrix, raw_metadata, config)
    ctx = annotate_probes(ctx, resolver, config)
    ctx = normalize(ctx, config)
    ctx = deduplicate(ctx)
    ctx = remove_outliers(ctx, config, decomposer)
    ctx = run_differential(ctx, config, shrinker)
    ctx = run_trend(ctx, config)
    ctx = reconcile(ctx)
    ctx = summarize_pathways(ctx)
    if enrichment_client is not None:
        ctx = enrich(ctx, enrichment_client)

    logger.info(
        f"Run complete: {ctx.provenance.n_genes} genes × {ctx.provenance.n_samples_analyzed} samples analyzed"
    )
    return ctx


def write_outputs(ctx: PipelineContext, output_dir: Path, top_n: int = 50) -> list[Path]:
    """Write every result table of a finished run into ``output_dir``."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    paths += writers.write_differential(_require(ctx, 'differential', 'write'), output_dir, top_n=top_n)
    paths += writers.write_trend(_require(ctx, 'trend', 'write'), output_dir)
    paths.append(writers.write_overlap(list(ctx.overlap), output_dir))
    paths += writers.write_gene_sets(directional_gene_sets(ctx), output_dir)
    if ctx.pathway_summary is not None:
        paths.append(writers.write_pathway_summary(ctx.pathway_summary, output_dir))
    for (method, direction), records in sorted(ctx.enrichment.items()):
        paths.append(writers.write_enrichment(records, output_dir, method, direction))
    paths.append(writers.write_provenance(ctx.provenance.to_dict(), output_dir))
    return paths


def _parameters(config: PipelineConfig) -> Dict[str, Any]:
    return {
        'control_prefixes': list(config.annotation.control_prefixes),
        'log_transform': config.normalization.log_transform,
        'quantile_normalization': config.normalization.quantile,
        'outlier_screen': config.outliers.enabled,
        'outlier_percentile': config.outliers.percentile,
        'differential_alpha': config.differential.alpha,
        'trend_alpha': config.trend.alpha,
    }
