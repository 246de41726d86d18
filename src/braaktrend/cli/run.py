"""
braaktrend run - full Braak-stage analysis from raw intensities.

Usage:
    braaktrend run --expression GSE106241_series_matrix.tsv \\
        --metadata GSE106241_samples.csv \\
        --annotation GPL24170.tsv \\
        --output results/
"""

import argparse
import logging
import sys
from pathlib import Path

from braaktrend.cli._validators import _positive_int, _worker_count
from braaktrend.core.errors import BraakTrendError


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the run subcommand."""
    parser = subparsers.add_parser(
        "run",
        help="Run the full differential + trend analysis",
        description="Normalize, deduplicate, screen outliers, then run the two-group "
                    "and Braak-stage trend tests and reconcile their gene sets",
    )

    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (optional, CLI args override config values)")
    parser.add_argument("--expression", type=Path, default=None,
                        help="Expression matrix CSV/TSV (probes x samples, first column = probe id)")
    parser.add_argument("--metadata", type=Path, default=None,
                        help="Sample metadata CSV/TSV (one row per sample)")

    source = parser.add_mutually_exclusive_group()
    source.add_argument("--annotation", type=Path, default=None,
                        help="Platform probe annotation table (CSV/TSV)")
    source.add_argument("--mygene", action="store_true", default=False,
                        help="Resolve probes through mygene.info instead of a local table")

    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output directory")
    parser.add_argument("--n-jobs", type=_worker_count, default=None,
                        help="Parallel workers for the trend test (default: 1, -1 = all cores)")
    parser.add_argument("--top-n", type=_positive_int, default=None,
                        help="Rows in differential_top.csv (default: 50)")

    enrichment = parser.add_mutually_exclusive_group()
    enrichment.add_argument("--gene-sets", type=Path, default=None,
                            help="GMT file for local hypergeometric enrichment")
    enrichment.add_argument("--gprofiler", action="store_true", default=False,
                            help="Run enrichment through the g:Profiler web service")

    parser.add_argument("--verbose", "-v", action="store_true", default=False,
                        help="Debug logging")

    parser.set_defaults(func=run_analysis)


def _build_resolver(config):
    from braaktrend.annotation.probes import MyGeneProbeResolver, TableProbeResolver
    from braaktrend.utils.retry import RetryPolicy

    annotation = config.annotation
    if annotation.source == 'mygene':
        return MyGeneProbeResolver(
            species=annotation.species,
            batch_size=annotation.batch_size,
            retry_policy=RetryPolicy(annotation.max_retries, annotation.backoff_factor),
        )
    if annotation.path is None:
        raise ValueError("--annotation (or annotation.path in the config) is required unless --mygene is set")
    return TableProbeResolver.from_file(annotation.path, column_map=annotation.column_map)


def _build_enrichment_client(config):
    from braaktrend.annotation.enrichment import (
        GProfilerEnrichmentClient,
        HypergeometricEnrichmentClient,
        load_gmt,
    )
    from braaktrend.utils.retry import RetryPolicy

    enrichment = config.enrichment
    if enrichment.provider == 'hypergeometric':
        return HypergeometricEnrichmentClient(
            load_gmt(enrichment.gene_sets), min_count=enrichment.min_count
        )
    if enrichment.provider == 'gprofiler':
        return GProfilerEnrichmentClient(
            organism=enrichment.organism,
            sources=enrichment.sources,
            threshold=enrichment.threshold,
            retry_policy=RetryPolicy(enrichment.max_retries, enrichment.backoff_factor),
        )
    return None


def run_analysis(args: argparse.Namespace) -> int:
    """Execute the run command."""
    from braaktrend.cli.config import (
        PipelineConfig,
        config_from_dict,
        load_config,
        merge_config_with_args,
    )

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    logger = logging.getLogger(__name__)

    try:
        config = config_from_dict(load_config(args.config)) if args.config else PipelineConfig()
        cli_args = getattr(args, 'argv', None)
        if cli_args is None:
            cli_args = sys.argv[2:]
        config = merge_config_with_args(config, args, cli_args)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Config file error: {e}")
        return 1

    for name in ('expression', 'metadata', 'output'):
        if getattr(config, name) is None:
            logger.error(f"--{name} is required (via CLI or config file)")
            return 1

    from braaktrend.io.loaders import load_expression_matrix, read_table
    from braaktrend.pipeline import run_pipeline, write_outputs

    try:
        resolver = _build_resolver(config)
        client = _build_enrichment_client(config)

        logger.info(f"Loading expression matrix from {config.expression}")
        matrix = load_expression_matrix(config.expression)
        raw_metadata = read_table(config.metadata)

        ctx = run_pipeline(matrix, raw_metadata, resolver, config, enrichment_client=client)
        paths = write_outputs(ctx, config.output, top_n=config.differential.top_n)
    except BraakTrendError as e:
        logger.error(f"Run aborted: {e}")
        return 1
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Input error: {e}")
        return 1

    logger.info(f"Wrote {len(paths)} files to {config.output}")
    return 0
