"""
Writers for the pipeline's result tables.

All outputs are written so that two runs on identical inputs produce
byte-identical files: rows are stably sorted on explicit keys, floats use a
fixed format, line endings are '\\n' and the provenance JSON has sorted keys
and no timestamps.

Output Files (inside the output directory):
    differential.csv         all genes, two-group test, by |log2fc| desc
    differential_top.csv     top-N rows of the above
    trend.csv                all genes, trend test, by p-value
    trend_significant.csv    gene, adj_p_value, direction for significant genes
    overlap.csv              per-direction overlap of the two testers
    pathway_summary.csv      per-pathway counts (when pathway tags exist)
    gene_sets/{method}_{direction}.txt
    enrichment_{method}_{direction}.csv
    provenance.json
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Iterable, List, Mapping

import numpy as np
import pandas as pd

from braaktrend.annotation.enrichment import EnrichmentRecord, records_to_frame
from braaktrend.stats.differential import DIFFERENTIAL_COLUMNS, DifferentialResult
from braaktrend.stats.overlap import OverlapReconciler, OverlapSummary
from braaktrend.stats.trend import TREND_COLUMNS, TrendResult

logger = logging.getLogger(__name__)

__all__ = [
    'FLOAT_FORMAT',
    'write_table',
    'write_differential',
    'write_trend',
    'write_overlap',
    'write_gene_sets',
    'write_enrichment',
    'write_pathway_summary',
    'write_provenance',
]

FLOAT_FORMAT = '%.10g'


def write_table(df: pd.DataFrame, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False, float_format=FLOAT_FORMAT, lineterminator='\n')
    logger.info(f"Wrote {len(df)} rows to {path}")
    return path


def sort_differential(table: pd.DataFrame) -> pd.DataFrame:
    """Order by |log2fc| descending, then gene; untested genes last."""
    ordered = table.assign(_abs=table['log2fc'].abs())
    ordered = ordered.sort_values('gene', kind='mergesort')
    ordered = ordered.sort_values('_abs', ascending=False, kind='mergesort', na_position='last')
    return ordered.drop(columns='_abs').reset_index(drop=True)


def write_differential(result: DifferentialResult, output_dir: Path, top_n: int = 50) -> list[Path]:
    output_dir = Path(output_dir)
    ordered = sort_differential(result.table)[DIFFERENTIAL_COLUMNS]
    return [
        write_table(ordered, output_dir / 'differential.csv'),
        write_table(ordered.head(top_n), output_dir / 'differential_top.csv'),
    ]


def write_trend(result: TrendResult, output_dir: Path) -> list[Path]:
    output_dir = Path(output_dir)
    ordered = result.table.sort_values('gene', kind='mergesort')
    ordered = ordered.sort_values('p_value', kind='mergesort', na_position='last')
    ordered = ordered.reset_index(drop=True)[TREND_COLUMNS]

    significant = ordered[ordered['significant']][['gene', 'adj_p_value', 'direction']]
    return [
        write_table(ordered, output_dir / 'trend.csv'),
        write_table(significant, output_dir / 'trend_significant.csv'),
    ]


def write_overlap(summaries: List[OverlapSummary], output_dir: Path) -> Path:
    return write_table(OverlapReconciler.to_frame(summaries), Path(output_dir) / 'overlap.csv')


def gene_set_path(output_dir: Path, method: str, direction: str) -> Path:
    return Path(output_dir) / 'gene_sets' / f"{method}_{direction.lower()}.txt"


def write_gene_sets(
    gene_sets: Mapping[tuple[str, str], Iterable[str]],
    output_dir: Path,
) -> list[Path]:
    """
    Write one sorted gene list per (method, direction).

    Args:
        gene_sets: (method, direction) → genes
        output_dir: Output directory; files go into its gene_sets/ folder
    """
    paths = []
    for (method, direction) in sorted(gene_sets):
        path = gene_set_path(output_dir, method, direction)
        path.parent.mkdir(parents=True, exist_ok=True)
        genes = sorted(gene_sets[(method, direction)])
        with open(path, 'w', newline='\n') as f:
            for gene in genes:
                f.write(f"{gene}\n")
        paths.append(path)
    return paths


def write_enrichment(
    records: List[EnrichmentRecord],
    output_dir: Path,
    method: str,
    direction: str,
) -> Path:
    path = Path(output_dir) / f"enrichment_{method}_{direction.lower()}.csv"
    return write_table(records_to_frame(records), path)


def write_pathway_summary(summary: pd.DataFrame, output_dir: Path) -> Path:
    return write_table(summary, Path(output_dir) / 'pathway_summary.csv')


def _json_safe(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else value
        return [_json_safe(v) for v in items]
    if isinstance(value, (np.integer,)):
        return int(value)
    if isinstance(value, (np.floating, float)):
        value = float(value)
        return value if math.isfinite(value) else None
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, Path):
        return str(value)
    return value


def write_provenance(provenance: Mapping[str, Any], output_dir: Path) -> Path:
    """Write run provenance as JSON with sorted keys; non-finite floats become null."""
    path = Path(output_dir) / 'provenance.json'
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', newline='\n') as f:
        json.dump(_json_safe(provenance), f, indent=2, sort_keys=True)
        f.write('\n')
    logger.info(f"Wrote run provenance to {path}")
    return path
