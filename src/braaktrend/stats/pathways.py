"""
Pathway-category roll-up of per-gene test results.

Genes annotated with a pathway category are grouped and, per category, the
number of genes tested, the number called Up/Down by each tester and the mean
log2 fold change are reported. Genes without a pathway tag are left out.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from braaktrend.stats.differential import DOWN, UP, DifferentialResult
from braaktrend.stats.trend import DOWN_REGULATED, UP_REGULATED, TrendResult

__all__ = ['PATHWAY_COLUMNS', 'summarize_pathways']

PATHWAY_COLUMNS = [
    'pathway', 'n_genes',
    'n_differential_up', 'n_differential_down',
    'n_trend_up', 'n_trend_down',
    'mean_log2fc',
]


def summarize_pathways(
    pathways: pd.Series,
    differential: DifferentialResult,
    trend: TrendResult,
) -> pd.DataFrame:
    """
    Args:
        pathways: Pathway category per gene symbol (index = gene)
        differential: Two-group test result
        trend: Trend test result

    Returns:
        DataFrame with PATHWAY_COLUMNS sorted by pathway name
    """
    tagged = pathways.dropna().astype(str)
    tagged = tagged[tagged.str.strip() != ""]
    if tagged.empty:
        return pd.DataFrame(columns=PATHWAY_COLUMNS)

    diff = differential.table.set_index('gene')
    trd = trend.table.set_index('gene')
    genes = tagged.index.intersection(diff.index)

    frame = pd.DataFrame({
        'pathway': tagged.loc[genes].values,
        'log2fc': diff.loc[genes, 'log2fc'].values,
        'diff_up': (diff.loc[genes, 'direction'] == UP).values,
        'diff_down': (diff.loc[genes, 'direction'] == DOWN).values,
        'trend_up': (trd.loc[genes, 'significant'] & (trd.loc[genes, 'direction'] == UP_REGULATED)).values,
        'trend_down': (trd.loc[genes, 'significant'] & (trd.loc[genes, 'direction'] == DOWN_REGULATED)).values,
    })

    grouped = frame.groupby('pathway', sort=True)
    summary = pd.DataFrame({
        'n_genes': grouped.size(),
        'n_differential_up': grouped['diff_up'].sum().astype(int),
        'n_differential_down': grouped['diff_down'].sum().astype(int),
        'n_trend_up': grouped['trend_up'].sum().astype(int),
        'n_trend_down': grouped['trend_down'].sum().astype(int),
        'mean_log2fc': grouped['log2fc'].mean().astype(np.float64),
    })
    summary.index.name = 'pathway'
    return summary.reset_index()[PATHWAY_COLUMNS]
