"""
Cross-method reconciliation of significant gene sets.

Each tester's significant genes are split into Up and Down by that tester's
own direction call. For each direction the two sets are intersected and the
overlap is reported relative to the SMALLER of the two sets:

    pct = 100 × |A ∩ B| / min(|A|, |B|)

This is not a Jaccard index; a small set fully contained in a large one
reports 100%. When either set is empty the percentage is 0.0.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

import pandas as pd

logger = logging.getLogger(__name__)

__all__ = ['OVERLAP_COLUMNS', 'OverlapSummary', 'OverlapReconciler', 'overlap_percentage']

OVERLAP_COLUMNS = ['direction', 'n_differential', 'n_trend', 'n_intersection', 'pct_intersection']


def overlap_percentage(a: set, b: set) -> float:
    """Intersection size as a percentage of the smaller set (0.0 if either is empty)."""
    denominator = min(len(a), len(b))
    if denominator == 0:
        return 0.0
    return 100.0 * len(a & b) / denominator


@dataclass(frozen=True)
class OverlapSummary:
    """
    Overlap of one direction between the two testers.

    Attributes:
        direction: 'Up' or 'Down'
        n_differential: Significant genes in this direction, two-group test
        n_trend: Significant genes in this direction, trend test
        n_intersection: Genes called by both
        pct_intersection: 100 × n_intersection / min(n_differential, n_trend)
        genes: The intersecting genes, sorted
    """

    direction: str
    n_differential: int
    n_trend: int
    n_intersection: int
    pct_intersection: float
    genes: tuple[str, ...] = field(default=())


class OverlapReconciler:
    """
    Compare directional gene sets from the differential and trend testers.

    Args:
        directions: Direction keys to report, in output order

    Examples:
        >>> reconciler = OverlapReconciler()
        >>> summaries = reconciler.reconcile(
        ...     {'Up': {'APP', 'MAPT'}, 'Down': set()},
        ...     {'Up': {'MAPT'}, 'Down': {'SNAP25'}},
        ... )
        >>> summaries[0].pct_intersection
        100.0
    """

    def __init__(self, directions: Iterable[str] = ("Up", "Down")):
        self.directions = tuple(directions)

    def reconcile(
        self,
        differential_sets: Mapping[str, set[str]],
        trend_sets: Mapping[str, set[str]],
    ) -> list[OverlapSummary]:
        """
        Args:
            differential_sets: direction → significant genes of the two-group test
            trend_sets: direction → significant genes of the trend test

        Returns:
            One OverlapSummary per direction, in ``self.directions`` order
        """
        summaries = []
        for direction in self.directions:
            a = set(differential_sets.get(direction, set()))
            b = set(trend_sets.get(direction, set()))
            shared = a & b
            summary = OverlapSummary(
                direction=direction,
                n_differential=len(a),
                n_trend=len(b),
                n_intersection=len(shared),
                pct_intersection=overlap_percentage(a, b),
                genes=tuple(sorted(shared)),
            )
            logger.info(
                f"{direction}: {summary.n_differential} differential, {summary.n_trend} trend, "
                f"{summary.n_intersection} shared ({summary.pct_intersection:.1f}% of smaller set)"
            )
            summaries.append(summary)
        return summaries

    @staticmethod
    def to_frame(summaries: list[OverlapSummary]) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    'direction': s.direction,
                    'n_differential': s.n_differential,
                    'n_trend': s.n_trend,
                    'n_intersection': s.n_intersection,
                    'pct_intersection': s.pct_intersection,
                }
                for s in summaries
            ],
            columns=OVERLAP_COLUMNS,
        )
