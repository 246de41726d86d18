"""
Error taxonomy for the Braak-stage analysis pipeline.

Two kinds of failure abort a run:

    InputIntegrityError:
        Non-positive intensities, misaligned sample/matrix identifiers,
        duplicate gene symbols after deduplication, malformed metadata.
        Always fatal, no partial output.

    ExternalServiceFailure:
        An annotation or enrichment collaborator could not be reached after
        all retries. Fatal, since downstream interpretation tables would
        otherwise be silently incomplete.

Two kinds are recovered locally and reported:

    AnnotationResolutionGap:
        A probe that failed external resolution. Excluded from analysis,
        counted in the run provenance.

    StatisticalDegeneracy:
        A gene that cannot be tested (zero variance, empty comparison group).
        Kept in the output table with NaN p-values and a note.

Examples:
    >>> from braaktrend.core.errors import InputIntegrityError
    >>> raise InputIntegrityError("normalization", "PROBE_17/GSM001", "intensity <= 0")
    Traceback (most recent call last):
    ...
    InputIntegrityError: [normalization] PROBE_17/GSM001: intensity <= 0
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

__all__ = [
    'BraakTrendError',
    'InputIntegrityError',
    'ExternalServiceFailure',
    'AnnotationResolutionGap',
    'StatisticalDegeneracy',
]


class BraakTrendError(Exception):
    """Base class for fatal pipeline errors."""


class InputIntegrityError(BraakTrendError):
    """
    Fatal violation of an input or alignment invariant.

    Attributes:
        stage: Pipeline stage that detected the violation
        record: Offending record (sample id, probe id, gene symbol, ...)
        reason: Human-readable description
    """

    def __init__(self, stage: str, record: str | None, reason: str):
        self.stage = stage
        self.record = record
        self.reason = reason
        where = f" {record}:" if record is not None else ""
        super().__init__(f"[{stage}]{where} {reason}")


class ExternalServiceFailure(BraakTrendError):
    """
    An external collaborator failed after exhausting retries.

    Attributes:
        service: Name of the collaborator (e.g. "mygene", "gprofiler")
        attempts: Number of attempts made
    """

    def __init__(self, service: str, attempts: int, cause: Exception | None = None):
        self.service = service
        self.attempts = attempts
        self.cause = cause
        msg = f"{service} unavailable after {attempts} attempts"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


@dataclass(frozen=True)
class AnnotationResolutionGap:
    """A probe excluded because it could not be annotated."""

    probe_id: str
    reason: str


class StatisticalDegeneracy(str, Enum):
    """Reasons a gene was skipped by a tester."""

    ZERO_VARIANCE = "zero_variance"
    EMPTY_GROUP = "empty_group"
    SINGLE_GROUP = "single_group"
