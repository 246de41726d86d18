"""
Base class for immutable matrix preprocessing steps.

Each preprocessing stage (normalization, deduplication, outlier removal) is a
Transform: a pure function from BioMatrix to BioMatrix parameterized by a
small dict of settings. Preconditions are checked by ``validate`` and any
violation aborts the run with an InputIntegrityError naming the stage.

Examples:
    >>> from braaktrend.core.transform import Transform
    >>>
    >>> class Centering(Transform):
    ...     def __init__(self):
    ...         super().__init__(name="Centering", params={})
    ...
    ...     def apply(self, matrix):
    ...         centered = matrix.data - matrix.data.mean(axis=1, keepdims=True)
    ...         return matrix.with_data(centered)
    >>>
    >>> result = Centering()(matrix)   # validate + apply
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING

from braaktrend.core.errors import InputIntegrityError

if TYPE_CHECKING:
    from braaktrend.core.biomatrix import BioMatrix

__all__ = ['Transform']


class Transform(ABC):
    """
    Abstract base class for all matrix transformations.

    Transformations never modify their input; ``apply`` returns a new
    BioMatrix. Parameters are kept in ``params`` so they can be written to
    the run provenance.

    Attributes:
        name: Stage name used in logs and error messages
        params: JSON-serializable parameters of this stage
    """

    def __init__(self, name: str, params: dict[str, Any]) -> None:
        self.name = name
        self.params = params

    @abstractmethod
    def apply(self, matrix: BioMatrix) -> BioMatrix:
        """Execute the transformation and return a new matrix."""

    def validate(self, matrix: BioMatrix) -> list[str]:
        """
        Check preconditions before applying the transformation.

        Subclasses override and call ``super().validate()`` first.

        Returns:
            List of error messages (empty list = valid)
        """
        errors: list[str] = []

        if matrix.data.size == 0:
            errors.append("Cannot process empty matrix")

        return errors

    def __call__(self, matrix: BioMatrix) -> BioMatrix:
        """Validate, then apply. Validation failures are fatal."""
        errors = self.validate(matrix)
        if errors:
            raise InputIntegrityError(self.name, None, "; ".join(errors))
        return self.apply(matrix)

    def __repr__(self) -> str:
        params_str = ", ".join(f"{k}={v}" for k, v in self.params.items())
        return f"{self.name}({params_str})"
