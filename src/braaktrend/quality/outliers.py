"""
Principal-component screening of outlier arrays.

Samples are observations and genes are variables. Each gene is standardized
to zero mean and unit variance across samples, the first principal component
score is computed for every sample, and a sample is flagged when its absolute
PC1 score is strictly greater than the 99th percentile of the absolute PC1
scores of all samples.

The cut is a percentile of |PC1|, not "the top 1% of samples": depending on
the symmetry of the score distribution it can flag more or fewer than 1% of
arrays. Flagged samples are removed from the matrix and the sample table
together and alignment is re-validated.

The decomposition itself sits behind the Decomposer interface; the default
uses scikit-learn's full-SVD PCA, which is deterministic.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
import pandas as pd

from braaktrend.core.biomatrix import BioMatrix
from braaktrend.core.transform import Transform

logger = logging.getLogger(__name__)

__all__ = [
    'Decomposer',
    'SklearnPCADecomposer',
    'standardize_genes',
    'pc1_outlier_mask',
    'OutlierDetector',
]


class Decomposer(ABC):
    """Capability interface: first principal-component scores."""

    @abstractmethod
    def first_component_scores(self, X: np.ndarray) -> np.ndarray:
        """
        Args:
            X: (n_samples, n_variables) standardized matrix

        Returns:
            PC1 score per sample, shape (n_samples,)
        """


class SklearnPCADecomposer(Decomposer):
    """scikit-learn PCA with the full LAPACK SVD solver."""

    def first_component_scores(self, X: np.ndarray) -> np.ndarray:
        from sklearn.decomposition import PCA

        pca = PCA(n_components=1, svd_solver='full')
        return pca.fit_transform(X)[:, 0]


def standardize_genes(data: np.ndarray) -> np.ndarray:
    """
    Standardize each gene across samples; returns (n_samples, n_genes).

    Genes with zero variance carry no information for PC1 and are dropped.
    """
    from sklearn.preprocessing import StandardScaler

    X = np.asarray(data, dtype=np.float64).T
    variable = X.std(axis=0) > 0
    if not variable.any():
        return np.zeros((X.shape[0], 0))
    return StandardScaler().fit_transform(X[:, variable])


def pc1_outlier_mask(
    data: np.ndarray,
    percentile: float = 99.0,
    decomposer: Optional[Decomposer] = None,
) -> tuple[np.ndarray, np.ndarray, float]:
    """
    Flag samples whose |PC1| exceeds a percentile of |PC1|.

    Args:
        data: (n_genes, n_samples) expression matrix
        percentile: Percentile of the absolute scores used as the cut
        decomposer: PC1 provider (default SklearnPCADecomposer)

    Returns:
        Tuple (outlier_mask, pc1_scores, threshold)
    """
    decomposer = decomposer or SklearnPCADecomposer()
    X = standardize_genes(data)

    if X.shape[1] == 0:
        n = X.shape[0]
        return np.zeros(n, dtype=bool), np.zeros(n), 0.0

    scores = np.asarray(decomposer.first_component_scores(X), dtype=np.float64)
    abs_scores = np.abs(scores)
    threshold = float(np.percentile(abs_scores, percentile))
    return abs_scores > threshold, scores, threshold


class OutlierDetector(Transform):
    """
    Remove arrays with extreme first principal-component scores.

    Args:
        percentile: Percentile of |PC1| used as the cut (default: 99)
        decomposer: PC1 provider (default: scikit-learn PCA)

    Attributes (after apply):
        outlier_ids_: Sample ids removed
        pc1_scores_: Series of PC1 scores for all input samples
        threshold_: |PC1| cut value
    """

    def __init__(self, percentile: float = 99.0, decomposer: Optional[Decomposer] = None):
        if not 0 < percentile <= 100:
            raise ValueError(f"percentile must be in (0, 100], got {percentile}")
        super().__init__(name="OutlierDetector", params={"percentile": percentile})
        self.percentile = percentile
        self.decomposer = decomposer or SklearnPCADecomposer()
        self.outlier_ids_: list[str] = []
        self.pc1_scores_: Optional[pd.Series] = None
        self.threshold_: Optional[float] = None

    def validate(self, matrix: BioMatrix) -> list[str]:
        errors = super().validate(matrix)
        if matrix.n_samples < 3:
            errors.append(f"PCA screening needs at least 3 samples, got {matrix.n_samples}")
        if np.isnan(matrix.data).any():
            errors.append("Matrix contains missing values")
        return errors

    def apply(self, matrix: BioMatrix) -> BioMatrix:
        mask, scores, threshold = pc1_outlier_mask(
            matrix.data, self.percentile, self.decomposer
        )
        self.pc1_scores_ = pd.Series(scores, index=matrix.sample_ids, name='pc1')
        self.threshold_ = threshold
        self.outlier_ids_ = [str(s) for s in matrix.sample_ids[mask]]

        if self.outlier_ids_:
            logger.warning(
                f"Removing {len(self.outlier_ids_)} outlier samples with "
                f"|PC1| > {threshold:.3f}: {self.outlier_ids_}"
            )
        else:
            logger.info("No outlier samples detected")

        result = matrix.select_samples(~mask)
        result.validate_alignment(self.name)
        return result
