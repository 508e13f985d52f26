"""
Mahalanobis Distance Model

Gaussian statistical model over D-dimensional feature vectors. Answers
distance queries of the form:

    d(x) = sqrt((x - μ)ᵀ Σ⁻¹ (x - μ))

The unsquared distance is used throughout, so the speed term built on top
of it reads directly as f(x) = T - d(x).

The inverse covariance is computed lazily from a Cholesky factorization and
cached until the covariance is replaced.
"""

import logging
from typing import Optional, Sequence, Union

import numpy as np
from scipy import linalg

from ..exceptions import (
    DimensionMismatchError,
    SingularCovarianceError,
    UninitializedModelError,
)
from .config import MahalanobisConfig, SingularPolicy

logger = logging.getLogger(__name__)

ArrayLike = Union[np.ndarray, Sequence[float]]


class MahalanobisDistance:
    """
    Mahalanobis distance of feature vectors to a Gaussian distribution.

    The model holds a mean vector and a symmetric covariance matrix. Both
    are stored as read-only float64 copies; replacing the covariance
    invalidates the cached inverse.

    Example:
        >>> model = MahalanobisDistance(mean=[0.0, 0.0], covariance=np.eye(2))
        >>> model.evaluate([3.0, 4.0])
        5.0

        >>> # Original default state: zero mean, zero covariance
        >>> model = MahalanobisDistance.from_dimension(3)
        >>> model.is_singular
        True
    """

    def __init__(
        self,
        mean: Optional[ArrayLike] = None,
        covariance: Optional[ArrayLike] = None,
        config: Optional[MahalanobisConfig] = None
    ):
        """
        Initialize the distance model.

        Args:
            mean: Mean vector of length D. May be set later with set_mean().
            covariance: Covariance matrix (D, D). May be set later with set_covariance().
            config: Evaluation configuration. If None, uses defaults.
        """
        self.config = config or MahalanobisConfig()
        self._mean: Optional[np.ndarray] = None
        self._covariance: Optional[np.ndarray] = None
        self._inverse: Optional[np.ndarray] = None
        self._singular: Optional[bool] = None

        if mean is not None and covariance is not None:
            self.set_parameters(mean, covariance)
        elif mean is not None:
            self.set_mean(mean)
        elif covariance is not None:
            self.set_covariance(covariance)

    @classmethod
    def from_dimension(
        cls,
        dimension: int,
        config: Optional[MahalanobisConfig] = None
    ) -> 'MahalanobisDistance':
        """
        Create a model with zero mean and zero covariance.

        The zero covariance is singular, so evaluating this model follows
        config.singular_policy until a real covariance is set.

        Args:
            dimension: Feature space dimension D (>= 1)
            config: Evaluation configuration

        Returns:
            MahalanobisDistance in its default state
        """
        if dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {dimension}")
        return cls(
            mean=np.zeros(dimension),
            covariance=np.zeros((dimension, dimension)),
            config=config
        )

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    @property
    def mean(self) -> Optional[np.ndarray]:
        """Mean vector (D,), read-only. None if not set."""
        return self._mean

    @property
    def covariance(self) -> Optional[np.ndarray]:
        """Covariance matrix (D, D), read-only. None if not set."""
        return self._covariance

    def get_mean(self) -> Optional[np.ndarray]:
        return self._mean

    def get_covariance(self) -> Optional[np.ndarray]:
        return self._covariance

    @property
    def dimension(self) -> Optional[int]:
        """Feature space dimension D, or None before any parameter is set."""
        if self._mean is not None:
            return self._mean.shape[0]
        if self._covariance is not None:
            return self._covariance.shape[0]
        return None

    def set_mean(self, mean: ArrayLike):
        """
        Replace the mean vector.

        Args:
            mean: Vector of length D

        Raises:
            DimensionMismatchError: If a covariance is set and its size differs
            ValueError: If mean is not a finite 1-D vector
        """
        mean = self._validate_mean(mean)
        if self._covariance is not None and self._covariance.shape[0] != mean.shape[0]:
            raise DimensionMismatchError(
                f"Mean length {mean.shape[0]} doesn't match covariance "
                f"shape {self._covariance.shape}"
            )
        self._mean = mean

    def set_covariance(self, covariance: ArrayLike):
        """
        Replace the covariance matrix and invalidate the cached inverse.

        Args:
            covariance: Symmetric matrix of shape (D, D)

        Raises:
            DimensionMismatchError: If not square, or its size differs from the mean
            ValueError: If not symmetric or contains non-finite values
        """
        covariance = self._validate_covariance(covariance)
        if self._mean is not None and self._mean.shape[0] != covariance.shape[0]:
            raise DimensionMismatchError(
                f"Covariance shape {covariance.shape} doesn't match mean "
                f"length {self._mean.shape[0]}"
            )
        self._covariance = covariance
        self._invalidate()

    def set_parameters(self, mean: ArrayLike, covariance: ArrayLike):
        """
        Replace mean and covariance together.

        Allows changing the dimension of the model, which set_mean() and
        set_covariance() alone would reject.

        Raises:
            DimensionMismatchError: If mean and covariance sizes disagree
        """
        mean = self._validate_mean(mean)
        covariance = self._validate_covariance(covariance)
        if mean.shape[0] != covariance.shape[0]:
            raise DimensionMismatchError(
                f"Mean length {mean.shape[0]} doesn't match covariance "
                f"shape {covariance.shape}"
            )
        self._mean = mean
        self._covariance = covariance
        self._invalidate()

    @staticmethod
    def _validate_mean(mean: ArrayLike) -> np.ndarray:
        mean = np.array(mean, dtype=np.float64)
        if mean.ndim != 1 or mean.shape[0] == 0:
            raise ValueError(f"Mean must be a non-empty 1-D vector, got shape {mean.shape}")
        if not np.all(np.isfinite(mean)):
            raise ValueError("Mean contains non-finite values")
        mean.setflags(write=False)
        return mean

    def _validate_covariance(self, covariance: ArrayLike) -> np.ndarray:
        covariance = np.array(covariance, dtype=np.float64)
        if covariance.ndim != 2 or covariance.shape[0] != covariance.shape[1]:
            raise DimensionMismatchError(
                f"Covariance must be a square matrix, got shape {covariance.shape}"
            )
        if covariance.shape[0] == 0:
            raise ValueError("Covariance must be at least 1x1")
        if not np.all(np.isfinite(covariance)):
            raise ValueError("Covariance contains non-finite values")

        tol = self.config.symmetry_tolerance
        if not np.allclose(covariance, covariance.T, rtol=tol, atol=tol):
            raise ValueError("Covariance matrix must be symmetric")

        covariance.setflags(write=False)
        return covariance

    def _invalidate(self):
        if self._inverse is not None:
            logger.debug("Covariance replaced, dropping cached inverse")
        self._inverse = None
        self._singular = None

    # ------------------------------------------------------------------
    # Inverse covariance
    # ------------------------------------------------------------------

    def _require_parameters(self):
        if self._mean is None or self._covariance is None:
            missing = [
                name for name, value in
                (("mean", self._mean), ("covariance", self._covariance))
                if value is None
            ]
            raise UninitializedModelError(
                f"Model has no {' or '.join(missing)}. "
                f"Call set_mean() and set_covariance() first."
            )

    @property
    def is_singular(self) -> bool:
        """
        Whether the covariance is numerically singular.

        The smallest eigenvalue is compared against rcond times the largest
        eigenvalue magnitude. An all-zero matrix is singular.

        Raises:
            UninitializedModelError: If no covariance is set
            ValueError: If the covariance has significantly negative eigenvalues
        """
        if self._covariance is None:
            raise UninitializedModelError("Model has no covariance. Call set_covariance() first.")

        if self._singular is None:
            eigenvalues = linalg.eigvalsh(self._covariance)
            scale = np.abs(eigenvalues).max()
            cutoff = self.config.rcond * scale

            if scale > 0 and eigenvalues.min() < -cutoff:
                raise ValueError(
                    f"Covariance is not positive semi-definite "
                    f"(smallest eigenvalue {eigenvalues.min():.3e})"
                )

            self._singular = bool(scale == 0 or eigenvalues.min() <= cutoff)

        return self._singular

    @property
    def inverse_covariance(self) -> np.ndarray:
        """
        Cached inverse (or pseudo-inverse) of the covariance.

        Computed on first access after the covariance changes.

        Raises:
            UninitializedModelError: If mean or covariance is missing
            SingularCovarianceError: If singular under SingularPolicy.RAISE
        """
        self._require_parameters()
        if self._inverse is None:
            self._inverse = self._compute_inverse()
            self._inverse.setflags(write=False)
        return self._inverse

    def _compute_inverse(self) -> np.ndarray:
        covariance = self._covariance
        dimension = covariance.shape[0]

        if not self.is_singular:
            logger.debug("Computing inverse covariance (D=%d) by Cholesky", dimension)
            return self._cholesky_inverse(covariance)

        policy = self.config.singular_policy

        if policy is SingularPolicy.RAISE:
            raise SingularCovarianceError(
                "Covariance matrix is singular. Set a non-degenerate covariance "
                "or use SingularPolicy.PSEUDO_INVERSE / REGULARIZE."
            )

        if policy is SingularPolicy.PSEUDO_INVERSE:
            logger.warning("Covariance is singular, using pseudo-inverse")
            if not np.any(covariance):
                return np.zeros_like(covariance)
            return linalg.pinvh(covariance)

        # SingularPolicy.REGULARIZE
        diagonal_scale = np.abs(np.diag(covariance)).mean()
        ridge = self.config.regularization * (diagonal_scale if diagonal_scale > 0 else 1.0)
        logger.warning("Covariance is singular, adding ridge %.3e to the diagonal", ridge)
        return self._cholesky_inverse(covariance + ridge * np.eye(dimension))

    @staticmethod
    def _cholesky_inverse(covariance: np.ndarray) -> np.ndarray:
        try:
            factor = linalg.cho_factor(covariance, lower=True)
        except linalg.LinAlgError as exc:
            raise SingularCovarianceError(
                f"Cholesky factorization of the covariance failed: {exc}"
            ) from exc

        inverse = linalg.cho_solve(factor, np.eye(covariance.shape[0]))
        # Remove round-off asymmetry
        return (inverse + inverse.T) / 2.0

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _as_vectors(self, vectors: ArrayLike, ndim: int) -> np.ndarray:
        dimension = self.dimension
        if dimension is None:
            raise UninitializedModelError(
                "Model has no mean or covariance. Call set_mean() and set_covariance() first."
            )

        vectors = np.asarray(vectors, dtype=np.float64)
        if vectors.ndim != ndim or vectors.shape[-1] != dimension:
            expected = f"({dimension},)" if ndim == 1 else f"(N, {dimension})"
            raise DimensionMismatchError(
                f"Feature vectors must have shape {expected}, got {vectors.shape}"
            )

        self._require_parameters()
        return vectors

    def squared_distance(self, feature_vector: ArrayLike) -> float:
        """
        Squared Mahalanobis distance (x - μ)ᵀ Σ⁻¹ (x - μ), clipped at 0.

        Raises:
            DimensionMismatchError: If len(feature_vector) != D
        """
        diff = self._as_vectors(feature_vector, ndim=1) - self._mean
        value = float(diff @ self.inverse_covariance @ diff)
        return max(value, 0.0)

    def evaluate(self, feature_vector: ArrayLike) -> float:
        """
        Mahalanobis distance of one feature vector to the distribution.

        Args:
            feature_vector: Vector of length D

        Returns:
            distance: sqrt((x - μ)ᵀ Σ⁻¹ (x - μ)), always >= 0

        Raises:
            UninitializedModelError: If mean or covariance is missing
            DimensionMismatchError: If len(feature_vector) != D
            SingularCovarianceError: If singular under SingularPolicy.RAISE
        """
        return float(np.sqrt(self.squared_distance(feature_vector)))

    def evaluate_batch(self, vectors: ArrayLike) -> np.ndarray:
        """
        Mahalanobis distance for each row of an (N, D) array.

        Args:
            vectors: Feature vectors, shape (N, D)

        Returns:
            distances: Array of shape (N,), all >= 0
        """
        diffs = self._as_vectors(vectors, ndim=2) - self._mean
        squared = np.einsum('ij,ij->i', diffs @ self.inverse_covariance, diffs)
        return np.sqrt(np.maximum(squared, 0.0))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(dimension={self.dimension}, "
            f"mean={None if self._mean is None else self._mean.tolist()}, "
            f"covariance={None if self._covariance is None else self._covariance.tolist()}, "
            f"singular_policy={self.config.singular_policy.value})"
        )
