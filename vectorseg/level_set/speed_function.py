"""
Vector Threshold Speed Function for Level Set Segmentation.

Builds the speed term that drives a level set front toward structures in a
multi-channel image. Each pixel's feature vector x is compared with a
Gaussian model (mean μ, covariance Σ) and thresholded:

    f(x) = T - sqrt((x - μ)ᵀ Σ⁻¹ (x - μ))

Positive speed inside the statistical window (distance below T), negative
outside, so the front locks onto the window's boundary.

The level set solver is not part of this module. It depends only on the
SpeedSource interface: a speed image plus the evolution weights.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from numbers import Integral
from typing import Optional, Sequence, Tuple, Union

import numpy as np
from joblib import Parallel, delayed

from ..exceptions import DimensionMismatchError
from ..features import FeatureImage
from ..statistics import MahalanobisDistance
from .config import EvolutionWeights, SpeedFunctionConfig

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 1.8

# Weights before initialize(): propagate with the speed image, nothing else
CONSTRUCTION_WEIGHTS = EvolutionWeights(advection=0.0, propagation=1.0, curvature=0.0)

Radius = Union[int, Tuple[int, ...]]


# ============================================================================
# Interface
# ============================================================================

class SpeedSource(ABC):
    """
    Anything that turns a feature image into a scalar speed image.

    Level set solvers consume this interface: they call
    calculate_speed_image() before evolving and read the evolution weights
    when integrating the level set equation.
    """

    @abstractmethod
    def calculate_speed_image(
        self,
        feature_image: Union[FeatureImage, np.ndarray]
    ) -> np.ndarray:
        """
        Compute the speed image for a feature image.

        Args:
            feature_image: Feature image with shape (*spatial_shape, D)

        Returns:
            speed: Scalar array of shape spatial_shape
        """
        pass

    @property
    @abstractmethod
    def weights(self) -> EvolutionWeights:
        """Current evolution weights."""
        pass

    @property
    def advection_weight(self) -> float:
        return self.weights.advection

    @property
    def propagation_weight(self) -> float:
        return self.weights.propagation

    @property
    def curvature_weight(self) -> float:
        return self.weights.curvature


# ============================================================================
# Mahalanobis threshold implementation
# ============================================================================

class VectorThresholdSpeedFunction(SpeedSource):
    """
    Speed function f(x) = T - MahalanobisDistance(x).

    Owns its MahalanobisDistance model. If none is given, an empty model is
    created. While it stays empty, each speed image computation evaluates
    against a zero mean and zero covariance of the feature image's dimension
    without storing them. That default covariance is singular, so it is
    handled by the model's singular policy (SingularCovarianceError under
    the default policy).

    Example:
        >>> speed_fn = VectorThresholdSpeedFunction(threshold=2.0)
        >>> speed_fn.set_parameters([120.0, 80.0, 60.0], np.diag([25.0, 16.0, 9.0]))
        >>> speed_fn.initialize(radius=1)
        >>>
        >>> speed = speed_fn.calculate_speed_image(features)  # (H, W, 3) -> (H, W)
        >>> inside = speed > 0
        >>>
        >>> # Solver side
        >>> speed_fn.propagation_weight, speed_fn.curvature_weight
        (-1.0, 1.0)
    """

    def __init__(
        self,
        model: Optional[MahalanobisDistance] = None,
        threshold: float = DEFAULT_THRESHOLD,
        config: Optional[SpeedFunctionConfig] = None
    ):
        """
        Initialize the speed function.

        Args:
            model: Distance model. If None, an empty model is created.
            threshold: Distance at which the speed crosses zero (default: 1.8)
            config: Speed function configuration. If None, uses defaults.
        """
        self.config = config or SpeedFunctionConfig()
        self._model = model if model is not None else MahalanobisDistance(
            config=self.config.model_config
        )
        self._threshold = float(threshold)
        self._weights = CONSTRUCTION_WEIGHTS
        self._radius: Optional[Radius] = None
        self._speed_image: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Statistical model
    # ------------------------------------------------------------------

    @property
    def model(self) -> MahalanobisDistance:
        """The distance model owned by this speed function."""
        return self._model

    def set_mean(self, mean):
        self._model.set_mean(mean)

    def get_mean(self) -> Optional[np.ndarray]:
        return self._model.mean

    def set_covariance(self, covariance):
        self._model.set_covariance(covariance)

    def get_covariance(self) -> Optional[np.ndarray]:
        return self._model.covariance

    def set_parameters(self, mean, covariance):
        """
        Replace mean and covariance together.

        Unlike set_mean/set_covariance this may change the model dimension,
        e.g. when switching from RGB to two-channel features.
        """
        self._model.set_parameters(mean, covariance)

    # ------------------------------------------------------------------
    # Threshold and weights
    # ------------------------------------------------------------------

    @property
    def threshold(self) -> float:
        """Distance at which the speed crosses zero."""
        return self._threshold

    @threshold.setter
    def threshold(self, value: float):
        self._threshold = float(value)

    def set_threshold(self, threshold: float):
        self._threshold = float(threshold)

    def get_threshold(self) -> float:
        return self._threshold

    @property
    def weights(self) -> EvolutionWeights:
        return self._weights

    def set_weights(
        self,
        advection: Optional[float] = None,
        propagation: Optional[float] = None,
        curvature: Optional[float] = None
    ):
        """
        Override individual evolution weights.

        initialize() replaces all three weights, discarding these values.
        """
        changes = {
            name: float(value) for name, value in
            (('advection', advection), ('propagation', propagation), ('curvature', curvature))
            if value is not None
        }
        self._weights = replace(self._weights, **changes)

    def reverse_expansion_direction(self):
        """
        Flip the direction the front expands in.

        Negates the propagation and advection weights; curvature is unchanged.
        """
        self._weights = replace(
            self._weights,
            advection=-self._weights.advection,
            propagation=-self._weights.propagation
        )
        logger.debug("Expansion direction reversed: %s", self._weights)

    @property
    def radius(self) -> Optional[Radius]:
        """Neighborhood radius recorded by initialize(), None before."""
        return self._radius

    def initialize(self, radius: Union[int, Sequence[int]]):
        """
        Record the solver's neighborhood radius and set the evolution weights.

        The weights are overwritten with config.initial_weights (advection 0,
        propagation -1, curvature 1 by default). Weights set earlier are lost.

        Args:
            radius: Neighborhood radius, one int for every axis or one per axis

        Raises:
            ValueError: If any radius component is negative or not an integer
        """
        self._radius = self._validate_radius(radius)
        self._weights = self.config.initial_weights
        logger.debug("Initialized with radius %s, weights %s", self._radius, self._weights)

    @staticmethod
    def _validate_radius(radius: Union[int, Sequence[int]]) -> Radius:
        if isinstance(radius, Integral):
            components = (radius,)
        else:
            components = tuple(radius)
            if not components:
                raise ValueError("radius must not be empty")

        for component in components:
            if isinstance(component, bool) or not isinstance(component, Integral):
                raise ValueError(f"radius components must be integers, got {component!r}")
            if component < 0:
                raise ValueError(f"radius components must be >= 0, got {component}")

        if isinstance(radius, Integral):
            return int(radius)
        return tuple(int(component) for component in components)

    # ------------------------------------------------------------------
    # Speed image
    # ------------------------------------------------------------------

    def calculate_speed_image(
        self,
        feature_image: Union[FeatureImage, np.ndarray]
    ) -> np.ndarray:
        """
        Compute speed = threshold - MahalanobisDistance(x) for every pixel.

        The domain is evaluated in independent chunks of config.chunk_size
        pixels, in parallel threads when config.n_jobs != 1. A new array is
        returned on every call and every location is written.

        Args:
            feature_image: FeatureImage or array of shape (*spatial_shape, D)

        Returns:
            speed: float64 array of shape spatial_shape

        Raises:
            DimensionMismatchError: If D differs from the model dimension
            UninitializedModelError: If the model has a mean but no covariance
                                     (or the reverse)
            SingularCovarianceError: If the covariance is singular under
                                     SingularPolicy.RAISE
        """
        if not isinstance(feature_image, FeatureImage):
            feature_image = FeatureImage(feature_image)

        n_channels = feature_image.n_channels
        model = self._model
        if model.dimension is None:
            # Defaults live only for this run; the owned model stays unconfigured
            logger.debug("Model not configured, using zero mean/covariance for D=%d", n_channels)
            model = MahalanobisDistance.from_dimension(n_channels, config=model.config)

        if n_channels != model.dimension:
            raise DimensionMismatchError(
                f"Feature image has {n_channels} channels, model expects "
                f"{model.dimension}"
            )

        # Factorize once; workers then only read shared state
        model.inverse_covariance

        threshold = self._threshold
        vectors = feature_image.as_vectors()
        n_pixels = vectors.shape[0]
        speed = np.empty(n_pixels, dtype=np.float64)

        chunk_size = self.config.chunk_size
        chunks = [
            slice(start, min(start + chunk_size, n_pixels))
            for start in range(0, n_pixels, chunk_size)
        ]

        if self.config.n_jobs == 1 or len(chunks) <= 1:
            for chunk in chunks:
                _fill_chunk(model, speed, vectors, chunk, threshold)
        else:
            logger.debug(
                "Evaluating %d pixels in %d chunks on %d jobs",
                n_pixels, len(chunks), self.config.n_jobs
            )
            Parallel(n_jobs=self.config.n_jobs, require='sharedmem')(
                delayed(_fill_chunk)(model, speed, vectors, chunk, threshold)
                for chunk in chunks
            )

        self._speed_image = speed.reshape(feature_image.spatial_shape)
        return self._speed_image

    @property
    def speed_image(self) -> np.ndarray:
        """
        Speed image from the last calculate_speed_image() call.

        Raises:
            RuntimeError: If no speed image has been computed yet
        """
        if self._speed_image is None:
            raise RuntimeError("Speed image not computed. Call calculate_speed_image() first.")
        return self._speed_image

    def propagation_speed(self, index: Union[Sequence[int], int]) -> float:
        """
        Speed value at one spatial location of the last speed image.

        Args:
            index: Spatial index with one entry per spatial axis

        Returns:
            Speed at that location
        """
        speed_image = self.speed_image
        index = (index,) if np.isscalar(index) else tuple(index)
        if len(index) != speed_image.ndim:
            raise IndexError(
                f"Index {index} must have {speed_image.ndim} entries "
                f"for speed image shape {speed_image.shape}"
            )
        return float(speed_image[index])

    def __repr__(self) -> str:
        return (
            f"VectorThresholdSpeedFunction(threshold={self._threshold}, "
            f"weights={self._weights}, radius={self._radius}, model={self._model!r})"
        )


def _fill_chunk(
    model: MahalanobisDistance,
    speed: np.ndarray,
    vectors: np.ndarray,
    chunk: slice,
    threshold: float
):
    """Write threshold - distance for one slice of the flattened domain."""
    speed[chunk] = threshold - model.evaluate_batch(vectors[chunk])
