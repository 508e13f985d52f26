"""
Tests for the vector threshold speed function.

Validates:
    1. speed = threshold - MahalanobisDistance(x) on known inputs
    2. Output shape and full coverage of the image domain
    3. Threshold, weight and initialization behaviour
    4. Error propagation from the distance model
    5. Parallel evaluation matches serial evaluation
"""

import numpy as np
import pytest

from vectorseg.exceptions import (
    DimensionMismatchError,
    SingularCovarianceError,
    UninitializedModelError,
)
from vectorseg.features import FeatureImage
from vectorseg.level_set import (
    DEFAULT_THRESHOLD,
    EvolutionWeights,
    SpeedFunctionConfig,
    SpeedSource,
    VectorThresholdSpeedFunction,
)
from vectorseg.statistics import MahalanobisConfig, MahalanobisDistance, SingularPolicy


# ─────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────

@pytest.fixture
def rgb_speed_fn():
    """Speed function with a 3-channel model."""
    speed_fn = VectorThresholdSpeedFunction(threshold=2.0)
    speed_fn.set_mean([0.5, 0.4, 0.3])
    speed_fn.set_covariance(np.diag([0.04, 0.01, 0.09]))
    return speed_fn


@pytest.fixture
def rgb_image():
    rng = np.random.default_rng(7)
    return rng.uniform(0.0, 1.0, size=(6, 9, 3))


def _expected_speed(speed_fn, image):
    """Reference speed computed pixel by pixel."""
    expected = np.empty(image.shape[:-1])
    for index in np.ndindex(*image.shape[:-1]):
        expected[index] = speed_fn.threshold - speed_fn.model.evaluate(image[index])
    return expected


class TestSpeedImage:
    """Speed image values and shape."""

    def test_one_dimensional_scenario(self):
        """mean 5, variance 4, threshold 2: 9 -> 0, 5 -> 2, 13 -> -2."""
        speed_fn = VectorThresholdSpeedFunction(threshold=2.0)
        speed_fn.set_mean([5.0])
        speed_fn.set_covariance([[4.0]])

        speed = speed_fn.calculate_speed_image(np.array([[9.0], [5.0], [13.0]]))

        np.testing.assert_allclose(speed, [0.0, 2.0, -2.0], atol=1e-12)

    def test_scalar_image(self):
        """Single-channel 2-D image through FeatureImage.from_scalar_image."""
        speed_fn = VectorThresholdSpeedFunction(threshold=2.0)
        speed_fn.set_mean([5.0])
        speed_fn.set_covariance([[4.0]])
        image = FeatureImage.from_scalar_image(np.array([[9.0, 5.0], [13.0, 1.0]]))

        speed = speed_fn.calculate_speed_image(image)

        np.testing.assert_allclose(speed, [[0.0, 2.0], [-2.0, 0.0]], atol=1e-12)

    def test_speed_at_mean_is_threshold(self, rgb_speed_fn):
        image = np.tile([0.5, 0.4, 0.3], (4, 4, 1))

        speed = rgb_speed_fn.calculate_speed_image(image)

        np.testing.assert_array_equal(speed, np.full((4, 4), 2.0))

    def test_matches_per_pixel_evaluation(self, rgb_speed_fn, rgb_image):
        """Every location holds threshold - distance of its own vector."""
        speed = rgb_speed_fn.calculate_speed_image(rgb_image)

        assert speed.shape == (6, 9)
        np.testing.assert_allclose(speed, _expected_speed(rgb_speed_fn, rgb_image))

    def test_three_dimensional_domain(self):
        """Volumes and other spatial dimensions keep their shape."""
        rng = np.random.default_rng(11)
        image = rng.normal(size=(3, 4, 5, 2))
        speed_fn = VectorThresholdSpeedFunction()
        speed_fn.set_mean([0.0, 0.0])
        speed_fn.set_covariance([[1.0, 0.3], [0.3, 2.0]])

        speed = speed_fn.calculate_speed_image(image)

        assert speed.shape == (3, 4, 5)
        np.testing.assert_allclose(speed, _expected_speed(speed_fn, image))

    def test_threshold_shift(self, rgb_speed_fn, rgb_image):
        """Changing threshold t1 -> t2 shifts every speed by t2 - t1."""
        rgb_speed_fn.set_threshold(1.0)
        before = rgb_speed_fn.calculate_speed_image(rgb_image).copy()

        rgb_speed_fn.set_threshold(3.5)
        after = rgb_speed_fn.calculate_speed_image(rgb_image)

        np.testing.assert_allclose(after - before, 2.5)

    def test_fresh_array_each_call(self, rgb_speed_fn, rgb_image):
        first = rgb_speed_fn.calculate_speed_image(rgb_image)
        second = rgb_speed_fn.calculate_speed_image(rgb_image)

        assert first is not second
        assert rgb_speed_fn.speed_image is second

    def test_covariance_change_between_calls(self, rgb_speed_fn):
        """A new covariance is used by the next computation."""
        image = np.array([[[0.7, 0.4, 0.3]]])
        assert rgb_speed_fn.calculate_speed_image(image)[0, 0] == pytest.approx(1.0)

        rgb_speed_fn.set_covariance(np.diag([0.01, 0.01, 0.09]))

        assert rgb_speed_fn.calculate_speed_image(image)[0, 0] == pytest.approx(0.0)

    def test_parallel_matches_serial(self, rgb_image):
        """Chunked parallel evaluation gives the serial result."""
        model_args = dict(mean=[0.5, 0.5, 0.5], covariance=np.diag([0.1, 0.2, 0.3]))
        serial = VectorThresholdSpeedFunction(MahalanobisDistance(**model_args))
        parallel = VectorThresholdSpeedFunction(
            MahalanobisDistance(**model_args),
            config=SpeedFunctionConfig(chunk_size=7, n_jobs=2)
        )

        np.testing.assert_allclose(
            parallel.calculate_speed_image(rgb_image),
            serial.calculate_speed_image(rgb_image)
        )

    def test_integer_image(self):
        """Integer feature images are evaluated as floats."""
        speed_fn = VectorThresholdSpeedFunction(threshold=2.0)
        speed_fn.set_mean([5.0])
        speed_fn.set_covariance([[4.0]])

        speed = speed_fn.calculate_speed_image(np.array([[9], [13]], dtype=np.uint8))

        np.testing.assert_allclose(speed, [0.0, -2.0], atol=1e-12)

    def test_propagation_speed(self, rgb_speed_fn, rgb_image):
        speed = rgb_speed_fn.calculate_speed_image(rgb_image)

        assert rgb_speed_fn.propagation_speed((2, 5)) == speed[2, 5]

    def test_propagation_speed_index_length(self, rgb_speed_fn, rgb_image):
        rgb_speed_fn.calculate_speed_image(rgb_image)

        with pytest.raises(IndexError):
            rgb_speed_fn.propagation_speed((1, 2, 0))

    def test_speed_image_before_compute(self):
        with pytest.raises(RuntimeError):
            VectorThresholdSpeedFunction().speed_image


class TestErrors:
    """Errors surfaced from the distance model."""

    def test_channel_mismatch(self, rgb_speed_fn):
        with pytest.raises(DimensionMismatchError):
            rgb_speed_fn.calculate_speed_image(np.zeros((4, 4, 2)))

    def test_default_model_is_singular(self):
        """Unconfigured model: zero mean/covariance of the image dimension."""
        speed_fn = VectorThresholdSpeedFunction()

        with pytest.raises(SingularCovarianceError):
            speed_fn.calculate_speed_image(np.zeros((2, 2, 3)))

        assert speed_fn.model.dimension is None
        assert speed_fn.get_mean() is None
        assert speed_fn.get_covariance() is None

    def test_configure_after_failed_default_run(self):
        """A failed default run does not pin the model to the image dimension."""
        speed_fn = VectorThresholdSpeedFunction(threshold=2.0)
        with pytest.raises(SingularCovarianceError):
            speed_fn.calculate_speed_image(np.zeros((2, 2, 3)))

        speed_fn.set_mean([0.0, 0.0])
        speed_fn.set_covariance(np.eye(2))
        speed = speed_fn.calculate_speed_image(np.array([[[3.0, 4.0]]]))

        np.testing.assert_allclose(speed, [[-3.0]])

    def test_default_run_then_other_dimension(self):
        """Defaults follow each image's channel count while unconfigured."""
        config = SpeedFunctionConfig(
            model_config=MahalanobisConfig(singular_policy=SingularPolicy.PSEUDO_INVERSE)
        )
        speed_fn = VectorThresholdSpeedFunction(config=config)

        speed_fn.calculate_speed_image(np.ones((2, 2, 3)))
        speed = speed_fn.calculate_speed_image(np.ones((2, 2, 2)))

        assert speed.shape == (2, 2)
        assert speed_fn.model.dimension is None

    def test_set_parameters_changes_dimension(self, rgb_speed_fn):
        """set_parameters switches a configured 3-channel model to 2 channels."""
        rgb_speed_fn.set_parameters([1.0, 1.0], np.diag([4.0, 1.0]))
        speed = rgb_speed_fn.calculate_speed_image(np.array([[[3.0, 1.0]]]))

        assert rgb_speed_fn.model.dimension == 2
        np.testing.assert_allclose(speed, [[1.0]])

    def test_single_setter_cannot_change_dimension(self, rgb_speed_fn):
        with pytest.raises(DimensionMismatchError):
            rgb_speed_fn.set_mean([0.0, 0.0])

    def test_default_model_with_pseudo_inverse(self):
        """Under the pseudo-inverse policy the default model gives speed == threshold."""
        config = SpeedFunctionConfig(
            model_config=MahalanobisConfig(singular_policy=SingularPolicy.PSEUDO_INVERSE)
        )
        speed_fn = VectorThresholdSpeedFunction(config=config)

        speed = speed_fn.calculate_speed_image(np.ones((3, 2, 2)))

        np.testing.assert_array_equal(speed, np.full((3, 2), DEFAULT_THRESHOLD))

    def test_missing_covariance(self):
        speed_fn = VectorThresholdSpeedFunction()
        speed_fn.set_mean([0.0, 0.0])

        with pytest.raises(UninitializedModelError):
            speed_fn.calculate_speed_image(np.zeros((2, 2, 2)))

    def test_rejects_array_without_channel_axis(self, rgb_speed_fn):
        with pytest.raises(ValueError):
            rgb_speed_fn.calculate_speed_image(np.zeros(5))


class TestWeights:
    """Threshold, evolution weights and initialization."""

    def test_construction_defaults(self):
        speed_fn = VectorThresholdSpeedFunction()

        assert speed_fn.get_threshold() == 1.8
        assert speed_fn.advection_weight == 0.0
        assert speed_fn.propagation_weight == 1.0
        assert speed_fn.curvature_weight == 0.0
        assert speed_fn.radius is None

    def test_initialize_sets_threshold_weights(self):
        speed_fn = VectorThresholdSpeedFunction()

        speed_fn.initialize(radius=1)

        assert speed_fn.weights == EvolutionWeights(advection=0.0, propagation=-1.0, curvature=1.0)
        assert speed_fn.radius == 1

    def test_initialize_discards_earlier_weights(self):
        speed_fn = VectorThresholdSpeedFunction()
        speed_fn.set_weights(advection=3.0, propagation=0.25, curvature=9.0)

        speed_fn.initialize(radius=(1, 2))

        assert speed_fn.weights == EvolutionWeights()
        assert speed_fn.radius == (1, 2)

    def test_custom_initial_weights(self):
        weights = EvolutionWeights(advection=0.0, propagation=-2.0, curvature=0.5)
        speed_fn = VectorThresholdSpeedFunction(
            config=SpeedFunctionConfig(initial_weights=weights)
        )

        speed_fn.initialize(radius=2)

        assert speed_fn.weights == weights

    def test_set_weights_partial(self):
        speed_fn = VectorThresholdSpeedFunction()

        speed_fn.set_weights(curvature=0.5)

        assert speed_fn.weights == EvolutionWeights(advection=0.0, propagation=1.0, curvature=0.5)

    def test_reverse_expansion_direction(self):
        speed_fn = VectorThresholdSpeedFunction()
        speed_fn.initialize(radius=1)
        speed_fn.set_weights(advection=0.5)

        speed_fn.reverse_expansion_direction()

        assert speed_fn.advection_weight == -0.5
        assert speed_fn.propagation_weight == 1.0
        assert speed_fn.curvature_weight == 1.0

    @pytest.mark.parametrize("radius", [-1, (1, -2), (), (1.5,), True])
    def test_invalid_radius(self, radius):
        with pytest.raises(ValueError):
            VectorThresholdSpeedFunction().initialize(radius)

    def test_threshold_property(self):
        speed_fn = VectorThresholdSpeedFunction()

        speed_fn.threshold = 4

        assert speed_fn.get_threshold() == 4.0
        assert isinstance(speed_fn.threshold, float)

    def test_is_speed_source(self):
        assert isinstance(VectorThresholdSpeedFunction(), SpeedSource)

    def test_speed_source_is_abstract(self):
        with pytest.raises(TypeError):
            SpeedSource()

    def test_non_finite_weights(self):
        with pytest.raises(ValueError):
            EvolutionWeights(propagation=float('inf'))

    def test_config_validation(self):
        with pytest.raises(ValueError):
            SpeedFunctionConfig(chunk_size=0)
        with pytest.raises(ValueError):
            SpeedFunctionConfig(n_jobs=0)

    @pytest.mark.parametrize("chunk_size", [2.5, "64", True])
    def test_chunk_size_must_be_integer(self, chunk_size):
        with pytest.raises(ValueError, match="chunk_size"):
            SpeedFunctionConfig(chunk_size=chunk_size)

    def test_numpy_integer_chunk_size(self, rgb_speed_fn, rgb_image):
        speed_fn = VectorThresholdSpeedFunction(
            rgb_speed_fn.model, threshold=2.0, config=SpeedFunctionConfig(chunk_size=np.int64(5))
        )

        np.testing.assert_allclose(
            speed_fn.calculate_speed_image(rgb_image),
            rgb_speed_fn.calculate_speed_image(rgb_image)
        )
