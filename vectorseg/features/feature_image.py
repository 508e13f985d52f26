"""
Feature Image

Thin adapter over a numpy array whose last axis holds the feature vector
of each pixel. Provides per-location vector reads and a flattened (N, D)
view for vectorised distance evaluation.

Color images are converted with OpenCV, which expects BGR channel order.
"""

import logging
from typing import Sequence, Tuple, Union

import cv2
import numpy as np

logger = logging.getLogger(__name__)

# color_space -> OpenCV conversion code (None: keep BGR order)
_COLOR_CONVERSIONS = {
    'bgr': None,
    'rgb': cv2.COLOR_BGR2RGB,
    'lab': cv2.COLOR_BGR2Lab,
    'hsv': cv2.COLOR_BGR2HSV,
}


class FeatureImage:
    """
    Vector-valued image with shape (*spatial_shape, D).

    Any number of spatial axes is supported; the last axis is always the
    channel (feature) axis.

    Example:
        >>> image = cv2.imread("slice.png")           # (H, W, 3) uint8 BGR
        >>> features = FeatureImage.from_color_image(image, color_space='lab')
        >>> features.spatial_shape, features.n_channels
        ((H, W), 3)
        >>> features.vector_at((10, 20))
        array([L, a, b])
    """

    def __init__(self, data: np.ndarray):
        """
        Wrap a feature array.

        Args:
            data: Array of shape (*spatial_shape, D) with at least one spatial axis

        Raises:
            ValueError: If data has no spatial axis or no channels
        """
        data = np.asarray(data)
        if data.ndim < 2:
            raise ValueError(
                f"Feature image needs spatial axes plus a channel axis, got shape {data.shape}. "
                f"Use FeatureImage.from_scalar_image() for single-channel data."
            )
        if data.shape[-1] == 0:
            raise ValueError(f"Feature image has no channels, got shape {data.shape}")
        if not np.issubdtype(data.dtype, np.number):
            raise ValueError(f"Feature image must be numeric, got dtype {data.dtype}")

        self._data = data

    @classmethod
    def from_scalar_image(cls, image: np.ndarray) -> 'FeatureImage':
        """
        Wrap a single-channel image (D = 1) by appending a channel axis.

        Args:
            image: Scalar image of any spatial shape

        Returns:
            FeatureImage with shape (*image.shape, 1)
        """
        image = np.asarray(image)
        if image.ndim < 1:
            raise ValueError("Scalar image needs at least one spatial axis")
        return cls(image[..., np.newaxis])

    @classmethod
    def from_color_image(cls, image: np.ndarray, color_space: str = 'rgb') -> 'FeatureImage':
        """
        Build a 3-channel feature image from a BGR color image.

        Args:
            image: Color image (H, W, 3) in BGR order, uint8 in [0, 255]
                   or float in [0, 1]
            color_space: Feature space: 'bgr', 'rgb', 'lab' or 'hsv'.
                         'rgb'/'bgr' features are in [0, 1]; 'lab' gives
                         L in [0, 100] and a, b in about [-127, 127];
                         'hsv' gives H in [0, 360) and S, V in [0, 1].

        Returns:
            FeatureImage of shape (H, W, 3), float64

        Raises:
            ValueError: If image is not (H, W, 3) or color_space is unknown
        """
        if color_space not in _COLOR_CONVERSIONS:
            raise ValueError(
                f"color_space must be one of {sorted(_COLOR_CONVERSIONS)}, got '{color_space}'"
            )

        image = np.asarray(image)
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Image must be (H, W, 3), got shape {image.shape}")

        # Normalize to [0, 1] float32, the float range OpenCV conversions expect
        if image.dtype == np.uint8 or (image.size and image.max() > 1.0):
            normalized = image.astype(np.float32) / 255.0
        else:
            normalized = image.astype(np.float32)

        code = _COLOR_CONVERSIONS[color_space]
        converted = normalized if code is None else cv2.cvtColor(normalized, code)

        logger.debug("Converted %s color image to '%s' features", image.shape, color_space)
        return cls(converted.astype(np.float64))

    @property
    def data(self) -> np.ndarray:
        """Underlying array (*spatial_shape, D)."""
        return self._data

    @property
    def n_channels(self) -> int:
        """Feature dimension D."""
        return self._data.shape[-1]

    @property
    def spatial_shape(self) -> Tuple[int, ...]:
        """Shape of the image domain (the speed field shape)."""
        return self._data.shape[:-1]

    @property
    def n_pixels(self) -> int:
        """Number of locations in the image domain."""
        return int(np.prod(self.spatial_shape))

    def vector_at(self, index: Union[Sequence[int], int]) -> np.ndarray:
        """
        Feature vector at one spatial location.

        Args:
            index: Spatial index with one entry per spatial axis

        Returns:
            vector: Array of shape (D,)

        Raises:
            IndexError: If index doesn't address exactly one location
        """
        index = (index,) if np.isscalar(index) else tuple(index)
        if len(index) != len(self.spatial_shape):
            raise IndexError(
                f"Index {index} must have {len(self.spatial_shape)} entries "
                f"for spatial shape {self.spatial_shape}"
            )
        return self._data[index]

    def as_vectors(self) -> np.ndarray:
        """
        Flattened (N, D) float64 view of all feature vectors, in C order.

        Returns a view when the data is already contiguous float64.
        """
        return self._data.reshape(-1, self.n_channels).astype(np.float64, copy=False)

    def __repr__(self) -> str:
        return (
            f"FeatureImage(spatial_shape={self.spatial_shape}, "
            f"n_channels={self.n_channels}, dtype={self._data.dtype})"
        )
