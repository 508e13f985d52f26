"""
vectorseg - Mahalanobis threshold speed term for level set segmentation.

Converts every feature vector of a multi-channel image into a signed speed
value, threshold - MahalanobisDistance(x), that drives a level set front
toward regions matching a Gaussian feature model.
"""

import logging

from .exceptions import (
    VectorSegError,
    DimensionMismatchError,
    SingularCovarianceError,
    UninitializedModelError,
)
from .features import FeatureImage
from .level_set import (
    SpeedSource,
    VectorThresholdSpeedFunction,
    EvolutionWeights,
    SpeedFunctionConfig,
)
from .statistics import MahalanobisDistance, MahalanobisConfig, SingularPolicy

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    'MahalanobisDistance',
    'MahalanobisConfig',
    'SingularPolicy',
    'VectorThresholdSpeedFunction',
    'SpeedSource',
    'EvolutionWeights',
    'SpeedFunctionConfig',
    'FeatureImage',
    'VectorSegError',
    'DimensionMismatchError',
    'SingularCovarianceError',
    'UninitializedModelError',
]
