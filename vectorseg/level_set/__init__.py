"""
Speed term for level set segmentation of vector-valued images.

Provides the Mahalanobis threshold speed function and the SpeedSource
interface a level set solver depends on.
"""

from .config import EvolutionWeights, SpeedFunctionConfig
from .speed_function import SpeedSource, VectorThresholdSpeedFunction, DEFAULT_THRESHOLD

__all__ = [
    'SpeedSource',
    'VectorThresholdSpeedFunction',
    'EvolutionWeights',
    'SpeedFunctionConfig',
    'DEFAULT_THRESHOLD',
]
