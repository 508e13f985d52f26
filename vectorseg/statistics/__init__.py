"""
Statistical distance model for the vector threshold speed term.

Provides the Mahalanobis distance of feature vectors to a Gaussian
distribution given by an externally estimated mean and covariance.
"""

from .config import MahalanobisConfig, SingularPolicy
from .mahalanobis import MahalanobisDistance

__all__ = ['MahalanobisDistance', 'MahalanobisConfig', 'SingularPolicy']
