"""
Feature image adapter: per-pixel feature vectors for the speed function.
"""

from .feature_image import FeatureImage

__all__ = ['FeatureImage']
