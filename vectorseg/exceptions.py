"""
Exceptions raised by the speed function and its statistical model.

Each error also derives from the built-in it specialises, so code that
already catches ValueError / RuntimeError keeps working.
"""


class VectorSegError(Exception):
    """Base class for all vectorseg errors."""


class DimensionMismatchError(VectorSegError, ValueError):
    """Feature vector, mean or covariance dimensions disagree."""


class SingularCovarianceError(VectorSegError, ValueError):
    """Covariance matrix cannot be inverted under the configured policy."""


class UninitializedModelError(VectorSegError, RuntimeError):
    """Distance requested before the model has a mean and covariance."""
