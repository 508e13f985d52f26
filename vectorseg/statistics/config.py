"""
Mahalanobis Distance Configuration

Configuration for the statistical distance model, including the policy
applied when the covariance matrix cannot be inverted.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class SingularPolicy(Enum):
    """How a singular covariance matrix is handled at evaluation time."""
    RAISE = "raise"
    PSEUDO_INVERSE = "pseudo_inverse"
    REGULARIZE = "regularize"


@dataclass
class MahalanobisConfig:
    """
    Configuration for Mahalanobis distance evaluation.

    Attributes:
        singular_policy: What to do when the covariance is singular
        rcond: Relative eigenvalue cutoff below which the covariance is singular
        regularization: Ridge added to the diagonal under SingularPolicy.REGULARIZE
        symmetry_tolerance: Tolerance used when checking covariance symmetry
    """
    singular_policy: Union[SingularPolicy, str] = SingularPolicy.RAISE
    """Singular covariance handling (default: raise SingularCovarianceError)"""

    rcond: float = 1e-12
    """Eigenvalues <= rcond * max|eigenvalue| count as zero"""

    regularization: float = 1e-6
    """Relative ridge, scaled by the mean diagonal magnitude of the covariance"""

    symmetry_tolerance: float = 1e-8
    """Absolute and relative tolerance for covariance == covariance.T"""

    def __post_init__(self):
        """Validate configuration."""
        if isinstance(self.singular_policy, str):
            try:
                self.singular_policy = SingularPolicy(self.singular_policy)
            except ValueError:
                valid = [policy.value for policy in SingularPolicy]
                raise ValueError(
                    f"singular_policy must be one of {valid}, got '{self.singular_policy}'"
                )

        if not 0 <= self.rcond < 1:
            raise ValueError(f"rcond must be in [0, 1), got {self.rcond}")
        if self.regularization <= 0:
            raise ValueError(f"regularization must be > 0, got {self.regularization}")
        if self.symmetry_tolerance < 0:
            raise ValueError(
                f"symmetry_tolerance must be >= 0, got {self.symmetry_tolerance}"
            )
