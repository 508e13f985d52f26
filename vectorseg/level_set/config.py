"""
Speed Function Configuration

Evolution weights consumed by the level set solver and the settings used
when computing the speed image.
"""

from dataclasses import dataclass, field
from numbers import Integral

import numpy as np

from ..statistics import MahalanobisConfig


@dataclass(frozen=True)
class EvolutionWeights:
    """
    Weights the solver applies to each term of the level set equation.

    Defaults are the ones used by threshold-based speed terms: no
    advection, propagation driven by the speed image with a negative sign,
    and unit mean curvature regularization.

    Attributes:
        advection: Weight of the advection term
        propagation: Weight of the propagation (speed) term
        curvature: Weight of the mean curvature term
    """
    advection: float = 0.0
    propagation: float = -1.0
    curvature: float = 1.0

    def __post_init__(self):
        """Validate weights."""
        for name in ('advection', 'propagation', 'curvature'):
            value = getattr(self, name)
            if not np.isfinite(value):
                raise ValueError(f"{name} weight must be finite, got {value}")


@dataclass
class SpeedFunctionConfig:
    """
    Configuration for the vector threshold speed function.

    Attributes:
        chunk_size: Pixels evaluated per batch when computing the speed image
        n_jobs: Worker threads for the speed image (1 = serial, -1 = all cores)
        initial_weights: Weights written by initialize()
        model_config: Configuration for a model the speed function creates itself
    """
    chunk_size: int = 65536
    """Pixels per batch (default: 65536)"""

    n_jobs: int = 1
    """joblib worker count; chunks are independent so any value is safe"""

    initial_weights: EvolutionWeights = field(default_factory=EvolutionWeights)
    """Weights set by initialize() (default: advection 0, propagation -1, curvature 1)"""

    model_config: MahalanobisConfig = field(default_factory=MahalanobisConfig)
    """Used only when no MahalanobisDistance is passed to the speed function"""

    def __post_init__(self):
        """Validate configuration parameters."""
        if isinstance(self.chunk_size, bool) or not isinstance(self.chunk_size, Integral):
            raise ValueError(f"chunk_size must be an integer, got {self.chunk_size!r}")
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {self.chunk_size}")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero (1 for serial, -1 for all cores)")
        if not isinstance(self.initial_weights, EvolutionWeights):
            raise ValueError(
                f"initial_weights must be EvolutionWeights, got {type(self.initial_weights).__name__}"
            )
