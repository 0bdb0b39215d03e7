"""
Configuration for the moving-edges tracker.

The configuration is a plain read-only value passed explicitly into every
operation. Widened search ranges are derived as copies, never by mutating
the instance held by the tracker.
"""

from dataclasses import dataclass, asdict, fields, replace
from typing import Any

from metrack.core.errors import ConfigurationError


@dataclass(frozen=True)
class MovingEdgeConfig:
    """
    Moving-edges tracking parameters.

    Example:
        config = MovingEdgeConfig(sample_step=5, range=6)
        wide = config.widened(2)  # range == 12, config untouched
    """
    # Sampling
    sample_step: float = 10.0
    points_to_track: int = 500

    # Per-site search along the normal
    range: int = 4
    mask_size: int = 5
    angle_step: float = 1.0  # degrees between two consecutive masks
    threshold: float = 20.0  # minimum mean contrast (grey levels)
    mu1: float = 0.5  # allowed relative contrast drop
    mu2: float = 0.5  # allowed relative contrast rise

    # Contour recovery
    canny_th1: float = 100.0
    canny_th2: float = 200.0
    enable_canny: bool = True

    # Curve approximation
    n_control_points: int = 20

    def __post_init__(self):
        if self.sample_step <= 0:
            raise ConfigurationError(f"sample_step must be positive, got {self.sample_step}")
        if self.points_to_track <= 0:
            raise ConfigurationError(
                f"points_to_track must be positive, got {self.points_to_track}"
            )
        if self.mask_size < 1 or self.mask_size % 2 == 0:
            raise ConfigurationError(f"mask_size must be a positive odd number, got {self.mask_size}")
        if self.range < 0:
            raise ConfigurationError(f"range must not be negative, got {self.range}")

    def widened(self, factor: int) -> "MovingEdgeConfig":
        """Return a copy whose search range is multiplied by ``factor``."""
        return replace(self, range=self.range * factor)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MovingEdgeConfig":
        """
        Build a configuration from a dictionary.

        Unknown keys are ignored, missing keys take their default value.
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
