"""
A single tracked boundary point (moving-edge site).
"""

from dataclasses import dataclass
from enum import IntEnum


class SiteState(IntEnum):
    """Tracking status of a site."""
    OK = 0
    SUPPRESS_CONTRAST = 1  # Contrast changed too much since last frame
    SUPPRESS_LOST = 2      # No edge found along the normal
    SUPPRESS_NEAR = 3      # Too close to its predecessor


@dataclass
class Site:
    """
    A point on the tracked boundary.

    Attributes:
        row: Sub-pixel row position
        col: Sub-pixel column position
        alpha: Normal angle in [0, pi), measured from the column axis
        state: Tracking status
        convlt: Contrast measured at the last successful search (0 if unknown)
    """
    row: float
    col: float
    alpha: float = 0.0
    state: SiteState = SiteState.OK
    convlt: float = 0.0

    @property
    def i(self) -> int:
        """Rounded row."""
        return int(round(self.row))

    @property
    def j(self) -> int:
        """Rounded column."""
        return int(round(self.col))

    @property
    def is_ok(self) -> bool:
        return self.state == SiteState.OK

    def move_to(self, row: float, col: float) -> None:
        self.row = float(row)
        self.col = float(col)

    def sqr_distance(self, other: "Site") -> float:
        """Squared distance to another site."""
        return (self.row - other.row) ** 2 + (self.col - other.col) ** 2

    def sqr_distance_to(self, row: float, col: float) -> float:
        return (self.row - row) ** 2 + (self.col - col) ** 2
