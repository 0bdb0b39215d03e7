"""
Protocols for the collaborators of the curve tracker.

The tracker only relies on these call contracts, so alternative per-site
trackers or edge detectors can be injected at construction.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from metrack.core.config import MovingEdgeConfig
    from metrack.tracking.site import Site


@runtime_checkable
class SiteTracker(Protocol):
    """Refines one site in place: position, orientation, confidence and state."""

    def track(self, image: np.ndarray, site: "Site", config: "MovingEdgeConfig") -> None:
        """Search for the edge around ``site`` in a grey level image."""
        ...


@runtime_checkable
class EdgeDetector(Protocol):
    """Produces a binary edge map of an image window."""

    def detect(self, window: np.ndarray, th_low: float, th_high: float) -> np.ndarray:
        """Return a binary map (non-zero on edges) with the window's shape."""
        ...
