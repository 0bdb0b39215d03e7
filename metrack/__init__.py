"""
metrack - Moving-edges curve tracking
=====================================

Keeps an ordered set of points on an image boundary across a video
sequence. The boundary is modelled by a B-spline refit every frame from
moving-edge sites; gaps are resampled, extremities grown along the tangent
and recovered from an edge map when they keep failing.

Main modules:
- metrack.core: Configuration, errors, collaborator protocols, masks
- metrack.tracking: Sites, site list, curve model and the curve tracker

Quick start:
    >>> from metrack import CurveTracker, MovingEdgeConfig, CannyEdgeDetector
    >>> tracker = CurveTracker(MovingEdgeConfig(sample_step=5),
    ...                        edge_detector=CannyEdgeDetector())
    >>> tracker.initialize(first_frame, [(120, 40), (110, 90), (125, 160)])
    >>> for frame in video:
    ...     stats = tracker.track(frame)
"""

__version__ = "0.1.0"

# Convenience imports
from metrack.core import (
    MovingEdgeConfig,
    MovingEdgeError,
    ConfigurationError,
    NotInitializedError,
)
from metrack.tracking import (
    CurveTracker,
    CycleStats,
    BSplineCurve,
    Site,
    SiteState,
    SiteList,
    MovingEdgeSiteTracker,
    CannyEdgeDetector,
)

__all__ = [
    "__version__",
    "MovingEdgeConfig",
    "MovingEdgeError",
    "ConfigurationError",
    "NotInitializedError",
    "CurveTracker",
    "CycleStats",
    "BSplineCurve",
    "Site",
    "SiteState",
    "SiteList",
    "MovingEdgeSiteTracker",
    "CannyEdgeDetector",
]
