"""
Tracking module - Moving-edge sites and curve tracking.

This module provides:
- CurveTracker: per-frame boundary tracking with resampling and recovery
- BSplineCurve: parametric curve model fitted to the sites
- Site / SiteList: tracked points and their ordered container
- MovingEdgeSiteTracker: default per-site edge search
- CannyEdgeDetector and chain-code tracing for extremity recovery

Example:
    >>> from metrack.tracking import CurveTracker
    >>> tracker = CurveTracker()
    >>> tracker.initialize(first_frame, points)
    >>> for frame in video:
    ...     stats = tracker.track(frame)
"""

from metrack.tracking.site import Site, SiteState
from metrack.tracking.site_list import SiteList, SiteCursor
from metrack.tracking.curve import BSplineCurve, tangent_normal_angle
from metrack.tracking.site_tracker import MovingEdgeSiteTracker, find_angle
from metrack.tracking.contour import (
    CannyEdgeDetector,
    ChainTrace,
    trace_chain_code,
    find_first_border,
)
from metrack.tracking.tracker import CurveTracker, CycleStats

__all__ = [
    "Site",
    "SiteState",
    "SiteList",
    "SiteCursor",
    "BSplineCurve",
    "tangent_normal_angle",
    "MovingEdgeSiteTracker",
    "find_angle",
    "CannyEdgeDetector",
    "ChainTrace",
    "trace_chain_code",
    "find_first_border",
    "CurveTracker",
    "CycleStats",
]
