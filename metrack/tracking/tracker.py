"""
Moving-edges tracking of a curved boundary.

This module provides the CurveTracker class which keeps an ordered list of
sites on an image boundary across video frames. The boundary is modelled by
a B-spline refit every frame; gaps are resampled, extremities are extended
along the tangent and, when they keep failing, recovered from an edge map.
"""

import logging
import math
from dataclasses import dataclass, asdict
from typing import Iterable

import cv2
import numpy as np

from metrack.core.base import EdgeDetector, SiteTracker
from metrack.core.config import MovingEdgeConfig
from metrack.core.errors import NotInitializedError
from metrack.tracking.contour import (
    WINDOW_OFFSET,
    WINDOW_SIZE,
    far_from_image_edge,
    find_first_border,
    in_window,
    trace_chain_code,
    window_origin,
)
from metrack.tracking.curve import COARSE_STEP, BSplineCurve, tangent_normal_angle
from metrack.tracking.site import Site, SiteState
from metrack.tracking.site_list import SiteList
from metrack.tracking.site_tracker import MovingEdgeSiteTracker, find_angle, out_of_image

logger = logging.getLogger(__name__)

# Endpoints closer than this many sample steps close the curve
CLOSED_CURVE_STEPS = 3
# Extension attempts per extremity and per frame
EXTENSION_STEPS = 3
EXTENSION_MARGIN = 5
# Consecutive extension failures before an edge-map recovery
RECOVERY_TRIGGER = 3
# Gaps longer than this (squared pixels) are treated as discontinuities
MAX_GAP_SQR_DISTANCE = 1600
# Fraction of the expected site count below which the curve is resampled
RESAMPLE_RATIO = 0.7
# Parameter step of the scan locating the last curve point in a window
WINDOW_SCAN_STEP = 0.001


@dataclass
class CycleStats:
    """Statistics from one tracking cycle."""
    frame: int
    tracked: int = 0
    lost: int = 0
    near: int = 0
    resampled: int = 0
    extended_begin: int = 0
    extended_end: int = 0
    recovered: int = 0
    full_resample: bool = False
    total: int = 0

    def to_dict(self) -> dict[str, int | bool]:
        return asdict(self)


class CurveTracker:
    """
    Boundary tracker combining moving-edge sites and a B-spline.

    Attributes:
        config: Tracking parameters, never modified by the tracker
        sites: Ordered list of tracked sites (curve order)
        curve: Curve refit at the last cycle
        length: Curve length measured at the last cycle
        begin_failures: Consecutive extension failures at u=0
        end_failures: Consecutive extension failures at u=1

    Example:
        >>> tracker = CurveTracker(MovingEdgeConfig(sample_step=5),
        ...                        edge_detector=CannyEdgeDetector())
        >>> tracker.initialize(first_frame, clicked_points)
        >>> for frame in video:
        ...     stats = tracker.track(frame)
        ...     outline = tracker.points()
    """

    def __init__(
        self,
        config: MovingEdgeConfig | None = None,
        site_tracker: SiteTracker | None = None,
        edge_detector: EdgeDetector | None = None,
    ):
        """
        Initialize the curve tracker.

        Args:
            config: Tracking parameters (defaults to MovingEdgeConfig())
            site_tracker: Per-site edge search (defaults to MovingEdgeSiteTracker)
            edge_detector: Optional edge map provider enabling contour recovery
        """
        if edge_detector is not None and not isinstance(edge_detector, EdgeDetector):
            raise TypeError(f"{type(edge_detector).__name__} does not provide detect()")

        self.config = config if config is not None else MovingEdgeConfig()
        self.site_tracker = site_tracker if site_tracker is not None else MovingEdgeSiteTracker()
        self.edge_detector = edge_detector

        # State
        self.sites = SiteList()
        self.curve: BSplineCurve | None = None
        self.length = 0.0
        self.begin_failures = 0
        self.end_failures = 0
        self.frame_count = 0

    @property
    def recovery_enabled(self) -> bool:
        """Contour recovery needs an edge detector and the enable flag."""
        return self.edge_detector is not None and self.config.enable_canny

    @staticmethod
    def _to_gray(frame: np.ndarray) -> np.ndarray:
        if frame.ndim == 3 and frame.shape[2] == 4:
            frame = cv2.cvtColor(frame, cv2.COLOR_BGRA2GRAY)
        elif frame.ndim == 3:
            frame = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        return np.asarray(frame, dtype=np.float64)

    def initialize(self, frame: np.ndarray, points: Iterable) -> CycleStats:
        """
        Initialize tracking from points picked along the boundary.

        The curve interpolates the points, is sampled into sites which are
        tracked once, and a first full cycle is run.

        Args:
            frame: First video frame (BGR or grey)
            points: Ordered (row, col) points along the boundary

        Returns:
            Statistics of the first cycle

        Raises:
            NotInitializedError: If no usable points are given
        """
        pts = list(points) if points is not None else []
        if not pts:
            raise NotInitializedError("No point to initialize the curve")

        gray = self._to_gray(frame)
        try:
            self.curve = BSplineCurve.interpolate(pts)
        except ValueError as e:
            raise NotInitializedError(f"Cannot initialize the curve: {e}") from e

        self.begin_failures = 0
        self.end_failures = 0
        self.frame_count = 0
        self.sample(gray)
        self._track_sites(gray, self.sites, self.config)
        return self._cycle(gray)

    def track(self, frame: np.ndarray) -> CycleStats:
        """
        Track the boundary in the next frame.

        Args:
            frame: Next video frame (BGR or grey)

        Returns:
            Statistics of the cycle; the result is read from ``sites`` and ``curve``

        Raises:
            NotInitializedError: If initialize() has not been called
        """
        if self.curve is None:
            raise NotInitializedError("Curve not initialized. Call initialize() first.")
        return self._cycle(self._to_gray(frame))

    def _cycle(self, gray: np.ndarray) -> CycleStats:
        self.frame_count += 1
        stats = CycleStats(frame=self.frame_count)

        self._track_sites(gray, self.sites, self.config)
        stats.tracked = sum(1 for s in self.sites if s.is_ok)
        stats.lost, stats.near = self.suppress_points()

        refit = self._refit()
        if refit:
            stats.resampled = self.local_resample(gray)
            stats.extended_begin, stats.extended_end = self.seek_extremities(gray)
            if self.recovery_enabled:
                stats.recovered = self.seek_extremities_canny(gray)
            refit = self._refit()
        else:
            logger.debug("Too few sites left to refit the curve, keeping the previous one")

        self.length = self.curve.length()
        if refit:
            self.update_delta()
        stats.full_resample = self.resample(gray, force=not refit)
        stats.total = len(self.sites)

        logger.debug("Frame %d: %s", self.frame_count, stats)
        return stats

    def _track_sites(self, gray: np.ndarray, sites: Iterable[Site], config: MovingEdgeConfig) -> None:
        for site in sites:
            self.site_tracker.track(gray, site, config)

    def _refit(self) -> bool:
        """Approximate the curve from the current sites."""
        if len(self.sites) < 2:
            return False
        try:
            curve = BSplineCurve.approximate(self.sites.as_array(), self.config.n_control_points)
        except ValueError:
            return False
        if curve.n_control_points < self.config.n_control_points:
            logger.debug(
                "Curve refit with %d control points for %d sites",
                curve.n_control_points, len(self.sites),
            )
        self.curve = curve
        return True

    def _in_image(self, row: float, col: float, shape: tuple[int, ...], margin: int = 0) -> bool:
        return not out_of_image(int(round(row)), int(round(col)), margin, shape[0], shape[1])

    def sample(self, gray: np.ndarray) -> None:
        """
        Replace the sites by a uniform sampling of the curve.

        The parameter is stepped by 1/points_to_track; a point is kept when it
        lies in the image and at least sample_step away from the last kept one.
        """
        config = self.config
        min_sqr = config.sample_step ** 2
        us = np.linspace(0.0, 1.0, config.points_to_track + 1)
        points = self.curve.points(us)
        tangents = self.curve.tangents(us)

        sites = []
        last = None
        for (row, col), (d_row, d_col) in zip(points, tangents):
            if not self._in_image(row, col, gray.shape):
                continue
            if last is not None and (row - last[0]) ** 2 + (col - last[1]) ** 2 < min_sqr:
                continue
            sites.append(Site(float(row), float(col), tangent_normal_angle(d_row, d_col)))
            last = (row, col)

        self.sites.replace(sites)

    def suppress_points(self) -> tuple[int, int]:
        """
        Remove lost sites, then collapse sites closer than sample_step.

        When two consecutive sites are too close the later one is dropped and
        the scan jumps two positions, so dense runs are thinned rather than
        wiped out.

        Returns:
            Tuple (lost, near) of removed site counts
        """
        lost = self.sites.remove_if(lambda s: not s.is_ok)

        min_sqr = self.config.sample_step ** 2
        near = 0
        cur = self.sites.cursor()
        while cur.has_next:
            nxt = cur.next_site
            if cur.site.sqr_distance(nxt) < min_sqr:
                nxt.state = SiteState.SUPPRESS_NEAR
                near += 1
                cur.advance()
                if cur.has_next:
                    cur.advance()
            else:
                cur.advance()
        self.sites.remove_if(lambda s: s.state == SiteState.SUPPRESS_NEAR)

        return lost, near

    def local_resample(self, gray: np.ndarray) -> int:
        """
        Fill gaps between consecutive sites by resampling the curve.

        Only gaps longer than two sample steps and shorter than 40 pixels are
        filled; longer ones are taken as real discontinuities.

        Returns:
            Number of inserted sites
        """
        config = self.config
        min_sqr = config.sample_step ** 2
        n = len(self.sites)
        inserted = 0

        cur = self.sites.cursor()
        while cur.has_next and n <= config.points_to_track:
            following = cur.node.next
            d = cur.site.sqr_distance(following.site)
            if 4 * min_sqr < d <= MAX_GAP_SQR_DISTANCE:
                inserted += self._fill_gap(gray, cur.node, following.site)
            cur = self.sites.cursor(following)

        if inserted:
            logger.debug("Local resampling added %d sites", inserted)
        return inserted

    def _fill_gap(self, gray: np.ndarray, node, target: Site) -> int:
        config = self.config
        min_sqr = config.sample_step ** 2
        start = node.site

        # Both searches restart from u=0 for every gap
        u = self.curve.nearest_parameter(start.row, start.col)
        u_end = self.curve.nearest_parameter(target.row, target.col)
        if u == 1.0 and u_end == 1.0:
            return 0

        last = (start.row, start.col)
        handle = node
        added = 0
        while u < u_end:
            u += COARSE_STEP
            point, tangent = self.curve.point_and_tangent(u)
            row, col = float(point[0]), float(point[1])
            if target.sqr_distance_to(row, col) <= min_sqr:
                break
            if (row - last[0]) ** 2 + (col - last[1]) ** 2 < min_sqr:
                continue
            if not self._in_image(row, col, gray.shape):
                continue

            site = Site(row, col, tangent_normal_angle(tangent[0], tangent[1]))
            self.site_tracker.track(gray, site, config)
            if site.is_ok:
                handle = self.sites.insert_after(handle, site)
                last = (row, col)
                added += 1
        return added

    def seek_extremities(self, gray: np.ndarray) -> tuple[int, int]:
        """
        Try to grow the site list past both extremities of the curve.

        When the two extremities are within three sample steps the curve is
        considered closed: the head site is dropped and nothing is extended.
        A side where no candidate is accepted gets its failure counter
        incremented; successes never reset it.

        Returns:
            Tuple (added_begin, added_end)
        """
        begin, d_begin = self.curve.point_and_tangent(0.0)
        end, d_end = self.curve.point_and_tangent(1.0)

        threshold = CLOSED_CURVE_STEPS * self.config.sample_step
        if math.hypot(*(begin - end)) <= threshold:
            if self.sites:
                self.sites.pop_front()
            return 0, 0

        wide = self.config.widened(2)
        added_begin = self._extend(gray, begin, d_begin, -1.0, end, threshold, wide, at_head=True)
        if added_begin == 0:
            self.begin_failures += 1
        added_end = self._extend(gray, end, d_end, 1.0, begin, threshold, wide, at_head=False)
        if added_end == 0:
            self.end_failures += 1
        return added_begin, added_end

    def _extend(
        self,
        gray: np.ndarray,
        start: np.ndarray,
        tangent: np.ndarray,
        direction: float,
        opposite: np.ndarray,
        threshold: float,
        config: MovingEdgeConfig,
        at_head: bool,
    ) -> int:
        ref = self.sites.first() if at_head else self.sites.last()
        alpha = ref.alpha if ref is not None else tangent_normal_angle(tangent[0], tangent[1])

        angle = math.atan2(tangent[0], tangent[1])
        co = abs(math.cos(angle)) * float(np.sign(tangent[1]))
        si = abs(math.sin(angle)) * float(np.sign(tangent[0]))
        step = self.config.sample_step

        row, col = float(start[0]), float(start[1])
        added = 0
        for _ in range(EXTENSION_STEPS):
            row += direction * si * step
            col += direction * co * step
            if math.hypot(row - opposite[0], col - opposite[1]) < threshold:
                break
            if out_of_image(int(row), int(col), EXTENSION_MARGIN, gray.shape[0], gray.shape[1]):
                continue

            site = Site(row, col, alpha)
            self.site_tracker.track(gray, site, config)
            if site.is_ok:
                if at_head:
                    self.sites.push_front(site)
                else:
                    self.sites.push_back(site)
                added += 1
            row, col = site.row, site.col
        return added

    def seek_extremities_canny(self, gray: np.ndarray) -> int:
        """
        Recover extremities that failed to extend three times in a row.

        Recovery runs only for extremities more than 20 pixels away from the
        image border. Once it runs, the failure counter of that side is reset
        whatever the outcome.

        Returns:
            Number of sites added by the recovery
        """
        if not self.recovery_enabled:
            return 0

        recovered = 0
        if self.begin_failures >= RECOVERY_TRIGGER:
            begin = self.curve.point(0.0)
            if far_from_image_edge(begin[0], begin[1], gray.shape):
                recovered += self._recover_extremity(gray, begin, at_head=True)
                self.begin_failures = 0

        if self.end_failures >= RECOVERY_TRIGGER:
            end = self.curve.point(1.0)
            if far_from_image_edge(end[0], end[1], gray.shape):
                recovered += self._recover_extremity(gray, end, at_head=False)
                self.end_failures = 0

        return recovered

    def _last_point_in_window(self, origin: tuple[int, int], at_head: bool) -> np.ndarray:
        """Last curve point inside the window, walking inwards from the extremity."""
        us = np.arange(0.0, 1.0 + WINDOW_SCAN_STEP / 2, WINDOW_SCAN_STEP)
        if not at_head:
            us = us[::-1]
        points = self.curve.points(us)
        top, left = origin
        inside = (
            (points[:, 0] >= top) & (points[:, 0] < top + WINDOW_SIZE)
            & (points[:, 1] >= left) & (points[:, 1] < left + WINDOW_SIZE)
        )
        outside = np.flatnonzero(~inside)
        if len(outside) == 0:
            return points[-1]
        return points[max(int(outside[0]) - 1, 0)]

    def _recover_extremity(self, gray: np.ndarray, extremity: np.ndarray, at_head: bool) -> int:
        config = self.config
        origin = window_origin(extremity[0], extremity[1])
        top, left = origin
        window = gray[top:top + WINDOW_SIZE, left:left + WINDOW_SIZE]
        edges = self.edge_detector.detect(window, config.canny_th1, config.canny_th2)

        last = self._last_point_in_window(origin, at_head)
        seed = find_first_border(edges, last[0] - top, last[1] - left)
        if seed is None:
            logger.debug("No edge crossing the recovery window at (%d, %d)", top, left)
            return 0

        trace = trace_chain_code(edges, seed)
        logger.debug("Traced %d edge points from window pixel %s", len(trace), seed)
        if not trace.passes_near(WINDOW_OFFSET, WINDOW_OFFSET):
            logger.debug("Traced edge misses the extremity, recovery dropped")
            return 0

        # Drop the sites covered by the window, from the extremity inwards
        cur = self.sites.cursor() if at_head else self.sites.cursor_at_end()
        while cur.valid and in_window(cur.site.row, cur.site.col, origin):
            if at_head:
                cur.erase()
            else:
                cur.erase_backward()

        min_sqr = config.sample_step ** 2
        existing = self.sites.as_array()
        added: list[Site] = []
        for r, c in trace.points:
            row, col = float(r + top), float(c + left)
            if len(existing):
                d = (existing[:, 0] - row) ** 2 + (existing[:, 1] - col) ** 2
                if d.min() < min_sqr:
                    continue
            if any(s.sqr_distance_to(row, col) < min_sqr for s in added):
                continue

            alpha, convlt = find_angle(gray, row, col, config)
            site = Site(row, col, alpha, convlt=convlt)
            if at_head:
                self.sites.push_front(site)
            else:
                self.sites.push_back(site)
            added.append(site)

        self._track_sites(gray, added, config.widened(3))
        logger.info(
            "Recovered %d sites at the %s of the curve",
            len(added), "beginning" if at_head else "end",
        )
        return len(added)

    def resample(self, gray: np.ndarray, force: bool = False) -> bool:
        """
        Rebuild the whole site list when too many sites were lost.

        The expected count is floor(length / sample_step); below 70% of it the
        curve is sampled again and every new site is tracked once.

        Returns:
            True if the site list was rebuilt
        """
        n = len(self.sites)
        expected = math.floor(self.length / self.config.sample_step)
        if not force and n >= RESAMPLE_RATIO * expected:
            return False

        logger.info("Resampling the curve: %d sites for %d expected", n, expected)
        self.sample(gray)
        self._track_sites(gray, self.sites, self.config)
        return True

    def update_delta(self) -> None:
        """
        Set the normal angle of every site from the refit curve.

        Sites must be visited in curve order: each parameter search starts
        where the previous one ended.
        """
        u = 0.0
        for site in self.sites:
            u = self.curve.descend_parameter(site.row, site.col, start=u)
            site.alpha = self.curve.normal_angle(u)

    def points(self) -> np.ndarray:
        """Current site positions as an (N, 2) array of (row, col)."""
        return self.sites.as_array()

    def reset(self) -> None:
        """Reset the tracker state."""
        self.sites.clear()
        self.curve = None
        self.length = 0.0
        self.begin_failures = 0
        self.end_failures = 0
        self.frame_count = 0
