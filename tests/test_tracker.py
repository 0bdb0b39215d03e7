"""
Tests for CurveTracker and its per-frame passes.
"""

import math

import pytest
import numpy as np


class AcceptAllTracker:
    """Site tracker that keeps every site where it is."""

    def __init__(self):
        self.ranges = []

    def track(self, image, site, config):
        self.ranges.append(config.range)
        from metrack.tracking import SiteState
        site.state = SiteState.OK


class RejectAllTracker:
    """Site tracker that loses every site."""

    def track(self, image, site, config):
        from metrack.tracking import SiteState
        site.state = SiteState.SUPPRESS_LOST


class FixedEdgeDetector:
    """Edge detector returning a prepared binary map."""

    def __init__(self, edges):
        self.edges = edges
        self.calls = 0

    def detect(self, window, th_low, th_high):
        self.calls += 1
        assert window.shape == self.edges.shape
        return self.edges


def make_tracker(site_tracker=None, edge_detector=None, **config_kwargs):
    from metrack import CurveTracker, MovingEdgeConfig

    return CurveTracker(
        MovingEdgeConfig(**config_kwargs),
        site_tracker=site_tracker if site_tracker is not None else AcceptAllTracker(),
        edge_detector=edge_detector,
    )


def sites_on_row(row, cols):
    from metrack.tracking import Site

    return [Site(float(row), float(c), alpha=math.pi / 2) for c in cols]


class TestCurveTrackerSetup:
    """Tests for construction and initialization errors."""

    def test_initial_state(self):
        """Test tracker state before initialization."""
        tracker = make_tracker()
        assert tracker.curve is None
        assert len(tracker.sites) == 0
        assert tracker.begin_failures == 0
        assert tracker.end_failures == 0
        assert not tracker.recovery_enabled

    def test_track_before_initialize(self):
        """Test that tracking without a curve fails distinctly."""
        from metrack.core.errors import NotInitializedError

        tracker = make_tracker()
        with pytest.raises(NotInitializedError):
            tracker.track(np.zeros((50, 50)))

    def test_initialize_without_points(self):
        """Test that an empty point list is rejected."""
        from metrack.core.errors import NotInitializedError

        tracker = make_tracker()
        with pytest.raises(NotInitializedError):
            tracker.initialize(np.zeros((50, 50)), [])

    def test_invalid_edge_detector(self):
        """Test that an object without detect() is not accepted."""
        from metrack import CurveTracker

        with pytest.raises(TypeError):
            CurveTracker(edge_detector=object())

    def test_recovery_flag(self):
        """Test that recovery follows the detector and the config flag."""
        detector = FixedEdgeDetector(np.zeros((32, 32)))
        assert make_tracker(edge_detector=detector).recovery_enabled
        assert not make_tracker(edge_detector=detector, enable_canny=False).recovery_enabled


class TestSampler:
    """Tests for uniform sampling of the curve."""

    def test_sample_spacing(self):
        """Test that samples are sample_step apart and ordered from u=0."""
        from metrack.tracking import BSplineCurve

        tracker = make_tracker()
        tracker.curve = BSplineCurve.interpolate([(50, 20), (50, 120)])
        tracker.sample(np.zeros((100, 150)))

        cols = [s.col for s in tracker.sites]
        assert cols[0] == pytest.approx(20.0)
        assert all(b - a >= 10.0 - 1e-9 for a, b in zip(cols, cols[1:]))
        assert 10 <= len(cols) <= 11
        assert all(s.alpha == pytest.approx(math.pi / 2) for s in tracker.sites)

    def test_sample_skips_outside(self):
        """Test that points outside the image are not sampled."""
        from metrack.tracking import BSplineCurve

        tracker = make_tracker()
        tracker.curve = BSplineCurve.interpolate([(50, -50), (50, 90)])
        tracker.sample(np.zeros((100, 100)))
        assert all(s.col > 0.5 for s in tracker.sites)


class TestSuppression:
    """Tests for the suppression pass."""

    def test_near_pair(self):
        """Test that exactly one of two close sites survives."""
        tracker = make_tracker()
        tracker.sites.replace(sites_on_row(50, [20, 25, 40]))

        lost, near = tracker.suppress_points()
        assert (lost, near) == (0, 1)
        assert [s.col for s in tracker.sites] == [20, 40]

    def test_lost_sites(self):
        """Test that sites with a failure state are removed."""
        from metrack.tracking import SiteState

        tracker = make_tracker()
        tracker.sites.replace(sites_on_row(50, [20, 40, 60]))
        tracker.sites.first().state = SiteState.SUPPRESS_CONTRAST

        lost, near = tracker.suppress_points()
        assert (lost, near) == (1, 0)
        assert [s.col for s in tracker.sites] == [40, 60]

    def test_dense_run(self):
        """Test that a dense run is thinned, not wiped out."""
        tracker = make_tracker()
        tracker.sites.replace(sites_on_row(50, [0, 4, 8, 12, 16]))

        tracker.suppress_points()
        assert [s.col for s in tracker.sites] == [0, 8, 16]


class TestLocalResample:
    """Tests for gap filling."""

    def test_gap_filled(self):
        """Test that a 3-step gap on a straight curve gets new sites."""
        from metrack.tracking import BSplineCurve

        fake = AcceptAllTracker()
        tracker = make_tracker(site_tracker=fake)
        tracker.curve = BSplineCurve.interpolate([(50, 20), (50, 120)])
        tracker.sites.replace(sites_on_row(50, [50, 80]))

        inserted = tracker.local_resample(np.zeros((100, 150)))

        cols = [s.col for s in tracker.sites]
        assert inserted >= 1
        assert len(cols) == 2 + inserted
        assert cols[0] == 50 and cols[-1] == 80
        assert all(50 < c < 80 for c in cols[1:-1])
        assert all(b - a >= 10.0 - 1e-6 for a, b in zip(cols, cols[1:]))
        assert fake.ranges == [tracker.config.range] * inserted

    def test_discontinuity_not_filled(self):
        """Test that gaps longer than 40 pixels are left alone."""
        from metrack.tracking import BSplineCurve

        tracker = make_tracker()
        tracker.curve = BSplineCurve.interpolate([(50, 0), (50, 140)])
        tracker.sites.replace(sites_on_row(50, [20, 70]))

        assert tracker.local_resample(np.zeros((100, 150))) == 0
        assert len(tracker.sites) == 2

    def test_rejected_candidates_dropped(self):
        """Test that candidates lost by the site tracker are not inserted."""
        from metrack.tracking import BSplineCurve

        tracker = make_tracker(site_tracker=RejectAllTracker())
        tracker.curve = BSplineCurve.interpolate([(50, 20), (50, 120)])
        tracker.sites.replace(sites_on_row(50, [50, 80]))

        assert tracker.local_resample(np.zeros((100, 150))) == 0
        assert len(tracker.sites) == 2

    def test_stops_above_points_to_track(self):
        """Test that gaps are not filled once the site budget is reached."""
        from metrack.tracking import BSplineCurve

        fake = AcceptAllTracker()
        tracker = make_tracker(site_tracker=fake, points_to_track=1)
        tracker.curve = BSplineCurve.interpolate([(50, 20), (50, 120)])
        tracker.sites.replace(sites_on_row(50, [50, 80]))

        assert tracker.local_resample(np.zeros((100, 150))) == 0
        assert [s.col for s in tracker.sites] == [50, 80]
        assert fake.ranges == []


class TestExtremities:
    """Tests for extremity extension."""

    def test_closed_curve_drops_head(self):
        """Test that close extremities remove the head and extend nothing."""
        from metrack.tracking import BSplineCurve, Site

        angles = np.radians(np.arange(0, 360, 20))
        points = [(60 + 30 * math.sin(a), 60 + 30 * math.cos(a)) for a in angles]
        fake = AcceptAllTracker()
        tracker = make_tracker(site_tracker=fake)
        tracker.curve = BSplineCurve.interpolate(points)
        tracker.sites.replace(Site(r, c) for r, c in points)
        second = list(tracker.sites)[1]

        assert tracker.seek_extremities(np.zeros((120, 120))) == (0, 0)
        assert len(tracker.sites) == len(points) - 1
        assert tracker.sites.first() is second
        assert fake.ranges == []
        assert (tracker.begin_failures, tracker.end_failures) == (0, 0)

    def test_open_curve_extends_both_ends(self):
        """Test three tangential steps at each end with a doubled range."""
        from metrack.tracking import BSplineCurve

        fake = AcceptAllTracker()
        tracker = make_tracker(site_tracker=fake)
        tracker.curve = BSplineCurve.interpolate([(50, 40), (50, 100)])
        tracker.sites.replace(sites_on_row(50, range(40, 101, 10)))

        added = tracker.seek_extremities(np.zeros((100, 150)))

        assert added == (3, 3)
        cols = [s.col for s in tracker.sites]
        np.testing.assert_allclose(cols, np.arange(10, 131, 10), atol=1e-6)
        assert set(fake.ranges) == {tracker.config.range * 2}
        assert all(type(s.row) is float and type(s.col) is float for s in tracker.sites)
        assert (tracker.begin_failures, tracker.end_failures) == (0, 0)

    def test_extension_stops_near_image_border(self):
        """Test that candidates inside the border margin are skipped."""
        from metrack.tracking import BSplineCurve

        tracker = make_tracker()
        tracker.curve = BSplineCurve.interpolate([(50, 20), (50, 80)])
        tracker.sites.replace(sites_on_row(50, range(20, 81, 10)))

        added_begin, _ = tracker.seek_extremities(np.zeros((100, 150)))
        assert added_begin == 1
        assert tracker.sites.first().col == pytest.approx(10.0)

    def test_failures_counted(self):
        """Test that failed extensions increment the counters."""
        from metrack.tracking import BSplineCurve

        tracker = make_tracker(site_tracker=RejectAllTracker())
        tracker.curve = BSplineCurve.interpolate([(50, 40), (50, 100)])
        tracker.sites.replace(sites_on_row(50, range(40, 101, 10)))

        for _ in range(3):
            assert tracker.seek_extremities(np.zeros((100, 150))) == (0, 0)
        assert (tracker.begin_failures, tracker.end_failures) == (3, 3)

    def test_success_does_not_reset_failures(self):
        """Test that only recovery resets the failure counters."""
        from metrack.tracking import BSplineCurve

        tracker = make_tracker()
        tracker.curve = BSplineCurve.interpolate([(50, 40), (50, 100)])
        tracker.sites.replace(sites_on_row(50, range(40, 101, 10)))
        tracker.begin_failures = 2

        tracker.seek_extremities(np.zeros((100, 150)))
        assert tracker.begin_failures == 2

    def test_extension_stops_near_opposite_end(self):
        """Test that extension stops before reaching the other extremity."""
        from metrack.tracking import BSplineCurve, Site

        # Open circle with a 40 pixel gap at the top
        phis = np.radians(np.arange(42, 319, 6))
        points = [(60 - 30 * math.cos(p), 60 + 30 * math.sin(p)) for p in phis]
        fake = AcceptAllTracker()
        tracker = make_tracker(site_tracker=fake)
        tracker.curve = BSplineCurve.interpolate(points)
        tracker.sites.replace(Site(r, c) for r, c in points)
        n_before = len(tracker.sites)

        begin = tracker.curve.point(0.0)
        end = tracker.curve.point(1.0)
        threshold = 3 * tracker.config.sample_step
        assert math.hypot(*(begin - end)) > threshold

        added_begin, added_end = tracker.seek_extremities(np.zeros((120, 120)))

        assert 1 <= added_begin < 3
        assert 1 <= added_end < 3
        assert len(tracker.sites) == n_before + added_begin + added_end
        head = list(tracker.sites)[:added_begin]
        tail = list(tracker.sites)[len(tracker.sites) - added_end:]
        for site in head:
            assert math.hypot(site.row - end[0], site.col - end[1]) >= threshold
        for site in tail:
            assert math.hypot(site.row - begin[0], site.col - begin[1]) >= threshold


class TestContourRecovery:
    """Tests for edge-map based recovery of extremities."""

    def _setup(self, edges, begin_failures=3, end_failures=0):
        from metrack.tracking import BSplineCurve

        gray = np.zeros((120, 160))
        gray[60:, :] = 200.0
        fake = AcceptAllTracker()
        detector = FixedEdgeDetector(edges)
        tracker = make_tracker(site_tracker=fake, edge_detector=detector)
        tracker.curve = BSplineCurve.interpolate([(60, 60), (60, 100)])
        tracker.sites.replace(sites_on_row(60, range(60, 101, 10)))
        tracker.begin_failures = begin_failures
        tracker.end_failures = end_failures
        return tracker, gray, fake, detector

    def test_recovery_splices_traced_points(self):
        """Test that traced edge points replace the sites in the window."""
        edges = np.zeros((32, 32), dtype=np.uint8)
        edges[15, :] = 255
        tracker, gray, fake, detector = self._setup(edges)

        recovered = tracker.seek_extremities_canny(gray)

        assert detector.calls == 1
        assert recovered == 3
        np.testing.assert_allclose([s.col for s in tracker.sites], [50, 60, 70, 80, 90, 100])
        assert all(s.row == 60 for s in tracker.sites)
        assert fake.ranges == [tracker.config.range * 3] * 3
        assert tracker.begin_failures == 0

    def test_recovered_sites_oriented(self):
        """Test that recovered sites get their angle from the image."""
        edges = np.zeros((32, 32), dtype=np.uint8)
        edges[15, :] = 255
        tracker, gray, _, _ = self._setup(edges)

        tracker.seek_extremities_canny(gray)
        head = tracker.sites.first()
        assert head.alpha == pytest.approx(math.pi / 2, abs=math.radians(3))
        assert head.convlt > 0

    def test_no_seed_resets_counter(self):
        """Test that a blank edge map leaves the sites but resets the counter."""
        tracker, gray, _, detector = self._setup(np.zeros((32, 32), dtype=np.uint8))

        assert tracker.seek_extremities_canny(gray) == 0
        assert detector.calls == 1
        assert len(tracker.sites) == 5
        assert tracker.begin_failures == 0

    def test_not_triggered_below_three_failures(self):
        """Test that recovery waits for three failures."""
        tracker, gray, _, detector = self._setup(np.zeros((32, 32)), begin_failures=2)

        tracker.seek_extremities_canny(gray)
        assert detector.calls == 0
        assert tracker.begin_failures == 2

    def test_not_triggered_near_border(self):
        """Test that extremities close to the image border are skipped."""
        from metrack.tracking import BSplineCurve

        tracker, gray, _, detector = self._setup(np.zeros((32, 32)))
        tracker.curve = BSplineCurve.interpolate([(60, 10), (60, 100)])

        tracker.seek_extremities_canny(gray)
        assert detector.calls == 0
        assert tracker.begin_failures == 3

    def test_recovery_at_curve_end(self):
        """Test that the tail end is recovered and spliced after the last site."""
        edges = np.zeros((32, 32), dtype=np.uint8)
        edges[15, :] = 255
        tracker, gray, fake, detector = self._setup(edges, begin_failures=0, end_failures=3)

        recovered = tracker.seek_extremities_canny(gray)

        assert detector.calls == 1
        assert recovered == 3
        np.testing.assert_allclose([s.col for s in tracker.sites], [60, 70, 80, 90, 100, 110])
        assert all(s.row == 60 for s in tracker.sites)
        assert fake.ranges == [tracker.config.range * 3] * 3
        assert tracker.end_failures == 0
        assert tracker.begin_failures == 0

    def test_trace_missing_extremity(self):
        """Test that an edge away from the extremity is ignored but resets the counter."""
        edges = np.zeros((32, 32), dtype=np.uint8)
        edges[:, 31] = 255
        tracker, gray, fake, detector = self._setup(edges)

        assert tracker.seek_extremities_canny(gray) == 0
        assert detector.calls == 1
        assert [s.col for s in tracker.sites] == [60, 70, 80, 90, 100]
        assert fake.ranges == []
        assert tracker.begin_failures == 0


class TestGlobalResample:
    """Tests for the global resample guard."""

    def test_rebuilds_sparse_list(self):
        """Test that too few sites trigger a full resample."""
        from metrack.tracking import BSplineCurve

        fake = AcceptAllTracker()
        tracker = make_tracker(site_tracker=fake)
        tracker.curve = BSplineCurve.interpolate([(50, 20), (50, 120)])
        tracker.length = tracker.curve.length()
        tracker.sites.replace(sites_on_row(50, [90, 40, 60]))

        assert tracker.resample(np.zeros((100, 150)))
        cols = [s.col for s in tracker.sites]
        assert 10 <= len(cols) <= 11
        assert cols[0] == pytest.approx(20.0)
        assert cols == sorted(cols)
        assert len(fake.ranges) == len(cols)

    def test_keeps_dense_list(self):
        """Test that enough sites leave the list untouched."""
        from metrack.tracking import BSplineCurve

        tracker = make_tracker()
        tracker.curve = BSplineCurve.interpolate([(50, 20), (50, 120)])
        tracker.length = tracker.curve.length()
        tracker.sites.replace(sites_on_row(50, range(20, 101, 10)))

        assert not tracker.resample(np.zeros((100, 150)))
        assert len(tracker.sites) == 9


class TestOrientationUpdate:
    """Tests for the normal angle update."""

    def test_angles_follow_curve(self):
        """Test that every site gets the curve normal."""
        from metrack.tracking import BSplineCurve, Site

        tracker = make_tracker()
        tracker.curve = BSplineCurve.interpolate([(20, 50), (120, 50)])
        tracker.sites.replace(Site(float(r), 50.0, alpha=1.0) for r in range(25, 120, 10))

        tracker.update_delta()
        for site in tracker.sites:
            assert min(site.alpha, math.pi - site.alpha) == pytest.approx(0.0, abs=1e-6)


class TestTrackingCycle:
    """Tests for full tracking cycles."""

    def test_ordering_invariant(self):
        """Test that sites stay in curve order over several cycles."""
        cols = np.arange(40, 161, 20)
        points = [(100 + 10 * math.sin(c / 30.0), c) for c in cols]
        tracker = make_tracker(sample_step=8)
        image = np.zeros((200, 200))

        stats = tracker.initialize(image, points)
        assert stats.frame == 1
        for _ in range(3):
            stats = tracker.track(image)

        assert stats.frame == 4
        assert stats.total == len(tracker.sites)
        params = [tracker.curve.nearest_parameter(s.row, s.col) for s in tracker.sites]
        assert params == sorted(params)

    def test_lost_sites_force_resample(self):
        """Test that losing every site falls back to the previous curve."""
        tracker = make_tracker()
        image = np.zeros((100, 150))
        tracker.initialize(image, [(50, 20), (50, 120)])

        tracker.site_tracker = RejectAllTracker()
        curve = tracker.curve
        stats = tracker.track(image)

        assert stats.lost > 0
        assert stats.full_resample
        assert tracker.curve is curve
        assert len(tracker.sites) > 0

    def test_stats_dict(self):
        """Test conversion of cycle statistics."""
        from metrack.tracking import CycleStats

        d = CycleStats(frame=3, tracked=10).to_dict()
        assert d['frame'] == 3
        assert d['tracked'] == 10
        assert d['full_resample'] is False

    def test_reset(self):
        """Test that reset forgets the curve."""
        from metrack.core.errors import NotInitializedError

        tracker = make_tracker()
        tracker.initialize(np.zeros((100, 150)), [(50, 20), (50, 120)])
        tracker.reset()
        assert tracker.curve is None
        with pytest.raises(NotInitializedError):
            tracker.track(np.zeros((100, 150)))

    def test_bgra_frame(self):
        """Test that four-channel frames are converted to grey."""
        gray = np.zeros((100, 150), dtype=np.uint8)
        frame = np.dstack([gray, gray, gray, np.full_like(gray, 255)])

        tracker = make_tracker()
        stats = tracker.initialize(frame, [(50, 20), (50, 120)])
        assert stats.frame == 1
        assert len(tracker.sites) > 0


class TestStepEdgeTracking:
    """End-to-end tracking with the default site tracker."""

    def _frame(self, edge_col):
        gray = np.zeros((200, 160), dtype=np.uint8)
        gray[:, edge_col:] = 200
        return np.dstack([gray, gray, gray])

    def test_follows_vertical_edge(self):
        """Test that sites lock on a step edge and follow it."""
        from metrack import CurveTracker, MovingEdgeConfig

        tracker = CurveTracker(MovingEdgeConfig(sample_step=10, range=4))
        tracker.initialize(self._frame(80), [(40, 78), (100, 81), (160, 79)])
        tracker.track(self._frame(80))
        tracker.track(self._frame(82))

        ok_sites = [s for s in tracker.sites if s.is_ok]
        assert len(ok_sites) >= 5
        for site in ok_sites:
            assert 79.0 <= site.col <= 83.0
        assert 79.5 <= tracker.curve.point(0.5)[1] <= 83.0
        assert tracker.length > 50
        assert tracker.points().shape == (len(tracker.sites), 2)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
