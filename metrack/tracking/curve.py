"""
Parametric boundary curve.

The boundary is represented by a B-spline C(u), u in [0, 1], with values in
(row, col) image coordinates. It is built either by exact interpolation of
an ordered point list or by a least-squares approximation with a fixed number
of control points, which smooths the noise of tracked sites.
"""

import logging
import math
from typing import Iterable

import numpy as np
from scipy.interpolate import BSpline, make_interp_spline, make_lsq_spline

logger = logging.getLogger(__name__)

# Parameter step used by the coarse searches and the length integration
COARSE_STEP = 0.01


def tangent_normal_angle(d_row: float, d_col: float) -> float:
    """
    Angle of the normal to a tangent (d_row, d_col), normalized to [0, pi).

    The tangent angle atan2(d_row, d_col) is shifted by -pi/2.
    """
    delta = math.atan2(d_row, d_col) - math.pi / 2.0
    delta %= math.pi
    # Guard against delta == pi from rounding in the modulo
    return 0.0 if delta >= math.pi else delta


def chord_parameters(points: np.ndarray) -> np.ndarray:
    """Chord-length parameters of an ordered point list, scaled to [0, 1]."""
    seg = np.hypot(*np.diff(points, axis=0).T)
    u = np.concatenate([[0.0], np.cumsum(seg)])
    return u / u[-1]


def _prepare_points(points: Iterable) -> np.ndarray:
    """Convert to an (N, 2) float array and drop consecutive duplicates."""
    if not isinstance(points, np.ndarray):
        points = list(points)
    arr = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if len(arr) > 1:
        keep = np.concatenate([[True], np.any(np.diff(arr, axis=0) != 0, axis=1)])
        arr = arr[keep]
    if len(arr) < 2:
        raise ValueError("At least two distinct points are needed to fit a curve")
    return arr


def _averaged_knots(u: np.ndarray, n_ctrl: int, degree: int) -> np.ndarray:
    """Knot vector for a least-squares fit, placed by parameter averaging."""
    n = len(u)
    d = n / (n_ctrl - degree)
    internal = []
    for j in range(1, n_ctrl - degree):
        i = int(j * d)
        a = j * d - i
        internal.append((1.0 - a) * u[i - 1] + a * u[i])
    return np.concatenate([
        np.zeros(degree + 1),
        np.asarray(internal, dtype=np.float64),
        np.ones(degree + 1),
    ])


class BSplineCurve:
    """
    B-spline curve over u in [0, 1] with (row, col) values.

    Example:
        >>> curve = BSplineCurve.interpolate([(10, 10), (20, 40), (10, 80)])
        >>> point, tangent = curve.point_and_tangent(0.5)
    """

    def __init__(self, spline: BSpline):
        self.spline = spline
        self._derivative = spline.derivative(1)

    @classmethod
    def interpolate(cls, points: Iterable) -> "BSplineCurve":
        """
        Fit a curve passing through every point.

        Args:
            points: Ordered (row, col) points

        Raises:
            ValueError: If fewer than two distinct points are given
        """
        pts = _prepare_points(points)
        u = chord_parameters(pts)
        degree = min(3, len(pts) - 1)
        return cls(make_interp_spline(u, pts, k=degree))

    @classmethod
    def approximate(cls, points: Iterable, n_control_points: int) -> "BSplineCurve":
        """
        Least-squares fit with a fixed control-point budget.

        The budget is clamped to what the point count allows; when it is not
        smaller than the number of points the fit becomes an interpolation.
        The result only depends on the inputs.
        """
        pts = _prepare_points(points)
        degree = min(3, len(pts) - 1)
        n_ctrl = max(degree + 1, min(int(n_control_points), len(pts)))
        if n_ctrl >= len(pts):
            return cls.interpolate(pts)

        u = chord_parameters(pts)
        knots = _averaged_knots(u, n_ctrl, degree)
        try:
            spline = make_lsq_spline(u, pts, knots, k=degree)
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.debug("Least-squares fit failed (%s), interpolating instead", e)
            return cls.interpolate(pts)
        return cls(spline)

    @property
    def n_control_points(self) -> int:
        return len(self.spline.c)

    def point(self, u: float) -> np.ndarray:
        """Point C(u) as a (row, col) array."""
        return np.asarray(self.spline(min(max(u, 0.0), 1.0)), dtype=np.float64)

    def point_and_tangent(self, u: float) -> tuple[np.ndarray, np.ndarray]:
        """Point C(u) and first derivative C'(u)."""
        u = min(max(u, 0.0), 1.0)
        return (
            np.asarray(self.spline(u), dtype=np.float64),
            np.asarray(self._derivative(u), dtype=np.float64),
        )

    def points(self, us: np.ndarray) -> np.ndarray:
        """Vectorized evaluation, returns an (N, 2) array."""
        return np.asarray(self.spline(np.clip(us, 0.0, 1.0)), dtype=np.float64).reshape(-1, 2)

    def tangents(self, us: np.ndarray) -> np.ndarray:
        """Vectorized first derivative, returns an (N, 2) array."""
        return np.asarray(self._derivative(np.clip(us, 0.0, 1.0)), dtype=np.float64).reshape(-1, 2)

    def normal_angle(self, u: float) -> float:
        """Normal angle at u, see tangent_normal_angle."""
        d = self._derivative(min(max(u, 0.0), 1.0))
        return tangent_normal_angle(d[0], d[1])

    def length(self, step: float = COARSE_STEP) -> float:
        """Approximate arc length as the sum of chords sampled every ``step``."""
        us = np.linspace(0.0, 1.0, int(round(1.0 / step)) + 1)
        pts = self.points(us)
        return float(np.sum(np.hypot(*np.diff(pts, axis=0).T)))

    def nearest_parameter(self, row: float, col: float, step: float = COARSE_STEP) -> float:
        """
        Coarse global search for the parameter closest to (row, col).

        Scans u = step, 2*step, ..., 1 from the start of the curve and keeps
        the first minimum. This is a heuristic, not an exact projection.
        """
        us = np.linspace(step, 1.0, int(round(1.0 / step)))
        pts = self.points(us)
        d = (pts[:, 0] - row) ** 2 + (pts[:, 1] - col) ** 2
        return float(us[int(np.argmin(d))])

    def descend_parameter(
        self,
        row: float,
        col: float,
        start: float = 0.0,
        step: float = COARSE_STEP,
    ) -> float:
        """
        Monotonic descent towards the parameter closest to (row, col).

        Walks forward from ``start`` while the distance keeps decreasing.
        Callers visiting points in curve order can chain the results, which
        keeps the whole walk linear in the number of points.
        """
        u = min(max(start, 0.0), 1.0)
        p = self.point(u)
        d = (p[0] - row) ** 2 + (p[1] - col) ** 2
        while u < 1.0:
            u_next = min(u + step, 1.0)
            p = self.point(u_next)
            d_next = (p[0] - row) ** 2 + (p[1] - col) ** 2
            if d_next > d:
                break
            u, d = u_next, d_next
        return u
