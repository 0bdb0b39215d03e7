"""
Edge-map contour tracing used to recover lost curve extremities.

When an extremity repeatedly fails to extend, a small window around it is
turned into a binary edge map and the edge crossing the window border is
followed with an 8-direction Freeman chain code.
"""

from dataclasses import dataclass, field

import cv2
import numpy as np

# Size of the recovery window and position of the extremity inside it
WINDOW_SIZE = 32
WINDOW_OFFSET = 15

# Squared pixel distance used for the seed and centre tests
NEAR_SQR_DISTANCE = 16

#           5  6  7
#            \ | /
#        4 ---   --- 0
#            / | \
#           3  2  1
FREEMAN_STEPS = {
    0: (0, 1),
    1: (1, 1),
    2: (1, 0),
    3: (1, -1),
    4: (0, -1),
    5: (-1, -1),
    6: (-1, 0),
    7: (-1, 1),
}

# Offsets added to the current element, in probing order: turn right,
# diagonal right, straight, diagonal left, turn left, diagonal back-left,
# back, diagonal back-right.
PROBE_ORDER = (2, 1, 0, 7, 6, 5, 4, 3)


@dataclass
class ChainTrace:
    """Result of following an edge with the chain code."""
    points: list[tuple[int, int]] = field(default_factory=list)
    closed: bool = False

    def __len__(self) -> int:
        return len(self.points)

    def passes_near(self, row: float, col: float, sqr_distance: float = NEAR_SQR_DISTANCE) -> bool:
        """True if a traced point lies within ``sqr_distance`` of (row, col)."""
        return any((r - row) ** 2 + (c - col) ** 2 <= sqr_distance for r, c in self.points)


class CannyEdgeDetector:
    """Binary edge map of a grey level window using cv2.Canny."""

    def __init__(self, aperture_size: int = 3):
        self.aperture_size = aperture_size

    def detect(self, window: np.ndarray, th_low: float, th_high: float) -> np.ndarray:
        gray = np.ascontiguousarray(np.clip(window, 0, 255).astype(np.uint8))
        return cv2.Canny(gray, th_low, th_high, apertureSize=self.aperture_size)


def has_good_level(edges: np.ndarray, row: int, col: int) -> bool:
    """True if (row, col) is inside the map and lies on an edge."""
    rows, cols = edges.shape[:2]
    return 0 <= row < rows and 0 <= col < cols and edges[row, col] > 0


def next_chain_element(edges: np.ndarray, row: int, col: int, element: int) -> int | None:
    """
    Next Freeman element from (row, col) given the current heading.

    Returns None when the pixel itself is not on an edge or none of its
    neighbours is.
    """
    if not has_good_level(edges, row, col):
        return None
    for offset in PROBE_ORDER:
        candidate = (element + offset) % 8
        d_row, d_col = FREEMAN_STEPS[candidate]
        if has_good_level(edges, row + d_row, col + d_col):
            return candidate
    return None


def initial_direction(row: int, col: int, shape: tuple[int, int]) -> int:
    """Starting heading for a seed lying on the border of a window."""
    rows, cols = shape[:2]
    if row == 0:
        return 4
    if row == rows - 1:
        return 0
    if col == 0:
        return 2
    if col == cols - 1:
        return 6
    return 0


def find_first_border(
    edges: np.ndarray,
    row: float,
    col: float,
    max_sqr_distance: float = NEAR_SQR_DISTANCE,
) -> tuple[int, int] | None:
    """
    Edge pixel on the window border nearest to (row, col).

    Only pixels within ``max_sqr_distance`` are considered. Ties go to the
    first pixel in raster order.
    """
    rows, cols = edges.shape[:2]
    border = np.zeros(edges.shape[:2], dtype=bool)
    border[0, :] = border[-1, :] = True
    border[:, 0] = border[:, -1] = True

    rr, cc = np.nonzero(border & (edges > 0))
    if len(rr) == 0:
        return None
    d = (rr - row) ** 2 + (cc - col) ** 2
    best = int(np.argmin(d))
    if d[best] > max_sqr_distance:
        return None
    return int(rr[best]), int(cc[best])


def trace_chain_code(edges: np.ndarray, seed: tuple[int, int]) -> ChainTrace:
    """
    Follow the edge starting at ``seed`` with the Freeman chain code.

    The trace stops when no neighbour is on an edge (open) or when it comes
    back to the seed with the heading it started with (closed). The walk is
    bounded by the number of (pixel, heading) states of the map.
    """
    row, col = seed
    trace = ChainTrace(points=[(row, col)])

    element = next_chain_element(edges, row, col, initial_direction(row, col, edges.shape))
    if element is None:
        return trace
    first_element = element

    max_steps = 8 * edges.shape[0] * edges.shape[1]
    for _ in range(max_steps):
        d_row, d_col = FREEMAN_STEPS[element]
        row += d_row
        col += d_col
        trace.points.append((row, col))

        element = next_chain_element(edges, row, col, element)
        if element is None:
            return trace
        if (row, col) == seed and element == first_element:
            trace.closed = True
            return trace
    return trace


def window_origin(row: float, col: float) -> tuple[int, int]:
    """Top-left corner of the recovery window for an extremity at (row, col)."""
    return int(round(row)) - WINDOW_OFFSET, int(round(col)) - WINDOW_OFFSET


def in_window(row: float, col: float, origin: tuple[int, int], size: int = WINDOW_SIZE) -> bool:
    top, left = origin
    return top <= row < top + size and left <= col < left + size


def far_from_image_edge(row: float, col: float, shape: tuple[int, int], margin: int = 20) -> bool:
    """True if (row, col) is more than ``margin`` pixels from every border."""
    rows, cols = shape[:2]
    return margin < row < rows - margin and margin < col < cols - margin
