"""
Moving-edge search for a single site.

A site is refined by sampling positions along its normal and measuring the
edge contrast with the oriented mask matching its angle. The best position
that is strong enough and consistent with the contrast seen at the previous
frame wins.
"""

import math

import numpy as np

from metrack.core.config import MovingEdgeConfig
from metrack.core.masks import build_masks, convolve_at, mask_count, mask_index
from metrack.tracking.site import Site, SiteState


def out_of_image(row: int, col: int, half: int, rows: int, cols: int) -> bool:
    """True if a mask of half-size ``half`` centred on (row, col) is too close to the border."""
    return (
        row < half + 1
        or row > rows - half - 3
        or col < half + 1
        or col > cols - half - 3
    )


def find_angle(
    image: np.ndarray,
    row: float,
    col: float,
    config: MovingEdgeConfig,
) -> tuple[float, float]:
    """
    Find the edge orientation at a point by trying 180 directions.

    Every whole degree in [0, 180) is tested with its matching mask and the
    strongest absolute response wins.

    Args:
        image: Grey level image
        row: Row of the point
        col: Column of the point
        config: Tracking parameters (mask size and angle step are used)

    Returns:
        Tuple (alpha, convlt): normal angle in [0, pi) and contrast at that
        angle. (0.0, 0.0) when the point is too close to the image border or
        no direction responds.

    Raises:
        ConfigurationError: If the angle step is zero
    """
    n_mask = mask_count(config.angle_step)
    masks = build_masks(config.mask_size, config.angle_step)

    half = config.mask_size // 2
    ri, ci = int(round(row)), int(round(col))
    rows, cols = image.shape[:2]
    if out_of_image(ri, ci, half, rows, cols):
        return 0.0, 0.0

    patch = np.asarray(image[ri - half:ri + half + 1, ci - half:ci + half + 1], dtype=np.float64)
    responses = np.abs(np.tensordot(masks, patch, axes=([1, 2], [0, 1])))
    indices = (np.arange(180) / config.angle_step).astype(int) % n_mask
    per_degree = responses[indices]

    best = int(np.argmax(per_degree))
    convlt = float(per_degree[best])
    if convlt <= 0:
        return 0.0, 0.0
    return math.radians(best) % math.pi, convlt


class MovingEdgeSiteTracker:
    """
    Default per-site tracker.

    Looks for the strongest edge within ``config.range`` pixels of the site
    along its normal. A site that has a reference contrast only accepts
    candidates whose contrast ratio stays within [1 - mu1, 1 + mu2].

    Example:
        >>> tracker = MovingEdgeSiteTracker()
        >>> site = Site(50.0, 48.0, alpha=0.0)
        >>> tracker.track(gray, site, MovingEdgeConfig())
        >>> site.state
        <SiteState.OK: 0>
    """

    def track(self, image: np.ndarray, site: Site, config: MovingEdgeConfig) -> None:
        masks = build_masks(config.mask_size, config.angle_step)
        mask = masks[mask_index(site.alpha, config.angle_step)]
        half = config.mask_size // 2
        rows, cols = image.shape[:2]

        salpha = math.sin(site.alpha)
        calpha = math.cos(site.alpha)

        candidates = []
        contrast_rejected = False
        for k in range(-config.range, config.range + 1):
            row = site.row + k * salpha
            col = site.col + k * calpha
            ri, ci = int(round(row)), int(round(col))
            if out_of_image(ri, ci, half, rows, cols):
                continue

            likelihood = abs(convolve_at(image, ri, ci, mask))
            if likelihood < config.threshold:
                continue
            if site.convlt > 0:
                ratio = likelihood / site.convlt
                if ratio < 1.0 - config.mu1 or ratio > 1.0 + config.mu2:
                    contrast_rejected = True
                    continue
            candidates.append((likelihood, -abs(k), row, col))

        if not candidates:
            site.state = SiteState.SUPPRESS_CONTRAST if contrast_rejected else SiteState.SUPPRESS_LOST
            return

        likelihood, _, row, col = max(candidates)
        site.move_to(row, col)
        site.convlt = likelihood
        site.state = SiteState.OK
