"""
Oriented convolution masks used to measure edge contrast.

Mask ``k`` responds to a step edge whose normal makes an angle of
``k * angle_step`` degrees with the column axis, in (row, col) image
coordinates. Masks are antisymmetric and normalised so that convolving a
clean step edge returns the grey level difference across it.
"""

import math

import numpy as np

from metrack.core.errors import ConfigurationError

# Mask banks already built, keyed by (mask_size, angle_step)
_mask_cache: dict[tuple[int, float], np.ndarray] = {}


def mask_count(angle_step: float) -> int:
    """Number of masks needed to cover [0, 180) degrees."""
    if angle_step <= 0:
        raise ConfigurationError(f"angle step must be positive, got {angle_step}")
    return int(math.ceil(180.0 / angle_step))


def mask_index(alpha: float, angle_step: float) -> int:
    """Index of the mask matching a normal angle ``alpha`` (radians)."""
    n_mask = mask_count(angle_step)
    return int(round(math.degrees(alpha) / angle_step)) % n_mask


def build_masks(mask_size: int, angle_step: float) -> np.ndarray:
    """
    Build the bank of oriented step masks.

    Args:
        mask_size: Odd side length of every mask
        angle_step: Angular resolution in degrees

    Returns:
        Read-only array of shape (n_mask, mask_size, mask_size), shared by
        every caller asking for the same size and step

    Raises:
        ConfigurationError: If the angle step is zero or negative
    """
    n_mask = mask_count(angle_step)
    key = (int(mask_size), float(angle_step))
    if key in _mask_cache:
        return _mask_cache[key]

    half = mask_size // 2
    offsets = np.arange(-half, half + 1, dtype=np.float64)
    d_row, d_col = np.meshgrid(offsets, offsets, indexing="ij")

    masks = np.zeros((n_mask, mask_size, mask_size), dtype=np.float64)
    for k in range(n_mask):
        theta = math.radians(k * angle_step)
        proj = d_row * math.sin(theta) + d_col * math.cos(theta)
        mask = np.clip(proj, -1.0, 1.0)
        positive = mask[mask > 0].sum()
        if positive > 0:
            mask /= positive
        masks[k] = mask

    masks.flags.writeable = False
    _mask_cache[key] = masks
    return masks


def convolve_at(image: np.ndarray, row: int, col: int, mask: np.ndarray) -> float:
    """Correlate ``mask`` with the image patch centred on (row, col)."""
    half = mask.shape[0] // 2
    patch = image[row - half:row + half + 1, col - half:col + half + 1]
    return float(np.sum(patch * mask))
