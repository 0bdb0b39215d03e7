"""
Core module - Configuration, errors, collaborator protocols and masks.
"""

from metrack.core.errors import MovingEdgeError, ConfigurationError, NotInitializedError
from metrack.core.config import MovingEdgeConfig
from metrack.core.base import SiteTracker, EdgeDetector
from metrack.core.masks import build_masks, mask_count, mask_index

__all__ = [
    "MovingEdgeError",
    "ConfigurationError",
    "NotInitializedError",
    "MovingEdgeConfig",
    "SiteTracker",
    "EdgeDetector",
    "build_masks",
    "mask_count",
    "mask_index",
]
