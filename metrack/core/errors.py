"""
Exceptions raised by the moving-edges tracker.

Only configuration and initialization problems surface to the caller.
Tracking loss and recovery misses are absorbed within a cycle.
"""


class MovingEdgeError(Exception):
    """Base class for tracker errors."""


class ConfigurationError(MovingEdgeError, ValueError):
    """Invalid tracking parameters (e.g. a zero angular resolution)."""


class NotInitializedError(MovingEdgeError, RuntimeError):
    """The tracker was used before a curve was defined."""
