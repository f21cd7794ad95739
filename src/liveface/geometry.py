"""2D point helpers shared by the signature extractor and liveness checks."""

import math
from typing import Optional

import numpy as np

# Floor for extents used as denominators
MIN_EXTENT = 1e-3


def as_points(points) -> Optional[np.ndarray]:
    """Return *points* as an ``(N, 2)`` float array, or None if empty/missing."""
    if points is None:
        return None
    arr = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if arr.shape[0] == 0:
        return None
    return arr


def centroid(points: np.ndarray) -> np.ndarray:
    return points.mean(axis=0)


def distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.hypot(b[0] - a[0], b[1] - a[1]))


def angle(a: np.ndarray, b: np.ndarray) -> float:
    """Angle of the a→b vector in radians."""
    return math.atan2(float(b[1] - a[1]), float(b[0] - a[0]))


def extent(points: np.ndarray, axis: int) -> float:
    """Range of *points* along *axis* (0 = x, 1 = y), floored at MIN_EXTENT."""
    if points is None or len(points) == 0:
        return MIN_EXTENT
    values = points[:, axis]
    return max(float(values.max() - values.min()), MIN_EXTENT)
