"""Geometric face signature extraction.

Turns one face's landmark groups into a fixed-length, L2-normalized feature
vector of scale-free ratios, angles and offsets. Inter-pupillary distance
(IPD) is the scale reference for every distance feature.

Layout (31 values):
    0       IPD / face width
    1-3     eye-mid↔nose, nose↔mouth, eye-mid↔mouth (/IPD)
    4       face height / face width
    5-6     left eye↔nose, right eye↔nose (/IPD)
    7-9     mouth width, nose width, eye vertical asymmetry (/IPD)
    10-12   eye-line, eye-mid→nose, nose→mouth angles
    13-14   left, right eye height/width
    15-16   nose length, mouth height (/IPD)
    17-19   brow↔eye distances (/IPD), brow-line angle (zeros without brows)
    20-22   lower jaw, mid jaw width / face width, lower/mid ratio
    23-30   eye, eye, nose, mouth center offsets from contour centroid (/IPD)
"""

import logging
from typing import Optional

import numpy as np

from liveface.geometry import MIN_EXTENT, angle, as_points, centroid, distance, extent
from liveface.types import FaceLandmarks

logger = logging.getLogger(__name__)

SIGNATURE_DIM = 31

# Minimum IPD (normalized units) for a face to be measurable
MIN_IPD = 0.01

# Face contours shorter than this get zero jaw features
MIN_CONTOUR_POINTS = 10


def extract_signature(
    landmarks: FaceLandmarks,
    require_eyebrows: bool = False,
) -> Optional[np.ndarray]:
    """Extract a normalized geometric signature from landmark groups.

    Args:
        landmarks: Landmark groups of one face.
        require_eyebrows: Reject faces without eyebrow groups instead of
            zero-filling the eyebrow features.

    Returns:
        ``float32`` vector of length ``SIGNATURE_DIM`` with unit L2 norm, or
        None when a required group is missing, the face is too small, or the
        features degenerate to a zero vector.
    """
    left_eye = as_points(landmarks.left_eye)
    right_eye = as_points(landmarks.right_eye)
    nose = as_points(landmarks.nose)
    lips = as_points(landmarks.outer_lips)
    contour = as_points(landmarks.face_contour)
    if left_eye is None or right_eye is None or nose is None or lips is None or contour is None:
        return None

    left_brow = as_points(landmarks.left_eyebrow)
    right_brow = as_points(landmarks.right_eyebrow)
    has_brows = left_brow is not None and right_brow is not None
    if require_eyebrows and not has_brows:
        logger.debug("Signature rejected: eyebrow landmarks missing")
        return None

    left_center = centroid(left_eye)
    right_center = centroid(right_eye)
    nose_center = centroid(nose)
    mouth_center = centroid(lips)

    ipd = distance(left_center, right_center)
    if ipd <= MIN_IPD:
        return None

    face_width = extent(contour, 0)
    face_height = extent(contour, 1)
    eye_mid = (left_center + right_center) / 2.0

    features = [
        ipd / face_width,
        distance(eye_mid, nose_center) / ipd,
        distance(nose_center, mouth_center) / ipd,
        distance(eye_mid, mouth_center) / ipd,
        face_height / face_width,
        distance(left_center, nose_center) / ipd,
        distance(right_center, nose_center) / ipd,
        extent(lips, 0) / ipd,
        extent(nose, 0) / ipd,
        abs(float(left_center[1] - right_center[1])) / ipd,
        angle(left_center, right_center),
        angle(eye_mid, nose_center),
        angle(nose_center, mouth_center),
        extent(left_eye, 1) / extent(left_eye, 0),
        extent(right_eye, 1) / extent(right_eye, 0),
        extent(nose, 1) / ipd,
        extent(lips, 1) / ipd,
    ]

    if has_brows:
        left_brow_center = centroid(left_brow)
        right_brow_center = centroid(right_brow)
        features += [
            distance(left_brow_center, left_center) / ipd,
            distance(right_brow_center, right_center) / ipd,
            angle(left_brow_center, right_brow_center),
        ]
    else:
        features += [0.0, 0.0, 0.0]

    features += _jaw_features(contour, face_width)

    face_center = centroid(contour)
    for part in (left_center, right_center, nose_center, mouth_center):
        offset = (part - face_center) / ipd
        features += [float(offset[0]), float(offset[1])]

    vec = np.asarray(features, dtype=np.float64)
    norm = float(np.linalg.norm(vec))
    if not np.isfinite(norm) or norm == 0.0:
        return None
    return (vec / norm).astype(np.float32)


def _jaw_features(contour: np.ndarray, face_width: float) -> list:
    """Jaw width ratios from the lower and middle thirds of the contour."""
    n = len(contour)
    if n < MIN_CONTOUR_POINTS:
        return [0.0, 0.0, 0.0]

    third = n // 3
    # y grows downward: the lowest points come first
    by_height = contour[np.argsort(-contour[:, 1], kind="stable")]
    lower = by_height[:third]
    middle = by_height[third:2 * third]

    lower_width = extent(lower, 0)
    mid_width = extent(middle, 0)
    return [
        lower_width / face_width,
        mid_width / face_width,
        lower_width / max(mid_width, MIN_EXTENT),
    ]


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity remapped to [0, 1] via ``(cos + 1) / 2``.

    Identical directions give 1.0, orthogonal 0.5, opposite 0.0. Mismatched,
    empty or zero-magnitude vectors give 0.0.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.size == 0 or a.shape != b.shape:
        return 0.0

    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    cos = float(np.dot(a, b)) / (norm_a * norm_b)
    cos = min(1.0, max(-1.0, cos))
    return (cos + 1.0) / 2.0


__all__ = ["SIGNATURE_DIM", "extract_signature", "cosine_similarity"]
