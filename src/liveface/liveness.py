"""Liveness signals: eye openness, blinks and smiles.

Eye groups are expected in EAR order (corner, top, top, corner, bottom,
bottom). Outer-lip groups with ten or more points are expected to start at
the left mouth corner, reach the top midpoint at index 3, the right corner
at index 6 and the bottom midpoint at index 9.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from liveface.config import LivenessConfig
from liveface.geometry import as_points, distance
from liveface.types import FaceLandmarks

logger = logging.getLogger(__name__)


def eye_aspect_ratio(points) -> Optional[float]:
    """EAR = (|p1-p5| + |p2-p4|) / (2 * |p3-p0|).

    Returns None for fewer than six points or a zero-width eye.
    """
    pts = as_points(points)
    if pts is None or len(pts) < 6:
        return None
    width = distance(pts[0], pts[3])
    if width == 0.0:
        return None
    vertical = distance(pts[1], pts[5]) + distance(pts[2], pts[4])
    return vertical / (2.0 * width)


def is_eye_open(points, threshold: float = 0.18) -> bool:
    """An eye with no measurable EAR counts as open."""
    ear = eye_aspect_ratio(points)
    if ear is None:
        return True
    return ear > threshold


def mouth_aspect_ratio(points) -> Optional[float]:
    """Mouth width over height from the outer lip contour."""
    pts = as_points(points)
    if pts is None or len(pts) < 6:
        return None
    if len(pts) >= 10:
        width = abs(float(pts[0, 0] - pts[6, 0]))
        height = abs(float(pts[3, 1] - pts[9, 1]))
    else:
        width = float(pts[:, 0].max() - pts[:, 0].min())
        height = float(pts[:, 1].max() - pts[:, 1].min())
    if height == 0.0:
        return None
    return width / height


def is_smiling(points, threshold: float = 3.0) -> bool:
    ratio = mouth_aspect_ratio(points)
    return ratio is not None and ratio > threshold


@dataclass(frozen=True)
class LivenessSignals:
    """Per-frame liveness readout."""

    left_eye_open: bool
    right_eye_open: bool
    smiling: bool
    blink_counted: bool = False


class LivenessTracker:
    """Accumulates blinks and smiling frames across a frame stream.

    A blink is a run of frames with both eyes closed whose length falls in
    ``[min_blink_frames, max_blink_frames]``, counted when the eyes reopen.
    Longer runs are eyes-closed events and are not scored.

    Example:
        >>> tracker = LivenessTracker()
        >>> signals = tracker.update(obs.landmarks)
        >>> tracker.blinks, tracker.smile_frames
    """

    def __init__(self, config: LivenessConfig = LivenessConfig()):
        self._config = config
        self.blinks = 0
        self.smile_frames = 0
        self.closed_streak = 0
        self.left_eye_open = True
        self.right_eye_open = True
        self.smiling = False

    def update(self, landmarks: FaceLandmarks) -> LivenessSignals:
        cfg = self._config
        left_open = is_eye_open(landmarks.left_eye, cfg.ear_threshold)
        right_open = is_eye_open(landmarks.right_eye, cfg.ear_threshold)
        smiling = is_smiling(landmarks.outer_lips, cfg.smile_ratio_threshold)

        blink_counted = False
        if not left_open and not right_open:
            self.closed_streak += 1
        elif self.closed_streak > 0:
            if cfg.min_blink_frames <= self.closed_streak <= cfg.max_blink_frames:
                self.blinks += 1
                blink_counted = True
                logger.debug("Blink counted (%d frames, total %d)", self.closed_streak, self.blinks)
            elif self.closed_streak > cfg.max_blink_frames:
                logger.debug("Eyes closed for %d frames, not a blink", self.closed_streak)
            self.closed_streak = 0

        if smiling:
            self.smile_frames += 1

        self.left_eye_open = left_open
        self.right_eye_open = right_open
        self.smiling = smiling
        return LivenessSignals(left_open, right_open, smiling, blink_counted)

    def reset_blinks(self) -> None:
        self.blinks = 0
        self.closed_streak = 0

    def reset_smiles(self) -> None:
        self.smile_frames = 0

    def reset(self) -> None:
        self.reset_blinks()
        self.reset_smiles()
        self.left_eye_open = True
        self.right_eye_open = True
        self.smiling = False


def turn_reached(yaw: float, target_yaw: float, tolerance: float) -> bool:
    """Whether *yaw* is within *tolerance* of *target_yaw*."""
    return abs(yaw - target_yaw) < tolerance


__all__ = [
    "eye_aspect_ratio",
    "is_eye_open",
    "mouth_aspect_ratio",
    "is_smiling",
    "LivenessSignals",
    "LivenessTracker",
    "turn_reached",
]
