"""liveface domain types.

Frame observations, poses, challenges, captures, match results and the
session ``Stage`` union. Landmark points are normalized image coordinates
(origin top-left, x right, y down); head angles are radians.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import ClassVar, Dict, Optional, Tuple

import numpy as np

from liveface.errors import FailureKind


# ── Poses & challenges ──


class Pose(str, Enum):
    """Head pose the user is asked to hold during capture."""

    CENTER = "center"
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"

    @property
    def prompt(self) -> str:
        return _POSE_PROMPTS[self]

    @property
    def yaw_range(self) -> Tuple[float, float]:
        return POSE_WINDOWS[self][0]

    @property
    def pitch_range(self) -> Tuple[float, float]:
        return POSE_WINDOWS[self][1]


_POSE_PROMPTS = {
    Pose.CENTER: "Look straight ahead",
    Pose.LEFT: "Turn your head left",
    Pose.RIGHT: "Turn your head right",
    Pose.UP: "Tilt your head up slightly",
    Pose.DOWN: "Tilt your head down slightly",
}

# (yaw window, pitch window), closed intervals
POSE_WINDOWS: Dict[Pose, Tuple[Tuple[float, float], Tuple[float, float]]] = {
    Pose.CENTER: ((-0.15, 0.15), (-0.15, 0.15)),
    Pose.LEFT: ((-0.6, -0.25), (-0.25, 0.25)),
    Pose.RIGHT: ((0.25, 0.6), (-0.25, 0.25)),
    Pose.UP: ((-0.25, 0.25), (0.2, 0.5)),
    Pose.DOWN: ((-0.25, 0.25), (-0.5, -0.2)),
}


class Challenge(str, Enum):
    """Liveness gesture the user is asked to perform."""

    BLINK = "blink"
    SMILE = "smile"
    TURN_LEFT = "turn_left"
    TURN_RIGHT = "turn_right"

    @property
    def prompt(self) -> str:
        return _CHALLENGE_PROMPTS[self]


_CHALLENGE_PROMPTS = {
    Challenge.BLINK: "Blink your eyes",
    Challenge.SMILE: "Smile naturally",
    Challenge.TURN_LEFT: "Turn head slowly left",
    Challenge.TURN_RIGHT: "Turn head slowly right",
}


# ── Frame observations ──


@dataclass(eq=False)
class FaceLandmarks:
    """Named landmark groups of one detected face.

    Each group is an ``(N, 2)`` float array of points, or None when the
    detector did not produce it. Both axes share one unit (image height
    for the MediaPipe backend), so ratios and angles are undistorted.
    Eye groups are ordered for the eye-aspect-ratio: corner, top, top,
    corner, bottom, bottom.
    """

    left_eye: Optional[np.ndarray] = None
    right_eye: Optional[np.ndarray] = None
    left_eyebrow: Optional[np.ndarray] = None
    right_eyebrow: Optional[np.ndarray] = None
    nose: Optional[np.ndarray] = None
    outer_lips: Optional[np.ndarray] = None
    inner_lips: Optional[np.ndarray] = None
    face_contour: Optional[np.ndarray] = None

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                arr = np.asarray(value, dtype=np.float64).reshape(-1, 2)
                setattr(self, f.name, arr)

    @classmethod
    def group_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))

    def to_dict(self) -> Dict[str, list]:
        """JSON-friendly dict; missing groups are omitted."""
        return {
            name: getattr(self, name).tolist()
            for name in self.group_names()
            if getattr(self, name) is not None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, list]) -> FaceLandmarks:
        known = set(cls.group_names())
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})


@dataclass
class FrameObservation:
    """One camera frame's detected face.

    Attributes:
        bbox: Bounding box (x, y, width, height) normalized to the frame.
        yaw: Head yaw in radians.
        pitch: Head pitch in radians.
        roll: Head roll in radians.
        quality: Capture quality score [0, 1].
        landmarks: Named landmark groups.
        frame_id: Frame identifier from the source.
        t_ns: Timestamp in nanoseconds (source timeline).
    """

    bbox: Tuple[float, float, float, float]
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0
    quality: float = 0.0
    landmarks: FaceLandmarks = field(default_factory=FaceLandmarks)
    frame_id: int = 0
    t_ns: int = 0

    @property
    def area(self) -> float:
        return float(self.bbox[2] * self.bbox[3])

    @property
    def center(self) -> Tuple[float, float]:
        x, y, w, h = self.bbox
        return (x + w / 2.0, y + h / 2.0)


@dataclass(eq=False)
class Capture:
    """A frame accepted for a pose, with its signature."""

    pose: Pose
    signature: np.ndarray
    observation: FrameObservation
    timestamp: float


@dataclass
class MatchResult:
    """Outcome of comparing a probe signature with reference photos.

    Attributes:
        success: Whether the best similarity reached the match threshold.
        message: User-facing message.
        confidence: Best remapped cosine similarity [0, 1].
        failure: Failure category when unsuccessful.
        tier: Low-confidence tier ("mismatch" or "low") when applicable.
        comparisons: Number of reference photos compared.
        download_failures: Reference photos that could not be downloaded.
        extraction_failures: Reference photos without a usable face.
        abandoned: The owning session was reset before matching finished.
    """

    success: bool
    message: str
    confidence: float = 0.0
    failure: Optional[FailureKind] = None
    tier: Optional[str] = None
    comparisons: int = 0
    download_failures: int = 0
    extraction_failures: int = 0
    abandoned: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "confidence": self.confidence,
            "failure": self.failure.value if self.failure else None,
            "tier": self.tier,
            "comparisons": self.comparisons,
            "download_failures": self.download_failures,
            "extraction_failures": self.extraction_failures,
        }


# ── Session stages ──


@dataclass(frozen=True)
class Stage:
    """Base of the session stage union."""

    name: ClassVar[str] = ""
    terminal: ClassVar[bool] = False

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Initializing(Stage):
    name: ClassVar[str] = "initializing"


@dataclass(frozen=True)
class Positioning(Stage):
    name: ClassVar[str] = "positioning"


@dataclass(frozen=True)
class CapturingPoses(Stage):
    name: ClassVar[str] = "capturing_poses"


@dataclass(frozen=True)
class LivenessCheck(Stage):
    name: ClassVar[str] = "liveness_check"


@dataclass(frozen=True)
class Processing(Stage):
    name: ClassVar[str] = "processing"


@dataclass(frozen=True)
class Success(Stage):
    name: ClassVar[str] = "success"
    terminal: ClassVar[bool] = True


@dataclass(frozen=True)
class Failure(Stage):
    """Terminal failure with a user-facing reason."""

    name: ClassVar[str] = "failure"
    terminal: ClassVar[bool] = True

    reason: str = ""
    kind: FailureKind = FailureKind.MATCH_ERROR
    detail: Optional[str] = None


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session for observers."""

    user_id: str
    stage: Stage
    progress: float
    instruction: str
    face_detected: bool
    face_in_position: bool
    current_pose: Optional[Pose]
    current_challenge: Optional[Challenge]
    completed_poses: frozenset
    completed_challenges: frozenset
    yaw: float
    pitch: float
    roll: float
    quality: float
    left_eye_open: bool
    right_eye_open: bool
    smile_detected: bool
    debug_info: str = ""
    confidence: float = 0.0


__all__ = [
    "Pose",
    "POSE_WINDOWS",
    "Challenge",
    "FaceLandmarks",
    "FrameObservation",
    "Capture",
    "MatchResult",
    "Stage",
    "Initializing",
    "Positioning",
    "CapturingPoses",
    "LivenessCheck",
    "Processing",
    "Success",
    "Failure",
    "SessionSnapshot",
]
