"""liveface - Live face verification sessions.

Guides a user through head-pose capture and liveness challenges, then
matches the captured face against the user's profile photos.

Quick Start:
    >>> from liveface import VerificationEngine, MatchEngine, JsonPhotoStore
    >>> from liveface.backends.mediapipe import MediaPipeFaceDetector
    >>> detector = MediaPipeFaceDetector()
    >>> matcher = MatchEngine(JsonPhotoStore("photos.json"), detector)
    >>> with VerificationEngine(matcher) as engine:
    ...     engine.start("user-1")
    ...     for image in frames:
    ...         obs = detector.detect(image)
    ...         engine.process_observation(obs) if obs else engine.no_face_detected()
    ...     snapshot = engine.wait_for_terminal(timeout=90)
    >>> print(snapshot.stage, snapshot.confidence)
"""

__version__ = "0.1.0"

from liveface.types import (
    Pose,
    Challenge,
    FaceLandmarks,
    FrameObservation,
    Capture,
    MatchResult,
    Stage,
    Initializing,
    Positioning,
    CapturingPoses,
    LivenessCheck,
    Processing,
    Success,
    Failure,
    SessionSnapshot,
)
from liveface.errors import FailureKind
from liveface.config import VerificationConfig
from liveface.signature import extract_signature, cosine_similarity
from liveface.machine import VerificationStateMachine
from liveface.matcher import MatchEngine
from liveface.session import VerificationEngine
from liveface.store import (
    JsonPhotoStore,
    JsonVerificationStore,
    MemoryPhotoStore,
    MemoryVerificationStore,
)

__all__ = [
    "Pose",
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
    "FailureKind",
    "VerificationConfig",
    "extract_signature",
    "cosine_similarity",
    "VerificationStateMachine",
    "MatchEngine",
    "VerificationEngine",
    "JsonPhotoStore",
    "JsonVerificationStore",
    "MemoryPhotoStore",
    "MemoryVerificationStore",
]
