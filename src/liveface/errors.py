"""Failure taxonomy for verification sessions.

Terminal session failures are represented as state (``Failure`` stage with a
``FailureKind``), never raised to callers. The exception classes below are
used internally between the Match Engine and its collaborators; the engine
folds them into per-category counters.
"""

from enum import Enum


class FailureKind(str, Enum):
    """Why a session ended in ``Failure``."""

    POSE_CAPTURE_EXHAUSTED = "pose_capture_exhausted"
    CHALLENGE_EXHAUSTED = "challenge_exhausted"
    NO_FACE_CAPTURED = "no_face_captured"
    NO_PROFILE_PHOTOS = "no_profile_photos"
    REFERENCE_DOWNLOAD_FAILED = "reference_download_failed"
    REFERENCE_FACE_EXTRACTION_FAILED = "reference_face_extraction_failed"
    LOW_CONFIDENCE_MATCH = "low_confidence_match"
    SESSION_TIMED_OUT = "session_timed_out"
    MATCH_ERROR = "match_error"


# Failures produced by the Match Engine; a session that ended with one of
# these may re-run matching on its existing captures.
MATCH_FAILURES = frozenset({
    FailureKind.NO_FACE_CAPTURED,
    FailureKind.NO_PROFILE_PHOTOS,
    FailureKind.REFERENCE_DOWNLOAD_FAILED,
    FailureKind.REFERENCE_FACE_EXTRACTION_FAILED,
    FailureKind.LOW_CONFIDENCE_MATCH,
    FailureKind.MATCH_ERROR,
})


class LiveFaceError(Exception):
    """Base class for liveface errors."""


class ReferenceDownloadError(LiveFaceError):
    """A reference photo could not be downloaded."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to download {url}: {reason}")
        self.url = url
        self.reason = reason


class ReferenceDecodeError(LiveFaceError):
    """Downloaded bytes are not a decodable image."""


class ReferenceFaceError(LiveFaceError):
    """No usable face signature could be extracted from a reference photo."""


class PersistenceError(LiveFaceError):
    """The verification record could not be written."""


__all__ = [
    "FailureKind",
    "MATCH_FAILURES",
    "LiveFaceError",
    "ReferenceDownloadError",
    "ReferenceDecodeError",
    "ReferenceFaceError",
    "PersistenceError",
]
