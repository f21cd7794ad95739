"""Match Engine: compares a session's probe signature with reference photos.

The probe is the signature of the best-quality ``center`` capture. Every
reference photo is downloaded, decoded, run through the face detector and
the same signature extractor, and scored with the remapped cosine
similarity. The best score decides the outcome; when nothing could be
compared, per-category failure counts pick the most actionable message.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

import numpy as np

from liveface.config import MatchConfig
from liveface.errors import (
    FailureKind,
    ReferenceDecodeError,
    ReferenceDownloadError,
    ReferenceFaceError,
)
from liveface.signature import cosine_similarity, extract_signature
from liveface.store import PhotoStore, VerificationStore, decode_image, download_image
from liveface.types import Capture, FrameObservation, MatchResult, Pose

logger = logging.getLogger(__name__)

MSG_NO_CAPTURES = "No face captures available"
MSG_NO_PHOTOS = "No profile photos found. Please add photos first."
MSG_NO_CENTER = "Center face capture required"
MSG_CONNECTIVITY = "Could not load profile photos. Please check your internet connection."
MSG_NO_REFERENCE_FACE = (
    "Could not detect face in your profile photos. Please use photos with clear face visibility."
)
MSG_GENERIC = "Verification failed. Please try again."
MSG_SUCCESS = "Face verified successfully!"
MSG_MISMATCH = (
    "Face doesn't match your profile photos. Please ensure your profile has recent photos."
)
MSG_LOW = "Face similarity too low. Please try again with better lighting."

TIER_MISMATCH = "mismatch"
TIER_LOW = "low"


class FaceDetector(Protocol):
    def detect(self, image: np.ndarray) -> Optional[FrameObservation]:
        """Largest face in a BGR image, or None."""
        ...


Downloader = Callable[..., bytes]


@dataclass
class _MatchTally:
    """Accumulator shared by reference workers."""

    best: float = 0.0
    comparisons: int = 0
    download_failures: int = 0
    extraction_failures: int = 0

    def __post_init__(self):
        self._lock = threading.Lock()

    def add_similarity(self, similarity: float) -> None:
        with self._lock:
            self.comparisons += 1
            if similarity > self.best:
                self.best = similarity

    def add_download_failure(self) -> None:
        with self._lock:
            self.download_failures += 1

    def add_extraction_failure(self) -> None:
        with self._lock:
            self.extraction_failures += 1


def decide_match(
    best: float,
    comparisons: int,
    total: int,
    download_failures: int = 0,
    extraction_failures: int = 0,
    config: MatchConfig = MatchConfig(),
) -> MatchResult:
    """Turn tallied comparisons into a ``MatchResult``.

    Args:
        best: Highest remapped similarity seen.
        comparisons: References that produced a similarity.
        total: References attempted.
        download_failures: References that could not be fetched or decoded.
        extraction_failures: References without a usable face.
        config: Thresholds.
    """
    counts = dict(
        comparisons=comparisons,
        download_failures=download_failures,
        extraction_failures=extraction_failures,
    )

    if comparisons == 0:
        if download_failures == total:
            return MatchResult(False, MSG_CONNECTIVITY, failure=FailureKind.REFERENCE_DOWNLOAD_FAILED, **counts)
        if extraction_failures > 0:
            return MatchResult(
                False, MSG_NO_REFERENCE_FACE,
                failure=FailureKind.REFERENCE_FACE_EXTRACTION_FAILED, **counts,
            )
        return MatchResult(False, MSG_GENERIC, failure=FailureKind.MATCH_ERROR, **counts)

    if best >= config.match_threshold:
        return MatchResult(True, MSG_SUCCESS, confidence=best, **counts)

    if best < config.mismatch_threshold:
        return MatchResult(
            False, MSG_MISMATCH, confidence=best,
            failure=FailureKind.LOW_CONFIDENCE_MATCH, tier=TIER_MISMATCH, **counts,
        )
    return MatchResult(
        False, MSG_LOW, confidence=best,
        failure=FailureKind.LOW_CONFIDENCE_MATCH, tier=TIER_LOW, **counts,
    )


def best_center_capture(captures: Sequence[Capture]) -> Optional[Capture]:
    """Highest-quality ``center`` capture (first one wins ties)."""
    best = None
    for capture in captures:
        if capture.pose != Pose.CENTER:
            continue
        if best is None or capture.observation.quality > best.observation.quality:
            best = capture
    return best


class MatchEngine:
    """Compares session captures against a user's reference photos.

    Args:
        photo_store: Source of reference photo URLs.
        detector: Face detector used on reference images.
        verification_store: Receives the verified flag on success (optional).
        downloader: ``(url, timeout, total_timeout) -> bytes``.
        config: Thresholds, network budgets and worker count.

    Example:
        >>> engine = MatchEngine(JsonPhotoStore("photos.json"), MediaPipeFaceDetector())
        >>> result = engine.match("user-1", captures)
    """

    def __init__(
        self,
        photo_store: PhotoStore,
        detector: FaceDetector,
        verification_store: Optional[VerificationStore] = None,
        downloader: Optional[Downloader] = None,
        config: Optional[MatchConfig] = None,
    ):
        self._photo_store = photo_store
        self._detector = detector
        self._verification_store = verification_store
        self._download = downloader or download_image
        self.config = config or MatchConfig()

    def match(
        self,
        user_id: str,
        captures: Sequence[Capture],
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> MatchResult:
        """Run the match for one session.

        Collaborator failures are folded into the result. Only unexpected
        errors (including persistence failures) propagate.
        """
        cancelled = is_cancelled or (lambda: False)

        if not captures:
            return MatchResult(False, MSG_NO_CAPTURES, failure=FailureKind.NO_FACE_CAPTURED)

        urls = list(self._photo_store.fetch_profile_photos(user_id))
        if not urls:
            return MatchResult(False, MSG_NO_PHOTOS, failure=FailureKind.NO_PROFILE_PHOTOS)

        probe_capture = best_center_capture(captures)
        if probe_capture is None:
            return MatchResult(False, MSG_NO_CENTER, failure=FailureKind.NO_FACE_CAPTURED)
        probe = probe_capture.signature

        logger.info("Matching %s against %d reference photo(s)", user_id, len(urls))
        tally = _MatchTally()

        if self.config.max_workers > 1 and len(urls) > 1:
            workers = min(self.config.max_workers, len(urls))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="liveface-ref") as pool:
                futures = [pool.submit(self._score_reference, url, probe, tally, cancelled) for url in urls]
                for future in futures:
                    future.result()
        else:
            for url in urls:
                if cancelled():
                    break
                self._score_reference(url, probe, tally, cancelled)

        if cancelled():
            logger.info("Match for %s abandoned", user_id)
            return MatchResult(False, MSG_GENERIC, abandoned=True)

        result = decide_match(
            tally.best,
            tally.comparisons,
            len(urls),
            tally.download_failures,
            tally.extraction_failures,
            self.config,
        )

        if result.success and self._verification_store is not None:
            self._verification_store.mark_verified(user_id, result.confidence)

        logger.info(
            "Match for %s: success=%s best=%.3f (%d compared, %d download failures, "
            "%d extraction failures)",
            user_id, result.success, tally.best, tally.comparisons,
            tally.download_failures, tally.extraction_failures,
        )
        return result

    def _score_reference(
        self,
        url: str,
        probe: np.ndarray,
        tally: _MatchTally,
        cancelled: Callable[[], bool],
    ) -> None:
        if cancelled():
            return
        try:
            similarity = self.compare_reference(url, probe)
        except (ReferenceDownloadError, ReferenceDecodeError) as e:
            logger.warning("Reference photo unavailable: %s", e)
            tally.add_download_failure()
        except ReferenceFaceError as e:
            logger.warning("Could not extract face from profile photo %s: %s", url, e)
            tally.add_extraction_failure()
        else:
            logger.debug("Profile photo similarity: %.4f (%s)", similarity, url)
            tally.add_similarity(similarity)

    def compare_reference(self, url: str, probe: np.ndarray) -> float:
        """Similarity between *probe* and the face in the photo at *url*."""
        data = self._download(
            url,
            timeout=self.config.request_timeout_sec,
            total_timeout=self.config.total_timeout_sec,
        )
        image = decode_image(data)
        signature = self.image_signature(image)
        return cosine_similarity(probe, signature)

    def image_signature(self, image: np.ndarray) -> np.ndarray:
        """Signature of the largest face in *image*."""
        obs = self._detector.detect(image)
        if obs is None:
            raise ReferenceFaceError("no face detected")
        signature = extract_signature(obs.landmarks, self.config.require_eyebrows)
        if signature is None:
            raise ReferenceFaceError("face landmarks incomplete")
        return signature


__all__ = [
    "FaceDetector",
    "MatchEngine",
    "decide_match",
    "best_center_capture",
    "TIER_MISMATCH",
    "TIER_LOW",
]
