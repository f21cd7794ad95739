"""Verification state machine.

Drives one session through positioning, pose capture, liveness challenges
and identity matching. The machine is synchronous and owns no threads or
timers: every input method returns a list of effects that the caller
(normally ``liveface.session.VerificationEngine``) executes.

Stage flow::

    Initializing → Positioning → CapturingPoses → LivenessCheck
        → Processing → Success | Failure

Pose and challenge retries happen inside their stage; only an exhausted
retry budget ends the session. The ``completing`` guard makes sure at most
one match runs per attempt.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Set, Tuple, Union

from liveface.config import VerificationConfig
from liveface.errors import MATCH_FAILURES, FailureKind
from liveface.liveness import LivenessTracker, turn_reached
from liveface.observability import (
    CaptureRecord,
    ChallengeRecord,
    FrameRecord,
    StageChangeRecord,
    TraceHub,
    TraceRecord,
)
from liveface.pose import (
    POSITION_PROMPT,
    is_face_positioned,
    pose_guidance,
    pose_matches,
    positioning_instruction,
)
from liveface.signature import extract_signature
from liveface.types import (
    Capture,
    CapturingPoses,
    Challenge,
    Failure,
    FrameObservation,
    Initializing,
    LivenessCheck,
    MatchResult,
    Pose,
    Positioning,
    Processing,
    SessionSnapshot,
    Stage,
    Success,
)

logger = logging.getLogger(__name__)


# ── Effects ──


@dataclass(frozen=True)
class StartTimeout:
    """(Re)start the session wall-clock timeout."""

    seconds: float


@dataclass(frozen=True)
class CancelTimeout:
    """Cancel the pending session timeout, if any."""


@dataclass(frozen=True)
class ScheduleChallengeAdvance:
    """Call ``advance_challenge()`` after *delay* seconds."""

    delay: float


@dataclass(frozen=True)
class StartMatch:
    """Run the Match Engine on *captures* and report back."""

    user_id: str
    captures: Tuple[Capture, ...]


Effect = Union[StartTimeout, CancelTimeout, ScheduleChallengeAdvance, StartMatch]


# Stages in which frames are processed
_ACTIVE_STAGES = (Positioning, CapturingPoses, LivenessCheck)

_PASSED_MESSAGES = {Challenge.BLINK: "Great!"}

_RETRY_PROMPTS = {
    Challenge.BLINK: "Please blink your eyes twice",
    Challenge.SMILE: "Give us a natural smile",
}

_CHALLENGE_NOUNS = {
    Challenge.BLINK: "blink",
    Challenge.SMILE: "smile",
    Challenge.TURN_LEFT: "left turn",
    Challenge.TURN_RIGHT: "right turn",
}

FAILED_INSTRUCTION = "Verification failed"


class VerificationStateMachine:
    """Session state and transition logic for one verification at a time.

    Args:
        config: Thresholds and budgets.
        trace: Optional trace hub for session records.
        clock: Wall-clock source for capture timestamps.

    Example:
        >>> machine = VerificationStateMachine()
        >>> effects = machine.start("user-1")
        >>> effects = machine.process_observation(obs)
    """

    def __init__(
        self,
        config: Optional[VerificationConfig] = None,
        trace: Optional[TraceHub] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or VerificationConfig()
        self._trace = trace
        self._clock = clock
        self.user_id = ""
        self._clear()

    def _clear(self) -> None:
        self.stage: Stage = Initializing()
        self.progress = 0.0
        self.instruction = ""
        self.face_detected = False
        self.face_in_position = False
        self.bbox: Optional[Tuple[float, float, float, float]] = None
        self.yaw = 0.0
        self.pitch = 0.0
        self.roll = 0.0
        self.quality = 0.0
        self.debug_info = ""
        self.confidence = 0.0
        self.started_at: Optional[float] = None

        self.captures: List[Capture] = []
        self.completed_poses: Set[Pose] = set()
        self.completed_challenges: Set[Challenge] = set()
        self._pose_index = 0
        self.current_challenge: Optional[Challenge] = None

        self.pose_frames = 0
        self.pose_retries = 0
        self.challenge_frames = 0
        self.challenge_retries = 0
        self.completing = False
        self.advance_pending = False
        self.liveness = LivenessTracker(self.config.liveness)

    # ── Properties ──

    @property
    def current_pose(self) -> Optional[Pose]:
        poses = self.config.pose.required_poses
        if self._pose_index < len(poses):
            return poses[self._pose_index]
        return None

    @property
    def is_terminal(self) -> bool:
        return self.stage.terminal

    # ── Session lifecycle ──

    def start(self, user_id: str) -> List[Effect]:
        """Begin a new session for *user_id*, discarding any previous one."""
        self._clear()
        self.user_id = user_id
        self.started_at = self._clock()
        self.instruction = POSITION_PROMPT
        self._set_stage(Positioning(), "start")
        logger.info("Starting live face verification for user: %s", user_id)
        return [StartTimeout(self.config.session_timeout_sec)]

    def reset(self) -> List[Effect]:
        """Return to ``Initializing`` and drop all session data."""
        self._clear()
        return [CancelTimeout()]

    # ── Frame inputs ──

    def process_observation(self, obs: FrameObservation) -> List[Effect]:
        """Feed one frame's detected face."""
        if self.completing or not isinstance(self.stage, _ACTIVE_STAGES):
            return []

        self.face_detected = True
        self.bbox = obs.bbox
        self.yaw = obs.yaw
        self.pitch = obs.pitch
        self.roll = obs.roll
        self.quality = obs.quality
        self.liveness.update(obs.landmarks)
        self.debug_info = "Yaw: %.2f, Pitch: %.2f, Roll: %.2f" % (obs.yaw, obs.pitch, obs.roll)

        if isinstance(self.stage, Positioning):
            effects = self._handle_positioning(obs)
        elif isinstance(self.stage, CapturingPoses):
            effects = self._handle_capturing(obs)
        else:
            effects = self._handle_liveness(obs)

        self._emit(FrameRecord(
            user_id=self.user_id,
            frame_id=obs.frame_id,
            stage=self.stage.name,
            yaw=obs.yaw,
            pitch=obs.pitch,
            roll=obs.roll,
            quality=obs.quality,
            instruction=self.instruction,
        ))
        return effects

    def no_face_detected(self) -> List[Effect]:
        """The detector found no face in the current frame."""
        self.face_detected = False
        self.face_in_position = False
        if isinstance(self.stage, (Positioning, CapturingPoses)):
            self.instruction = POSITION_PROMPT
        return []

    # ── Stage handlers ──

    def _handle_positioning(self, obs: FrameObservation) -> List[Effect]:
        cfg = self.config.positioning
        positioned = is_face_positioned(obs, cfg)
        self.face_in_position = positioned

        if not positioned:
            self.instruction = positioning_instruction(obs, cfg)
            return []

        self._pose_index = 0
        self.pose_frames = 0
        self.progress = 0.1
        self.instruction = f"Hold still - {self.current_pose.prompt}"
        self._set_stage(CapturingPoses(), "face positioned")
        return []

    def _handle_capturing(self, obs: FrameObservation) -> List[Effect]:
        cfg = self.config.pose
        pose = self.current_pose
        self.pose_frames += 1

        if pose_matches(obs, pose, cfg):
            self.pose_frames = 0
            signature = extract_signature(obs.landmarks, self.config.match.require_eyebrows)
            if signature is None:
                logger.debug("Pose %s matched but no signature could be extracted", pose.value)
                return []

            self.captures.append(Capture(pose, signature, obs, self._clock()))
            count = sum(1 for c in self.captures if c.pose == pose)
            self._emit(CaptureRecord(
                user_id=self.user_id,
                pose=pose.value,
                count=count,
                frame_id=obs.frame_id,
                quality=obs.quality,
                yaw=obs.yaw,
                pitch=obs.pitch,
            ))

            if count < cfg.min_captures_per_pose:
                self.instruction = f"Hold still... {count}/{cfg.min_captures_per_pose}"
                return []

            self.completed_poses.add(pose)
            self.pose_retries = 0
            next_index = self._next_pose_index()
            if next_index is None:
                return self._start_liveness()

            self._pose_index = next_index
            self.pose_frames = 0
            self.instruction = self.current_pose.prompt
            self.progress = len(self.completed_poses) / len(cfg.required_poses) * 0.5
            logger.debug("Moving to next pose: %s", self.current_pose.value)
            return []

        self.instruction = pose_guidance(pose, obs.yaw, obs.pitch)

        if self.pose_frames >= cfg.max_pose_frames:
            self.pose_retries += 1
            self.pose_frames = 0
            if self.pose_retries >= cfg.max_pose_retries:
                logger.warning(
                    "Pose capture failed for %s after %d retries", pose.value, cfg.max_pose_retries
                )
                return self._fail(
                    f"Could not capture {pose.prompt.lower()} pose. "
                    "Please ensure good lighting and try again.",
                    FailureKind.POSE_CAPTURE_EXHAUSTED,
                    detail=pose.value,
                )
            self.instruction = f"Let's try again - {pose.prompt}"
            logger.debug("Pose capture retry %d for %s", self.pose_retries, pose.value)
        return []

    def _next_pose_index(self) -> Optional[int]:
        for i, pose in enumerate(self.config.pose.required_poses):
            if pose not in self.completed_poses:
                return i
        return None

    def _start_liveness(self) -> List[Effect]:
        self.challenge_frames = 0
        self.liveness.reset_blinks()
        self.liveness.reset_smiles()
        self.progress = 0.5
        self._set_stage(LivenessCheck(), "poses captured")
        return self._advance_challenge()

    def _advance_challenge(self) -> List[Effect]:
        for challenge in self.config.liveness.required_challenges:
            if challenge not in self.completed_challenges:
                break
        else:
            self.current_challenge = None
            return self._begin_processing()

        self.current_challenge = challenge
        self.instruction = challenge.prompt
        self.challenge_frames = 0
        self._reset_challenge_counter(challenge)
        self._emit(ChallengeRecord(user_id=self.user_id, challenge=challenge.value, event="start"))
        return []

    def _reset_challenge_counter(self, challenge: Challenge) -> None:
        if challenge == Challenge.BLINK:
            self.liveness.reset_blinks()
        elif challenge == Challenge.SMILE:
            self.liveness.reset_smiles()

    def _challenge_passed(self, challenge: Challenge) -> bool:
        cfg = self.config.liveness
        if challenge == Challenge.BLINK:
            return self.liveness.blinks >= cfg.required_blinks
        if challenge == Challenge.SMILE:
            return self.liveness.smile_frames >= cfg.required_smile_frames
        target = -cfg.turn_target_yaw if challenge == Challenge.TURN_LEFT else cfg.turn_target_yaw
        return turn_reached(self.yaw, target, cfg.turn_tolerance)

    def _handle_liveness(self, obs: FrameObservation) -> List[Effect]:
        if self.advance_pending:
            return []
        challenge = self.current_challenge
        if challenge is None:
            return self._advance_challenge()

        cfg = self.config.liveness
        self.challenge_frames += 1

        if self._challenge_passed(challenge):
            self.completed_challenges.add(challenge)
            self.challenge_retries = 0
            self.instruction = _PASSED_MESSAGES.get(challenge, "Perfect!")
            self.progress = 0.5 + len(self.completed_challenges) / len(cfg.required_challenges) * 0.3
            self._emit(ChallengeRecord(
                user_id=self.user_id,
                challenge=challenge.value,
                event="passed",
                frames=self.challenge_frames,
            ))
            logger.info("Challenge passed: %s", challenge.value)
            if cfg.advance_delay_sec <= 0:
                return self._advance_challenge()
            self.advance_pending = True
            return [ScheduleChallengeAdvance(cfg.advance_delay_sec)]

        if self.challenge_frames >= cfg.max_challenge_frames:
            self.challenge_retries += 1
            event = "retry"
            if self.challenge_retries >= cfg.max_challenge_retries:
                event = "exhausted"
            self._emit(ChallengeRecord(
                user_id=self.user_id,
                challenge=challenge.value,
                event=event,
                attempt=self.challenge_retries,
                frames=self.challenge_frames,
            ))
            if event == "exhausted":
                logger.warning(
                    "%s challenge failed after %d retries", challenge.value, cfg.max_challenge_retries
                )
                return self._fail(
                    f"Could not detect {_CHALLENGE_NOUNS[challenge]}. "
                    "Please ensure good lighting and try again.",
                    FailureKind.CHALLENGE_EXHAUSTED,
                    detail=challenge.value,
                )
            self.instruction = _RETRY_PROMPTS.get(challenge, challenge.prompt)
            self.challenge_frames = 0
            self._reset_challenge_counter(challenge)
        return []

    def advance_challenge(self) -> List[Effect]:
        """Move on after a passed challenge's pause."""
        if not self.advance_pending or not isinstance(self.stage, LivenessCheck):
            return []
        self.advance_pending = False
        return self._advance_challenge()

    # ── Matching ──

    def begin_processing(self) -> List[Effect]:
        """Enter ``Processing`` and request a match, unless already completing."""
        return self._begin_processing()

    def _begin_processing(self) -> List[Effect]:
        if self.completing:
            logger.debug("Verification already completing, skipping")
            return []
        self.completing = True
        self.advance_pending = False
        self.progress = 0.85
        self.instruction = "Verifying your identity..."
        self._set_stage(Processing(), "liveness passed")
        return [CancelTimeout(), StartMatch(self.user_id, tuple(self.captures))]

    def apply_match_result(self, result: MatchResult) -> List[Effect]:
        if not isinstance(self.stage, Processing) or result.abandoned:
            return []

        self.confidence = result.confidence
        if result.success:
            self.progress = 1.0
            self.instruction = "Verification complete!"
            self._set_stage(Success(), "match")
            logger.info(
                "Face verification completed successfully with confidence: %.3f", result.confidence
            )
            return []

        self.completing = False
        self.instruction = result.message
        self._set_stage(
            Failure(result.message, result.failure or FailureKind.MATCH_ERROR, result.tier),
            "match",
        )
        return []

    def apply_match_error(self, exc: BaseException) -> List[Effect]:
        if not isinstance(self.stage, Processing):
            return []
        self.completing = False
        self.instruction = "Verification failed. Please try again."
        self._set_stage(
            Failure(str(exc) or type(exc).__name__, FailureKind.MATCH_ERROR, type(exc).__name__),
            "match error",
        )
        logger.error("Face verification failed: %s", exc)
        return []

    def retry_match(self) -> List[Effect]:
        """Re-run matching on the existing captures after a match failure."""
        stage = self.stage
        if (
            not isinstance(stage, Failure)
            or stage.kind not in MATCH_FAILURES
            or self.completing
            or not self.captures
        ):
            return []
        logger.info("Retrying match with %d existing captures", len(self.captures))
        return self._begin_processing()

    # ── Timeout ──

    def on_timeout(self) -> List[Effect]:
        """Session deadline reached; fails only a session still in progress."""
        if not isinstance(self.stage, _ACTIVE_STAGES):
            return []
        logger.warning("Face verification timed out after %.0f seconds", self.config.session_timeout_sec)
        return self._fail(
            "Verification timed out. Please try again.",
            FailureKind.SESSION_TIMED_OUT,
            instruction="Verification timed out",
        )

    # ── Helpers ──

    def _fail(
        self,
        reason: str,
        kind: FailureKind,
        detail: Optional[str] = None,
        instruction: str = FAILED_INSTRUCTION,
    ) -> List[Effect]:
        self.advance_pending = False
        self.instruction = instruction
        self._set_stage(Failure(reason, kind, detail), kind.value)
        return [CancelTimeout()]

    def _set_stage(self, stage: Stage, reason: str = "") -> None:
        old = self.stage
        self.stage = stage
        logger.info("Stage %s -> %s (%s)", old.name, stage.name, reason)
        self._emit(StageChangeRecord(
            user_id=self.user_id,
            old_stage=old.name,
            new_stage=stage.name,
            reason=reason,
            progress=self.progress,
        ))

    def _emit(self, record: TraceRecord) -> None:
        if self._trace is not None and self._trace.enabled:
            self._trace.emit(record)

    def snapshot(self) -> SessionSnapshot:
        in_flow = isinstance(self.stage, (Positioning, CapturingPoses))
        return SessionSnapshot(
            user_id=self.user_id,
            stage=self.stage,
            progress=self.progress,
            instruction=self.instruction,
            face_detected=self.face_detected,
            face_in_position=self.face_in_position,
            current_pose=self.current_pose if in_flow else None,
            current_challenge=self.current_challenge if isinstance(self.stage, LivenessCheck) else None,
            completed_poses=frozenset(self.completed_poses),
            completed_challenges=frozenset(self.completed_challenges),
            yaw=self.yaw,
            pitch=self.pitch,
            roll=self.roll,
            quality=self.quality,
            left_eye_open=self.liveness.left_eye_open,
            right_eye_open=self.liveness.right_eye_open,
            smile_detected=self.liveness.smiling,
            debug_info=self.debug_info,
            confidence=self.confidence,
        )


__all__ = [
    "StartTimeout",
    "CancelTimeout",
    "ScheduleChallengeAdvance",
    "StartMatch",
    "Effect",
    "VerificationStateMachine",
]
