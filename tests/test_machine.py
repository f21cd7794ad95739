"""Tests for the verification state machine."""

from dataclasses import replace

import pytest

from liveface.config import LivenessConfig, PoseConfig, VerificationConfig
from liveface.errors import FailureKind
from liveface.machine import (
    CancelTimeout,
    ScheduleChallengeAdvance,
    StartMatch,
    StartTimeout,
    VerificationStateMachine,
)
from liveface.types import (
    CapturingPoses,
    Challenge,
    Failure,
    Initializing,
    LivenessCheck,
    MatchResult,
    Pose,
    Positioning,
    Processing,
    Success,
)

from helpers import make_obs


def _started(config=None):
    machine = VerificationStateMachine(config, clock=lambda: 1000.0)
    machine.start("user-1")
    return machine


def _capturing(config=None):
    machine = _started(config)
    machine.process_observation(make_obs("center"))
    assert isinstance(machine.stage, CapturingPoses)
    return machine


def _capture_poses(machine, poses=("center", "left", "right")):
    effects = []
    for pose in poses:
        for _ in range(3):
            effects = machine.process_observation(make_obs(pose))
    return effects


def _blink(machine):
    effects = machine.process_observation(make_obs(ear=0.3))
    for _ in range(3):
        effects = machine.process_observation(make_obs(ear=0.1))
    return effects + machine.process_observation(make_obs(ear=0.3))


def _in_liveness(config=None):
    machine = _capturing(config)
    _capture_poses(machine)
    assert isinstance(machine.stage, LivenessCheck)
    return machine


def _in_processing(config=None):
    machine = _in_liveness(config)
    _blink(machine)
    _blink(machine)
    machine.advance_challenge()
    for _ in range(10):
        machine.process_observation(make_obs(smiling=True))
    effects = machine.advance_challenge()
    assert isinstance(machine.stage, Processing)
    return machine, effects


class TestLifecycle:
    def test_initial_state(self):
        machine = VerificationStateMachine()

        assert isinstance(machine.stage, Initializing)
        assert machine.progress == 0.0
        assert machine.captures == []

    def test_start(self):
        machine = VerificationStateMachine()
        effects = machine.start("user-1")

        assert effects == [StartTimeout(90.0)]
        assert isinstance(machine.stage, Positioning)
        assert machine.instruction == "Position your face in the circle"
        assert machine.user_id == "user-1"

    def test_reset_clears_everything(self):
        machine = _in_liveness()
        effects = machine.reset()

        assert effects == [CancelTimeout()]
        assert isinstance(machine.stage, Initializing)
        assert machine.captures == []
        assert machine.completed_poses == set()
        assert machine.current_challenge is None
        assert not machine.completing

    def test_frames_ignored_before_start(self):
        machine = VerificationStateMachine()
        assert machine.process_observation(make_obs()) == []
        assert isinstance(machine.stage, Initializing)
        assert not machine.face_detected


class TestPositioning:
    def test_guidance_when_not_positioned(self):
        machine = _started()
        machine.process_observation(make_obs(bbox=(0.45, 0.45, 0.1, 0.1)))

        assert isinstance(machine.stage, Positioning)
        assert machine.instruction == "Move closer to the camera"
        assert machine.face_detected
        assert not machine.face_in_position

    def test_positioned_starts_capture(self):
        machine = _started()
        machine.process_observation(make_obs(yaw=0.05, roll=0.01))

        assert isinstance(machine.stage, CapturingPoses)
        assert machine.current_pose == Pose.CENTER
        assert machine.progress == pytest.approx(0.1)
        assert machine.instruction == "Hold still - Look straight ahead"
        assert machine.debug_info == "Yaw: 0.05, Pitch: 0.00, Roll: 0.01"

    def test_no_face(self):
        machine = _capturing()
        machine.no_face_detected()

        assert not machine.face_detected
        assert not machine.face_in_position
        assert machine.instruction == "Position your face in the circle"
        assert isinstance(machine.stage, CapturingPoses)


class TestPoseCapture:
    def test_counts_captures(self):
        machine = _capturing()
        machine.process_observation(make_obs("center"))
        assert machine.instruction == "Hold still... 1/3"
        machine.process_observation(make_obs("center"))
        assert machine.instruction == "Hold still... 2/3"
        assert len(machine.captures) == 2
        assert machine.captures[0].timestamp == 1000.0

    def test_advances_to_next_pose(self):
        machine = _capturing()
        _capture_poses(machine, poses=("center",))

        assert machine.completed_poses == {Pose.CENTER}
        assert machine.current_pose == Pose.LEFT
        assert machine.instruction == "Turn your head left"
        assert machine.progress == pytest.approx(1 / 3 * 0.5)

    def test_guidance_for_wrong_pose(self):
        machine = _capturing()
        _capture_poses(machine, poses=("center",))
        machine.process_observation(make_obs("right"))

        assert machine.instruction == "Turn your head more to the left"
        assert machine.pose_frames == 1

    def test_low_quality_not_captured(self):
        machine = _capturing()
        machine.process_observation(make_obs("center", quality=0.1))
        assert machine.captures == []

    def test_unusable_landmarks_not_captured(self):
        machine = _capturing()
        machine.process_observation(make_obs("center", eye_gap=0.005))
        assert machine.captures == []
        assert isinstance(machine.stage, CapturingPoses)

    def test_all_poses_enter_liveness(self):
        machine = _capturing()
        _capture_poses(machine)

        assert isinstance(machine.stage, LivenessCheck)
        assert machine.completed_poses == {Pose.CENTER, Pose.LEFT, Pose.RIGHT}
        assert len(machine.captures) == 9
        assert machine.current_challenge == Challenge.BLINK
        assert machine.instruction == "Blink your eyes"
        assert machine.progress == pytest.approx(0.5)

    def test_retry_then_capture(self):
        machine = _capturing()
        _capture_poses(machine, poses=("center",))
        for _ in range(300):
            machine.process_observation(make_obs("center"))

        assert machine.pose_retries == 1
        assert machine.instruction == "Let's try again - Turn your head left"
        assert isinstance(machine.stage, CapturingPoses)

        _capture_poses(machine, poses=("left",))
        assert machine.pose_retries == 0
        assert machine.current_pose == Pose.RIGHT

    def test_pose_budget_exhausted(self):
        """Three windows of 300 frames without a left pose end the session."""
        machine = _capturing()
        _capture_poses(machine, poses=("center",))

        for _ in range(899):
            assert machine.process_observation(make_obs("center")) == []
        assert isinstance(machine.stage, CapturingPoses)

        effects = machine.process_observation(make_obs("center"))

        assert effects == [CancelTimeout()]
        assert isinstance(machine.stage, Failure)
        assert machine.stage.kind == FailureKind.POSE_CAPTURE_EXHAUSTED
        assert machine.stage.reason == (
            "Could not capture turn your head left pose. Please ensure good lighting and try again."
        )
        assert machine.instruction == "Verification failed"

    def test_custom_pose_list(self):
        config = VerificationConfig(pose=PoseConfig(required_poses=(Pose.CENTER, Pose.UP)))
        machine = _capturing(config)
        _capture_poses(machine, poses=("center", "up"))

        assert isinstance(machine.stage, LivenessCheck)


class TestLiveness:
    def test_blink_challenge(self):
        machine = _in_liveness()
        _blink(machine)
        assert machine.current_challenge == Challenge.BLINK

        effects = _blink(machine)

        assert effects == [ScheduleChallengeAdvance(0.5)]
        assert Challenge.BLINK in machine.completed_challenges
        assert machine.instruction == "Great!"
        assert machine.progress == pytest.approx(0.65)
        assert machine.advance_pending

    def test_frames_ignored_while_advance_pending(self):
        machine = _in_liveness()
        _blink(machine)
        _blink(machine)
        frames = machine.challenge_frames

        for _ in range(20):
            assert machine.process_observation(make_obs(smiling=True)) == []
        assert machine.challenge_frames == frames

    def test_advance_to_smile(self):
        machine = _in_liveness()
        _blink(machine)
        _blink(machine)
        machine.advance_challenge()

        assert machine.current_challenge == Challenge.SMILE
        assert machine.instruction == "Smile naturally"
        assert not machine.advance_pending

    def test_advance_without_pending_is_noop(self):
        machine = _in_liveness()
        assert machine.advance_challenge() == []
        assert machine.current_challenge == Challenge.BLINK

    def test_smile_needs_ten_frames(self):
        machine = _in_liveness()
        _blink(machine)
        _blink(machine)
        machine.advance_challenge()
        for _ in range(9):
            machine.process_observation(make_obs(smiling=True))
        assert Challenge.SMILE not in machine.completed_challenges

        effects = machine.process_observation(make_obs(smiling=True))

        assert effects == [ScheduleChallengeAdvance(0.5)]
        assert machine.instruction == "Perfect!"

    def test_zero_delay_advances_inline(self):
        config = VerificationConfig(liveness=LivenessConfig(advance_delay_sec=0.0))
        machine = _in_liveness(config)
        _blink(machine)
        _blink(machine)

        assert machine.current_challenge == Challenge.SMILE
        assert not machine.advance_pending

    def test_challenge_retry(self):
        machine = _in_liveness()
        for _ in range(150):
            machine.process_observation(make_obs())

        assert machine.challenge_retries == 1
        assert machine.challenge_frames == 0
        assert machine.instruction == "Please blink your eyes twice"
        assert isinstance(machine.stage, LivenessCheck)

    def test_challenge_exhausted(self):
        machine = _in_liveness()
        for _ in range(449):
            machine.process_observation(make_obs())
        assert isinstance(machine.stage, LivenessCheck)

        effects = machine.process_observation(make_obs())

        assert effects == [CancelTimeout()]
        assert machine.stage.kind == FailureKind.CHALLENGE_EXHAUSTED
        assert machine.stage.reason == "Could not detect blink. Please ensure good lighting and try again."

    def test_turn_challenge(self):
        config = VerificationConfig(
            liveness=LivenessConfig(required_challenges=(Challenge.TURN_LEFT,), advance_delay_sec=0.0)
        )
        machine = _in_liveness(config)
        assert machine.instruction == "Turn head slowly left"
        machine.process_observation(make_obs(yaw=-0.1))
        assert isinstance(machine.stage, LivenessCheck)

        effects = machine.process_observation(make_obs(yaw=-0.4))

        assert isinstance(machine.stage, Processing)
        assert isinstance(effects[-1], StartMatch)


class TestMatching:
    def test_processing_requests_match(self):
        machine, effects = _in_processing()

        assert effects[0] == CancelTimeout()
        assert isinstance(effects[1], StartMatch)
        assert effects[1].user_id == "user-1"
        assert len(effects[1].captures) == 9
        assert machine.progress == pytest.approx(0.85)
        assert machine.instruction == "Verifying your identity..."
        assert machine.completing

    def test_begin_processing_once(self):
        machine, _ = _in_processing()
        assert machine.begin_processing() == []

    def test_success(self):
        machine, _ = _in_processing()
        machine.apply_match_result(MatchResult(True, "Face verified successfully!", confidence=0.85))

        assert isinstance(machine.stage, Success)
        assert machine.confidence == 0.85
        assert machine.progress == 1.0
        assert machine.instruction == "Verification complete!"

    def test_low_confidence(self):
        machine, _ = _in_processing()
        message = "Face similarity too low. Please try again with better lighting."
        machine.apply_match_result(
            MatchResult(False, message, confidence=0.6, failure=FailureKind.LOW_CONFIDENCE_MATCH, tier="low")
        )

        assert isinstance(machine.stage, Failure)
        assert machine.stage.kind == FailureKind.LOW_CONFIDENCE_MATCH
        assert machine.stage.reason == message
        assert machine.instruction == message
        assert not machine.completing

    def test_match_error(self):
        machine, _ = _in_processing()
        machine.apply_match_error(RuntimeError("disk full"))

        assert machine.stage.kind == FailureKind.MATCH_ERROR
        assert machine.instruction == "Verification failed. Please try again."

    def test_abandoned_result_ignored(self):
        machine, _ = _in_processing()
        machine.apply_match_result(MatchResult(False, "x", abandoned=True))
        assert isinstance(machine.stage, Processing)

    def test_retry_match_after_match_failure(self):
        machine, _ = _in_processing()
        machine.apply_match_result(MatchResult(False, "no photos", failure=FailureKind.NO_PROFILE_PHOTOS))

        effects = machine.retry_match()

        assert isinstance(machine.stage, Processing)
        assert isinstance(effects[-1], StartMatch)
        assert len(effects[-1].captures) == 9

    def test_retry_match_not_after_capture_failure(self):
        machine = _in_liveness()
        for _ in range(450):
            machine.process_observation(make_obs())

        assert machine.retry_match() == []
        assert isinstance(machine.stage, Failure)


class TestTerminal:
    def test_success_is_final(self):
        machine, _ = _in_processing()
        machine.apply_match_result(MatchResult(True, "ok", confidence=0.9))
        stage = machine.stage

        assert machine.process_observation(make_obs()) == []
        assert machine.on_timeout() == []
        assert machine.apply_match_result(MatchResult(False, "late", failure=FailureKind.MATCH_ERROR)) == []
        assert machine.apply_match_error(RuntimeError("late")) == []
        assert machine.advance_challenge() == []
        assert machine.stage is stage
        assert machine.confidence == 0.9

    def test_failure_is_final(self):
        machine = _capturing()
        machine.on_timeout()
        stage = machine.stage

        assert machine.process_observation(make_obs()) == []
        assert machine.on_timeout() == []
        assert machine.stage is stage

    def test_timeout(self):
        machine = _in_liveness()
        effects = machine.on_timeout()

        assert effects == [CancelTimeout()]
        assert machine.stage.kind == FailureKind.SESSION_TIMED_OUT
        assert machine.stage.reason == "Verification timed out. Please try again."
        assert machine.instruction == "Verification timed out"

    def test_timeout_ignored_while_processing(self):
        machine, _ = _in_processing()
        assert machine.on_timeout() == []
        assert isinstance(machine.stage, Processing)


class TestSnapshot:
    def test_fields(self):
        machine = _capturing()
        snap = machine.snapshot()

        assert snap.user_id == "user-1"
        assert snap.stage == CapturingPoses()
        assert snap.current_pose == Pose.CENTER
        assert snap.current_challenge is None
        assert snap.face_detected
        assert snap.left_eye_open and snap.right_eye_open

    def test_snapshot_is_immutable_copy(self):
        machine = _capturing()
        snap = machine.snapshot()
        _capture_poses(machine, poses=("center",))

        assert snap.completed_poses == frozenset()
        with pytest.raises(Exception):
            snap.progress = 1.0  # type: ignore[misc]


class TestEndToEnd:
    def test_full_session_success(self):
        machine = _started()
        effects = machine.process_observation(make_obs())
        effects += _capture_poses(machine)
        effects += _blink(machine) + _blink(machine)
        effects += machine.advance_challenge()
        for _ in range(10):
            effects += machine.process_observation(make_obs(smiling=True))
        effects += machine.advance_challenge()

        start = [e for e in effects if isinstance(e, StartMatch)]
        assert len(start) == 1
        machine.apply_match_result(MatchResult(True, "Face verified successfully!", confidence=0.85))

        assert isinstance(machine.stage, Success)
        assert machine.completed_challenges == {Challenge.BLINK, Challenge.SMILE}
        assert machine.snapshot().confidence == 0.85

    def test_restart_after_failure(self):
        machine = _capturing()
        machine.on_timeout()
        machine.start("user-2")

        assert isinstance(machine.stage, Positioning)
        assert machine.user_id == "user-2"
        assert machine.captures == []
