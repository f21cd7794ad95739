"""Tests for the IPC JSON codec."""

import json

import numpy as np
import pytest

from liveface.errors import FailureKind
from liveface.ipc.codec import (
    decode_image,
    decode_observation,
    encode_image,
    encode_observation,
    encode_result,
    encode_snapshot,
)
from liveface.machine import VerificationStateMachine
from liveface.types import MatchResult

from helpers import make_obs


class TestObservationCodec:
    def test_json_round_trip(self):
        obs = make_obs("left", quality=0.7, frame_id=12)
        wire = json.loads(json.dumps(encode_observation(obs)))

        decoded = decode_observation(wire)

        assert decoded.bbox == pytest.approx(obs.bbox)
        assert decoded.yaw == pytest.approx(-0.4)
        assert decoded.frame_id == 12
        np.testing.assert_allclose(decoded.landmarks.left_eye, obs.landmarks.left_eye)
        assert decoded.landmarks.group_names() == obs.landmarks.group_names()

    def test_minimal_frame(self):
        obs = decode_observation({"bbox": [0.1, 0.2, 0.3, 0.4]})
        assert obs.yaw == 0.0
        assert obs.landmarks.left_eye is None

    def test_unknown_groups_ignored(self):
        obs = decode_observation({"bbox": [0, 0, 1, 1], "landmarks": {"tongue": [[0.1, 0.2]]}})
        assert obs.landmarks.to_dict() == {}

    @pytest.mark.parametrize("bbox", [None, [0.1, 0.2, 0.3]])
    def test_bad_bbox(self, bbox):
        with pytest.raises(ValueError):
            decode_observation({"bbox": bbox})


class TestSnapshotCodec:
    def test_in_progress(self):
        machine = VerificationStateMachine()
        machine.start("u1")
        data = encode_snapshot(machine.snapshot())

        assert data["stage"] == "positioning"
        assert data["user_id"] == "u1"
        assert "reason" not in data
        json.dumps(data)

    def test_failure_carries_reason(self):
        machine = VerificationStateMachine()
        machine.start("u1")
        machine.on_timeout()
        data = encode_snapshot(machine.snapshot())

        assert data["stage"] == "failure"
        assert data["failure"] == FailureKind.SESSION_TIMED_OUT.value
        assert data["reason"] == "Verification timed out. Please try again."

    def test_result(self):
        data = encode_result(MatchResult(False, "low", confidence=0.6,
                                         failure=FailureKind.LOW_CONFIDENCE_MATCH, tier="low"))
        assert data["failure"] == "low_confidence_match"
        assert data["tier"] == "low"
        json.dumps(data)


class TestImageCodec:
    def test_shape_preserved(self):
        image = np.full((48, 64, 3), 127, dtype=np.uint8)
        data = encode_image(image)

        assert (data["width"], data["height"]) == (64, 48)
        assert decode_image(data).shape == (48, 64, 3)

    def test_garbage(self):
        with pytest.raises(ValueError):
            decode_image({"data_b64": "bm90IGFuIGltYWdl"})
