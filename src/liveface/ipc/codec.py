"""JSON codec for frames, snapshots and match results.

Observations travel as plain dicts (landmark groups as nested lists);
raw images travel JPEG-compressed and base64-encoded.
"""

import base64
from typing import Any, Dict

import cv2
import numpy as np

from liveface.types import FaceLandmarks, FrameObservation, MatchResult, SessionSnapshot


def encode_observation(obs: FrameObservation) -> Dict[str, Any]:
    """Encode a FrameObservation to a JSON-serializable dict."""
    return {
        "bbox": [float(v) for v in obs.bbox],
        "yaw": float(obs.yaw),
        "pitch": float(obs.pitch),
        "roll": float(obs.roll),
        "quality": float(obs.quality),
        "landmarks": obs.landmarks.to_dict(),
        "frame_id": int(obs.frame_id),
        "t_ns": int(obs.t_ns),
    }


def decode_observation(data: Dict[str, Any]) -> FrameObservation:
    """Decode a dict produced by encode_observation().

    Raises:
        ValueError: If the bbox is missing or malformed.
    """
    bbox = data.get("bbox")
    if bbox is None or len(bbox) != 4:
        raise ValueError("frame.bbox must be [x, y, w, h]")

    return FrameObservation(
        bbox=tuple(float(v) for v in bbox),
        yaw=float(data.get("yaw", 0.0)),
        pitch=float(data.get("pitch", 0.0)),
        roll=float(data.get("roll", 0.0)),
        quality=float(data.get("quality", 0.0)),
        landmarks=FaceLandmarks.from_dict(data.get("landmarks") or {}),
        frame_id=int(data.get("frame_id", 0)),
        t_ns=int(data.get("t_ns", 0)),
    )


def encode_snapshot(snapshot: SessionSnapshot) -> Dict[str, Any]:
    """Observer-facing view of a session snapshot."""
    stage = snapshot.stage
    data = {
        "user_id": snapshot.user_id,
        "stage": stage.name,
        "progress": snapshot.progress,
        "instruction": snapshot.instruction,
        "face_detected": snapshot.face_detected,
        "face_in_position": snapshot.face_in_position,
        "current_pose": snapshot.current_pose.value if snapshot.current_pose else None,
        "current_challenge": snapshot.current_challenge.value if snapshot.current_challenge else None,
        "completed_poses": sorted(p.value for p in snapshot.completed_poses),
        "completed_challenges": sorted(c.value for c in snapshot.completed_challenges),
        "yaw": snapshot.yaw,
        "pitch": snapshot.pitch,
        "roll": snapshot.roll,
    }
    reason = getattr(stage, "reason", None)
    if reason is not None:
        data["reason"] = reason
        data["failure"] = stage.kind.value
    return data


def encode_result(result: MatchResult) -> Dict[str, Any]:
    return result.to_dict()


def encode_image(image: np.ndarray, jpeg_quality: int = 95) -> Dict[str, Any]:
    """JPEG + base64 encode a BGR image."""
    ok, jpeg_data = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, jpeg_quality])
    if not ok:
        raise ValueError("Failed to encode image")
    h, w = image.shape[:2]
    return {
        "width": w,
        "height": h,
        "data_b64": base64.b64encode(jpeg_data.tobytes()).decode("ascii"),
    }


def decode_image(data: Dict[str, Any]) -> np.ndarray:
    """Decode a dict produced by encode_image().

    Raises:
        ValueError: If image data cannot be decoded.
    """
    jpeg_bytes = base64.b64decode(data["data_b64"])
    nparr = np.frombuffer(jpeg_bytes, np.uint8)
    img = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError("Failed to decode image data")
    return img


__all__ = [
    "encode_observation",
    "decode_observation",
    "encode_snapshot",
    "encode_result",
    "encode_image",
    "decode_image",
]
