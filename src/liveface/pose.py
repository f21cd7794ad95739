"""Pose tracker: stateless pose acceptance and corrective guidance.

Acceptance windows come from ``Pose.yaw_range`` / ``Pose.pitch_range``.
Guidance is driven by ``GUIDANCE_RULES``: per pose, an ordered tuple of
rules checked against the current head angles; the first rule that fires
supplies the instruction, otherwise the pose prompt is shown.
"""

import operator
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from liveface.config import PoseConfig, PositioningConfig
from liveface.types import FrameObservation, Pose

# Instruction shown whenever the face is lost or unplaced
POSITION_PROMPT = "Position your face in the circle"


@dataclass(frozen=True)
class GuidanceRule:
    """Fires when ``compare(value, threshold)`` holds for *axis*.

    With ``magnitude`` set, the absolute angle is compared.
    """

    axis: str                                   # "yaw" or "pitch"
    compare: Callable[[float, float], bool]
    threshold: float
    message: str
    magnitude: bool = False

    def fires(self, yaw: float, pitch: float) -> bool:
        value = yaw if self.axis == "yaw" else pitch
        if self.magnitude:
            value = abs(value)
        return self.compare(value, self.threshold)


GUIDANCE_RULES: Dict[Pose, Tuple[GuidanceRule, ...]] = {
    Pose.CENTER: (
        GuidanceRule("yaw", operator.gt, 0.2, "Look straight at the camera", magnitude=True),
        GuidanceRule("pitch", operator.gt, 0.2, "Keep your head level", magnitude=True),
    ),
    Pose.LEFT: (
        GuidanceRule("yaw", operator.gt, -0.15, "Turn your head more to the left"),
        GuidanceRule("yaw", operator.lt, -0.6, "Not so far - turn slightly left"),
    ),
    Pose.RIGHT: (
        GuidanceRule("yaw", operator.lt, 0.15, "Turn your head more to the right"),
        GuidanceRule("yaw", operator.gt, 0.6, "Not so far - turn slightly right"),
    ),
    Pose.UP: (
        GuidanceRule("pitch", operator.lt, 0.15, "Tilt your chin up slightly"),
    ),
    Pose.DOWN: (
        GuidanceRule("pitch", operator.gt, -0.15, "Tilt your chin down slightly"),
    ),
}


def _within(value: float, window: Tuple[float, float]) -> bool:
    lo, hi = window
    return lo <= value <= hi


def pose_matches(obs: FrameObservation, pose: Pose, config: PoseConfig = PoseConfig()) -> bool:
    """Whether *obs* is an acceptable capture for *pose*.

    Yaw and pitch must fall in the pose's closed windows, roll must be
    small, and the capture quality must reach the configured minimum.
    """
    return (
        _within(obs.yaw, pose.yaw_range)
        and _within(obs.pitch, pose.pitch_range)
        and abs(obs.roll) < config.max_abs_roll
        and obs.quality >= config.min_quality
    )


def pose_guidance(pose: Pose, yaw: float, pitch: float) -> str:
    """Corrective instruction for reaching *pose* from the given angles."""
    for rule in GUIDANCE_RULES[pose]:
        if rule.fires(yaw, pitch):
            return rule.message
    return pose.prompt


def is_face_positioned(obs: FrameObservation, config: PositioningConfig = PositioningConfig()) -> bool:
    """Large enough, centered, and facing the camera."""
    cx, cy = obs.center
    big_enough = obs.area >= config.min_area
    centered = (
        config.center_min <= cx <= config.center_max
        and config.center_min <= cy <= config.center_max
    )
    frontal = abs(obs.yaw) < config.max_abs_yaw and abs(obs.roll) < config.max_abs_roll
    return big_enough and centered and frontal


def positioning_instruction(obs: FrameObservation, config: PositioningConfig = PositioningConfig()) -> str:
    """Corrective instruction for an unpositioned face."""
    area = obs.area
    cx, _ = obs.center
    if area < config.min_area:
        return "Move closer to the camera"
    if area > config.max_area:
        return "Move back from the camera"
    if cx < config.guide_x_min:
        return "Move your face to the right"
    if cx > config.guide_x_max:
        return "Move your face to the left"
    if abs(obs.yaw) > config.max_abs_yaw:
        return "Face the camera directly"
    return POSITION_PROMPT


__all__ = [
    "POSITION_PROMPT",
    "GuidanceRule",
    "GUIDANCE_RULES",
    "pose_matches",
    "pose_guidance",
    "is_face_positioned",
    "positioning_instruction",
]
