"""Session thresholds and budgets.

All tunables live in frozen dataclasses with the production defaults.
``VerificationConfig.from_env()`` applies ``LIVEFACE_*`` overrides.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Tuple

from liveface.types import Challenge, Pose


@dataclass(frozen=True)
class PositioningConfig:
    """Conditions for "face positioned" before capture starts."""

    min_area: float = 0.15
    max_area: float = 0.5             # above this: "move back"
    center_min: float = 0.2
    center_max: float = 0.8
    max_abs_yaw: float = 0.2
    max_abs_roll: float = 0.2
    # Horizontal guidance kicks in outside [guide_x_min, guide_x_max]
    guide_x_min: float = 0.3
    guide_x_max: float = 0.7


@dataclass(frozen=True)
class PoseConfig:
    """Pose capture acceptance and budgets."""

    required_poses: Tuple[Pose, ...] = (Pose.CENTER, Pose.LEFT, Pose.RIGHT)
    max_abs_roll: float = 0.3
    min_quality: float = 0.3
    min_captures_per_pose: int = 3
    max_pose_frames: int = 300        # ~10 s at 30 fps
    max_pose_retries: int = 3


@dataclass(frozen=True)
class LivenessConfig:
    """Liveness challenge thresholds and budgets."""

    required_challenges: Tuple[Challenge, ...] = (Challenge.BLINK, Challenge.SMILE)
    ear_threshold: float = 0.18       # eye open iff EAR > threshold
    min_blink_frames: int = 3
    max_blink_frames: int = 14
    required_blinks: int = 2
    smile_ratio_threshold: float = 3.0      # smiling iff width/height > threshold
    required_smile_frames: int = 10
    turn_target_yaw: float = 0.35
    turn_tolerance: float = 0.15
    max_challenge_frames: int = 150
    max_challenge_retries: int = 3
    advance_delay_sec: float = 0.5


@dataclass(frozen=True)
class MatchConfig:
    """Reference matching thresholds and network budgets."""

    match_threshold: float = 0.70
    mismatch_threshold: float = 0.5   # below: "doesn't look like your photos"
    request_timeout_sec: float = 15.0
    total_timeout_sec: float = 30.0
    max_workers: int = 1
    require_eyebrows: bool = False


@dataclass(frozen=True)
class VerificationConfig:
    """Top-level session configuration."""

    session_timeout_sec: float = 90.0
    positioning: PositioningConfig = field(default_factory=PositioningConfig)
    pose: PoseConfig = field(default_factory=PoseConfig)
    liveness: LivenessConfig = field(default_factory=LivenessConfig)
    match: MatchConfig = field(default_factory=MatchConfig)

    @classmethod
    def from_env(cls, base: "VerificationConfig | None" = None) -> "VerificationConfig":
        """Apply ``LIVEFACE_*`` environment overrides on top of *base*.

        Recognized variables:
            LIVEFACE_SESSION_TIMEOUT, LIVEFACE_MATCH_THRESHOLD,
            LIVEFACE_MAX_WORKERS, LIVEFACE_REQUEST_TIMEOUT,
            LIVEFACE_TOTAL_TIMEOUT, LIVEFACE_ADVANCE_DELAY,
            LIVEFACE_REQUIRE_EYEBROWS.
        """
        cfg = base or cls()

        session_timeout = _env_float("LIVEFACE_SESSION_TIMEOUT", cfg.session_timeout_sec)
        match = replace(
            cfg.match,
            match_threshold=_env_float("LIVEFACE_MATCH_THRESHOLD", cfg.match.match_threshold),
            max_workers=max(1, int(_env_float("LIVEFACE_MAX_WORKERS", cfg.match.max_workers))),
            request_timeout_sec=_env_float("LIVEFACE_REQUEST_TIMEOUT", cfg.match.request_timeout_sec),
            total_timeout_sec=_env_float("LIVEFACE_TOTAL_TIMEOUT", cfg.match.total_timeout_sec),
            require_eyebrows=_env_bool("LIVEFACE_REQUIRE_EYEBROWS", cfg.match.require_eyebrows),
        )
        liveness = replace(
            cfg.liveness,
            advance_delay_sec=_env_float("LIVEFACE_ADVANCE_DELAY", cfg.liveness.advance_delay_sec),
        )
        return replace(cfg, session_timeout_sec=session_timeout, match=match, liveness=liveness)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return float(default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


__all__ = [
    "PositioningConfig",
    "PoseConfig",
    "LivenessConfig",
    "MatchConfig",
    "VerificationConfig",
]
