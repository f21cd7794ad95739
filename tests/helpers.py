"""Synthetic faces and test doubles for liveface tests."""

import threading

import numpy as np

from liveface.types import FaceLandmarks, FrameObservation, MatchResult

CENTER_BBOX = (0.3, 0.25, 0.4, 0.5)

POSE_ANGLES = {
    "center": (0.0, 0.0),
    "left": (-0.4, 0.0),
    "right": (0.4, 0.0),
    "up": (0.0, 0.3),
    "down": (0.0, -0.3),
}


def eye_points(cx: float, cy: float, ear: float, width: float = 0.06) -> np.ndarray:
    """Six eye points in EAR order whose aspect ratio is exactly *ear*."""
    h = ear * width
    return np.array([
        [cx - width / 2, cy],
        [cx - width / 6, cy - h / 2],
        [cx + width / 6, cy - h / 2],
        [cx + width / 2, cy],
        [cx + width / 6, cy + h / 2],
        [cx - width / 6, cy + h / 2],
    ])


def lip_points(mx: float, my: float, width: float, height: float, n: int = 12) -> np.ndarray:
    """Outer lip ellipse: left corner at 0, top at n/4, right corner at n/2, bottom at 3n/4."""
    phi = np.pi + np.arange(n) * (2 * np.pi / n)
    return np.stack([mx + width / 2 * np.cos(phi), my + height / 2 * np.sin(phi)], axis=1)


def make_landmarks(
    ear: float = 0.3,
    smiling: bool = False,
    eyebrows: bool = True,
    eye_gap: float = 0.16,
    mouth_y: float = 0.62,
    scale: float = 1.0,
    center=(0.5, 0.5),
) -> FaceLandmarks:
    """Synthetic frontal face landmarks.

    ``eye_gap`` and ``mouth_y`` change the face geometry, giving
    distinguishable identities.
    """
    lw, lh = (0.16, 0.04) if smiling else (0.12, 0.06)
    contour_phi = 2 * np.pi * (np.arange(36) + 0.25) / 36
    groups = {
        "left_eye": eye_points(0.5 - eye_gap / 2, 0.45, ear),
        "right_eye": eye_points(0.5 + eye_gap / 2, 0.45, ear),
        "nose": np.array([[0.5, 0.46 + 0.012 * i] for i in range(8)] + [[0.47, 0.55], [0.53, 0.55]]),
        "outer_lips": lip_points(0.5, mouth_y, lw, lh),
        "inner_lips": lip_points(0.5, mouth_y, lw * 0.8, lh * 0.5, n=8),
        "face_contour": np.stack([0.5 + 0.15 * np.cos(contour_phi), 0.5 + 0.2 * np.sin(contour_phi)], axis=1),
    }
    if eyebrows:
        groups["left_eyebrow"] = np.array([[0.5 - eye_gap / 2 + dx, 0.40] for dx in (-0.04, -0.02, 0.0, 0.02, 0.04)])
        groups["right_eyebrow"] = np.array([[0.5 + eye_gap / 2 + dx, 0.40] for dx in (-0.04, -0.02, 0.0, 0.02, 0.04)])

    cx, cy = center
    for name, pts in groups.items():
        groups[name] = (pts - 0.5) * scale + np.array([cx, cy])
    return FaceLandmarks(**groups)


def make_obs(
    pose: str = "center",
    yaw=None,
    pitch=None,
    roll: float = 0.0,
    quality: float = 0.9,
    bbox=CENTER_BBOX,
    frame_id: int = 0,
    **landmark_kwargs,
) -> FrameObservation:
    """Frame observation for a named pose, with synthetic landmarks."""
    pose_yaw, pose_pitch = POSE_ANGLES[pose]
    return FrameObservation(
        bbox=bbox,
        yaw=pose_yaw if yaw is None else yaw,
        pitch=pose_pitch if pitch is None else pitch,
        roll=roll,
        quality=quality,
        landmarks=make_landmarks(**landmark_kwargs),
        frame_id=frame_id,
    )


class FakeTimer:
    """``threading.Timer`` stand-in fired explicitly by tests."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self, force: bool = False):
        """Run the callback; *force* ignores cancellation (a timer already in flight)."""
        if self.cancelled and not force:
            return
        self.function(*self.args, **self.kwargs)


class FakeTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    def pending(self, interval=None):
        return [
            t for t in self.timers
            if t.started and not t.cancelled and (interval is None or t.interval == interval)
        ]


class StubMatchEngine:
    """Match engine returning a canned result.

    Args:
        result: Result to return.
        error: Exception to raise instead.
        gate: Optional event the match waits on before returning.
    """

    def __init__(self, result=None, error=None, gate=None):
        self.result = result or MatchResult(True, "Face verified successfully!", confidence=0.85)
        self.error = error
        self.gate = gate
        self.calls = []
        self.done = threading.Event()

    def match(self, user_id, captures, is_cancelled=None):
        self.calls.append((user_id, list(captures)))
        try:
            if self.gate is not None:
                self.gate.wait(5.0)
            if self.error is not None:
                raise self.error
            return self.result
        finally:
            self.done.set()

