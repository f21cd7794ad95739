"""Tests for the liveface command line."""

import argparse
import time

import cv2
import numpy as np
import pytest

from liveface.cli import main
from liveface.cli.commands.run import run_session
from liveface.cli.utils import build_trace, resolve_source


class _Args:
    def __init__(self, trace="off", trace_output=None):
        self.trace = trace
        self.trace_output = trace_output


class TestMain:
    def test_info(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.argv", ["liveface", "info"])
        main()
        out = capsys.readouterr().out

        assert "LiveFace - System Information" in out
        assert "match_threshold: 0.7" in out
        assert "required_poses: center, left, right" in out

    def test_no_command(self, monkeypatch):
        monkeypatch.setattr("sys.argv", ["liveface"])
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 1


class FakeCapture:
    def __init__(self, source, frames=3):
        self.remaining = frames

    def isOpened(self):
        return True

    def read(self):
        if self.remaining == 0:
            return False, None
        self.remaining -= 1
        return True, np.zeros((48, 64, 3), dtype=np.uint8)

    def release(self):
        pass


class NoFaceDetector:
    def __init__(self, **kwargs):
        pass

    def detect(self, image):
        return None

    def cleanup(self):
        pass


class TestRun:
    def test_source_ends_before_session_finishes(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setattr(cv2, "VideoCapture", FakeCapture)
        monkeypatch.setattr("liveface.backends.mediapipe.MediaPipeFaceDetector", NoFaceDetector)
        args = argparse.Namespace(
            source="clip.mp4", user="user-1", photos=str(tmp_path / "photos.json"), records=None,
            mirror=False, max_frames=None, json=False, trace="off", trace_output=None,
        )

        started = time.monotonic()
        code = run_session(args)

        assert code == 1
        assert time.monotonic() - started < 5.0
        assert "Source ended after 3 frames" in capsys.readouterr().out


class TestUtils:
    def test_resolve_source(self):
        assert resolve_source("0") == 0
        assert resolve_source("clip.mp4") == "clip.mp4"

    def test_build_trace(self, tmp_path):
        assert build_trace(_Args()) is None
        assert build_trace(_Args("normal")) is None

        hub = build_trace(_Args("normal", str(tmp_path / "t.jsonl")))
        assert hub.enabled
        hub.close()
