"""Tests for geometric signature extraction and similarity."""

import numpy as np
import pytest

from liveface.signature import SIGNATURE_DIM, cosine_similarity, extract_signature
from liveface.types import FaceLandmarks

from helpers import make_landmarks


class TestExtractSignature:
    def test_unit_norm(self, landmarks):
        sig = extract_signature(landmarks)

        assert sig is not None
        assert sig.dtype == np.float32
        assert sig.shape == (SIGNATURE_DIM,)
        assert abs(float(np.linalg.norm(sig)) - 1.0) < 1e-5

    def test_scale_and_translation_invariant(self):
        """Same face closer to the camera and off-center gives the same signature."""
        base = extract_signature(make_landmarks())
        moved = extract_signature(make_landmarks(scale=1.5, center=(0.4, 0.55)))

        np.testing.assert_allclose(base, moved, atol=1e-5)

    def test_missing_required_group(self, landmarks):
        landmarks.nose = None
        assert extract_signature(landmarks) is None

    def test_eyes_too_close(self):
        """IPD at or below the minimum is not measurable."""
        assert extract_signature(make_landmarks(eye_gap=0.005)) is None

    def test_missing_eyebrows_zero_filled(self):
        sig = extract_signature(make_landmarks(eyebrows=False))

        assert sig is not None
        assert np.all(sig[17:20] == 0.0)

    def test_missing_eyebrows_rejected_when_required(self):
        assert extract_signature(make_landmarks(eyebrows=False), require_eyebrows=True) is None
        assert extract_signature(make_landmarks(), require_eyebrows=True) is not None

    def test_short_contour_zero_jaw(self):
        lm = make_landmarks()
        lm = FaceLandmarks(**{**{n: getattr(lm, n) for n in lm.group_names()}, "face_contour": lm.face_contour[::4]})

        sig = extract_signature(lm)

        assert sig is not None
        assert np.all(sig[20:23] == 0.0)

    def test_different_faces_differ(self):
        a = extract_signature(make_landmarks())
        b = extract_signature(make_landmarks(eye_gap=0.20, mouth_y=0.66))

        assert cosine_similarity(a, b) < cosine_similarity(a, a)


class TestCosineSimilarity:
    def test_identical(self):
        v = np.array([0.3, -0.2, 0.9])
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.5)

    def test_opposite(self):
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(0.0)

    def test_degenerate_inputs(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
        assert cosine_similarity([], []) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_magnitude_ignored(self):
        assert cosine_similarity([1.0, 1.0], [5.0, 5.0]) == pytest.approx(1.0)
