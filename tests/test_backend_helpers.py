"""Tests for the MediaPipe backend's pure helpers (no model needed)."""

import math

import numpy as np
import pytest

from liveface.backends.mediapipe import (
    MESH_GROUPS,
    bbox_from_points,
    crop_quality,
    euler_from_matrix,
    landmarks_from_mesh,
)
from liveface.liveness import eye_aspect_ratio
from liveface.signature import cosine_similarity, extract_signature

from helpers import make_landmarks


def _rotation_y(theta):
    c, s = math.cos(theta), math.sin(theta)
    m = np.eye(4)
    m[:3, :3] = [[c, 0, s], [0, 1, 0], [-s, 0, c]]
    return m


def _rotation_x(phi):
    c, s = math.cos(phi), math.sin(phi)
    m = np.eye(4)
    m[:3, :3] = [[1, 0, 0], [0, c, -s], [0, s, c]]
    return m


class TestEulerFromMatrix:
    def test_identity(self):
        assert euler_from_matrix(np.eye(4)) == pytest.approx((0.0, 0.0, 0.0))

    def test_yaw(self):
        yaw, pitch, roll = euler_from_matrix(_rotation_y(0.4))
        assert yaw == pytest.approx(0.4)
        assert pitch == pytest.approx(0.0)
        assert roll == pytest.approx(0.0)

    def test_pitch(self):
        yaw, pitch, roll = euler_from_matrix(_rotation_x(-0.3))
        assert pitch == pytest.approx(-0.3)
        assert yaw == pytest.approx(0.0)


class TestLandmarksFromMesh:
    def test_full_mesh(self):
        rng = np.random.default_rng(0)
        points = rng.uniform(0.2, 0.8, size=(478, 3))
        lm = landmarks_from_mesh(points)

        for name, indices in MESH_GROUPS.items():
            group = getattr(lm, name)
            assert group.shape == (len(indices), 2)
            np.testing.assert_allclose(group, points[indices, :2])

    def test_eye_order_gives_ear(self):
        points = np.zeros((478, 2))
        # corner, top, top, corner, bottom, bottom
        for idx, pt in zip(MESH_GROUPS["left_eye"], [(0.0, 0.5), (0.02, 0.49), (0.04, 0.49),
                                                      (0.06, 0.5), (0.04, 0.51), (0.02, 0.51)]):
            points[idx] = pt
        lm = landmarks_from_mesh(points)

        assert eye_aspect_ratio(lm.left_eye) == pytest.approx(0.02 / 0.06)

    def test_short_mesh_drops_groups(self):
        lm = landmarks_from_mesh(np.zeros((300, 2)))
        assert lm.left_eye is not None
        assert lm.right_eye is None
        assert lm.face_contour is None


class TestBboxAndQuality:
    def test_bbox_clipped(self):
        points = np.array([[-0.1, 0.2], [0.5, 1.2], [0.3, 0.4]])
        assert bbox_from_points(points) == pytest.approx((0.0, 0.2, 0.5, 0.8))

    def test_flat_gray_crop(self):
        image = np.full((100, 100, 3), 128, dtype=np.uint8)
        assert crop_quality(image, (0.25, 0.25, 0.5, 0.5)) == pytest.approx(0.3)

    def test_sharp_crop(self):
        image = np.zeros((100, 100, 3), dtype=np.uint8)
        image[::2, :] = 255
        assert crop_quality(image, (0.0, 0.0, 1.0, 1.0)) >= 0.7

    def test_empty_crop(self):
        image = np.zeros((10, 10, 3), dtype=np.uint8)
        assert crop_quality(image, (0.5, 0.5, 0.0, 0.0)) == 0.0


def _mesh_in_frame(landmarks, aspect):
    """FaceMesh array for *landmarks* as MediaPipe reports it in a frame of the given width/height."""
    points = np.zeros((478, 2))
    for name, indices in MESH_GROUPS.items():
        points[indices] = getattr(landmarks, name)
    points[:, 0] /= aspect
    return points


class TestFrameAspect:
    @pytest.mark.parametrize("aspect", [16 / 9, 3 / 4])
    def test_signature_independent_of_frame_shape(self, aspect):
        """The same face in a wide camera frame and a square photo matches exactly."""
        face = make_landmarks()
        square = extract_signature(landmarks_from_mesh(_mesh_in_frame(face, 1.0)))
        other = extract_signature(landmarks_from_mesh(_mesh_in_frame(face, aspect), aspect=aspect))

        np.testing.assert_allclose(other, square, atol=1e-5)

    def test_genuine_outranks_impostor_across_frames(self):
        wide = 16 / 9
        genuine = make_landmarks()
        impostor = make_landmarks(eye_gap=0.20, mouth_y=0.66)

        reference = extract_signature(landmarks_from_mesh(_mesh_in_frame(genuine, 1.0)))
        live = extract_signature(landmarks_from_mesh(_mesh_in_frame(genuine, wide), aspect=wide))
        fake = extract_signature(landmarks_from_mesh(_mesh_in_frame(impostor, wide), aspect=wide))

        assert cosine_similarity(live, reference) > cosine_similarity(fake, reference)

    def test_aspect_scales_x_only(self):
        points = np.array([[0.5, 0.5]] * 478)
        lm = landmarks_from_mesh(points, aspect=2.0)

        np.testing.assert_allclose(lm.left_eye, [[1.0, 0.5]] * 6)
        assert points[0, 0] == 0.5
