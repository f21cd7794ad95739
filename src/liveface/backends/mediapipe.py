"""MediaPipe FaceLandmarker backend.

Produces ``FrameObservation`` objects from BGR images: bounding box, head
angles from the facial transformation matrix, a sharpness/exposure quality
score, and the named landmark groups used by liveness and signature code.

Landmark groups are named by image side ("left_eye" is the eye on the left
of the image).
"""

import logging
import math
import threading
import urllib.request
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from liveface.paths import get_models_dir
from liveface.types import FaceLandmarks, FrameObservation

logger = logging.getLogger(__name__)

FACE_LANDMARKER_MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/1/face_landmarker.task"
)

# FaceMesh indices per landmark group. Eyes are in EAR order
# (corner, top, top, corner, bottom, bottom); outer lips start at the left
# corner with the top midpoint at 3, right corner at 6, bottom midpoint at 9.
MESH_GROUPS: Dict[str, List[int]] = {
    "left_eye": [33, 160, 158, 133, 153, 144],
    "right_eye": [362, 385, 387, 263, 373, 380],
    "left_eyebrow": [70, 63, 105, 66, 107],
    "right_eyebrow": [336, 296, 334, 293, 300],
    "nose": [168, 6, 197, 195, 5, 4, 1, 2, 98, 327],
    "outer_lips": [61, 40, 37, 0, 267, 270, 291, 321, 314, 17, 84, 91],
    "inner_lips": [78, 81, 13, 311, 308, 402, 14, 178],
    "face_contour": [
        10, 338, 297, 332, 284, 251, 389, 356, 454, 323, 361, 288,
        397, 365, 379, 378, 400, 377, 152, 148, 176, 149, 150, 136,
        172, 58, 132, 93, 234, 127, 162, 21, 54, 103, 67, 109,
    ],
}

# Laplacian variance at which a face crop counts as fully sharp
SHARPNESS_REFERENCE = 100.0


def _get_model_path(models_dir: Optional[Path] = None) -> Path:
    """Get path to the face landmarker model, downloading if necessary."""
    cache_dir = models_dir or get_models_dir()
    cache_dir.mkdir(parents=True, exist_ok=True)
    model_path = cache_dir / "face_landmarker.task"

    if not model_path.exists():
        logger.info("Downloading face landmarker model to %s...", model_path)
        try:
            urllib.request.urlretrieve(FACE_LANDMARKER_MODEL_URL, model_path)
            logger.info("Download complete.")
        except Exception as e:
            raise RuntimeError(
                f"Failed to download face landmarker model: {e}\n"
                f"You can manually download from: {FACE_LANDMARKER_MODEL_URL}\n"
                f"And save to: {model_path}"
            ) from e

    return model_path


def landmarks_from_mesh(points: np.ndarray, aspect: float = 1.0) -> FaceLandmarks:
    """Pick the named groups out of a normalized (N, 2+) FaceMesh array.

    MediaPipe normalizes x by image width and y by image height. x is
    multiplied by *aspect* (width / height) so both axes are in units of
    image height and face geometry does not depend on the frame shape.
    """
    points = np.array(points, dtype=np.float64)
    points[:, 0] *= aspect
    groups = {}
    for name, indices in MESH_GROUPS.items():
        if max(indices) < len(points):
            groups[name] = points[indices, :2]
    return FaceLandmarks(**groups)


def euler_from_matrix(matrix: np.ndarray) -> Tuple[float, float, float]:
    """(yaw, pitch, roll) in radians from a 4x4 facial transformation matrix."""
    r = np.asarray(matrix, dtype=np.float64)[:3, :3]
    sy = math.hypot(r[2, 1], r[2, 2])
    pitch = math.atan2(r[2, 1], r[2, 2])
    yaw = math.atan2(-r[2, 0], sy)
    roll = math.atan2(r[1, 0], r[0, 0])
    return yaw, pitch, roll


def bbox_from_points(points: np.ndarray) -> Tuple[float, float, float, float]:
    """Normalized (x, y, w, h) bounding box, clipped to the frame."""
    xs = np.clip(points[:, 0], 0.0, 1.0)
    ys = np.clip(points[:, 1], 0.0, 1.0)
    x0, y0 = float(xs.min()), float(ys.min())
    return (x0, y0, float(xs.max()) - x0, float(ys.max()) - y0)


def crop_quality(image: np.ndarray, bbox: Tuple[float, float, float, float]) -> float:
    """Quality [0, 1] of the face crop: sharpness weighted with exposure."""
    h, w = image.shape[:2]
    x, y, bw, bh = bbox
    x0, y0 = int(x * w), int(y * h)
    x1, y1 = int((x + bw) * w), int((y + bh) * h)
    crop = image[max(0, y0):max(0, y1), max(0, x0):max(0, x1)]
    if crop.size == 0:
        return 0.0

    gray = cv2.cvtColor(crop, cv2.COLOR_BGR2GRAY) if crop.ndim == 3 else crop
    sharpness = min(1.0, float(cv2.Laplacian(gray, cv2.CV_64F).var()) / SHARPNESS_REFERENCE)
    exposure = max(0.0, 1.0 - abs(float(np.mean(gray)) - 128.0) / 128.0)
    return 0.7 * sharpness + 0.3 * exposure


class MediaPipeFaceDetector:
    """Face landmark detection with MediaPipe FaceLandmarker (Tasks API).

    Args:
        max_num_faces: Faces detected per image; the largest one is returned.
        min_detection_confidence: Minimum face detection confidence.
        mirror_yaw: Negate yaw (for mirrored selfie previews).
        models_dir: Where the model file is cached.

    Example:
        >>> detector = MediaPipeFaceDetector()
        >>> detector.initialize()
        >>> obs = detector.detect(image)
        >>> detector.cleanup()
    """

    def __init__(
        self,
        max_num_faces: int = 2,
        min_detection_confidence: float = 0.5,
        mirror_yaw: bool = False,
        models_dir: Optional[Path] = None,
    ):
        self._max_num_faces = max_num_faces
        self._min_detection_confidence = min_detection_confidence
        self._mirror_yaw = mirror_yaw
        self._models_dir = models_dir
        self._landmarker: Optional[object] = None
        self._initialized = False
        self._frame_id = 0
        self._lock = threading.Lock()

    def initialize(self) -> None:
        if self._initialized:
            return

        try:
            from mediapipe.tasks import python
            from mediapipe.tasks.python import vision
        except ImportError as e:
            raise ImportError(
                "MediaPipe is required for face detection. "
                "Install it with: pip install 'liveface[mediapipe]'"
            ) from e

        model_path = _get_model_path(self._models_dir)
        base_options = python.BaseOptions(model_asset_path=str(model_path))
        options = vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.IMAGE,
            num_faces=self._max_num_faces,
            min_face_detection_confidence=self._min_detection_confidence,
            output_facial_transformation_matrixes=True,
        )
        self._landmarker = vision.FaceLandmarker.create_from_options(options)
        self._initialized = True
        logger.info("MediaPipe FaceLandmarker initialized")

    def detect(self, image: np.ndarray) -> Optional[FrameObservation]:
        """Detect the largest face in a BGR image."""
        if not self._initialized:
            self.initialize()

        import mediapipe as mp

        image_rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=image_rgb)
        with self._lock:
            result = self._landmarker.detect(mp_image)
            self._frame_id += 1
            frame_id = self._frame_id

        if not result.face_landmarks:
            return None

        best = None
        best_area = -1.0
        for idx, face_lms in enumerate(result.face_landmarks):
            points = np.array([[lm.x, lm.y] for lm in face_lms], dtype=np.float64)
            bbox = bbox_from_points(points)
            area = bbox[2] * bbox[3]
            if area > best_area:
                best, best_area = (idx, points, bbox), area

        idx, points, bbox = best
        yaw = pitch = roll = 0.0
        matrices = result.facial_transformation_matrixes
        if matrices and idx < len(matrices):
            yaw, pitch, roll = euler_from_matrix(np.asarray(matrices[idx]))
            if self._mirror_yaw:
                yaw = -yaw

        return FrameObservation(
            bbox=bbox,
            yaw=yaw,
            pitch=pitch,
            roll=roll,
            quality=crop_quality(image, bbox),
            landmarks=landmarks_from_mesh(points, aspect=image.shape[1] / image.shape[0]),
            frame_id=frame_id,
        )

    def cleanup(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
            self._landmarker = None
        self._initialized = False
        logger.info("MediaPipe FaceLandmarker cleaned up")


__all__ = [
    "MESH_GROUPS",
    "MediaPipeFaceDetector",
    "landmarks_from_mesh",
    "euler_from_matrix",
    "bbox_from_points",
    "crop_quality",
]
