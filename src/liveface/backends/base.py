"""Backend protocol definitions for face landmark detection."""

from typing import Optional, Protocol

import numpy as np

from liveface.types import FrameObservation


class FaceLandmarkBackend(Protocol):
    """Protocol for face landmark detectors.

    Implementations turn one BGR image into a ``FrameObservation`` of the
    largest face, or None when no face is found.
    """

    def initialize(self) -> None:
        """Load models."""
        ...

    def detect(self, image: np.ndarray) -> Optional[FrameObservation]:
        """Detect the largest face in an image."""
        ...

    def cleanup(self) -> None:
        """Release resources."""
        ...
