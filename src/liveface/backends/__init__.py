"""Face landmark detection backends."""

from liveface.backends.base import FaceLandmarkBackend

__all__ = ["FaceLandmarkBackend"]
