"""Reference photo sources and verification record persistence.

- ``PhotoStore``: lists a user's reference photo URLs.
- ``download_image`` / ``decode_image``: fetch and decode one reference.
- ``VerificationStore``: records a successful verification.

JSON-file implementations are provided for local use and tests.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol
from urllib.parse import urlparse

import cv2
import numpy as np
import requests

from liveface.errors import PersistenceError, ReferenceDecodeError, ReferenceDownloadError

logger = logging.getLogger(__name__)

VERIFICATION_METHOD = "live_face_recognition"
VERIFICATION_VERSION = 2

# Largest reference image accepted (bytes)
MAX_IMAGE_BYTES = 10 * 1024 * 1024

_CHUNK_SIZE = 8192


class PhotoStore(Protocol):
    def fetch_profile_photos(self, user_id: str) -> List[str]:
        """Reference photo URLs for *user_id*, primary photo first."""
        ...


class VerificationStore(Protocol):
    def mark_verified(self, user_id: str, confidence: float) -> None:
        """Persist a successful verification for *user_id*."""
        ...


# ── Photo store ──


class JsonPhotoStore:
    """Photo store backed by a JSON file.

    Layout::

        {"users": {"<user_id>": {"profile_image_url": "...", "photos": ["...", ...]}}}

    The profile image is listed first; empty and duplicate entries are skipped.
    """

    def __init__(self, path: str | Path):
        self._path = Path(path)

    def fetch_profile_photos(self, user_id: str) -> List[str]:
        if not self._path.exists():
            logger.warning("Photo store not found: %s", self._path)
            return []

        with open(self._path, "r", encoding="utf-8") as f:
            data = json.load(f)

        user = data.get("users", {}).get(user_id)
        if not user:
            return []

        urls: List[str] = []
        candidates = [user.get("profile_image_url")] + list(user.get("photos") or [])
        for url in candidates:
            if url and url not in urls:
                urls.append(url)
        return urls


class MemoryPhotoStore:
    """In-memory photo store (``user_id -> [url, ...]``)."""

    def __init__(self, photos: Optional[Dict[str, List[str]]] = None):
        self._photos = dict(photos or {})

    def set_photos(self, user_id: str, urls: List[str]) -> None:
        self._photos[user_id] = list(urls)

    def fetch_profile_photos(self, user_id: str) -> List[str]:
        return [u for u in self._photos.get(user_id, []) if u]


# ── Download & decode ──


def download_image(
    url: str,
    timeout: float = 15.0,
    total_timeout: Optional[float] = 30.0,
    session: Optional[requests.Session] = None,
) -> bytes:
    """Download a reference image.

    Args:
        url: http(s) URL of the image.
        timeout: Per-request connect/read timeout in seconds.
        total_timeout: Overall deadline for the whole transfer (None = no limit).
        session: Optional ``requests.Session`` to reuse connections.

    Returns:
        Raw image bytes.

    Raises:
        ReferenceDownloadError: Invalid URL, non-2xx status, transport error,
            oversized body, or deadline exceeded.
    """
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ReferenceDownloadError(url, "invalid URL")

    deadline = None if total_timeout is None else time.monotonic() + total_timeout
    getter = session.get if session is not None else requests.get
    try:
        response = getter(url, timeout=timeout, stream=True)
    except requests.RequestException as e:
        raise ReferenceDownloadError(url, str(e)) from e

    try:
        if not 200 <= response.status_code < 300:
            raise ReferenceDownloadError(url, f"HTTP {response.status_code}")

        content = bytearray()
        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
            content.extend(chunk)
            if len(content) > MAX_IMAGE_BYTES:
                raise ReferenceDownloadError(url, "image too large")
            if deadline is not None and time.monotonic() > deadline:
                raise ReferenceDownloadError(url, "deadline exceeded")
    except requests.RequestException as e:
        raise ReferenceDownloadError(url, str(e)) from e
    finally:
        response.close()

    return bytes(content)


def decode_image(data: bytes) -> np.ndarray:
    """Decode image bytes to a BGR array."""
    if not data:
        raise ReferenceDecodeError("empty image data")
    buf = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if image is None:
        raise ReferenceDecodeError("failed to decode image data")
    return image


# ── Verification store ──


class JsonVerificationStore:
    """Verification records merged into a JSON file keyed by user id."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = threading.Lock()

    def mark_verified(self, user_id: str, confidence: float) -> None:
        now = datetime.now(timezone.utc).isoformat()
        update = {
            "is_verified": True,
            "photo_verified": True,
            "verified_at": now,
            "photo_verified_at": now,
            "verification_confidence": float(confidence),
            "verification_method": VERIFICATION_METHOD,
            "verification_version": VERIFICATION_VERSION,
        }

        with self._lock:
            try:
                data = self._load()
                record = data.setdefault("users", {}).setdefault(user_id, {})
                record.update(update)
                self._path.parent.mkdir(parents=True, exist_ok=True)
                tmp = self._path.with_suffix(self._path.suffix + ".tmp")
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                tmp.replace(self._path)
            except (OSError, ValueError) as e:
                raise PersistenceError(f"Failed to write verification for {user_id}: {e}") from e

        logger.info("Verification recorded for %s (confidence %.3f)", user_id, confidence)

    def get(self, user_id: str) -> Optional[dict]:
        with self._lock:
            return self._load().get("users", {}).get(user_id)

    def _load(self) -> dict:
        if not self._path.exists():
            return {}
        with open(self._path, "r", encoding="utf-8") as f:
            return json.load(f)


class MemoryVerificationStore:
    """In-memory verification store."""

    def __init__(self):
        self.records: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def mark_verified(self, user_id: str, confidence: float) -> None:
        with self._lock:
            self.records[user_id] = {
                "is_verified": True,
                "photo_verified": True,
                "verified_at": datetime.now(timezone.utc).isoformat(),
                "verification_confidence": float(confidence),
                "verification_method": VERIFICATION_METHOD,
                "verification_version": VERIFICATION_VERSION,
            }


__all__ = [
    "VERIFICATION_METHOD",
    "VERIFICATION_VERSION",
    "PhotoStore",
    "VerificationStore",
    "JsonPhotoStore",
    "MemoryPhotoStore",
    "download_image",
    "decode_image",
    "JsonVerificationStore",
    "MemoryVerificationStore",
]
