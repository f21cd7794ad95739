"""Session tracing for liveface.

Trace records describe what a verification session did (stage changes,
accepted captures, challenge outcomes, match decisions). They are emitted
through a ``TraceHub`` to any number of sinks.

Trace Levels:
- OFF: No tracing (default)
- MINIMAL: Stage changes and match decisions
- NORMAL: + captures and challenge events
- VERBOSE: + per-frame telemetry

Example:
    >>> from liveface.observability import TraceHub, TraceLevel, FileSink
    >>> hub = TraceHub(level=TraceLevel.NORMAL)
    >>> hub.add_sink(FileSink("/tmp/session.jsonl"))
    >>> engine = VerificationEngine(match_engine, trace=hub)
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class TraceLevel(IntEnum):
    OFF = 0
    MINIMAL = 1
    NORMAL = 2
    VERBOSE = 3


# =============================================================================
# Records
# =============================================================================


@dataclass
class TraceRecord:
    """Base trace record."""

    record_type: str = field(default="trace", init=False)
    min_level: TraceLevel = field(default=TraceLevel.MINIMAL, repr=False)
    user_id: str = ""
    wall_time: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("min_level", None)
        return {k: _jsonable(v) for k, v in data.items()}


@dataclass
class StageChangeRecord(TraceRecord):
    """Session moved from one stage to another."""

    record_type: str = field(default="stage_change", init=False)

    old_stage: str = ""
    new_stage: str = ""
    reason: str = ""
    progress: float = 0.0


@dataclass
class CaptureRecord(TraceRecord):
    """A frame was accepted as a pose capture."""

    record_type: str = field(default="capture", init=False)
    min_level: TraceLevel = field(default=TraceLevel.NORMAL, repr=False)

    pose: str = ""
    count: int = 0
    frame_id: int = 0
    quality: float = 0.0
    yaw: float = 0.0
    pitch: float = 0.0


@dataclass
class ChallengeRecord(TraceRecord):
    """A liveness challenge started, passed, was retried or exhausted."""

    record_type: str = field(default="challenge", init=False)
    min_level: TraceLevel = field(default=TraceLevel.NORMAL, repr=False)

    challenge: str = ""
    event: str = ""  # "start" / "passed" / "retry" / "exhausted"
    attempt: int = 0
    frames: int = 0


@dataclass
class FrameRecord(TraceRecord):
    """Per-frame telemetry."""

    record_type: str = field(default="frame", init=False)
    min_level: TraceLevel = field(default=TraceLevel.VERBOSE, repr=False)

    frame_id: int = 0
    stage: str = ""
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0
    quality: float = 0.0
    instruction: str = ""


@dataclass
class MatchRecord(TraceRecord):
    """Result of a match attempt."""

    record_type: str = field(default="match", init=False)

    success: bool = False
    confidence: float = 0.0
    failure: str = ""
    tier: str = ""
    comparisons: int = 0
    download_failures: int = 0
    extraction_failures: int = 0
    elapsed_ms: float = 0.0


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    return value


# =============================================================================
# Sinks
# =============================================================================


class Sink(ABC):
    """Destination for trace records."""

    @abstractmethod
    def write(self, record: TraceRecord) -> None:
        ...

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.flush()


class NullSink(Sink):
    """Discards everything."""

    def write(self, record: TraceRecord) -> None:
        pass


class MemorySink(Sink):
    """Keeps the most recent records in memory.

    Args:
        max_records: Ring buffer size (None = unbounded).
    """

    def __init__(self, max_records: Optional[int] = None):
        self._records: deque = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def write(self, record: TraceRecord) -> None:
        with self._lock:
            self._records.append(record)

    def get_records(self) -> List[TraceRecord]:
        with self._lock:
            return list(self._records)

    def get_by_type(self, record_type: str) -> List[TraceRecord]:
        return [r for r in self.get_records() if r.record_type == record_type]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class FileSink(Sink):
    """Appends records to a JSONL file.

    Args:
        path: Output file path.
        buffer_size: Records buffered before a write to disk.
    """

    def __init__(self, path: Union[str, Path], buffer_size: int = 50):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._buffer_size = max(1, buffer_size)
        self._buffer: List[str] = []
        self._lock = threading.Lock()
        self._file = open(self._path, "a", encoding="utf-8")

    def write(self, record: TraceRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with self._lock:
            self._buffer.append(line)
            if len(self._buffer) >= self._buffer_size:
                self._flush_locked()

    def flush(self) -> None:
        with self._lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        if self._file.closed or not self._buffer:
            return
        self._file.write("\n".join(self._buffer) + "\n")
        self._file.flush()
        self._buffer.clear()

    def close(self) -> None:
        with self._lock:
            self._flush_locked()
            if not self._file.closed:
                self._file.close()


# =============================================================================
# Hub
# =============================================================================


class TraceHub:
    """Routes trace records to sinks, filtered by level."""

    def __init__(self, level: TraceLevel = TraceLevel.OFF):
        self._level = level
        self._sinks: List[Sink] = []
        self._lock = threading.Lock()

    @property
    def level(self) -> TraceLevel:
        return self._level

    @property
    def enabled(self) -> bool:
        return self._level > TraceLevel.OFF and bool(self._sinks)

    def configure(self, level: TraceLevel) -> None:
        self._level = level

    def is_level_enabled(self, level: TraceLevel) -> bool:
        return level <= self._level

    def add_sink(self, sink: Sink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def remove_sink(self, sink: Sink) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def emit(self, record: TraceRecord) -> None:
        if not self.is_level_enabled(record.min_level) or self._level == TraceLevel.OFF:
            return
        with self._lock:
            sinks = list(self._sinks)
        for sink in sinks:
            try:
                sink.write(record)
            except Exception as e:
                logger.warning("Trace sink %s failed: %s", type(sink).__name__, e)

    def close(self) -> None:
        with self._lock:
            sinks, self._sinks = self._sinks, []
        for sink in sinks:
            sink.close()


__all__ = [
    "TraceLevel",
    "TraceRecord",
    "StageChangeRecord",
    "CaptureRecord",
    "ChallengeRecord",
    "FrameRecord",
    "MatchRecord",
    "Sink",
    "NullSink",
    "MemorySink",
    "FileSink",
    "TraceHub",
]
