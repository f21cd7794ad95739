"""Session supervisor: runs the state machine on a single event thread.

All inputs (frames, timer expiries, match completions, control calls) are
posted to one ``queue.Queue`` and applied in order by one consumer thread,
so the state machine is never touched concurrently. Public methods only
enqueue.

Every ``start()``/``reset()`` bumps a generation counter. Timer and match
events carry the generation they were created in; events from an older
generation are dropped, so a reset session never sees a stale timeout or
match result.
"""

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from liveface.config import VerificationConfig
from liveface.machine import (
    CancelTimeout,
    Effect,
    ScheduleChallengeAdvance,
    StartMatch,
    StartTimeout,
    VerificationStateMachine,
)
from liveface.observability import MatchRecord, TraceHub
from liveface.types import FrameObservation, MatchResult, SessionSnapshot

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[SessionSnapshot], None]
TimerFactory = Callable[..., Any]


# ── Events ──


@dataclass(frozen=True)
class _Start:
    user_id: str
    epoch: int


@dataclass(frozen=True)
class _Frame:
    observation: FrameObservation


@dataclass(frozen=True)
class _NoFace:
    pass


@dataclass(frozen=True)
class _AdvanceChallenge:
    generation: int


@dataclass(frozen=True)
class _Timeout:
    generation: int


@dataclass(frozen=True)
class _MatchDone:
    generation: int
    result: MatchResult
    elapsed_ms: float


@dataclass(frozen=True)
class _MatchFailed:
    generation: int
    error: BaseException


@dataclass(frozen=True)
class _RetryMatch:
    epoch: int


@dataclass(frozen=True)
class _Reset:
    epoch: int


@dataclass(frozen=True)
class _Stop:
    pass


class VerificationEngine:
    """Runs one verification session at a time.

    Args:
        match_engine: Object with ``match(user_id, captures, is_cancelled)``.
        config: Session configuration.
        trace: Optional trace hub.
        timer_factory: ``threading.Timer``-compatible factory
            ``(interval, function, args=...)``.
        clock: Wall-clock source for capture timestamps.

    Example:
        >>> with VerificationEngine(match_engine) as engine:
        ...     engine.start("user-1")
        ...     for obs in frames:
        ...         engine.process_observation(obs)
        ...     snapshot = engine.wait_for_terminal(timeout=120)
    """

    def __init__(
        self,
        match_engine,
        config: Optional[VerificationConfig] = None,
        trace: Optional[TraceHub] = None,
        timer_factory: TimerFactory = threading.Timer,
        clock: Callable[[], float] = time.time,
    ):
        self._machine = VerificationStateMachine(config, trace=trace, clock=clock)
        self._match_engine = match_engine
        self._trace = trace
        self._timer_factory = timer_factory

        self._events: "queue.Queue[Any]" = queue.Queue()
        self._generation = 0
        self._timeout_timer = None
        self._advance_timer = None
        self._match_cancel: Optional[threading.Event] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="liveface-match")

        self._lock = threading.Lock()
        self._subscribers: List[SnapshotCallback] = []
        self._snapshot = self._machine.snapshot()
        self._last_result: Optional[MatchResult] = None
        self._changed = threading.Condition(self._lock)
        # Bumped by every start/reset/retry_match call; the event thread
        # records the last one it applied.
        self._epoch = 0
        self._dispatched_epoch = 0
        self._applied_epoch = 0
        self._closed = False

        self._worker = threading.Thread(target=self._run, name="liveface-session", daemon=True)
        self._worker.start()

    # ── Public API ──

    @property
    def config(self) -> VerificationConfig:
        return self._machine.config

    def start(self, user_id: str) -> None:
        self._post_control(lambda epoch: _Start(user_id, epoch))

    def process_observation(self, observation: FrameObservation) -> None:
        self._post(_Frame(observation))

    def no_face_detected(self) -> None:
        self._post(_NoFace())

    def retry_match(self) -> None:
        self._post_control(_RetryMatch)

    def reset(self) -> None:
        self._post_control(_Reset)

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return self._snapshot

    @property
    def last_result(self) -> Optional[MatchResult]:
        """Result of the current session's latest match, if any."""
        with self._lock:
            return self._last_result

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Call *callback* with a snapshot after every change.

        Returns:
            A function that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def join(self) -> None:
        """Block until every event posted so far has been applied."""
        self._events.join()

    def wait_for_terminal(self, timeout: Optional[float] = None) -> Optional[SessionSnapshot]:
        """Block until the session reaches ``Success`` or ``Failure``.

        Only counts a terminal stage reached after the latest ``start()``,
        ``reset()`` or ``retry_match()`` call has been applied.
        """
        with self._changed:
            if self._changed.wait_for(self._is_current_terminal, timeout):
                return self._snapshot
        return None

    def _is_current_terminal(self) -> bool:
        return self._applied_epoch == self._epoch and self._snapshot.stage.terminal

    def close(self) -> None:
        """Stop the event thread and release timers and the match worker."""
        if self._closed:
            return
        self._events.put(_Stop())
        self._worker.join()
        self._closed = True
        self._cancel_timers()
        if self._match_cancel is not None:
            self._match_cancel.set()
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "VerificationEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ── Event loop ──

    def _post_control(self, make_event) -> None:
        with self._lock:
            if self._closed:
                logger.debug("Engine closed, dropping control event")
                return
            self._epoch += 1
            self._events.put(make_event(self._epoch))

    def _post(self, event) -> None:
        if self._closed:
            logger.debug("Engine closed, dropping %s", type(event).__name__)
            return
        self._events.put(event)

    def _run(self) -> None:
        while True:
            event = self._events.get()
            try:
                if isinstance(event, _Stop):
                    break
                self._execute(self._dispatch(event))
                self._publish()
            except Exception:
                logger.exception("Error while handling %s", type(event).__name__)
            finally:
                self._events.task_done()

    def _dispatch(self, event) -> List[Effect]:
        machine = self._machine

        if isinstance(event, _Frame):
            return machine.process_observation(event.observation)
        if isinstance(event, _NoFace):
            return machine.no_face_detected()
        if isinstance(event, _Start):
            self._new_generation(event.epoch)
            return machine.start(event.user_id)
        if isinstance(event, _Reset):
            self._new_generation(event.epoch)
            return machine.reset()
        if isinstance(event, _RetryMatch):
            self._dispatched_epoch = event.epoch
            return machine.retry_match()

        if event.generation != self._generation:
            logger.debug("Dropping stale %s (generation %d)", type(event).__name__, event.generation)
            return []

        if isinstance(event, _Timeout):
            self._timeout_timer = None
            return machine.on_timeout()
        if isinstance(event, _AdvanceChallenge):
            self._advance_timer = None
            return machine.advance_challenge()
        if isinstance(event, _MatchDone):
            self._match_cancel = None
            self._record_match(event.result, event.elapsed_ms)
            with self._lock:
                self._last_result = event.result
            return machine.apply_match_result(event.result)
        if isinstance(event, _MatchFailed):
            self._match_cancel = None
            return machine.apply_match_error(event.error)

        raise TypeError(f"Unknown session event: {event!r}")

    def _new_generation(self, epoch: int) -> None:
        self._dispatched_epoch = epoch
        self._generation += 1
        self._cancel_timers()
        if self._match_cancel is not None:
            self._match_cancel.set()
            self._match_cancel = None
        with self._lock:
            self._last_result = None

    def _execute(self, effects: List[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, StartTimeout):
                self._cancel_timeout()
                self._timeout_timer = self._schedule(effect.seconds, _Timeout(self._generation))
            elif isinstance(effect, CancelTimeout):
                self._cancel_timeout()
            elif isinstance(effect, ScheduleChallengeAdvance):
                if self._advance_timer is not None:
                    self._advance_timer.cancel()
                self._advance_timer = self._schedule(effect.delay, _AdvanceChallenge(self._generation))
            elif isinstance(effect, StartMatch):
                cancel = threading.Event()
                self._match_cancel = cancel
                self._executor.submit(self._run_match, self._generation, effect, cancel)

    def _schedule(self, delay: float, event):
        timer = self._timer_factory(delay, self._post, args=(event,))
        timer.daemon = True
        timer.start()
        return timer

    def _cancel_timeout(self) -> None:
        if self._timeout_timer is not None:
            self._timeout_timer.cancel()
            self._timeout_timer = None

    def _cancel_timers(self) -> None:
        self._cancel_timeout()
        if self._advance_timer is not None:
            self._advance_timer.cancel()
            self._advance_timer = None

    def _run_match(self, generation: int, request: StartMatch, cancel: threading.Event) -> None:
        started = time.monotonic()
        try:
            result = self._match_engine.match(request.user_id, request.captures, cancel.is_set)
        except Exception as e:
            logger.error("Match engine error for %s: %s", request.user_id, e)
            self._post(_MatchFailed(generation, e))
            return
        elapsed_ms = (time.monotonic() - started) * 1000.0
        self._post(_MatchDone(generation, result, elapsed_ms))

    def _record_match(self, result: MatchResult, elapsed_ms: float) -> None:
        if self._trace is None or not self._trace.enabled:
            return
        self._trace.emit(MatchRecord(
            user_id=self._machine.user_id,
            success=result.success,
            confidence=result.confidence,
            failure=result.failure.value if result.failure else "",
            tier=result.tier or "",
            comparisons=result.comparisons,
            download_failures=result.download_failures,
            extraction_failures=result.extraction_failures,
            elapsed_ms=elapsed_ms,
        ))

    def _publish(self) -> None:
        snapshot = self._machine.snapshot()
        with self._changed:
            self._snapshot = snapshot
            self._applied_epoch = self._dispatched_epoch
            subscribers = list(self._subscribers)
            self._changed.notify_all()
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber failed")


__all__ = ["VerificationEngine"]
