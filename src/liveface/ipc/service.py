"""Request/response surface for a verification engine.

Requests and replies are JSON objects with a ``type`` field:

    {"type": "ping"}                              -> {"type": "pong"}
    {"type": "start", "user_id": "..."}           -> session state
    {"type": "submit_frame", "frame": {...}}      -> {"stage", "instruction", "progress"}
    {"type": "submit_image", "image": {...}}      -> same (needs a detector)
    {"type": "no_face"}                           -> session state
    {"type": "get_result"}                        -> MatchResult dict or {"pending": true}
    {"type": "retry_match"}                       -> session state
    {"type": "reset"}                             -> session state
    {"type": "shutdown"}                          -> {"type": "ack"}

Requests may carry ``session_id``; it must equal the active user id.
Invalid requests get ``{"type": "error", "message": ...}``.
"""

import json
import logging
from typing import Any, Dict, Optional

from liveface.ipc.codec import decode_image, decode_observation, encode_result, encode_snapshot
from liveface.session import VerificationEngine
from liveface.types import Failure

logger = logging.getLogger(__name__)


class RequestError(ValueError):
    """A request that cannot be served."""


def _error(message: str) -> Dict[str, Any]:
    return {"type": "error", "message": message}


class VerificationService:
    """Maps RPC requests onto a ``VerificationEngine``.

    Args:
        engine: The engine to drive.
        detector: Optional landmark detector enabling ``submit_image``.
    """

    def __init__(self, engine: VerificationEngine, detector=None):
        self._engine = engine
        self._detector = detector
        self._handlers = {
            "ping": self._ping,
            "start": self._start,
            "submit_frame": self._submit_frame,
            "submit_image": self._submit_image,
            "no_face": self._no_face,
            "get_result": self._get_result,
            "retry_match": self._retry_match,
            "reset": self._reset,
        }

    def handle(self, request: Any) -> Dict[str, Any]:
        if not isinstance(request, dict):
            return _error("request must be a JSON object")

        msg_type = request.get("type")
        handler = self._handlers.get(msg_type)
        if handler is None:
            logger.warning("Unknown message type: %s", msg_type)
            return _error(f"unknown message type: {msg_type}")

        try:
            self._check_session(request, msg_type)
            return handler(request)
        except (RequestError, ValueError, KeyError, TypeError) as e:
            logger.warning("Bad %s request: %s", msg_type, e)
            return _error(str(e))

    def handle_bytes(self, data: bytes) -> bytes:
        try:
            request = json.loads(data)
        except ValueError as e:
            return json.dumps(_error(f"invalid JSON: {e}")).encode()
        return json.dumps(self.handle(request)).encode()

    # ── Handlers ──

    def _check_session(self, request: Dict[str, Any], msg_type: str) -> None:
        session_id = request.get("session_id")
        if session_id is None or msg_type in ("ping", "start"):
            return
        active = self._engine.snapshot().user_id
        if session_id != active:
            raise RequestError(f"unknown session: {session_id}")

    def _state(self) -> Dict[str, Any]:
        self._engine.join()
        return encode_snapshot(self._engine.snapshot())

    def _frame_reply(self) -> Dict[str, Any]:
        self._engine.join()
        snapshot = self._engine.snapshot()
        return {
            "stage": snapshot.stage.name,
            "instruction": snapshot.instruction,
            "progress": snapshot.progress,
        }

    def _ping(self, request: Dict[str, Any]) -> Dict[str, Any]:
        return {"type": "pong"}

    def _start(self, request: Dict[str, Any]) -> Dict[str, Any]:
        user_id = request.get("user_id") or request.get("session_id")
        if not user_id:
            raise RequestError("start requires user_id")
        self._engine.start(str(user_id))
        return self._state()

    def _submit_frame(self, request: Dict[str, Any]) -> Dict[str, Any]:
        frame = request.get("frame")
        if not isinstance(frame, dict):
            raise RequestError("submit_frame requires a frame object")
        self._engine.process_observation(decode_observation(frame))
        return self._frame_reply()

    def _submit_image(self, request: Dict[str, Any]) -> Dict[str, Any]:
        if self._detector is None:
            raise RequestError("submit_image requires a server-side detector")
        image = decode_image(request["image"])
        obs = self._detector.detect(image)
        if obs is None:
            self._engine.no_face_detected()
        else:
            self._engine.process_observation(obs)
        return self._frame_reply()

    def _no_face(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self._engine.no_face_detected()
        return self._frame_reply()

    def _get_result(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self._engine.join()
        snapshot = self._engine.snapshot()
        result = self._engine.last_result
        if result is not None and snapshot.stage.terminal:
            return encode_result(result)
        if isinstance(snapshot.stage, Failure):
            return {
                "success": False,
                "message": snapshot.stage.reason,
                "confidence": 0.0,
                "failure": snapshot.stage.kind.value,
            }
        return {"pending": True, "stage": snapshot.stage.name}

    def _retry_match(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self._engine.retry_match()
        return self._state()

    def _reset(self, request: Dict[str, Any]) -> Dict[str, Any]:
        self._engine.reset()
        return self._state()


def serve(service: VerificationService, address: str, poll_ms: int = 500) -> None:
    """Serve requests on a ZMQ REP socket until a ``shutdown`` request."""
    from liveface.ipc.zmq_rpc import ZMQRPCServer

    with ZMQRPCServer() as server:
        server.bind(address)
        while True:
            data = server.recv(timeout_ms=poll_ms)
            if data is None:
                continue
            if _is_shutdown(data):
                server.send(json.dumps({"type": "ack"}).encode())
                logger.info("Received shutdown signal")
                break
            server.send(service.handle_bytes(data))


def _is_shutdown(data: bytes) -> bool:
    try:
        request = json.loads(data)
    except ValueError:
        return False
    return isinstance(request, dict) and request.get("type") == "shutdown"


class VerificationClient:
    """Client for a ``serve()``-d verification service.

    Example:
        >>> with VerificationClient("tcp://localhost:5560") as client:
        ...     client.start("user-1")
        ...     reply = client.submit_frame(encode_observation(obs))
    """

    def __init__(self, address: str, timeout_ms: int = 30000):
        from liveface.ipc.zmq_rpc import ZMQRPCClient

        self._client = ZMQRPCClient(send_timeout_ms=timeout_ms, recv_timeout_ms=timeout_ms)
        self._client.connect(address)

    def request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self._client.send(json.dumps(payload).encode())
        reply = self._client.recv()
        if reply is None:
            raise TimeoutError(f"No reply to {payload.get('type')} request")
        return json.loads(reply)

    def ping(self) -> Dict[str, Any]:
        return self.request({"type": "ping"})

    def start(self, user_id: str) -> Dict[str, Any]:
        return self.request({"type": "start", "user_id": user_id})

    def submit_frame(self, frame: Dict[str, Any], session_id: Optional[str] = None) -> Dict[str, Any]:
        payload = {"type": "submit_frame", "frame": frame}
        if session_id is not None:
            payload["session_id"] = session_id
        return self.request(payload)

    def no_face(self) -> Dict[str, Any]:
        return self.request({"type": "no_face"})

    def get_result(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        payload = {"type": "get_result"}
        if session_id is not None:
            payload["session_id"] = session_id
        return self.request(payload)

    def reset(self) -> Dict[str, Any]:
        return self.request({"type": "reset"})

    def shutdown(self) -> Dict[str, Any]:
        return self.request({"type": "shutdown"})

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "VerificationClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = ["VerificationService", "VerificationClient", "RequestError", "serve"]
