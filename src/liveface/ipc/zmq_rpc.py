"""ZMQ REQ-REP transport.

Each instance owns its own zmq.Context.

Example:
    Server side:
        >>> server = ZMQRPCServer()
        >>> server.bind("tcp://*:5560")
        >>> data = server.recv()
        >>> server.send(b'{"type": "pong"}')
        >>> server.close()

    Client side:
        >>> client = ZMQRPCClient()
        >>> client.connect("tcp://localhost:5560")
        >>> client.send(b'{"type": "ping"}')
        >>> response = client.recv()
        >>> client.close()

Requires: pyzmq
"""

import logging
from typing import Optional

import zmq

logger = logging.getLogger(__name__)


def _close(socket: Optional[zmq.Socket], context: Optional[zmq.Context], linger_ms: int) -> None:
    if socket is not None:
        socket.close(linger=linger_ms)
    if context is not None:
        context.term()


class ZMQRPCServer:
    """REP socket: bind, then alternate recv/send.

    Args:
        linger_ms: Socket linger time on close (milliseconds).
    """

    def __init__(self, linger_ms: int = 0):
        self._linger_ms = linger_ms
        self._context: Optional[zmq.Context] = None
        self._socket: Optional[zmq.Socket] = None

    def bind(self, address: str) -> None:
        if self._socket is not None:
            return
        self._context = zmq.Context()
        self._socket = self._context.socket(zmq.REP)
        self._socket.setsockopt(zmq.LINGER, self._linger_ms)
        self._socket.bind(address)
        logger.info("RPC server bound to %s", address)

    def recv(self, timeout_ms: Optional[int] = None) -> Optional[bytes]:
        """Receive a request; None on timeout."""
        if self._socket is None:
            return None
        if self._socket.poll(timeout_ms if timeout_ms is not None else -1) == 0:
            return None
        return self._socket.recv()

    def send(self, data: bytes) -> None:
        if self._socket is None:
            raise RuntimeError("Server not bound")
        self._socket.send(data)

    def close(self) -> None:
        _close(self._socket, self._context, self._linger_ms)
        self._socket = None
        self._context = None

    @property
    def is_bound(self) -> bool:
        return self._socket is not None

    def __enter__(self) -> "ZMQRPCServer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class ZMQRPCClient:
    """REQ socket: connect, then alternate send/recv.

    Args:
        send_timeout_ms: Send timeout (milliseconds).
        recv_timeout_ms: Default receive timeout (milliseconds).
        linger_ms: Socket linger time on close (milliseconds).
    """

    def __init__(
        self,
        send_timeout_ms: int = 30000,
        recv_timeout_ms: int = 30000,
        linger_ms: int = 0,
    ):
        self._send_timeout_ms = send_timeout_ms
        self._recv_timeout_ms = recv_timeout_ms
        self._linger_ms = linger_ms
        self._context: Optional[zmq.Context] = None
        self._socket: Optional[zmq.Socket] = None

    def connect(self, address: str) -> None:
        if self._socket is not None:
            return
        self._context = zmq.Context()
        self._socket = self._context.socket(zmq.REQ)
        self._socket.setsockopt(zmq.SNDTIMEO, self._send_timeout_ms)
        self._socket.setsockopt(zmq.LINGER, self._linger_ms)
        self._socket.connect(address)
        logger.debug("RPC client connected to %s", address)

    def send(self, data: bytes) -> None:
        if self._socket is None:
            raise RuntimeError("Client not connected")
        self._socket.send(data)

    def recv(self, timeout_ms: Optional[int] = None) -> Optional[bytes]:
        """Receive a reply; None on timeout."""
        if self._socket is None:
            return None
        wait = self._recv_timeout_ms if timeout_ms is None else timeout_ms
        if self._socket.poll(wait) == 0:
            return None
        return self._socket.recv()

    def close(self) -> None:
        _close(self._socket, self._context, self._linger_ms)
        self._socket = None
        self._context = None

    @property
    def is_connected(self) -> bool:
        return self._socket is not None

    def __enter__(self) -> "ZMQRPCClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


__all__ = ["ZMQRPCServer", "ZMQRPCClient"]
