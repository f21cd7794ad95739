"""IPC surface for liveface.

- Codec: observation / snapshot / result / image encode-decode
- Service: request handler mapping JSON requests onto a VerificationEngine
- ZMQ RPC: REQ-REP transport (optional, requires pyzmq)

Example (requires: pip install 'liveface[zmq]'):
    >>> service = VerificationService(engine)
    >>> serve(service, "tcp://*:5560")
"""

from liveface.ipc._util import check_zmq_available, generate_ipc_address
from liveface.ipc.codec import (
    decode_image,
    decode_observation,
    encode_image,
    encode_observation,
    encode_result,
    encode_snapshot,
)
from liveface.ipc.service import RequestError, VerificationClient, VerificationService, serve

__all__ = [
    "check_zmq_available",
    "generate_ipc_address",
    "encode_observation",
    "decode_observation",
    "encode_snapshot",
    "encode_result",
    "encode_image",
    "decode_image",
    "VerificationService",
    "VerificationClient",
    "RequestError",
    "serve",
]
