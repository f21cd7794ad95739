"""Serve command: verification sessions over ZMQ REQ-REP."""

import logging

from liveface.cli.utils import build_match_engine, build_trace
from liveface.config import VerificationConfig
from liveface.ipc import VerificationService, check_zmq_available, generate_ipc_address, serve
from liveface.session import VerificationEngine

logger = logging.getLogger(__name__)


def run_serve(args):
    if not check_zmq_available():
        print("Error: pyzmq is required. Install it with: pip install 'liveface[zmq]'")
        raise SystemExit(2)

    from liveface.backends.mediapipe import MediaPipeFaceDetector

    address = args.address
    if address is None:
        address, _ = generate_ipc_address()

    config = VerificationConfig.from_env()
    detector = MediaPipeFaceDetector()
    trace = build_trace(args)
    match_engine = build_match_engine(args, detector, config)

    print(f"Serving on {address}")
    try:
        with VerificationEngine(match_engine, config=config, trace=trace) as engine:
            service = VerificationService(engine, detector=None if args.no_detector else detector)
            serve(service, address)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        detector.cleanup()
        if trace is not None:
            trace.close()
