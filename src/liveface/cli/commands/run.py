"""Run command: one verification session from a camera or video file."""

import json
import logging

import cv2

from liveface.cli.utils import BOLD, RESET, build_match_engine, build_trace, resolve_source
from liveface.config import VerificationConfig
from liveface.session import VerificationEngine
from liveface.types import Failure

logger = logging.getLogger(__name__)


def run_session(args) -> int:
    """Verify ``args.user`` from ``args.source``; exit code 0 on success."""
    from liveface.backends.mediapipe import MediaPipeFaceDetector

    source = resolve_source(args.source)
    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        print(f"Error: cannot open source: {args.source}")
        return 2

    config = VerificationConfig.from_env()
    detector = MediaPipeFaceDetector(mirror_yaw=args.mirror)
    trace = build_trace(args)
    match_engine = build_match_engine(args, detector, config)

    last_instruction = None

    def on_snapshot(snapshot):
        nonlocal last_instruction
        if snapshot.instruction != last_instruction:
            last_instruction = snapshot.instruction
            print(f"[{snapshot.stage.name:>15}] {snapshot.progress:4.0%}  {snapshot.instruction}")

    frames = 0
    try:
        with VerificationEngine(match_engine, config=config, trace=trace) as engine:
            engine.subscribe(on_snapshot)
            engine.start(args.user)

            while args.max_frames is None or frames < args.max_frames:
                ok, image = cap.read()
                if not ok:
                    break
                frames += 1

                obs = detector.detect(image)
                if obs is None:
                    engine.no_face_detected()
                else:
                    engine.process_observation(obs)

                # Keep the detector in step with the session.
                engine.join()
                snapshot = engine.snapshot()
                if snapshot.stage.terminal or snapshot.stage.name == "processing":
                    break

            engine.join()
            snapshot = engine.snapshot()
            if snapshot.stage.name == "processing":
                # Frames are done; only the reference match is outstanding.
                snapshot = engine.wait_for_terminal(timeout=config.session_timeout_sec)
            elif not snapshot.stage.terminal:
                engine.reset()
                snapshot = None
            result = engine.last_result
    finally:
        cap.release()
        detector.cleanup()
        if trace is not None:
            trace.close()

    if snapshot is None:
        print(f"Source ended after {frames} frames before the session finished")
        return 1

    if args.json:
        payload = {"user_id": args.user, "stage": snapshot.stage.name, "frames": frames}
        if result is not None:
            payload["result"] = result.to_dict()
        if isinstance(snapshot.stage, Failure):
            payload["reason"] = snapshot.stage.reason
            payload["failure"] = snapshot.stage.kind.value
        print(json.dumps(payload, indent=2))
    else:
        print(f"\n{BOLD}Result:{RESET} {snapshot.stage.name}")
        if isinstance(snapshot.stage, Failure):
            print(f"  {snapshot.stage.reason}")
        else:
            print(f"  confidence {snapshot.confidence:.3f}")

    return 0 if snapshot.stage.name == "success" else 1
