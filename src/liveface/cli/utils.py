"""CLI utility functions."""

import logging
import os

BOLD = "\033[1m"
DIM = "\033[2m"
RESET = "\033[0m"

# Chatty third-party loggers kept at WARNING unless --verbose
NOISY_LOGGERS = ("urllib3", "requests", "absl", "matplotlib")


def suppress_thirdparty_noise():
    """Silence MediaPipe/TFLite and OpenCV native logging."""
    os.environ.setdefault("GLOG_minloglevel", "2")
    os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "2")
    os.environ.setdefault("OPENCV_LOG_LEVEL", "ERROR")


def configure_log_levels():
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def resolve_source(value: str):
    """Camera index (int) or video file path."""
    try:
        return int(value)
    except ValueError:
        return value


def build_trace(args):
    """TraceHub from --trace/--trace-output, or None when tracing is off."""
    from liveface.observability import FileSink, TraceHub, TraceLevel

    level = TraceLevel[args.trace.upper()]
    if level == TraceLevel.OFF or not args.trace_output:
        return None
    hub = TraceHub(level=level)
    hub.add_sink(FileSink(args.trace_output))
    return hub


def build_match_engine(args, detector, config):
    from liveface.matcher import MatchEngine
    from liveface.store import JsonPhotoStore, JsonVerificationStore

    records = JsonVerificationStore(args.records) if args.records else None
    return MatchEngine(
        JsonPhotoStore(args.photos),
        detector,
        verification_store=records,
        config=config.match,
    )
