"""Info command for liveface CLI.

Shows the effective configuration and which optional backends are installed.
"""

from dataclasses import fields, is_dataclass

from liveface.cli.utils import BOLD, DIM, RESET
from liveface.config import VerificationConfig


def run_info(args):
    """Show system information and available components."""
    print(f"{BOLD}LiveFace - System Information{RESET}")
    print("=" * 60)
    _print_version_info()
    _print_backends()
    _print_config(VerificationConfig.from_env())


def _print_version_info():
    try:
        from importlib.metadata import version
        print(f"  liveface: {version('liveface')}")
    except Exception:
        print("  liveface: (version not available)")

    import cv2
    import numpy as np
    print(f"  numpy: {np.__version__}")
    print(f"  opencv: {cv2.__version__}")


def _print_backends():
    print(f"\n{BOLD}[Backends]{RESET}")
    try:
        import mediapipe
        print(f"  mediapipe: {getattr(mediapipe, '__version__', 'installed')}")
    except ImportError:
        print(f"  mediapipe: NOT INSTALLED {DIM}(pip install 'liveface[mediapipe]'){RESET}")

    from liveface.ipc import check_zmq_available
    if check_zmq_available():
        import zmq
        print(f"  pyzmq: {zmq.__version__}")
    else:
        print(f"  pyzmq: NOT INSTALLED {DIM}(pip install 'liveface[zmq]'){RESET}")


def _print_config(config, indent: str = "  "):
    print(f"\n{BOLD}[Config]{RESET}")
    _print_dataclass(config, indent)


def _print_dataclass(obj, indent: str):
    for f in fields(obj):
        value = getattr(obj, f.name)
        if is_dataclass(value):
            print(f"{indent}{f.name}:")
            _print_dataclass(value, indent + "  ")
        elif isinstance(value, tuple):
            print(f"{indent}{f.name}: {', '.join(getattr(v, 'value', str(v)) for v in value)}")
        else:
            print(f"{indent}{f.name}: {value}")
