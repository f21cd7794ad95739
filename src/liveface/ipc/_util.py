"""IPC utility functions."""

import os
import tempfile


def check_zmq_available() -> bool:
    """Check if pyzmq is available."""
    try:
        import zmq  # noqa: F401
        return True
    except ImportError:
        return False


def generate_ipc_address(prefix: str = "liveface") -> tuple[str, str]:
    """Generate a unique IPC address for the RPC server.

    Returns:
        Tuple of (zmq_address, file_path), e.g.
        ("ipc:///tmp/liveface-12345-xxxx.sock", "/tmp/liveface-12345-xxxx.sock").
    """
    fd, ipc_file = tempfile.mkstemp(prefix=f"{prefix}-{os.getpid()}-", suffix=".sock")
    os.close(fd)
    os.unlink(ipc_file)
    return f"ipc://{ipc_file}", ipc_file
