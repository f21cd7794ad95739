"""Home and model directory path utilities.

Centralizes liveface storage to ``~/.liveface`` by default.
Override with ``LIVEFACE_HOME`` or ``LIVEFACE_MODELS_DIR`` environment variables.
"""

import os
from pathlib import Path


def get_home_dir() -> Path:
    """Return the liveface home directory, creating it if needed.

    Resolution order:
        1. ``LIVEFACE_HOME`` environment variable.
        2. ``~/.liveface`` (default).
    """
    home = os.environ.get("LIVEFACE_HOME")
    if home:
        home_dir = Path(home)
    else:
        home_dir = Path.home() / ".liveface"
    home_dir.mkdir(parents=True, exist_ok=True)
    return home_dir


def get_models_dir() -> Path:
    """Return the models directory, creating it if it doesn't exist.

    Resolution order:
        1. ``LIVEFACE_MODELS_DIR`` environment variable (absolute or relative to CWD).
        2. ``{home}/models`` where *home* is from :func:`get_home_dir`.
    """
    env_val = os.environ.get("LIVEFACE_MODELS_DIR")
    if env_val:
        models_dir = Path(env_val)
        if not models_dir.is_absolute():
            models_dir = Path.cwd() / models_dir
    else:
        models_dir = get_home_dir() / "models"
    models_dir.mkdir(parents=True, exist_ok=True)
    return models_dir
