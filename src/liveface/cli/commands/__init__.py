"""CLI command handlers."""

from liveface.cli.commands.info import run_info
from liveface.cli.commands.match import run_match
from liveface.cli.commands.run import run_session
from liveface.cli.commands.serve import run_serve

__all__ = [
    "run_info",
    "run_match",
    "run_session",
    "run_serve",
]
