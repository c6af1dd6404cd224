"""Runtime module for process launching, output multiplexing and tracking.

This module turns command specifications into supervised child processes
whose output is labeled and either streamed or aggregated.
"""

from __future__ import annotations

from .output import LineBuffer, OutputWriter, read_lines
from .process_runner import (
    CommandSpec,
    ExitOutcome,
    ProcessHandle,
    ProcessLauncher,
    launch_all,
)

__all__ = [
    "CommandSpec",
    "ExitOutcome",
    "LineBuffer",
    "OutputWriter",
    "ProcessHandle",
    "ProcessLauncher",
    "launch_all",
    "read_lines",
]
