"""Runtime module for driver process management.

This module provides isolated process launching with proper signal handling
and reliable termination for WebDriver binaries.
"""

from __future__ import annotations

from .process_runner import DriverProcess, ProcessLauncher, ProcessSpec
from .shell_env import get_shell_path, merge_paths, resolve_command

__all__ = [
    "DriverProcess",
    "ProcessLauncher",
    "ProcessSpec",
    "get_shell_path",
    "merge_paths",
    "resolve_command",
]
