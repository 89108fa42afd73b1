"""Shell environment resolution for drivers launched from GUI sessions.

Desktop sessions started from a launcher often inherit a minimal PATH
(``/usr/bin:/bin``), so drivers installed with cargo, Homebrew or a node
version manager are invisible. This module reads the user's login shell
PATH once and merges it with the current process PATH.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
from collections.abc import Mapping

from ..errors import SpawnError

__all__ = [
    "get_shell_path",
    "merge_paths",
    "inject_shell_path",
    "resolve_command",
    "command_hint",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# Seconds to wait for the login shell to print PATH
SHELL_QUERY_TIMEOUT = 5.0

_PRINT_PATH = 'printf "%s" "$PATH"'

_UNRESOLVED = object()
_shell_path: object = _UNRESOLVED


def merge_paths(primary: str, secondary: str, sep: str = os.pathsep) -> str:
    """Merge two PATH strings, deduplicating and keeping ``primary`` first.

    Empty entries are dropped.
    """
    seen: set[str] = set()
    merged: list[str] = []
    for entry in primary.split(sep) + secondary.split(sep):
        if entry and entry not in seen:
            seen.add(entry)
            merged.append(entry)
    return sep.join(merged)


def _query_shell(shell: str, flags: list[str]) -> str | None:
    """Run ``shell <flags> 'printf "%s" "$PATH"'`` and return its output."""
    try:
        result = subprocess.run(
            [shell, *flags, _PRINT_PATH],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            timeout=SHELL_QUERY_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Failed to run shell '{shell}' {flags}: {e}")
        return None

    if result.returncode != 0:
        logger.debug(f"Shell exited with status {result.returncode} (flags: {flags})")
        return None

    path = result.stdout.decode("utf-8", errors="replace").strip()
    return path or None


def _resolve_shell_path() -> str | None:
    shell = os.environ.get("SHELL") or "/bin/sh"
    logger.info(f"Resolving PATH from login shell: {shell}")

    # -i picks up nvm/Volta/fnm init from rc files; some shells refuse it without a tty
    shell_path = _query_shell(shell, ["-l", "-i", "-c"])
    if shell_path is None:
        logger.debug("Interactive shell failed, trying login-only")
        shell_path = _query_shell(shell, ["-l", "-c"])

    if not shell_path:
        logger.warning("Could not resolve PATH from shell, using process PATH")
        return None

    merged = merge_paths(shell_path, os.environ.get("PATH", ""))
    logger.info(
        f"Resolved PATH ({len(merged.split(os.pathsep))} entries, "
        f"shell had {len(shell_path.split(os.pathsep))} entries)"
    )
    logger.debug(f"PATH = {merged}")
    return merged


def get_shell_path() -> str | None:
    """Return the login shell PATH merged with the process PATH.

    Always ``None`` on Windows, where GUI apps already get the full PATH.
    The result is cached for the lifetime of the process.
    """
    global _shell_path
    if _shell_path is _UNRESOLVED:
        _shell_path = None if IS_WINDOWS else _resolve_shell_path()
    return _shell_path  # type: ignore[return-value]


def inject_shell_path(env: dict[str, str], shell_path: str | None) -> None:
    """Set PATH in ``env`` from ``shell_path`` unless the caller already set it."""
    if "PATH" in env or not shell_path:
        return
    env["PATH"] = shell_path


def command_hint(binary: str) -> str:
    """Return an install hint for well-known driver binaries."""
    name = os.path.basename(binary).lower()
    if name.endswith(".exe"):
        name = name[:-4]
    if name == "tauri-driver":
        return "Install it with: cargo install tauri-driver --locked"
    if name == "webkitwebdriver":
        return "Install the webkit2gtk-driver package"
    if name == "msedgedriver":
        return "Install an Edge Driver matching the installed Edge version"
    return ""


def resolve_command(binary: str, env: Mapping[str, str] | None = None) -> str:
    """Locate ``binary`` on the PATH of ``env`` (or the process PATH).

    Also tries ``<binary>.exe``.

    Raises:
        SpawnError: If the binary cannot be found.
    """
    search_path = env.get("PATH") if env is not None else None
    for candidate in (binary, f"{binary}.exe"):
        found = shutil.which(candidate, path=search_path)
        if found:
            return found
    raise SpawnError(binary, "executable not found on PATH", hint=command_hint(binary))


def _reset_cache() -> None:
    """Forget the cached shell PATH (used by tests)."""
    global _shell_path
    _shell_path = _UNRESOLVED
