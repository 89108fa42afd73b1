"""Driver process launcher with subprocess isolation and reliable termination.

webdriver-supervisor runtime module v0.1.0

This module provides:
- Cross-platform subprocess isolation (new session/process group)
- Binary resolution with install hints, optional login-shell PATH
- Reliable termination with graceful shutdown (SIGTERM -> timeout -> SIGKILL)
- Cancel-safe cleanup using asyncio.shield

Key design points:
- POSIX: start_new_session=True to create new process group
- Windows: CREATE_NEW_PROCESS_GROUP | CREATE_NO_WINDOW
- stdin is always DEVNULL; stdout/stderr are always piped
- The first termination signal is sent before the first suspension point
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import anyio.to_thread

from ..errors import SpawnError
from .shell_env import command_hint, get_shell_path, inject_shell_path, resolve_command

__all__ = [
    "DriverProcess",
    "ProcessLauncher",
    "ProcessSpec",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

# Number of stderr lines kept for diagnostics
STDERR_TAIL_LINES = 200

# Not exposed by the subprocess module on every Python version
CREATE_NO_WINDOW = 0x08000000


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for a driver process to launch.

    Attributes:
        argv: Command line arguments (first element is the executable)
        cwd: Working directory for the process (None = inherit)
        env: Environment variables (None = inherit parent)
        resolve_shell_path: Look the binary up on the login shell PATH
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    resolve_shell_path: bool = False


@dataclass
class DriverProcess:
    """Owned handle to a spawned driver process.

    Holds the asyncio process, the tasks reading its output streams and a
    bounded tail of its stderr for diagnostics.
    """

    process: asyncio.subprocess.Process
    argv: list[str]
    started_at: float = field(default_factory=time.monotonic)
    stderr_tail: deque[str] = field(
        default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES)
    )
    tasks: list[asyncio.Task[Any]] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        """Exit status, None while running."""
        return self.process.returncode

    @property
    def is_running(self) -> bool:
        return self.process.returncode is None

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self.process.stderr

    @property
    def stderr_text(self) -> str:
        return "\n".join(self.stderr_tail)

    def record_stderr(self, line: str) -> None:
        self.stderr_tail.append(line)

    def attach(self, task: asyncio.Task[Any]) -> None:
        """Register a task that reads from this process."""
        self.tasks.append(task)

    def cancel_tasks(self) -> list[asyncio.Task[Any]]:
        """Cancel attached tasks and return the ones that were still pending."""
        pending = [task for task in self.tasks if not task.done()]
        for task in pending:
            task.cancel()
        self.tasks.clear()
        return pending

    async def wait(self) -> int:
        return await self.process.wait()


@dataclass
class ProcessLauncher:
    """Cross-platform driver launcher with isolation and reliable termination.

    Example:
        launcher = ProcessLauncher()
        driver = await launcher.launch(ProcessSpec(argv=["tauri-driver"]))
        try:
            ...
        finally:
            await launcher.terminate(driver)
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT

    async def launch(self, spec: ProcessSpec) -> DriverProcess:
        """Spawn the driver described by ``spec``.

        Args:
            spec: Process specification

        Returns:
            Handle to the running process

        Raises:
            SpawnError: If the binary cannot be found or executed
        """
        if not spec.argv:
            raise SpawnError("", "empty argv")

        binary = spec.argv[0]
        shell_path = None
        if spec.resolve_shell_path:
            # The login shell lookup blocks; a cancelled start abandons the thread
            shell_path = await anyio.to_thread.run_sync(
                get_shell_path, abandon_on_cancel=True
            )
        env = self._build_env(spec, shell_path)
        executable = resolve_command(binary, env)
        kwargs = self._build_subprocess_kwargs(env)

        try:
            # stdin=None would hand the caller's terminal to the driver
            process = await asyncio.create_subprocess_exec(
                executable,
                *spec.argv[1:],
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=spec.cwd,
                **kwargs,
            )
        except OSError as e:
            raise SpawnError(binary, str(e), hint=command_hint(binary)) from e

        logger.debug(
            f"Started driver pid={process.pid} "
            f"argv={spec.argv} cwd={spec.cwd}"
        )
        return DriverProcess(process=process, argv=list(spec.argv))

    def _build_env(
        self, spec: ProcessSpec, shell_path: str | None = None
    ) -> dict[str, str] | None:
        """Build the child environment, injecting ``shell_path`` if requested."""
        env = dict(spec.env) if spec.env is not None else None
        if not spec.resolve_shell_path or not shell_path:
            return env
        if env is None:
            # Merged shell PATH already contains the process PATH
            env = dict(os.environ)
            env["PATH"] = shell_path
        else:
            inject_shell_path(env, shell_path)
        return env

    def _build_subprocess_kwargs(self, env: dict[str, str] | None) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if env is not None:
            kwargs["env"] = env

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP | CREATE_NO_WINDOW
        else:
            # POSIX: start_new_session (equivalent to setsid)
            kwargs["start_new_session"] = True

        return kwargs

    async def terminate(self, driver: DriverProcess) -> None:
        """Terminate the driver and cancel its reader tasks.

        The termination signal is issued before this coroutine first
        suspends. Already-exited processes are a no-op. Never raises
        except for cancellation of the caller after cleanup.
        """
        signalled = False
        if driver.is_running:
            signalled = self._send_terminate(driver.process)

        pending = driver.cancel_tasks()

        try:
            # Shield cleanup from cancellation
            await asyncio.shield(self._finish(driver, pending, signalled))
        except asyncio.CancelledError:
            await self._finish(driver, pending, signalled)
            raise

    async def _finish(
        self,
        driver: DriverProcess,
        pending: list[asyncio.Task[Any]],
        signalled: bool,
    ) -> None:
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if signalled or driver.is_running:
            await self._wait_or_kill(driver.process)

    async def _wait_or_kill(self, process: asyncio.subprocess.Process) -> None:
        """Wait for graceful exit, then force kill if needed.

        Termination strategy:
        1. (SIGTERM already sent by terminate())
        2. Wait up to term_timeout for graceful exit
        3. If still running, send SIGKILL (or kill() on Windows)
        4. Wait up to kill_timeout for forced exit
        """
        pid = process.pid
        try:
            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Driver terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing driver pid={pid}")
            self._send_kill(process)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(
                    f"Driver killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            except asyncio.TimeoutError:
                logger.warning(f"Driver did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Driver already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating driver pid={pid}: {e}")

    def _send_terminate(self, process: asyncio.subprocess.Process) -> bool:
        """Send the graceful termination signal. Returns False if already gone."""
        try:
            if IS_WINDOWS:
                self._windows_terminate(process)
            else:
                self._posix_terminate(process)
            return True
        except ProcessLookupError:
            logger.debug(f"Driver already exited pid={process.pid}")
            return False
        except Exception as e:
            logger.warning(f"Error signalling driver pid={process.pid}: {e}")
            return True

    def _send_kill(self, process: asyncio.subprocess.Process) -> None:
        if IS_WINDOWS:
            self._windows_kill(process)
        else:
            self._posix_kill(process)

    def _posix_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGTERM to the process group on POSIX systems."""
        try:
            # Process group ID equals pid due to start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGTERM)
            logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
        except ProcessLookupError:
            raise
        except OSError as e:
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            process.terminate()

    def _posix_kill(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGKILL to the process group on POSIX systems."""
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send CTRL_BREAK_EVENT on Windows."""
        try:
            # Works because the driver got CREATE_NEW_PROCESS_GROUP
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()

    def _windows_kill(self, process: asyncio.subprocess.Process) -> None:
        """Force kill on Windows."""
        try:
            process.kill()
            logger.debug(f"Called kill() on pid={process.pid}")
        except ProcessLookupError:
            pass
