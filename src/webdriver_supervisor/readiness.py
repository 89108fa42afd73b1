"""Readiness detection for driver processes.

A driver is ready the instant a stdout chunk contains the readiness marker
substring, whether or not the line has been terminated yet. Output is split
into lines only for forwarding: every line except the one holding the
marker, and all of stderr, goes to the diagnostic sink. Stderr is never
inspected for readiness.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import Callable
from enum import Enum

from .errors import ProcessExitError
from .runtime.process_runner import DriverProcess

__all__ = [
    "OutputCallback",
    "ReadinessDetector",
    "ReadinessOutcome",
    "ReadinessSignal",
    "classify_output_line",
    "log_output",
]

logger = logging.getLogger(__name__)
driver_logger = logging.getLogger("webdriver_supervisor.driver")

# (stream_name, line) -> None
OutputCallback = Callable[[str, str], None]

# Seconds to let the pipes drain after the driver exits
EXIT_DRAIN_TIMEOUT = 1.0

# Bytes requested per stdout read
READ_CHUNK_SIZE = 4096

# An unterminated stdout line longer than this is forwarded as is
MAX_PENDING_LINE = 64 * 1024


class ReadinessOutcome(Enum):
    """Outcome of a readiness signal."""

    READY = "ready"
    FAILED = "failed"


class ReadinessSignal:
    """Single-assignment readiness outcome.

    The first call to set_ready() or set_failed() wins; later calls return
    False and change nothing.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._resolved = False
        self.outcome: ReadinessOutcome | None = None
        self.ready_line: str | None = None
        self.error: BaseException | None = None

    @property
    def resolved(self) -> bool:
        return self._resolved

    @property
    def is_ready(self) -> bool:
        return self.outcome is ReadinessOutcome.READY

    def set_ready(self, line: str) -> bool:
        if self._resolved:
            return False
        self._resolved = True
        self.outcome = ReadinessOutcome.READY
        self.ready_line = line
        self._event.set()
        return True

    def set_failed(self, error: BaseException) -> bool:
        if self._resolved:
            return False
        self._resolved = True
        self.outcome = ReadinessOutcome.FAILED
        self.error = error
        self._event.set()
        return True

    async def wait(self) -> str:
        """Wait for the outcome.

        Returns:
            The stdout line that contained the marker

        Raises:
            The failure reason if the signal resolved as failed
        """
        await self._event.wait()
        if self.error is not None:
            raise self.error
        return self.ready_line or ""


def classify_output_line(line: str) -> int:
    """Map a driver output line to a logging level by its content."""
    lower = line.lower()
    if "error" in lower or "panic" in lower or "fatal" in lower:
        return logging.ERROR
    if "warn" in lower:
        return logging.WARNING
    if "debug" in lower or "trace" in lower:
        return logging.DEBUG
    return logging.INFO


def log_output(stream: str, line: str) -> None:
    """Default diagnostic sink: log driver output through ``logging``."""
    level = classify_output_line(line) if stream == "stderr" else logging.INFO
    driver_logger.log(level, f"[{stream}] {line}")


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace").rstrip("\r\n")


class ReadinessDetector:
    """Watches a driver's output streams and resolves a ReadinessSignal.

    Args:
        marker: Substring that marks the driver as ready
        sink: Diagnostic callback, defaults to log_output
    """

    def __init__(self, marker: str, sink: OutputCallback | None = None) -> None:
        if not marker:
            raise ValueError("marker must not be empty")
        self.marker = marker
        self._sink = sink or log_output

    def watch(self, driver: DriverProcess, signal: ReadinessSignal) -> None:
        """Start reader tasks for ``driver`` and attach them to it.

        The stdout and stderr readers run until EOF so the driver never
        blocks on a full pipe. The exit watcher resolves ``signal`` as
        failed if the driver exits before the marker was seen.
        """
        stdout_task = asyncio.create_task(
            self._pump_stdout(driver, signal), name=f"driver-stdout-{driver.pid}"
        )
        stderr_task = asyncio.create_task(
            self._pump_stderr(driver), name=f"driver-stderr-{driver.pid}"
        )
        exit_task = asyncio.create_task(
            self._watch_exit(driver, signal, (stdout_task, stderr_task)),
            name=f"driver-exit-{driver.pid}",
        )
        driver.attach(stdout_task)
        driver.attach(stderr_task)
        driver.attach(exit_task)

    def emit(self, stream: str, line: str) -> None:
        """Forward a line to the sink; sink errors are logged, never raised."""
        try:
            self._sink(stream, line)
        except Exception as e:
            logger.warning(f"Output callback raised {type(e).__name__}: {e}")

    async def _pump_stdout(self, driver: DriverProcess, signal: ReadinessSignal) -> None:
        """Scan raw stdout chunks for the marker and forward complete lines.

        ``carry`` keeps the last ``len(marker) - 1`` characters so a marker
        split across two reads is still found. ``pending`` is the current
        unterminated line; when it holds the marker it is skipped once it
        completes.
        """
        stream = driver.stdout
        if stream is None:
            return

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        keep = len(self.marker) - 1
        carry = ""
        pending = ""
        skip_pending = False

        while True:
            raw = await stream.read(READ_CHUNK_SIZE)
            text = decoder.decode(raw, final=not raw)

            lines = (pending + text).split("\n")
            pending = lines.pop()
            if skip_pending and lines:
                skip_pending = False
                lines = lines[1:]

            ready_index = -1
            if text and not signal.resolved:
                window = carry + text
                if self.marker in window:
                    candidates = lines + [pending]
                    ready_index = next(
                        (i for i, line in enumerate(candidates) if self.marker in line),
                        len(candidates) - 1,
                    )
                    ready_line = candidates[ready_index].rstrip("\r")
                    if signal.set_ready(ready_line):
                        logger.debug(f"Readiness marker seen pid={driver.pid}: {ready_line}")
                        skip_pending = ready_index == len(lines)
                    else:
                        ready_index = -1
                carry = window[-keep:] if keep else ""

            for index, line in enumerate(lines):
                if index != ready_index:
                    self.emit("stdout", line.rstrip("\r"))

            if len(pending) > MAX_PENDING_LINE:
                if not skip_pending:
                    self.emit("stdout", pending)
                pending = ""
                skip_pending = False

            if not raw:
                break

        if pending and not skip_pending:
            self.emit("stdout", pending.rstrip("\r"))

    async def _pump_stderr(self, driver: DriverProcess) -> None:
        stream = driver.stderr
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                logger.debug(f"Discarded overlong stderr line from pid={driver.pid}")
                continue
            if not raw:
                break
            line = _decode(raw)
            if line:
                driver.record_stderr(line)
            self.emit("stderr", line)

    async def _watch_exit(
        self,
        driver: DriverProcess,
        signal: ReadinessSignal,
        pumps: tuple[asyncio.Task[None], ...],
    ) -> None:
        returncode = await driver.wait()
        # A marker still sitting in the pipe must win over the exit
        await asyncio.wait(pumps, timeout=EXIT_DRAIN_TIMEOUT)

        if signal.set_failed(ProcessExitError(returncode, driver.stderr_text)):
            logger.debug(f"Driver exited before ready pid={driver.pid} returncode={returncode}")
        elif signal.is_ready:
            logger.warning(f"Driver exited unexpectedly pid={driver.pid} returncode={returncode}")
