"""Driver supervisor: lifecycle of one WebDriver binary instance.

start() arms one anyio deadline on entry, then launches the driver and
races the readiness marker on stdout against the driver exiting. The
deadline also bounds launching, including login shell PATH resolution.
Whichever resolves the ReadinessSignal first wins; the others become
no-ops. stop() is idempotent and never raises.

Example:
    ```python
    config = SupervisorConfig(binary="tauri-driver", start_timeout=30.0)
    async with DriverSupervisor(config) as supervisor:
        print(supervisor.endpoint)
        ...  # run WebDriver sessions
    ```
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum

import anyio

from .config import SupervisorConfig
from .errors import (
    AlreadyStartedError,
    DriverTimeoutError,
    SpawnError,
    StatusCheckError,
    SupervisorError,
)
from .readiness import OutputCallback, ReadinessDetector, ReadinessSignal
from .runtime.process_runner import DriverProcess, ProcessLauncher, ProcessSpec
from .status import DriverEndpoint, DriverStatus, fetch_status, parse_endpoint

__all__ = ["DriverSupervisor", "SupervisorState"]

logger = logging.getLogger(__name__)


class SupervisorState(Enum):
    """Supervisor 状态。

    - NOT_STARTED: 刚创建，未调用 start()
    - STARTING: 驱动已启动，等待就绪标记
    - READY: 已看到就绪标记
    - FAILED: 启动失败（启动错误 / 超时 / 提前退出）
    - TERMINATED: 已调用 stop()
    """

    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    TERMINATED = "terminated"


# start() may be called from these states
_STARTABLE = frozenset({SupervisorState.NOT_STARTED, SupervisorState.TERMINATED})


class DriverSupervisor:
    """Owns the lifecycle of one driver process.

    Args:
        config: Driver command line, readiness marker and timeouts
        on_output: Diagnostic sink for driver output, ``(stream, line)``
        launcher: Process launcher (default built from config timeouts)
    """

    def __init__(
        self,
        config: SupervisorConfig | None = None,
        *,
        on_output: OutputCallback | None = None,
        launcher: ProcessLauncher | None = None,
    ) -> None:
        self.config = config or SupervisorConfig()
        self._launcher = launcher or ProcessLauncher(
            term_timeout=self.config.term_timeout,
            kill_timeout=self.config.kill_timeout,
        )
        self._detector = ReadinessDetector(self.config.ready_marker, on_output)
        self._state = SupervisorState.NOT_STARTED
        self._process: DriverProcess | None = None
        self._signal: ReadinessSignal | None = None
        self._ready_line: str | None = None

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def process(self) -> DriverProcess | None:
        """Current driver process (None in NOT_STARTED and TERMINATED)."""
        return self._process

    @property
    def is_ready(self) -> bool:
        return self._state is SupervisorState.READY

    @property
    def ready_line(self) -> str | None:
        """The stdout line that contained the readiness marker."""
        return self._ready_line

    @property
    def endpoint(self) -> DriverEndpoint | None:
        """Address parsed from the ready line, if it names one."""
        return parse_endpoint(self._ready_line)

    async def __aenter__(self) -> "DriverSupervisor":
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def start(self) -> None:
        """Launch the driver and wait until it prints the readiness marker.

        Raises:
            AlreadyStartedError: If called while starting, ready or failed
            SpawnError: If the binary cannot be found or executed
            ProcessExitError: If the driver exits before becoming ready
            DriverTimeoutError: If the marker does not appear in time
        """
        if self._state not in _STARTABLE:
            raise AlreadyStartedError(self._state)

        signal = ReadinessSignal()
        self._signal = signal
        self._process = None
        self._ready_line = None
        self._state = SupervisorState.STARTING
        started = time.monotonic()

        spec = ProcessSpec(
            argv=self.config.argv,
            cwd=self.config.cwd,
            env=self.config.env,
            resolve_shell_path=self.config.resolve_shell_path,
        )
        try:
            # One deadline covers PATH resolution, spawning and the marker wait
            with anyio.fail_after(self.config.start_timeout):
                driver = await self._launcher.launch(spec)
                if self._signal is not signal:
                    # stop() ran while the process was being spawned
                    await self._launcher.terminate(driver)
                    raise SupervisorError("Supervisor stopped during start")

                self._process = driver
                logger.info(f"Started driver pid={driver.pid} argv={driver.argv}")
                self._detector.watch(driver, signal)
                ready_line = await signal.wait()
        except SpawnError as e:
            if self._signal is signal:
                signal.set_failed(e)
                self._state = SupervisorState.FAILED
            logger.error(f"Failed to start driver: {e}")
            raise
        except TimeoutError:
            error = DriverTimeoutError(self.config.start_timeout, self.config.ready_marker)
            if not signal.set_failed(error) and signal.is_ready:
                # Marker arrived in the same loop iteration as the deadline
                ready_line = signal.ready_line or ""
            else:
                await self._fail(signal, error)
                raise error from None
        except SupervisorError as e:
            await self._fail(signal, e)
            raise
        except asyncio.CancelledError:
            signal.set_failed(SupervisorError("start() was cancelled"))
            await self._fail(signal, None)
            raise

        self._state = SupervisorState.READY
        self._ready_line = ready_line
        logger.info(
            f"Driver ready pid={driver.pid} "
            f"after {time.monotonic() - started:.2f}s: {ready_line}"
        )

    async def _fail(self, signal: ReadinessSignal, error: BaseException | None) -> None:
        """Move to FAILED and terminate the driver, unless stop() took over."""
        if self._signal is not signal:
            return
        self._state = SupervisorState.FAILED
        driver = self._process
        if error is not None:
            logger.error(f"Driver failed to become ready: {error}")
        else:
            logger.info("Driver start cancelled")
        if driver is not None:
            await self._launcher.terminate(driver)

    async def stop(self) -> None:
        """Terminate the driver if one is alive. Safe to call from any state.

        The termination signal is issued before this coroutine first
        suspends. Afterwards the supervisor is TERMINATED and holds no
        process reference.
        """
        signal, driver = self._signal, self._process
        previous = self._state
        self._signal = None
        self._process = None
        self._state = SupervisorState.TERMINATED

        if signal is not None:
            # Pending start() fails; a resolved signal ignores this
            signal.set_failed(SupervisorError("Supervisor stopped"))

        if driver is None:
            if previous is not SupervisorState.TERMINATED:
                logger.debug(f"Supervisor stopped (state was {previous.value})")
            return

        try:
            await self._launcher.terminate(driver)
        except Exception as e:
            logger.warning(f"Error stopping driver pid={driver.pid}: {e}")
        logger.info(
            f"Driver stopped pid={driver.pid} "
            f"returncode={driver.returncode} (state was {previous.value})"
        )

    async def status(self, *, timeout: float | None = None) -> DriverStatus:
        """Query the ready driver's ``GET /status`` endpoint.

        Raises:
            StatusCheckError: If not ready, no endpoint is known or the request fails
        """
        endpoint = self.endpoint
        if not self.is_ready or endpoint is None:
            raise StatusCheckError(
                "", f"No driver endpoint (state={self._state.value}, ready_line={self._ready_line!r})"
            )
        if timeout is None:
            return await fetch_status(endpoint)
        return await fetch_status(endpoint, timeout=timeout)
