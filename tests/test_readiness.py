"""ReadinessSignal / ReadinessDetector tests."""

from __future__ import annotations

import asyncio
import logging
import sys

import pytest

from webdriver_supervisor.errors import ProcessExitError
from webdriver_supervisor.readiness import (
    ReadinessDetector,
    ReadinessOutcome,
    ReadinessSignal,
    classify_output_line,
    log_output,
)
from webdriver_supervisor.runtime.process_runner import ProcessLauncher, ProcessSpec


def python_spec(code: str) -> ProcessSpec:
    return ProcessSpec(argv=[sys.executable, "-c", code])


# =============================================================================
# ReadinessSignal
# =============================================================================


class TestReadinessSignal:
    """Single-fire semantics."""

    @pytest.mark.asyncio
    async def test_ready_then_failed_is_noop(self):
        signal = ReadinessSignal()
        assert signal.set_ready("Listening on 127.0.0.1:4444") is True
        assert signal.set_failed(RuntimeError("late")) is False

        assert signal.outcome is ReadinessOutcome.READY
        assert signal.error is None
        assert await signal.wait() == "Listening on 127.0.0.1:4444"

    @pytest.mark.asyncio
    async def test_failed_then_ready_is_noop(self):
        signal = ReadinessSignal()
        error = ProcessExitError(1, "port in use")
        assert signal.set_failed(error) is True
        assert signal.set_ready("Listening on 127.0.0.1:4444") is False

        assert signal.outcome is ReadinessOutcome.FAILED
        assert signal.ready_line is None
        with pytest.raises(ProcessExitError):
            await signal.wait()

    @pytest.mark.asyncio
    async def test_double_ready_keeps_first_line(self):
        signal = ReadinessSignal()
        signal.set_ready("first")
        assert signal.set_ready("second") is False
        assert signal.ready_line == "first"

    @pytest.mark.asyncio
    async def test_wait_blocks_until_resolved(self):
        signal = ReadinessSignal()
        waiter = asyncio.create_task(signal.wait())
        await asyncio.sleep(0.05)
        assert not waiter.done()
        assert not signal.resolved

        signal.set_ready("ok")
        assert await waiter == "ok"

    @pytest.mark.asyncio
    async def test_cancelled_wait_does_not_break_signal(self):
        """Cancelling a waiter leaves the signal resolvable."""
        signal = ReadinessSignal()
        waiter = asyncio.create_task(signal.wait())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert signal.set_failed(TimeoutError("deadline")) is True
        assert signal.set_ready("late marker") is False


# =============================================================================
# Output classification
# =============================================================================


class TestClassifyOutputLine:
    """Stderr lines map to logging levels by content."""

    @pytest.mark.parametrize(
        "line",
        ["ERROR: something failed", "fatal: not a git repository", "thread 'main' panicked"],
    )
    def test_error(self, line: str):
        assert classify_output_line(line) == logging.ERROR

    @pytest.mark.parametrize("line", ["WARN: deprecated feature", "Warning: something is off"])
    def test_warning(self, line: str):
        assert classify_output_line(line) == logging.WARNING

    @pytest.mark.parametrize("line", ["DEBUG: internal state", "trace: verbose output"])
    def test_debug(self, line: str):
        assert classify_output_line(line) == logging.DEBUG

    def test_info_default(self):
        assert classify_output_line("Server listening on port 3000") == logging.INFO

    def test_log_output_uses_driver_logger(self, caplog: pytest.LogCaptureFixture):
        with caplog.at_level(logging.DEBUG, logger="webdriver_supervisor.driver"):
            log_output("stderr", "ERROR: boom")
            log_output("stdout", "error in a stdout line")

        records = [r for r in caplog.records if r.name == "webdriver_supervisor.driver"]
        assert records[0].levelno == logging.ERROR
        assert "[stderr] ERROR: boom" in records[0].getMessage()
        # stdout is never classified
        assert records[1].levelno == logging.INFO


# =============================================================================
# ReadinessDetector
# =============================================================================


@pytest.mark.timeout(20)
class TestReadinessDetector:
    """Detector wired to real processes."""

    def test_empty_marker_rejected(self):
        with pytest.raises(ValueError):
            ReadinessDetector("")

    def test_emit_swallows_sink_errors(self, caplog: pytest.LogCaptureFixture):
        def bad_sink(stream: str, line: str) -> None:
            raise RuntimeError("boom")

        detector = ReadinessDetector("ready", bad_sink)
        with caplog.at_level(logging.WARNING):
            detector.emit("stdout", "hello")
        assert "RuntimeError" in caplog.text

    @pytest.mark.asyncio
    async def test_first_marker_line_wins(self):
        lines: list[tuple[str, str]] = []
        detector = ReadinessDetector("Listening on", lambda s, l: lines.append((s, l)))
        launcher = ProcessLauncher(term_timeout=0.5, kill_timeout=0.5)
        driver = await launcher.launch(
            python_spec(
                "print('booting'); print('Listening on 127.0.0.1:1'); "
                "print('Listening on 127.0.0.1:2'); print('done')"
            )
        )
        signal = ReadinessSignal()
        detector.watch(driver, signal)

        assert await signal.wait() == "Listening on 127.0.0.1:1"
        await asyncio.gather(*driver.tasks)

        stdout = [line for stream, line in lines if stream == "stdout"]
        assert stdout == ["booting", "Listening on 127.0.0.1:2", "done"]
        await launcher.terminate(driver)

    @pytest.mark.asyncio
    async def test_exit_without_marker_fails(self):
        detector = ReadinessDetector("Listening on", lambda s, l: None)
        launcher = ProcessLauncher(term_timeout=0.5, kill_timeout=0.5)
        driver = await launcher.launch(
            python_spec("import sys; sys.stderr.write('port in use\\n'); sys.exit(2)")
        )
        signal = ReadinessSignal()
        detector.watch(driver, signal)

        with pytest.raises(ProcessExitError) as exc_info:
            await signal.wait()
        assert exc_info.value.returncode == 2
        assert exc_info.value.stderr == "port in use"
        await launcher.terminate(driver)

    @pytest.mark.asyncio
    async def test_marker_then_immediate_exit_is_ready(self):
        """A marker flushed right before exit still counts as ready."""
        detector = ReadinessDetector("Listening on", lambda s, l: None)
        launcher = ProcessLauncher(term_timeout=0.5, kill_timeout=0.5)
        driver = await launcher.launch(python_spec("print('Listening on 127.0.0.1:4444')"))
        signal = ReadinessSignal()
        detector.watch(driver, signal)

        assert await signal.wait() == "Listening on 127.0.0.1:4444"
        await asyncio.gather(*driver.tasks)
        assert signal.is_ready
        await launcher.terminate(driver)

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(self):
        lines: list[str] = []
        detector = ReadinessDetector("ready", lambda s, l: lines.append(l))
        launcher = ProcessLauncher(term_timeout=0.5, kill_timeout=0.5)
        driver = await launcher.launch(
            python_spec("import sys; sys.stdout.buffer.write(b'bad \\xff byte\\nready\\n')")
        )
        signal = ReadinessSignal()
        detector.watch(driver, signal)

        assert await signal.wait() == "ready"
        await asyncio.gather(*driver.tasks)
        assert lines == ["bad \ufffd byte"]
        await launcher.terminate(driver)

    @pytest.mark.asyncio
    async def test_unterminated_marker_resolves_immediately(self):
        """The marker is found in a chunk before its line is terminated."""
        lines: list[str] = []
        detector = ReadinessDetector("Listening on", lambda s, l: lines.append(l))
        launcher = ProcessLauncher(term_timeout=0.5, kill_timeout=0.5)
        driver = await launcher.launch(
            python_spec(
                "import sys, time; "
                "sys.stdout.write('Listening on 127.0.0.1:5'); sys.stdout.flush(); "
                "time.sleep(5)"
            )
        )
        signal = ReadinessSignal()
        detector.watch(driver, signal)

        ready_line = await asyncio.wait_for(signal.wait(), timeout=3.0)
        assert ready_line == "Listening on 127.0.0.1:5"
        assert driver.is_running
        await launcher.terminate(driver)

    @pytest.mark.asyncio
    async def test_completed_ready_line_not_forwarded(self):
        """When the ready line is finished by a later chunk it is still skipped."""
        lines: list[str] = []
        detector = ReadinessDetector("Listening on", lambda s, l: lines.append(l))
        launcher = ProcessLauncher(term_timeout=0.5, kill_timeout=0.5)
        driver = await launcher.launch(
            python_spec(
                "import sys, time; "
                "sys.stdout.write('Listening on 127.0.0.1:5'); sys.stdout.flush(); "
                "time.sleep(0.3); "
                "sys.stdout.write(' (ipv4)\\nafter\\n'); sys.stdout.flush()"
            )
        )
        signal = ReadinessSignal()
        detector.watch(driver, signal)

        assert await signal.wait() == "Listening on 127.0.0.1:5"
        await asyncio.gather(*driver.tasks)
        assert lines == ["after"]
        await launcher.terminate(driver)

    @pytest.mark.asyncio
    async def test_empty_lines_forwarded(self):
        """Blank lines on both streams reach the sink unchanged."""
        lines: list[tuple[str, str]] = []
        detector = ReadinessDetector("ready", lambda s, l: lines.append((s, l)))
        launcher = ProcessLauncher(term_timeout=0.5, kill_timeout=0.5)
        driver = await launcher.launch(
            python_spec(
                "import sys; sys.stderr.write('warn\\n\\n'); sys.stderr.flush(); "
                "print('a'); print(''); print('ready'); print('')"
            )
        )
        signal = ReadinessSignal()
        detector.watch(driver, signal)

        assert await signal.wait() == "ready"
        await asyncio.gather(*driver.tasks)

        assert [line for stream, line in lines if stream == "stdout"] == ["a", "", ""]
        assert [line for stream, line in lines if stream == "stderr"] == ["warn", ""]
        assert list(driver.stderr_tail) == ["warn"]
        await launcher.terminate(driver)
