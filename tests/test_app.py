"""命令行入口测试。"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
import time
from unittest import mock

import pytest

from webdriver_supervisor import app
from webdriver_supervisor.app import (
    EXIT_FAILURE,
    EXIT_FORCED,
    EXIT_OK,
    _apply_args,
    build_parser,
    main,
    run_supervisor,
)
from webdriver_supervisor.config import SupervisorConfig
from webdriver_supervisor.signal_manager import SignalManager


class RecordingSignalManager(SignalManager):
    """记录最近创建的实例，便于测试中程序化触发关闭。"""

    instances: list["RecordingSignalManager"] = []

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        RecordingSignalManager.instances.append(self)


@pytest.fixture
def recording_signals():
    RecordingSignalManager.instances = []
    with mock.patch.object(app, "SignalManager", RecordingSignalManager):
        yield RecordingSignalManager.instances


async def wait_for_manager(instances: list[RecordingSignalManager]) -> RecordingSignalManager:
    while not instances or not instances[0]._running:
        await asyncio.sleep(0.01)
    return instances[0]


# =============================================================================
# 参数解析
# =============================================================================


class TestArgs:
    """命令行参数覆盖配置。"""

    def test_no_args_keeps_config(self):
        config = SupervisorConfig()
        args = build_parser().parse_args([])
        assert _apply_args(config, args) is config

    def test_command(self):
        args = build_parser().parse_args(["WebKitWebDriver", "--port", "4444"])
        config = _apply_args(SupervisorConfig(), args)
        assert config.binary == "WebKitWebDriver"
        assert config.args == ["--port", "4444"]

    def test_double_dash_separator(self):
        args = build_parser().parse_args(["--timeout", "5", "--", "tauri-driver", "--native-port", "4445"])
        config = _apply_args(SupervisorConfig(), args)
        assert config.binary == "tauri-driver"
        assert config.args == ["--native-port", "4445"]
        assert config.start_timeout == 5.0

    def test_marker_and_shell_path(self):
        args = build_parser().parse_args(["--marker", "started", "--shell-path"])
        config = _apply_args(SupervisorConfig(), args)
        assert config.ready_marker == "started"
        assert config.resolve_shell_path is True

    def test_invalid_timeout_rejected(self):
        args = build_parser().parse_args(["--timeout", "0"])
        with pytest.raises(ValueError):
            _apply_args(SupervisorConfig(), args)

    def test_main_invalid_timeout(self, capsys):
        assert main(["--timeout", "-1", "--", sys.executable]) == EXIT_FAILURE
        assert "start_timeout" in capsys.readouterr().err


# =============================================================================
# run_supervisor
# =============================================================================


@pytest.mark.timeout(30)
class TestRunSupervisor:
    """完整运行流程。"""

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        config = SupervisorConfig(binary="nonexistent_driver_xyz_123", start_timeout=2.0)
        assert await run_supervisor(config) == EXIT_FAILURE

    @pytest.mark.asyncio
    async def test_start_timeout(self, make_config):
        config = make_config(start_timeout=0.5)
        assert await run_supervisor(config) == EXIT_FAILURE

    @pytest.mark.asyncio
    async def test_driver_exit_after_ready(self, make_config):
        config = make_config("--ready-after", "0", "--exit-after", "0.5", "--exit-code", "3")
        assert await run_supervisor(config) == EXIT_FAILURE

    @pytest.mark.asyncio
    async def test_shutdown_request(self, make_config, recording_signals):
        config = make_config("--ready-after", "0")
        task = asyncio.create_task(run_supervisor(config))

        manager = await wait_for_manager(recording_signals)
        # 等待驱动就绪后再请求关闭
        await asyncio.sleep(0.5)
        manager.request_shutdown()

        assert await asyncio.wait_for(task, timeout=10) == EXIT_OK
        assert manager._running is False

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX-specific test")
    async def test_sigint_during_start(self, make_config, recording_signals):
        """Ctrl+C while waiting for the marker stops the driver without waiting for the timeout."""
        config = make_config(start_timeout=8.0)
        started = time.monotonic()
        task = asyncio.create_task(run_supervisor(config))

        await wait_for_manager(recording_signals)
        await asyncio.sleep(0.3)
        os.kill(os.getpid(), signal.SIGINT)

        assert await asyncio.wait_for(task, timeout=10) == EXIT_OK
        assert time.monotonic() - started < 5.0

    @pytest.mark.asyncio
    async def test_double_sigint_during_start(self, make_config, recording_signals):
        """A double Ctrl+C during start exits with 130 right away."""
        config = make_config(start_timeout=8.0)
        started = time.monotonic()
        task = asyncio.create_task(run_supervisor(config))

        manager = await wait_for_manager(recording_signals)
        await asyncio.sleep(0.3)
        manager._handle_sigint()
        manager._handle_sigint()

        assert await asyncio.wait_for(task, timeout=10) == EXIT_FORCED
        assert time.monotonic() - started < 5.0

    @pytest.mark.asyncio
    async def test_force_exit(self, make_config, recording_signals):
        config = make_config("--ready-after", "0")
        task = asyncio.create_task(run_supervisor(config))

        manager = await wait_for_manager(recording_signals)
        await asyncio.sleep(0.5)
        manager._handle_sigint()
        manager._handle_sigint()

        assert await asyncio.wait_for(task, timeout=10) == EXIT_FORCED
