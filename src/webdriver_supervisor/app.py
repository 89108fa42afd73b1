"""WebDriver Supervisor 命令行入口。

启动驱动程序，等待就绪，然后一直运行到收到 SIGINT/SIGTERM 或驱动退出。

用法:
    python -m webdriver_supervisor [--marker TEXT] [--timeout SECONDS] [--] [BINARY [ARGS...]]

退出码:
    0: 正常停止
    1: 启动失败或驱动意外退出
    130: 双击 Ctrl+C 强制退出
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import dataclasses
import logging
import sys

from . import __version__
from .config import SupervisorConfig, get_config
from .errors import StatusCheckError, SupervisorError
from .signal_manager import SignalManager
from .supervisor import DriverSupervisor

__all__ = ["build_parser", "main", "run_supervisor"]

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_FORCED = 130  # 128 + SIGINT(2)


async def run_supervisor(config: SupervisorConfig, check_status: bool = False) -> int:
    """运行 supervisor 直到收到关闭信号。

    Args:
        config: 驱动配置
        check_status: 就绪后是否探测 GET /status

    Returns:
        进程退出码
    """
    logger.info(f"Starting WebDriver supervisor: {config}")

    supervisor = DriverSupervisor(config)
    signal_manager = SignalManager()
    exit_code = EXIT_OK
    shutdown_task: asyncio.Task | None = None
    start_task: asyncio.Task | None = None

    try:
        await signal_manager.start()
        # 驱动在独立会话中运行，启动期间的 Ctrl+C 只能由这里感知
        shutdown_task = asyncio.create_task(
            signal_manager.wait_for_shutdown(), name="shutdown-watcher"
        )
        start_task = asyncio.create_task(supervisor.start(), name="driver-start")
        await asyncio.wait({start_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

        if not start_task.done():
            logger.info("Shutdown requested while the driver was starting")
            start_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, SupervisorError):
                await start_task
        else:
            try:
                start_task.result()
            except SupervisorError as e:
                logger.error(f"Driver did not start: {e}")
                exit_code = EXIT_FAILURE
            else:
                exit_code = await _serve(supervisor, shutdown_task, check_status)

    finally:
        for task in (shutdown_task, start_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, SupervisorError):
                    await task

        await supervisor.stop()
        await signal_manager.stop()
        logger.info("run_supervisor: cleanup completed")

    if signal_manager.is_force_exit:
        logger.warning("Force exit requested")
        return EXIT_FORCED
    return exit_code


async def _serve(
    supervisor: DriverSupervisor, shutdown_task: asyncio.Task, check_status: bool
) -> int:
    """驱动就绪后运行，直到收到关闭信号或驱动退出。"""
    endpoint = supervisor.endpoint
    if endpoint is not None:
        logger.info(f"Driver listening on {endpoint.base_url}")

    if check_status:
        try:
            status = await supervisor.status()
            logger.info(f"Driver status: ready={status.ready} message={status.message!r}")
        except StatusCheckError as e:
            logger.warning(f"Status check failed: {e}")

    driver = supervisor.process
    if driver is None:
        await shutdown_task
        return EXIT_OK

    exit_task = asyncio.create_task(driver.wait(), name="driver-exit")
    try:
        done, _ = await asyncio.wait(
            {shutdown_task, exit_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        if not exit_task.done():
            exit_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await exit_task

    if exit_task in done and shutdown_task not in done:
        logger.error(f"Driver exited unexpectedly (returncode={exit_task.result()})")
        return EXIT_FAILURE
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """构建命令行参数解析器。"""
    parser = argparse.ArgumentParser(
        prog="webdriver-supervisor",
        description="Launch a WebDriver binary and keep it running until interrupted",
    )
    parser.add_argument("--marker", type=str, default=None, help="Readiness marker on stdout")
    parser.add_argument("--timeout", type=float, default=None, help="Start timeout in seconds")
    parser.add_argument(
        "--shell-path",
        action="store_true",
        default=None,
        help="Resolve the binary on the login shell PATH",
    )
    parser.add_argument(
        "--check-status",
        action="store_true",
        help="Query GET /status once the driver is ready",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Driver binary and arguments")
    return parser


def _apply_args(config: SupervisorConfig, args: argparse.Namespace) -> SupervisorConfig:
    """命令行参数覆盖环境变量配置。"""
    overrides: dict = {}
    command = list(args.command or [])
    if command and command[0] == "--":
        command = command[1:]
    if command:
        overrides["binary"] = command[0]
        overrides["args"] = command[1:]
    if args.marker:
        overrides["ready_marker"] = args.marker
    if args.timeout is not None:
        overrides["start_timeout"] = args.timeout
    if args.shell_path:
        overrides["resolve_shell_path"] = True
    return dataclasses.replace(config, **overrides) if overrides else config


def _configure_logging(config: SupervisorConfig) -> None:
    """配置日志输出。"""
    log_handlers: list[logging.Handler] = []
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # 第三方库只输出 WARNING 以上
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("webdriver_supervisor").setLevel(log_level)


def main(argv: list[str] | None = None) -> int:
    """主入口点。"""
    args = build_parser().parse_args(argv)
    try:
        config = _apply_args(get_config(), args)
    except ValueError as e:
        print(f"webdriver-supervisor: {e}", file=sys.stderr)
        return EXIT_FAILURE

    _configure_logging(config)
    if config.log_file:
        logger.info(f"Debug log: {config.log_file}")

    return asyncio.run(run_supervisor(config, check_status=args.check_status))


if __name__ == "__main__":
    sys.exit(main())
