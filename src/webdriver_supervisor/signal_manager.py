"""信号管理模块。

命令行入口使用的信号处理：
- SIGINT: 请求停止驱动并退出（双击 Ctrl+C 强制退出）
- SIGTERM: 优雅退出

驱动进程运行在独立的进程组中，不会收到终端的 SIGINT，
因此必须由这里把信号转换为 supervisor.stop()。
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

__all__ = ["SignalManager", "DEFAULT_DOUBLE_TAP_WINDOW"]

logger = logging.getLogger(__name__)

DEFAULT_DOUBLE_TAP_WINDOW = 1.0


class SignalManager:
    """信号管理器。

    Example:
        ```python
        signal_manager = SignalManager()

        async def main():
            await signal_manager.start()
            try:
                await signal_manager.wait_for_shutdown()
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        double_tap_window: 双击退出窗口时间（秒）
    """

    def __init__(
        self,
        double_tap_window: float = DEFAULT_DOUBLE_TAP_WINDOW,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            double_tap_window: 双击退出窗口时间
            on_shutdown: 关闭时的回调函数
        """
        self.double_tap_window = double_tap_window
        self._on_shutdown = on_shutdown

        # 内部状态
        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._original_sigint_handler = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        """是否已请求关闭。"""
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """是否请求强制退出（双击 SIGINT）。"""
        return self._force_exit

    async def start(self) -> None:
        """启动信号监听。

        必须在 asyncio 事件循环中调用。
        """
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (double_tap_window={self.double_tap_window}s)"
            )
        else:
            # Windows: 使用 signal.signal() 设置处理器
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """停止信号监听，恢复原始信号处理器。"""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except Exception as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """等待关闭信号。"""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        """处理 SIGINT 信号。

        第一次请求关闭；在双击窗口内再次收到则强制退出。
        """
        current_time = time.time()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if self._shutdown_requested and time_since_last < self.double_tap_window:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_exit = True
            self._request_shutdown()
            return

        logger.info("SIGINT received, stopping driver")
        self._request_shutdown()

    def _handle_sigterm(self) -> None:
        """处理 SIGTERM 信号。"""
        logger.info("SIGTERM received, initiating graceful shutdown")
        self._request_shutdown()

    def request_shutdown(self) -> None:
        """程序化请求优雅退出。"""
        logger.info("Programmatic shutdown requested")
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)
