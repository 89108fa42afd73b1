"""Supervisor 异常类。

webdriver-supervisor v0.1.0
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SupervisorError",
    "SpawnError",
    "ProcessExitError",
    "DriverTimeoutError",
    "AlreadyStartedError",
    "StatusCheckError",
]


class SupervisorError(Exception):
    """Supervisor 基础异常。"""
    pass


class SpawnError(SupervisorError):
    """驱动程序无法启动（找不到或不可执行）。

    Attributes:
        binary: 驱动程序名称或路径
        hint: 附加提示（可能为空）
    """

    def __init__(self, binary: str, message: str, hint: str = "") -> None:
        self.binary = binary
        self.hint = hint
        text = f"Failed to spawn '{binary}': {message}"
        if hint:
            text = f"{text}. {hint}"
        super().__init__(text)


class ProcessExitError(SupervisorError):
    """驱动程序在就绪前退出。

    Attributes:
        returncode: 退出码
        stderr: 退出前收集到的 stderr 文本
    """

    def __init__(self, returncode: int | None, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        text = f"Driver exited before becoming ready (returncode={returncode})"
        if stderr:
            text = f"{text}: {stderr.strip()}"
        super().__init__(text)


class DriverTimeoutError(SupervisorError, TimeoutError):
    """在启动超时内未看到就绪标记。

    Attributes:
        timeout: 超时时间（秒）
        marker: 等待的就绪标记
    """

    def __init__(self, timeout: float, marker: str = "") -> None:
        self.timeout = timeout
        self.marker = marker
        super().__init__(
            f"Driver did not print {marker!r} within {timeout}s"
        )


class AlreadyStartedError(SupervisorError):
    """重复调用 start()。

    Attributes:
        state: 调用时 supervisor 所处的状态
    """

    def __init__(self, state: Any) -> None:
        self.state = state
        name = getattr(state, "value", state)
        super().__init__(f"Supervisor already started (state={name}); call stop() first")


class StatusCheckError(SupervisorError):
    """WebDriver /status 探测失败。

    Attributes:
        url: 请求的完整 URL
        status_code: HTTP 状态码（网络错误时为 0）
    """

    def __init__(self, url: str, message: str, status_code: int = 0) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"[{status_code}] {url}: {message}")
