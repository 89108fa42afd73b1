"""WDS 配置管理。

Supervisor 本身只接受显式传入的 SupervisorConfig；环境变量仅由命令行入口
（python -m webdriver_supervisor）通过 load_config() 读取。

环境变量:
    WDS_DRIVER: 驱动程序名称或路径
        - 默认 tauri-driver

    WDS_DRIVER_ARGS: 驱动程序参数
        - 按 shell 规则拆分
        - 例: "--port 4444 --native-port 4445"

    WDS_READY_MARKER: 就绪标记（stdout 中出现即视为就绪）
        - 默认 "Listening on"

    WDS_START_TIMEOUT: 启动超时（秒）
        - 默认 30 秒
        - 限制在 0.1-600 秒范围

    WDS_SHELL_PATH: 是否使用登录 shell 的 PATH 查找驱动程序
        - true/1/yes = 开启
        - false/0/no = 关闭 (默认)

    WDS_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Mapping

__all__ = [
    "SupervisorConfig",
    "load_config",
    "get_config",
    "reload_config",
    "DEFAULT_DRIVER",
    "DEFAULT_READY_MARKER",
    "DEFAULT_START_TIMEOUT",
]

DEFAULT_DRIVER = "tauri-driver"
DEFAULT_READY_MARKER = "Listening on"
DEFAULT_START_TIMEOUT = 30.0
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0

MIN_START_TIMEOUT = 0.1
MAX_START_TIMEOUT = 600.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_args(value: str | None) -> list[str]:
    """解析驱动程序参数。

    Args:
        value: 环境变量值，按 shell 规则拆分

    Returns:
        参数列表，无法解析时返回空列表
    """
    if not value or not value.strip():
        return []
    try:
        return shlex.split(value)
    except ValueError:
        return []


def _parse_timeout(value: str | None) -> float:
    """解析启动超时环境变量。"""
    if not value:
        return DEFAULT_START_TIMEOUT
    try:
        timeout = float(value)
        return max(MIN_START_TIMEOUT, min(timeout, MAX_START_TIMEOUT))
    except ValueError:
        return DEFAULT_START_TIMEOUT


@dataclass
class SupervisorConfig:
    """Supervisor 配置。

    Attributes:
        binary: 驱动程序名称或路径
        args: 驱动程序参数（固定，不含 binary 本身）
        ready_marker: stdout 中的就绪标记子串
        start_timeout: 等待就绪的超时时间（秒）
        cwd: 工作目录（None = 继承当前目录）
        env: 环境变量（None = 继承父进程）
        term_timeout: SIGTERM 后等待退出的时间（秒）
        kill_timeout: SIGKILL 后等待退出的时间（秒）
        resolve_shell_path: 是否使用登录 shell 的 PATH
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    binary: str = DEFAULT_DRIVER
    args: list[str] = field(default_factory=list)
    ready_marker: str = DEFAULT_READY_MARKER
    start_timeout: float = DEFAULT_START_TIMEOUT
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    resolve_shell_path: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def __post_init__(self) -> None:
        if not self.binary:
            raise ValueError("binary must not be empty")
        if not self.ready_marker:
            raise ValueError("ready_marker must not be empty")
        if self.start_timeout <= 0:
            raise ValueError(f"start_timeout must be positive, got {self.start_timeout}")

    @property
    def argv(self) -> list[str]:
        """完整命令行（binary + args）。"""
        return [self.binary, *self.args]

    def __repr__(self) -> str:
        return (
            f"SupervisorConfig(binary={self.binary}, "
            f"args={self.args}, "
            f"ready_marker={self.ready_marker!r}, "
            f"start_timeout={self.start_timeout}, "
            f"resolve_shell_path={self.resolve_shell_path}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "webdriver-supervisor"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"wds_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> SupervisorConfig:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("WDS_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return SupervisorConfig(
        binary=os.environ.get("WDS_DRIVER", "").strip() or DEFAULT_DRIVER,
        args=_parse_args(os.environ.get("WDS_DRIVER_ARGS")),
        ready_marker=os.environ.get("WDS_READY_MARKER") or DEFAULT_READY_MARKER,
        start_timeout=_parse_timeout(os.environ.get("WDS_START_TIMEOUT")),
        resolve_shell_path=_parse_bool(os.environ.get("WDS_SHELL_PATH"), default=False),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: SupervisorConfig | None = None


def get_config() -> SupervisorConfig:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> SupervisorConfig:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
