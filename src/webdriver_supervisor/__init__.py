"""WebDriver Supervisor - 管理原生 WebDriver 驱动进程的生命周期。

启动驱动程序（如 tauri-driver），等待 stdout 中出现就绪标记，
超时或提前退出时报错，并保证驱动进程最终被终止。

环境变量（仅命令行入口使用）:
    WDS_DRIVER: 驱动程序 (默认 tauri-driver)
    WDS_READY_MARKER: 就绪标记 (默认 "Listening on")
    WDS_START_TIMEOUT: 启动超时 (默认 30 秒)

用法:
    python -m webdriver_supervisor -- tauri-driver --port 4444
"""

__version__ = "0.1.0"

from .config import SupervisorConfig
from .errors import (
    AlreadyStartedError,
    DriverTimeoutError,
    ProcessExitError,
    SpawnError,
    StatusCheckError,
    SupervisorError,
)
from .readiness import ReadinessDetector, ReadinessSignal
from .supervisor import DriverSupervisor, SupervisorState

__all__ = [
    "__version__",
    "AlreadyStartedError",
    "DriverSupervisor",
    "DriverTimeoutError",
    "ProcessExitError",
    "ReadinessDetector",
    "ReadinessSignal",
    "SpawnError",
    "StatusCheckError",
    "SupervisorConfig",
    "SupervisorError",
    "SupervisorState",
]
