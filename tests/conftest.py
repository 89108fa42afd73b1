"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from webdriver_supervisor.config import SupervisorConfig  # noqa: E402

# 假驱动程序脚本
FAKE_DRIVER_PATH = PROJECT_ROOT / "tests" / "fixtures" / "fake_driver.py"


@pytest.fixture
def fake_driver_path() -> Path:
    """假驱动程序脚本路径。"""
    return FAKE_DRIVER_PATH


@pytest.fixture
def make_config() -> Callable[..., SupervisorConfig]:
    """构造运行假驱动程序的配置。

    用法: make_config("--ready-after", "0.2", start_timeout=5.0)
    """

    def _make(*driver_args: str, **overrides) -> SupervisorConfig:
        options = {
            "binary": sys.executable,
            "args": [str(FAKE_DRIVER_PATH), *driver_args],
            "start_timeout": 5.0,
            "term_timeout": 1.0,
            "kill_timeout": 1.0,
        }
        options.update(overrides)
        return SupervisorConfig(**options)

    return _make
