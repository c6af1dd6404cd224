"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import io
import json
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

from procmux.handlers import ModeContext  # noqa: E402
from procmux.orchestrator import ProcessRegistry  # noqa: E402
from procmux.runtime import OutputWriter, ProcessLauncher  # noqa: E402


class CapturingWriter(OutputWriter):
    """基于内存流的 OutputWriter。"""

    def __init__(self) -> None:
        super().__init__(stdout=io.StringIO(), stderr=io.StringIO())

    @property
    def out(self) -> str:
        return self.stdout.getvalue()

    @property
    def err(self) -> str:
        return self.stderr.getvalue()

    @property
    def out_lines(self) -> list[str]:
        return self.out.splitlines()


@pytest.fixture
def project_root() -> Path:
    """项目根目录。"""
    return PROJECT_ROOT


@pytest.fixture
def writer() -> CapturingWriter:
    """捕获 stdout 和 stderr 的 writer。"""
    return CapturingWriter()


@pytest.fixture
def launcher(writer: CapturingWriter) -> ProcessLauncher:
    return ProcessLauncher(writer)


@pytest.fixture
def registry() -> ProcessRegistry:
    return ProcessRegistry()


@pytest.fixture
def make_ctx(
    launcher: ProcessLauncher,
    writer: CapturingWriter,
    registry: ProcessRegistry,
) -> Callable[..., ModeContext]:
    """创建共享同一捕获 writer 的执行上下文。"""

    def _make(**kwargs) -> ModeContext:
        return ModeContext(
            launcher=launcher,
            writer=writer,
            registry=registry,
            **kwargs,
        )

    return _make


@pytest.fixture
def manifest(tmp_path: Path) -> Callable[[dict], Path]:
    """在 tmp_path 中写入 package.json 并返回其路径。"""

    def _write(data: dict) -> Path:
        path = tmp_path / "package.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    return _write
