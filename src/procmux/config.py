"""procmux 环境变量配置管理。

环境变量:
    NO_COLOR: 禁用标签颜色
        - 任意非空值即禁用
        - --color 参数可覆盖，--no-color 始终优先

    PROCMUX_KILL_TIMEOUT: 默认宽限期（秒）
        - 默认 10.0
        - 限制在 0.1-3600 之间，无效值回退到默认值
        - --kill-timeout 参数可覆盖

    PROCMUX_DEBUG: 调试日志输出到 stderr
        - true/1/yes/on = 开启
        - false/0/no/off = 关闭 (默认)

    PROCMUX_LOG_DEBUG: 调试日志输出到文件
        - true/1/yes/on = 开启 (日志输出到临时目录下带时间戳的文件)
        - false/0/no/off = 关闭 (默认)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = [
    "Config",
    "DEFAULT_KILL_TIMEOUT",
    "get_config",
    "load_config",
    "reload_config",
]

DEFAULT_KILL_TIMEOUT = 10.0
MIN_KILL_TIMEOUT = 0.1
MAX_KILL_TIMEOUT = 3600.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_no_color(value: str | None) -> bool:
    """NO_COLOR 设置为任意非空值时禁用颜色。"""
    return bool(value)


def _parse_kill_timeout(value: str | None) -> float:
    """解析宽限期环境变量。"""
    if not value:
        return DEFAULT_KILL_TIMEOUT
    try:
        timeout = float(value)
    except ValueError:
        return DEFAULT_KILL_TIMEOUT
    if timeout != timeout:  # NaN
        return DEFAULT_KILL_TIMEOUT
    return max(MIN_KILL_TIMEOUT, min(timeout, MAX_KILL_TIMEOUT))


def _generate_log_file_path() -> str:
    """生成临时目录下带时间戳的日志文件路径。"""
    log_dir = Path(tempfile.gettempdir()) / "procmux"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"procmux_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """procmux 配置。

    Attributes:
        no_color: 是否通过环境变量禁用颜色
        kill_timeout: 第一次信号之后的默认宽限期（秒）
        debug: 调试日志输出到 stderr
        log_debug: 调试日志输出到文件
        log_file: 日志文件路径（log_debug 开启时设置）
    """

    no_color: bool = False
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    debug: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def use_color(self, *, force_color: bool = False, no_color: bool = False) -> bool:
        """结合命令行参数决定是否使用颜色。"""
        if no_color:
            return False
        if force_color:
            return True
        return not self.no_color

    def __repr__(self) -> str:
        return (
            f"Config(no_color={self.no_color}, "
            f"kill_timeout={self.kill_timeout}, "
            f"debug={self.debug}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("PROCMUX_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        no_color=_parse_no_color(os.environ.get("NO_COLOR")),
        kill_timeout=_parse_kill_timeout(os.environ.get("PROCMUX_KILL_TIMEOUT")),
        debug=_parse_bool(os.environ.get("PROCMUX_DEBUG"), default=False),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载全局配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
