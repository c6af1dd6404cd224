"""procmux - 串行或并发执行 shell 命令，并为输出加上标签。

环境变量:
    NO_COLOR: 禁用标签颜色
    PROCMUX_KILL_TIMEOUT: 默认宽限期（秒，默认 10）
    PROCMUX_DEBUG: 调试日志输出到 stderr

用法:
    procmux run concurrently "npm run api" "npm run web"
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
