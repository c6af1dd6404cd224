"""执行模式处理器。

提供执行模式抽象以及 serial 和 concurrent 两种模式。
"""

from .base import BatchResult, ModeContext, ModeHandler
from .concurrent import ConcurrentHandler
from .serial import SerialHandler

__all__ = [
    "BatchResult",
    "ModeContext",
    "ModeHandler",
    "ConcurrentHandler",
    "SerialHandler",
    "create_handler",
]


def create_handler(mode: str) -> ModeHandler:
    """根据模式名称（"serially" 或 "concurrently"）创建处理器。"""
    if mode == "serially":
        return SerialHandler()
    if mode == "concurrently":
        return ConcurrentHandler()
    raise ValueError(f"Unknown execution mode: {mode}")
