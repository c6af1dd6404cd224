"""子进程登记模块。

记录一次调用中启动的每一个子进程 id，供信号升级路径强杀全部子进程。
id 只增不减：运行期间不会移除任何 id，升级时看到的总是完整集合。
"""

from __future__ import annotations

import logging
import os
import signal
from dataclasses import dataclass, field
from datetime import datetime

__all__ = ["ProcessRegistry", "ProcessInfo"]

logger = logging.getLogger(__name__)


@dataclass
class ProcessInfo:
    """已登记子进程的信息。

    Attributes:
        pid: 操作系统进程 id
        label: 所属命令的标签
        registered_at: 登记时间
    """

    pid: int
    label: str
    registered_at: datetime = field(default_factory=datetime.now)

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.registered_at).total_seconds()
        return (
            f"ProcessInfo(pid={self.pid}, "
            f"label={self.label.strip()!r}, "
            f"elapsed={elapsed:.1f}s)"
        )


class ProcessRegistry:
    """只追加的子进程 id 注册表。

    所有操作都是同步的，由调用方保证在事件循环线程中调用，
    包括通过 loop.add_signal_handler 安装的信号处理器。

    Example:
        ```python
        registry = ProcessRegistry()
        registry.register(handle.pid, handle.label)

        # 升级时
        killed = registry.kill_all()
        ```
    """

    def __init__(self) -> None:
        self._processes: dict[int, ProcessInfo] = {}

    def register(self, pid: int, label: str = "") -> None:
        """登记子进程。

        操作系统可能把已回收子进程的 pid 分配给后来的命令，
        此时保留原有位置，只更新标签。
        """
        existing = self._processes.get(pid)
        if existing is not None:
            logger.debug(f"Pid {pid} reused, relabeling {existing.label.strip()!r} -> {label.strip()!r}")
            existing.label = label
            return

        info = ProcessInfo(pid=pid, label=label)
        self._processes[pid] = info
        logger.debug(f"Registered process: {info}")

    def get(self, pid: int) -> ProcessInfo | None:
        return self._processes.get(pid)

    @property
    def pids(self) -> list[int]:
        """按登记顺序排列的 pid。"""
        return list(self._processes)

    def kill_all(self, sig: signal.Signals = signal.SIGKILL) -> list[int]:
        """向所有已登记进程发送信号。

        已退出的进程静默跳过；其他错误只记录日志，不抛出。

        Returns:
            成功发送信号的 pid 列表
        """
        delivered: list[int] = []
        for info in list(self._processes.values()):
            try:
                os.kill(info.pid, sig)
            except ProcessLookupError:
                logger.debug(f"Process already exited: {info}")
                continue
            except OSError as e:
                logger.warning(f"Failed to send {sig.name} to pid={info.pid}: {e}")
                continue
            delivered.append(info.pid)

        if delivered:
            logger.debug(f"Sent {sig.name} to {len(delivered)} process(es)")

        return delivered

    def __len__(self) -> int:
        return len(self._processes)

    def __contains__(self, pid: int) -> bool:
        return pid in self._processes
