"""执行模式基础抽象。

定义执行模式共享的上下文和模式协议。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..orchestrator import ProcessRegistry
    from ..runtime import CommandSpec, ExitOutcome, OutputWriter, ProcessLauncher
    from ..signal_manager import SignalManager

__all__ = [
    "BatchResult",
    "ModeContext",
    "ModeHandler",
]


@dataclass
class ModeContext:
    """执行上下文。

    封装执行模式启动、监督和报告一批命令所需的全部依赖。
    """

    launcher: "ProcessLauncher"
    writer: "OutputWriter"
    registry: "ProcessRegistry"
    signal_manager: "SignalManager | None" = None
    continue_on_failure: bool = False
    aggregate_output: bool = False

    @property
    def shutdown_requested(self) -> bool:
        return self.signal_manager is not None and self.signal_manager.is_shutdown_requested

    def report(self, outcome: "ExitOutcome") -> None:
        """输出失败结果的诊断行。"""
        if not outcome.success:
            self.writer.diagnostic(outcome.diagnostic)


@dataclass
class BatchResult:
    """一批命令的观测结果。

    Attributes:
        outcomes: 已报告的结果，按观测顺序排列
        interrupted: 收到关闭请求后仍有命令未启动
    """

    outcomes: list["ExitOutcome"] = field(default_factory=list)
    interrupted: bool = False

    @property
    def failed(self) -> list["ExitOutcome"]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def success(self) -> bool:
        return not self.interrupted and not self.failed


class ModeHandler(ABC):
    """执行模式协议。

    每种模式把 CommandSpec 列表转换为 BatchResult。
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """模式名称。"""
        ...

    @abstractmethod
    async def run(
        self,
        specs: list["CommandSpec"],
        ctx: ModeContext,
    ) -> BatchResult:
        """执行一批命令。

        Args:
            specs: 要执行的命令
            ctx: 执行上下文

        Returns:
            每个已观测命令对应一个结果的 BatchResult
        """
        ...

    @property
    def has_pending(self) -> bool:
        """run() 返回后是否仍有未接收的结果（对应命令可能仍在运行）。"""
        return False

    async def drain(self) -> None:
        """等待 run() 返回后仍在运行的命令。

        这里收到的结果不会被报告。
        """
        return None
