"""信号升级管理模块。

为一批子进程实现两阶段关闭：
- 第一次 SIGINT/SIGTERM: 进入宽限期。与终端同一进程组的子进程已自行收到中断，
  有 `kill_timeout` 秒时间自行退出
- 宽限期内的第二次 SIGINT/SIGTERM，或宽限期到期：
  向所有已登记的子进程发送 SIGKILL，并以 130 立即退出

宽限计时器只在第一次信号时启动，不会续期。
强杀路径是紧急停止：不等待读取任务、跟踪任务或其他任务，未输出的聚合内容会丢失。
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from enum import Enum
from typing import Callable, Optional

from .config import get_config
from .orchestrator import ProcessRegistry

__all__ = [
    "EMERGENCY_EXIT_CODE",
    "EscalationState",
    "SignalManager",
    "emergency_exit",
]

logger = logging.getLogger(__name__)

# 128 + SIGINT(2)
EMERGENCY_EXIT_CODE = 130

WATCHED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class EscalationState(Enum):
    """升级状态。

    - IDLE: 尚未收到信号
    - GRACE_PERIOD: 已收到第一次信号，等待子进程退出
    - KILLING: 终态，正在强杀子进程
    """

    IDLE = "idle"
    GRACE_PERIOD = "grace_period"
    KILLING = "killing"


def emergency_exit(code: int = EMERGENCY_EXIT_CODE) -> None:
    """立即终止解释器。

    先刷新 stdout/stderr；不执行清理回调、finally 块和挂起的任务。
    """
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError):
            pass
    os._exit(code)


class SignalManager:
    """进程级 SIGINT/SIGTERM 监听器。

    Example:
        ```python
        registry = ProcessRegistry()
        signal_manager = SignalManager(registry, kill_timeout=10.0)

        async def main():
            await signal_manager.start()
            try:
                await run_batch()
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        registry: 升级时需要强杀的子进程注册表
        kill_timeout: 第一次信号之后的宽限期（秒）
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        kill_timeout: Optional[float] = None,
        on_emergency_exit: Optional[Callable[[int], None]] = None,
    ) -> None:
        """初始化信号管理器。

        Args:
            registry: 子进程注册表
            kill_timeout: 宽限期（默认从配置读取）
            on_emergency_exit: 子进程被强杀后以退出码调用（默认 emergency_exit）
        """
        self.registry = registry
        self.kill_timeout = (
            kill_timeout if kill_timeout is not None else get_config().kill_timeout
        )
        self._on_emergency_exit = on_emergency_exit or emergency_exit

        # 内部状态
        self._state = EscalationState.IDLE
        self._signals_received: int = 0
        self._killed: list[int] = []
        self._timeout_task: Optional[asyncio.Task[None]] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def state(self) -> EscalationState:
        return self._state

    @property
    def is_shutdown_requested(self) -> bool:
        """是否已收到第一次信号。"""
        return self._state is not EscalationState.IDLE

    @property
    def signals_received(self) -> int:
        return self._signals_received

    @property
    def killed_pids(self) -> list[int]:
        """升级时成功发送 SIGKILL 的 pid。"""
        return list(self._killed)

    async def start(self) -> None:
        """安装 SIGINT 和 SIGTERM 处理器。

        必须在运行中的事件循环内调用。
        """
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._running = True

        for sig in WATCHED_SIGNALS:
            self._loop.add_signal_handler(sig, self._handle_signal, sig)

        logger.debug(f"Signal handlers installed (kill_timeout={self.kill_timeout}s)")

    async def stop(self) -> None:
        """移除信号处理器，并取消尚未到期的宽限计时器。"""
        if not self._running:
            return

        self._running = False

        if self._timeout_task and not self._timeout_task.done():
            self._timeout_task.cancel()
            try:
                await self._timeout_task
            except asyncio.CancelledError:
                pass

        if self._loop:
            for sig in WATCHED_SIGNALS:
                try:
                    self._loop.remove_signal_handler(sig)
                except (ValueError, RuntimeError) as e:
                    logger.debug(f"Error removing {sig.name} handler: {e}")

        logger.debug("Signal handlers removed")

    def _handle_signal(self, sig: signal.Signals) -> None:
        """根据收到的一次信号推进升级状态机。"""
        self._signals_received += 1

        if self._state is EscalationState.IDLE:
            self._enter_grace_period(sig)
        elif self._state is EscalationState.GRACE_PERIOD:
            logger.warning(f"Received {sig.name} again, escalating")
            self._escalate(f"second signal ({sig.name})")
        else:
            logger.debug(f"Ignoring {sig.name}, already killing")

    def _enter_grace_period(self, sig: signal.Signals) -> None:
        self._state = EscalationState.GRACE_PERIOD
        logger.warning(
            f"Received {sig.name}, waiting up to {self.kill_timeout}s for "
            f"{len(self.registry)} child process(es) to exit. "
            f"Send {sig.name} again to kill them immediately."
        )

        loop = self._loop or asyncio.get_running_loop()
        self._timeout_task = loop.create_task(
            self._grace_timer(), name="procmux-grace-timer"
        )

    async def _grace_timer(self) -> None:
        await asyncio.sleep(self.kill_timeout)
        logger.warning(f"Grace period of {self.kill_timeout}s expired, escalating")
        self._escalate("grace period expired")

    def _escalate(self, reason: str) -> None:
        """进入 KILLING：向所有已登记子进程发送 SIGKILL，然后退出。"""
        if self._state is EscalationState.KILLING:
            return
        self._state = EscalationState.KILLING

        # 计时器自身触发升级时不能取消自己
        timer = self._timeout_task
        if timer is not None and not timer.done() and timer is not _current_task():
            timer.cancel()

        pids = self.registry.pids
        logger.warning(f"Entering killing state ({reason}), sending SIGKILL to pids {pids}")
        self._killed = self.registry.kill_all(signal.SIGKILL)
        logger.warning(f"Killed pids {self._killed}")

        self._on_emergency_exit(EMERGENCY_EXIT_CODE)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
