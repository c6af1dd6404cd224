"""Concurrent 执行模式。

先启动所有命令，再同时等待它们。
结果通过 anyio 内存对象流按完成顺序消费；每个跟踪任务持有发送端的一个克隆，
最后一个跟踪任务结束时流随之关闭。
"""

from __future__ import annotations

import asyncio
import logging
import math

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from .base import BatchResult, ModeContext, ModeHandler
from ..errors import LaunchError
from ..runtime import CommandSpec, ExitOutcome, ProcessHandle, launch_all

__all__ = ["ConcurrentHandler"]

logger = logging.getLogger(__name__)


class ConcurrentHandler(ModeHandler):
    """Concurrent 模式处理器。

    未设置 continue_on_failure 时，第一个失败结果即结束消费，run() 立即返回。
    仍在运行的进程不受影响：只有信号升级会强杀子进程。
    """

    def __init__(self) -> None:
        self._receive: MemoryObjectReceiveStream[ExitOutcome] | None = None
        self._trackers: list[asyncio.Task[None]] = []
        self._unreceived = 0

    @property
    def name(self) -> str:
        return "concurrently"

    @property
    def has_pending(self) -> bool:
        return self._unreceived > 0

    async def run(
        self,
        specs: list[CommandSpec],
        ctx: ModeContext,
    ) -> BatchResult:
        result = BatchResult()
        send, receive = anyio.create_memory_object_stream(max_buffer_size=math.inf)
        self._receive = receive

        # 1) 启动全部命令，并在开始等待前登记所有 pid
        started = await launch_all(ctx.launcher, specs, aggregate=ctx.aggregate_output)
        handles: list[ProcessHandle] = []
        for spec, item in zip(specs, started):
            if isinstance(item, LaunchError):
                send.send_nowait(ExitOutcome.launch_failure(spec.label, item))
            else:
                ctx.registry.register(item.pid, item.label)
                handles.append(item)

        logger.debug(f"Launched {len(handles)}/{len(specs)} command(s)")

        # 2) 每个进程一个跟踪任务，各自持有发送端
        for handle in handles:
            self._trackers.append(
                asyncio.create_task(
                    self._track(handle, send.clone()),
                    name=f"procmux-track-{handle.pid}",
                )
            )
        send.close()

        # 3) 按完成顺序消费
        async for outcome in receive:
            result.outcomes.append(outcome)
            ctx.report(outcome)
            if not outcome.success and not ctx.continue_on_failure:
                logger.debug("Stopping result consumption after first failure")
                self._unreceived = len(specs) - len(result.outcomes)
                return result

        receive.close()
        self._receive = None
        return result

    async def drain(self) -> None:
        """接收仍在运行的命令的结果，不报告。"""
        if self._receive is not None:
            receive, self._receive = self._receive, None
            async with receive:
                async for outcome in receive:
                    logger.debug(f"Drained outcome label={outcome.label!r} success={outcome.success}")
            self._unreceived = 0

        if self._trackers:
            await asyncio.gather(*self._trackers)
            self._trackers.clear()

    async def _track(
        self,
        handle: ProcessHandle,
        send: MemoryObjectSendStream[ExitOutcome],
    ) -> None:
        async with send:
            try:
                outcome = await handle.wait()
            except (anyio.get_cancelled_exc_class(), asyncio.CancelledError):
                raise
            except Exception as e:
                logger.exception(f"Tracking pid={handle.pid} failed")
                outcome = ExitOutcome(
                    label=handle.label,
                    success=False,
                    description=f"wait for child: {e}",
                    pid=handle.pid,
                )
            await send.send(outcome)
