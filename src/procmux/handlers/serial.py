"""Serial 执行模式。

逐个执行命令；上一个命令完成后才启动下一个。
"""

from __future__ import annotations

import logging

from .base import BatchResult, ModeContext, ModeHandler
from ..errors import LaunchError
from ..runtime import CommandSpec, ExitOutcome

__all__ = ["SerialHandler"]

logger = logging.getLogger(__name__)


class SerialHandler(ModeHandler):
    """Serial 模式处理器。"""

    @property
    def name(self) -> str:
        return "serially"

    async def run(
        self,
        specs: list[CommandSpec],
        ctx: ModeContext,
    ) -> BatchResult:
        result = BatchResult()

        for index, spec in enumerate(specs):
            if ctx.shutdown_requested:
                logger.warning(
                    f"Shutdown requested, not starting {len(specs) - index} remaining command(s)"
                )
                result.interrupted = True
                break

            outcome = await self._run_one(spec, ctx)
            result.outcomes.append(outcome)
            ctx.report(outcome)

            if not outcome.success and not ctx.continue_on_failure:
                logger.debug(f"Stopping after failure at position {index}")
                break

        return result

    async def _run_one(self, spec: CommandSpec, ctx: ModeContext) -> ExitOutcome:
        try:
            handle = await ctx.launcher.launch(spec, aggregate=False)
        except LaunchError as e:
            return ExitOutcome.launch_failure(spec.label, e)

        ctx.registry.register(handle.pid, handle.label)
        return await handle.wait()
