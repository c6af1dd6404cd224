"""procmux 应用入口。

包含批处理驱动和主入口。驱动是唯一决定退出码的地方：

    0    所有命令成功
    1    一个或多个命令失败
    2    调用参数无效（未启动任何命令）
    130  信号升级强杀了子进程
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Callable

from .cli import RunRequest, build_parser, build_run_request
from .config import Config, get_config
from .errors import SetupError
from .handlers import ModeContext, create_handler
from .orchestrator import ProcessRegistry
from .runtime import OutputWriter, ProcessLauncher
from .signal_manager import SignalManager, emergency_exit

__all__ = [
    "EXIT_FAILURE",
    "EXIT_SETUP_ERROR",
    "EXIT_SUCCESS",
    "FAILURE_SUMMARY",
    "main",
    "run_batch",
]

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_SETUP_ERROR = 2

FAILURE_SUMMARY = "One or more commands failed"


async def run_batch(
    request: RunRequest,
    *,
    writer: OutputWriter | None = None,
    install_signals: bool = True,
    on_emergency_exit: Callable[[int], None] | None = None,
    on_early_exit: Callable[[int], None] | None = None,
) -> int:
    """执行已校验的批次并返回退出码。

    信号管理器在整个批次期间监听 SIGINT/SIGTERM；其强杀路径直接退出进程，不会返回这里。

    快速失败后若仍有命令在运行，立即以失败退出：不等待也不强杀它们，
    子进程在 procmux 退出后继续运行。

    Args:
        request: 已校验的批次
        writer: 输出目标（默认 sys.stdout/sys.stderr）
        install_signals: 是否安装 SIGINT/SIGTERM 处理器
        on_emergency_exit: 替代信号升级时的立即退出
        on_early_exit: 替代快速失败时的立即退出（默认 emergency_exit）

    Returns:
        EXIT_SUCCESS 或 EXIT_FAILURE
    """
    writer = writer or OutputWriter()
    registry = ProcessRegistry()
    signal_manager = SignalManager(
        registry,
        kill_timeout=request.kill_timeout,
        on_emergency_exit=on_emergency_exit,
    )
    handler = create_handler(request.mode)
    ctx = ModeContext(
        launcher=ProcessLauncher(writer),
        writer=writer,
        registry=registry,
        signal_manager=signal_manager,
        continue_on_failure=request.continue_on_failure,
        aggregate_output=request.aggregate_output,
    )
    early_exit = on_early_exit or emergency_exit

    logger.debug(
        f"Running {len(request.specs)} command(s) {handler.name} "
        f"(continue_on_failure={request.continue_on_failure}, "
        f"aggregate_output={request.aggregate_output}, "
        f"kill_timeout={request.kill_timeout}s)"
    )

    if install_signals:
        await signal_manager.start()
    try:
        result = await handler.run(request.specs, ctx)
        if not result.success:
            writer.diagnostic(FAILURE_SUMMARY)

        if handler.has_pending:
            # 事件循环关闭时 asyncio 会杀掉仍在运行的子进程，因此直接退出
            logger.debug(f"Exiting with {len(registry)} command(s) left running")
            writer.flush()
            early_exit(EXIT_FAILURE)
            return EXIT_FAILURE

        await handler.drain()
    finally:
        await signal_manager.stop()

    logger.debug(
        f"Batch finished: {len(result.outcomes)} outcome(s), "
        f"{len(result.failed)} failed, interrupted={result.interrupted}"
    )
    return EXIT_SUCCESS if result.success else EXIT_FAILURE


def configure_logging(config: Config) -> None:
    """配置 procmux 日志。

    默认输出到 stderr，级别 WARNING；PROCMUX_DEBUG 时为 DEBUG；
    PROCMUX_LOG_DEBUG 时以 DEBUG 级别输出到临时文件。
    """
    log_handlers: list[logging.Handler] = []
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(log_format))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(log_format))
        log_handlers.append(stderr_handler)
        log_level = logging.DEBUG if config.debug else logging.WARNING

    # 根 logger（第三方库）保持 WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("procmux").setLevel(log_level)


def main(argv: list[str] | None = None) -> None:
    """主入口。"""
    config = get_config()
    configure_logging(config)
    logger.debug(f"Loaded {config}")

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        request = build_run_request(args, config)
    except SetupError as e:
        print(f"{parser.prog}: error: {e}", file=sys.stderr)
        sys.exit(EXIT_SETUP_ERROR)

    sys.exit(asyncio.run(run_batch(request)))


if __name__ == "__main__":
    main()
