"""命令行接口。

用法:
    procmux run serially [options] COMMAND...
    procmux run concurrently [options] [-g] COMMAND...

别名: `r` 对应 run，`s` 对应 serially，`c` 对应 concurrently。
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from pathlib import Path

from . import __version__
from .config import Config
from .errors import SetupError
from .labels import collect_labels
from .runtime import CommandSpec
from .scripts import DEFAULT_MANIFEST, expand_scripts

__all__ = [
    "RunRequest",
    "build_parser",
    "build_run_request",
]

MODES = ("serially", "concurrently")


@dataclass
class RunRequest:
    """已校验、可直接执行的批次。

    Attributes:
        mode: "serially" 或 "concurrently"
        specs: 每个命令一个 CommandSpec，脚本命令在前
        continue_on_failure: 命令失败后继续执行
        aggregate_output: 每个命令的输出作为一整块打印（仅 concurrent）
        kill_timeout: 第一次信号之后的宽限期（秒）
    """

    mode: str
    specs: list[CommandSpec] = field(default_factory=list)
    continue_on_failure: bool = False
    aggregate_output: bool = False
    kill_timeout: float = 10.0


def _positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}")
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be greater than zero: {value!r}")
    return number


def _build_run_options() -> argparse.ArgumentParser:
    """两种执行模式共享的选项。"""
    options = argparse.ArgumentParser(add_help=False)
    options.add_argument(
        "-n", "--npm", action="append", default=[], metavar="SCRIPT",
        help="Run script from package.json (a trailing * matches a prefix)",
    )
    options.add_argument(
        "-b", "--bun", action="store_true",
        help="Run package.json scripts with Bun",
    )
    options.add_argument(
        "-L", "--command-as-label", action="store_true",
        help="Use command as its own label",
    )
    options.add_argument(
        "-c", "--continue-on-failure", action="store_true",
        help="Continue running commands after a failure",
    )
    options.add_argument(
        "-l", "--label", dest="labels", action="append", default=[], metavar="LABEL",
        help="Label prefix for a command (repeat once per command)",
    )
    color = options.add_mutually_exclusive_group()
    color.add_argument(
        "-C", "--no-color", action="store_true",
        help="Do not colorize label output",
    )
    color.add_argument(
        "--color", dest="force_color", action="store_true",
        help="Colorize label output even when NO_COLOR is set",
    )
    options.add_argument(
        "-S", "--no-subshell", action="store_true",
        help="Do not run commands in a subshell",
    )
    options.add_argument(
        "-B", "--no-label", action="store_true",
        help="Do not attach label to output",
    )
    options.add_argument(
        "--show-pid", action="store_true",
        help="Include command PID in label",
    )
    options.add_argument(
        "-w", "--working-directory", metavar="PATH",
        help="Working directory for commands",
    )
    options.add_argument(
        "-k", "--kill-timeout", type=_positive_float, default=None, metavar="SECONDS",
        help="Seconds to wait for children after the first interrupt (default: 10)",
    )
    options.add_argument("commands", nargs="*", metavar="COMMAND", help="Commands to run")
    return options


def build_parser() -> argparse.ArgumentParser:
    """构建 procmux 参数解析器。"""
    parser = argparse.ArgumentParser(
        prog="procmux",
        description="Run shell commands serially or concurrently with labeled output",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    commands = parser.add_subparsers(dest="subcommand", required=True, metavar="COMMAND")
    run = commands.add_parser(
        "run", aliases=["r"],
        help="Run commands serially or concurrently (alias: r)",
    )

    modes = run.add_subparsers(dest="mode_name", required=True, metavar="MODE")
    options = _build_run_options()

    serially = modes.add_parser(
        "serially", aliases=["s"], parents=[options],
        help="Run commands serially (alias: s)",
    )
    serially.set_defaults(mode="serially", aggregate_output=False)

    concurrently = modes.add_parser(
        "concurrently", aliases=["c"], parents=[options],
        help="Run commands concurrently (alias: c)",
    )
    concurrently.add_argument(
        "-g", "--aggregate-output", action="store_true",
        help="Print each command's output as one block after it exits",
    )
    concurrently.set_defaults(mode="concurrently")

    return parser


def build_run_request(
    args: argparse.Namespace,
    config: Config,
    manifest_path: str | Path = DEFAULT_MANIFEST,
) -> RunRequest:
    """校验解析后的参数并构建批次。

    Raises:
        SetupError: 参数冲突、标签数量不匹配或清单问题。抛出时尚未启动任何命令。
    """
    labels: list[str] = list(args.labels or [])

    if labels and args.command_as_label:
        raise SetupError("Cannot use --label and --command-as-label together")
    if args.no_label and labels:
        raise SetupError("Cannot use --no-label and --label together")
    if args.no_label and args.command_as_label:
        raise SetupError("Cannot use --no-label and --command-as-label together")

    commands = expand_scripts(args.npm, manifest_path=manifest_path, use_bun=args.bun)
    commands.extend(args.commands)

    if labels and len(labels) != len(commands):
        raise SetupError(
            f"Number of labels ({len(labels)}) must match number of commands ({len(commands)})"
        )

    use_color = config.use_color(force_color=args.force_color, no_color=args.no_color)
    formatted = collect_labels(
        commands,
        labels,
        command_as_label=args.command_as_label,
        use_color=use_color,
        no_label=args.no_label,
    )

    specs = [
        CommandSpec(
            command=command,
            label=label,
            working_directory=args.working_directory,
            use_subshell=not args.no_subshell,
            annotate_pid=args.show_pid,
        )
        for command, label in zip(commands, formatted)
    ]

    return RunRequest(
        mode=args.mode,
        specs=specs,
        continue_on_failure=args.continue_on_failure,
        aggregate_output=args.aggregate_output,
        kill_timeout=args.kill_timeout if args.kill_timeout is not None else config.kill_timeout,
    )
