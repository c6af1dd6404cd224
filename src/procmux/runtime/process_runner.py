"""Process launching and completion tracking.

procmux runtime module

This module provides:
- CommandSpec: immutable description of one command
- ProcessLauncher: CommandSpec -> running child with piped stdout/stderr
- ProcessHandle: owns the child plus its two stream readers
- ExitOutcome: pass/fail result recorded for one command

Key design points:
- Subshell mode runs `/bin/sh -c <command>`; otherwise the command is split
  with shell word rules and executed directly
- Children stay in procmux's process group so a terminal Ctrl+C reaches them
- wait() joins both readers before the process is reaped and before any
  aggregate output is flushed, so buffered output is never truncated
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import anyio

from ..errors import (
    CommandParseError,
    LaunchError,
    ProcmuxError,
    SpawnError,
    WorkingDirectoryError,
)
from .output import LineBuffer, OutputWriter, read_lines

__all__ = [
    "CommandSpec",
    "ExitOutcome",
    "ProcessHandle",
    "ProcessLauncher",
    "SHELL",
    "describe_returncode",
    "launch_all",
]

logger = logging.getLogger(__name__)

SHELL = "/bin/sh"


@dataclass(frozen=True)
class CommandSpec:
    """Specification for a command to run.

    Attributes:
        command: Shell command line
        label: Prefix written in front of every output line
        working_directory: Directory to run in (None = inherit)
        use_subshell: Run through /bin/sh -c instead of direct exec
        annotate_pid: Append the child's PID to the label
    """

    command: str
    label: str = ""
    working_directory: str | Path | None = None
    use_subshell: bool = True
    annotate_pid: bool = False


def describe_returncode(returncode: int) -> str:
    """Describe a process return code the way a shell user expects."""
    if returncode < 0:
        signum = -returncode
        try:
            name = signal.Signals(signum).name
        except ValueError:
            return f"signal: {signum}"
        return f"signal: {signum} ({name})"
    return f"exit status: {returncode}"


@dataclass(frozen=True)
class ExitOutcome:
    """Result of one command.

    Attributes:
        label: Final label of the command (PID-augmented when requested)
        success: True only for a clean zero exit
        description: Exit status or error description
        pid: Child PID (None when the command never started)
        returncode: Raw return code (None when there is none)
        error: Launch or stream error, if any
    """

    label: str
    success: bool
    description: str
    pid: int | None = None
    returncode: int | None = None
    error: ProcmuxError | None = None

    @classmethod
    def launch_failure(cls, label: str, error: ProcmuxError) -> "ExitOutcome":
        """Outcome of a command that never started."""
        return cls(label=label, success=False, description=str(error), error=error)

    @property
    def diagnostic(self) -> str:
        """One-line failure report naming the label."""
        if self.error is not None:
            return f"{self.label}command failed: {self.description}"
        return f"{self.label}command exited with non-zero status: {self.description}"


class ProcessHandle:
    """A running child process and its two stream readers.

    Owned by the execution mode until wait() resolves; after that the
    process has been reaped and both reader tasks joined.
    """

    def __init__(
        self,
        spec: CommandSpec,
        process: asyncio.subprocess.Process,
        label: str,
        writer: OutputWriter,
        aggregate: bool,
    ) -> None:
        self.spec = spec
        self.process = process
        self.label = label
        self.aggregate = aggregate
        self._writer = writer
        self._buffer = LineBuffer()
        self._outcome: ExitOutcome | None = None

        self._stdout_task = asyncio.create_task(
            self._read(process.stdout, "stdout"),
            name=f"procmux-stdout-{process.pid}",
        )
        self._stderr_task = asyncio.create_task(
            self._read(process.stderr, "stderr"),
            name=f"procmux-stderr-{process.pid}",
        )

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def outcome(self) -> ExitOutcome | None:
        """Outcome once wait() has resolved."""
        return self._outcome

    async def _read(self, stream: asyncio.StreamReader, stream_name: str) -> int:
        return await read_lines(
            stream,
            label=self.label,
            stream_name=stream_name,
            writer=self._writer,
            buffer=self._buffer,
            aggregate=self.aggregate,
        )

    async def wait(self) -> ExitOutcome:
        """Wait for the readers and the process, then build the outcome.

        Order:
        1. Join both readers (a failed reader never abandons its sibling)
        2. Reap the process
        3. Aggregate mode: flush the buffered lines as one block

        Returns:
            ExitOutcome for this command
        """
        if self._outcome is not None:
            return self._outcome

        results = await asyncio.gather(
            self._stdout_task, self._stderr_task, return_exceptions=True
        )
        reader_error: ProcmuxError | None = None
        for result in results:
            if isinstance(result, (anyio.get_cancelled_exc_class(), asyncio.CancelledError)):
                raise result
            if isinstance(result, ProcmuxError) and reader_error is None:
                reader_error = result
            elif isinstance(result, BaseException):
                raise result

        try:
            returncode = await self.process.wait()
        except OSError as e:
            self._outcome = ExitOutcome(
                label=self.label,
                success=False,
                description=f"wait for child: {e}",
                pid=self.pid,
            )
            return self._outcome

        if self.aggregate:
            self._writer.write_block(self.label, await self._buffer.drain())

        logger.debug(f"Process exited pid={self.pid} returncode={returncode}")

        if reader_error is not None:
            self._outcome = ExitOutcome(
                label=self.label,
                success=False,
                description=str(reader_error),
                pid=self.pid,
                returncode=returncode,
                error=reader_error,
            )
        else:
            self._outcome = ExitOutcome(
                label=self.label,
                success=returncode == 0,
                description=describe_returncode(returncode),
                pid=self.pid,
                returncode=returncode,
            )
        return self._outcome


class ProcessLauncher:
    """Turns CommandSpecs into running processes.

    Example:
        launcher = ProcessLauncher(OutputWriter())
        handle = await launcher.launch(CommandSpec("echo hello", "[0] "))
        outcome = await handle.wait()
    """

    def __init__(self, writer: OutputWriter) -> None:
        self.writer = writer

    async def launch(self, spec: CommandSpec, aggregate: bool = False) -> ProcessHandle:
        """Start a command.

        Args:
            spec: Command specification
            aggregate: Buffer output until the process exits

        Returns:
            ProcessHandle whose readers are already running

        Raises:
            WorkingDirectoryError: The working directory cannot be resolved
            CommandParseError: The command line cannot be split
            SpawnError: The process could not be started
        """
        cwd = self._resolve_working_directory(spec)
        argv = self._build_argv(spec)

        kwargs: dict[str, Any] = {}
        if cwd is not None:
            kwargs["cwd"] = cwd

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs,
            )
        except OSError as e:
            raise SpawnError(spec.label, f"spawn process: {argv[0]}: {e}") from e

        if process.stdout is None or process.stderr is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            raise SpawnError(spec.label, f"spawn process: {argv[0]}: output pipes not available")

        label = spec.label
        if spec.annotate_pid:
            label = f"{label}(PID: {process.pid}) "

        logger.debug(f"Started process pid={process.pid} argv={argv!r} cwd={cwd}")

        return ProcessHandle(spec, process, label, self.writer, aggregate)

    def _resolve_working_directory(self, spec: CommandSpec) -> Path | None:
        if spec.working_directory is None:
            return None
        try:
            cwd = Path(spec.working_directory).expanduser().resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise WorkingDirectoryError(
                spec.label, f"canonicalize working directory: {e}"
            ) from e
        if not cwd.is_dir():
            raise WorkingDirectoryError(
                spec.label, f"canonicalize working directory: not a directory: {cwd}"
            )
        return cwd

    def _build_argv(self, spec: CommandSpec) -> list[str]:
        if spec.use_subshell:
            return [SHELL, "-c", spec.command]

        try:
            parts = shlex.split(spec.command)
        except ValueError as e:
            raise CommandParseError(spec.label, f"split command: {e}") from e
        if not parts:
            raise CommandParseError(spec.label, "split command: empty command")
        return parts


async def launch_all(
    launcher: ProcessLauncher,
    specs: list[CommandSpec],
    aggregate: bool = False,
) -> list[ProcessHandle | LaunchError]:
    """Launch every spec, keeping launch errors in place of their handles."""
    started: list[ProcessHandle | LaunchError] = []
    for spec in specs:
        try:
            started.append(await launcher.launch(spec, aggregate=aggregate))
        except LaunchError as e:
            started.append(e)
    return started
