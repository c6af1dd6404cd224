"""procmux 异常类。

准备阶段错误在启动任何进程之前中止运行；
启动错误和输出流错误归属于单个命令，转换为失败结果。
"""

from __future__ import annotations

__all__ = [
    "ProcmuxError",
    "SetupError",
    "ManifestError",
    "UnknownScriptError",
    "LaunchError",
    "WorkingDirectoryError",
    "CommandParseError",
    "SpawnError",
    "StreamError",
    "StreamDecodeError",
]


class ProcmuxError(Exception):
    """procmux 基础异常。"""
    pass


class SetupError(ProcmuxError):
    """在任何命令启动前发现的无效调用。"""
    pass


class ManifestError(SetupError):
    """清单文件无法读取或解析。

    Attributes:
        path: 清单路径
        message: 错误信息
    """

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        super().__init__(f"{path}: {message}")


class UnknownScriptError(SetupError):
    """请求的脚本名在清单中不存在。"""

    def __init__(self, script: str, path: str) -> None:
        self.script = script
        self.path = path
        super().__init__(f'Script "{script}" does not exist in {path}')


class LaunchError(ProcmuxError):
    """命令无法启动。

    Attributes:
        label: 启动失败的命令的标签
        message: 错误信息
    """

    def __init__(self, label: str, message: str) -> None:
        self.label = label
        self.message = message
        super().__init__(message)


class WorkingDirectoryError(LaunchError):
    """工作目录不存在或不是目录。"""
    pass


class CommandParseError(LaunchError):
    """命令行无法拆分为参数列表。"""
    pass


class SpawnError(LaunchError):
    """操作系统拒绝启动进程。"""
    pass


class StreamError(ProcmuxError):
    """读取命令的输出管道失败。

    Attributes:
        label: 管道所属命令的标签
        stream_name: "stdout" 或 "stderr"
    """

    def __init__(self, label: str, stream_name: str, message: str) -> None:
        self.label = label
        self.stream_name = stream_name
        self.message = message
        super().__init__(f"read {stream_name}: {message}")


class StreamDecodeError(StreamError):
    """管道中的某一行不是合法的 UTF-8。"""
    pass
