"""标签格式化。

标签是写在命令每一行输出前的前缀，例如 `[build] `。
标签按本批次最长的标签补齐宽度；启用颜色时依次使用 ANSI 前景色 31-39。
"""

from __future__ import annotations

__all__ = ["collect_labels", "format_label"]

COLOR_BASE = 31
COLOR_COUNT = 9


def format_label(label: str, index: int, width: int, use_color: bool) -> str:
    """格式化单个标签。

    Args:
        label: 标签文本
        index: 命令序号，用于选择颜色
        width: 补齐后的宽度
        use_color: 是否用 ANSI 颜色序列包裹标签
    """
    text = f"[{label.ljust(width)}]"
    if use_color:
        color = COLOR_BASE + index % COLOR_COUNT
        text = f"\x1b[0;{color}m{text}\x1b[0m"
    return f"{text} "


def collect_labels(
    commands: list[str],
    provided: list[str] | None = None,
    *,
    command_as_label: bool = False,
    use_color: bool = True,
    no_label: bool = False,
) -> list[str]:
    """为每个命令生成格式化后的标签。

    标签文本的优先级：设置 command_as_label 时使用命令本身，
    其次是提供的标签，最后是命令序号。

    Returns:
        每个命令一个标签（no_label 时为空字符串）
    """
    if no_label:
        return ["" for _ in commands]

    provided = provided or []
    if command_as_label:
        bare = list(commands)
    else:
        bare = [
            provided[i] if i < len(provided) else str(i)
            for i in range(len(commands))
        ]

    width = max((len(label) for label in bare), default=0)
    return [
        format_label(label, i, width, use_color)
        for i, label in enumerate(bare)
    ]
