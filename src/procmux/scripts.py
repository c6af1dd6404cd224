"""清单脚本展开。

把 package.json `scripts` 表中的脚本名转换为命令：

    {"scripts": {"build": "tsc", "build:watch": "tsc -w"}}

    build    -> npm run build
    build:*  -> npm run build, npm run build:watch

通配符选择所有以 `*` 之前文本开头的脚本。该文本以 `:` 结尾时，
基础脚本（`build:*` 对应 `build`）也会匹配。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from .errors import ManifestError, UnknownScriptError

__all__ = [
    "DEFAULT_MANIFEST",
    "WILDCARD",
    "expand_scripts",
    "load_scripts",
]

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST = "package.json"
WILDCARD = "*"
SEPARATOR = ":"


def _matches_prefix(key: str, prefix: str) -> bool:
    if key.startswith(prefix):
        return True
    return prefix.endswith(SEPARATOR) and key == prefix[: -len(SEPARATOR)]


def load_scripts(manifest_path: str | Path = DEFAULT_MANIFEST) -> dict[str, str]:
    """读取清单中的脚本表。

    Raises:
        ManifestError: 文件无法读取、不是 JSON，或没有合法的 `scripts` 对象
    """
    path = str(manifest_path)
    try:
        with open(manifest_path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ManifestError(path, f"read manifest: {e.strerror or e}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ManifestError(path, f"parse manifest: {e}") from e

    if not isinstance(data, dict):
        raise ManifestError(path, "parse manifest: top level is not an object")

    scripts = data.get("scripts")
    if not isinstance(scripts, dict):
        raise ManifestError(path, 'parse manifest: missing "scripts" object')

    for name, command in scripts.items():
        if not isinstance(command, str):
            raise ManifestError(path, f'parse manifest: script "{name}" is not a string')

    return scripts


def expand_scripts(
    names: list[str],
    *,
    manifest_path: str | Path = DEFAULT_MANIFEST,
    use_bun: bool = False,
) -> list[str]:
    """为每个匹配的脚本生成一条命令。

    Args:
        names: 脚本名；以 `*` 结尾时选择所有带该前缀的脚本
        manifest_path: 要读取的清单
        use_bun: 生成 `bun run` 而不是 `npm run`

    Returns:
        生成的命令（未请求脚本时为空）

    Raises:
        ManifestError: 清单无法读取或解析
        UnknownScriptError: 精确匹配的脚本名不存在
    """
    if not names:
        return []

    scripts = load_scripts(manifest_path)
    runner = "bun" if use_bun else "npm"
    commands: list[str] = []

    for name in names:
        if name.endswith(WILDCARD):
            prefix = name[: -len(WILDCARD)]
            matches = [key for key in scripts if _matches_prefix(key, prefix)]
            if not matches:
                logger.warning(f'No script matches "{name}" in {manifest_path}')
            commands.extend(f"{runner} run {key}" for key in matches)
        else:
            if name not in scripts:
                raise UnknownScriptError(name, str(manifest_path))
            commands.append(f"{runner} run {name}")

    return commands
