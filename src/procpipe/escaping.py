"""Display and POSIX shell-escaped renderings of a command line."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence

__all__ = ["display_command", "shell_escape", "shell_escape_argv", "shell_escape_pipeline"]

_UNSAFE = re.compile(r"[^\w@%+=:,./-]", re.ASCII)
_DOUBLE_QUOTE_HAZARDS = set('\\"$`\n\r\t')


def shell_escape(arg: str) -> str:
    """Quote ``arg`` so a POSIX shell reads it back as one literal word."""

    if arg == "":
        return "''"
    if not _UNSAFE.search(arg):
        return arg
    if "'" in arg and not (_DOUBLE_QUOTE_HAZARDS & set(arg)):
        return f'"{arg}"'
    return "'" + arg.replace("'", "'\"'\"'") + "'"


def shell_escape_argv(argv: Sequence[str]) -> str:
    return " ".join(shell_escape(part) for part in argv)


def shell_escape_pipeline(stages: Iterable[Sequence[str]]) -> str:
    return " | ".join(shell_escape_argv(argv) for argv in stages)


def display_command(argv: Sequence[str]) -> str:
    """Human readable form; arguments containing whitespace are double-quoted."""

    if not argv:
        return ""
    parts = [argv[0]]
    for arg in argv[1:]:
        if any(ch in arg for ch in " \t\n\r"):
            parts.append(json.dumps(arg, ensure_ascii=False))
        else:
            parts.append(arg)
    return " ".join(parts)
