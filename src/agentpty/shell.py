"""Shell quoting helpers for building command lines from untrusted text."""

from __future__ import annotations

import re
import shlex
from collections.abc import Iterable

from agentpty.errors import UnsafeArgumentError

_WIN_EXT_RE = re.compile(r"\.(exe|cmd|bat)$", re.IGNORECASE)


def quote_shell_arg(value: str) -> str:
    """Single-quote ``value`` for a POSIX shell.

    Every token is wrapped, even safe ones, so the result never depends on
    the content: ``it's`` becomes ``'it'\\''s'``.
    """
    return "'" + value.replace("'", "'\\''") + "'"


def parse_shell_args(value: str | None) -> list[str]:
    """Split a flag string such as ``"resume --last"`` into tokens.

    Unbalanced quotes fall back to plain whitespace splitting, since flag
    strings come from user settings and must never raise here.
    """
    if not value or not value.strip():
        return []
    try:
        return shlex.split(value)
    except ValueError:
        return value.split()


def join_command(tokens: Iterable[str]) -> str:
    """Quote each token and join them into one shell command line."""
    return " ".join(quote_shell_arg(t) for t in tokens)


def bare_command_name(command: str) -> str:
    """Strip any directory and Windows executable extension from ``command``.

    ``C:\\tools\\claude.cmd`` -> ``claude``. Used when the command must be
    looked up on a guest ``PATH`` rather than the host's.
    """
    base = re.split(r"[\\/]", command)[-1]
    return _WIN_EXT_RE.sub("", base)


_SAFE_WORD_RE = re.compile(r"^[A-Za-z0-9_.+-]+$")


def command_line(argv: list[str]) -> str:
    """Render ``argv`` for a shell, leaving a plain command word unquoted.

    The first token stays bare when it is a simple word so it reads as a
    normal command (``claude '--flag'``); anything else is quoted.
    """
    if not argv:
        return ""
    head, rest = argv[0], argv[1:]
    head_text = head if _SAFE_WORD_RE.match(head) else quote_shell_arg(head)
    return " ".join([head_text, *(quote_shell_arg(t) for t in rest)])


# cmd.exe acts on these even inside double quotes, or ends the command at them.
_CMD_ALWAYS_UNSAFE = frozenset('"%!\r\n\x00')
# Operators cmd.exe honours outside double quotes.
_CMD_OPERATORS = frozenset("&|<>()^")


def is_cmd_safe_arg(value: str) -> bool:
    """Whether ``value`` reaches a program launched by ``cmd.exe`` unchanged.

    Windows command lines are rendered with ``subprocess.list2cmdline``,
    which wraps a token in double quotes only when it holds whitespace.
    cmd.exe ignores the ``\\"`` escape and expands ``%VAR%`` inside quotes,
    so no rendering neutralises those characters. Operators are inert only
    inside quotes.
    """
    if any(ch in _CMD_ALWAYS_UNSAFE for ch in value):
        return False
    quoted = not value or " " in value or "\t" in value
    return quoted or not any(ch in _CMD_OPERATORS for ch in value)


def check_cmd_args(argv: Iterable[str]) -> None:
    """Raise :class:`UnsafeArgumentError` for the first argument cmd.exe would reinterpret."""
    for arg in argv:
        if not is_cmd_safe_arg(arg):
            raise UnsafeArgumentError(arg)


def is_batch_file(path: str) -> bool:
    """``.cmd``/``.bat`` targets are run through cmd.exe by ``CreateProcess``."""
    return path.lower().endswith((".cmd", ".bat"))
