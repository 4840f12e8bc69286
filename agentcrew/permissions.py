"""Permission gate deciding which tools, commands and paths an agent may use."""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass
class PermissionConfig:
    """What tools, commands and paths an agent is allowed to use."""

    allowed_tools: list[str] = field(default_factory=list)
    allowed_commands: list[str] = field(default_factory=list)
    denied_commands: list[str] = field(default_factory=list)
    filesystem_scope: str = ""


@dataclass(frozen=True)
class Decision:
    """Outcome of a permission evaluation."""

    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def allow() -> Decision:
    """A decision that permits the action."""
    return Decision(allowed=True)


def deny(reason: str) -> Decision:
    """A decision that blocks the action for the given reason."""
    return Decision(allowed=False, reason=reason)


class Gate:
    """Evaluates tool and command requests against a PermissionConfig."""

    def __init__(self, config: PermissionConfig) -> None:
        self.config = config

    def evaluate(self, tool_name: str, command: str = "", paths: Iterable[str] | None = None) -> Decision:
        """Check a tool call.

        The tool must be allow-listed (an empty list permits nothing), the
        command must match no denied pattern and, when an allow list is set,
        at least one allowed pattern; every path must lie within the scope.
        """
        if tool_name not in self.config.allowed_tools:
            return deny(f"tool not allowed: {tool_name}")

        if command:
            for pattern in self.config.denied_commands:
                if match_pattern(pattern, command):
                    return deny(f"command denied by pattern: {pattern}")
            if self.config.allowed_commands and not any(
                match_pattern(pattern, command) for pattern in self.config.allowed_commands
            ):
                return deny(f"command not in allowed list: {command}")

        scope = self.config.filesystem_scope
        if scope:
            for path in paths or ():
                if not is_path_in_scope(path, scope):
                    return deny(f"path outside allowed scope: {path}")

        return allow()


def match_pattern(pattern: str, value: str) -> bool:
    """Glob-match value against pattern, where '*' matches any sequence.

    Runs iteratively with single-star backtracking, so many wildcards cannot
    cause exponential time.
    """
    pi = vi = 0
    star = -1
    mark = 0
    while vi < len(value):
        if pi < len(pattern) and pattern[pi] == "*":
            star, mark = pi, vi
            pi += 1
        elif pi < len(pattern) and pattern[pi] == value[vi]:
            pi += 1
            vi += 1
        elif star != -1:
            pi = star + 1
            mark += 1
            vi = mark
        else:
            return False
    return all(ch == "*" for ch in pattern[pi:])


def _resolve(path: str) -> str:
    try:
        return os.path.realpath(path, strict=True)
    except OSError:
        return os.path.normpath(path)


def is_path_in_scope(path: str, scope: str) -> bool:
    """True if path is the scope directory or lies beneath it.

    Symlinks and '..' components are resolved first, so they cannot escape.
    """
    if not path or not scope:
        return False
    real_path = _resolve(path)
    real_scope = _resolve(scope)
    if real_path == real_scope:
        return True
    return real_path.startswith(real_scope + os.sep)