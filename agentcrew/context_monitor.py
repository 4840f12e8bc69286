"""Estimate context-window usage and build prompts for resuming after compaction."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sized

_BYTES_PER_TOKEN = 4


class ContextMonitor:
    """Tracks an estimated token count to tell when context compaction is due.

    ``threshold`` is a fraction of ``max_tokens`` (0.8 means 80%) at which
    compaction is recommended.
    """

    def __init__(self, max_tokens: int, threshold: float) -> None:
        self.max_tokens = max_tokens
        self.compaction_threshold = threshold
        self._estimated_tokens = 0
        self._lock = threading.Lock()

    @property
    def estimated_tokens(self) -> int:
        """Current estimated token count."""
        with self._lock:
            return self._estimated_tokens

    def _track(self, data: Sized) -> None:
        tokens = len(data) // _BYTES_PER_TOKEN or 1
        with self._lock:
            self._estimated_tokens += tokens

    def track_input(self, data: Sized) -> None:
        """Count input data at roughly one token per four bytes, at least one."""
        self._track(data)

    def track_output(self, data: Sized) -> None:
        """Count output data at roughly one token per four bytes, at least one."""
        self._track(data)

    def usage_percent(self) -> int:
        """Estimated percentage of the context window used, capped at 100."""
        if self.max_tokens == 0:
            return 0
        pct = self.estimated_tokens / self.max_tokens * 100
        if pct > 100:
            return 100
        return int(pct)

    def needs_compaction(self) -> bool:
        """True once estimated usage reaches the compaction threshold."""
        if self.max_tokens == 0:
            return False
        return self.estimated_tokens / self.max_tokens >= self.compaction_threshold

    def reset(self) -> None:
        """Clear the estimated token count, as after a compaction."""
        with self._lock:
            self._estimated_tokens = 0


def generate_resumption_prompt(
    original_task: str, progress: str, modified_files: Iterable[str] | None = None
) -> str:
    """Build a prompt that lets a restarted agent pick up where it left off."""
    parts = [
        "You are resuming a task after a context compaction. Here is the context:\n\n",
        f"## Original Task\n{original_task}\n\n",
        f"## Progress So Far\n{progress}\n\n",
    ]
    files = list(modified_files or ())
    if files:
        parts.append("## Modified Files\n")
        parts.extend(f"- {name}\n" for name in files)
        parts.append("\n")
    parts.append(
        "Continue from where you left off. Review the modified files to understand current state.\n"
    )
    return "".join(parts)