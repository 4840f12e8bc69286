"""Lifecycle of assistant CLI invocations, one process per input."""

from __future__ import annotations

import json
import logging
import os
import queue
import subprocess
import tempfile
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from .stream import StreamEvent, parse_stream_output

log = logging.getLogger(__name__)

_EVENT_BUFFER = 256
_STOPPED = "stopped"
_RUNNING = "running"
_ERROR = "error"


@dataclass
class ProcessConfig:
    """Configuration for spawning the assistant CLI."""

    system_prompt: str = ""
    allowed_tools: list[str] = field(default_factory=list)
    work_dir: str = ""
    max_tokens: int = 0


class ManagerError(RuntimeError):
    """The manager cannot carry out a request."""


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class Manager:
    """Runs one CLI process per input, resuming the same session each time.

    ``command`` is the program (and any leading arguments) to run.
    """

    def __init__(self, config: ProcessConfig, *, command: Sequence[str] = ("claude",)) -> None:
        self._config = replace(config, allowed_tools=list(config.allowed_tools))
        self._command = list(command)
        self._session_id = ""
        self._status = _STOPPED
        self._events: queue.Queue[StreamEvent] = queue.Queue(maxsize=_EVENT_BUFFER)
        self._lock = threading.Lock()

    @property
    def session_id(self) -> str:
        """The session that the next input resumes, or an empty string."""
        with self._lock:
            return self._session_id

    def _tool_args(self) -> list[str]:
        args: list[str] = []
        for tool in self._config.allowed_tools:
            args += ["--allowedTools", tool]
        return args

    def _cwd(self) -> str | None:
        return self._config.work_dir or None

    @staticmethod
    def _build_env() -> dict[str, str]:
        return {**os.environ, "CLAUDE_HEADLESS": "1"}

    def start(self) -> None:
        """Mark the manager running and, given a system prompt, open a session with it."""
        with self._lock:
            if self._status == _RUNNING:
                raise ManagerError("manager already running")
            self._status = _RUNNING
            prompt = self._config.system_prompt
            if not prompt:
                log.info("manager started without system prompt; session created on first input")
                return
            log.info(
                "initializing claude session with system prompt (length %d, workdir %r)",
                len(prompt),
                self._config.work_dir,
            )
            try:
                session_id = self._run_initial_prompt(prompt)
            except ManagerError as exc:
                self._status = _ERROR
                raise ManagerError(f"initializing claude session: {exc}") from exc
            self._session_id = session_id
            log.info("claude session established: %s", session_id)

    def _run_initial_prompt(self, prompt: str) -> str:
        args = [
            "-p", prompt,
            "--output-format", "json",
            "--verbose",
            "--dangerously-skip-permissions",
            *self._tool_args(),
        ]
        log.info("running initial claude prompt with args %r", args)
        try:
            completed = subprocess.run(
                [*self._command, *args],
                cwd=self._cwd(),
                env=self._build_env(),
                stdout=subprocess.PIPE,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as exc:
            raise ManagerError(f"claude initial prompt failed: {exc}") from exc

        output = completed.stdout.decode("utf-8", errors="replace")
        log.info("initial prompt completed, output length %d", len(output))
        try:
            result = json.loads(output)
            if not isinstance(result, dict):
                raise ValueError("response is not a JSON object")
            session_id = result.get("session_id") or ""
            if not isinstance(session_id, str):
                raise ValueError("session_id is not a string")
        except ValueError as exc:
            raise ManagerError(
                f"parsing claude response: {exc} (output: {_truncate(output, 500)})"
            ) from exc
        if not session_id:
            raise ManagerError(f"claude response missing session_id (output: {_truncate(output, 500)})")
        return session_id

    def send_input(self, text: str) -> None:
        """Run the CLI on text, resuming the session, and queue its stream events.

        Blocks until the process exits. A non-zero exit is logged, not raised:
        the events already queued carry the outcome.
        """
        with self._lock:
            if self._status != _RUNNING:
                raise ManagerError("process is not running")
            session_id = self._session_id

        log.info("sending input to claude (length %d, session %r)", len(text), session_id)
        args = [
            "-p", text,
            "--output-format", "stream-json",
            "--verbose",
            "--dangerously-skip-permissions",
        ]
        if session_id:
            args += ["--resume", session_id]
        args += self._tool_args()

        with tempfile.TemporaryFile() as stderr_file:
            try:
                proc = subprocess.Popen(
                    [*self._command, *args],
                    cwd=self._cwd(),
                    env=self._build_env(),
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                )
            except OSError as exc:
                raise ManagerError(f"starting claude process: {exc}") from exc
            log.info("claude process started, pid %d", proc.pid)
            with proc:
                assert proc.stdout is not None
                result_session_id = parse_stream_output(proc.stdout, self._events)
                exit_code = proc.wait()
            stderr_file.seek(0)
            stderr_text = stderr_file.read().decode("utf-8", errors="replace")

        if exit_code != 0:
            log.error(
                "claude process exited with code %d: %s", exit_code, _truncate(stderr_text, 1000)
            )
        else:
            log.info("claude process %d completed", proc.pid)
        if stderr_text:
            log.info("claude stderr output: %s", _truncate(stderr_text, 2000))

        if result_session_id:
            with self._lock:
                if self._session_id != result_session_id:
                    log.info(
                        "session_id updated from %r to %r", self._session_id, result_session_id
                    )
                    self._session_id = result_session_id

    def read_events(self) -> queue.Queue[StreamEvent]:
        """The queue that receives parsed stream events; it stays the same across restarts."""
        return self._events

    def restart(self, resume_prompt: str) -> None:
        """Stop, drop pending events, and start a new session from resume_prompt."""
        self.stop()
        with self._lock:
            self._config.system_prompt = resume_prompt
            self._session_id = ""
            while True:
                try:
                    self._events.get_nowait()
                except queue.Empty:
                    break
        self.start()

    def stop(self) -> None:
        """Mark the manager stopped."""
        with self._lock:
            log.info("stopping claude manager (session %r)", self._session_id)
            self._status = _STOPPED

    def status(self) -> str:
        """Current status: stopped, running or error."""
        with self._lock:
            return self._status

    def is_running(self) -> bool:
        """True if the manager accepts input."""
        return self.status() == _RUNNING