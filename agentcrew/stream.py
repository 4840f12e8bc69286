"""Events of the assistant CLI's stream-json output and helpers around them."""

from __future__ import annotations

import json
import logging
import queue
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

log = logging.getLogger(__name__)

_MAX_LINE = 1024 * 1024


class _EventSink(Protocol):
    def put_nowait(self, item: Any) -> None: ...


def _str_field(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r}: expected string, got {type(value).__name__}")
    return value


def _bool_field(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"field {key!r}: expected boolean, got {type(value).__name__}")
    return value


def _raw(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return json.loads(value) if value else None
    return value


@dataclass
class StreamEvent:
    """A single event from stream-json output.

    ``message`` and ``input`` hold decoded JSON values; bytes are taken as raw
    JSON text.
    """

    type: str = ""
    message: Any = None
    name: str = ""
    input: Any = None
    is_error: bool = False
    result: str = ""
    error_code: str = ""
    session_id: str = ""

    def friendly_error(self) -> str:
        """A user-facing message for known error codes."""
        if self.error_code == "billing_error":
            return (
                "Your API key has insufficient credits. "
                "Please add credits or update your key in Settings."
            )
        if self.error_code == "authentication_error":
            return "API key is invalid or expired. Please update it in Settings."
        if self.result:
            return "Claude returned an error: " + self.result
        return f"Claude returned an unknown error (code: {self.error_code})"

    def to_dict(self) -> dict[str, Any]:
        """The event's JSON form, leaving out empty optional fields."""
        out: dict[str, Any] = {"type": self.type}
        message = _raw(self.message)
        if message is not None:
            out["message"] = message
        if self.name:
            out["name"] = self.name
        tool_input = _raw(self.input)
        if tool_input is not None:
            out["input"] = tool_input
        if self.is_error:
            out["is_error"] = True
        if self.result:
            out["result"] = self.result
        if self.error_code:
            out["error"] = self.error_code
        if self.session_id:
            out["session_id"] = self.session_id
        return out

    @classmethod
    def from_dict(cls, data: Any) -> StreamEvent:
        """Build an event from a decoded JSON object; raises ValueError on bad fields."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValueError(f"expected a JSON object for StreamEvent, got {type(data).__name__}")
        return cls(
            type=_str_field(data, "type"),
            message=data.get("message"),
            name=_str_field(data, "name"),
            input=data.get("input"),
            is_error=_bool_field(data, "is_error"),
            result=_str_field(data, "result"),
            error_code=_str_field(data, "error"),
            session_id=_str_field(data, "session_id"),
        )


@dataclass
class ToolUseInput:
    """Fields of interest in a tool_use event's input."""

    command: str = ""
    file_path: str = ""
    pattern: str = ""

    @classmethod
    def _from_mapping(cls, data: Mapping[str, Any]) -> ToolUseInput:
        return cls(
            command=_str_field(data, "command"),
            file_path=_str_field(data, "file_path"),
            pattern=_str_field(data, "pattern"),
        )


def parse_stream_event(line: str | bytes | bytearray) -> StreamEvent:
    """Parse one JSON line into a StreamEvent; raises ValueError if it is not one."""
    return StreamEvent.from_dict(json.loads(line))


def extract_tool_command(event: StreamEvent) -> tuple[str, str, list[str]]:
    """Return the tool name, command and filesystem paths of a tool_use event."""
    tool_name = event.name
    raw = event.input
    if isinstance(raw, (bytes, bytearray)):
        if not raw:
            return tool_name, "", []
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            log.debug("failed to parse tool input: %s", exc)
            return tool_name, "", []
    if not isinstance(raw, Mapping):
        if raw is not None:
            log.debug("tool input is not an object: %r", raw)
        return tool_name, "", []
    try:
        tool_input = ToolUseInput._from_mapping(raw)
    except ValueError as exc:
        log.debug("failed to parse tool input: %s", exc)
        return tool_name, "", []
    paths = [tool_input.file_path] if tool_input.file_path else []
    return tool_name, tool_input.command, paths


def format_tool_result(output: str, is_error: bool) -> str:
    """A JSON tool_result message to hand back to the assistant."""
    return json.dumps(
        {"type": "tool_result", "output": output, "is_error": is_error},
        sort_keys=True,
        separators=(",", ":"),
    )


def _strip_line_end(line: Any) -> Any:
    newline, carriage = ("\n", "\r") if isinstance(line, str) else (b"\n", b"\r")
    if line.endswith(newline):
        line = line[:-1]
    if line.endswith(carriage):
        line = line[:-1]
    return line


def parse_stream_output(reader: Iterable[str | bytes], events: _EventSink) -> str:
    """Parse each line of reader into events, dropping any that do not fit.

    Lines that are empty or not valid events are skipped. Returns the last
    session ID seen, or an empty string.
    """
    last_session_id = ""
    for raw_line in reader:
        line = _strip_line_end(raw_line)
        if len(line) > _MAX_LINE:
            log.error("error reading stream: line longer than %d bytes", _MAX_LINE)
            break
        if not line:
            continue
        try:
            event = parse_stream_event(line)
        except ValueError as exc:
            log.debug("skipping unparseable line: %s (%r)", exc, line)
            continue
        if event.session_id:
            last_session_id = event.session_id
        try:
            events.put_nowait(event)
        except queue.Full:
            log.warning("event channel full, dropping event of type %s", event.type)
    return last_session_id