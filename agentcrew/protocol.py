"""Message envelope, payload types and subject names for team messaging."""

from __future__ import annotations

import json
import re
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeVar


class MessageType(str, Enum):
    """Kind of protocol message."""

    USER_MESSAGE = "user_message"
    LEADER_RESPONSE = "leader_response"
    SYSTEM_COMMAND = "system_command"
    ACTIVITY_EVENT = "activity_event"
    CONTAINER_VALIDATION = "container_validation"
    SKILL_STATUS = "skill_status"

    def __str__(self) -> str:
        return self.value


class ValidationCheckStatus(str, Enum):
    """Outcome of a single container validation check."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"

    def __str__(self) -> str:
        return self.value


class InvalidSubjectError(ValueError):
    """A name cannot be used as a token of a messaging subject."""


class PayloadError(ValueError):
    """A message or its payload cannot be encoded or decoded."""


_ZERO_TIMESTAMP = "0001-01-01T00:00:00Z"
_INVALID_SUBJECT_CHARS = frozenset(".*> \t\n\r")

Decoder = Callable[[Any, str], Any]


def _as_str(value: Any, key: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise PayloadError(f"field {key!r}: expected string, got {type(value).__name__}")
    return value


def _as_raw(value: Any, key: str) -> Any:
    """Decode a raw JSON field; bytes are parsed as JSON text."""
    if isinstance(value, (bytes, bytearray)):
        try:
            return json.loads(value)
        except ValueError as exc:
            raise PayloadError(f"field {key!r}: invalid raw JSON: {exc}") from exc
    return value


def _as_str_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise PayloadError(f"field {key!r}: expected array, got {type(value).__name__}")
    return [_as_str(item, key) for item in value]


def _as_str_map(value: Any, key: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise PayloadError(f"field {key!r}: expected object, got {type(value).__name__}")
    return {str(k): _as_str(v, key) for k, v in value.items()}


def _as_enum(enum_cls: type[Enum]) -> Decoder:
    def decode(value: Any, key: str) -> Any:
        text = _as_str(value, key)
        try:
            return enum_cls(text)
        except ValueError:
            return text

    return decode


def _as_records(record_cls: type[_Record]) -> Decoder:
    def decode(value: Any, key: str) -> list[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise PayloadError(f"field {key!r}: expected array, got {type(value).__name__}")
        return [record_cls._from_dict(item) for item in value]

    return decode


def _field(decode: Decoder, *, default: Any = "", omitempty: bool = False, key: str | None = None) -> Any:
    meta = {"decode": decode, "omitempty": omitempty, "key": key}
    if isinstance(default, (list, dict)):
        return field(default_factory=type(default), metadata=meta)
    return field(default=default, metadata=meta)


def _is_empty(value: Any, decode: Decoder) -> bool:
    if value is None:
        return True
    if decode is _as_raw:
        return False
    return isinstance(value, (str, list, dict)) and len(value) == 0


def _encode(value: Any) -> Any:
    if isinstance(value, _Record):
        return value._to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, Mapping):
        return {key: _encode(item) for key, item in value.items()}
    return value


class _Record:
    """Dataclass mixin giving JSON-object encoding driven by field metadata."""

    @classmethod
    def _from_dict(cls, data: Any) -> Any:
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise PayloadError(
                f"expected a JSON object for {cls.__name__}, got {type(data).__name__}"
            )
        values = {}
        for f in fields(cls):  # type: ignore[arg-type]
            key = f.metadata.get("key") or f.name
            if key in data:
                values[f.name] = f.metadata["decode"](data[key], key)
        return cls(**values)

    def _to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if f.metadata.get("omitempty") and _is_empty(value, f.metadata["decode"]):
                continue
            out[f.metadata.get("key") or f.name] = _encode(value)
        return out


@dataclass
class MessageContext(_Record):
    """Optional conversation context carried by a message."""

    thread_id: str = _field(_as_str, omitempty=True)
    relevant_ids: list[str] = _field(_as_str_list, default=[], omitempty=True)


@dataclass
class UserMessagePayload(_Record):
    """A free-form message from the user."""

    content: str = _field(_as_str)


@dataclass
class LeaderResponsePayload(_Record):
    """The leader's response back to the user."""

    status: str = _field(_as_str)
    result: str = _field(_as_str)
    error: str = _field(_as_str, omitempty=True)


@dataclass
class SystemCommandPayload(_Record):
    """A system-level command such as shutdown, restart or compact_context."""

    command: str = _field(_as_str)
    args: dict[str, str] = _field(_as_str_map, default={}, omitempty=True)


@dataclass
class ActivityEventPayload(_Record):
    """An intermediate activity event produced by an agent."""

    event_type: str = _field(_as_str)
    agent_name: str = _field(_as_str)
    tool_name: str = _field(_as_str, omitempty=True)
    action: str = _field(_as_str, omitempty=True)
    payload: Any = _field(_as_raw, default=None, omitempty=True)


@dataclass
class ValidationCheck(_Record):
    """Result of a single container validation check."""

    name: str = _field(_as_str)
    status: ValidationCheckStatus | str = _field(_as_enum(ValidationCheckStatus))
    message: str = _field(_as_str)


@dataclass
class ContainerValidationPayload(_Record):
    """Results of post-setup container validation."""

    agent_name: str = _field(_as_str)
    checks: list[ValidationCheck] = _field(_as_records(ValidationCheck), default=[])
    summary: str = _field(_as_str)


@dataclass
class SkillInstallResult(_Record):
    """Installation outcome for a single skill package."""

    package: str = _field(_as_str)
    status: str = _field(_as_str)
    error: str = _field(_as_str, omitempty=True)


@dataclass
class SkillStatusPayload(_Record):
    """Per-skill installation results."""

    agent_name: str = _field(_as_str)
    skills: list[SkillInstallResult] = _field(_as_records(SkillInstallResult), default=[])
    summary: str = _field(_as_str)


def _format_timestamp(ts: datetime | None) -> str:
    if ts is None:
        return _ZERO_TIMESTAMP
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_timestamp(value: Any) -> datetime:
    if not isinstance(value, str):
        raise PayloadError(f"field 'timestamp': expected string, got {type(value).__name__}")
    text = re.sub(r"\.(\d+)", lambda m: "." + m.group(1)[:6].ljust(6, "0"), value)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise PayloadError(f"field 'timestamp': invalid time {value!r}") from exc


def _raw_value(payload: Any) -> Any:
    if isinstance(payload, (bytes, bytearray)):
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise PayloadError(f"invalid raw payload: {exc}") from exc
    return _encode(payload)


@dataclass
class Message:
    """Envelope for every message exchanged between agents and the user.

    ``payload`` holds a decoded JSON value; bytes are treated as raw JSON text.
    """

    message_id: str = ""
    sender: str = ""
    recipient: str = ""
    type: MessageType | str = ""
    payload: Any = None
    timestamp: datetime | None = None
    context: MessageContext | None = None
    ref_message_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the wire form of the message as a JSON-compatible dict."""
        out: dict[str, Any] = {
            "message_id": self.message_id,
            "from": self.sender,
            "to": self.recipient,
            "type": _encode(self.type),
        }
        if self.context is not None:
            out["context"] = self.context._to_dict()
        if self.ref_message_id:
            out["ref_message_id"] = self.ref_message_id
        out["payload"] = _raw_value(self.payload)
        out["timestamp"] = _format_timestamp(self.timestamp)
        return out

    def to_json(self) -> str:
        """Serialise the message to a JSON string."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any) -> Message:
        """Build a message from its wire form."""
        if not isinstance(data, Mapping):
            raise PayloadError(f"expected a JSON object for Message, got {type(data).__name__}")
        context = data.get("context")
        timestamp = data.get("timestamp")
        return cls(
            message_id=_as_str(data.get("message_id"), "message_id"),
            sender=_as_str(data.get("from"), "from"),
            recipient=_as_str(data.get("to"), "to"),
            type=_as_enum(MessageType)(data.get("type"), "type"),
            payload=data.get("payload"),
            timestamp=None if timestamp is None else _parse_timestamp(timestamp),
            context=None if context is None else MessageContext._from_dict(context),
            ref_message_id=_as_str(data.get("ref_message_id"), "ref_message_id"),
        )

    @classmethod
    def from_json(cls, data: str | bytes | bytearray) -> Message:
        """Parse a message from JSON text."""
        try:
            decoded = json.loads(data)
        except ValueError as exc:
            raise PayloadError(f"invalid message JSON: {exc}") from exc
        return cls.from_dict(decoded)


def validate_subject_token(name: str) -> None:
    """Raise InvalidSubjectError unless name is safe as a subject token."""
    if not name:
        raise InvalidSubjectError("subject token must not be empty")
    if any(ch in _INVALID_SUBJECT_CHARS for ch in name):
        raise InvalidSubjectError(
            f"subject token {name!r} contains invalid NATS characters (.*> or whitespace)"
        )


def _team_subject(team_name: str, suffix: str) -> str:
    try:
        validate_subject_token(team_name)
    except InvalidSubjectError as exc:
        raise InvalidSubjectError(f"invalid team name: {exc}") from exc
    return f"team.{team_name}.{suffix}"


def team_leader_channel(team_name: str) -> str:
    """Subject for user-to-leader communication of a team."""
    return _team_subject(team_name, "leader")


def team_activity_channel(team_name: str) -> str:
    """Subject for streaming intermediate activity events of a team."""
    return _team_subject(team_name, "activity")


def new_message(sender: str, recipient: str, msg_type: MessageType | str, payload: Any) -> Message:
    """Create a message with a fresh ID and the current UTC time."""
    try:
        encoded = json.loads(json.dumps(_encode(payload)))
    except (TypeError, ValueError) as exc:
        raise PayloadError(f"marshaling payload: {exc}") from exc
    return Message(
        message_id=str(uuid.uuid4()),
        sender=sender,
        recipient=recipient,
        type=_as_enum(MessageType)(msg_type, "type"),
        payload=encoded,
        timestamp=datetime.now(timezone.utc),
    )


T = TypeVar("T", bound=_Record)


def parse_payload(msg: Message, payload_type: type[T]) -> T:
    """Decode the message payload into an instance of payload_type."""
    if not (isinstance(payload_type, type) and issubclass(payload_type, _Record)):
        raise TypeError(f"{payload_type!r} is not a payload type")
    raw = msg.payload
    try:
        if isinstance(raw, (bytes, bytearray)):
            raw = json.loads(raw)
        return payload_type._from_dict(raw)
    except ValueError as exc:
        raise PayloadError(f"unmarshaling payload as {payload_type.__name__}: {exc}") from exc