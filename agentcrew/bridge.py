"""Bridge between team messaging and the assistant CLI process."""

from __future__ import annotations

import json
import logging
import queue
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from .manager import Manager, ManagerError
from .permissions import Gate
from .protocol import (
    ActivityEventPayload,
    InvalidSubjectError,
    LeaderResponsePayload,
    Message,
    MessageType,
    PayloadError,
    SystemCommandPayload,
    UserMessagePayload,
    new_message,
    parse_payload,
    team_activity_channel,
    team_leader_channel,
)
from .stream import StreamEvent, extract_tool_command, format_tool_result

log = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


@dataclass
class BridgeConfig:
    """Identity of the agent the bridge serves and its optional permission gate."""

    agent_name: str = ""
    team_name: str = ""
    role: str = ""
    gate: Gate | None = None


class Publisher(Protocol):
    """What the bridge needs from a messaging client."""

    def publish(self, subject: str, msg: Message) -> None:
        """Send msg to subject."""

    def subscribe(self, subject: str, handler: Callable[[Message], None]) -> None:
        """Call handler with each message received on subject."""


def _message_text(message: Any) -> str | None:
    """The text of a result event's message, or None if it does not decode."""
    if isinstance(message, (bytes, bytearray)):
        if not message:
            return None
        try:
            message = json.loads(message)
        except ValueError:
            return None
        if message is None:
            return ""
    if not isinstance(message, Mapping):
        return None
    text = message.get("text")
    if text is None:
        return ""
    if not isinstance(text, str):
        return None
    return text


class Bridge:
    """Carries user messages to the assistant and its events back to the team.

    User messages arrive on the team leader subject and are handed to the
    manager; stream events from the manager are published as activity events
    and, for final results, as leader responses.
    """

    def __init__(
        self, config: BridgeConfig, client: Publisher | None, manager: Manager | None
    ) -> None:
        self.config = config
        self.client = client
        self.manager = manager
        self.current_result = ""
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Subscribe to the team leader subject and start forwarding events."""
        leader_subject = team_leader_channel(self.config.team_name)
        self.client.subscribe(leader_subject, self.handle_incoming)

        self._stop.clear()
        self._thread = threading.Thread(target=self._forward_events, daemon=True)
        self._thread.start()
        log.info(
            "bridge started (agent %s, team %s, role %s)",
            self.config.agent_name,
            self.config.team_name,
            self.config.role,
        )

    def stop(self) -> None:
        """Stop forwarding events and wait for the forwarder to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        log.info("bridge stopped (agent %s)", self.config.agent_name)

    def __enter__(self) -> Bridge:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    def handle_incoming(self, msg: Message) -> None:
        """Dispatch one incoming protocol message."""
        log.info(
            "bridge received message from %s of type %s (agent %s)",
            msg.sender,
            msg.type,
            self.config.agent_name,
        )
        if msg.type == MessageType.USER_MESSAGE:
            self._handle_user_message(msg)
        elif msg.type == MessageType.SYSTEM_COMMAND:
            self._handle_system_command(msg)
        else:
            log.debug("unhandled message type %s", msg.type)

    def _handle_user_message(self, msg: Message) -> None:
        try:
            payload = parse_payload(msg, UserMessagePayload)
        except PayloadError as exc:
            log.error("failed to parse user message: %s", exc)
            return
        log.info(
            "forwarding user message to claude (agent %s, length %d)",
            self.config.agent_name,
            len(payload.content),
        )
        try:
            self.manager.send_input(payload.content)
        except ManagerError as exc:
            log.error("failed to send user message to claude: %s", exc)

    def _handle_system_command(self, msg: Message) -> None:
        try:
            payload = parse_payload(msg, SystemCommandPayload)
        except PayloadError as exc:
            log.error("failed to parse system command: %s", exc)
            return

        command = payload.command
        if command == "shutdown":
            log.info("received shutdown command from %s", msg.sender)
            try:
                self.manager.stop()
            except ManagerError as exc:
                log.error("failed to stop claude process: %s", exc)
        elif command == "restart":
            log.info("received restart command from %s", msg.sender)
            try:
                self.manager.restart(payload.args.get("resume_prompt", ""))
            except ManagerError as exc:
                log.error("failed to restart claude process: %s", exc)
        elif command == "compact_context":
            log.info("received compact_context command from %s", msg.sender)
        else:
            log.warning("unknown system command %r", command)

    def _forward_events(self) -> None:
        events = self.manager.read_events()
        while not self._stop.is_set():
            try:
                event = events.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            try:
                self.process_event(event)
            except Exception:  # noqa: BLE001
                log.exception("failed to process claude event")

    def process_event(self, event: StreamEvent) -> None:
        """Handle one stream event from the assistant."""
        if event.type == "tool_use":
            tool_name, command, paths = extract_tool_command(event)
            action = f"{tool_name}: {command}" if command else tool_name
            self.publish_activity_event(event, action)

            gate = self.config.gate
            if gate is not None:
                decision = gate.evaluate(tool_name, command, paths)
                if not decision.allowed:
                    log.warning(
                        "tool use denied by permission gate (tool %s, command %r): %s",
                        tool_name,
                        command,
                        decision.reason,
                    )
                    denial = format_tool_result("Permission denied: " + decision.reason, True)
                    if self.manager is None:
                        log.error("failed to send denial to claude: no manager")
                        return
                    try:
                        self.manager.send_input(denial)
                    except ManagerError as exc:
                        log.error("failed to send denial to claude: %s", exc)
                    return

        elif event.type == "assistant":
            self.publish_activity_event(event, "assistant message")

        elif event.type == "result":
            if event.is_error:
                friendly = event.friendly_error()
                log.error(
                    "claude result is an error (agent %s, code %s, result %r): %s",
                    self.config.agent_name,
                    event.error_code,
                    event.result,
                    friendly,
                )
                self.publish_leader_response("", "failed", "", friendly)
                self.current_result = ""
                return

            text = _message_text(event.message)
            if text is not None:
                self.current_result = text
            if not self.current_result and event.result:
                self.current_result = event.result

            self.publish_leader_response("", "completed", self.current_result, "")
            self.current_result = ""

        elif event.type == "tool_result":
            self.publish_activity_event(event, "tool result")

        elif event.type == "error":
            log.error("claude error event (agent %s)", self.config.agent_name)
            self.publish_activity_event(event, "error")

    def publish_activity_event(self, event: StreamEvent, action: str) -> None:
        """Publish an intermediate event to the team activity subject."""
        try:
            raw_event = event.to_dict()
        except ValueError as exc:
            log.error("failed to marshal activity event: %s", exc)
            return

        payload = ActivityEventPayload(
            event_type=event.type,
            agent_name=self.config.agent_name,
            tool_name=event.name,
            action=action,
            payload=raw_event,
        )
        try:
            msg = new_message(self.config.agent_name, "system", MessageType.ACTIVITY_EVENT, payload)
        except PayloadError as exc:
            log.error("failed to create activity event message: %s", exc)
            return
        try:
            subject = team_activity_channel(self.config.team_name)
        except InvalidSubjectError as exc:
            log.error("failed to build activity channel: %s", exc)
            return
        try:
            self.client.publish(subject, msg)
        except Exception as exc:  # noqa: BLE001
            log.debug("failed to publish activity event: %s", exc)

    def publish_leader_response(
        self, ref_message_id: str, status: str, result: str, error: str
    ) -> None:
        """Publish a leader response for the user to the team leader subject."""
        payload = LeaderResponsePayload(status=status, result=result, error=error)
        try:
            msg = new_message(self.config.agent_name, "user", MessageType.LEADER_RESPONSE, payload)
        except PayloadError as exc:
            log.error("failed to create leader response message: %s", exc)
            return
        msg.ref_message_id = ref_message_id
        try:
            subject = team_leader_channel(self.config.team_name)
        except InvalidSubjectError as exc:
            log.error("failed to build leader channel: %s", exc)
            return
        try:
            self.client.publish(subject, msg)
        except Exception as exc:  # noqa: BLE001
            log.error("failed to publish leader response: %s", exc)