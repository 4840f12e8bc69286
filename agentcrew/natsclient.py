"""A small NATS client speaking the text protocol, with helpers for team messages."""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from .protocol import Message, PayloadError

log = logging.getLogger(__name__)

_DEFAULT_PORT = 4222
_CONNECT_TIMEOUT = 5.0
_FLUSH_TIMEOUT = 10.0
_REQUEST_TIMEOUT = 5.0
_STREAM_NOT_FOUND = 10059
_DAY_NS = 24 * 60 * 60 * 1_000_000_000


@dataclass
class ClientConfig:
    """Settings of a NATS connection. ``reconnect_wait`` is in seconds."""

    url: str = ""
    name: str = ""
    token: str = ""
    max_reconnects: int = 0
    reconnect_wait: float = 0.0
    jetstream_enabled: bool = False


class NatsError(RuntimeError):
    """A NATS operation failed."""


def default_config(url: str, name: str) -> ClientConfig:
    """A config with unlimited reconnects every two seconds and JetStream on."""
    return ClientConfig(url=url, name=name, max_reconnects=-1, reconnect_wait=2.0,
                        jetstream_enabled=True)


def _address(url: str) -> tuple[str, int, str]:
    parts = urlsplit(url if "://" in url else f"nats://{url}")
    if not parts.hostname:
        raise NatsError(f"invalid nats url {url!r}")
    return parts.hostname, parts.port or _DEFAULT_PORT, parts.username or ""


class Client:
    """A connection to a NATS server with protocol-message helpers."""

    def __init__(self, config: ClientConfig) -> None:
        self.config = config
        self._send_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._subs: dict[int, tuple[str, Callable[[bytes], None]]] = {}
        self._next_sid = 1
        self._pongs: deque[threading.Event] = deque()
        self._sock: socket.socket | None = None
        self._reader: Any = None
        self._connected = False
        self._closed = False
        self._thread: threading.Thread | None = None

    # -- connection handling -------------------------------------------------

    def _open(self) -> None:
        host, port, url_token = _address(self.config.url)
        sock = socket.create_connection((host, port), timeout=_CONNECT_TIMEOUT)
        try:
            reader = sock.makefile("rb")
            line = reader.readline()
            if not line.startswith(b"INFO"):
                raise NatsError(f"unexpected greeting from server: {line!r}")
            options: dict[str, Any] = {
                "verbose": False, "pedantic": False, "lang": "python",
                "version": "1", "protocol": 1, "name": self.config.name,
            }
            token = self.config.token or url_token
            if token:
                options["auth_token"] = token
            sock.sendall(f"CONNECT {json.dumps(options)}\r\nPING\r\n".encode())
            while True:
                line = reader.readline()
                if not line:
                    raise NatsError("connection closed during handshake")
                if line.startswith(b"PONG"):
                    break
                if line.startswith(b"-ERR"):
                    raise NatsError(f"server error: {line.decode(errors='replace').strip()}")
            sock.settimeout(None)
        except BaseException:
            sock.close()
            raise
        self._sock, self._reader = sock, reader
        self._connected = True

    def _start_reader(self) -> None:
        self._thread = threading.Thread(target=self._read_loop, daemon=True)
        self._thread.start()

    def _send(self, data: bytes) -> None:
        with self._send_lock:
            if not self._connected or self._sock is None:
                raise NatsError("nats connection is not open")
            try:
                self._sock.sendall(data)
            except OSError as exc:
                raise NatsError(f"sending to nats: {exc}") from exc

    def _read_loop(self) -> None:
        while True:
            try:
                self._read_messages()
            except (OSError, ValueError) as exc:
                log.debug("nats read failed: %s", exc)
            self._connected = False
            for waiter in list(self._pongs):
                waiter.set()
            self._pongs.clear()
            if self._closed:
                return
            log.warning("nats disconnected")
            if not self._reconnect():
                self._closed = True
                log.info("nats connection closed")
                return

    def _read_messages(self) -> None:
        reader = self._reader
        while True:
            line = reader.readline()
            if not line:
                return
            if line.startswith(b"MSG"):
                parts = line.split()
                sid, size = int(parts[2]), int(parts[-1])
                data = reader.read(size + 2)[:size]
                with self._state_lock:
                    entry = self._subs.get(sid)
                if entry is not None:
                    try:
                        entry[1](data)
                    except Exception:  # noqa: BLE001
                        log.exception("nats handler failed")
            elif line.startswith(b"PING"):
                self._send(b"PONG\r\n")
            elif line.startswith(b"PONG"):
                if self._pongs:
                    self._pongs.popleft().set()
            elif line.startswith(b"-ERR"):
                log.warning("nats server error: %s", line.decode(errors="replace").strip())

    def _reconnect(self) -> bool:
        attempts = 0
        while not self._closed and (self.config.max_reconnects < 0
                                    or attempts < self.config.max_reconnects):
            attempts += 1
            time.sleep(self.config.reconnect_wait)
            try:
                self._open()
            except (OSError, NatsError) as exc:
                log.debug("nats reconnect attempt %d failed: %s", attempts, exc)
                continue
            with self._state_lock:
                subs = list(self._subs.items())
            for sid, (subject, _) in subs:
                self._send(f"SUB {subject} {sid}\r\n".encode())
            log.info("nats reconnected to %s", self.config.url)
            return True
        return False

    # -- public API ----------------------------------------------------------

    def _subscribe_raw(self, subject: str, handler: Callable[[bytes], None]) -> int:
        with self._state_lock:
            sid = self._next_sid
            self._next_sid += 1
            self._subs[sid] = (subject, handler)
        try:
            self._send(f"SUB {subject} {sid}\r\n".encode())
        except NatsError:
            with self._state_lock:
                self._subs.pop(sid, None)
            raise
        return sid

    def _unsubscribe(self, sid: int) -> None:
        with self._state_lock:
            self._subs.pop(sid, None)
        self._send(f"UNSUB {sid}\r\n".encode())

    def _publish_raw(self, subject: str, data: bytes, reply: str = "") -> None:
        head = f"PUB {subject} {reply} {len(data)}" if reply else f"PUB {subject} {len(data)}"
        self._send(head.encode() + b"\r\n" + data + b"\r\n")

    def _request(self, subject: str, data: bytes) -> bytes:
        inbox = f"_INBOX.{uuid.uuid4().hex}"
        done = threading.Event()
        box: list[bytes] = []

        def on_reply(reply: bytes) -> None:
            box.append(reply)
            done.set()

        sid = self._subscribe_raw(inbox, on_reply)
        try:
            self._publish_raw(subject, data, inbox)
            if not done.wait(_REQUEST_TIMEOUT):
                raise NatsError(f"request to {subject} timed out")
        finally:
            try:
                self._unsubscribe(sid)
            except NatsError:
                pass
        return box[0]

    def ensure_stream(self, team_name: str) -> None:
        """Create or update the JetStream stream keeping a team's messages for a day."""
        if not self.config.jetstream_enabled:
            raise NatsError("jetstream not enabled")
        stream = f"TEAM_{team_name}"
        subjects = [f"team.{team_name}.>"]
        body = json.dumps({
            "name": stream, "subjects": subjects, "retention": "limits",
            "max_age": _DAY_NS, "storage": "file", "num_replicas": 1,
        }).encode()
        reply = json.loads(self._request(f"$JS.API.STREAM.UPDATE.{stream}", body))
        error = reply.get("error")
        if error and error.get("err_code") == _STREAM_NOT_FOUND:
            reply = json.loads(self._request(f"$JS.API.STREAM.CREATE.{stream}", body))
            error = reply.get("error")
        if error:
            raise NatsError(f"creating stream {stream}: {error.get('description', error)}")
        log.info("jetstream stream ensured: %s %s", stream, subjects)

    def publish(self, subject: str, msg: Message) -> None:
        """Send a protocol message to subject."""
        try:
            data = msg.to_json().encode()
        except (PayloadError, TypeError) as exc:
            raise NatsError(f"marshaling message: {exc}") from exc
        self._publish_raw(subject, data)

    def subscribe(self, subject: str, handler: Callable[[Message], None]) -> None:
        """Call handler with each protocol message received on subject."""
        def on_data(data: bytes) -> None:
            try:
                msg = Message.from_json(data)
            except PayloadError as exc:
                log.warning("failed to unmarshal nats message on %s: %s", subject, exc)
                return
            handler(msg)

        try:
            self._subscribe_raw(subject, on_data)
        except NatsError as exc:
            raise NatsError(f"subscribing to {subject}: {exc}") from exc

    def flush(self) -> None:
        """Wait until the server has processed everything sent so far."""
        waiter = threading.Event()
        with self._send_lock:
            self._pongs.append(waiter)
        self._send(b"PING\r\n")
        if not waiter.wait(_FLUSH_TIMEOUT) or not self._connected:
            raise NatsError("flush failed: no reply from server")

    def close(self) -> None:
        """Drop all subscriptions and close the connection."""
        if self._closed:
            return
        with self._state_lock:
            sids = list(self._subs)
        try:
            for sid in sids:
                self._unsubscribe(sid)
            self.flush()
        except NatsError as exc:
            log.debug("draining subscriptions: %s", exc)
        self._closed = True
        self._connected = False
        if self._sock is not None:
            try:
                self._sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            self._sock.close()
        log.info("nats client closed")

    def is_connected(self) -> bool:
        """True while the connection is open."""
        return self._connected and not self._closed

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def connect(config: ClientConfig) -> Client:
    """Open a connection to the NATS server named by config."""
    client = Client(config)
    try:
        client._open()
    except (OSError, NatsError) as exc:
        raise NatsError(f"connecting to nats {config.url}: {exc}") from exc
    client._start_reader()
    log.info("nats connected to %s as %s", config.url, config.name)
    return client