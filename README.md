# agentcrew

Building blocks for running a team of AI coding agents, where a leader
agent talks to a user over a NATS message bus and drives a Claude Code
CLI session on the user's behalf.

Modules:

- **`agentcrew.protocol`** – the JSON message envelope (`Message`), typed
  payloads (`UserMessagePayload`, `LeaderResponsePayload`,
  `SystemCommandPayload`, `ActivityEventPayload`,
  `ContainerValidationPayload`, `SkillStatusPayload`), the `MessageType`
  and `ValidationCheckStatus` enums, and the subject names a team uses.
- **`agentcrew.permissions`** – a fail-closed permission gate that checks
  tool names, shell commands (glob patterns, deny before allow) and
  filesystem paths against a configured scope.
- **`agentcrew.context_monitor`** – a rough token counter that tells when
  an agent's context should be compacted, and a resumption prompt
  builder.
- **`agentcrew.stream`** – parsing of the CLI's `stream-json` output into
  `StreamEvent` objects.
- **`agentcrew.manager`** – a `Manager` that runs `claude -p` once per
  input and keeps the conversation going with `--resume`.
- **`agentcrew.models`** – SQLAlchemy models for teams, agents, task logs
  and settings, stored in SQLite.
- **`agentcrew.natsclient`** – a small NATS client (plain text protocol
  over a TCP socket) for publishing and subscribing to protocol messages.
- **`agentcrew.bridge`** – the `Bridge` that ties the bus, the CLI manager
  and the permission gate together.

Requires Python 3.10 or later. The only runtime dependency is SQLAlchemy.
Driving real agents needs the `claude` command on `PATH` and a reachable
NATS server.

## Messages and channels

```python
from agentcrew.protocol import (
    LeaderResponsePayload,
    Message,
    MessageType,
    new_message,
    parse_payload,
    team_leader_channel,
)

msg = new_message(
    "leader",
    "user",
    MessageType.LEADER_RESPONSE,
    LeaderResponsePayload(status="completed", result="Deployment successful"),
)

wire = msg.to_json()
received = Message.from_json(wire)
reply = parse_payload(received, LeaderResponsePayload)
print(reply.status)                    # completed

print(team_leader_channel("myteam"))   # team.myteam.leader
```

`new_message` gives each message a fresh UUID and the current UTC time.
In the wire form the sender and recipient are the `from` and `to` keys.

Team names become part of a NATS subject, so `team_leader_channel` and
`team_activity_channel` raise `InvalidSubjectError` (a `ValueError`) for
empty names or names containing `.`, `*`, `>` or whitespace.
`validate_subject_token` makes the same check on its own. `parse_payload`
and `Message.from_json` raise `PayloadError` when the data does not
decode.

## Permission gate

```python
from agentcrew.permissions import Gate, PermissionConfig, match_pattern

gate = Gate(PermissionConfig(
    allowed_tools=["Bash", "Read", "Write"],
    allowed_commands=["terraform *", "kubectl get *"],
    denied_commands=["terraform destroy *", "kubectl delete *"],
    filesystem_scope="/workspace",
))

decision = gate.evaluate("Bash", "terraform plan", [])
print(decision.allowed)                # True

decision = gate.evaluate("Read", "", ["/workspace/../etc/passwd"])
print(decision.allowed, decision.reason)
# False path outside allowed scope: /workspace/../etc/passwd

print(match_pattern("*terraform*", "run terraform plan"))   # True
```

Evaluation order: the tool must be in `allowed_tools` (an empty list
permits nothing); a command matching any denied pattern is refused; a
non-empty `allowed_commands` list must match; every path must be the
scope or lie beneath it, with `..` and symlinks resolved first by
`is_path_in_scope`. An empty command skips the command checks. A
`Decision` is truthy when the action is allowed.

## Context tracking

```python
from agentcrew.context_monitor import ContextMonitor, generate_resumption_prompt

monitor = ContextMonitor(1000, 0.8)
monitor.track_input(b"x" * 400)
monitor.track_output(b"x" * 800)
print(monitor.usage_percent())         # 30
print(monitor.needs_compaction())      # False
monitor.reset()

prompt = generate_resumption_prompt(
    "Deploy the service",
    "Terraform plan completed",
    ["main.tf", "variables.tf"],
)
```

Each tracked chunk counts as one token per four bytes, and at least one.
Usage is capped at 100 percent; a `max_tokens` of 0 always reports 0 and
never asks for compaction.

## Stream events

```python
import queue
from agentcrew.stream import extract_tool_command, parse_stream_output

lines = [
    '{"type":"tool_use","name":"Bash","input":{"command":"ls"}}\n',
    '{"type":"result","result":"Done","session_id":"sess-1"}\n',
]
events = queue.Queue()
session_id = parse_stream_output(lines, events)   # "sess-1"
tool, command, paths = extract_tool_command(events.get())   # ("Bash", "ls", [])
```

Empty and unparseable lines are skipped; when the queue is full an event
is dropped. `StreamEvent.friendly_error` turns `billing_error` and
`authentication_error` codes into user-facing text, and
`format_tool_result` builds a JSON `tool_result` message.

## Running an agent

```python
from agentcrew.bridge import Bridge, BridgeConfig
from agentcrew.manager import Manager, ProcessConfig
from agentcrew.natsclient import connect, default_config
from agentcrew.permissions import Gate, PermissionConfig

manager = Manager(ProcessConfig(
    system_prompt="You are the team leader.",
    allowed_tools=["Bash", "Read"],
    work_dir="/workspace",
))
manager.start()

with connect(default_config("nats://localhost:4222", "leader")) as client:
    bridge = Bridge(
        BridgeConfig(
            agent_name="leader",
            team_name="myteam",
            role="leader",
            gate=Gate(PermissionConfig(allowed_tools=["Bash", "Read"])),
        ),
        client,
        manager,
    )
    with bridge:
        ...  # user messages on team.myteam.leader now reach Claude
```

`Manager.start` runs the system prompt once with `--output-format json`
to obtain a session ID and raises `ManagerError` if that fails.
`Manager.send_input` runs `claude -p ... --output-format stream-json`,
resuming the session, blocks until the process exits and puts the
parsed events on the queue returned by `read_events`; it raises
`ManagerError` when the manager is not running. A different program can
be run through the `command` keyword of `Manager`.

The bridge subscribes to `team.<name>.leader`, handles `user_message`
payloads and the `shutdown`, `restart` and `compact_context` system
commands, and publishes tool calls, assistant messages, tool results and
errors as activity events on `team.<name>.activity`. A final `result`
event becomes a leader response (`completed`, or `failed` with a friendly
error) on the leader subject. When the gate refuses a tool call, a
"Permission denied" tool result is sent back through the manager.

`natsclient.connect` raises `NatsError` when the server cannot be
reached. `Client.ensure_stream` creates or updates a JetStream stream
`TEAM_<name>` keeping `team.<name>.>` for 24 hours; it raises `NatsError`
when JetStream is disabled in the config.

## Storage

```python
from agentcrew.models import Team, TeamStatus, init_db

Session = init_db(":memory:")
with Session() as session:
    session.add(Team(id="team-001", name="demo", status=TeamStatus.STOPPED.value))
    session.commit()
```

`init_db` opens (or creates) an SQLite database, turns on WAL mode and
foreign keys, creates the `Team`, `Agent`, `TaskLog` and `Settings`
tables and returns a session factory. Deleting a team deletes its agents.
JSON columns are stored as text through `JSONText`; an empty or missing
value is written and read back as `null`.

## What the package does not do

There is no HTTP API, no web server and no command-line program here, and
nothing that deploys agents into containers. The NATS client has no TLS
support. The package supplies the pieces an orchestrator builds on: the
message protocol, permission checks, the CLI session manager, the bus
bridge and the database models.

## Tests

Install the `test` extra and run `pytest` from the project root.