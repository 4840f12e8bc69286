import queue
import sys
import textwrap

import pytest

from agentcrew.manager import Manager, ManagerError, ProcessConfig

FAKE_CLI = textwrap.dedent(
    """
    import json, os, sys
    args = sys.argv[1:]
    fmt = args[args.index("--output-format") + 1]
    tools = [args[i + 1] for i, a in enumerate(args) if a == "--allowedTools"]
    if fmt == "json":
        print(json.dumps({"session_id": "sess-init"}))
    else:
        resume = args[args.index("--resume") + 1] if "--resume" in args else ""
        prompt = args[args.index("-p") + 1]
        print(json.dumps({
            "type": "assistant",
            "message": {"type": "text", "text": prompt},
            "input": {"tools": tools, "headless": os.environ.get("CLAUDE_HEADLESS", "")},
        }))
        print("garbage line")
        print(json.dumps({"type": "result", "result": resume, "session_id": "sess-next"}))
        sys.stderr.write("some diagnostics\\n")
    """
)

FAILING_CLI = "import sys\nsys.exit(3)\n"
NO_SESSION_CLI = "print('{}')\n"


def drain(q):
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


def script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(body)
    return [sys.executable, str(path)]


@pytest.fixture
def fake_cli(tmp_path):
    return script(tmp_path, "fake_cli.py", FAKE_CLI)


def test_initial_state():
    m = Manager(ProcessConfig(system_prompt="You are a test agent", allowed_tools=["Bash"],
                              work_dir="/tmp", max_tokens=100000))
    assert m.status() == "stopped"
    assert m.is_running() is False


def test_stop_when_not_running():
    m = Manager(ProcessConfig())
    m.stop()
    assert m.status() == "stopped"


def test_send_input_when_not_running():
    m = Manager(ProcessConfig())
    with pytest.raises(ManagerError, match="not running"):
        m.send_input("hello")


def test_start_without_prompt_then_send(fake_cli, tmp_path):
    m = Manager(ProcessConfig(allowed_tools=["Read", "Bash"], work_dir=str(tmp_path)),
                command=fake_cli)
    m.start()
    assert m.is_running() is True
    assert m.session_id == ""
    m.send_input("hello")
    events = drain(m.read_events())
    assert [e.type for e in events] == ["assistant", "result"]
    assert events[0].message["text"] == "hello"
    assert events[0].input == {"tools": ["Read", "Bash"], "headless": "1"}
    assert events[1].result == ""
    assert m.session_id == "sess-next"


def test_start_with_prompt_establishes_session(fake_cli):
    m = Manager(ProcessConfig(system_prompt="be helpful"), command=fake_cli)
    m.start()
    assert m.session_id == "sess-init"
    m.send_input("next")
    events = drain(m.read_events())
    assert events[-1].result == "sess-init"
    m.send_input("again")
    assert drain(m.read_events())[-1].result == "sess-next"


def test_start_twice_raises(fake_cli):
    m = Manager(ProcessConfig(), command=fake_cli)
    m.start()
    with pytest.raises(ManagerError, match="already running"):
        m.start()


def test_failed_initial_prompt_sets_error(tmp_path):
    m = Manager(ProcessConfig(system_prompt="x"), command=script(tmp_path, "f.py", FAILING_CLI))
    with pytest.raises(ManagerError, match="initializing claude session"):
        m.start()
    assert m.status() == "error"


def test_missing_session_id_is_error(tmp_path):
    m = Manager(ProcessConfig(system_prompt="x"), command=script(tmp_path, "n.py", NO_SESSION_CLI))
    with pytest.raises(ManagerError, match="missing session_id"):
        m.start()


def test_missing_program_raises(tmp_path):
    m = Manager(ProcessConfig(), command=[str(tmp_path / "does-not-exist")])
    m.start()
    with pytest.raises(ManagerError, match="starting claude process"):
        m.send_input("hi")


def test_restart_keeps_queue_and_drains(fake_cli):
    m = Manager(ProcessConfig(), command=fake_cli)
    events = m.read_events()
    m.start()
    m.send_input("hello")
    assert events.qsize() == 2
    m.restart("resume here")
    assert m.read_events() is events
    assert events.qsize() == 0
    assert m.is_running() is True
    assert m.session_id == "sess-init"


def test_config_not_shared():
    config = ProcessConfig(allowed_tools=["Bash"])
    m = Manager(config)
    config.allowed_tools.append("Read")
    with pytest.raises(ManagerError):
        m.send_input("x")
    assert config.allowed_tools == ["Bash", "Read"]
    assert m.status() == "stopped"