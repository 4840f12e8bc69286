import io
import json
import queue

import pytest

from agentcrew.stream import (
    StreamEvent,
    extract_tool_command,
    format_tool_result,
    parse_stream_event,
    parse_stream_output,
)


def drain(q):
    items = []
    while True:
        try:
            items.append(q.get_nowait())
        except queue.Empty:
            return items


@pytest.mark.parametrize(
    "line, want_type",
    [
        ('{"type":"assistant","message":{"type":"text","text":"Hello"}}', "assistant"),
        ('{"type":"tool_use","name":"Bash","input":{"command":"ls -la"}}', "tool_use"),
        ('{"type":"result","message":{"type":"text","text":"Done"}}', "result"),
    ],
)
def test_parse_stream_event(line, want_type):
    assert parse_stream_event(line).type == want_type


def test_parse_stream_event_invalid_json():
    with pytest.raises(ValueError):
        parse_stream_event("{invalid")


def test_parse_stream_event_wrong_field_type():
    with pytest.raises(ValueError):
        parse_stream_event('{"type": 5}')


def test_parse_stream_event_fields():
    event = parse_stream_event(
        b'{"type":"result","is_error":true,"error":"billing_error","result":"no","session_id":"s1"}'
    )
    assert event.is_error is True
    assert event.error_code == "billing_error"
    assert event.result == "no"
    assert event.session_id == "s1"


def test_extract_tool_command_bash():
    event = StreamEvent(type="tool_use", name="Bash", input={"command": "terraform plan"})
    assert extract_tool_command(event) == ("Bash", "terraform plan", [])


def test_extract_tool_command_read():
    event = StreamEvent(type="tool_use", name="Read", input=b'{"file_path":"/workspace/main.tf"}')
    assert extract_tool_command(event) == ("Read", "", ["/workspace/main.tf"])


def test_extract_tool_command_empty_input():
    event = StreamEvent(type="tool_use", name="SomeTool")
    assert extract_tool_command(event) == ("SomeTool", "", [])


def test_extract_tool_command_invalid_json():
    event = StreamEvent(type="tool_use", name="Bash", input=b"{invalid")
    assert extract_tool_command(event) == ("Bash", "", [])


def test_extract_tool_command_glob_pattern_not_extracted():
    event = StreamEvent(type="tool_use", name="Glob", input={"pattern": "**/*.go"})
    assert extract_tool_command(event) == ("Glob", "", [])


def test_format_tool_result():
    parsed = json.loads(format_tool_result("output text", False))
    assert parsed == {"type": "tool_result", "output": "output text", "is_error": False}


def test_format_tool_result_error():
    parsed = json.loads(format_tool_result("something failed", True))
    assert parsed["is_error"] is True


def test_parse_stream_output():
    lines = "\n".join(
        [
            '{"type":"assistant","message":{"type":"text","text":"Hello"}}',
            "",
            '{"type":"tool_use","name":"Bash","input":{"command":"ls"}}',
            '{"type":"result","message":{"type":"text","text":"Done"},"session_id":"sess-abc123"}',
        ]
    )
    q = queue.Queue(maxsize=10)
    session_id = parse_stream_output(io.BytesIO(lines.encode()), q)
    events = drain(q)
    assert [e.type for e in events] == ["assistant", "tool_use", "result"]
    assert session_id == "sess-abc123"


def test_parse_stream_output_unparseable_lines():
    text = (
        "not json at all\n"
        '{"type":"assistant","message":{"type":"text","text":"Valid"}}\n'
        "another bad line\n"
    )
    q = queue.Queue(maxsize=10)
    session_id = parse_stream_output(io.StringIO(text), q)
    events = drain(q)
    assert len(events) == 1
    assert events[0].type == "assistant"
    assert session_id == ""


def test_parse_stream_output_drops_when_full():
    lines = [f'{{"type":"assistant","session_id":"s{i}"}}\n' for i in range(5)]
    q = queue.Queue(maxsize=2)
    session_id = parse_stream_output(lines, q)
    assert len(drain(q)) == 2
    assert session_id == "s4"


def test_parse_stream_output_crlf_lines():
    q = queue.Queue()
    parse_stream_output(['{"type":"error"}\r\n'], q)
    assert [e.type for e in drain(q)] == ["error"]


@pytest.mark.parametrize(
    "code, result, expected",
    [
        (
            "billing_error",
            "",
            "Your API key has insufficient credits. Please add credits or update your key in Settings.",
        ),
        ("authentication_error", "", "API key is invalid or expired. Please update it in Settings."),
        ("other", "boom", "Claude returned an error: boom"),
        ("weird", "", "Claude returned an unknown error (code: weird)"),
    ],
)
def test_friendly_error(code, result, expected):
    assert StreamEvent(type="result", error_code=code, result=result).friendly_error() == expected


def test_to_dict_omits_empty_and_round_trips():
    event = StreamEvent(type="tool_use", name="Bash", input={"command": "ls"})
    data = event.to_dict()
    assert data == {"type": "tool_use", "name": "Bash", "input": {"command": "ls"}}
    assert StreamEvent.from_dict(data) == event


def test_to_dict_uses_error_key():
    data = StreamEvent(type="result", is_error=True, error_code="billing_error").to_dict()
    assert data == {"type": "result", "is_error": True, "error": "billing_error"}