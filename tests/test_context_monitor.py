import pytest

from agentcrew.context_monitor import ContextMonitor, generate_resumption_prompt


def test_track_and_usage():
    cm = ContextMonitor(1000, 0.8)
    cm.track_input(bytes(200))
    assert cm.usage_percent() == 5
    assert cm.needs_compaction() is False


def test_needs_compaction():
    cm = ContextMonitor(100, 0.8)
    cm.track_input(bytes(400))
    assert cm.needs_compaction() is True
    assert cm.usage_percent() == 100


def test_reset():
    cm = ContextMonitor(100, 0.8)
    cm.track_input(bytes(400))
    cm.reset()
    assert cm.usage_percent() == 0
    assert cm.estimated_tokens == 0


def test_zero_max_tokens():
    cm = ContextMonitor(0, 0.8)
    cm.track_input(bytes(100))
    assert cm.usage_percent() == 0
    assert cm.needs_compaction() is False


def test_cumulative_tracking():
    cm = ContextMonitor(1000, 0.8)
    cm.track_input(bytes(400))
    cm.track_output(bytes(800))
    cm.track_input(bytes(1200))
    assert cm.estimated_tokens == 600
    assert cm.usage_percent() == 60


def test_small_input_counts_one_token_minimum():
    cm = ContextMonitor(10000, 0.8)
    cm.track_input(bytes(1))
    cm.track_output(bytes(2))
    assert cm.estimated_tokens == 2
    assert cm.usage_percent() == 0


def test_usage_capped_at_hundred():
    cm = ContextMonitor(10, 0.8)
    cm.track_input(bytes(4000))
    assert cm.usage_percent() == 100


@pytest.mark.parametrize(
    "size, expected",
    [(316, False), (320, True)],
)
def test_threshold_boundary(size, expected):
    cm = ContextMonitor(100, 0.8)
    cm.track_input(bytes(size))
    assert cm.needs_compaction() is expected


def test_generate_resumption_prompt():
    prompt = generate_resumption_prompt(
        "Deploy the service", "Terraform plan completed", ["main.tf", "variables.tf"]
    )
    assert "Deploy the service" in prompt
    assert "Terraform plan completed" in prompt
    assert "main.tf" in prompt
    assert "- variables.tf\n" in prompt
    assert "Continue from where you left off" in prompt


def test_generate_resumption_prompt_no_files():
    prompt = generate_resumption_prompt("Task", "Progress", None)
    assert "Modified Files" not in prompt
    assert prompt == (
        "You are resuming a task after a context compaction. Here is the context:\n\n"
        "## Original Task\nTask\n\n"
        "## Progress So Far\nProgress\n\n"
        "Continue from where you left off. Review the modified files to understand current state.\n"
    )