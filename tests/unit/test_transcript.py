import pytest

from orchestra.memory.transcript import MAX_HISTORY, Transcript, estimate_tokens, message_tokens
from orchestra.schemas.messages import AgentMessage, ToolCall, ToolResult


def fill(transcript, count):
    for i in range(count):
        transcript.append(AgentMessage(role="user" if i % 2 == 0 else "assistant", content=f"message {i}"))


def test_token_count_is_incremental_and_includes_tool_payloads():
    transcript = Transcript()
    transcript.append(AgentMessage(role="user", content="x" * 8))
    assert transcript.token_count == 2

    call = ToolCall(id="c1", name="read", input={"path": "a.py"})
    transcript.append(AgentMessage(role="assistant", content="", tool_calls=[call]))
    transcript.append(
        AgentMessage(role="user", tool_results=[ToolResult(tool_call_id="c1", output="y" * 12)])
    )

    assert transcript.token_count == 2 + estimate_tokens('{"path": "a.py"}') + 3
    assert transcript.token_count == sum(message_tokens(m) for m in transcript.all())


def test_no_trim_needed_below_threshold():
    transcript = Transcript(MAX_HISTORY)
    fill(transcript, 39)

    assert not transcript.needs_trim()


def test_trim_below_capacity_keeps_everything():
    transcript = Transcript(MAX_HISTORY)
    fill(transcript, 45)

    assert transcript.needs_trim()
    assert transcript.trim() is False
    assert len(transcript) == 45


def test_trim_keeps_first_message_and_most_recent_tail():
    transcript = Transcript(MAX_HISTORY)
    fill(transcript, 60)

    assert transcript.trim() is True

    messages = transcript.all()
    assert len(messages) == MAX_HISTORY
    assert messages[0].content == "message 0"
    assert [m.content for m in messages[1:]] == [f"message {i}" for i in range(11, 60)]
    assert transcript.token_count == sum(message_tokens(m) for m in messages)


def test_snapshot_is_a_deep_copy():
    transcript = Transcript()
    transcript.append(AgentMessage(role="assistant", tool_calls=[ToolCall(id="c1", name="t", input={"k": 1})]))

    snapshot = transcript.snapshot()
    snapshot[0].tool_calls[0].input["k"] = 2

    assert transcript.all()[0].tool_calls[0].input["k"] == 1


def test_reset_clears_messages_and_tokens():
    transcript = Transcript()
    fill(transcript, 5)

    transcript.reset([AgentMessage(role="user", content="abcd")])

    assert len(transcript) == 1
    assert transcript.token_count == 1
    assert transcript.first().content == "abcd"


def test_history_must_hold_first_and_latest_message():
    with pytest.raises(ValueError):
        Transcript(max_history=1)
