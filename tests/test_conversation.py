import json
import time

import pytest

from a11y_llm_fixer.conversation import (
    MAX_ITERATIONS_TEXT,
    ConversationCancelled,
    ConversationLoop,
    LLMCallError,
    build_user_prompt,
    parse_tool_call,
)
from a11y_llm_fixer.schema import AssistantReply, ToolCall
from a11y_llm_fixer.tools import ToolInvoker


class ScriptedClient:
    """Returns queued replies and checks tool call/result pairing on every request."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def complete(self, messages, tools):
        self.requests.append(messages)
        assert_paired(messages)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class AlwaysToolClient:
    def __init__(self):
        self.n = 0

    def complete(self, messages, tools):
        assert_paired(messages)
        self.n += 1
        return AssistantReply(tool_calls=[
            ToolCall(id=f"call_{self.n}", name="check_color_contrast",
                     arguments={"foreground": "#777777", "background": "#ffffff"}),
        ])


def assert_paired(messages):
    """Every assistant tool call must be answered by exactly one following tool message."""
    i = 0
    while i < len(messages):
        msg = messages[i]
        i += 1
        if msg["role"] != "assistant" or not msg.get("tool_calls"):
            continue
        expected = [tc["id"] for tc in msg["tool_calls"]]
        answered = []
        while i < len(messages) and messages[i]["role"] == "tool":
            answered.append(messages[i]["tool_call_id"])
            i += 1
        assert answered == expected


def contrast_call(call_id):
    return ToolCall(id=call_id, name="check_color_contrast",
                    arguments={"foreground": "#000000", "background": "#ffffff"})


def test_final_answer_without_tools():
    client = ScriptedClient([AssistantReply(content='{"summary": "ok", "fixes": []}')])
    res = ConversationLoop(client, ToolInvoker(None)).run("prompt")
    assert res.final_text == '{"summary": "ok", "fixes": []}'
    assert res.tool_call_rounds == 0
    assert not res.exhausted
    assert [m.role for m in res.transcript] == ["system", "user", "assistant"]


def test_tool_calls_executed_in_order_and_paired():
    client = ScriptedClient([
        AssistantReply(tool_calls=[contrast_call("a"), ToolCall(id="b", name="nope"), contrast_call("c")]),
        AssistantReply(tool_calls=[contrast_call("d")]),
        AssistantReply(content="done"),
    ])
    res = ConversationLoop(client, ToolInvoker(None), max_iterations=5).run("prompt")
    assert res.final_text == "done"
    assert res.tool_call_rounds == 2
    tool_msgs = [m for m in res.transcript if m.role == "tool"]
    assert [m.tool_call_id for m in tool_msgs] == ["a", "b", "c", "d"]
    # Unknown tool is answered with an error payload, not an exception
    assert "error" in json.loads(tool_msgs[1].content)
    assert json.loads(tool_msgs[0].content)["wcagAA"] is True
    assert len(client.requests) == 3


def test_exhaustion_after_max_iterations():
    client = AlwaysToolClient()
    res = ConversationLoop(client, ToolInvoker(None), max_iterations=3).run("prompt")
    assert res.exhausted
    assert res.final_text == MAX_ITERATIONS_TEXT
    assert res.tool_call_rounds == 3
    assert client.n == 3
    # Last round's calls were still answered
    assert res.transcript[-1].role == "tool"
    assert res.transcript[-1].tool_call_id == "call_3"


def test_many_calls_per_turn_still_bounded():
    class Flood:
        calls = 0

        def complete(self, messages, tools):
            Flood.calls += 1
            return AssistantReply(tool_calls=[contrast_call(f"{Flood.calls}-{i}") for i in range(10)])

    res = ConversationLoop(Flood(), ToolInvoker(None), max_iterations=2).run("prompt")
    assert res.exhausted
    assert Flood.calls == 2
    assert sum(1 for m in res.transcript if m.role == "tool") == 20


def test_llm_failure_preserves_transcript():
    client = ScriptedClient([
        AssistantReply(tool_calls=[contrast_call("a")]),
        RuntimeError("rate limited"),
    ])
    with pytest.raises(LLMCallError) as excinfo:
        ConversationLoop(client, ToolInvoker(None)).run("prompt")
    roles = [m.role for m in excinfo.value.transcript]
    assert roles == ["system", "user", "assistant", "tool"]
    assert "rate limited" in str(excinfo.value)


def test_deadline_cancels_before_next_step():
    client = ScriptedClient([AssistantReply(content="never")])
    with pytest.raises(ConversationCancelled) as excinfo:
        ConversationLoop(client, ToolInvoker(None)).run("prompt", deadline=time.monotonic() - 1)
    assert client.requests == []
    assert len(excinfo.value.transcript) == 2


def test_bad_tool_arguments_answered_with_error():
    call = parse_tool_call("x", "check_color_contrast", "{not json")
    assert call.arguments_error
    client = ScriptedClient([AssistantReply(tool_calls=[call]), AssistantReply(content="ok")])
    res = ConversationLoop(client, ToolInvoker(None)).run("prompt")
    tool_msg = [m for m in res.transcript if m.role == "tool"][0]
    assert "Invalid JSON" in json.loads(tool_msg.content)["error"]


def test_parse_tool_call_rejects_non_object():
    assert parse_tool_call("x", "get_accessibility_rules", "[1, 2]").arguments_error
    assert parse_tool_call("x", "get_accessibility_rules", None).arguments == {}


def test_invalid_max_iterations():
    with pytest.raises(ValueError):
        ConversationLoop(ScriptedClient([]), ToolInvoker(None), max_iterations=0)


def test_user_prompt_includes_document_and_analysis():
    prompt = build_user_prompt("<p>x</p>", "index.html", {"violations": []})
    assert "index.html" in prompt
    assert "<p>x</p>" in prompt
    assert '"violations": []' in prompt
    assert "originalCode" in prompt
