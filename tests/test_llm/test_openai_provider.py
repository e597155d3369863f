import json

import pytest

from agentloop.exceptions import IncompleteStreamError
from agentloop.llm.openai import OpenAIProvider, ResponsesStreamAccumulator, build_responses_payload
from agentloop.messages import (
    Message,
    TextContent,
    ThinkingContent,
    ToolResultContent,
    ToolUseContent,
)

RESPONSE_EVENTS = [
    {"type": "response.created"},
    {"type": "response.output_item.added", "output_index": 0, "item": {"type": "reasoning", "id": "rs_1"}},
    {"type": "response.reasoning_summary_part.added", "output_index": 0},
    {"type": "response.reasoning_summary_text.delta", "output_index": 0, "delta": "Plan A."},
    {"type": "response.reasoning_summary_part.added", "output_index": 0},
    {"type": "response.reasoning_summary_text.delta", "output_index": 0, "delta": "Plan B."},
    {
        "type": "response.output_item.done",
        "output_index": 0,
        "item": {"type": "reasoning", "id": "rs_1", "encrypted_content": "enc"},
    },
    {
        "type": "response.output_item.added",
        "output_index": 1,
        "item": {"type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "exec_command", "arguments": ""},
    },
    {"type": "response.function_call_arguments.delta", "output_index": 1, "delta": '{"command":'},
    {"type": "response.function_call_arguments.delta", "output_index": 1, "delta": ' "date"}'},
    {
        "type": "response.output_item.done",
        "output_index": 1,
        "item": {"type": "function_call", "call_id": "call_1", "name": "exec_command", "arguments": '{"command": "date"}'},
    },
    {
        "type": "response.completed",
        "response": {
            "usage": {
                "input_tokens": 100,
                "input_tokens_details": {"cached_tokens": 60},
                "output_tokens": 20,
                "output_tokens_details": {"reasoning_tokens": 12},
                "total_tokens": 120,
            }
        },
    },
]


@pytest.mark.asyncio
async def test_responses_stream_yields_reasoning_and_function_call(make_client, encode_sse, chunked):
    client = make_client([(200, chunked(encode_sse(*RESPONSE_EVENTS, named=True), 23))])
    provider = OpenAIProvider("gpt-test", {"reasoning": {"effort": "low"}}, client=client)

    output = await provider.complete([Message.system("sys"), Message.user_text("what day")])

    thinking, tool_use = output.message.content
    assert thinking.thinking == "Plan A.\n\nPlan B."
    assert thinking.provider_metadata == {"id": "rs_1", "encrypted_content": "enc"}
    assert tool_use.tool_use_id == "call_1"
    assert tool_use.input == {"command": "date"}
    assert tool_use.provider_metadata == {"id": "fc_1"}

    assert output.usage["input"] == 40
    assert output.usage["cached"] == 60
    assert output.usage["reasoning"] == 12
    assert output.usage["total"] == 120

    request = client.requests[0]
    assert request["url"] == "https://api.openai.com/v1/responses"
    assert request["json"]["store"] is False
    assert request["json"]["include"] == ["reasoning.encrypted_content"]
    assert request["json"]["reasoning"] == {"effort": "low"}
    assert request["json"]["instructions"] == "sys"


@pytest.mark.parametrize("event_type", ["response.failed", "response.incomplete", "error"])
def test_responses_failure_events_are_retryable(event_type: str):
    accumulator = ResponsesStreamAccumulator()

    with pytest.raises(IncompleteStreamError, match=event_type):
        accumulator.feed({"type": event_type, "response": {"error": {"code": "server_error"}}})


def test_responses_stream_without_completed_event_is_incomplete():
    accumulator = ResponsesStreamAccumulator()
    accumulator.feed({"type": "response.output_text.delta", "output_index": 0, "delta": "hi"})

    with pytest.raises(IncompleteStreamError):
        accumulator.finish()


def test_responses_payload_replays_reasoning_calls_and_outputs():
    messages = [
        Message.system("sys"),
        Message.user_text("run date"),
        Message(
            "assistant",
            [
                ThinkingContent("thought", provider_metadata={"id": "rs_1", "encrypted_content": "enc"}),
                ThinkingContent("no id, dropped"),
                TextContent("Running."),
                ToolUseContent("call_1", "exec_command", {"command": "date"}),
            ],
        ),
        Message("user", [ToolResultContent("call_1", "exec_command", [TextContent("Mon")])]),
    ]

    payload = build_responses_payload(messages, [])

    items = payload["input"]
    assert items[0] == {"role": "user", "content": [{"type": "input_text", "text": "run date"}]}
    assert items[1] == {
        "type": "reasoning",
        "id": "rs_1",
        "summary": [{"type": "summary_text", "text": "thought"}],
        "encrypted_content": "enc",
    }
    assert items[2]["type"] == "message"
    assert items[3] == {
        "type": "function_call",
        "call_id": "call_1",
        "name": "exec_command",
        "arguments": json.dumps({"command": "date"}),
    }
    assert items[4] == {"type": "function_call_output", "call_id": "call_1", "output": "Mon"}
    assert len(items) == 5
