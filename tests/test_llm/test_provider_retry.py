import pytest

from agentloop.config import RetryConfig
from agentloop.exceptions import LLMAPIError
from agentloop.llm.anthropic import AnthropicProvider
from agentloop.llm.base import PartialContentEmitter, parse_tool_arguments
from agentloop.llm.gemini import GeminiProvider
from agentloop.messages import Message, TextContent

ANTHROPIC_OK = [
    {"type": "message_start", "message": {"usage": {"input_tokens": 1}}},
    {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "done"}},
    {"type": "content_block_stop", "index": 0},
    {"type": "message_stop"},
]


def test_parse_tool_arguments_handles_empty_and_non_object_buffers():
    assert parse_tool_arguments("") == ({}, None)
    assert parse_tool_arguments('{"a": 1}') == ({"a": 1}, None)
    assert parse_tool_arguments("[1, 2]") == ({}, "Tool input must be a JSON object")


def test_partial_emitter_synthesizes_missing_stop_on_type_change():
    partials = []
    emitter = PartialContentEmitter(partials.append)

    emitter.delta("tool_use", "{}")
    emitter.delta("text", "hi")
    emitter.stop()

    assert [(p.type, p.position) for p in partials] == [
        ("tool_use", "start"),
        ("tool_use", "delta"),
        ("tool_use", "stop"),
        ("text", "start"),
        ("text", "delta"),
        ("text", "stop"),
    ]


@pytest.mark.asyncio
async def test_rate_limit_and_server_errors_retry_with_backoff(make_client, encode_sse, no_sleep):
    client = make_client([
        (429, [b"slow down"]),
        (503, [b"unavailable"]),
        (200, [encode_sse(*ANTHROPIC_OK)]),
    ])
    provider = AnthropicProvider("claude-test", client=client)

    output = await provider.complete([Message.user_text("hi")])

    assert output.message.content == [TextContent("done")]
    assert no_sleep == [2, 4]
    assert len(client.requests) == 3


@pytest.mark.asyncio
async def test_stream_without_terminal_event_is_retried(make_client, encode_sse, no_sleep):
    client = make_client([
        (200, [encode_sse(*ANTHROPIC_OK[:-1])]),
        (200, [encode_sse(*ANTHROPIC_OK)]),
    ])
    provider = AnthropicProvider("claude-test", client=client)

    output = await provider.complete([Message.user_text("hi")])

    assert output.message.content == [TextContent("done")]
    assert no_sleep == [2]


@pytest.mark.asyncio
async def test_max_attempts_turns_persistent_failures_into_api_error(make_client, no_sleep):
    client = make_client([(500, [b"boom"])] * 3)
    provider = AnthropicProvider("claude-test", client=client, retry=RetryConfig(max_attempts=2))

    with pytest.raises(LLMAPIError, match="after 3 attempts"):
        await provider.complete([Message.user_text("hi")])

    assert no_sleep == [2, 4]


@pytest.mark.asyncio
async def test_gemini_no_candidate_retries_with_continue_turn(make_client, encode_sse, no_sleep):
    crlf = b"\r\n\r\n"
    client = make_client([
        (200, [encode_sse({"usageMetadata": {"promptTokenCount": 3}}, delimiter=crlf)]),
        (
            200,
            [encode_sse({"candidates": [{"content": {"parts": [{"text": "ok"}]}, "finishReason": "STOP"}]}, delimiter=crlf)],
        ),
    ])
    provider = GeminiProvider("gemini-test", client=client)

    output = await provider.complete([Message.user_text("hi")])

    assert output.message.content == [TextContent("ok")]
    retried_contents = client.requests[1]["json"]["contents"]
    assert retried_contents[-1] == {"role": "user", "parts": [{"text": "continue"}]}
    assert len(client.requests[0]["json"]["contents"]) == 1


@pytest.mark.asyncio
async def test_backoff_doubles_and_caps_at_sixteen_seconds(make_client, no_sleep):
    client = make_client([(502, [b"bad gateway"])] * 7)
    provider = AnthropicProvider("claude-test", client=client, retry=RetryConfig(max_attempts=6))

    with pytest.raises(LLMAPIError, match="after 7 attempts"):
        await provider.complete([Message.user_text("hi")])

    assert no_sleep == [2, 4, 8, 16, 16, 16]


@pytest.mark.asyncio
async def test_backoff_follows_retry_config(make_client, encode_sse, no_sleep):
    client = make_client([(429, [b""]), (429, [b""]), (429, [b""]), (200, [encode_sse(*ANTHROPIC_OK)])])
    retry = RetryConfig(initial_interval=1.0, multiplier=3.0, max_interval=5.0)
    provider = AnthropicProvider("claude-test", client=client, retry=retry)

    await provider.complete([Message.user_text("hi")])

    assert no_sleep == [1, 3, 5]


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(make_client, no_sleep):
    client = make_client([(401, [b"bad key"])])
    provider = AnthropicProvider("claude-test", client=client)

    with pytest.raises(LLMAPIError, match="status=401"):
        await provider.complete([Message.user_text("hi")])

    assert no_sleep == []
    assert len(client.requests) == 1
