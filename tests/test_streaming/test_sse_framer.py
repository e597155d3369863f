import pytest

from agentloop.streaming import SSEFramer, aiter_frames, iter_frames, parse_sse_frame

STREAM = (
    b'event: message_start\ndata: {"type": "message_start"}\n\n'
    b'event: content_block_delta\ndata: {"delta": "h\xc3\xa9llo"}\n\n'
    b": keep-alive comment\n\n"
    b'data: {"type": "message_stop"}\n\n'
    b'data: {"partial": '
)


def _as_tuples(frames):
    return [(frame.event, frame.data) for frame in frames]


def test_parse_sse_frame_reads_event_and_multiline_data():
    frame = parse_sse_frame(b"event: ping\ndata: first\ndata: second")

    assert frame.event == "ping"
    assert frame.data == "first\nsecond"


def test_sse_framer_yields_complete_frames_and_keeps_remainder():
    framer = SSEFramer()

    frames = framer.feed(STREAM)

    assert _as_tuples(frames) == [
        ("message_start", '{"type": "message_start"}'),
        ("content_block_delta", '{"delta": "héllo"}'),
        (None, '{"type": "message_stop"}'),
    ]
    assert framer.pending == len(b'data: {"partial": ')


@pytest.mark.parametrize("chunk_size", [1, 2, 3, 7, 16, 64])
def test_sse_framer_output_does_not_depend_on_chunking(chunk_size: int):
    whole = _as_tuples(SSEFramer().feed(STREAM))
    chunks = [STREAM[i : i + chunk_size] for i in range(0, len(STREAM), chunk_size)]

    split = _as_tuples(iter_frames(chunks, SSEFramer()))

    assert split == whole


def test_sse_framer_supports_crlf_delimiter():
    framer = SSEFramer(b"\r\n\r\n")

    frames = framer.feed(b'data: {"a": 1}\r\n\r\ndata: {"b"')
    frames += framer.feed(b': 2}\r\n\r\n')

    assert [frame.json() for frame in frames] == [{"a": 1}, {"b": 2}]
    assert framer.pending == 0


def test_sse_framer_rejects_empty_delimiter():
    with pytest.raises(ValueError):
        SSEFramer(b"")


@pytest.mark.asyncio
async def test_aiter_frames_pulls_chunks_sequentially():
    async def chunks():
        yield b"data: 1\n"
        yield b"\ndata: 2\n\n"

    frames = [frame.data async for frame in aiter_frames(chunks(), SSEFramer())]

    assert frames == ["1", "2"]
