import asyncio

from backend.app.core.sse import ServerSentEvent, SSEDecoder, aiter_sse


def _decode_all(chunks):
    decoder = SSEDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return events


def test_single_frame():
    events = _decode_all([b'data: {"a": 1}\n\n'])
    assert events == [ServerSentEvent(data='{"a": 1}')]


def test_frames_split_at_every_byte_boundary():
    raw = b"data: hello\n\ndata: world\n\n"
    whole = _decode_all([raw])
    bytewise = _decode_all([raw[i : i + 1] for i in range(len(raw))])
    assert [e.data for e in whole] == ["hello", "world"]
    assert bytewise == whole


def test_crlf_split_across_chunks_is_one_line_ending():
    events = _decode_all([b"data: a\r", b"\n\r\n", b"data: b\r\n\r\n"])
    assert [e.data for e in events] == ["a", "b"]


def test_bare_cr_line_endings():
    events = _decode_all([b"data: x\r\rdata: y\r\r"])
    assert [e.data for e in events] == ["x", "y"]


def test_multiline_data_comments_and_fields():
    raw = (
        b": keep-alive\n"
        b"event: delta\n"
        b"id: 7\n"
        b"retry: 1500\n"
        b"data: line one\n"
        b"data:line two\n"
        b"\n"
    )
    (event,) = _decode_all([raw])
    assert event.event == "delta"
    assert event.id == "7"
    assert event.retry == 1500
    assert event.data == "line one\nline two"


def test_blank_lines_without_data_dispatch_nothing():
    assert _decode_all([b"\n\n: comment\n\n"]) == []


def test_multibyte_utf8_split_across_chunks():
    raw = "data: naïve café ☕\n\n".encode("utf-8")
    cut = raw.index("☕".encode("utf-8")) + 1
    (event,) = _decode_all([raw[:cut], raw[cut:]])
    assert event.data == "naïve café ☕"


def test_unterminated_last_event_is_flushed():
    events = _decode_all([b"data: first\n\ndata: tail"])
    assert [e.data for e in events] == ["first", "tail"]


def test_aiter_sse_over_async_chunks():
    async def chunks():
        yield b"data: 1\n"
        yield b"\ndata: 2\n\n"

    async def collect():
        return [e.data async for e in aiter_sse(chunks())]

    assert asyncio.run(collect()) == ["1", "2"]
