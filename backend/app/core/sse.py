from __future__ import annotations

import re
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, List, Optional

_LINE_END = re.compile(rb"\r\n|\r|\n")


@dataclass(frozen=True)
class ServerSentEvent:
    data: str
    event: str = "message"
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """
    Incremental `text/event-stream` decoder: feed bytes, get events.

    Follows the WHATWG parsing rules (any of CRLF/CR/LF ends a line, lines
    starting with ':' are comments, one optional space after the colon,
    a blank line dispatches). A line terminator split across two chunks is
    handled by holding back a trailing CR until the next chunk arrives.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._data: List[str] = []
        self._event = ""
        self._last_id: Optional[str] = None
        self._retry: Optional[int] = None

    def feed(self, chunk: bytes) -> List[ServerSentEvent]:
        self._buffer += chunk
        events: List[ServerSentEvent] = []
        for line in self._drain_lines(final=False):
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def flush(self) -> List[ServerSentEvent]:
        """
        Finish decoding at end of input.

        An event whose blank-line terminator never arrived is still
        dispatched if it carries data.
        """
        events: List[ServerSentEvent] = []
        for line in self._drain_lines(final=True):
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        event = self._dispatch()
        if event is not None:
            events.append(event)
        return events

    def _drain_lines(self, final: bool) -> List[str]:
        lines: List[str] = []
        while True:
            match = _LINE_END.search(self._buffer)
            if match is None:
                break
            if match.group() == b"\r" and match.end() == len(self._buffer) and not final:
                # Possibly the first half of a CRLF.
                break
            lines.append(self._buffer[: match.start()].decode("utf-8", errors="replace"))
            self._buffer = self._buffer[match.end() :]

        if final and self._buffer:
            lines.append(self._buffer.decode("utf-8", errors="replace"))
            self._buffer = b""
        return lines

    def _process_line(self, line: str) -> Optional[ServerSentEvent]:
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event = value
        elif field == "id":
            if "\0" not in value:
                self._last_id = value
        elif field == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._event = ""
            return None
        event = ServerSentEvent(
            data="\n".join(self._data),
            event=self._event or "message",
            id=self._last_id,
            retry=self._retry,
        )
        self._data = []
        self._event = ""
        return event


async def aiter_sse(chunks: AsyncIterable[bytes]) -> AsyncIterator[ServerSentEvent]:
    """Decode an async stream of byte chunks into server-sent events."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
