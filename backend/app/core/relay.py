from __future__ import annotations

import asyncio
from typing import AsyncIterator, List

from ..observability.logging import get_logger
from .llm import AnswerStream, LLMError, StreamCompleted, StreamEvent, TextDelta

logger = get_logger("core.relay")


class StreamingRelay:
    """
    Projects a generation's event stream onto raw UTF-8 text for the client.

    Only text deltas are forwarded, in emission order. The upstream stream
    is closed exactly once: at the terminal event, at natural end of data,
    on error, or when the client goes away.
    """

    def __init__(self, stream: AnswerStream) -> None:
        self._stream = stream
        self._events = stream.__aiter__()
        self._pending: List[StreamEvent] = []
        self._closed = False

    async def prime(self) -> None:
        """
        Pull the first event before any bytes are sent, so failures that
        happen before the model produces anything can still be reported as
        a regular error response.
        """
        try:
            self._pending.append(await self._events.__anext__())
        except StopAsyncIteration:
            pass
        except BaseException:
            await self.aclose()
            raise

    async def body(self) -> AsyncIterator[bytes]:
        delivered = 0
        try:
            while True:
                if self._pending:
                    event = self._pending.pop(0)
                else:
                    try:
                        event = await self._events.__anext__()
                    except StopAsyncIteration:
                        break

                if isinstance(event, StreamCompleted):
                    break
                if isinstance(event, TextDelta) and event.text:
                    delivered += len(event.text)
                    yield event.text.encode("utf-8")
        except asyncio.CancelledError:
            logger.info("Client disconnected mid-stream", extra={"chars_sent": delivered})
            raise
        except LLMError as exc:
            # Headers are already sent; the client sees a truncated answer.
            logger.error(
                "Generation failed mid-stream",
                extra={"error": str(exc), "chars_sent": delivered},
            )
            raise
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._stream.aclose()
