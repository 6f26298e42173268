"""
teachassist - Chat-completion style streaming of agent results.

Turns one finished ``GenerationResult`` into the incremental server-sent-event
stream that OpenAI-compatible consumers expect::

    data: {"choices":[{"delta":{"content":"Hello "}}]}

    data: [DONE]

The text is sliced into fixed-size fragments and delivered with a fixed delay
between items to mimic token streaming.
"""

import asyncio
import json
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional

from .models import DONE_LINE, GenerationResult, StreamChunk

CHUNK_SIZE = 50
CHUNK_DELAY = 0.05
TOOL_SUMMARY_HEADER = "\n\n**Learning Tools Used:**\n"

Sleep = Callable[[float], Awaitable[None]]


def split_text(text: str, chunk_size: int = CHUNK_SIZE) -> list[str]:
    """Slice text into ``chunk_size`` fragments, preserving order."""
    return [text[i : i + chunk_size] for i in range(0, len(text), chunk_size)]


def format_tool_summary(result: GenerationResult) -> Optional[str]:
    """Summarize tool calls that have a name and a result, or None if none do."""
    lines = []
    for tool_call in result.iter_tool_calls():
        if tool_call.name and tool_call.result is not None:
            rendered = json.dumps(tool_call.result, indent=2, ensure_ascii=False, default=str)
            lines.append(f"\n- {tool_call.name}: {rendered}\n")
    if not lines:
        return None
    return TOOL_SUMMARY_HEADER + "".join(lines)


def build_chunks(result: GenerationResult, chunk_size: int = CHUNK_SIZE) -> list[StreamChunk]:
    """Build the ordered chunk list for a result.

    Text fragments first, then at most one tool summary, then one empty chunk.
    """
    chunks = [StreamChunk(fragment) for fragment in split_text(result.text or "", chunk_size)]
    summary = format_tool_summary(result)
    if summary is not None:
        chunks.append(StreamChunk(summary))
    chunks.append(StreamChunk(""))
    return chunks


class ChunkStream:
    """Async iterator of encoded SSE lines, paced and cancellable.

    The first chunk is delivered immediately and every later item, including
    the ``[DONE]`` sentinel, after ``delay`` seconds. Delays only run while
    the consumer is waiting for the next item. ``cancel()`` interrupts a
    pending delay, so a waiting consumer sees the stream end at once instead
    of sleeping the delay out. Nothing is delivered after the sentinel.

    Example:
        ```python
        stream = emit(result)
        async for line in stream:
            response.write(line)
        ```
    """

    def __init__(
        self,
        chunks: Iterable[StreamChunk],
        delay: float = CHUNK_DELAY,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.chunks = tuple(chunks)
        self.delay = delay
        self._sleep = sleep or asyncio.sleep
        self._iterator: Optional[AsyncIterator[bytes]] = None
        self._pending: Optional[asyncio.Future] = None
        self._closed = False
        self.delivered = 0
        self.finished = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._iterator is not None:
            raise RuntimeError("A ChunkStream can only be consumed once")
        self._iterator = self._generate()
        return self._iterator

    async def _generate(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self.chunks):
            if index:
                await self._pause()
            if self._closed:
                return
            self.delivered += 1
            yield chunk.encode()

        await self._pause()
        if self._closed:
            return
        self.finished = True
        self._closed = True
        yield DONE_LINE.encode("utf-8")

    async def _pause(self) -> None:
        self._pending = asyncio.ensure_future(self._sleep(self.delay))
        try:
            await asyncio.wait([self._pending])
        finally:
            pending, self._pending = self._pending, None
            pending.cancel()
        if not pending.cancelled():
            pending.result()

    def cancel(self) -> None:
        """Stop emitting and wake a consumer blocked in the pacing delay."""
        self._closed = True
        if self._pending is not None:
            self._pending.cancel()

    async def aclose(self) -> None:
        self.cancel()
        # a generator suspended in another task stops at its next closed check
        if self._iterator is not None and not getattr(self._iterator, "ag_running", False):
            await self._iterator.aclose()

    async def collect(self) -> list[bytes]:
        """Consume the whole stream."""
        return [line async for line in self]

    async def __aenter__(self) -> "ChunkStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


@dataclass
class StreamResponse:
    """Response handed back to callers; ``body`` is the chunk stream."""

    body: ChunkStream

    @property
    def chunks(self) -> tuple[StreamChunk, ...]:
        return self.body.chunks


def emit(
    result: GenerationResult,
    chunk_size: int = CHUNK_SIZE,
    delay: float = CHUNK_DELAY,
    sleep: Optional[Sleep] = None,
) -> ChunkStream:
    """Convert a generation result into a paced chunk stream."""
    return ChunkStream(build_chunks(result, chunk_size), delay=delay, sleep=sleep)
