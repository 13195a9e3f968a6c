"""Streaming response demultiplexing.

The model is asked to prefix its reasoning with ``THINKING:`` and its final
content with ``RESPONSE:``. :class:`StreamDemultiplexer` routes each incoming
fragment to a thinking or an answer callback with a three-state machine:

``PREAMBLE``
    Look for whichever marker appears first in the fragment. Text before it
    is stray preamble and goes to the answer channel.
``THINKING``
    Look for ``RESPONSE:``; text before it is reasoning, text after it is
    answer. Without a marker the whole fragment is reasoning.
``ANSWER``
    Terminal. Every fragment goes to the answer channel verbatim.

By default each fragment is scanned on its own, so a marker split across two
fragments (``["THINK", "ING: ..."]``) is not recognised and its pieces are
routed as content. ``lookback=True`` holds back a fragment tail that could
start a marker until the next fragment arrives, which closes that gap at the
cost of delaying up to ``len("RESPONSE:") - 1`` characters.

Transports that tag reasoning natively deliver ``ChunkKind.THINKING`` chunks,
which bypass marker parsing entirely.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional, Tuple

from .models.common import ChannelState, ChunkKind, StreamChunk, StreamingTurn
from ..core.errors import StreamCancelled

logger = logging.getLogger(__name__)

THINKING_MARKER = "THINKING:"
RESPONSE_MARKER = "RESPONSE:"

THINKING_INSTRUCTIONS = (
    "\n\nBefore answering, think through the task. Begin your reasoning with the "
    f"literal marker {THINKING_MARKER} on its own line, then begin your final answer "
    f"with the literal marker {RESPONSE_MARKER} on its own line. Only the text after "
    f"{RESPONSE_MARKER} will be saved."
)

TextCallback = Callable[[str], None]


class CancellationToken:
    """Signals an in-flight generation to stop."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by user") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def _held_suffix_length(text: str, markers: Tuple[str, ...]) -> int:
    """Length of the longest tail of ``text`` that is a proper prefix of a marker."""
    longest = 0
    for marker in markers:
        for size in range(min(len(marker) - 1, len(text)), 0, -1):
            if text.endswith(marker[:size]):
                longest = max(longest, size)
                break
    return longest


class StreamDemultiplexer:
    """Routes streamed text to thinking and answer channels.

    Args:
        on_answer: Called with each piece of answer text, in arrival order.
        on_thinking: Called with each piece of reasoning text; optional.
        extract_thinking: Parse ``THINKING:``/``RESPONSE:`` markers. When
            False every fragment is forwarded verbatim to ``on_answer``.
        lookback: Detect markers split across fragment boundaries.
        turn: Turn record to accumulate into; one is created if omitted.
    """

    def __init__(
        self,
        on_answer: TextCallback,
        on_thinking: Optional[TextCallback] = None,
        extract_thinking: bool = False,
        lookback: bool = False,
        turn: Optional[StreamingTurn] = None,
    ):
        self.on_answer = on_answer
        self.on_thinking = on_thinking
        self.extract_thinking = extract_thinking
        self.lookback = lookback
        self.turn = turn or StreamingTurn(prompt="")
        self._pending = ""

        if not extract_thinking:
            self.turn.state = ChannelState.ANSWER

    @property
    def state(self) -> ChannelState:
        return self.turn.state

    def _emit_answer(self, text: str) -> None:
        if not text:
            return
        self.turn.answer += text
        self.on_answer(text)

    def _emit_thinking(self, text: str) -> None:
        if not text:
            return
        self.turn.thinking += text
        if self.on_thinking is not None:
            self.on_thinking(text)

    def _emit_unmatched(self, text: str, markers: Tuple[str, ...], emit: TextCallback) -> None:
        """Emit text that contains no complete marker, holding back a possible marker start."""
        if self.lookback:
            held = _held_suffix_length(text, markers)
            if held:
                self._pending = text[-held:]
                text = text[:-held]
        emit(text)

    def feed(self, fragment: str) -> None:
        """Route one text fragment. Empty fragments are ignored."""
        if not fragment:
            return
        text = self._pending + fragment
        self._pending = ""

        while text:
            if self.turn.state == ChannelState.PREAMBLE:
                thinking_at = text.find(THINKING_MARKER)
                response_at = text.find(RESPONSE_MARKER)
                found = [(i, m) for i, m in ((thinking_at, THINKING_MARKER),
                                             (response_at, RESPONSE_MARKER)) if i >= 0]
                if not found:
                    self._emit_unmatched(text, (THINKING_MARKER, RESPONSE_MARKER), self._emit_answer)
                    return
                index, marker = min(found)
                self._emit_answer(text[:index])
                if marker == THINKING_MARKER:
                    self.turn.state = ChannelState.THINKING
                else:
                    self.turn.state = ChannelState.ANSWER
                text = text[index + len(marker):]

            elif self.turn.state == ChannelState.THINKING:
                response_at = text.find(RESPONSE_MARKER)
                if response_at < 0:
                    self._emit_unmatched(text, (RESPONSE_MARKER,), self._emit_thinking)
                    return
                self._emit_thinking(text[:response_at])
                self.turn.state = ChannelState.ANSWER
                text = text[response_at + len(RESPONSE_MARKER):]

            else:
                self._emit_answer(text)
                return

    def feed_chunk(self, chunk: StreamChunk) -> None:
        """Route a transport chunk, honouring native reasoning tags."""
        if chunk.usage is not None:
            self.turn.usage = chunk.usage
        if not chunk.text:
            return
        self.turn.chunk_count += 1
        if chunk.kind == ChunkKind.THINKING:
            self._emit_thinking(chunk.text)
        elif self.extract_thinking:
            self.feed(chunk.text)
        else:
            self._emit_answer(chunk.text)

    def finish(self) -> StreamingTurn:
        """Flush held-back text to the current channel and close the turn."""
        if self._pending:
            pending, self._pending = self._pending, ""
            if self.turn.state == ChannelState.THINKING:
                self._emit_thinking(pending)
            else:
                self._emit_answer(pending)
        self.turn.finish()
        return self.turn

    async def consume(self, stream: AsyncIterator[StreamChunk],
                      cancel_token: Optional[CancellationToken] = None) -> StreamingTurn:
        """
        Drive ``stream`` to completion, routing every chunk in arrival order.

        When ``cancel_token`` fires, forwarding stops, the stream is closed to
        release its connection and the partial turn is returned with
        ``cancelled`` set. Transport errors and task cancellation propagate
        after held-back text has been flushed.
        """
        iterator = stream.__aiter__()
        try:
            while True:
                try:
                    chunk = await _next_chunk(iterator, cancel_token)
                except StopAsyncIteration:
                    break
                except StreamCancelled:
                    self.turn.cancelled = True
                    logger.info(f"Stream cancelled: {cancel_token.reason if cancel_token else ''}")
                    break
                self.feed_chunk(chunk)
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
            self.finish()
        return self.turn


async def _next_chunk(iterator: AsyncIterator[StreamChunk],
                      cancel_token: Optional[CancellationToken]) -> StreamChunk:
    """Await the next chunk, or raise StreamCancelled if the token fires first."""
    if cancel_token is None:
        return await iterator.__anext__()
    if cancel_token.is_cancelled:
        raise StreamCancelled(cancel_token.reason or "cancelled")

    next_task = asyncio.ensure_future(iterator.__anext__())
    cancel_task = asyncio.ensure_future(cancel_token.wait())
    try:
        done, _ = await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        # The stream must not be left mid-read, or closing it fails
        next_task.cancel()
        cancel_task.cancel()
        await asyncio.gather(next_task, cancel_task, return_exceptions=True)
        raise

    if next_task in done:
        cancel_task.cancel()
        await asyncio.gather(cancel_task, return_exceptions=True)
        return next_task.result()

    next_task.cancel()
    await asyncio.gather(next_task, return_exceptions=True)
    raise StreamCancelled(cancel_token.reason or "cancelled")
