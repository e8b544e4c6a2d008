"""Debounced buffering of live transcript fragments."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from viewer_bot.models import ChatEvent, SourceType

logger = logging.getLogger(__name__)

FlushCallback = Callable[[ChatEvent], Awaitable[object]]


class BufferState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


class UtteranceBuffer:
    """Collects speech fragments until a quiet period, then emits one event.

    IDLE -> ACCUMULATING on the first final fragment; every new fragment
    restarts the flush timer; when it fires the buffer goes to FLUSHING,
    hands one joined ChatEvent to ``on_flush`` and returns to IDLE.
    """

    def __init__(
        self,
        broadcaster_id: str,
        on_flush: FlushCallback,
        delay_seconds: float = 2.0,
        broadcaster_name: str = "",
    ):
        self.broadcaster_id = broadcaster_id
        self.broadcaster_name = broadcaster_name
        self.state = BufferState.IDLE
        self._on_flush = on_flush
        self._delay = delay_seconds
        self._fragments: list[str] = []
        self._timer: asyncio.Task | None = None

    @property
    def pending_text(self) -> str:
        return " ".join(self._fragments)

    def add(self, text: str, is_final: bool = True) -> None:
        """Add a fragment. Interim fragments only push the flush back."""
        text = (text or "").strip()
        if is_final and text:
            self._fragments.append(text)
        if not self._fragments:
            return
        if self.state == BufferState.IDLE:
            self.state = BufferState.ACCUMULATING
        self._restart_timer()

    def _restart_timer(self) -> None:
        if self._timer and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.create_task(self._flush_after_delay())

    async def _flush_after_delay(self) -> None:
        try:
            await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            return  # New fragment arrived, timer was reset

        # Detach first so a fragment arriving mid-flush starts a fresh timer
        # instead of cancelling this one.
        self._timer = None
        try:
            await self.flush()
        except Exception:
            logger.exception(f"TRANSCRIPT: flush failed for {self.broadcaster_id}")

    async def flush(self) -> ChatEvent | None:
        """Emit the accumulated text as one transcript event."""
        if not self._fragments:
            self.state = BufferState.IDLE
            return None

        self.state = BufferState.FLUSHING
        text = self.pending_text
        self._fragments = []
        event = ChatEvent(
            broadcaster_id=self.broadcaster_id,
            chatter_id=self.broadcaster_id,
            chatter_name=self.broadcaster_name or "streamer",
            text=text,
            source_type=SourceType.TRANSCRIPT,
        )
        logger.info(f"TRANSCRIPT_FLUSH: {self.broadcaster_id} chars={len(text)}")
        try:
            await self._on_flush(event)
        finally:
            self.state = BufferState.ACCUMULATING if self._fragments else BufferState.IDLE
        return event

    async def stop(self) -> ChatEvent | None:
        """Cancel the pending timer and flush whatever is buffered."""
        if self._timer and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        return await self.flush()


class TranscriptSessions:
    """One UtteranceBuffer per broadcaster with an active microphone session."""

    def __init__(self, on_flush: FlushCallback, delay_seconds: float = 2.0):
        self._on_flush = on_flush
        self._delay = delay_seconds
        self._buffers: dict[str, UtteranceBuffer] = {}

    def get(self, broadcaster_id: str) -> UtteranceBuffer | None:
        return self._buffers.get(broadcaster_id)

    def add(
        self,
        broadcaster_id: str,
        text: str,
        is_final: bool = True,
        broadcaster_name: str = "",
    ) -> UtteranceBuffer:
        buf = self._buffers.get(broadcaster_id)
        if buf is None:
            buf = UtteranceBuffer(
                broadcaster_id,
                on_flush=self._on_flush,
                delay_seconds=self._delay,
                broadcaster_name=broadcaster_name,
            )
            self._buffers[broadcaster_id] = buf
            logger.info(f"TRANSCRIPT: session started for {broadcaster_id}")
        buf.add(text, is_final=is_final)
        return buf

    async def stop(self, broadcaster_id: str) -> ChatEvent | None:
        buf = self._buffers.pop(broadcaster_id, None)
        if buf is None:
            return None
        logger.info(f"TRANSCRIPT: session stopped for {broadcaster_id}")
        return await buf.stop()

    async def stop_all(self) -> None:
        for broadcaster_id in list(self._buffers):
            await self.stop(broadcaster_id)

    def __len__(self) -> int:
        return len(self._buffers)
