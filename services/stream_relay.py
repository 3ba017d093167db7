"""
Stream relay: forwards provider output to the client while accumulating it.

The relay is both a consumer (of the provider's chunk stream) and a producer
(of server-sent events for the client). It owns a StreamSession for the
lifetime of one provider stream and reports the outcome through two
synchronous terminal callbacks, run in a worker thread:

- ``on_finish(session)`` when the provider completed normally;
- ``on_abort(session)`` when the client stopped the stream, either through
  ``StreamSession.request_stop()`` or by disconnecting (generator
  closed/cancelled).

A stop request cancels the pending read from the provider, so it takes effect
even while the provider is silent. Provider errors end the stream with an
``error`` event and call neither callback.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, List, Optional, Sequence
from uuid import UUID

import anyio

from dtos.chat_request import ChatMessage
from services.provider import StreamChunk
from utils import sse_event

logger = logging.getLogger(__name__)

PROVIDER_ERROR_MESSAGE = "The model provider failed to complete the response."


@dataclass
class StreamSession:
    """Ephemeral state of one provider stream. Never persisted."""
    thread_id: UUID
    model: str
    reasoning_enabled: bool = False
    text_parts: List[str] = field(default_factory=list)
    reasoning_parts: List[str] = field(default_factory=list)
    aborted: bool = False
    stop_requested: bool = False
    _read_scope: Optional[anyio.CancelScope] = field(default=None, repr=False)

    @property
    def accumulated_text(self) -> str:
        return "".join(self.text_parts)

    @property
    def accumulated_reasoning(self) -> Optional[str]:
        return "".join(self.reasoning_parts) or None

    def request_stop(self) -> None:
        """Stop the stream, interrupting a read that is waiting on the provider."""
        self.stop_requested = True
        if self._read_scope is not None:
            self._read_scope.cancel()


TerminalCallback = Callable[[StreamSession], Optional[UUID]]


class StreamRelay:
    """Bridges a provider's chunk stream to the client's event stream."""

    def __init__(self, provider):
        self.provider = provider

    async def _close(self, chunks) -> None:
        # Runs during cancellation too; shield so the provider stream is really closed.
        with anyio.CancelScope(shield=True):
            try:
                await chunks.aclose()
            except Exception:
                logger.warning("Error while closing provider stream", exc_info=True)

    async def _next_chunk(self, session: StreamSession, chunks) -> Optional[StreamChunk]:
        """The provider's next chunk, or None when it is done or a stop was requested."""
        if session.stop_requested:
            return None
        with anyio.CancelScope() as scope:
            session._read_scope = scope
            try:
                return await chunks.__anext__()
            except StopAsyncIteration:
                return None
            finally:
                session._read_scope = None
        # Only reached when request_stop() cancelled the read.
        return None

    async def _run_callback(self, callback: TerminalCallback, session: StreamSession) -> Optional[UUID]:
        # Store writes are blocking; keep them off the event loop and let them finish during cancellation.
        with anyio.CancelScope(shield=True):
            try:
                return await anyio.to_thread.run_sync(callback, session)
            except Exception:
                logger.error("Terminal stream callback failed", exc_info=True, extra={"thread_id": str(session.thread_id)})
                return None

    async def relay(
        self,
        session: StreamSession,
        history: Sequence[ChatMessage],
        on_finish: TerminalCallback,
        on_abort: TerminalCallback,
    ) -> AsyncIterator[str]:
        """Yield SSE events for one completion; call exactly one terminal callback unless the provider fails."""
        yield sse_event({"type": "start", "threadId": str(session.thread_id), "model": session.model})

        chunks = self.provider.stream(history, session.model, reasoning=session.reasoning_enabled)
        try:
            while True:
                chunk = await self._next_chunk(session, chunks)
                if chunk is None:
                    break
                if chunk.kind == "reasoning":
                    session.reasoning_parts.append(chunk.text)
                    yield sse_event({"type": "reasoning", "delta": chunk.text})
                else:
                    session.text_parts.append(chunk.text)
                    yield sse_event({"type": "text", "delta": chunk.text})
        except (asyncio.CancelledError, GeneratorExit):
            # Client went away mid-stream; keep what was produced so far.
            session.aborted = True
            logger.info("Client disconnected mid-stream", extra={"thread_id": str(session.thread_id)})
            await self._run_callback(on_abort, session)
            raise
        except Exception:
            logger.error("Provider stream failed", exc_info=True, extra={"thread_id": str(session.thread_id)})
            yield sse_event({"type": "error", "error": PROVIDER_ERROR_MESSAGE})
            return
        finally:
            await self._close(chunks)

        if session.stop_requested:
            session.aborted = True
            logger.info("Stream stopped on request", extra={"thread_id": str(session.thread_id)})

        if session.aborted:
            message_id = await self._run_callback(on_abort, session)
        else:
            message_id = await self._run_callback(on_finish, session)

        yield sse_event({
            "type": "finish",
            "messageId": str(message_id) if message_id else None,
            "aborted": session.aborted,
        })
