"""
Chat coordinator.

Orchestrates one chat turn:

    Idle -> Authenticating -> Validating -> PersistingUserMessage -> Streaming
         -> PersistingAssistantMessage -> MaybeGeneratingTitle -> Done

with an Aborted branch out of Streaming. Authentication and request-shape
validation happen in the HTTP layer before the coordinator is called; the
coordinator tracks the remaining states on a ChatTurn.

Persistence policy: a failed user-message write is logged and generation
proceeds anyway. A missing or foreign thread is still rejected up front,
since nothing useful can be written for it.
"""

import enum
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Optional, Tuple
from uuid import UUID

import anyio
from sqlalchemy.orm import Session

from config import DEDUP_WINDOW_MS, DEFAULT_THREAD_TITLE, MAX_MESSAGE_CHARS, STOP_MARKER
from dtos.chat_request import ChatMessage, ChatRequest
from errors import ChatServiceError, OwnershipError, ProviderError, ValidationError
from models.messages import Message
from models.threads import Thread
from services.messages import MessageService
from services.monitoring import PerformanceMonitor
from services.provider import is_reasoning_model
from services.stream_relay import StreamRelay, StreamSession
from services.threads import ThreadService
from services.titles import TitleGenerator, generate_smart_title

logger = logging.getLogger(__name__)


class ChatState(str, enum.Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    VALIDATING = "validating"
    PERSISTING_USER_MESSAGE = "persisting_user_message"
    STREAMING = "streaming"
    ABORTED = "aborted"
    PERSISTING_ASSISTANT_MESSAGE = "persisting_assistant_message"
    MAYBE_GENERATING_TITLE = "maybe_generating_title"
    DONE = "done"


@dataclass
class ChatTurn:
    """Bookkeeping for one request travelling through the state machine."""
    user_id: str
    thread_id: UUID
    model: str
    state: ChatState = ChatState.VALIDATING
    assistant_message_id: Optional[UUID] = None

    def advance(self, state: ChatState) -> None:
        logger.debug(
            f"Chat turn {self.state.value} -> {state.value}",
            extra={"thread_id": str(self.thread_id), "user_id": self.user_id},
        )
        self.state = state


def parse_thread_id(raw: str) -> UUID:
    try:
        return UUID(raw)
    except (TypeError, ValueError):
        raise ValidationError("threadId: must be a valid thread id")


def with_stop_marker(text: str) -> str:
    """Append the stop marker, cutting the text so the result stays within MAX_MESSAGE_CHARS."""
    if text.endswith(STOP_MARKER) and len(text) <= MAX_MESSAGE_CHARS:
        return text
    return text[:MAX_MESSAGE_CHARS - len(STOP_MARKER)] + STOP_MARKER


class ChatCoordinator:
    """
    Coordinates message persistence, the provider stream and title refinement.

    All collaborators are injected; the coordinator holds no global state
    apart from the registry of streams currently in flight, which lets a
    separate stop request reach an active stream.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        provider,
        title_generator: Optional[TitleGenerator] = None,
        monitor: Optional[PerformanceMonitor] = None,
        dedup_window_ms: int = DEDUP_WINDOW_MS,
    ):
        self.session_factory = session_factory
        self.provider = provider
        self.relay = StreamRelay(provider)
        self.title_generator = title_generator or TitleGenerator(provider)
        self.monitor = monitor or PerformanceMonitor()
        self.dedup_window_ms = dedup_window_ms
        self._active_streams: Dict[Tuple[str, UUID], StreamSession] = {}

    # Threads

    def create_thread(self, user_id: str, prompt: str, model: str) -> Thread:
        """Create a thread titled from its first prompt."""
        title = generate_smart_title(prompt)
        title_source = "default" if title == DEFAULT_THREAD_TITLE else "prompt"
        with self.session_factory() as db:
            thread = ThreadService.create_thread(db, user_id, model, title=title, title_source=title_source)
        logger.info("Thread created", extra={"thread_id": str(thread.id), "user_id": user_id, "model": model})
        return thread

    def require_thread(self, user_id: str, thread_id: UUID) -> Thread:
        with self.session_factory() as db:
            thread = ThreadService.get_thread(db, thread_id, user_id)
        if thread is None:
            raise OwnershipError("Thread not found")
        return thread

    # Partial save

    def save_partial(self, user_id: str, request: ChatRequest) -> Message:
        """Persist the text of a stream the client stopped itself."""
        thread_id = parse_thread_id(request.thread_id)
        content = with_stop_marker(request.partial_content or "")
        with self.session_factory() as db:
            message = MessageService.create_message(
                db,
                user_id,
                thread_id,
                role="assistant",
                content=content,
                model=request.model,
                window_ms=self.dedup_window_ms,
            )
        logger.info("Partial assistant message saved", extra={"thread_id": str(thread_id), "message_id": str(message.id)})
        return message

    # Streaming turn

    def begin_turn(self, user_id: str, request: ChatRequest) -> ChatTurn:
        """Check the thread and persist the trailing user message."""
        thread_id = parse_thread_id(request.thread_id)
        self.require_thread(user_id, thread_id)
        if not getattr(self.provider, "is_configured", True):
            raise ProviderError("Model provider is not configured")
        turn = ChatTurn(user_id=user_id, thread_id=thread_id, model=request.model)

        turn.advance(ChatState.PERSISTING_USER_MESSAGE)
        last = request.last_user_message
        if last is not None:
            self.persist_user_message(turn, last)
        else:
            logger.info("No user message to save", extra={"thread_id": str(thread_id)})
        return turn

    def persist_user_message(self, turn: ChatTurn, message: ChatMessage) -> Optional[Message]:
        """Idempotent write of the user's message. Failures are logged, not raised."""
        try:
            with self.monitor.track("chat.persist_user"), self.session_factory() as db:
                saved = MessageService.upsert_message(
                    db,
                    turn.user_id,
                    turn.thread_id,
                    role="user",
                    content=message.content,
                    model=turn.model,
                    client_message_id=message.id,
                    window_ms=self.dedup_window_ms,
                )
        except ChatServiceError as exc:
            logger.error(
                f"Error saving user message, continuing with generation: {exc.message}",
                extra={"thread_id": str(turn.thread_id), "user_id": turn.user_id},
            )
            return None
        logger.info("User message saved", extra={"thread_id": str(turn.thread_id), "message_id": str(saved.id)})
        return saved

    def _persist_assistant(self, turn: ChatTurn, session: StreamSession) -> Optional[UUID]:
        turn.advance(ChatState.PERSISTING_ASSISTANT_MESSAGE)
        content = session.accumulated_text
        if session.aborted:
            content = with_stop_marker(content)
        elif not content:
            logger.warning("Provider returned no text, nothing to save", extra={"thread_id": str(turn.thread_id)})
            return None
        elif len(content) > MAX_MESSAGE_CHARS:
            logger.warning(
                f"Assistant reply cut to {MAX_MESSAGE_CHARS} characters",
                extra={"thread_id": str(turn.thread_id), "length": len(content)},
            )
            content = content[:MAX_MESSAGE_CHARS]

        with self.monitor.track("chat.persist_assistant"), self.session_factory() as db:
            saved = MessageService.upsert_message(
                db,
                turn.user_id,
                turn.thread_id,
                role="assistant",
                content=content,
                model=turn.model,
                reasoning=session.accumulated_reasoning,
                window_ms=self.dedup_window_ms,
            )
        turn.assistant_message_id = saved.id
        logger.info(
            "Assistant message saved",
            extra={"thread_id": str(turn.thread_id), "message_id": str(saved.id), "aborted": session.aborted},
        )
        return saved.id

    def _on_abort(self, turn: ChatTurn, session: StreamSession) -> Optional[UUID]:
        turn.advance(ChatState.ABORTED)
        return self._persist_assistant(turn, session)

    async def stream(self, turn: ChatTurn, history) -> AsyncIterator[str]:
        """Relay the provider stream for a turn, persisting the outcome at the end."""
        session = StreamSession(
            thread_id=turn.thread_id,
            model=turn.model,
            reasoning_enabled=is_reasoning_model(turn.model),
        )
        key = (turn.user_id, turn.thread_id)
        self._active_streams[key] = session
        turn.advance(ChatState.STREAMING)

        events = self.relay.relay(
            session,
            history,
            on_finish=lambda s: self._persist_assistant(turn, s),
            on_abort=lambda s: self._on_abort(turn, s),
        )
        try:
            with self.monitor.track("chat.stream"):
                async for event in events:
                    yield event
        finally:
            # A closed or cancelled response must reach the relay now, not at garbage collection.
            with anyio.CancelScope(shield=True):
                await events.aclose()
            if self._active_streams.get(key) is session:
                del self._active_streams[key]
            turn.advance(ChatState.MAYBE_GENERATING_TITLE if turn.assistant_message_id else ChatState.DONE)

    def stop(self, user_id: str, thread_id: UUID) -> bool:
        """Ask the caller's active stream on a thread to stop. False if none is running."""
        session = self._active_streams.get((user_id, thread_id))
        if session is None:
            return False
        session.request_stop()
        logger.info("Stop requested", extra={"thread_id": str(thread_id), "user_id": user_id})
        return True

    # Title refinement

    async def maybe_generate_title(self, user_id: str, thread_id: UUID, turn: Optional[ChatTurn] = None) -> Optional[str]:
        """
        Replace a provisional title with a model-generated one after the first exchange.

        Runs after the response has been delivered; every failure is logged and swallowed.
        """
        try:
            with self.session_factory() as db:
                thread = ThreadService.get_thread(db, thread_id, user_id)
                if thread is None or not thread.has_provisional_title:
                    return None
                if MessageService.count_thread_messages(db, thread_id) != 2:
                    return None
                first, second = MessageService.first_exchange(db, thread_id)
                user_text, assistant_text = first.content, second.content

            with self.monitor.track("title.generate"):
                title = await self.title_generator.generate(user_text, assistant_text)

            with self.session_factory() as db:
                applied = ThreadService.apply_generated_title(db, thread_id, title)
            if applied:
                logger.info("Thread title generated", extra={"thread_id": str(thread_id), "title": title})
                return title
            return None
        except Exception:
            logger.error("Title generation failed", exc_info=True, extra={"thread_id": str(thread_id)})
            return None
        finally:
            if turn is not None:
                turn.advance(ChatState.DONE)
