"""Message store: durable, ownership-checked, duplicate-aware message writes."""
from datetime import timedelta
from typing import Optional, List, Tuple
from uuid import UUID
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from config import DEDUP_WINDOW_MS, MAX_MESSAGE_CHARS
from errors import NotFoundError, OwnershipError, PersistenceError, ValidationError
from models.messages import Message, MESSAGE_ROLES
from models.threads import Thread
from services.threads import ThreadService
from utils import utc_now

logger = logging.getLogger(__name__)


class MessageService:
    """
    Service class for message persistence.

    Every write verifies that the thread belongs to the acting user. Writes
    are idempotent over a short window: a message with the same
    (thread, role, content) created within `window_ms` is treated as the same
    logical write. A client-supplied message id, when present, identifies the
    write regardless of the window.
    """

    @staticmethod
    def _validate(role: str, content: str) -> None:
        if role not in MESSAGE_ROLES:
            raise ValidationError(f"role: must be one of {', '.join(MESSAGE_ROLES)}")
        if len(content) > MAX_MESSAGE_CHARS:
            raise ValidationError(f"content: must be at most {MAX_MESSAGE_CHARS} characters")
        if role == "user" and not content.strip():
            raise ValidationError("content: user messages must not be empty")

    @staticmethod
    def _owned_thread(db: Session, thread_id: UUID, user_id: str) -> Thread:
        # Locking the thread row serialises concurrent writers for one thread.
        thread = ThreadService.get_thread(db, thread_id, user_id, for_update=True)
        if thread is None:
            raise OwnershipError("Thread not found")
        return thread

    @staticmethod
    def find_recent_duplicate(
        db: Session,
        thread_id: UUID,
        role: str,
        content: str,
        window_ms: int = DEDUP_WINDOW_MS,
    ) -> Optional[Message]:
        """Most recent message with identical (thread, role, content) created within the window."""
        cutoff = utc_now() - timedelta(milliseconds=window_ms)
        return db.query(Message).filter(
            Message.thread_id == thread_id,
            Message.role == role,
            Message.content == content,
            Message.created_at >= cutoff,
        ).order_by(
            desc(Message.created_at), desc(Message.id)
        ).first()

    @staticmethod
    def _find_by_client_id(db: Session, thread_id: UUID, client_message_id: Optional[str]) -> Optional[Message]:
        if not client_message_id:
            return None
        return db.query(Message).filter(
            Message.thread_id == thread_id,
            Message.client_message_id == client_message_id,
        ).first()

    @staticmethod
    def _insert(
        db: Session,
        thread: Thread,
        role: str,
        content: str,
        model: str,
        reasoning: Optional[str],
        client_message_id: Optional[str],
    ) -> Message:
        message = Message(
            thread_id=thread.id,
            role=role,
            content=content,
            model=model,
            reasoning=reasoning or None,
            client_message_id=client_message_id,
        )
        db.add(message)
        ThreadService.touch_thread(db, thread, model)
        return message

    @staticmethod
    def create_message(
        db: Session,
        user_id: str,
        thread_id: UUID,
        role: str,
        content: str,
        model: str,
        reasoning: Optional[str] = None,
        client_message_id: Optional[str] = None,
        window_ms: int = DEDUP_WINDOW_MS,
    ) -> Message:
        """
        Create a message, returning an existing one untouched if this is a repeat.

        Raises:
            ValidationError: role unknown, content too long, or empty user content.
            OwnershipError: the thread does not exist or is not owned by `user_id`.
            PersistenceError: the store rejected the write.
        """
        MessageService._validate(role, content)
        try:
            thread = MessageService._owned_thread(db, thread_id, user_id)

            existing = MessageService._find_by_client_id(db, thread_id, client_message_id)
            if existing is None:
                existing = MessageService.find_recent_duplicate(db, thread_id, role, content, window_ms)
            if existing is not None:
                logger.warning(
                    "Duplicate message detected, returning existing",
                    extra={"thread_id": str(thread_id), "message_id": str(existing.id)},
                )
                db.commit()
                return existing

            message = MessageService._insert(db, thread, role, content, model, reasoning, client_message_id)
            db.commit()
            db.refresh(message)
            return message
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError("Failed to save message") from exc

    @staticmethod
    def upsert_message(
        db: Session,
        user_id: str,
        thread_id: UUID,
        role: str,
        content: str,
        model: str,
        reasoning: Optional[str] = None,
        client_message_id: Optional[str] = None,
        window_ms: int = DEDUP_WINDOW_MS,
    ) -> Message:
        """
        Create a message, or update the model of the matching recent duplicate.

        The duplicate lookup and the write run in one transaction holding the
        thread row lock, so concurrent upserts of the same message yield one row.
        """
        MessageService._validate(role, content)
        try:
            thread = MessageService._owned_thread(db, thread_id, user_id)

            existing = MessageService._find_by_client_id(db, thread_id, client_message_id)
            if existing is None:
                existing = MessageService.find_recent_duplicate(db, thread_id, role, content, window_ms)

            if existing is not None:
                existing.model = model
                if reasoning:
                    existing.reasoning = reasoning
                ThreadService.touch_thread(db, thread, model)
                db.commit()
                db.refresh(existing)
                return existing

            message = MessageService._insert(db, thread, role, content, model, reasoning, client_message_id)
            db.commit()
            db.refresh(message)
            return message
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError("Failed to save message") from exc

    @staticmethod
    def count_thread_messages(db: Session, thread_id: UUID) -> int:
        return db.query(func.count(Message.id)).filter(Message.thread_id == thread_id).scalar() or 0

    @staticmethod
    def first_exchange(db: Session, thread_id: UUID) -> List[Message]:
        """The two oldest messages of a thread."""
        return db.query(Message).filter(
            Message.thread_id == thread_id
        ).order_by(
            Message.created_at, Message.id
        ).limit(2).all()

    @staticmethod
    def list_thread_messages(
        db: Session,
        thread_id: UUID,
        owner_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Message], int]:
        """
        Messages of an owned thread in conversation order, plus the total count.

        Raises:
            NotFoundError: the thread is absent or owned by someone else.
        """
        thread = ThreadService.get_thread(db, thread_id, owner_id)
        if thread is None:
            raise NotFoundError("Thread not found")

        query = db.query(Message).filter(Message.thread_id == thread_id)
        total = query.count()
        messages = query.order_by(
            Message.created_at, Message.id
        ).offset(offset).limit(limit).all()

        return messages, total
