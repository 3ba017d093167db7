"""Thread service for CRUD operations."""
from typing import Optional, List, Tuple, Dict
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import desc, func

from config import DEFAULT_THREAD_TITLE
from models.threads import Thread
from models.messages import Message
from utils import utc_now


class ThreadService:
    """Service class for thread CRUD operations."""

    @staticmethod
    def create_thread(
        db: Session,
        user_id: str,
        model: str,
        title: str = DEFAULT_THREAD_TITLE,
        title_source: str = "default",
    ) -> Thread:
        """Create a new thread for a user."""
        db_thread = Thread(
            user_id=user_id,
            model=model,
            title=title,
            title_source=title_source,
        )

        db.add(db_thread)
        db.commit()
        db.refresh(db_thread)

        return db_thread

    @staticmethod
    def get_thread(db: Session, thread_id: UUID, user_id: Optional[str] = None, for_update: bool = False) -> Optional[Thread]:
        """Retrieve a thread by ID, optionally scoped to its owner and row-locked."""
        query = db.query(Thread).filter(Thread.id == thread_id)

        if user_id:
            query = query.filter(Thread.user_id == user_id)

        if for_update:
            query = query.with_for_update()

        return query.first()

    @staticmethod
    def get_user_threads(db: Session, user_id: str, skip: int = 0, limit: int = 20) -> List[Thread]:
        """Retrieve all threads for a specific user, most recently active first."""
        return db.query(Thread).filter(
            Thread.user_id == user_id
        ).order_by(
            desc(Thread.updated_at)
        ).offset(skip).limit(limit).all()

    @staticmethod
    def count_user_threads(db: Session, user_id: str) -> int:
        return db.query(func.count(Thread.id)).filter(Thread.user_id == user_id).scalar() or 0

    @staticmethod
    def get_thread_summaries(db: Session, thread_ids: List[UUID]) -> Dict[UUID, Tuple[int, Optional[Message]]]:
        """Message count and latest message for each of the given threads."""
        if not thread_ids:
            return {}

        counts = dict(
            db.query(Message.thread_id, func.count(Message.id))
            .filter(Message.thread_id.in_(thread_ids))
            .group_by(Message.thread_id)
            .all()
        )

        summaries = {}
        for thread_id in thread_ids:
            last = db.query(Message).filter(
                Message.thread_id == thread_id
            ).order_by(
                desc(Message.created_at), desc(Message.id)
            ).first()
            summaries[thread_id] = (counts.get(thread_id, 0), last)
        return summaries

    @staticmethod
    def rename_thread(db: Session, thread_id: UUID, user_id: str, title: str) -> Optional[Thread]:
        """Set a user-chosen title; automatic title refinement never overrides it."""
        thread = ThreadService.get_thread(db, thread_id, user_id)

        if not thread:
            return None

        thread.title = title
        thread.title_source = "user"

        db.commit()
        db.refresh(thread)

        return thread

    @staticmethod
    def apply_generated_title(db: Session, thread_id: UUID, title: str) -> bool:
        """
        Store a model-generated title if the current one is still provisional.

        The check and the write happen under a row lock so a concurrent rename
        wins over the generated title.
        """
        thread = ThreadService.get_thread(db, thread_id, for_update=True)
        if not thread or not thread.has_provisional_title:
            db.rollback()
            return False

        thread.title = title
        thread.title_source = "model"
        db.commit()
        return True

    @staticmethod
    def touch_thread(db: Session, thread: Thread, model: Optional[str] = None) -> None:
        """Bump `updated_at` (and the selected model) without committing."""
        thread.updated_at = utc_now()
        if model:
            thread.model = model

    @staticmethod
    def delete_thread(db: Session, thread_id: UUID, user_id: str) -> bool:
        """Delete a thread and its messages."""
        thread = ThreadService.get_thread(db, thread_id, user_id)

        if not thread:
            return False

        db.delete(thread)
        db.commit()

        return True
