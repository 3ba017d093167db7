"""Message model for persisted conversation turns."""
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from uuid import uuid4

from utils import utc_now
from .threads import Base

MESSAGE_ROLES = ("user", "assistant", "system")


class Message(Base):
    """
    SQLAlchemy model for a single message in a thread.

    Messages are ordered by `created_at`, ties broken by `id`.
    `client_message_id` is the id the client attached to the message, used as
    an idempotency key when present.
    """
    __tablename__ = "messages"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    thread_id = Column(Uuid(as_uuid=True), ForeignKey("threads.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(16), nullable=False)
    content = Column(Text, nullable=False)
    model = Column(String, nullable=False)
    reasoning = Column(Text, nullable=True)
    client_message_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    thread = relationship("Thread", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("thread_id", "client_message_id", name="uq_message_client_id"),
        Index("ix_messages_dedup", "thread_id", "role", "created_at"),
    )
