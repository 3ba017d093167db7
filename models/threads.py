"""Thread model for conversation management."""
from sqlalchemy import Column, String, DateTime, Uuid
from sqlalchemy.orm import declarative_base, relationship
from uuid import uuid4

from config import DEFAULT_THREAD_TITLE
from utils import utc_now

Base = declarative_base()

# Titles from these sources may still be replaced by the model-assisted title.
PROVISIONAL_TITLE_SOURCES = ("default", "prompt")


class Thread(Base):
    """
    SQLAlchemy model for conversation threads.

    Each thread represents a conversation between a user and the AI.
    `user_id` is the opaque identity-provider subject and never changes.
    `title_source` records who produced the current title: the fixed default,
    the prompt-derived fast path, the model, or the user.
    """
    __tablename__ = "threads"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4, index=True)
    user_id = Column(String, nullable=False, index=True)
    model = Column(String, nullable=False)
    title = Column(String(255), nullable=False, default=DEFAULT_THREAD_TITLE)
    title_source = Column(String(16), nullable=False, default="default")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    messages = relationship(
        "Message",
        back_populates="thread",
        cascade="all, delete-orphan",
    )

    @property
    def has_provisional_title(self) -> bool:
        return self.title_source in PROVISIONAL_TITLE_SOURCES
