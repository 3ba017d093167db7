"""Pydantic schemas for message history responses."""
from datetime import datetime
from typing import Optional, List
from uuid import UUID

from .threads import CamelModel, Pagination


class MessageResponse(CamelModel):
    id: UUID
    role: str
    content: str
    model: str
    reasoning: Optional[str] = None
    created_at: datetime


class MessageListResponse(CamelModel):
    thread_id: UUID
    messages: List[MessageResponse]
    pagination: Pagination


class PartialSaveResponse(CamelModel):
    success: bool = True
    message_id: UUID


class StopResponse(CamelModel):
    stopped: bool
