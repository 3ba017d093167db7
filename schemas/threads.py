"""Pydantic schemas for thread-related requests and responses."""
from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from uuid import UUID

from config import MAX_PROMPT_CHARS


class CamelModel(BaseModel):
    """Base schema that speaks camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ThreadCreate(CamelModel):
    """Schema for creating a thread from the first prompt."""
    model_config = ConfigDict(str_strip_whitespace=True)

    prompt: str = Field(..., min_length=1, max_length=MAX_PROMPT_CHARS)
    model: str = Field(..., min_length=1)


class ThreadCreated(CamelModel):
    """Schema returned after a thread is created."""
    success: bool = True
    thread_id: UUID
    prompt: str
    model: str


class ThreadUpdate(CamelModel):
    """Schema for renaming a thread."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=255)


class LastMessagePreview(CamelModel):
    role: str
    content: str
    created_at: datetime


class ThreadResponse(CamelModel):
    """Schema for thread responses."""
    id: UUID
    model: str
    title: str
    title_source: str
    created_at: datetime
    updated_at: datetime
    message_count: Optional[int] = None
    last_message: Optional[LastMessagePreview] = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    has_more: bool
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int, returned: int) -> "Pagination":
        offset = (page - 1) * limit
        return cls(
            page=page,
            limit=limit,
            total=total,
            has_more=offset + returned < total,
            total_pages=(total + limit - 1) // limit,
        )


class ThreadListResponse(CamelModel):
    threads: List[ThreadResponse]
    pagination: Pagination
