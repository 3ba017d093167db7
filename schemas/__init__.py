from .threads import ThreadCreate, ThreadCreated, ThreadUpdate, ThreadResponse, ThreadListResponse, Pagination
from .messages import MessageResponse, MessageListResponse, PartialSaveResponse, StopResponse
from .auth import TokenPayload

__all__ = ["ThreadCreate", "ThreadCreated", "ThreadUpdate", "ThreadResponse", "ThreadListResponse", "Pagination",
           "MessageResponse", "MessageListResponse", "PartialSaveResponse", "StopResponse",
           "TokenPayload"]
