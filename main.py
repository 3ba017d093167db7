from logging_config import configure_logging
configure_logging()

from fastapi import FastAPI, APIRouter, BackgroundTasks, Depends, Query, Request, Response, status
from fastapi.responses import StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer
from contextlib import asynccontextmanager
from typing import Callable, Optional
from uuid import UUID
import logging
import time

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import ALLOWED_ORIGINS
from create_tables import create_tables
from database import SessionLocal, engine, get_db
from dtos.chat_request import ChatRequest
from errors import NotFoundError, PersistenceError, register_exception_handlers
from models import Message, Thread
from schemas import (
    ThreadCreate, ThreadCreated, ThreadUpdate, ThreadResponse, ThreadListResponse, Pagination,
    MessageResponse, MessageListResponse, PartialSaveResponse, StopResponse,
)
from schemas.threads import LastMessagePreview
from services import (
    AuthService, ChatCoordinator, ChatProvider, MessageService, PerformanceMonitor,
    RateLimiter, ThreadService, TitleGenerator,
)
from services.rate_limiter import RateLimitResult
from utils import sanitize_input, truncate

logger = logging.getLogger(__name__)

router = APIRouter()

# Bearer tokens are issued by the identity provider; only verification happens here.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


async def get_current_user_id(token: Optional[str] = Depends(oauth2_scheme)) -> str:
    """Opaque id of the authenticated caller; 401 when absent or invalid."""
    return AuthService.user_id_from_token(token)


def get_coordinator(request: Request) -> ChatCoordinator:
    return request.app.state.coordinator


def rate_limited(category: str) -> Callable:
    """Dependency that consumes one request of `category` for the caller."""
    async def dependency(
        request: Request,
        response: Response,
        user_id: str = Depends(get_current_user_id),
    ) -> RateLimitResult:
        result = request.app.state.rate_limiter.enforce(category, user_id)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)
        return result
    return dependency


def thread_response(thread: Thread, message_count: Optional[int] = None, last: Optional[Message] = None) -> ThreadResponse:
    return ThreadResponse(
        id=thread.id,
        model=thread.model,
        title=thread.title,
        title_source=thread.title_source,
        created_at=thread.created_at,
        updated_at=thread.updated_at,
        message_count=message_count,
        last_message=LastMessagePreview(
            role=last.role,
            content=truncate(last.content, 100),
            created_at=last.created_at,
        ) if last else None,
    )


# Chat endpoints
@router.post("/thread", response_model=ThreadCreated, status_code=status.HTTP_201_CREATED)
async def create_thread(
    thread: ThreadCreate,
    user_id: str = Depends(get_current_user_id),
    _limit: RateLimitResult = Depends(rate_limited("thread")),
    coordinator: ChatCoordinator = Depends(get_coordinator),
) -> ThreadCreated:
    """Create a conversation thread from the user's first prompt."""
    try:
        db_thread = coordinator.create_thread(user_id, thread.prompt, thread.model)
    except SQLAlchemyError as e:
        raise PersistenceError("Error creating thread") from e

    return ThreadCreated(
        thread_id=db_thread.id,
        prompt=sanitize_input(thread.prompt),
        model=thread.model,
    )


@router.post("/chat")
async def chat(
    req: ChatRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    limit: RateLimitResult = Depends(rate_limited("chat")),
    coordinator: ChatCoordinator = Depends(get_coordinator),
):
    """
    Submit a chat turn.

    Normal requests persist the trailing user message and stream the
    assistant's reply as server-sent events. Requests with `isPartial` only
    save `partialContent` as a stopped assistant message.
    """
    logger.info(
        "Chat request received",
        extra={"user_id": user_id, "thread_id": req.thread_id, "model": req.model,
               "messages_count": len(req.messages), "is_partial": req.is_partial},
    )

    if req.is_partial:
        message = coordinator.save_partial(user_id, req)
        return PartialSaveResponse(message_id=message.id)

    turn = coordinator.begin_turn(user_id, req)
    background_tasks.add_task(coordinator.maybe_generate_title, user_id, turn.thread_id, turn)

    return StreamingResponse(
        coordinator.stream(turn, req.messages),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-RateLimit-Remaining": str(limit.remaining),
        },
    )


@router.post("/chat/{thread_id}/stop", response_model=StopResponse)
async def stop_chat(
    thread_id: UUID,
    user_id: str = Depends(get_current_user_id),
    _limit: RateLimitResult = Depends(rate_limited("chat")),
    coordinator: ChatCoordinator = Depends(get_coordinator),
) -> StopResponse:
    """Stop the caller's in-flight stream on a thread; the partial reply is saved."""
    return StopResponse(stopped=coordinator.stop(user_id, thread_id))


# Thread management endpoints
@router.get("/threads", response_model=ThreadListResponse)
async def list_threads(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    _limit: RateLimitResult = Depends(rate_limited("general")),
    db: Session = Depends(get_db)
) -> ThreadListResponse:
    """List the caller's threads, most recently active first."""
    threads = ThreadService.get_user_threads(db=db, user_id=user_id, skip=(page - 1) * limit, limit=limit)
    total = ThreadService.count_user_threads(db, user_id)
    summaries = ThreadService.get_thread_summaries(db, [thread.id for thread in threads])

    return ThreadListResponse(
        threads=[thread_response(thread, *summaries[thread.id]) for thread in threads],
        pagination=Pagination.build(page, limit, total, len(threads)),
    )


@router.get("/threads/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: UUID,
    user_id: str = Depends(get_current_user_id),
    _limit: RateLimitResult = Depends(rate_limited("general")),
    db: Session = Depends(get_db)
) -> ThreadResponse:
    """Get a specific thread by ID."""
    thread = ThreadService.get_thread(db=db, thread_id=thread_id, user_id=user_id)

    if not thread:
        raise NotFoundError("Thread not found")

    return thread_response(thread, *ThreadService.get_thread_summaries(db, [thread.id])[thread.id])


@router.patch("/threads/{thread_id}", response_model=ThreadResponse)
async def rename_thread(
    thread_id: UUID,
    thread_update: ThreadUpdate,
    user_id: str = Depends(get_current_user_id),
    _limit: RateLimitResult = Depends(rate_limited("general")),
    db: Session = Depends(get_db)
) -> ThreadResponse:
    """Rename a thread. A user-chosen title is never replaced automatically."""
    updated_thread = ThreadService.rename_thread(db=db, thread_id=thread_id, user_id=user_id, title=thread_update.title)

    if not updated_thread:
        raise NotFoundError("Thread not found")

    return thread_response(updated_thread)


@router.delete("/threads/{thread_id}")
async def delete_thread(
    thread_id: UUID,
    user_id: str = Depends(get_current_user_id),
    _limit: RateLimitResult = Depends(rate_limited("general")),
    db: Session = Depends(get_db)
) -> dict:
    """Delete a thread and its messages."""
    deleted = ThreadService.delete_thread(db=db, thread_id=thread_id, user_id=user_id)

    if not deleted:
        raise NotFoundError("Thread not found")

    return {"message": "Thread deleted successfully"}


@router.get("/threads/{thread_id}/messages", response_model=MessageListResponse)
async def list_thread_messages(
    thread_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user_id),
    _limit: RateLimitResult = Depends(rate_limited("general")),
    db: Session = Depends(get_db)
) -> MessageListResponse:
    """Paginated message history of one of the caller's threads."""
    messages, total = MessageService.list_thread_messages(
        db, thread_id, user_id, limit=limit, offset=(page - 1) * limit
    )

    return MessageListResponse(
        thread_id=thread_id,
        messages=[MessageResponse.model_validate(message) for message in messages],
        pagination=Pagination.build(page, limit, total, len(messages)),
    )


# Health endpoints
@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "chat-stream-coordinator"}


@router.get("/health/detailed")
async def detailed_health_check(request: Request, db: Session = Depends(get_db)):
    """Database round trip, row counts, provider configuration and stream metrics."""
    coordinator: ChatCoordinator = request.app.state.coordinator
    health_status = {
        "status": "healthy",
        "service": "chat-stream-coordinator",
        "checks": {}
    }

    try:
        start = time.perf_counter()
        db.execute(text("SELECT 1"))
        connection_ms = round((time.perf_counter() - start) * 1000, 2)
        health_status["checks"]["database"] = {
            "status": "healthy" if connection_ms < 100 else "slow",
            "connection_ms": connection_ms,
            "threads": db.query(func.count(Thread.id)).scalar(),
            "messages": db.query(func.count(Message.id)).scalar(),
        }
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        health_status["checks"]["database"] = {"status": "unhealthy"}
        health_status["status"] = "unhealthy"

    health_status["checks"]["provider"] = {
        "status": "configured" if getattr(coordinator.provider, "is_configured", False) else "not_configured"
    }
    health_status["metrics"] = coordinator.monitor.get_all_stats()
    health_status["titles"] = coordinator.title_generator.get_stats()

    return health_status


def create_app(
    provider=None,
    session_factory=SessionLocal,
    rate_limiter: Optional[RateLimiter] = None,
    monitor: Optional[PerformanceMonitor] = None,
) -> FastAPI:
    """Build the application with its process-wide services."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        missing = create_tables(engine)
        if missing:
            logger.error(f"Tables missing after startup: {', '.join(missing)}")
        logger.info("Chat service started")
        yield
        logger.info("Chat service stopped")

    app = FastAPI(
        title="Chat Stream Coordinator",
        version="1.0.0",
        lifespan=lifespan
    )

    provider = provider or ChatProvider()
    app.state.monitor = monitor or PerformanceMonitor()
    app.state.rate_limiter = rate_limiter or RateLimiter()
    app.state.coordinator = ChatCoordinator(
        session_factory=session_factory,
        provider=provider,
        title_generator=TitleGenerator(provider),
        monitor=app.state.monitor,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
        max_age=3600
    )

    register_exception_handlers(app)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
