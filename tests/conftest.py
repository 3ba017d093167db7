import asyncio
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("OPENROUTER_API_KEY", "dummy")

import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_core.runnables import RunnableLambda

from database import SessionLocal, engine
from models import Base
from services.auth import AuthService
from services.provider import StreamChunk

MODEL = "openai/gpt-4o-mini"
GENERATED_TITLE = "Reversing Strings In Python Made Simple"


def _raise_provider_down(_):
    raise RuntimeError("provider down")


class FakeProvider:
    """Scripted stand-in for the language-model provider."""

    is_configured = True

    def __init__(self, chunks=None, error=None, title=GENERATED_TITLE, title_error=False, hang=False):
        self.chunks = list(chunks if chunks is not None else [StreamChunk("text", "Use slicing: "), StreamChunk("text", "s[::-1]")])
        self.error = error
        self.title = title
        self.title_error = title_error
        self.hang = hang
        self.stream_calls = []
        self.closed = False
        self.finished = False

    def chat_model(self, model, reasoning=False):
        if self.title_error:
            return RunnableLambda(_raise_provider_down)
        return FakeListChatModel(responses=[self.title])

    async def stream(self, messages, model, reasoning=False):
        self.stream_calls.append({"messages": list(messages), "model": model, "reasoning": reasoning})
        try:
            for chunk in self.chunks:
                yield chunk
            if self.hang:
                # A provider that goes quiet, e.g. a long reasoning pause
                await asyncio.sleep(3600)
            if self.error is not None:
                raise self.error
            self.finished = True
        finally:
            self.closed = True


def text_chunks(*parts):
    return [StreamChunk("text", part) for part in parts]


def auth_headers(user_id="user-a"):
    return {"Authorization": f"Bearer {AuthService.create_access_token(user_id)}"}


@pytest.fixture(autouse=True)
def fresh_database():
    """Recreate the schema so every test starts from an empty store."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def app(provider):
    from main import create_app
    return create_app(provider=provider)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
