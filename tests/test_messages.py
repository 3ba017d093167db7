from datetime import timedelta

import pytest

from errors import NotFoundError, OwnershipError, ValidationError
from models import Message
from services.messages import MessageService
from services.threads import ThreadService
from utils import utc_now

from .conftest import MODEL

OTHER_MODEL = "anthropic/claude-3.5-sonnet"


@pytest.fixture
def thread(db):
    return ThreadService.create_thread(db, "user-a", MODEL)


def _age(db, message, milliseconds):
    message.created_at = utc_now() - timedelta(milliseconds=milliseconds)
    db.commit()


def test_upsert_within_window_updates_model_instead_of_inserting(db, thread):
    first = MessageService.upsert_message(db, "user-a", thread.id, "user", "Hello", MODEL)
    second = MessageService.upsert_message(db, "user-a", thread.id, "user", "Hello", OTHER_MODEL)

    assert second.id == first.id
    assert second.model == OTHER_MODEL
    assert MessageService.count_thread_messages(db, thread.id) == 1


def test_create_within_window_returns_existing_message_untouched(db, thread):
    first = MessageService.create_message(db, "user-a", thread.id, "assistant", "Hi there", MODEL)
    second = MessageService.create_message(db, "user-a", thread.id, "assistant", "Hi there", OTHER_MODEL)

    assert second.id == first.id
    assert second.model == MODEL
    assert MessageService.count_thread_messages(db, thread.id) == 1


def test_identical_creates_outside_window_yield_two_rows(db, thread):
    first = MessageService.create_message(db, "user-a", thread.id, "user", "Hello", MODEL)
    _age(db, first, 2500)

    second = MessageService.create_message(db, "user-a", thread.id, "user", "Hello", MODEL)

    assert second.id != first.id
    assert MessageService.count_thread_messages(db, thread.id) == 2


def test_dedup_distinguishes_role_and_content(db, thread):
    MessageService.upsert_message(db, "user-a", thread.id, "user", "Hello", MODEL)
    MessageService.upsert_message(db, "user-a", thread.id, "assistant", "Hello", MODEL)
    MessageService.upsert_message(db, "user-a", thread.id, "user", "Hello!", MODEL)

    assert MessageService.count_thread_messages(db, thread.id) == 3


def test_window_is_configurable(db, thread):
    first = MessageService.upsert_message(db, "user-a", thread.id, "user", "Hello", MODEL)
    _age(db, first, 2500)

    again = MessageService.upsert_message(db, "user-a", thread.id, "user", "Hello", MODEL, window_ms=5000)

    assert again.id == first.id


def test_client_message_id_is_idempotent_outside_window(db, thread):
    first = MessageService.upsert_message(
        db, "user-a", thread.id, "user", "Hello", MODEL, client_message_id="msg-1"
    )
    _age(db, first, 10_000)

    retry = MessageService.upsert_message(
        db, "user-a", thread.id, "user", "Hello", OTHER_MODEL, client_message_id="msg-1"
    )

    assert retry.id == first.id
    assert retry.model == OTHER_MODEL
    assert MessageService.count_thread_messages(db, thread.id) == 1


def test_find_recent_duplicate_returns_most_recent_match(db, thread):
    older = MessageService.create_message(db, "user-a", thread.id, "user", "Hello", MODEL)
    _age(db, older, 3000)
    newer = MessageService.create_message(db, "user-a", thread.id, "user", "Hello", MODEL)

    found = MessageService.find_recent_duplicate(db, thread.id, "user", "Hello", window_ms=5000)

    assert found.id == newer.id
    assert MessageService.find_recent_duplicate(db, thread.id, "user", "Goodbye") is None


def test_upsert_keeps_reasoning_alongside_content(db, thread):
    message = MessageService.upsert_message(
        db, "user-a", thread.id, "assistant", "42", MODEL, reasoning="Six times seven."
    )

    assert message.content == "42"
    assert message.reasoning == "Six times seven."


def test_write_touches_thread(db, thread):
    before = thread.updated_at
    MessageService.create_message(db, "user-a", thread.id, "user", "Hello", OTHER_MODEL)

    refreshed = ThreadService.get_thread(db, thread.id)
    db.refresh(refreshed)
    assert refreshed.model == OTHER_MODEL
    assert refreshed.updated_at >= before


def test_write_to_foreign_thread_is_rejected(db, thread):
    with pytest.raises(OwnershipError):
        MessageService.create_message(db, "user-b", thread.id, "user", "Hello", MODEL)

    with pytest.raises(OwnershipError):
        MessageService.upsert_message(db, "user-b", thread.id, "user", "Hello", MODEL)

    assert db.query(Message).count() == 0


@pytest.mark.parametrize("role,content", [
    ("tool", "Hello"),
    ("user", "   "),
    ("user", "a" * 50_001),
])
def test_invalid_messages_are_rejected(db, thread, role, content):
    with pytest.raises(ValidationError):
        MessageService.create_message(db, "user-a", thread.id, role, content, MODEL)


def test_content_at_size_limit_is_accepted(db, thread):
    message = MessageService.create_message(db, "user-a", thread.id, "user", "a" * 50_000, MODEL)

    assert len(message.content) == 50_000


def test_list_thread_messages_orders_and_paginates(db, thread):
    for index in range(5):
        MessageService.create_message(db, "user-a", thread.id, "user", f"Message {index}", MODEL)

    messages, total = MessageService.list_thread_messages(db, thread.id, "user-a", limit=2, offset=2)

    assert total == 5
    assert [m.content for m in messages] == ["Message 2", "Message 3"]


def test_list_thread_messages_requires_ownership(db, thread):
    with pytest.raises(NotFoundError):
        MessageService.list_thread_messages(db, thread.id, "user-b")
