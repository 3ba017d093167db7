from uuid import uuid4

from .conftest import MODEL, auth_headers
from .test_chat_api import create_thread, post_chat, user


def test_list_threads_with_summary_and_pagination(client):
    first = create_thread(client, prompt="Explain recursion")
    second = create_thread(client, prompt="Explain closures")
    create_thread(client, prompt="Explain generators", user_id="user-b")
    post_chat(client, first, [user("Explain recursion")])

    response = client.get("/threads", params={"page": 1, "limit": 1}, headers=auth_headers())

    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "hasMore": True, "totalPages": 2}
    assert [t["id"] for t in body["threads"]] == [first]
    assert body["threads"][0]["messageCount"] == 2
    assert body["threads"][0]["lastMessage"]["role"] == "assistant"

    page_two = client.get("/threads", params={"page": 2, "limit": 1}, headers=auth_headers()).json()
    assert [t["id"] for t in page_two["threads"]] == [second]
    assert page_two["threads"][0]["messageCount"] == 0
    assert page_two["threads"][0]["lastMessage"] is None
    assert page_two["pagination"]["hasMore"] is False


def test_rename_locks_title(client):
    thread_id = create_thread(client)

    response = client.patch(f"/threads/{thread_id}", json={"title": "  Reversing strings  "}, headers=auth_headers())

    assert response.status_code == 200
    assert response.json()["title"] == "Reversing strings"
    assert response.json()["titleSource"] == "user"

    post_chat(client, thread_id, [user("How do I reverse a string in Python?")])

    thread = client.get(f"/threads/{thread_id}", headers=auth_headers()).json()
    assert thread["title"] == "Reversing strings"


def test_rename_rejects_blank_title(client):
    thread_id = create_thread(client)

    response = client.patch(f"/threads/{thread_id}", json={"title": "   "}, headers=auth_headers())

    assert response.status_code == 400


def test_delete_thread_removes_messages(client):
    thread_id = create_thread(client)
    post_chat(client, thread_id, [user("Hello")])

    response = client.delete(f"/threads/{thread_id}", headers=auth_headers())

    assert response.status_code == 200
    assert client.get(f"/threads/{thread_id}", headers=auth_headers()).status_code == 404
    assert client.get(f"/threads/{thread_id}/messages", headers=auth_headers()).status_code == 404


def test_threads_are_private_to_owner(client):
    thread_id = create_thread(client, user_id="user-a")
    other = auth_headers("user-b")

    assert client.get(f"/threads/{thread_id}", headers=other).status_code == 404
    assert client.get(f"/threads/{thread_id}/messages", headers=other).status_code == 404
    assert client.patch(f"/threads/{thread_id}", json={"title": "Mine now"}, headers=other).status_code == 404
    assert client.delete(f"/threads/{thread_id}", headers=other).status_code == 404
    assert client.get("/threads", headers=other).json()["threads"] == []


def test_message_history_pagination(client):
    thread_id = create_thread(client)
    post_chat(client, thread_id, [user("First question")])

    body = client.get(
        f"/threads/{thread_id}/messages", params={"page": 2, "limit": 1}, headers=auth_headers()
    ).json()

    assert body["threadId"] == thread_id
    assert [m["role"] for m in body["messages"]] == ["assistant"]
    assert body["pagination"]["total"] == 2
    assert body["pagination"]["hasMore"] is False


def test_unknown_thread_is_not_found(client):
    response = client.get(f"/threads/{uuid4()}", headers=auth_headers())

    assert response.status_code == 404
    assert response.json() == {"error": "Thread not found"}


def test_create_thread_validates_prompt(client):
    response = client.post("/thread", json={"prompt": "", "model": MODEL}, headers=auth_headers())

    assert response.status_code == 400
    assert response.json()["error"].startswith("Validation failed: prompt")


def test_create_thread_sanitizes_echoed_prompt(client):
    response = client.post(
        "/thread",
        json={"prompt": "Hello <script>alert(1)</script>world", "model": MODEL},
        headers=auth_headers(),
    )

    assert response.status_code == 201
    assert response.json()["prompt"] == "Hello world"


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "service": "chat-stream-coordinator"}


def test_detailed_health(client):
    thread_id = create_thread(client)
    post_chat(client, thread_id, [user("Hello")])

    body = client.get("/health/detailed").json()

    assert body["checks"]["database"]["threads"] == 1
    assert body["checks"]["database"]["messages"] == 2
    assert body["checks"]["provider"] == {"status": "configured"}
    assert body["metrics"]["chat.stream"]["count"] == 1
    assert body["titles"]["titles_generated"] == 1
