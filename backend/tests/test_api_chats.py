from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect


PASSWORD = "password123!"


def _signup(client: TestClient, display_name: str) -> tuple[str, str]:
    email = f"u-{uuid.uuid4().hex}@test.com"
    r = client.post(
        "/v1/auth/register",
        json={"email": email, "display_name": display_name, "password": PASSWORD},
    )
    assert r.status_code == 201, r.text
    user_id = r.json()["user_id"]
    r = client.post("/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.text
    return user_id, r.json()["access_token"]


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_chat_messages_and_unread_counts(client: TestClient) -> None:
    alice_id, alice = _signup(client, "Alice")
    bob_id, bob = _signup(client, "Bob")

    r = client.post("/v1/chats", json={"other_user_id": bob_id}, headers=_auth(alice))
    assert r.status_code == 200, r.text
    chat_id = r.json()["chat_id"]
    assert chat_id == "_".join(sorted([alice_id, bob_id]))

    # Creating again from the other side converges on the same thread.
    r = client.post("/v1/chats", json={"other_user_id": alice_id}, headers=_auth(bob))
    assert r.json()["chat_id"] == chat_id

    for text in ["hi bob", "  are you around?  "]:
        r = client.post(
            f"/v1/chats/{chat_id}/messages", json={"text": text}, headers=_auth(alice)
        )
        assert r.status_code == 201, r.text

    r = client.get(f"/v1/chats/{chat_id}/messages", headers=_auth(bob))
    assert r.status_code == 200
    items = r.json()["items"]
    assert [m["text"] for m in items] == ["hi bob", "are you around?"]
    assert all(m["sender_id"] == alice_id and not m["is_read"] for m in items)

    bob_view = client.get("/v1/chats", headers=_auth(bob)).json()["items"][0]
    assert bob_view["unread_count"] == 2
    assert bob_view["last_message_text"] == "are you around?"
    assert bob_view["participant_info"][alice_id]["display_name"] == "Alice"
    alice_view = client.get("/v1/chats", headers=_auth(alice)).json()["items"][0]
    assert alice_view["unread_count"] == 0

    r = client.post(f"/v1/chats/{chat_id}/read", headers=_auth(bob))
    assert r.status_code == 200
    assert r.json() == {"marked": 2}
    assert client.get("/v1/chats", headers=_auth(bob)).json()["items"][0]["unread_count"] == 0


def test_chat_access_and_validation(client: TestClient) -> None:
    alice_id, alice = _signup(client, "Alice")
    bob_id, _ = _signup(client, "Bob")
    _, carol = _signup(client, "Carol")

    r = client.post("/v1/chats", json={"other_user_id": alice_id}, headers=_auth(alice))
    assert r.status_code == 422
    assert r.json()["code"] == "CHAT_SELF"

    chat_id = client.post(
        "/v1/chats", json={"other_user_id": bob_id}, headers=_auth(alice)
    ).json()["chat_id"]

    r = client.get(f"/v1/chats/{chat_id}/messages", headers=_auth(carol))
    assert r.status_code == 403
    assert r.json()["code"] == "CHAT_FORBIDDEN"

    r = client.post(
        f"/v1/chats/{chat_id}/messages", json={"text": "let me in"}, headers=_auth(carol)
    )
    assert r.status_code == 403

    r = client.get("/v1/chats/nope/messages", headers=_auth(alice))
    assert r.status_code == 404

    r = client.post(
        f"/v1/chats/{chat_id}/messages", json={"text": "   "}, headers=_auth(alice)
    )
    assert r.status_code == 422
    assert r.json()["code"] == "MESSAGE_INVALID"


def test_chat_websocket_streams_messages(client: TestClient) -> None:
    alice_id, alice = _signup(client, "Alice")
    bob_id, bob = _signup(client, "Bob")
    chat_id = client.post(
        "/v1/chats", json={"other_user_id": bob_id}, headers=_auth(alice)
    ).json()["chat_id"]

    with client.websocket_connect(f"/v1/chats/{chat_id}/ws?token={bob}") as ws:
        assert ws.receive_json() == {"items": []}

        client.post(f"/v1/chats/{chat_id}/messages", json={"text": "ping"}, headers=_auth(alice))
        items = ws.receive_json()["items"]
        assert [(m["sender_id"], m["text"], m["is_read"]) for m in items] == [
            (alice_id, "ping", False)
        ]

        client.post(f"/v1/chats/{chat_id}/read", headers=_auth(bob))
        items = ws.receive_json()["items"]
        assert [m["is_read"] for m in items] == [True]


def test_chat_list_websocket_tracks_unread(client: TestClient) -> None:
    _, alice = _signup(client, "Alice")
    bob_id, bob = _signup(client, "Bob")

    with client.websocket_connect(f"/v1/chats/ws?token={bob}") as ws:
        assert ws.receive_json() == {"items": []}

        chat_id = client.post(
            "/v1/chats", json={"other_user_id": bob_id}, headers=_auth(alice)
        ).json()["chat_id"]
        created = ws.receive_json()["items"]
        assert [(c["id"], c["unread_count"]) for c in created] == [(chat_id, 0)]

        client.post(f"/v1/chats/{chat_id}/messages", json={"text": "yo"}, headers=_auth(alice))
        updated = ws.receive_json()["items"]
        assert [(c["last_message_text"], c["unread_count"]) for c in updated] == [("yo", 1)]


def test_chat_websocket_rejects_outsiders(client: TestClient) -> None:
    _, alice = _signup(client, "Alice")
    bob_id, _ = _signup(client, "Bob")
    _, carol = _signup(client, "Carol")
    chat_id = client.post(
        "/v1/chats", json={"other_user_id": bob_id}, headers=_auth(alice)
    ).json()["chat_id"]

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/v1/chats/{chat_id}/ws?token={carol}"):
            pass
    assert exc.value.code == 4403
