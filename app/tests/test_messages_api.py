import pytest
from fastapi import WebSocketDisconnect

from app.services.auth_service import create_access_token
from app.websocket.feed import CLOSE_NOT_AUTHENTICATED, CLOSE_NOT_FOUND

from conftest import auth_headers


@pytest.fixture()
def chat(client, make_business):
    """A business and a conversation opened through the public chat link."""
    business = make_business(phone="+15550111")
    r = client.post(
        "/chat/+15550111/conversations",
        json={"customer_email": "ada@example.com", "customer_name": "Ada"},
    )
    assert r.status_code == 200, r.text
    return business, r.json()


def test_customer_and_business_exchange_messages(client, chat):
    business, conversation = chat
    cid = conversation["id"]

    asked = client.post(
        f"/chat/conversations/{cid}/messages",
        json={"customer_email": "ADA@example.com", "content": "  Do you deliver?  "},
    )
    assert asked.status_code == 201, asked.text
    assert asked.json()["content"] == "Do you deliver?"
    assert asked.json()["sender_type"] == "customer"
    assert asked.json()["sender_id"] == "ada@example.com"
    assert asked.json()["status"] == "sent"

    replied = client.post(
        f"/conversations/{cid}/messages",
        json={"content": "Yes, within 5 miles", "reply_to_id": asked.json()["id"]},
        headers=auth_headers(business),
    )
    assert replied.status_code == 201, replied.text
    assert replied.json()["sender_id"] == business.id
    assert replied.json()["reply_to_id"] == asked.json()["id"]

    history = client.get(f"/chat/conversations/{cid}/messages")
    assert history.status_code == 200
    contents = [m["content"] for m in history.json()["items"]]
    assert contents == ["Do you deliver?", "Yes, within 5 miles"]


def test_business_edits_and_deletes_its_message(client, chat):
    business, conversation = chat
    headers = auth_headers(business)
    sent = client.post(
        f"/conversations/{conversation['id']}/messages", json={"content": "typo"}, headers=headers
    ).json()

    edited = client.patch(f"/messages/{sent['id']}", json={"content": "fixed"}, headers=headers)
    assert edited.status_code == 200, edited.text
    assert edited.json()["content"] == "fixed"

    blank = client.patch(f"/messages/{sent['id']}", json={"content": "  "}, headers=headers)
    assert blank.status_code == 422

    deleted = client.delete(f"/messages/{sent['id']}", headers=headers)
    assert deleted.status_code == 204

    again = client.delete(f"/messages/{sent['id']}", headers=headers)
    assert again.status_code == 404


def test_customer_message_can_not_be_edited_by_business(client, chat):
    business, conversation = chat
    asked = client.post(
        f"/chat/conversations/{conversation['id']}/messages",
        json={"customer_email": "ada@example.com", "content": "hello"},
    ).json()

    r = client.patch(
        f"/messages/{asked['id']}", json={"content": "rewritten"}, headers=auth_headers(business)
    )

    assert r.status_code == 403


def test_send_rejections(client, chat, make_business, make_conversation, add_message):
    business, conversation = chat
    cid = conversation["id"]
    elsewhere = make_conversation(business.id)
    foreign = add_message(elsewhere, content="other thread")

    impostor = client.post(
        f"/chat/conversations/{cid}/messages",
        json={"customer_email": "eve@example.com", "content": "hi"},
    )
    empty = client.post(
        f"/chat/conversations/{cid}/messages",
        json={"customer_email": "ada@example.com", "content": "   "},
    )
    bad_reply = client.post(
        f"/conversations/{cid}/messages",
        json={"content": "see above", "reply_to_id": foreign.id},
        headers=auth_headers(business),
    )
    other_business = client.post(
        f"/conversations/{cid}/messages",
        json={"content": "not mine"},
        headers=auth_headers(make_business()),
    )
    missing = client.post(
        "/chat/conversations/nope/messages",
        json={"customer_email": "ada@example.com", "content": "hi"},
    )

    assert impostor.status_code == 403
    assert empty.status_code == 422
    assert empty.json()["error"] == "validation_error"
    assert bad_reply.status_code == 422
    assert other_business.status_code == 403
    assert missing.status_code == 404


def test_missing_token_is_rejected(client, chat):
    _business, conversation = chat
    r = client.post(f"/conversations/{conversation['id']}/messages", json={"content": "hi"})
    assert r.status_code == 401


def test_broadcast_reaches_every_conversation(client, chat, store, make_conversation):
    business, conversation = chat
    second = make_conversation(business.id)

    r = client.post(
        "/broadcasts", json={"content": "Closed on Monday"}, headers=auth_headers(business)
    )

    assert r.status_code == 201, r.text
    assert {m["conversation_id"] for m in r.json()} == {conversation["id"], second.id}
    for cid in (conversation["id"], second.id):
        latest = store.latest_message(cid)
        assert latest.content == "Closed on Monday"


def test_broadcast_without_conversations(client, make_business):
    business = make_business()
    r = client.post("/broadcasts", json={"content": "anyone?"}, headers=auth_headers(business))
    assert r.status_code == 201
    assert r.json() == []


# ---------- websocket relay ----------
def test_conversation_socket_relays_inserts(client, chat, add_message, store):
    _business, conversation = chat
    record = store.get_conversation(conversation["id"])

    with client.websocket_connect(f"/ws/conversations/{conversation['id']}") as ws:
        # the pong proves the subscription is live
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        message = add_message(record, content="live!")
        frame = ws.receive_json()

    assert frame["eventType"] == "INSERT"
    assert frame["table"] == "messages"
    assert frame["new"]["id"] == message.id
    assert frame["new"]["content"] == "live!"
    assert frame["old"] is None


def test_business_socket_requires_valid_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/business?token=garbage"):
            pass
    assert exc.value.code == CLOSE_NOT_AUTHENTICATED

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/business"):
            pass
    assert exc.value.code == CLOSE_NOT_AUTHENTICATED


def test_unknown_conversation_socket_is_closed(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/conversations/nope"):
            pass
    assert exc.value.code == CLOSE_NOT_FOUND


def test_business_socket_relays_inbox_changes(client, chat, store, hub):
    business, conversation = chat
    token = create_access_token(business.email, business.id)

    with client.websocket_connect(f"/ws/business?token={token}") as ws:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

        store.update_conversation(conversation["id"], pinned=True)
        frame = ws.receive_json()

    assert frame["eventType"] == "UPDATE"
    assert frame["table"] == "conversations"
    assert frame["new"]["pinned"] is True
    assert frame["old"]["pinned"] is False
    assert hub.channel_count == 0


# ---------- image messages ----------
@pytest.fixture()
def cloudinary_configured(monkeypatch):
    from app.config import settings

    monkeypatch.setattr(settings, "CLOUDINARY_CLOUD_NAME", "demo")
    monkeypatch.setattr(settings, "CLOUDINARY_API_KEY", "key")
    monkeypatch.setattr(settings, "CLOUDINARY_API_SECRET", "secret")
    uploads = []

    def fake_upload(file, **options):
        uploads.append(options["folder"])
        return {"secure_url": "https://res.cloudinary.com/demo/cake.jpg"}

    monkeypatch.setattr("cloudinary.uploader.upload", fake_upload)
    return uploads


def test_business_sends_image_message(client, chat, cloudinary_configured):
    business, conversation = chat

    r = client.post(
        f"/conversations/{conversation['id']}/images",
        files={"file": ("cake.jpg", b"\xff\xd8\xff", "image/jpeg")},
        headers=auth_headers(business),
    )

    assert r.status_code == 201, r.text
    assert r.json()["image_url"] == "https://res.cloudinary.com/demo/cake.jpg"
    assert r.json()["content"] is None
    assert cloudinary_configured == [f"chatdesk/conversations/{conversation['id']}"]


def test_image_upload_rejects_other_types(client, chat, cloudinary_configured):
    business, conversation = chat

    r = client.post(
        f"/conversations/{conversation['id']}/images",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        headers=auth_headers(business),
    )

    assert r.status_code == 422
    assert cloudinary_configured == []


def test_image_upload_without_storage_configured(client, chat):
    business, conversation = chat

    r = client.post(
        f"/conversations/{conversation['id']}/images",
        files={"file": ("cake.jpg", b"\xff\xd8\xff", "image/jpeg")},
        headers=auth_headers(business),
    )

    assert r.status_code == 503
    assert r.json()["error"] == "store_error"
