import asyncio

from app.models.chat import Conversation, MessageStatus, SenderType
from app.services.conversations import ConversationService
from app.services.messages import MessageService
from app.sync.backend import ServiceBackend
from app.sync.feed_client import LiveFeedClient
from app.sync.inbox import InboxView

from conftest import at, auth_headers, settle


def _set_updated_at(db_session, conversation_id, seconds):
    row = db_session.get(Conversation, conversation_id)
    row.updated_at = at(seconds)
    db_session.commit()


def test_unread_counts_only_unread_customer_messages(store, make_business, make_conversation, add_message):
    business = make_business()
    conversation = make_conversation(business.id)
    add_message(conversation, content="one")
    add_message(conversation, content="two", status=MessageStatus.DELIVERED)
    add_message(conversation, content="seen", status=MessageStatus.READ)
    add_message(conversation, content="reply", sender_type=SenderType.BUSINESS)

    [summary] = ConversationService(store).list_summaries(business.id)

    assert summary.unread_count == 2


def test_preview_falls_back_to_image_then_empty(store, make_business, make_conversation, add_message):
    business = make_business()
    with_image = make_conversation(business.id)
    empty = make_conversation(business.id)
    add_message(with_image, content=None, image_url="https://img.example.com/cake.jpg")

    summaries = {
        s.conversation.id: s for s in ConversationService(store).list_summaries(business.id)
    }

    assert summaries[with_image.id].latest_message_preview == "Image"
    assert summaries[empty.id].latest_message_preview == ""


def test_preview_is_latest_message_content(store, make_business, make_conversation, add_message):
    business = make_business()
    conversation = make_conversation(business.id)
    add_message(conversation, content="first", created_at=at(1))
    add_message(conversation, content="latest", created_at=at(2))

    [summary] = ConversationService(store).list_summaries(business.id)

    assert summary.latest_message_preview == "latest"


def test_summaries_order_pinned_then_recent(store, db_session, make_business, make_conversation):
    business = make_business()
    old = make_conversation(business.id)
    recent = make_conversation(business.id)
    pinned = make_conversation(business.id, pinned=True)
    _set_updated_at(db_session, old.id, 1)
    _set_updated_at(db_session, recent.id, 5)
    _set_updated_at(db_session, pinned.id, 0)

    summaries = ConversationService(store).list_summaries(business.id)

    assert [s.conversation.id for s in summaries] == [pinned.id, recent.id, old.id]


def test_mark_read_zeroes_unread_and_is_idempotent(store, make_business, make_conversation, add_message):
    business = make_business()
    conversation = make_conversation(business.id)
    for i in range(3):
        add_message(conversation, content=f"question {i}")
    service = MessageService(store)

    assert service.mark_messages_as_read(business.id, conversation.id) == 3
    assert service.mark_messages_as_read(business.id, conversation.id) == 0

    [summary] = ConversationService(store).list_summaries(business.id)
    assert summary.unread_count == 0


def test_mark_read_requires_ownership(client, make_business, make_conversation, add_message):
    owner = make_business()
    intruder = make_business()
    conversation = make_conversation(owner.id)
    add_message(conversation)

    r = client.post(f"/conversations/{conversation.id}/read", headers=auth_headers(intruder))

    assert r.status_code == 403


def test_inbox_endpoint_returns_summaries(client, make_business, make_conversation, add_message):
    business = make_business()
    conversation = make_conversation(business.id)
    add_message(conversation, content="hi there")

    r = client.get("/conversations", headers=auth_headers(business))

    assert r.status_code == 200, r.text
    [summary] = r.json()
    assert summary["conversation"]["id"] == conversation.id
    assert summary["unread_count"] == 1
    assert summary["latest_message_preview"] == "hi there"


def test_inbox_view_recomputes_on_feed_events(
    session_factory, hub, store, make_business, make_conversation, add_message
):
    business = make_business()
    conversation = make_conversation(business.id)
    backend = ServiceBackend(session_factory, hub)

    async def main():
        async with InboxView(backend, LiveFeedClient(hub), business.id) as inbox:
            before = inbox.summary(conversation.id).unread_count
            add_message(conversation, content="knock knock")
            await settle()
            await inbox.wait_idle()
            after = inbox.summary(conversation.id).unread_count

            await inbox.mark_read(conversation.id)
            await settle()
            await inbox.wait_idle()
            return before, after, inbox.unread_total

    before, after, total = asyncio.run(main())

    assert (before, after, total) == (0, 1, 0)


def test_inbox_invalidations_coalesce(session_factory, hub, make_business, make_conversation):
    business = make_business()
    make_conversation(business.id)
    backend = ServiceBackend(session_factory, hub)

    async def main():
        inbox = InboxView(backend, LiveFeedClient(hub), business.id)
        await inbox.start()
        start = inbox.refresh_count
        for _ in range(5):
            inbox.invalidate()
        await inbox.wait_idle()
        refreshed = inbox.refresh_count - start
        await inbox.stop()
        return refreshed, hub.channel_count

    refreshed, channels = asyncio.run(main())

    assert refreshed == 1
    assert channels == 0


def test_delivered_moves_sent_forward_and_stays_unread(store, make_business, make_conversation, add_message):
    business = make_business()
    conversation = make_conversation(business.id)
    fresh = add_message(conversation, content="new")
    seen = add_message(conversation, content="old", status=MessageStatus.READ)
    reply = add_message(conversation, content="reply", sender_type=SenderType.BUSINESS)

    service = MessageService(store)

    assert service.mark_messages_as_delivered(business.id, conversation.id) == 1
    assert service.mark_messages_as_delivered(business.id, conversation.id) == 0
    assert store.get_message(fresh.id).status == MessageStatus.DELIVERED
    assert store.get_message(seen.id).status == MessageStatus.READ
    assert store.get_message(reply.id).status == MessageStatus.SENT
    [summary] = ConversationService(store).list_summaries(business.id)
    assert summary.unread_count == 1

    MessageService(store).mark_messages_as_read(business.id, conversation.id)
    assert store.get_message(fresh.id).status == MessageStatus.READ


def test_delivered_endpoint(client, make_business, make_conversation, add_message):
    owner = make_business()
    conversation = make_conversation(owner.id)
    add_message(conversation, content="new")

    intruder = client.post(
        f"/conversations/{conversation.id}/delivered", headers=auth_headers(make_business())
    )
    r = client.post(f"/conversations/{conversation.id}/delivered", headers=auth_headers(owner))

    assert intruder.status_code == 403
    assert r.status_code == 200, r.text
    assert r.json() == {"updated": 1}
