from app.models.chat import SenderType
from app.services.away_message import AwayMessageService
from app.services.conversations import ConversationService

WELCOME = "Thanks for reaching out! We reply within the hour."


def _business_messages(store, conversation_id):
    return [
        m for m in store.select_messages(conversation_id, descending=False)
        if m.sender_type == SenderType.BUSINESS
    ]


def test_new_conversation_gets_exactly_one_welcome(store, make_business):
    business = make_business(away_message=WELCOME, away_message_enabled=True)
    service = ConversationService(store)

    conversation, created = service.find_or_create(business.id, "ada@example.com")
    again, created_again = service.find_or_create(business.id, "ADA@example.com")
    AwayMessageService(store).maybe_send_away(business.id, conversation.id)

    assert created is True
    assert created_again is False
    assert again.id == conversation.id
    welcome = _business_messages(store, conversation.id)
    assert [m.content for m in welcome] == [WELCOME]


def test_disabled_or_empty_away_message_sends_nothing(store, make_business, make_conversation):
    disabled = make_business(away_message=WELCOME, away_message_enabled=False)
    blank = make_business(away_message="   ", away_message_enabled=True)
    service = AwayMessageService(store)

    for business in (disabled, blank):
        conversation = make_conversation(business.id)
        assert service.maybe_send_away(business.id, conversation.id) is None
        assert _business_messages(store, conversation.id) == []


def test_racing_triggers_deliver_once(store, make_business, make_conversation, monkeypatch):
    business = make_business(away_message=WELCOME, away_message_enabled=True)
    conversation = make_conversation(business.id)
    service = AwayMessageService(store)
    # both triggers pass the existence check before either has written
    monkeypatch.setattr(store, "find_business_message", lambda *args: None)

    first = service.maybe_send_away(business.id, conversation.id)
    second = service.maybe_send_away(business.id, conversation.id)

    assert first is not None
    assert second is None
    assert len(_business_messages(store, conversation.id)) == 1


def test_changed_away_message_is_sent_once_more(store, make_business, make_conversation):
    business = make_business(away_message=WELCOME, away_message_enabled=True)
    conversation = make_conversation(business.id)
    service = AwayMessageService(store)
    service.maybe_send_away(business.id, conversation.id)

    store.update_business(business.id, away_message="We're closed for the holidays.")
    service.maybe_send_away(business.id, conversation.id)
    service.maybe_send_away(business.id, conversation.id)

    assert len(_business_messages(store, conversation.id)) == 2


def test_missing_conversation_is_logged_not_raised(store, make_business):
    business = make_business(away_message=WELCOME, away_message_enabled=True)

    assert AwayMessageService(store).maybe_send_away(business.id, "no-such-conversation") is None


def test_enter_endpoint_triggers_welcome_once(client, store, make_business, make_conversation):
    business = make_business(away_message=WELCOME, away_message_enabled=True)
    conversation = make_conversation(business.id, customer_email="ada@example.com")

    first = client.post(
        f"/chat/conversations/{conversation.id}/enter", json={"customer_email": "ada@example.com"}
    )
    second = client.post(
        f"/chat/conversations/{conversation.id}/enter", json={"customer_email": "ada@example.com"}
    )

    assert first.status_code == 200, first.text
    assert first.json() == {"away_message_sent": True}
    assert second.json() == {"away_message_sent": False}
    assert len(_business_messages(store, conversation.id)) == 1


def test_enter_endpoint_rejects_other_customers(client, make_business, make_conversation):
    business = make_business(away_message=WELCOME, away_message_enabled=True)
    conversation = make_conversation(business.id, customer_email="ada@example.com")

    r = client.post(
        f"/chat/conversations/{conversation.id}/enter", json={"customer_email": "eve@example.com"}
    )

    assert r.status_code == 403
