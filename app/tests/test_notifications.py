import pytest

from app.config import settings
from app.models.chat import SenderType
from app.services.notifications import EmailNotifier, build_email
from app.services.messages import MessageService

from conftest import at


class _ImmediateExecutor:
    """Runs submitted work inline so tests can assert on what was sent."""

    def submit(self, fn, *args):
        fn(*args)


@pytest.fixture()
def email_enabled(monkeypatch):
    monkeypatch.setenv("TESTING", "false")
    monkeypatch.setattr(settings, "EMAIL_HOST", "smtp.example.com")
    monkeypatch.setattr(settings, "EMAIL_FROM", "noreply@example.com")
    monkeypatch.setattr(settings, "APP_URL", "https://chat.example.com/")


@pytest.fixture()
def thread(store, make_business, make_conversation):
    business = make_business(email="owner@bakery.com", phone="+15550123")
    conversation = store.update_conversation(
        make_conversation(business.id, customer_email="ada@example.com").id,
        customer_name="Ada",
    )
    return business, conversation


def test_business_message_emails_the_customer(email_enabled, thread, add_message):
    business, conversation = thread
    message = add_message(conversation, content="Your cake is ready", sender_type=SenderType.BUSINESS)

    to_email, subject, body = build_email(message, conversation, business)

    assert to_email == "ada@example.com"
    assert subject == "New message from Corner Bakery"
    assert body.startswith("Your cake is ready")
    assert f"https://chat.example.com/chat/+15550123/{conversation.id}" in body


def test_customer_message_emails_the_business(email_enabled, thread, add_message):
    business, conversation = thread
    message = add_message(conversation, content="Is it gluten free?", created_at=at(0))

    to_email, subject, body = build_email(message, conversation, business)

    assert to_email == "owner@bakery.com"
    assert subject == "New message from Ada"
    assert f"/dashboard/{conversation.id}" in body


def test_image_message_is_described(email_enabled, thread, add_message):
    business, conversation = thread
    message = add_message(conversation, content=None, image_url="https://img.example.com/a.jpg")

    _to, _subject, body = build_email(message, conversation, business)

    assert body.startswith("Ada sent you an image")


def test_notifier_is_disabled_under_tests(thread, add_message, patch_email):
    business, conversation = thread
    message = add_message(conversation)

    assert EmailNotifier(_ImmediateExecutor()).notify(message, conversation, business) is None
    assert patch_email == []


def test_send_triggers_one_email(email_enabled, store, thread, patch_email):
    business, conversation = thread
    service = MessageService(store, EmailNotifier(_ImmediateExecutor()))

    service.send_message(conversation.id, SenderType.CUSTOMER, "ada@example.com", content="hi")

    assert [(to, subject) for to, subject, _body in patch_email] == [
        ("owner@bakery.com", "New message from Ada")
    ]


def test_delivery_failure_does_not_fail_the_send(email_enabled, store, thread, monkeypatch):
    from app.services import notifications as notifications_module

    def broken(*args):
        raise ConnectionRefusedError("smtp down")

    monkeypatch.setattr(notifications_module, "send_email", broken)
    business, conversation = thread
    service = MessageService(store, EmailNotifier(_ImmediateExecutor()))

    message = service.send_message(
        conversation.id, SenderType.BUSINESS, business.id, content="still sent",
        acting_business_id=business.id,
    )

    assert store.get_message(message.id).content == "still sent"
