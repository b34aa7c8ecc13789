import logging
import os
import smtplib
from concurrent.futures import Future, ThreadPoolExecutor
from email.message import EmailMessage
from app.config import settings
from app.models.chat import SenderType
from app.schemas.chat import BusinessRecord, ConversationRecord, MessageRecord

logger = logging.getLogger(__name__)

# Thread pool for SMTP calls so message sends never wait on email delivery
_executor = ThreadPoolExecutor(max_workers=5)


# ---------- Email via SMTP ----------
def send_email(to_email: str, subject: str, body: str):
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.EMAIL_FROM
    msg["To"] = to_email
    msg.set_content(body)

    with smtplib.SMTP(settings.EMAIL_HOST, settings.EMAIL_PORT) as server:
        server.starttls()
        if settings.EMAIL_USERNAME:
            server.login(settings.EMAIL_USERNAME, settings.EMAIL_PASSWORD)
        server.send_message(msg)
    return {"sent": True}


def build_email(
    message: MessageRecord, conversation: ConversationRecord, business: BusinessRecord
) -> tuple[str, str, str]:
    """Return ``(to, subject, body)`` for the party that did not send ``message``."""
    base_url = settings.APP_URL.rstrip("/")
    if message.sender_type == SenderType.BUSINESS:
        sender_name = business.business_name or "Business"
        to_email = conversation.customer_email
        chat_url = f"{base_url}/chat/{business.phone or business.id}/{conversation.id}"
    else:
        sender_name = conversation.customer_name or conversation.customer_email
        to_email = business.email
        chat_url = f"{base_url}/dashboard/{conversation.id}"

    if message.image_url:
        text = f"{sender_name} sent you an image"
    else:
        text = message.content or "New message"

    subject = f"New message from {sender_name}"
    body = f"{text}\n\nReply here: {chat_url}\n"
    return to_email, subject, body


class EmailNotifier:
    """Fire-and-forget email notification for new messages.

    ``notify`` never raises: failures are logged and dropped so that a
    message send can not fail because its notification did.
    """

    def __init__(self, executor: ThreadPoolExecutor | None = None):
        self._executor = executor or _executor

    @property
    def enabled(self) -> bool:
        if os.getenv("TESTING", "").lower() in ("true", "1", "yes"):
            return False
        return settings.is_email_configured

    def _deliver(self, to_email: str, subject: str, body: str):
        try:
            send_email(to_email, subject, body)
        except Exception as e:
            logger.error(f"Failed to send email notification to {to_email}: {e}")

    def notify(
        self,
        message: MessageRecord,
        conversation: ConversationRecord,
        business: BusinessRecord,
    ) -> Future | None:
        if not self.enabled:
            logger.debug("Email not configured, skipping notification for %s", message.id)
            return None
        try:
            to_email, subject, body = build_email(message, conversation, business)
            return self._executor.submit(self._deliver, to_email, subject, body)
        except Exception as e:
            logger.error(f"Failed to prepare email notification for {message.id}: {e}")
            return None

    def notify_many(
        self,
        messages: list[MessageRecord],
        conversations: dict[str, ConversationRecord],
        business: BusinessRecord,
    ):
        for message in messages:
            conversation = conversations.get(message.conversation_id)
            if conversation is not None:
                self.notify(message, conversation, business)
