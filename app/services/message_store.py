"""Relational read/write contract used by every other part of the chat core.

``MessageStore`` wraps one SQLAlchemy session and an optional realtime hub.
Every method returns validated records, never ORM rows. Writes commit, then
publish one change event per affected row so subscribers see exactly what
was persisted.
"""

import hashlib
import logging
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import DuplicateSend, NotFound, StoreError
from app.models.business import Business, utc_now
from app.models.chat import (
    AwayMessageDelivery,
    Conversation,
    Message,
    MessageStatus,
    SenderType,
)
from app.realtime.hub import RealtimeHub
from app.schemas.chat import (
    BusinessRecord,
    ChangeEvent,
    ConversationRecord,
    Cursor,
    MessageRecord,
)

logger = logging.getLogger(__name__)

UNREAD_STATUSES = (MessageStatus.SENT, MessageStatus.DELIVERED)


def content_digest(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class MessageStore:
    def __init__(self, db: Session, hub: RealtimeHub | None = None):
        self.db = db
        self.hub = hub
        self._outbox: list[ChangeEvent] = []

    # ---------- transaction helpers ----------
    @contextmanager
    def _write(self, action: str):
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self._outbox.clear()
            logger.error(f"Store write failed ({action}): {e}")
            raise StoreError(f"Could not {action}") from e
        except Exception:
            self.db.rollback()
            self._outbox.clear()
            raise
        events, self._outbox = self._outbox, []
        if self.hub is not None and events:
            self.hub.publish_many(events)

    def _read(self, statement):
        try:
            return self.db.execute(statement)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Store read failed: {e}")
            raise StoreError("Could not read from store") from e

    def _emit(self, event_type: str, table: str, new=None, old=None, business_id=None):
        self._outbox.append(
            ChangeEvent(
                event_type=event_type,
                table=table,
                new=new,
                old=old,
                business_id=business_id,
            )
        )

    def _conversation_row(self, conversation_id: str) -> Conversation:
        row = self.db.get(Conversation, conversation_id)
        if row is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        return row

    def _message_row(self, message_id: str) -> Message:
        row = self.db.get(Message, message_id)
        if row is None:
            raise NotFound(f"Message {message_id} not found")
        return row

    # ---------- businesses ----------
    def get_business(self, business_id: str) -> BusinessRecord | None:
        row = self._read(select(Business).where(Business.id == business_id)).scalar_one_or_none()
        return BusinessRecord.model_validate(row) if row else None

    def get_business_by_email(self, email: str) -> BusinessRecord | None:
        row = self._read(select(Business).where(Business.email == email)).scalar_one_or_none()
        return BusinessRecord.model_validate(row) if row else None

    def get_business_by_phone(self, phone: str) -> BusinessRecord | None:
        row = self._read(select(Business).where(Business.phone == phone)).scalar_one_or_none()
        return BusinessRecord.model_validate(row) if row else None

    def get_password_hash(self, email: str) -> tuple[BusinessRecord, str] | None:
        row = self._read(select(Business).where(Business.email == email)).scalar_one_or_none()
        if row is None:
            return None
        return BusinessRecord.model_validate(row), row.password_hash

    def insert_business(self, **fields) -> BusinessRecord:
        row = Business(**fields)
        with self._write("create business"):
            self.db.add(row)
            self.db.flush()
        self.db.refresh(row)
        return BusinessRecord.model_validate(row)

    def update_business(self, business_id: str, **fields) -> BusinessRecord:
        with self._write("update business"):
            row = self.db.get(Business, business_id)
            if row is None:
                raise NotFound(f"Business {business_id} not found")
            for key, value in fields.items():
                setattr(row, key, value)
            row.updated_at = utc_now()
        self.db.refresh(row)
        return BusinessRecord.model_validate(row)

    # ---------- conversations ----------
    def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        row = self._read(
            select(Conversation).where(Conversation.id == conversation_id)
        ).scalar_one_or_none()
        return ConversationRecord.model_validate(row) if row else None

    def find_conversation(self, business_id: str, customer_email: str) -> ConversationRecord | None:
        row = self._read(
            select(Conversation).where(
                Conversation.business_id == business_id,
                Conversation.customer_email == customer_email,
            )
        ).scalar_one_or_none()
        return ConversationRecord.model_validate(row) if row else None

    def list_conversations(self, business_id: str, limit: int) -> list[ConversationRecord]:
        rows = self._read(
            select(Conversation)
            .where(Conversation.business_id == business_id)
            .order_by(Conversation.pinned.desc(), Conversation.updated_at.desc(), Conversation.id.desc())
            .limit(limit)
        ).scalars().all()
        return [ConversationRecord.model_validate(r) for r in rows]

    def list_conversation_ids(self, business_id: str) -> list[str]:
        return list(
            self._read(
                select(Conversation.id).where(Conversation.business_id == business_id)
            ).scalars().all()
        )

    def get_or_insert_conversation(self, **fields) -> tuple[ConversationRecord, bool]:
        """Insert a conversation unless one exists for (business_id, customer_email)."""
        row = Conversation(**fields)
        try:
            with self._write("create conversation"):
                self.db.add(row)
                self.db.flush()
                self._emit("INSERT", "conversations", new=ConversationRecord.model_validate(row),
                           business_id=row.business_id)
        except StoreError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            # lost the race against a concurrent find-or-create
            existing = self.find_conversation(fields["business_id"], fields["customer_email"])
            if existing is None:
                raise StoreError("Could not create conversation")
            logger.info(
                f"Conversation for {fields['customer_email']} already exists, reusing {existing.id}"
            )
            return existing, False
        self.db.refresh(row)
        return ConversationRecord.model_validate(row), True

    def update_conversation(self, conversation_id: str, **fields) -> ConversationRecord:
        with self._write("update conversation"):
            row = self._conversation_row(conversation_id)
            old = ConversationRecord.model_validate(row)
            for key, value in fields.items():
                setattr(row, key, value)
            row.updated_at = utc_now()
            self.db.flush()
            self._emit("UPDATE", "conversations", new=ConversationRecord.model_validate(row),
                       old=old, business_id=row.business_id)
        self.db.refresh(row)
        return ConversationRecord.model_validate(row)

    def touch_conversations(self, conversation_ids: list[str]):
        if not conversation_ids:
            return
        with self._write("touch conversations"):
            self._touch(conversation_ids)

    def _touch(self, conversation_ids: list[str]):
        now = utc_now()
        rows = self.db.execute(
            select(Conversation).where(Conversation.id.in_(conversation_ids))
        ).scalars().all()
        for row in rows:
            old = ConversationRecord.model_validate(row)
            row.updated_at = now
            self.db.flush()
            self._emit("UPDATE", "conversations", new=ConversationRecord.model_validate(row),
                       old=old, business_id=row.business_id)

    def _delete_messages(self, conversation_id: str, business_id: str) -> list[MessageRecord]:
        messages = self.db.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at, Message.id)
        ).scalars().all()
        deleted = [MessageRecord.model_validate(m) for m in messages]
        for record in deleted:
            self._emit("DELETE", "messages", old=record, business_id=business_id)
        self.db.query(Message).filter(
            Message.conversation_id == conversation_id
        ).delete(synchronize_session="fetch")
        return deleted

    def delete_messages_where(self, conversation_id: str) -> list[MessageRecord]:
        """Delete every message of the conversation, leaving the conversation row."""
        with self._write("delete messages"):
            business_id = self._conversation_row(conversation_id).business_id
            deleted = self._delete_messages(conversation_id, business_id)
        return deleted

    def delete_conversation(self, conversation_id: str) -> ConversationRecord:
        """Delete every message of the conversation, then the conversation row."""
        with self._write("delete conversation"):
            row = self._conversation_row(conversation_id)
            business_id = row.business_id
            old = ConversationRecord.model_validate(row)
            self._delete_messages(conversation_id, business_id)
            self.db.query(AwayMessageDelivery).filter(
                AwayMessageDelivery.conversation_id == conversation_id
            ).delete(synchronize_session=False)
            self.db.flush()
            self.db.delete(row)
            self._emit("DELETE", "conversations", old=old, business_id=business_id)
        return old

    # ---------- messages: reads ----------
    def get_message(self, message_id: str) -> MessageRecord | None:
        row = self._read(select(Message).where(Message.id == message_id)).scalar_one_or_none()
        return MessageRecord.model_validate(row) if row else None

    def select_messages(
        self,
        conversation_id: str,
        *,
        before: Cursor | None = None,
        after: Cursor | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[MessageRecord]:
        """Messages of one conversation in ``(created_at, id)`` keyset order."""
        statement = select(Message).where(Message.conversation_id == conversation_id)
        if before is not None:
            statement = statement.where(
                or_(
                    Message.created_at < before.created_at,
                    and_(Message.created_at == before.created_at, Message.id < before.id),
                )
            )
        if after is not None:
            statement = statement.where(
                or_(
                    Message.created_at > after.created_at,
                    and_(Message.created_at == after.created_at, Message.id > after.id),
                )
            )
        if descending:
            statement = statement.order_by(Message.created_at.desc(), Message.id.desc())
        else:
            statement = statement.order_by(Message.created_at.asc(), Message.id.asc())
        if limit is not None:
            statement = statement.limit(limit)
        rows = self._read(statement).scalars().all()
        return [MessageRecord.model_validate(r) for r in rows]

    def latest_message(self, conversation_id: str) -> MessageRecord | None:
        found = self.select_messages(conversation_id, descending=True, limit=1)
        return found[0] if found else None

    def find_business_message(self, conversation_id: str, sender_id: str, content: str) -> MessageRecord | None:
        row = self._read(
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_type == SenderType.BUSINESS,
                Message.sender_id == sender_id,
                Message.content == content,
            )
            .limit(1)
        ).scalar_one_or_none()
        return MessageRecord.model_validate(row) if row else None

    def count_unread(self, conversation_ids: list[str]) -> dict[str, int]:
        if not conversation_ids:
            return {}
        rows = self._read(
            select(Message.conversation_id, func.count(Message.id))
            .where(
                Message.conversation_id.in_(conversation_ids),
                Message.sender_type == SenderType.CUSTOMER,
                Message.status.in_(UNREAD_STATUSES),
            )
            .group_by(Message.conversation_id)
        ).all()
        counts = {conversation_id: 0 for conversation_id in conversation_ids}
        counts.update({conversation_id: count for conversation_id, count in rows})
        return counts

    # ---------- messages: writes ----------
    def insert_message(self, created_at: datetime | None = None, **fields) -> MessageRecord:
        """Insert one message and bump its conversation's ``updated_at``."""
        with self._write("send message"):
            conversation = self._conversation_row(fields["conversation_id"])
            row = Message(**fields)
            if created_at is not None:
                row.created_at = created_at
            self.db.add(row)
            self.db.flush()
            self._emit("INSERT", "messages", new=MessageRecord.model_validate(row),
                       business_id=conversation.business_id)
            self._touch([conversation.id])
        self.db.refresh(row)
        return MessageRecord.model_validate(row)

    def insert_messages(self, rows: list[dict]) -> list[MessageRecord]:
        """Batch insert, bumping every touched conversation once."""
        if not rows:
            return []
        with self._write("send messages"):
            conversation_ids = sorted({r["conversation_id"] for r in rows})
            owners = dict(
                self.db.execute(
                    select(Conversation.id, Conversation.business_id).where(
                        Conversation.id.in_(conversation_ids)
                    )
                ).all()
            )
            missing = set(conversation_ids) - set(owners)
            if missing:
                raise NotFound(f"Conversation {sorted(missing)[0]} not found")
            models = [Message(**r) for r in rows]
            self.db.add_all(models)
            self.db.flush()
            for model in models:
                self._emit("INSERT", "messages", new=MessageRecord.model_validate(model),
                           business_id=owners[model.conversation_id])
            self._touch(conversation_ids)
        return [MessageRecord.model_validate(m) for m in models]

    def update_message(self, message_id: str, **fields) -> MessageRecord:
        with self._write("update message"):
            row = self._message_row(message_id)
            old = MessageRecord.model_validate(row)
            for key, value in fields.items():
                setattr(row, key, value)
            self.db.flush()
            business_id = self.db.get(Conversation, row.conversation_id).business_id
            self._emit("UPDATE", "messages", new=MessageRecord.model_validate(row), old=old,
                       business_id=business_id)
        self.db.refresh(row)
        return MessageRecord.model_validate(row)

    def delete_message(self, message_id: str) -> MessageRecord:
        with self._write("delete message"):
            row = self._message_row(message_id)
            old = MessageRecord.model_validate(row)
            business_id = self.db.get(Conversation, row.conversation_id).business_id
            self.db.delete(row)
            self._emit("DELETE", "messages", old=old, business_id=business_id)
        return old

    def _advance_status_where(
        self, conversation_id: str, from_statuses: tuple, to_status: MessageStatus, action: str
    ) -> list[MessageRecord]:
        with self._write(action):
            conversation = self._conversation_row(conversation_id)
            rows = self.db.execute(
                select(Message).where(
                    Message.conversation_id == conversation_id,
                    Message.sender_type == SenderType.CUSTOMER,
                    Message.status.in_(from_statuses),
                )
            ).scalars().all()
            if not rows:
                return []
            old = {r.id: MessageRecord.model_validate(r) for r in rows}
            self.db.query(Message).filter(Message.id.in_(list(old))).update(
                {"status": to_status}, synchronize_session="fetch"
            )
            self.db.flush()
            updated = []
            for row in rows:
                record = MessageRecord.model_validate(row)
                updated.append(record)
                self._emit("UPDATE", "messages", new=record, old=old[row.id],
                           business_id=conversation.business_id)
        return updated

    def mark_read_where(self, conversation_id: str) -> list[MessageRecord]:
        """Flip every unread customer message of the conversation to ``read``."""
        return self._advance_status_where(
            conversation_id, UNREAD_STATUSES, MessageStatus.READ, "mark messages as read"
        )

    def mark_delivered_where(self, conversation_id: str) -> list[MessageRecord]:
        """``sent`` customer messages reached the business; ``read`` is never undone."""
        return self._advance_status_where(
            conversation_id, (MessageStatus.SENT,), MessageStatus.DELIVERED, "mark messages as delivered"
        )

    def claim_away_delivery(self, conversation_id: str, business_id: str, content: str):
        """Reserve the one-time welcome slot; committed with the next write."""
        try:
            self.db.add(
                AwayMessageDelivery(
                    conversation_id=conversation_id,
                    business_id=business_id,
                    content_digest=content_digest(content),
                )
            )
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            raise DuplicateSend(
                f"Welcome message already delivered to conversation {conversation_id}"
            ) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreError("Could not claim welcome message") from e
