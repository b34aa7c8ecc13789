import base64
import binascii
import json
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError

from app.errors import InvalidCursor
from app.models.chat import MessageStatus, SenderType

IMAGE_PREVIEW = "Image"


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything we store is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


# ---------- Records (validated at the store boundary) ----------
class MessageRecord(BaseModel):
    id: str
    conversation_id: str
    sender_type: SenderType
    sender_id: str
    content: str | None = None
    image_url: str | None = None
    status: MessageStatus = MessageStatus.SENT
    reply_to_id: str | None = None
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)

    @property
    def preview(self) -> str:
        if self.content:
            return self.content
        if self.image_url:
            return IMAGE_PREVIEW
        return ""


class ConversationRecord(BaseModel):
    id: str
    business_id: str
    customer_email: str
    customer_name: str | None = None
    customer_phone: str | None = None
    pinned: bool = False
    created_at: UtcDatetime
    updated_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class BusinessRecord(BaseModel):
    id: str
    email: str
    business_name: str | None = None
    phone: str | None = None
    address: str | None = None
    business_logo: str | None = None
    online: bool = False
    away_message: str | None = None
    away_message_enabled: bool = False
    created_at: UtcDatetime
    updated_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


# ---------- Pagination ----------
class Cursor(BaseModel):
    """Keyset watermark ``(created_at, id)`` of the boundary message of a page."""

    created_at: UtcDatetime
    id: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_message(cls, message: MessageRecord) -> "Cursor":
        return cls(created_at=message.created_at, id=message.id)

    @property
    def key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)

    def to_wire(self) -> dict:
        return {"created_at": self.created_at.isoformat(), "id": self.id}

    def encode(self) -> str:
        raw = json.dumps(self.to_wire(), separators=(",", ":")).encode()
        return base64.urlsafe_b64encode(raw).decode().rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "Cursor":
        padded = token + "=" * (-len(token) % 4)
        try:
            payload = json.loads(base64.urlsafe_b64decode(padded.encode()))
            return cls.model_validate(payload)
        except (binascii.Error, ValueError, TypeError, PydanticValidationError):
            raise InvalidCursor(f"Malformed cursor: {token[:40]}")


class MessagePage(BaseModel):
    items: list[MessageRecord] = Field(default_factory=list)
    next_cursor: Cursor | None = None
    has_more: bool = False


class MessagePageResponse(BaseModel):
    items: list[MessageRecord]
    next_cursor: str | None = None
    has_more: bool

    @classmethod
    def from_page(cls, page: MessagePage) -> "MessagePageResponse":
        return cls(
            items=page.items,
            next_cursor=page.next_cursor.encode() if page.next_cursor else None,
            has_more=page.has_more,
        )


# ---------- Roll-up ----------
class ConversationSummary(BaseModel):
    conversation: ConversationRecord
    unread_count: int = 0
    latest_message_preview: str = ""


# ---------- Change feed ----------
ChangeEventType = Literal["INSERT", "UPDATE", "DELETE"]
Row = Union[MessageRecord, ConversationRecord]


class ChangeEvent(BaseModel):
    event_type: ChangeEventType
    table: Literal["messages", "conversations"]
    new: Row | None = None
    old: Row | None = None
    # owning business, used to route message events to business-scoped channels
    business_id: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def row(self) -> Row | None:
        return self.new if self.new is not None else self.old

    def field(self, name: str):
        row = self.row
        if row is not None and name in type(row).model_fields:
            return getattr(row, name)
        if name == "business_id":
            return self.business_id
        return None

    def to_wire(self) -> dict:
        return {
            "eventType": self.event_type,
            "table": self.table,
            "new": self.new.model_dump(mode="json") if self.new else None,
            "old": self.old.model_dump(mode="json") if self.old else None,
        }


# ---------- Requests ----------
class MessageCreate(BaseModel):
    content: str | None = None
    image_url: str | None = None
    reply_to_id: str | None = None


class CustomerMessageCreate(MessageCreate):
    customer_email: EmailStr


class MessageUpdate(BaseModel):
    content: str


class BroadcastCreate(BaseModel):
    content: str
    image_url: str | None = None


class ConversationUpdate(BaseModel):
    pinned: bool | None = None
    customer_name: str | None = None
    customer_phone: str | None = None


class ConversationStart(BaseModel):
    customer_email: EmailStr
    customer_name: str | None = None
    customer_phone: str | None = None


class CustomerEnter(BaseModel):
    customer_email: EmailStr
