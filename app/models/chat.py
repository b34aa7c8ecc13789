from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    String,
    DateTime,
    Text,
    UniqueConstraint,
    Enum as SqlEnum,
)
from sqlalchemy.orm import relationship
import enum
from app.database import Base
from app.models.business import new_id, utc_now


class SenderType(str, enum.Enum):
    BUSINESS = "business"
    CUSTOMER = "customer"


class MessageStatus(str, enum.Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint(
            "business_id", "customer_email", name="uq_conversations_business_customer"
        ),
        Index("ix_conversations_business_pinned_updated", "business_id", "pinned", "updated_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    customer_email = Column(String, nullable=False)
    customer_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    pinned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    # bumped on every message insert; primary sort key of the inbox
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    business = relationship("Business", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation")


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created_id", "conversation_id", "created_at", "id"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False)
    sender_type = Column(
        SqlEnum(
            SenderType,
            values_callable=lambda obj: [e.value for e in obj],
            native_enum=False,
        ),
        nullable=False,
    )
    # business id for business messages, customer email for customer messages
    sender_id = Column(String, nullable=False)
    content = Column(Text, nullable=True)
    image_url = Column(String, nullable=True)
    status = Column(
        SqlEnum(
            MessageStatus,
            values_callable=lambda obj: [e.value for e in obj],
            native_enum=False,
        ),
        default=MessageStatus.SENT,
        nullable=False,
    )
    reply_to_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")


class AwayMessageDelivery(Base):
    """One row per automated welcome message ever delivered to a conversation.

    The unique constraint is the serialization point that keeps two
    concurrent triggers from both inserting the same welcome message.
    """

    __tablename__ = "away_message_deliveries"
    __table_args__ = (
        UniqueConstraint(
            "conversation_id", "content_digest", name="uq_away_delivery_conversation_digest"
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False)
    business_id = Column(String(36), nullable=False)
    content_digest = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
