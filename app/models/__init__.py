# Import all models so they're registered with Base.metadata
from app.models.business import Business
from app.models.chat import AwayMessageDelivery, Conversation, Message

__all__ = [
    "Business",
    "Conversation",
    "Message",
    "AwayMessageDelivery",
]
