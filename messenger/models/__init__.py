from .base import Base
from .user import User
from .conversation import Conversation, ParticipantSlot
from .message import Message, MessageStatus
from .message_read_receipt import MessageReadReceipt

__all__ = [
    "Base",
    "User",
    "Conversation",
    "ParticipantSlot",
    "Message",
    "MessageStatus",
    "MessageReadReceipt"
]
