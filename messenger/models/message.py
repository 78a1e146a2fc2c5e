from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, ForeignKey, Text, DateTime, Boolean, Enum, Index
from sqlalchemy.orm import relationship
from .base import BaseModel


class MessageStatus(PyEnum):
    SENT = "sent"


class Message(BaseModel):
    __tablename__ = "messages"

    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    status = Column(Enum(MessageStatus), nullable=False, default=MessageStatus.SENT)

    is_edited = Column(Boolean, default=False, nullable=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)

    # Soft delete: the row and its content stay, reads skip it
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User", foreign_keys=[sender_id], back_populates="sent_messages")
    read_receipts = relationship("MessageReadReceipt", back_populates="message")

    __table_args__ = (
        Index("ix_messages_conversation_history", "conversation_id", "created_at", "id"),
    )
