from sqlalchemy import Column, Integer, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from .base import Base, utcnow


class MessageReadReceipt(Base):
    __tablename__ = "message_read_receipts"

    # One receipt per (message, user); the composite key makes repeated reads a no-op
    message_id = Column(Integer, ForeignKey("messages.id"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True, index=True)
    read_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    message = relationship("Message", back_populates="read_receipts")
    user = relationship("User")
