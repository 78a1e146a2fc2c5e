from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from .base import BaseModel, utcnow


class ParticipantSlot(PyEnum):
    A = "a"
    B = "b"


class Conversation(BaseModel):
    __tablename__ = "conversations"

    # Pair is stored ordered (participant_a < participant_b) so one unique index covers both directions
    participant_a = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    participant_b = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Weak pointer to the latest message, no FK
    last_message_id = Column(Integer, nullable=True)
    last_message_at = Column(DateTime(timezone=True), default=utcnow, nullable=True, index=True)

    unread_count_a = Column(Integer, default=0, nullable=False)
    unread_count_b = Column(Integer, default=0, nullable=False)

    messages = relationship("Message", back_populates="conversation")

    __table_args__ = (
        UniqueConstraint("participant_a", "participant_b", name="unique_conversation_pair"),
        CheckConstraint("participant_a < participant_b", name="ordered_conversation_pair"),
        CheckConstraint("unread_count_a >= 0 AND unread_count_b >= 0", name="non_negative_unread"),
    )

    @staticmethod
    def ordered_pair(user_a: int, user_b: int):
        return (user_a, user_b) if user_a < user_b else (user_b, user_a)

    def slot_of(self, user_id: int) -> ParticipantSlot:
        if user_id == self.participant_a:
            return ParticipantSlot.A
        if user_id == self.participant_b:
            return ParticipantSlot.B
        raise ValueError(f"User {user_id} is not a participant of conversation {self.id}")

    def other_participant(self, user_id: int) -> int:
        if self.slot_of(user_id) is ParticipantSlot.A:
            return self.participant_b
        return self.participant_a

    def unread_count_for(self, user_id: int) -> int:
        if self.slot_of(user_id) is ParticipantSlot.A:
            return self.unread_count_a
        return self.unread_count_b
