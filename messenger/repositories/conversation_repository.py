import logging
from datetime import datetime
from typing import Optional, List, Tuple

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, or_, case, func
from sqlalchemy.exc import IntegrityError

from messenger.exceptions import ConflictError
from messenger.models.conversation import Conversation, ParticipantSlot
from messenger.models.message import Message
from messenger.models.user import User

logger = logging.getLogger(__name__)

_UNREAD_COLUMNS = {
    ParticipantSlot.A: "unread_count_a",
    ParticipantSlot.B: "unread_count_b",
}


class ConversationRepository:
    """Conversation rows: participant pair, last-message pointer, per-party unread counters.

    Counter methods issue a single UPDATE with column arithmetic so concurrent
    senders never lose an increment. Nothing here commits; the caller owns the
    transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_for_participant(self, conversation_id: int, user_id: int) -> Optional[Conversation]:
        """Conversation by id, only if user_id is one of its two participants"""
        result = await self.db.execute(
            select(Conversation)
            .where(
                and_(
                    Conversation.id == conversation_id,
                    or_(Conversation.participant_a == user_id, Conversation.participant_b == user_id)
                )
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_pair(self, user_a: int, user_b: int) -> Optional[Conversation]:
        low, high = Conversation.ordered_pair(user_a, user_b)
        result = await self.db.execute(
            select(Conversation)
            .where(and_(Conversation.participant_a == low, Conversation.participant_b == high))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, user_a: int, user_b: int) -> Conversation:
        """Insert the conversation for a pair.

        Raises ConflictError when another transaction already created the row;
        the failed insert is rolled back so the session stays usable.
        """
        low, high = Conversation.ordered_pair(user_a, user_b)
        conversation = Conversation(participant_a=low, participant_b=high)
        self.db.add(conversation)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            raise ConflictError(f"Conversation between users {low} and {high} already exists") from exc

        logger.info(f"Created conversation {conversation.id} between users {low} and {high}")
        return conversation

    async def increment_unread(self, conversation_id: int, for_participant: ParticipantSlot) -> None:
        column = getattr(Conversation, _UNREAD_COLUMNS[for_participant])
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values({column: column + 1})
            .execution_options(synchronize_session=False)
        )

    async def reset_unread(self, conversation_id: int, for_participant: ParticipantSlot) -> None:
        column = getattr(Conversation, _UNREAD_COLUMNS[for_participant])
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values({column: 0})
            .execution_options(synchronize_session=False)
        )

    async def touch_last_message(self, conversation_id: int, message_id: int, at: datetime) -> None:
        # Last write wins
        await self.db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(last_message_id=message_id, last_message_at=at)
            .execution_options(synchronize_session=False)
        )

    async def list_for_user(self, user_id: int) -> List[Tuple[Conversation, User, Optional[Message]]]:
        """Caller's conversations, newest activity first, with the other party and the last visible message"""
        other_id = case(
            (Conversation.participant_a == user_id, Conversation.participant_b),
            else_=Conversation.participant_a,
        )
        result = await self.db.execute(
            select(Conversation, User, Message)
            .join(User, User.id == other_id)
            .outerjoin(
                Message,
                and_(Message.id == Conversation.last_message_id, Message.is_deleted.is_(False))
            )
            .where(or_(Conversation.participant_a == user_id, Conversation.participant_b == user_id))
            .order_by(Conversation.last_message_at.desc(), Conversation.id.desc())
            .execution_options(populate_existing=True)
        )
        return [tuple(row) for row in result.all()]

    async def unread_total(self, user_id: int) -> int:
        own_counter = case(
            (Conversation.participant_a == user_id, Conversation.unread_count_a),
            else_=Conversation.unread_count_b,
        )
        result = await self.db.execute(
            select(func.coalesce(func.sum(own_counter), 0))
            .where(or_(Conversation.participant_a == user_id, Conversation.participant_b == user_id))
        )
        return int(result.scalar() or 0)
