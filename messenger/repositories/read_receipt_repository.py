from typing import List, Iterable

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_
from sqlalchemy.dialects import postgresql, sqlite

from messenger.models.base import utcnow
from messenger.models.message import Message
from messenger.models.message_read_receipt import MessageReadReceipt

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class ReadReceiptRepository:
    """Per-(message, user) read markers.

    Receipts are annotations for the UI; they never touch the conversation
    unread counters.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def mark_read(self, message_id: int, user_id: int) -> bool:
        """Record a read; False when it was already recorded"""
        return await self.mark_read_many([message_id], user_id) == 1

    async def mark_read_many(self, message_ids: Iterable[int], user_id: int) -> int:
        """Record reads for several messages, returning how many were new"""
        now = utcnow()
        rows = [
            {"message_id": message_id, "user_id": user_id, "read_at": now}
            for message_id in sorted(set(message_ids))
        ]
        if not rows:
            return 0

        connection = await self.db.connection()
        insert = _INSERT_BY_DIALECT.get(connection.dialect.name)
        if insert is None:
            raise NotImplementedError(f"Idempotent insert not supported for {connection.dialect.name}")

        result = await connection.execute(
            insert(MessageReadReceipt)
            .values(rows)
            .on_conflict_do_nothing(index_elements=["message_id", "user_id"])
        )
        return result.rowcount or 0

    async def unread_message_ids(self, conversation_id: int, user_id: int) -> List[int]:
        """Visible messages from the other party with no receipt for user_id"""
        read_messages_subquery = select(MessageReadReceipt.message_id).where(
            MessageReadReceipt.user_id == user_id
        )

        result = await self.db.execute(
            select(Message.id).where(
                and_(
                    Message.conversation_id == conversation_id,
                    Message.is_deleted.is_(False),
                    Message.sender_id != user_id,
                    Message.id.not_in(read_messages_subquery)
                )
            ).order_by(Message.created_at.asc(), Message.id.asc())
        )
        return list(result.scalars().all())

    async def get_for_message(self, message_id: int) -> List[MessageReadReceipt]:
        result = await self.db.execute(
            select(MessageReadReceipt)
            .where(MessageReadReceipt.message_id == message_id)
            .order_by(MessageReadReceipt.read_at.asc(), MessageReadReceipt.user_id.asc())
        )
        return list(result.scalars().all())

