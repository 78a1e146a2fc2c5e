from typing import Optional, List, Iterable

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, func
from sqlalchemy.orm import joinedload

from messenger.config import settings
from messenger.exceptions import NotFoundError, ValidationError
from messenger.models.base import utcnow
from messenger.models.message import Message, MessageStatus


def validate_content(content: str) -> None:
    if content is None or not content.strip():
        raise ValidationError("Message content cannot be empty")
    if len(content) > settings.MESSAGE_MAX_LENGTH:
        raise ValidationError(f"Message content exceeds {settings.MESSAGE_MAX_LENGTH} characters")


class MessageRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def insert(self, conversation_id: int, sender_id: int, receiver_id: int, content: str) -> Message:
        validate_content(content)

        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content,
            status=MessageStatus.SENT
        )
        self.db.add(message)
        await self.db.flush()
        return message

    async def get_by_id(self, message_id: int) -> Optional[Message]:
        result = await self.db.execute(
            select(Message)
            .where(Message.id == message_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_visible(self, message_id: int) -> Optional[Message]:
        """Message by id unless soft-deleted"""
        result = await self.db.execute(
            select(Message)
            .where(and_(Message.id == message_id, Message.is_deleted.is_(False)))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_by_conversation(self, conversation_id: int, page: int = 1, limit: int = 50) -> List[Message]:
        """One page of visible messages, newest first.

        Page 1 holds the most recent ``limit`` messages. Callers wanting reading
        order reverse the page.
        """
        offset = (page - 1) * limit
        result = await self.db.execute(
            select(Message).options(
                joinedload(Message.sender)
            ).where(
                and_(Message.conversation_id == conversation_id, Message.is_deleted.is_(False))
            )
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_conversation(self, conversation_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Message.id)).where(
                and_(Message.conversation_id == conversation_id, Message.is_deleted.is_(False))
            )
        )
        return result.scalar() or 0

    async def filter_ids_in_conversation(self, conversation_id: int, message_ids: Iterable[int]) -> List[int]:
        """Subset of message_ids that are visible messages of the conversation"""
        ids = set(message_ids)
        if not ids:
            return []
        result = await self.db.execute(
            select(Message.id).where(
                and_(
                    Message.conversation_id == conversation_id,
                    Message.is_deleted.is_(False),
                    Message.id.in_(ids)
                )
            ).order_by(Message.id)
        )
        return list(result.scalars().all())

    async def edit(self, message_id: int, caller_id: int, new_content: str) -> Message:
        """Replace the content of the caller's own message.

        Missing, deleted and foreign messages all raise the same NotFoundError.
        """
        validate_content(new_content)

        now = utcnow()
        result = await self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.id == message_id,
                    Message.sender_id == caller_id,
                    Message.is_deleted.is_(False)
                )
            )
            .values(content=new_content, is_edited=True, edited_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Message not found")
        return await self.get_by_id(message_id)

    async def soft_delete(self, message_id: int, caller_id: int) -> Message:
        now = utcnow()
        result = await self.db.execute(
            update(Message)
            .where(
                and_(
                    Message.id == message_id,
                    Message.sender_id == caller_id,
                    Message.is_deleted.is_(False)
                )
            )
            .values(is_deleted=True, deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Message not found")
        return await self.get_by_id(message_id)
