"""Direct-messaging orchestration.

Every public operation is one unit of work against the conversation, message
and read-receipt stores. Repositories only flush; ``transaction()`` commits on
success and rolls back on any exception, so a send either leaves the message,
the receiver's counter and the last-message pointer all updated or none of
them.

Unread counters and read receipts are kept independently. The counter is the
authoritative badge value; receipts are per-message annotations and are never
used to recompute it.
"""
import logging
from contextlib import asynccontextmanager
from typing import List, NamedTuple, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from messenger.config import settings
from messenger.exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from messenger.models.conversation import Conversation
from messenger.models.message import Message
from messenger.models.message_read_receipt import MessageReadReceipt
from messenger.models.user import User
from messenger.repositories.conversation_repository import ConversationRepository
from messenger.repositories.message_repository import MessageRepository
from messenger.repositories.read_receipt_repository import ReadReceiptRepository
from messenger.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


class ConversationSummary(NamedTuple):
    conversation: Conversation
    other_user: User
    last_message: Optional[Message]
    unread_count: int


class MessageHistory(NamedTuple):
    messages: List[Message]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit


class MarkReadResult(NamedTuple):
    conversation: Conversation
    marked: int


class ConversationService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.conversations = ConversationRepository(db)
        self.messages = MessageRepository(db)
        self.receipts = ReadReceiptRepository(db)
        self.users = UserRepository(db)

    @asynccontextmanager
    async def transaction(self):
        try:
            yield
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _get_participating(self, conversation_id: int, caller_id: int) -> Conversation:
        conversation = await self.conversations.get_for_participant(conversation_id, caller_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    async def get_or_create_conversation(self, caller_id: int, other_id: int) -> Tuple[Conversation, User]:
        """Return the pair's conversation, creating it on first contact.

        A concurrent creator makes our insert fail with ConflictError; the
        lookup is then retried in a fresh transaction and returns the winner's
        row.
        """
        if caller_id == other_id:
            raise ValidationError("Cannot create conversation with yourself")
        if not await self.users.exists(other_id):
            raise NotFoundError("User not found")

        conversation = None
        for attempt in range(1, settings.GET_OR_CREATE_ATTEMPTS + 1):
            async with self.transaction():
                conversation = await self.conversations.find_by_pair(caller_id, other_id)
                if conversation is None:
                    try:
                        conversation = await self.conversations.create(caller_id, other_id)
                    except ConflictError:
                        logger.info(
                            f"Conversation for users {caller_id} and {other_id} created concurrently, "
                            f"retrying lookup (attempt {attempt})"
                        )
            if conversation is not None:
                break

        if conversation is None:
            logger.error(f"Could not resolve conversation for users {caller_id} and {other_id}")
            raise InternalError("Could not create conversation")

        other_user = await self.users.get_by_id(other_id)
        return conversation, other_user

    async def list_conversations(self, caller_id: int) -> List[ConversationSummary]:
        rows = await self.conversations.list_for_user(caller_id)
        return [
            ConversationSummary(
                conversation=conversation,
                other_user=other_user,
                last_message=last_message,
                unread_count=conversation.unread_count_for(caller_id)
            )
            for conversation, other_user, last_message in rows
        ]

    async def get_messages(self, caller_id: int, conversation_id: int, page: int = 1,
                           limit: int = settings.DEFAULT_PAGE_SIZE) -> MessageHistory:
        if not 1 <= page <= settings.MAX_PAGE_NUMBER or limit < 1:
            raise ValidationError(f"Page must be between 1 and {settings.MAX_PAGE_NUMBER} and limit positive")
        conversation = await self._get_participating(conversation_id, caller_id)

        newest_first = await self.messages.list_by_conversation(conversation.id, page, limit)
        total = await self.messages.count_by_conversation(conversation.id)
        return MessageHistory(messages=list(reversed(newest_first)), page=page, limit=limit, total=total)

    async def send_message(self, caller_id: int, conversation_id: int, content: str) -> Message:
        async with self.transaction():
            conversation = await self._get_participating(conversation_id, caller_id)
            receiver_id = conversation.other_participant(caller_id)

            message = await self.messages.insert(conversation.id, caller_id, receiver_id, content)
            await self.conversations.increment_unread(conversation.id, conversation.slot_of(receiver_id))
            await self.conversations.touch_last_message(conversation.id, message.id, message.created_at)

        logger.debug(f"User {caller_id} sent message {message.id} in conversation {conversation_id}")
        return message

    async def mark_read(self, caller_id: int, conversation_id: int,
                        message_ids: Optional[List[int]] = None) -> MarkReadResult:
        """Record receipts and clear the caller's unread counter.

        Without message_ids every unread message from the other party is
        marked. The counter is reset to zero in both cases, even when only a
        subset of messages was named.
        """
        async with self.transaction():
            conversation = await self._get_participating(conversation_id, caller_id)

            if message_ids:
                to_mark = await self.messages.filter_ids_in_conversation(conversation.id, message_ids)
            else:
                to_mark = await self.receipts.unread_message_ids(conversation.id, caller_id)

            marked = await self.receipts.mark_read_many(to_mark, caller_id)
            await self.conversations.reset_unread(conversation.id, conversation.slot_of(caller_id))

        return MarkReadResult(conversation=conversation, marked=marked)

    async def edit_message(self, caller_id: int, message_id: int, content: str) -> Message:
        async with self.transaction():
            message = await self.messages.edit(message_id, caller_id, content)
        return message

    async def delete_message(self, caller_id: int, message_id: int) -> Message:
        async with self.transaction():
            message = await self.messages.soft_delete(message_id, caller_id)
        return message

    async def get_read_receipts(self, caller_id: int, message_id: int) -> List[MessageReadReceipt]:
        message = await self.messages.get_visible(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        await self._get_participating(message.conversation_id, caller_id)
        return await self.receipts.get_for_message(message.id)

    async def get_unread_total(self, caller_id: int) -> int:
        return await self.conversations.unread_total(caller_id)

    async def get_profile(self, user_id: int) -> Optional[User]:
        return await self.users.get_by_id(user_id)
