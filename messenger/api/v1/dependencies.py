from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from messenger.database import get_db
from messenger.services.conversation_service import ConversationService


def get_conversation_service(db: AsyncSession = Depends(get_db)) -> ConversationService:
    return ConversationService(db)
