from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from messenger.schemas.message import MessageResponse
from messenger.schemas.user import UserProfile


class CreateConversation(BaseModel):
    other_user_id: int


class ConversationResponse(BaseModel):
    id: int
    participant_a: int
    participant_b: int
    last_message_id: Optional[int] = None
    last_message_at: Optional[datetime] = None
    unread_count_a: int
    unread_count_b: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ConversationWithUser(BaseModel):
    conversation: ConversationResponse
    other_user: UserProfile


class ConversationListItem(BaseModel):
    conversation: ConversationResponse
    other_user: UserProfile
    last_message: Optional[MessageResponse] = None
    unread_count: int
