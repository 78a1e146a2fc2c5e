from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from messenger.config import settings
from messenger.models.message import MessageStatus
from messenger.schemas.user import UserProfile


class MessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=settings.MESSAGE_MAX_LENGTH)


class MessageUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=settings.MESSAGE_MAX_LENGTH)


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    receiver_id: int
    content: str
    status: MessageStatus
    is_edited: bool
    edited_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class MessageWithSender(BaseModel):
    message: MessageResponse
    sender: Optional[UserProfile] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class MessagePage(BaseModel):
    messages: List[MessageWithSender]
    pagination: Pagination


class MarkReadRequest(BaseModel):
    message_ids: Optional[List[int]] = None


class MarkReadResponse(BaseModel):
    success: bool = True
    marked: int


class ReadReceiptResponse(BaseModel):
    user_id: int
    read_at: datetime

    class Config:
        from_attributes = True


class ReadReceiptsResponse(BaseModel):
    read_by: List[ReadReceiptResponse]


class UnreadCountResponse(BaseModel):
    unread_count: int


class SuccessResponse(BaseModel):
    success: bool = True


class SendMessageWebSocket(BaseModel):
    conversation_id: int
    content: str = Field(..., min_length=1, max_length=settings.MESSAGE_MAX_LENGTH)


class MarkReadWebSocket(BaseModel):
    conversation_id: int
    message_ids: Optional[List[int]] = None
