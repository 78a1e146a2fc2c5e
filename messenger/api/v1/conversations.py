from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from messenger.api.v1.dependencies import get_conversation_service
from messenger.auth import get_current_user_id
from messenger.config import settings
from messenger.schemas.conversation import (
    ConversationListItem,
    ConversationResponse,
    ConversationWithUser,
    CreateConversation
)
from messenger.schemas.message import (
    MarkReadRequest,
    MarkReadResponse,
    MessageCreate,
    MessagePage,
    MessageResponse,
    MessageWithSender,
    Pagination
)
from messenger.schemas.user import UserProfile
from messenger.services.conversation_service import ConversationService
from messenger.websocket_manager import manager

router = APIRouter()


@router.get("/conversations", response_model=List[ConversationListItem])
async def list_conversations(
    caller_id: int = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service)
):
    """Conversations of the caller, most recent activity first"""
    summaries = await service.list_conversations(caller_id)
    return [
        ConversationListItem(
            conversation=ConversationResponse.model_validate(summary.conversation),
            other_user=UserProfile.model_validate(summary.other_user),
            last_message=(
                MessageResponse.model_validate(summary.last_message) if summary.last_message else None
            ),
            unread_count=summary.unread_count
        )
        for summary in summaries
    ]


@router.post("/conversations", response_model=ConversationWithUser)
async def get_or_create_conversation(
    data: CreateConversation,
    caller_id: int = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service)
):
    """Conversation with another user, created on first contact"""
    conversation, other_user = await service.get_or_create_conversation(caller_id, data.other_user_id)
    return ConversationWithUser(
        conversation=ConversationResponse.model_validate(conversation),
        other_user=UserProfile.model_validate(other_user)
    )


@router.get("/conversations/{conversation_id}/messages", response_model=MessagePage)
async def get_conversation_messages(
    conversation_id: int,
    page: int = Query(1, ge=1, le=settings.MAX_PAGE_NUMBER),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    caller_id: int = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service)
):
    """Page of history in reading order; page 1 holds the newest messages"""
    history = await service.get_messages(caller_id, conversation_id, page, limit)
    return MessagePage(
        messages=[
            MessageWithSender(
                message=MessageResponse.model_validate(message),
                sender=UserProfile.model_validate(message.sender) if message.sender else None
            )
            for message in history.messages
        ],
        pagination=Pagination(
            page=history.page,
            limit=history.limit,
            total=history.total,
            total_pages=history.total_pages
        )
    )


@router.post("/conversations/{conversation_id}/messages", response_model=MessageWithSender)
async def send_message(
    conversation_id: int,
    data: MessageCreate,
    caller_id: int = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service)
):
    message = await service.send_message(caller_id, conversation_id, data.content)
    sender = await service.get_profile(caller_id)

    message_response = MessageResponse.model_validate(message)
    await manager.broadcast_new_message(message_response.model_dump(mode="json"), message.receiver_id)

    return MessageWithSender(
        message=message_response,
        sender=UserProfile.model_validate(sender) if sender else None
    )


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_conversation_read(
    conversation_id: int,
    data: Optional[MarkReadRequest] = None,
    caller_id: int = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service)
):
    """Mark messages read and clear the caller's unread counter.

    Without ``message_ids`` every unread message from the other party is marked.
    """
    message_ids = data.message_ids if data else None
    result = await service.mark_read(caller_id, conversation_id, message_ids)

    await manager.broadcast_messages_read(
        conversation_id,
        caller_id,
        result.conversation.other_participant(caller_id)
    )
    return MarkReadResponse(marked=result.marked)
