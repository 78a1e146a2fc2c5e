from fastapi import APIRouter, Depends

from messenger.api.v1.dependencies import get_conversation_service
from messenger.auth import get_current_user_id
from messenger.schemas.message import (
    MessageResponse,
    MessageUpdate,
    ReadReceiptResponse,
    ReadReceiptsResponse,
    SuccessResponse,
    UnreadCountResponse
)
from messenger.services.conversation_service import ConversationService
from messenger.websocket_manager import manager

router = APIRouter()


@router.put("/messages/{message_id}", response_model=MessageResponse)
async def edit_message(
    message_id: int,
    data: MessageUpdate,
    caller_id: int = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service)
):
    """Edit own message"""
    message = await service.edit_message(caller_id, message_id, data.content)

    message_response = MessageResponse.model_validate(message)
    await manager.broadcast_message_edited(message_response.model_dump(mode="json"), message.receiver_id)
    return message_response


@router.delete("/messages/{message_id}", response_model=SuccessResponse)
async def delete_message(
    message_id: int,
    caller_id: int = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service)
):
    """Soft-delete own message"""
    message = await service.delete_message(caller_id, message_id)

    await manager.broadcast_message_deleted(message.id, message.conversation_id, message.receiver_id)
    return SuccessResponse()


@router.get("/messages/{message_id}/read-receipts", response_model=ReadReceiptsResponse)
async def get_message_read_receipts(
    message_id: int,
    caller_id: int = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service)
):
    receipts = await service.get_read_receipts(caller_id, message_id)
    return ReadReceiptsResponse(read_by=[ReadReceiptResponse.model_validate(r) for r in receipts])


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    caller_id: int = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service)
):
    """Total unread messages across the caller's conversations"""
    return UnreadCountResponse(unread_count=await service.get_unread_total(caller_id))
