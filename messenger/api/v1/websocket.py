import json
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PayloadValidationError

from messenger import database
from messenger.auth import get_user_id_from_token
from messenger.exceptions import MessagingError, UnauthenticatedError, ValidationError
from messenger.schemas.message import MarkReadWebSocket, MessageResponse, SendMessageWebSocket
from messenger.services.conversation_service import ConversationService
from messenger.websocket_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/chat")
async def websocket_chat(websocket: WebSocket, token: str = None):
    if not token:
        await websocket.close(code=1008, reason="Token required")
        return

    try:
        user_id = get_user_id_from_token(token)
    except UnauthenticatedError:
        await websocket.close(code=1008, reason="Invalid token")
        return

    await manager.connect(websocket, user_id)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message_data = json.loads(data)
                if not isinstance(message_data, dict):
                    raise ValidationError("Invalid payload: expected a JSON object")
                action = message_data.get("action")
                payload = message_data.get("data", {})
                if not isinstance(payload, dict):
                    raise ValidationError("Invalid payload: data must be a JSON object")

                async with database.AsyncSessionLocal() as db:
                    await handle_websocket_message(action, payload, user_id, ConversationService(db))

            except json.JSONDecodeError:
                await send_error(user_id, "Invalid JSON format")
            except PayloadValidationError as e:
                await send_error(user_id, f"Invalid payload: {e.errors()[0]['msg']}")
            except MessagingError as e:
                await send_error(user_id, e.message)
            except Exception:
                logger.exception(f"Error processing websocket action for user {user_id}")
                await send_error(user_id, "Internal server error")

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket, user_id)


async def send_error(user_id: int, message: str):
    await manager.send_personal_message(json.dumps({"type": "error", "message": message}), user_id)


async def handle_websocket_message(action: str, payload: dict, user_id: int, service: ConversationService):

    if action == "send_message":
        await handle_send_message(payload, user_id, service)

    elif action == "mark_read":
        await handle_mark_read(payload, user_id, service)

    elif action == "ping":
        await manager.send_personal_message(json.dumps({"type": "pong"}), user_id)

    else:
        await send_error(user_id, f"Unknown action: {action}")


async def handle_send_message(payload: dict, user_id: int, service: ConversationService):
    message_data = SendMessageWebSocket(**payload)
    message = await service.send_message(user_id, message_data.conversation_id, message_data.content)

    message_response = MessageResponse.model_validate(message).model_dump(mode="json")
    await manager.send_personal_message(
        json.dumps({"type": "message_sent", "data": message_response}),
        user_id
    )
    await manager.broadcast_new_message(message_response, message.receiver_id)


async def handle_mark_read(payload: dict, user_id: int, service: ConversationService):
    read_data = MarkReadWebSocket(**payload)
    result = await service.mark_read(user_id, read_data.conversation_id, read_data.message_ids)

    await manager.send_personal_message(
        json.dumps({
            "type": "marked_read",
            "data": {"conversation_id": read_data.conversation_id, "marked": result.marked}
        }),
        user_id
    )
    await manager.broadcast_messages_read(
        read_data.conversation_id,
        user_id,
        result.conversation.other_participant(user_id)
    )
