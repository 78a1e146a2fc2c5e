import json
import asyncio
import logging
from typing import Dict, List, Optional

from fastapi import WebSocket

from messenger.config import settings
from messenger.database import get_redis

logger = logging.getLogger(__name__)

RELAY_RETRY_DELAY = 1.0
RELAY_MAX_RETRY_DELAY = 30.0


class ConnectionManager:
    """Websocket connections per user and delivery of realtime events.

    With Redis configured, events are published on one channel and every
    worker forwards them to the sockets it holds. Without Redis, events only
    reach sockets of this process.
    """

    def __init__(self):
        self.active_connections: Dict[int, List[WebSocket]] = {}
        self.redis_client = None
        self._listener_task: Optional[asyncio.Task] = None

    async def start(self):
        if not settings.REDIS_URL or self.redis_client is not None:
            return
        self.redis_client = await get_redis()
        self._listener_task = asyncio.create_task(self._listen())
        logger.info(f"Realtime relay subscribed to {settings.REALTIME_CHANNEL}")

    async def stop(self):
        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Realtime relay stopped with an error")
            self._listener_task = None
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None

    async def _listen(self):
        delay = RELAY_RETRY_DELAY
        while True:
            try:
                await self._relay()
                logger.warning("Realtime relay subscription ended")
            except Exception:
                logger.exception(f"Realtime relay failed, resubscribing in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * 2, RELAY_MAX_RETRY_DELAY)

    async def _relay(self):
        pubsub = self.redis_client.pubsub()
        await pubsub.subscribe(settings.REALTIME_CHANNEL)
        try:
            async for item in pubsub.listen():
                if item.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(item["data"])
                    await self.send_personal_message(envelope["payload"], int(envelope["user_id"]))
                except (ValueError, KeyError, TypeError):
                    logger.warning(f"Dropping malformed realtime envelope: {item['data']!r}")
        finally:
            await pubsub.unsubscribe(settings.REALTIME_CHANNEL)
            await pubsub.aclose()

    async def connect(self, websocket: WebSocket, user_id: int):
        await websocket.accept()

        if user_id not in self.active_connections:
            self.active_connections[user_id] = []

        self.active_connections[user_id].append(websocket)
        logger.info(f"User {user_id} connected ({len(self.active_connections[user_id])} sockets)")

    def disconnect(self, websocket: WebSocket, user_id: int):
        if user_id in self.active_connections:
            if websocket in self.active_connections[user_id]:
                self.active_connections[user_id].remove(websocket)

            if not self.active_connections[user_id]:
                del self.active_connections[user_id]
        logger.info(f"User {user_id} disconnected")

    async def send_personal_message(self, message: str, user_id: int):
        if user_id in self.active_connections:
            disconnected_connections = []
            for connection in self.active_connections[user_id]:
                try:
                    await connection.send_text(message)
                except Exception as e:
                    logger.warning(f"Failed to deliver to user {user_id}: {e}")
                    disconnected_connections.append(connection)

            for connection in disconnected_connections:
                self.disconnect(connection, user_id)

    async def notify_user(self, user_id: int, event_type: str, data: dict):
        payload = json.dumps({"type": event_type, "data": data}, default=str)
        if self.redis_client is not None:
            await self.redis_client.publish(
                settings.REALTIME_CHANNEL,
                json.dumps({"user_id": user_id, "payload": payload})
            )
        else:
            await self.send_personal_message(payload, user_id)

    async def broadcast_new_message(self, message_data: dict, receiver_id: int):
        await self.notify_user(receiver_id, "new_message", message_data)

    async def broadcast_messages_read(self, conversation_id: int, reader_id: int, other_id: int):
        await self.notify_user(other_id, "messages_read", {
            "conversation_id": conversation_id,
            "reader_id": reader_id
        })

    async def broadcast_message_edited(self, message_data: dict, receiver_id: int):
        await self.notify_user(receiver_id, "message_edited", message_data)

    async def broadcast_message_deleted(self, message_id: int, conversation_id: int, receiver_id: int):
        await self.notify_user(receiver_id, "message_deleted", {
            "message_id": message_id,
            "conversation_id": conversation_id
        })


manager = ConnectionManager()
