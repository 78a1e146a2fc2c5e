import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from messenger import database, websocket_manager
from messenger.api.v1.websocket import websocket_chat
from messenger.auth import create_access_token
from messenger.config import settings
from messenger.database import create_tables
from messenger.main import app
from messenger.services.conversation_service import ConversationService
from messenger.websocket_manager import ConnectionManager, manager
from tests.conftest import ALICE, BOB, CAROL, load_conversation, make_engine, seed_users


class FakeWebSocket:
    def __init__(self, fail=False):
        self.accepted = False
        self.sent = []
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_text(self, message):
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(json.loads(message))


class BrokenReceiveWebSocket(FakeWebSocket):
    async def receive_text(self):
        raise RuntimeError("transport closed")


class FakePubSub:
    def __init__(self, items=(), error=None, hold=False):
        self.items = list(items)
        self.error = error
        self.hold = hold
        self.subscribed = []
        self.closed = False

    async def subscribe(self, channel):
        self.subscribed.append(channel)

    async def unsubscribe(self, channel):
        self.subscribed.remove(channel)

    async def aclose(self):
        self.closed = True

    async def listen(self):
        for item in self.items:
            yield item
        if self.error is not None:
            raise self.error
        if self.hold:
            await asyncio.Event().wait()


class FakeRedis:
    def __init__(self, *pubsubs):
        self.published = []
        self.pubsubs = list(pubsubs)
        self.handed_out = []
        self.closed = False

    async def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))

    def pubsub(self):
        pubsub = self.pubsubs.pop(0) if len(self.pubsubs) > 1 else self.pubsubs[0]
        self.handed_out.append(pubsub)
        return pubsub

    async def aclose(self):
        self.closed = True


async def test_notify_user_delivers_to_every_socket_of_that_user():
    manager = ConnectionManager()
    phone, laptop, other = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
    await manager.connect(phone, BOB)
    await manager.connect(laptop, BOB)
    await manager.connect(other, CAROL)

    await manager.broadcast_new_message({"id": 1, "content": "hi"}, BOB)

    assert phone.accepted and laptop.accepted
    assert phone.sent == laptop.sent == [{"type": "new_message", "data": {"id": 1, "content": "hi"}}]
    assert other.sent == []
    assert sorted(manager.active_connections) == [BOB, CAROL]


async def test_failed_socket_is_dropped():
    manager = ConnectionManager()
    broken, healthy = FakeWebSocket(fail=True), FakeWebSocket()
    await manager.connect(broken, BOB)
    await manager.connect(healthy, BOB)

    await manager.broadcast_message_deleted(5, 9, BOB)

    assert healthy.sent == [{"type": "message_deleted", "data": {"message_id": 5, "conversation_id": 9}}]
    assert manager.active_connections[BOB] == [healthy]

    manager.disconnect(healthy, BOB)
    assert BOB not in manager.active_connections


async def test_events_go_through_redis_when_configured():
    manager = ConnectionManager()
    socket = FakeWebSocket()
    await manager.connect(socket, ALICE)
    manager.redis_client = FakeRedis()

    await manager.broadcast_messages_read(3, BOB, ALICE)

    assert socket.sent == []
    [(channel, envelope)] = manager.redis_client.published
    assert channel == settings.REALTIME_CHANNEL
    assert envelope["user_id"] == ALICE
    assert json.loads(envelope["payload"]) == {
        "type": "messages_read",
        "data": {"conversation_id": 3, "reader_id": BOB}
    }


async def test_relay_forwards_published_events_to_local_sockets():
    payload = json.dumps({"type": "message_edited", "data": {"id": 4}})
    pubsub = FakePubSub(items=[
        {"type": "subscribe", "data": 1},
        {"type": "message", "data": "not json"},
        {"type": "message", "data": json.dumps({"user_id": BOB, "payload": payload})},
    ])
    manager = ConnectionManager()
    socket = FakeWebSocket()
    await manager.connect(socket, BOB)
    manager.redis_client = FakeRedis(pubsub)

    await manager._relay()

    assert socket.sent == [{"type": "message_edited", "data": {"id": 4}}]
    assert pubsub.closed is True
    assert pubsub.subscribed == []


async def test_relay_resubscribes_after_connection_failure(monkeypatch, caplog):
    monkeypatch.setattr(websocket_manager, "RELAY_RETRY_DELAY", 0)
    payload = json.dumps({"type": "new_message", "data": {"id": 1}})
    broken = FakePubSub(error=ConnectionError("redis went away"))
    healthy = FakePubSub(
        items=[{"type": "message", "data": json.dumps({"user_id": BOB, "payload": payload})}],
        hold=True
    )
    fake_redis = FakeRedis(broken, healthy)
    manager = ConnectionManager()
    socket = FakeWebSocket()
    await manager.connect(socket, BOB)
    manager.redis_client = fake_redis
    manager._listener_task = asyncio.create_task(manager._listen())

    for _ in range(100):
        if socket.sent:
            break
        await asyncio.sleep(0.01)

    assert socket.sent == [{"type": "new_message", "data": {"id": 1}}]
    assert fake_redis.handed_out == [broken, healthy]
    assert broken.closed is True
    assert "Realtime relay failed" in caplog.text

    await manager.stop()

    assert healthy.closed is True
    assert fake_redis.closed is True
    assert manager.redis_client is None


async def test_stop_survives_crashed_relay_task():
    fake_redis = FakeRedis(FakePubSub())
    manager = ConnectionManager()
    manager.redis_client = fake_redis

    async def crash():
        raise ConnectionError("redis went away")

    manager._listener_task = asyncio.create_task(crash())
    await asyncio.sleep(0)

    await manager.stop()

    assert manager._listener_task is None
    assert fake_redis.closed is True


async def test_socket_is_unregistered_when_receive_fails():
    socket = BrokenReceiveWebSocket()

    with pytest.raises(RuntimeError):
        await websocket_chat(socket, create_access_token(ALICE))

    assert socket.accepted
    assert socket not in manager.active_connections.get(ALICE, [])


@pytest.fixture
def chat(tmp_path, monkeypatch):
    engine = make_engine(tmp_path / "ws.db", poolclass=NullPool)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def prepare():
        await create_tables(engine)
        await seed_users(session_factory)
        async with session_factory() as session:
            conversation, _ = await ConversationService(session).get_or_create_conversation(ALICE, BOB)
            return conversation.id

    conversation_id = asyncio.run(prepare())
    monkeypatch.setattr(database, "AsyncSessionLocal", session_factory)
    monkeypatch.setattr(settings, "AUTO_CREATE_TABLES", False)

    def unread_for(user_id):
        async def load():
            async with session_factory() as session:
                conversation = await load_conversation(session, conversation_id)
                return conversation.unread_count_for(user_id)
        return asyncio.run(load())

    with TestClient(app) as client:
        yield client, conversation_id, unread_for


def ws_url(user_id):
    return f"/api/v1/ws/chat?token={create_access_token(user_id)}"


def test_websocket_requires_valid_token(chat):
    client, _, _ = chat

    for url in ["/api/v1/ws/chat", "/api/v1/ws/chat?token=garbage"]:
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(url) as ws:
                ws.receive_text()


def test_websocket_ping(chat):
    client, _, _ = chat

    with client.websocket_connect(ws_url(ALICE)) as ws:
        ws.send_json({"action": "ping"})
        assert ws.receive_json() == {"type": "pong"}


def test_websocket_send_and_mark_read(chat):
    client, conversation_id, unread_for = chat

    with client.websocket_connect(ws_url(BOB)) as bob:
        with client.websocket_connect(ws_url(ALICE)) as alice:
            alice.send_json({"action": "send_message", "data": {"conversation_id": conversation_id, "content": "hi"}})

            ack = alice.receive_json()
            assert ack["type"] == "message_sent"
            assert ack["data"]["content"] == "hi"

            event = bob.receive_json()
            assert event["type"] == "new_message"
            assert event["data"]["id"] == ack["data"]["id"]
            assert unread_for(BOB) == 1

            bob.send_json({"action": "mark_read", "data": {"conversation_id": conversation_id}})
            assert bob.receive_json() == {
                "type": "marked_read",
                "data": {"conversation_id": conversation_id, "marked": 1}
            }
            assert alice.receive_json() == {
                "type": "messages_read",
                "data": {"conversation_id": conversation_id, "reader_id": BOB}
            }
            assert unread_for(BOB) == 0


def test_websocket_errors(chat):
    client, conversation_id, unread_for = chat

    with client.websocket_connect(ws_url(CAROL)) as ws:
        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "message": "Invalid JSON format"}

        ws.send_json({"action": "dance"})
        assert ws.receive_json() == {"type": "error", "message": "Unknown action: dance"}

        ws.send_json({"action": "send_message", "data": {"conversation_id": conversation_id}})
        assert ws.receive_json()["message"].startswith("Invalid payload")

        for frame in [[], "ping", {"action": "send_message", "data": [conversation_id, "hi"]}]:
            ws.send_json(frame)
            assert ws.receive_json()["message"].startswith("Invalid payload")

        ws.send_json({"action": "send_message", "data": {"conversation_id": conversation_id, "content": "hi"}})
        assert ws.receive_json() == {"type": "error", "message": "Conversation not found"}

    assert unread_for(ALICE) == 0
    assert unread_for(BOB) == 0
