# tests/test_websocket.py — Realtime push, health, and security tests
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from jose import jwt

from auth import AuthService, SECRET_KEY, ALGORITHM
from channels import ChannelRepository
from messages import MessageRepository
from realtime import SnapshotHub
from routers.websocket_router import ConnectionManager, manager, snapshot_message, subscribe_to_channel
from tests.conftest import get_auth_headers


class FakeWebSocket:
    """Collects everything the server pushes"""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.accepted = False
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(data)


@pytest.fixture(autouse=True)
def _reset_manager():
    yield
    for websocket in list(manager._subscriptions):
        manager.unsubscribe(websocket)
    manager._connections.clear()


# ============================================================
# HEALTH & MIDDLEWARE
# ============================================================

@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    """Health endpoint returns OK"""
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert "ai" in data["services"]


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient):
    """Responses include security headers"""
    resp = await client.get("/health")
    assert resp.headers.get("X-Content-Type-Options") == "nosniff"
    assert resp.headers.get("X-Frame-Options") == "DENY"
    assert "X-Request-ID" in resp.headers
    assert resp.headers["X-Response-Time"].endswith("s")


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    resp = await client.get("/", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"
    assert resp.json()["name"] == "Solis Center"


@pytest.mark.asyncio
async def test_unauthenticated_access(client: AsyncClient):
    """Protected endpoints reject unauthenticated requests"""
    resp = await client.get("/api/v1/channels")
    assert resp.status_code in (401, 403)


@pytest.mark.asyncio
async def test_invalid_token(client: AsyncClient):
    """Invalid tokens are rejected"""
    resp = await client.get("/api/v1/channels", headers={"Authorization": "Bearer invalid.token.here"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_wrong_token_type_rejected(client: AsyncClient, member_user):
    token = AuthService.create_access_token({"sub": member_user["id"]})
    assert AuthService.verify_token(token)["sub"] == member_user["id"]
    refresh = jwt.encode({"sub": member_user["id"], "type": "refresh"}, SECRET_KEY, algorithm=ALGORITHM)
    resp = await client.get("/api/v1/channels", headers={"Authorization": f"Bearer {refresh}"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_validation_error_shape(client: AsyncClient, member_user):
    resp = await client.post("/api/v1/channels", json={}, headers=get_auth_headers(member_user))
    assert resp.status_code == 422
    assert "request_id" in resp.json()


@pytest.mark.asyncio
async def test_ws_stats(client: AsyncClient):
    resp = await client.get("/ws/stats")
    assert resp.status_code == 200
    assert resp.json()["total_connections"] == 0


# ============================================================
# CONNECTION MANAGER
# ============================================================

@pytest.mark.asyncio
async def test_connect_broadcast_and_disconnect():
    cm = ConnectionManager()
    ana, ben = FakeWebSocket(), FakeWebSocket()
    await cm.connect(ana, "ana", "org")
    await cm.connect(ben, "ben", "org")
    assert ana.accepted
    assert sorted(cm.get_online_users("org")) == ["ana", "ben"]

    await cm.broadcast_to_org("org", {"type": "user.online", "user_id": "ana"}, exclude_user="ana")
    assert ana.sent == []
    assert ben.sent == [{"type": "user.online", "user_id": "ana"}]

    cm.disconnect(ben, "ben", "org")
    assert cm.get_online_users("org") == ["ana"]
    cm.disconnect(ana, "ana", "org")
    assert cm.get_stats()["organisations"] == 0


@pytest.mark.asyncio
async def test_broken_socket_is_dropped_on_broadcast():
    cm = ConnectionManager()
    await cm.connect(FakeWebSocket(fail=True), "ana", "org")
    await cm.connect(FakeWebSocket(), "ben", "org")
    await cm.broadcast_to_org("org", {"type": "ping"})
    assert cm.get_online_users("org") == ["ben"]


@pytest.mark.asyncio
async def test_subscribe_replaces_previous_subscription():
    cm = ConnectionManager()
    hub = SnapshotHub()
    ws = FakeWebSocket()
    first = hub.subscribe("org", "channels/a/messages", ws.sent.append)
    second = hub.subscribe("org", "channels/b/messages", ws.sent.append)

    cm.subscribe(ws, "a", first)
    cm.subscribe(ws, "b", second)
    assert first.closed
    assert cm.current_channel(ws) == "b"

    assert cm.unsubscribe(ws) == "b"
    assert second.closed
    assert cm.unsubscribe(ws) is None


# ============================================================
# CHANNEL SNAPSHOTS
# ============================================================

def test_snapshot_message_is_json_ready():
    at = datetime(2026, 1, 1, tzinfo=timezone.utc)
    payload = snapshot_message("c1", [{"id": "m1", "user_id": "ana", "type": "text", "created_at": at}])
    assert payload["type"] == "messages.snapshot"
    assert payload["channel"] == "c1"
    assert payload["messages"][0]["created_at"] == at.isoformat()
    assert payload["groups"][0]["messages"][0]["id"] == "m1"


@pytest.mark.asyncio
async def test_subscribe_to_channel_pushes_snapshots(store):
    channel = await ChannelRepository(store).create_channel({"name": "general", "created_by": "ana"})
    repo = MessageRepository(store)
    await repo.send_message(channel["id"], {"user_id": "ana", "display_name": "Ana", "content": "hi"})

    ws = FakeWebSocket()
    assert await subscribe_to_channel(ws, store, "ben", channel["id"]) is True
    assert ws.sent[0]["type"] == "messages.snapshot"
    assert [m["content"] for m in ws.sent[0]["messages"]] == ["hi"]

    await repo.send_message(channel["id"], {"user_id": "ben", "display_name": "Ben", "content": "hello"})
    assert [m["content"] for m in ws.sent[-1]["messages"]] == ["hi", "hello"]
    assert len(ws.sent[-1]["groups"]) == 2

    assert manager.unsubscribe(ws) == channel["id"]
    await repo.send_message(channel["id"], {"user_id": "ana", "display_name": "Ana", "content": "quiet"})
    assert len(ws.sent) == 2


@pytest.mark.asyncio
async def test_subscribe_to_private_channel_refused(store):
    channel = await ChannelRepository(store).create_channel({"name": "secret", "type": "private", "created_by": "ana"})
    ws = FakeWebSocket()
    assert await subscribe_to_channel(ws, store, "ben", channel["id"]) is False
    assert await subscribe_to_channel(ws, store, "ben", "missing") is False
    assert ws.sent == []


@pytest.mark.asyncio
async def test_removed_member_stops_receiving_private_snapshots(store):
    channels = ChannelRepository(store)
    channel = await channels.create_channel({"name": "board", "type": "private", "created_by": "ana"})
    await channels.add_channel_member(channel["id"], "ben")
    repo = MessageRepository(store)

    ws = FakeWebSocket()
    assert await subscribe_to_channel(ws, store, "ben", channel["id"]) is True
    assert ws.sent[0]["type"] == "messages.snapshot"

    await channels.remove_channel_member(channel["id"], "ben")
    assert ws.sent[-1] == {
        "type": "error",
        "channel": channel["id"],
        "detail": "Channel not found or not accessible",
    }
    assert manager.current_channel(ws) is None

    sent_before = len(ws.sent)
    await repo.send_message(channel["id"], {"user_id": "ana", "display_name": "Ana", "content": "confidential"})
    assert len(ws.sent) == sent_before
    assert not any(
        m.get("content") == "confidential"
        for frame in ws.sent if frame["type"] == "messages.snapshot"
        for m in frame["messages"]
    )


@pytest.mark.asyncio
async def test_channel_turned_private_revokes_outsiders(store):
    channels = ChannelRepository(store)
    channel = await channels.create_channel({"name": "lobby", "created_by": "ana"})

    ws = FakeWebSocket()
    assert await subscribe_to_channel(ws, store, "ben", channel["id"]) is True
    await channels.update_channel(channel["id"], {"type": "private"})
    assert ws.sent[-1]["type"] == "error"
    assert manager.current_channel(ws) is None


@pytest.mark.asyncio
async def test_member_keeps_subscription_through_unrelated_channel_changes(store):
    channels = ChannelRepository(store)
    channel = await channels.create_channel({"name": "board", "type": "private", "created_by": "ana"})
    await channels.add_channel_member(channel["id"], "ben")

    ws = FakeWebSocket()
    await subscribe_to_channel(ws, store, "ben", channel["id"])
    await channels.add_channel_member(channel["id"], "cy")
    assert manager.current_channel(ws) == channel["id"]
    assert all(frame["type"] == "messages.snapshot" for frame in ws.sent)
