# routers/websocket_router.py — Real-time channel snapshots and presence over WebSocket
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from auth import AuthService
from channels import CHANNELS, ChannelRepository
from database import get_db_session
from document_store import DocumentStore, DocumentNotFound
from members import MemberRepository
from message_groups import group_messages
from messages import MessageRepository
from realtime import Subscription, snapshot_hub

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger("solis-center.ws")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def snapshot_message(channel_id: str, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Payload pushed to a subscriber after every change to the channel's messages"""
    return jsonable_encoder({
        "type": "messages.snapshot",
        "channel": channel_id,
        "messages": messages,
        "groups": [g.to_dict() for g in group_messages(messages)],
    })


class ConnectionManager:
    """Manages WebSocket connections per organisation.

    Each connection follows at most one channel; subscribing to another
    channel tears the previous snapshot subscription down first.
    """

    def __init__(self):
        self._connections: Dict[str, Dict[str, WebSocket]] = {}  # org_id -> {user_id -> ws}
        self._subscriptions: Dict[WebSocket, Tuple[str, Tuple[Subscription, ...]]] = {}  # ws -> (channel_id, subs)

    async def connect(self, websocket: WebSocket, user_id: str, org_id: str):
        await websocket.accept()
        if org_id not in self._connections:
            self._connections[org_id] = {}
        self._connections[org_id][user_id] = websocket
        logger.info(f"WS connected: user={user_id[:8]} org={org_id[:12]}")

    def disconnect(self, websocket: WebSocket, user_id: str, org_id: str):
        self.unsubscribe(websocket)
        conns = self._connections.get(org_id)
        if conns is not None and conns.get(user_id) is websocket:
            del conns[user_id]
            if not conns:
                del self._connections[org_id]
        logger.info(f"WS disconnected: user={user_id[:8]}")

    def subscribe(self, websocket: WebSocket, channel_id: str, *subscriptions: Subscription):
        self.unsubscribe(websocket)
        self._subscriptions[websocket] = (channel_id, subscriptions)

    def unsubscribe(self, websocket: WebSocket) -> Optional[str]:
        current = self._subscriptions.pop(websocket, None)
        if current is None:
            return None
        channel_id, subscriptions = current
        for subscription in subscriptions:
            subscription.close()
        return channel_id

    def current_channel(self, websocket: WebSocket) -> Optional[str]:
        current = self._subscriptions.get(websocket)
        return current[0] if current else None

    async def send_to_user(self, user_id: str, org_id: str, message: dict):
        websocket = self._connections.get(org_id, {}).get(user_id)
        if websocket is None:
            return
        try:
            await websocket.send_json(message)
        except Exception:
            self.disconnect(websocket, user_id, org_id)

    async def broadcast_to_org(self, org_id: str, message: dict, exclude_user: Optional[str] = None):
        if org_id not in self._connections:
            return
        disconnected = []
        for uid, ws in self._connections[org_id].items():
            if uid == exclude_user:
                continue
            try:
                await ws.send_json(message)
            except Exception:
                disconnected.append((uid, ws))
        for uid, ws in disconnected:
            self.disconnect(ws, uid, org_id)

    def get_online_users(self, org_id: str) -> list:
        return list(self._connections.get(org_id, {}).keys())

    def get_stats(self) -> dict:
        total = sum(len(conns) for conns in self._connections.values())
        return {
            "total_connections": total,
            "organisations": len(self._connections),
            "channel_subscriptions": len(self._subscriptions),
            "snapshot_listeners": snapshot_hub.listener_count(),
        }


# Global connection manager
manager = ConnectionManager()


async def subscribe_to_channel(websocket: WebSocket, store: DocumentStore, user_id: str, channel_id: str) -> bool:
    """Start pushing snapshots of ``channel_id`` to the socket; False if the user may not read it"""
    channel = await ChannelRepository(store).get_channel(channel_id)
    if channel is None or not ChannelRepository.can_read(channel, user_id):
        return False

    async def push(messages: List[Dict[str, Any]]):
        await websocket.send_json(snapshot_message(channel_id, messages))

    async def check_access(channels: List[Dict[str, Any]]):
        # Runs after every committed change to any channel
        if watcher.closed:
            return
        current = next((c for c in channels if c["id"] == channel_id), None)
        if current is not None and ChannelRepository.can_read(current, user_id):
            return
        manager.unsubscribe(websocket)
        logger.info(f"WS access revoked: user={user_id[:8]} channel={channel_id[:12]}")
        await websocket.send_json({
            "type": "error",
            "channel": channel_id,
            "detail": "Channel not found or not accessible",
        })

    # Drop the old subscription before the first snapshot of the new channel arrives
    manager.unsubscribe(websocket)
    subscription = await MessageRepository(store).on_messages_snapshot(channel_id, push)
    watcher = store.hub.subscribe(store.org_id, CHANNELS, check_access)
    manager.subscribe(websocket, channel_id, subscription, watcher)
    return True


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
    db: AsyncSession = Depends(get_db_session),
):
    """Main WebSocket endpoint for live channel updates"""
    # Authenticate
    try:
        payload = AuthService.verify_token(token)
    except HTTPException:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    user_id = payload["sub"]
    store = DocumentStore(db)
    org_id = store.org_id
    member = await MemberRepository(store).get_member(user_id)
    # End the read transaction so the socket holds no locks while idle
    await db.commit()
    if member is None or not member.get("active", True):
        await websocket.close(code=4003, reason="Not a member of this organisation")
        return

    await manager.connect(websocket, user_id, org_id)

    # Send welcome message
    await websocket.send_json({
        "type": "connected",
        "user_id": user_id,
        "org_id": org_id,
        "online_users": manager.get_online_users(org_id),
        "timestamp": _now(),
    })

    # Notify others
    await manager.broadcast_to_org(org_id, {
        "type": "user.online",
        "user_id": user_id,
        "timestamp": _now(),
    }, exclude_user=user_id)

    try:
        while True:
            data = await websocket.receive_json()
            msg_type = data.get("type", "")

            if msg_type == "ping":
                await websocket.send_json({"type": "pong", "timestamp": _now()})

            elif msg_type == "subscribe":
                channel_id = data.get("channel", "")
                if not channel_id:
                    continue
                try:
                    allowed = await subscribe_to_channel(websocket, store, user_id, channel_id)
                except DocumentNotFound:
                    allowed = False
                await db.commit()
                if allowed:
                    await websocket.send_json({"type": "subscribed", "channel": channel_id})
                else:
                    await websocket.send_json({
                        "type": "error",
                        "channel": channel_id,
                        "detail": "Channel not found or not accessible",
                    })

            elif msg_type == "unsubscribe":
                channel_id = manager.unsubscribe(websocket)
                if channel_id:
                    await websocket.send_json({"type": "unsubscribed", "channel": channel_id})

    except WebSocketDisconnect:
        manager.disconnect(websocket, user_id, org_id)
        await manager.broadcast_to_org(org_id, {
            "type": "user.offline",
            "user_id": user_id,
            "timestamp": _now(),
        })
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
        manager.disconnect(websocket, user_id, org_id)


@router.get("/ws/stats")
async def websocket_stats():
    """Get WebSocket connection statistics"""
    return manager.get_stats()
