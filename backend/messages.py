# messages.py — Message repository: append, edit, soft delete, pins, reactions, live snapshots
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import HTTPException

from channels import CHANNELS, messages_path
from document_store import DocumentStore, DocumentNotFound, ArrayUnion, ArrayRemove
from models import MessageType
from realtime import Subscription

logger = logging.getLogger("solis-center.chat")

DELETED_PLACEHOLDER = "This message was deleted"
PREVIEW_LENGTH = 100


def _preview(content: Optional[str]) -> str:
    return (content or "")[:PREVIEW_LENGTH]


def _message_type(value: Any) -> MessageType:
    try:
        return MessageType(value or MessageType.TEXT.value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid message type: {value}")


class MessageRepository:
    """Messages live in the ``messages`` subcollection of their channel"""

    def __init__(self, store: DocumentStore):
        self.store = store

    # --- reads ---

    async def get_messages(self, channel_id: str) -> List[Dict[str, Any]]:
        """All messages in creation order (oldest first)"""
        return await self.store.query(messages_path(channel_id))

    async def get_message(self, channel_id: str, message_id: str, for_update: bool = False) -> Dict[str, Any]:
        message = await self.store.get(messages_path(channel_id), message_id, for_update=for_update)
        if message is None:
            raise DocumentNotFound(messages_path(channel_id), message_id)
        return message

    async def get_pinned_messages(self, channel_id: str) -> List[Dict[str, Any]]:
        """Pinned messages in the order they were pinned"""
        channel = await self.store.get(CHANNELS, channel_id)
        if channel is None:
            raise DocumentNotFound(CHANNELS, channel_id)
        by_id = {m["id"]: m for m in await self.get_messages(channel_id)}
        return [by_id[mid] for mid in channel.get("pinned_messages") or [] if mid in by_id]

    # --- append ---

    async def send_message(self, channel_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Append a message and refresh the channel's last-message summary in one transaction."""
        msg_type = _message_type(data.get("type"))
        content = data.get("content") or ""
        if msg_type != MessageType.FILE and not content.strip():
            raise HTTPException(status_code=400, detail="Message content is required")
        user_id = data.get("user_id")
        if msg_type != MessageType.SYSTEM and not user_id:
            raise HTTPException(status_code=400, detail="Sender is required")

        path = messages_path(channel_id)
        async with self.store.transaction():
            channel = await self.store.get(CHANNELS, channel_id, for_update=True)
            if channel is None:
                raise DocumentNotFound(CHANNELS, channel_id)

            reply_to = data.get("reply_to")
            reply_preview = reply_author = None
            if reply_to:
                parent = await self.store.get(path, reply_to)
                if parent is None:
                    raise HTTPException(status_code=400, detail="Replied-to message not found")
                reply_preview = _preview(parent.get("content"))
                reply_author = parent.get("display_name")

            message_id = await self.store.add(path, {
                "content": content,
                "user_id": user_id,
                "display_name": data.get("display_name") or "",
                "photo_url": data.get("photo_url"),
                "type": msg_type.value,
                "reply_to": reply_to,
                "reply_preview": reply_preview,
                "reply_author": reply_author,
                "reactions": {},
                "pinned": False,
                "edited": False,
                "deleted": False,
                "mentions": [m for m in dict.fromkeys(data.get("mentions") or []) if m],
                "attachments": list(data.get("attachments") or []),
                "read_by": [user_id] if user_id else [],
            })
            message = await self.store.get(path, message_id)
            await self.store.update(CHANNELS, channel_id, {
                "last_message_id": message_id,
                "last_message_at": message["created_at"],
                "last_message_preview": _preview(content),
                "last_message_by": user_id,
            })

        logger.debug(f"Message {message_id[:8]} appended to channel {channel_id[:12]}")
        return message

    async def post_system_message(self, channel_id: str, content: str) -> Dict[str, Any]:
        return await self.send_message(channel_id, {
            "content": content,
            "type": MessageType.SYSTEM.value,
            "display_name": "System",
        })

    # --- mutations ---

    async def _refresh_copies(self, channel_id: str, message_id: str, content: str) -> None:
        """Rewrite the reply previews and channel summary that quote a message.

        Must run inside the transaction that changes the message content.
        """
        path = messages_path(channel_id)
        preview = _preview(content)
        for reply in await self.store.query(path, where={"reply_to": message_id}):
            await self.store.update(path, reply["id"], {"reply_preview": preview})
        channel = await self.store.get(CHANNELS, channel_id)
        if channel is not None and channel.get("last_message_id") == message_id:
            await self.store.update(CHANNELS, channel_id, {"last_message_preview": preview})

    async def edit_message(self, channel_id: str, message_id: str, content: str) -> Dict[str, Any]:
        if not (content or "").strip():
            raise HTTPException(status_code=400, detail="Message content is required")
        async with self.store.transaction():
            await self.store.get(CHANNELS, channel_id, for_update=True)
            message = await self.get_message(channel_id, message_id, for_update=True)
            if message.get("deleted"):
                raise HTTPException(status_code=400, detail="Cannot edit a deleted message")
            message = await self.store.update(messages_path(channel_id), message_id, {
                "content": content,
                "edited": True,
            })
            await self._refresh_copies(channel_id, message_id, content)
        return message

    async def delete_message(self, channel_id: str, message_id: str) -> Dict[str, Any]:
        """Soft delete: the original content is discarded everywhere it was quoted.

        Reactions and pin state stay as they are.
        """
        async with self.store.transaction():
            await self.store.get(CHANNELS, channel_id, for_update=True)
            await self.get_message(channel_id, message_id, for_update=True)
            message = await self.store.update(messages_path(channel_id), message_id, {
                "content": DELETED_PLACEHOLDER,
                "deleted": True,
                "mentions": [],
                "attachments": [],
            })
            await self._refresh_copies(channel_id, message_id, DELETED_PLACEHOLDER)
        return message

    async def pin_message(self, channel_id: str, message_id: str) -> Dict[str, Any]:
        async with self.store.transaction():
            message = await self.get_message(channel_id, message_id, for_update=True)
            if message.get("deleted"):
                raise HTTPException(status_code=400, detail="Cannot pin a deleted message")
            message = await self.store.update(messages_path(channel_id), message_id, {"pinned": True})
            await self.store.update(CHANNELS, channel_id, {"pinned_messages": ArrayUnion(message_id)})
        return message

    async def unpin_message(self, channel_id: str, message_id: str) -> Dict[str, Any]:
        async with self.store.transaction():
            await self.get_message(channel_id, message_id, for_update=True)
            message = await self.store.update(messages_path(channel_id), message_id, {"pinned": False})
            await self.store.update(CHANNELS, channel_id, {"pinned_messages": ArrayRemove(message_id)})
        return message

    async def _change_reaction(self, channel_id: str, message_id: str, emoji: str,
                               user_id: str, mode: str) -> Dict[str, Any]:
        if not emoji:
            raise HTTPException(status_code=400, detail="Emoji is required")
        async with self.store.transaction():
            message = await self.get_message(channel_id, message_id, for_update=True)
            if message.get("deleted"):
                raise HTTPException(status_code=400, detail="Cannot react to a deleted message")
            reactions = {k: list(v) for k, v in (message.get("reactions") or {}).items()}
            users = reactions.get(emoji, [])
            if mode == "add" or (mode == "toggle" and user_id not in users):
                if user_id not in users:
                    users.append(user_id)
            else:
                users = [u for u in users if u != user_id]
            if users:
                reactions[emoji] = users
            else:
                reactions.pop(emoji, None)
            return await self.store.update(messages_path(channel_id), message_id, {"reactions": reactions})

    async def add_reaction(self, channel_id: str, message_id: str, emoji: str, user_id: str) -> Dict[str, Any]:
        return await self._change_reaction(channel_id, message_id, emoji, user_id, "add")

    async def remove_reaction(self, channel_id: str, message_id: str, emoji: str, user_id: str) -> Dict[str, Any]:
        return await self._change_reaction(channel_id, message_id, emoji, user_id, "remove")

    async def toggle_reaction(self, channel_id: str, message_id: str, emoji: str, user_id: str) -> Dict[str, Any]:
        return await self._change_reaction(channel_id, message_id, emoji, user_id, "toggle")

    async def mark_read(self, channel_id: str, message_id: str, user_id: str) -> Dict[str, Any]:
        return await self.store.update(messages_path(channel_id), message_id, {"read_by": ArrayUnion(user_id)})

    # --- live updates ---

    async def on_messages_snapshot(self, channel_id: str,
                                   callback: Callable[[List[Dict[str, Any]]], Any]) -> Subscription:
        """Deliver the ordered message list now and again after every committed change.

        Call ``close()`` on the returned subscription to stop receiving updates.
        """
        sub = self.store.hub.subscribe(self.store.org_id, messages_path(channel_id), callback)
        try:
            await sub.deliver(await self.get_messages(channel_id))
        except Exception:
            sub.close()
            raise
        return sub
