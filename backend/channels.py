# channels.py — Channel repository: CRUD, membership and DM resolution
import hashlib
import logging
import re
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from document_store import (
    DocumentStore, DocumentExists, DocumentNotFound, ArrayUnion, ArrayRemove,
)
from models import ChannelType

logger = logging.getLogger("solis-center.chat")

CHANNELS = "channels"

# Fields a plain channel update may touch; membership and pins have their own operations
UPDATABLE_FIELDS = frozenset({"name", "description", "type", "team_id"})


def messages_path(channel_id: str) -> str:
    return f"{CHANNELS}/{channel_id}/messages"


def dm_channel_id(user_a: str, user_b: str) -> str:
    """Stable channel id for an unordered pair of users"""
    low, high = sorted((user_a, user_b))
    digest = hashlib.sha256(f"{low}|{high}".encode("utf-8")).hexdigest()[:32]
    return f"dm_{digest}"


def _normalise_name(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip()).lower()


def _unique(values) -> List[str]:
    return [v for v in dict.fromkeys(values or []) if v]


def _channel_type(value: Any) -> ChannelType:
    try:
        return ChannelType(value or ChannelType.PUBLIC.value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid channel type: {value}")


class ChannelRepository:
    """Channel documents and their membership sets"""

    def __init__(self, store: DocumentStore):
        self.store = store

    # --- reads ---

    async def get_channel(self, channel_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(CHANNELS, channel_id)

    async def require_channel(self, channel_id: str) -> Dict[str, Any]:
        channel = await self.get_channel(channel_id)
        if channel is None:
            raise DocumentNotFound(CHANNELS, channel_id)
        return channel

    @staticmethod
    def can_read(channel: Dict[str, Any], user_id: str) -> bool:
        if channel.get("type") == ChannelType.PUBLIC.value:
            return True
        return user_id in (channel.get("members") or []) or channel.get("created_by") == user_id

    @staticmethod
    def can_manage(channel: Dict[str, Any], user_id: str, is_org_admin: bool = False) -> bool:
        if is_org_admin:
            return True
        return user_id in (channel.get("admins") or []) or channel.get("created_by") == user_id

    async def get_all_user_channels(self, user_id: str, include_archived: bool = False) -> List[Dict[str, Any]]:
        """Channels the user may see: public, or listed as member, or created by them."""
        def visible(channel: Dict[str, Any]) -> bool:
            if channel.get("archived") and not include_archived:
                return False
            return self.can_read(channel, user_id)

        return await self.store.query(CHANNELS, predicate=visible, descending=True)

    # --- writes ---

    async def create_channel(self, data: Dict[str, Any], channel_id: Optional[str] = None) -> Dict[str, Any]:
        channel_type = _channel_type(data.get("type"))
        name = (data.get("name") or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Channel name is required")
        if channel_type != ChannelType.DM:
            name = _normalise_name(name)

        created_by = data.get("created_by")
        members = _unique(data.get("members"))
        admins = _unique(data.get("admins"))
        if created_by and channel_type != ChannelType.DM:
            members = _unique([created_by] + members)
            admins = _unique([created_by] + admins)
        # admins is always a subset of members
        members = _unique(members + admins)

        doc = {
            "name": name,
            "description": (data.get("description") or "").strip(),
            "type": channel_type.value,
            "team_id": data.get("team_id"),
            "created_by": created_by,
            "created_by_name": data.get("created_by_name"),
            "members": members,
            "admins": admins,
            "pinned_messages": [],
            "archived": False,
            "last_message_id": None,
            "last_message_at": None,
            "last_message_preview": None,
            "last_message_by": None,
        }
        if data.get("member_names"):
            doc["member_names"] = dict(data["member_names"])

        channel_id = await self.store.add(CHANNELS, doc, doc_id=channel_id)
        logger.info(f"Channel created: {channel_type.value} '{name}' id={channel_id[:12]}")
        return await self.store.get(CHANNELS, channel_id)

    async def update_channel(self, channel_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        channel = await self.require_channel(channel_id)
        changes = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS and v is not None}
        if "type" in changes:
            new_type = _channel_type(changes["type"])
            if ChannelType.DM in (new_type, ChannelType(channel["type"])) and new_type.value != channel["type"]:
                raise HTTPException(status_code=400, detail="Direct message channels cannot change type")
            changes["type"] = new_type.value
        if "name" in changes:
            if not str(changes["name"]).strip():
                raise HTTPException(status_code=400, detail="Channel name is required")
            if channel["type"] != ChannelType.DM.value:
                changes["name"] = _normalise_name(changes["name"])
        if not changes:
            return channel
        return await self.store.update(CHANNELS, channel_id, changes)

    async def archive_channel(self, channel_id: str) -> Dict[str, Any]:
        return await self.store.update(CHANNELS, channel_id, {"archived": True})

    async def unarchive_channel(self, channel_id: str) -> Dict[str, Any]:
        return await self.store.update(CHANNELS, channel_id, {"archived": False})

    async def delete_channel(self, channel_id: str) -> int:
        """Hard-delete a channel and every message in it. Returns the number of messages removed."""
        async with self.store.transaction():
            await self.require_channel(channel_id)
            removed = await self.store.delete_collection(messages_path(channel_id))
            await self.store.delete(CHANNELS, channel_id)
        logger.info(f"Channel deleted: id={channel_id[:12]} messages={removed}")
        return removed

    # --- membership ---

    async def add_channel_member(self, channel_id: str, user_id: str) -> Dict[str, Any]:
        return await self.store.update(CHANNELS, channel_id, {"members": ArrayUnion(user_id)})

    async def remove_channel_member(self, channel_id: str, user_id: str) -> Dict[str, Any]:
        # A removed member cannot stay an admin
        return await self.store.update(CHANNELS, channel_id, {
            "members": ArrayRemove(user_id),
            "admins": ArrayRemove(user_id),
        })

    async def add_channel_admin(self, channel_id: str, user_id: str) -> Dict[str, Any]:
        return await self.store.update(CHANNELS, channel_id, {
            "members": ArrayUnion(user_id),
            "admins": ArrayUnion(user_id),
        })

    async def remove_channel_admin(self, channel_id: str, user_id: str) -> Dict[str, Any]:
        return await self.store.update(CHANNELS, channel_id, {"admins": ArrayRemove(user_id)})

    # --- direct messages ---

    async def _find_existing_dm(self, user_a: str, user_b: str) -> Optional[Dict[str, Any]]:
        pair = {user_a, user_b}
        matches = await self.store.query(
            CHANNELS,
            where={"type": ChannelType.DM.value},
            predicate=lambda c: set(c.get("members") or []) == pair,
        )
        return matches[0] if matches else None

    async def find_or_create_dm(self, user_a: str, name_a: str, user_b: str, name_b: str) -> Dict[str, Any]:
        """Return the single DM channel for the pair, creating it if needed.

        The channel id is derived from the sorted pair, so two concurrent calls
        race on one create-if-absent insert and both end up with the same row.
        """
        if not user_a or not user_b:
            raise HTTPException(status_code=400, detail="Both users are required for a direct message")
        if user_a == user_b:
            raise HTTPException(status_code=400, detail="Cannot start a direct message with yourself")

        channel_id = dm_channel_id(user_a, user_b)
        existing = await self.get_channel(channel_id)
        if existing is not None:
            return existing

        # DMs created before ids were derived from the pair
        legacy = await self._find_existing_dm(user_a, user_b)
        if legacy is not None:
            return legacy

        try:
            return await self.create_channel({
                "name": f"{name_a} & {name_b}",
                "type": ChannelType.DM.value,
                "members": [user_a, user_b],
                "admins": [],
                "created_by": user_a,
                "created_by_name": name_a,
                "member_names": {user_a: name_a, user_b: name_b},
            }, channel_id=channel_id)
        except DocumentExists:
            logger.info(f"DM {channel_id[:12]} created concurrently, reusing it")
            return await self.require_channel(channel_id)

    @staticmethod
    def dm_display_name(channel: Dict[str, Any], viewer_id: str) -> str:
        if channel.get("type") != ChannelType.DM.value:
            return channel.get("name", "")
        names = channel.get("member_names") or {}
        other = next((uid for uid in channel.get("members") or [] if uid != viewer_id), None)
        return names.get(other) or channel.get("name", "")
