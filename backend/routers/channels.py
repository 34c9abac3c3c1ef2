# routers/channels.py — Channels, direct messages and channel messages
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from auth import CurrentUser, require_permission
from channels import ChannelRepository
from document_store import DocumentStore, get_document_store
from members import MemberRepository
from message_groups import group_messages
from messages import MessageRepository
from models import ChannelType, MessageType
from workspace import log_action

router = APIRouter(prefix="/api/v1/channels", tags=["Channels"])


# --- Schemas ---

class ChannelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    description: str = ""
    type: str = Field(default="public", description="One of: public, private")
    members: List[str] = []
    team_id: Optional[str] = None


class ChannelUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    team_id: Optional[str] = None


class MemberRef(BaseModel):
    user_id: str


class MessageCreate(BaseModel):
    content: str = ""
    type: str = Field(default="text", description="One of: text, file")
    reply_to: Optional[str] = None
    mentions: List[str] = []
    attachments: List[Dict[str, Any]] = []


class MessageEdit(BaseModel):
    content: str


class ReactionRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=32)


# --- Helpers ---

async def _readable_channel(repo: ChannelRepository, channel_id: str, user: CurrentUser) -> Dict[str, Any]:
    channel = await repo.require_channel(channel_id)
    if not repo.can_read(channel, user.id):
        raise HTTPException(status_code=403, detail="You are not a member of this channel")
    return channel


async def _managed_channel(repo: ChannelRepository, channel_id: str, user: CurrentUser) -> Dict[str, Any]:
    channel = await repo.require_channel(channel_id)
    if not repo.can_manage(channel, user.id, user.has_permission("channels:manage")):
        raise HTTPException(status_code=403, detail="Channel admin access required")
    return channel


def _writable(channel: Dict[str, Any]) -> None:
    if channel.get("archived"):
        raise HTTPException(status_code=400, detail="Channel is archived")


def _with_display_name(channel: Dict[str, Any], viewer_id: str) -> Dict[str, Any]:
    out = dict(channel)
    out["display_name"] = ChannelRepository.dm_display_name(channel, viewer_id)
    return out


async def _member_name(store: DocumentStore, user_id: str) -> str:
    member = await MemberRepository(store).get_member(user_id)
    if member is None:
        raise HTTPException(status_code=400, detail="User is not a member of this organisation")
    return member.get("display_name") or user_id


# --- Channels ---

@router.get("")
async def list_channels(
    include_archived: bool = False,
    user: CurrentUser = Depends(require_permission("channels:read")),
    store: DocumentStore = Depends(get_document_store),
):
    """Channels visible to the caller, newest first"""
    channels = await ChannelRepository(store).get_all_user_channels(user.id, include_archived=include_archived)
    return [_with_display_name(c, user.id) for c in channels]


@router.post("", status_code=201)
async def create_channel(
    body: ChannelCreate,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    if body.type == ChannelType.DM.value:
        raise HTTPException(status_code=400, detail="Use /api/v1/channels/dm to start a direct message")
    channel = await ChannelRepository(store).create_channel({
        "name": body.name,
        "description": body.description,
        "type": body.type,
        "members": body.members,
        "team_id": body.team_id,
        "created_by": user.id,
        "created_by_name": user.display_name,
    })
    await log_action(store, "created", "channel", channel["name"], user.id, user.display_name)
    return channel


@router.post("/dm")
async def open_direct_message(
    body: MemberRef,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    """Find or create the single DM channel between the caller and another member"""
    other = await MemberRepository(store).get_member(body.user_id)
    if other is None or not other.get("active", True):
        raise HTTPException(status_code=404, detail="Member not found")
    channel = await ChannelRepository(store).find_or_create_dm(
        user.id, user.display_name, other["id"], other.get("display_name") or other["id"],
    )
    return _with_display_name(channel, user.id)


@router.get("/{channel_id}")
async def get_channel(
    channel_id: str,
    user: CurrentUser = Depends(require_permission("channels:read")),
    store: DocumentStore = Depends(get_document_store),
):
    channel = await _readable_channel(ChannelRepository(store), channel_id, user)
    return _with_display_name(channel, user.id)


@router.patch("/{channel_id}")
async def update_channel(
    channel_id: str,
    body: ChannelUpdate,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = ChannelRepository(store)
    await _managed_channel(repo, channel_id, user)
    return await repo.update_channel(channel_id, body.model_dump(exclude_unset=True))


@router.post("/{channel_id}/archive")
async def archive_channel(
    channel_id: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = ChannelRepository(store)
    await _managed_channel(repo, channel_id, user)
    channel = await repo.archive_channel(channel_id)
    await log_action(store, "archived", "channel", channel["name"], user.id, user.display_name)
    return channel


@router.post("/{channel_id}/unarchive")
async def unarchive_channel(
    channel_id: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = ChannelRepository(store)
    await _managed_channel(repo, channel_id, user)
    return await repo.unarchive_channel(channel_id)


@router.delete("/{channel_id}")
async def delete_channel(
    channel_id: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    """Hard delete, including every message in the channel"""
    repo = ChannelRepository(store)
    channel = await _managed_channel(repo, channel_id, user)
    removed = await repo.delete_channel(channel_id)
    await log_action(store, "deleted", "channel", channel["name"], user.id, user.display_name)
    return {"deleted": True, "channel_id": channel_id, "messages_removed": removed}


# --- Membership ---

@router.post("/{channel_id}/members")
async def add_member(
    channel_id: str,
    body: MemberRef,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    """Join a public channel yourself, or add someone as a channel admin"""
    repo = ChannelRepository(store)
    channel = await repo.require_channel(channel_id)
    if channel["type"] == ChannelType.DM.value:
        raise HTTPException(status_code=400, detail="Direct message membership is fixed")
    joining_self = body.user_id == user.id and channel["type"] == ChannelType.PUBLIC.value
    if not joining_self:
        await _managed_channel(repo, channel_id, user)
    name = await _member_name(store, body.user_id)
    channel = await repo.add_channel_member(channel_id, body.user_id)
    text = f"{name} joined the channel" if joining_self else f"{user.display_name} added {name} to the channel"
    await MessageRepository(store).post_system_message(channel_id, text)
    return channel


@router.delete("/{channel_id}/members/{member_id}")
async def remove_member(
    channel_id: str,
    member_id: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = ChannelRepository(store)
    channel = await repo.require_channel(channel_id)
    if channel["type"] == ChannelType.DM.value:
        raise HTTPException(status_code=400, detail="Direct message membership is fixed")
    leaving = member_id == user.id
    if not leaving:
        await _managed_channel(repo, channel_id, user)
    member = await MemberRepository(store).get_member(member_id)
    name = (member or {}).get("display_name") or member_id
    channel = await repo.remove_channel_member(channel_id, member_id)
    text = f"{name} left the channel" if leaving else f"{user.display_name} removed {name} from the channel"
    await MessageRepository(store).post_system_message(channel_id, text)
    return channel


@router.post("/{channel_id}/admins")
async def add_admin(
    channel_id: str,
    body: MemberRef,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = ChannelRepository(store)
    await _managed_channel(repo, channel_id, user)
    await _member_name(store, body.user_id)
    return await repo.add_channel_admin(channel_id, body.user_id)


@router.delete("/{channel_id}/admins/{member_id}")
async def remove_admin(
    channel_id: str,
    member_id: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = ChannelRepository(store)
    await _managed_channel(repo, channel_id, user)
    return await repo.remove_channel_admin(channel_id, member_id)


# --- Messages ---

@router.get("/{channel_id}/messages")
async def list_messages(
    channel_id: str,
    grouped: bool = Query(default=False, description="Also return author groups for rendering"),
    user: CurrentUser = Depends(require_permission("channels:read")),
    store: DocumentStore = Depends(get_document_store),
):
    await _readable_channel(ChannelRepository(store), channel_id, user)
    messages = await MessageRepository(store).get_messages(channel_id)
    result: Dict[str, Any] = {"channel_id": channel_id, "messages": messages}
    if grouped:
        result["groups"] = [g.to_dict() for g in group_messages(messages)]
    return result


@router.post("/{channel_id}/messages", status_code=201)
async def send_message(
    channel_id: str,
    body: MessageCreate,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    if body.type == MessageType.SYSTEM.value:
        raise HTTPException(status_code=400, detail="System messages cannot be sent directly")
    channel = await _readable_channel(ChannelRepository(store), channel_id, user)
    _writable(channel)
    return await MessageRepository(store).send_message(channel_id, {
        "content": body.content,
        "type": body.type,
        "user_id": user.id,
        "display_name": user.display_name,
        "photo_url": user.photo_url,
        "reply_to": body.reply_to,
        "mentions": body.mentions,
        "attachments": body.attachments,
    })


@router.patch("/{channel_id}/messages/{message_id}")
async def edit_message(
    channel_id: str,
    message_id: str,
    body: MessageEdit,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    channel = await _readable_channel(ChannelRepository(store), channel_id, user)
    _writable(channel)
    repo = MessageRepository(store)
    message = await repo.get_message(channel_id, message_id)
    if message.get("user_id") != user.id:
        raise HTTPException(status_code=403, detail="Only the author can edit a message")
    return await repo.edit_message(channel_id, message_id, body.content)


@router.delete("/{channel_id}/messages/{message_id}")
async def delete_message(
    channel_id: str,
    message_id: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    """Soft delete: the message stays in place with placeholder content"""
    channels = ChannelRepository(store)
    channel = await _readable_channel(channels, channel_id, user)
    repo = MessageRepository(store)
    message = await repo.get_message(channel_id, message_id)
    is_manager = channels.can_manage(channel, user.id, user.is_admin)
    if message.get("user_id") != user.id and not is_manager:
        raise HTTPException(status_code=403, detail="Only the author or a channel admin can delete a message")
    return await repo.delete_message(channel_id, message_id)


@router.get("/{channel_id}/pinned")
async def list_pinned(
    channel_id: str,
    user: CurrentUser = Depends(require_permission("channels:read")),
    store: DocumentStore = Depends(get_document_store),
):
    await _readable_channel(ChannelRepository(store), channel_id, user)
    return await MessageRepository(store).get_pinned_messages(channel_id)


@router.post("/{channel_id}/messages/{message_id}/pin")
async def pin_message(
    channel_id: str,
    message_id: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    channel = await _readable_channel(ChannelRepository(store), channel_id, user)
    _writable(channel)
    return await MessageRepository(store).pin_message(channel_id, message_id)


@router.delete("/{channel_id}/messages/{message_id}/pin")
async def unpin_message(
    channel_id: str,
    message_id: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    await _readable_channel(ChannelRepository(store), channel_id, user)
    return await MessageRepository(store).unpin_message(channel_id, message_id)


@router.post("/{channel_id}/messages/{message_id}/reactions")
async def toggle_reaction(
    channel_id: str,
    message_id: str,
    body: ReactionRequest,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    await _readable_channel(ChannelRepository(store), channel_id, user)
    return await MessageRepository(store).toggle_reaction(channel_id, message_id, body.emoji, user.id)


@router.put("/{channel_id}/messages/{message_id}/reactions/{emoji}")
async def add_reaction(
    channel_id: str,
    message_id: str,
    emoji: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    await _readable_channel(ChannelRepository(store), channel_id, user)
    return await MessageRepository(store).add_reaction(channel_id, message_id, emoji, user.id)


@router.delete("/{channel_id}/messages/{message_id}/reactions/{emoji}")
async def remove_reaction(
    channel_id: str,
    message_id: str,
    emoji: str,
    user: CurrentUser = Depends(require_permission("channels:write")),
    store: DocumentStore = Depends(get_document_store),
):
    await _readable_channel(ChannelRepository(store), channel_id, user)
    return await MessageRepository(store).remove_reaction(channel_id, message_id, emoji, user.id)


@router.post("/{channel_id}/messages/{message_id}/read")
async def mark_read(
    channel_id: str,
    message_id: str,
    user: CurrentUser = Depends(require_permission("channels:read")),
    store: DocumentStore = Depends(get_document_store),
):
    await _readable_channel(ChannelRepository(store), channel_id, user)
    return await MessageRepository(store).mark_read(channel_id, message_id, user.id)
