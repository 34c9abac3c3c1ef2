# message_groups.py — Turns a flat message snapshot into renderable groups
"""
Consecutive messages from the same author are shown under one header as long
as each follows the previous one within the grouping window. System messages
always stand alone.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models import MessageType

GROUP_WINDOW_SECONDS = 300


def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def _is_system(message: Dict[str, Any]) -> bool:
    return message.get("type") == MessageType.SYSTEM.value


@dataclass
class MessageGroup:
    user_id: Optional[str]
    display_name: str
    is_system: bool
    messages: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def started_at(self) -> Optional[datetime]:
        return _timestamp(self.messages[0].get("created_at")) if self.messages else None

    @property
    def id(self) -> Optional[str]:
        return self.messages[0].get("id") if self.messages else None

    def to_dict(self) -> Dict[str, Any]:
        started = self.started_at
        return {
            "id": self.id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "is_system": self.is_system,
            "started_at": started.isoformat() if started else None,
            "messages": self.messages,
        }


def _continues_group(prev: Dict[str, Any], msg: Dict[str, Any], window_seconds: int) -> bool:
    if _is_system(prev) or _is_system(msg):
        return False
    if prev.get("user_id") != msg.get("user_id"):
        return False
    prev_at = _timestamp(prev.get("created_at"))
    msg_at = _timestamp(msg.get("created_at"))
    if prev_at is None or msg_at is None:
        return False
    return (msg_at - prev_at).total_seconds() < window_seconds


def group_messages(messages: List[Dict[str, Any]],
                   window_seconds: int = GROUP_WINDOW_SECONDS) -> List[MessageGroup]:
    """Single pass over an ordered message list; re-run on every snapshot."""
    groups: List[MessageGroup] = []
    prev: Optional[Dict[str, Any]] = None
    for msg in messages:
        if prev is not None and groups and _continues_group(prev, msg, window_seconds):
            groups[-1].messages.append(msg)
        else:
            groups.append(MessageGroup(
                user_id=msg.get("user_id"),
                display_name=msg.get("display_name") or "",
                is_system=_is_system(msg),
                messages=[msg],
            ))
        prev = msg
    return groups


def pinned_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [m for m in messages if m.get("pinned")]


def reaction_summary(message: Dict[str, Any], viewer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Reaction chips for one message: emoji, count and whether the viewer reacted"""
    return [
        {"emoji": emoji, "count": len(users), "reacted": viewer_id in users}
        for emoji, users in (message.get("reactions") or {}).items()
        if users
    ]
