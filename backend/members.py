# members.py — Org membership, roles, reporting lines and teams
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from document_store import DocumentStore, DocumentNotFound, DocumentExists, ArrayUnion, ArrayRemove
from models import MemberRole, utcnow
from org_chart import would_create_cycle
from workspace import ORG

logger = logging.getLogger("solis-center.members")

MEMBERS = "members"
TEAMS = "teams"
OWNER_CLAIM_ID = "owner_claim"

PROFILE_FIELDS = frozenset({"display_name", "photo_url", "title", "department", "phone", "location"})
TEAM_FIELDS = frozenset({"name", "description", "lead_id", "color"})


def _role(value: Any) -> MemberRole:
    try:
        return MemberRole(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid role: {value}")


class MemberRepository:
    """Member documents are keyed by user id inside the org"""

    def __init__(self, store: DocumentStore):
        self.store = store

    # ============================================================
    # MEMBERS
    # ============================================================

    async def get_member(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.store.get(MEMBERS, user_id)

    async def require_member(self, user_id: str) -> Dict[str, Any]:
        member = await self.get_member(user_id)
        if member is None:
            raise DocumentNotFound(MEMBERS, user_id)
        return member

    async def list_members(self, active_only: bool = True) -> List[Dict[str, Any]]:
        where = {"active": True} if active_only else None
        return await self.store.query(MEMBERS, where=where, order_by="display_name")

    async def ensure_member(self, user_id: str, display_name: str = "", email: str = "",
                            photo_url: Optional[str] = None) -> Dict[str, Any]:
        """Return the user's membership, creating it on first join.

        The first member of an organisation becomes its owner. Ownership is
        claimed with a create-if-absent write, so concurrent first joins yield
        exactly one owner.
        """
        existing = await self.get_member(user_id)
        if existing is not None:
            if not existing.get("active", True):
                return await self.store.update(MEMBERS, user_id, {"active": True})
            return existing

        role = MemberRole.MEMBER
        if not await self.store.count(MEMBERS):
            try:
                await self.store.add(ORG, {"user_id": user_id, "claimed_at": utcnow()}, doc_id=OWNER_CLAIM_ID)
                role = MemberRole.OWNER
            except DocumentExists:
                logger.info(f"Ownership already claimed; {user_id[:12]} joins as member")
        await self.store.set(MEMBERS, user_id, {
            "display_name": display_name or (email.split("@")[0] if email else user_id),
            "email": email,
            "photo_url": photo_url,
            "role": role.value,
            "title": "",
            "department": "",
            "manager_id": None,
            "team_ids": [],
            "active": True,
            "joined_at": utcnow(),
        })
        logger.info(f"Member joined: {user_id[:12]} role={role.value}")
        return await self.require_member(user_id)

    async def update_member(self, user_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        await self.require_member(user_id)
        changes = {k: v for k, v in patch.items() if k in PROFILE_FIELDS and v is not None}

        if "manager_id" in patch:
            manager_id = patch["manager_id"] or None
            if manager_id == user_id:
                raise HTTPException(status_code=400, detail="A member cannot manage themselves")
            if manager_id is not None:
                if await self.get_member(manager_id) is None:
                    raise HTTPException(status_code=400, detail="Manager is not a member of this organisation")
                members = await self.list_members(active_only=False)
                if would_create_cycle(members, user_id, manager_id):
                    raise HTTPException(status_code=400, detail="Reporting line would create a cycle")
            changes["manager_id"] = manager_id

        if not changes:
            return await self.require_member(user_id)
        return await self.store.update(MEMBERS, user_id, changes)

    async def set_role(self, user_id: str, role: str) -> Dict[str, Any]:
        new_role = _role(role)
        member = await self.require_member(user_id)
        if member.get("role") == MemberRole.OWNER.value and new_role != MemberRole.OWNER:
            owners = await self.store.count(MEMBERS, where={"role": MemberRole.OWNER.value, "active": True})
            if owners <= 1:
                raise HTTPException(status_code=400, detail="An organisation needs at least one owner")
        return await self.store.update(MEMBERS, user_id, {"role": new_role.value})

    async def deactivate_member(self, user_id: str) -> Dict[str, Any]:
        member = await self.require_member(user_id)
        if member.get("role") == MemberRole.OWNER.value:
            raise HTTPException(status_code=400, detail="Transfer ownership before deactivating the owner")
        return await self.store.update(MEMBERS, user_id, {"active": False})

    # ============================================================
    # TEAMS
    # ============================================================

    async def list_teams(self) -> List[Dict[str, Any]]:
        return await self.store.query(TEAMS, order_by="name")

    async def get_team(self, team_id: str) -> Dict[str, Any]:
        team = await self.store.get(TEAMS, team_id)
        if team is None:
            raise DocumentNotFound(TEAMS, team_id)
        return team

    async def create_team(self, data: Dict[str, Any]) -> Dict[str, Any]:
        name = (data.get("name") or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="Team name is required")
        team_id = await self.store.add(TEAMS, {
            "name": name,
            "description": data.get("description") or "",
            "lead_id": data.get("lead_id"),
            "color": data.get("color"),
            "member_ids": [],
            "created_by": data.get("created_by"),
        })
        return await self.get_team(team_id)

    async def update_team(self, team_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        await self.get_team(team_id)
        changes = {k: v for k, v in patch.items() if k in TEAM_FIELDS and v is not None}
        if "name" in changes and not str(changes["name"]).strip():
            raise HTTPException(status_code=400, detail="Team name is required")
        if not changes:
            return await self.get_team(team_id)
        return await self.store.update(TEAMS, team_id, changes)

    async def delete_team(self, team_id: str) -> None:
        async with self.store.transaction():
            team = await self.get_team(team_id)
            for user_id in team.get("member_ids") or []:
                if await self.get_member(user_id) is not None:
                    await self.store.update(MEMBERS, user_id, {"team_ids": ArrayRemove(team_id)})
            await self.store.delete(TEAMS, team_id)

    async def assign_team(self, team_id: str, user_id: str) -> Dict[str, Any]:
        async with self.store.transaction():
            await self.get_team(team_id)
            await self.require_member(user_id)
            team = await self.store.update(TEAMS, team_id, {"member_ids": ArrayUnion(user_id)})
            await self.store.update(MEMBERS, user_id, {"team_ids": ArrayUnion(team_id)})
        return team

    async def unassign_team(self, team_id: str, user_id: str) -> Dict[str, Any]:
        async with self.store.transaction():
            await self.get_team(team_id)
            team = await self.store.update(TEAMS, team_id, {"member_ids": ArrayRemove(user_id)})
            if await self.get_member(user_id) is not None:
                await self.store.update(MEMBERS, user_id, {"team_ids": ArrayRemove(team_id)})
        return team
