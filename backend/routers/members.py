# routers/members.py — Org membership, roles, teams and the org chart
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import (
    CurrentUser, TokenIdentity, get_current_user, get_token_identity,
    require_admin, require_permission,
)
from document_store import DocumentStore, get_document_store
from members import MemberRepository
from models import MemberRole
from org_chart import build_org_tree, find_manager_cycles
from workspace import log_action

router = APIRouter(tags=["Members"])


# --- Schemas ---

class JoinRequest(BaseModel):
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class MemberUpdate(BaseModel):
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    title: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    manager_id: Optional[str] = None


class RoleUpdate(BaseModel):
    role: str = Field(..., description="One of: owner, admin, manager, member, guest, readonly")


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=80)
    description: str = ""
    lead_id: Optional[str] = None
    color: Optional[str] = None


class TeamUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    lead_id: Optional[str] = None
    color: Optional[str] = None


class TeamMemberRef(BaseModel):
    user_id: str


# --- Members ---

@router.post("/api/v1/members/join")
async def join_organisation(
    body: JoinRequest,
    identity: TokenIdentity = Depends(get_token_identity),
    store: DocumentStore = Depends(get_document_store),
):
    """Create the caller's membership on first sign-in; the first member becomes owner"""
    return await MemberRepository(store).ensure_member(
        identity.id,
        display_name=body.display_name or identity.display_name,
        email=identity.email,
        photo_url=body.photo_url or identity.photo_url,
    )


@router.get("/api/v1/members/me")
async def get_me(
    user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
):
    member = await MemberRepository(store).require_member(user.id)
    member["permissions"] = user.permissions
    return member


@router.get("/api/v1/members")
async def list_members(
    active_only: bool = True,
    user: CurrentUser = Depends(require_permission("members:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await MemberRepository(store).list_members(active_only=active_only)


@router.get("/api/v1/members/{member_id}")
async def get_member(
    member_id: str,
    user: CurrentUser = Depends(require_permission("members:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await MemberRepository(store).require_member(member_id)


@router.patch("/api/v1/members/{member_id}")
async def update_member(
    member_id: str,
    body: MemberUpdate,
    user: CurrentUser = Depends(get_current_user),
    store: DocumentStore = Depends(get_document_store),
):
    """Members edit their own profile; reporting lines and other people need members:manage"""
    patch = body.model_dump(exclude_unset=True)
    can_manage = user.has_permission("members:manage")
    if member_id != user.id and not can_manage:
        raise HTTPException(status_code=403, detail="Missing required permission: members:manage")
    if "manager_id" in patch and not can_manage:
        raise HTTPException(status_code=403, detail="Only admins can change reporting lines")

    member = await MemberRepository(store).update_member(member_id, patch)
    if member_id != user.id:
        detail = f"{member.get('title', '')} / {member.get('department', '')}"
        await log_action(store, "updated", "org-chart", detail, user.id, user.display_name)
    return member


@router.patch("/api/v1/members/{member_id}/role")
async def change_role(
    member_id: str,
    body: RoleUpdate,
    user: CurrentUser = Depends(require_permission("members:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = MemberRepository(store)
    target = await repo.require_member(member_id)
    touches_owner = MemberRole.OWNER.value in (body.role, target.get("role"))
    if touches_owner and user.role != MemberRole.OWNER.value:
        raise HTTPException(status_code=403, detail="Only an owner can grant or revoke ownership")

    member = await repo.set_role(member_id, body.role)
    await log_action(store, "role_changed", "member", body.role, user.id, user.display_name)
    return {"member_id": member_id, "old_role": target.get("role"), "new_role": member["role"]}


@router.delete("/api/v1/members/{member_id}")
async def deactivate_member(
    member_id: str,
    user: CurrentUser = Depends(require_admin),
    store: DocumentStore = Depends(get_document_store),
):
    if member_id == user.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate yourself")
    member = await MemberRepository(store).deactivate_member(member_id)
    await log_action(store, "deactivated", "member", member.get("display_name", ""), user.id, user.display_name)
    return member


# --- Teams ---

@router.get("/api/v1/teams")
async def list_teams(
    user: CurrentUser = Depends(require_permission("members:read")),
    store: DocumentStore = Depends(get_document_store),
):
    return await MemberRepository(store).list_teams()


@router.post("/api/v1/teams", status_code=201)
async def create_team(
    body: TeamCreate,
    user: CurrentUser = Depends(require_permission("teams:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    data = body.model_dump()
    data["created_by"] = user.id
    team = await MemberRepository(store).create_team(data)
    await log_action(store, "created", "team", team["name"], user.id, user.display_name)
    return team


@router.patch("/api/v1/teams/{team_id}")
async def update_team(
    team_id: str,
    body: TeamUpdate,
    user: CurrentUser = Depends(require_permission("teams:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    return await MemberRepository(store).update_team(team_id, body.model_dump(exclude_unset=True))


@router.delete("/api/v1/teams/{team_id}")
async def delete_team(
    team_id: str,
    user: CurrentUser = Depends(require_permission("teams:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    repo = MemberRepository(store)
    team = await repo.get_team(team_id)
    await repo.delete_team(team_id)
    await log_action(store, "deleted", "team", team["name"], user.id, user.display_name)
    return {"deleted": True, "team_id": team_id}


@router.post("/api/v1/teams/{team_id}/members")
async def assign_team_member(
    team_id: str,
    body: TeamMemberRef,
    user: CurrentUser = Depends(require_permission("teams:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    return await MemberRepository(store).assign_team(team_id, body.user_id)


@router.delete("/api/v1/teams/{team_id}/members/{member_id}")
async def unassign_team_member(
    team_id: str,
    member_id: str,
    user: CurrentUser = Depends(require_permission("teams:manage")),
    store: DocumentStore = Depends(get_document_store),
):
    return await MemberRepository(store).unassign_team(team_id, member_id)


# --- Org chart ---

@router.get("/api/v1/org-chart")
async def get_org_chart(
    user: CurrentUser = Depends(require_permission("members:read")),
    store: DocumentStore = Depends(get_document_store),
):
    """Reporting forest of active members; members on a manager cycle are returned as roots"""
    members = await MemberRepository(store).list_members(active_only=True)
    roots = build_org_tree(members)
    return {
        "total": len(members),
        "roots": [node.to_dict() for node in roots],
        "cycles": sorted(find_manager_cycles(members)),
    }
