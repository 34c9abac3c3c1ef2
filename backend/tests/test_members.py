# tests/test_members.py — Membership, roles, reporting lines, teams and org chart
import uuid

import pytest
from fastapi import HTTPException

from members import MemberRepository, MEMBERS
from models import MemberRole
from tests.conftest import get_auth_headers, make_member


def identity(name="New Person"):
    return {"id": str(uuid.uuid4()), "email": "new@solis.test", "display_name": name}


# ============================================================
# JOIN / SESSION
# ============================================================

@pytest.mark.asyncio
async def test_first_member_becomes_owner(client):
    first, second = identity("First"), identity("Second")
    r1 = await client.post("/api/v1/members/join", json={}, headers=get_auth_headers(first))
    r2 = await client.post("/api/v1/members/join", json={}, headers=get_auth_headers(second))
    assert r1.status_code == 200
    assert r1.json()["role"] == "owner"
    assert r2.json()["role"] == "member"
    assert r2.json()["display_name"] == "Second"


@pytest.mark.asyncio
async def test_simultaneous_first_joins_yield_one_owner(store, monkeypatch):
    """Both joiners see an empty org; only the one that claims ownership becomes owner"""
    async def empty_org(path, where=None):
        return 0

    monkeypatch.setattr(store, "count", empty_org)
    repo = MemberRepository(store)
    alice = await repo.ensure_member("alice", "Alice")
    bob = await repo.ensure_member("bob", "Bob")

    assert alice["role"] == MemberRole.OWNER.value
    assert bob["role"] == MemberRole.MEMBER.value
    members = await store.query(MEMBERS)
    assert [m["role"] for m in members].count(MemberRole.OWNER.value) == 1


@pytest.mark.asyncio
async def test_join_is_idempotent(client, owner):
    person = identity()
    await client.post("/api/v1/members/join", json={"display_name": "Nia"}, headers=get_auth_headers(person))
    again = await client.post("/api/v1/members/join", json={"display_name": "Other"}, headers=get_auth_headers(person))
    assert again.json()["display_name"] == "Nia"


@pytest.mark.asyncio
async def test_non_member_is_forbidden(client, owner):
    response = await client.get("/api/v1/members", headers=get_auth_headers(identity()))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_missing_token(client):
    response = await client.get("/api/v1/members")
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_me_includes_permissions(client, member_user):
    response = await client.get("/api/v1/members/me", headers=get_auth_headers(member_user))
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == member_user["id"]
    assert "channels:write" in data["permissions"]
    assert "members:manage" not in data["permissions"]


@pytest.mark.asyncio
async def test_list_members_sorted_by_name(client, owner, member_user, admin_member):
    response = await client.get("/api/v1/members", headers=get_auth_headers(member_user))
    names = [m["display_name"] for m in response.json()]
    assert names == sorted(names)
    assert len(names) == 3


# ============================================================
# PROFILE & REPORTING LINES
# ============================================================

@pytest.mark.asyncio
async def test_member_edits_own_profile(client, member_user, other_member):
    headers = get_auth_headers(member_user)
    response = await client.patch(f"/api/v1/members/{member_user['id']}", json={"title": "Designer"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["title"] == "Designer"

    response = await client.patch(f"/api/v1/members/{other_member['id']}", json={"title": "Intern"}, headers=headers)
    assert response.status_code == 403

    response = await client.patch(f"/api/v1/members/{member_user['id']}", json={"manager_id": other_member["id"]}, headers=headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_sets_reporting_line_and_cycle_is_rejected(client, admin_member, member_user, other_member):
    headers = get_auth_headers(admin_member)
    r = await client.patch(f"/api/v1/members/{other_member['id']}", json={"manager_id": member_user["id"]}, headers=headers)
    assert r.status_code == 200
    assert r.json()["manager_id"] == member_user["id"]

    r = await client.patch(f"/api/v1/members/{member_user['id']}", json={"manager_id": other_member["id"]}, headers=headers)
    assert r.status_code == 400

    r = await client.patch(f"/api/v1/members/{member_user['id']}", json={"manager_id": member_user["id"]}, headers=headers)
    assert r.status_code == 400

    r = await client.patch(f"/api/v1/members/{other_member['id']}", json={"manager_id": None}, headers=headers)
    assert r.json()["manager_id"] is None


@pytest.mark.asyncio
async def test_unknown_manager_rejected(store, member_user):
    with pytest.raises(HTTPException) as exc:
        await MemberRepository(store).update_member(member_user["id"], {"manager_id": "ghost"})
    assert exc.value.status_code == 400


# ============================================================
# ROLES
# ============================================================

@pytest.mark.asyncio
async def test_admin_changes_role(client, admin_member, member_user):
    response = await client.patch(
        f"/api/v1/members/{member_user['id']}/role", json={"role": "manager"}, headers=get_auth_headers(admin_member),
    )
    assert response.status_code == 200
    assert response.json() == {"member_id": member_user["id"], "old_role": "member", "new_role": "manager"}


@pytest.mark.asyncio
async def test_only_owner_grants_ownership(client, owner, admin_member, member_user):
    response = await client.patch(
        f"/api/v1/members/{member_user['id']}/role", json={"role": "owner"}, headers=get_auth_headers(admin_member),
    )
    assert response.status_code == 403

    response = await client.patch(
        f"/api/v1/members/{member_user['id']}/role", json={"role": "owner"}, headers=get_auth_headers(owner),
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_invalid_role(client, owner, member_user):
    response = await client.patch(
        f"/api/v1/members/{member_user['id']}/role", json={"role": "emperor"}, headers=get_auth_headers(owner),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_last_owner_cannot_step_down(store, owner):
    with pytest.raises(HTTPException) as exc:
        await MemberRepository(store).set_role(owner["id"], "admin")
    assert exc.value.status_code == 400

    second = await make_member(store, "Second Owner", MemberRole.OWNER)
    demoted = await MemberRepository(store).set_role(owner["id"], "admin")
    assert demoted["role"] == "admin"
    assert second["role"] == "owner"


@pytest.mark.asyncio
async def test_member_cannot_change_roles(client, member_user, other_member):
    response = await client.patch(
        f"/api/v1/members/{other_member['id']}/role", json={"role": "admin"}, headers=get_auth_headers(member_user),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_deactivated_member_loses_access(client, admin_member, member_user):
    response = await client.delete(f"/api/v1/members/{member_user['id']}", headers=get_auth_headers(admin_member))
    assert response.status_code == 200
    assert response.json()["active"] is False

    response = await client.get("/api/v1/channels", headers=get_auth_headers(member_user))
    assert response.status_code == 403

    listing = await client.get("/api/v1/members", headers=get_auth_headers(admin_member))
    assert member_user["id"] not in [m["id"] for m in listing.json()]


@pytest.mark.asyncio
async def test_owner_cannot_be_deactivated(client, owner, admin_member):
    response = await client.delete(f"/api/v1/members/{owner['id']}", headers=get_auth_headers(admin_member))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_rejoin_reactivates(store, member_user):
    repo = MemberRepository(store)
    await repo.deactivate_member(member_user["id"])
    member = await repo.ensure_member(member_user["id"], "Maria Member")
    assert member["active"] is True
    assert member["role"] == "member"


# ============================================================
# TEAMS
# ============================================================

@pytest.mark.asyncio
async def test_team_lifecycle(client, admin_member, member_user):
    headers = get_auth_headers(admin_member)
    created = await client.post("/api/v1/teams", json={"name": "Platform", "color": "#0af"}, headers=headers)
    assert created.status_code == 201
    team_id = created.json()["id"]

    assigned = await client.post(f"/api/v1/teams/{team_id}/members", json={"user_id": member_user["id"]}, headers=headers)
    assert assigned.json()["member_ids"] == [member_user["id"]]
    member = (await client.get(f"/api/v1/members/{member_user['id']}", headers=headers)).json()
    assert member["team_ids"] == [team_id]

    renamed = await client.patch(f"/api/v1/teams/{team_id}", json={"name": "Core Platform"}, headers=headers)
    assert renamed.json()["name"] == "Core Platform"

    deleted = await client.delete(f"/api/v1/teams/{team_id}", headers=headers)
    assert deleted.json() == {"deleted": True, "team_id": team_id}
    member = (await client.get(f"/api/v1/members/{member_user['id']}", headers=headers)).json()
    assert member["team_ids"] == []


@pytest.mark.asyncio
async def test_unassign_team(store, member_user):
    repo = MemberRepository(store)
    team = await repo.create_team({"name": "Design"})
    await repo.assign_team(team["id"], member_user["id"])
    team = await repo.unassign_team(team["id"], member_user["id"])
    assert team["member_ids"] == []
    assert (await repo.get_member(member_user["id"]))["team_ids"] == []


@pytest.mark.asyncio
async def test_member_cannot_create_team(client, member_user):
    response = await client.post("/api/v1/teams", json={"name": "Rogue"}, headers=get_auth_headers(member_user))
    assert response.status_code == 403


# ============================================================
# ORG CHART
# ============================================================

@pytest.mark.asyncio
async def test_org_chart_endpoint(client, store, owner, member_user):
    report = await make_member(store, "Rene Report", MemberRole.MEMBER, manager_id=member_user["id"])
    await store.update(MEMBERS, member_user["id"], {"manager_id": owner["id"]})

    response = await client.get("/api/v1/org-chart", headers=get_auth_headers(member_user))
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["cycles"] == []
    assert [r["id"] for r in data["roots"]] == [owner["id"]]
    middle = data["roots"][0]["children"][0]
    assert middle["id"] == member_user["id"]
    assert middle["children"][0]["id"] == report["id"]


@pytest.mark.asyncio
async def test_org_chart_survives_stored_cycle(client, store, owner, member_user, other_member):
    # Written directly, as an import or older client might have done
    await store.update(MEMBERS, member_user["id"], {"manager_id": other_member["id"]})
    await store.update(MEMBERS, other_member["id"], {"manager_id": member_user["id"]})

    data = (await client.get("/api/v1/org-chart", headers=get_auth_headers(owner))).json()
    assert sorted(data["cycles"]) == sorted([member_user["id"], other_member["id"]])
    assert len(data["roots"]) == 3
