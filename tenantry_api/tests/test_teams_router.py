"""HTTP tests for team, member and manager-side invitation endpoints."""

from __future__ import annotations

import pytest
from conftest import seed_team

from tenantry_core.state.repository import MembershipRepository, UserRepository


async def _add_member(db_session, team_id: str, user_id: str, email: str, role: str = "member") -> None:
    await UserRepository(db_session).ensure(user_id, email)
    await MembershipRepository(db_session).create(user_id, team_id, role)
    await db_session.commit()


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_team_makes_caller_owner(client, auth_headers) -> None:
    resp = await client.post("/api/v1/teams", json={"name": "  Acme  "}, headers=auth_headers("founder-1", "f@ex.com"))

    assert resp.status_code == 201
    body = resp.json()
    assert body["name"] == "Acme"
    assert body["owner_id"] == "founder-1"
    assert body["role"] == "owner"


@pytest.mark.asyncio
async def test_blank_team_name_is_bad_request(client, auth_headers) -> None:
    resp = await client.post("/api/v1/teams", json={"name": "   "}, headers=auth_headers())

    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_request"


# ---------------------------------------------------------------------------
# Invitations (manager side)
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_and_list_invitations(client, auth_headers, db_session) -> None:
    team_id = await seed_team(db_session)

    created = await client.post(
        f"/api/v1/teams/{team_id}/invitations",
        json={"email": "New.Member@Example.com", "role": "admin"},
        headers=auth_headers(),
    )
    listed = await client.get(f"/api/v1/teams/{team_id}/invitations", headers=auth_headers())

    assert created.status_code == 201
    invitation = created.json()
    assert invitation["email"] == "new.member@example.com"
    assert invitation["role"] == "admin"
    assert invitation["status"] == "pending"
    assert invitation["token"]

    assert listed.status_code == 200
    assert listed.json()["total"] == 1
    assert listed.json()["invitations"][0]["id"] == invitation["id"]
    assert "token" not in listed.json()["invitations"][0]


@pytest.mark.asyncio
async def test_duplicate_pending_invitation_is_conflict(client, auth_headers, db_session) -> None:
    team_id = await seed_team(db_session)
    url = f"/api/v1/teams/{team_id}/invitations"

    first = await client.post(url, json={"email": "a@example.com"}, headers=auth_headers())
    second = await client.post(url, json={"email": "A@example.com"}, headers=auth_headers())

    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json()["code"] == "conflict"


@pytest.mark.asyncio
async def test_invitation_permissions_and_validation(client, auth_headers, db_session) -> None:
    team_id = await seed_team(db_session)
    await _add_member(db_session, team_id, "member-1", "member@example.com")
    url = f"/api/v1/teams/{team_id}/invitations"

    by_member = await client.post(url, json={"email": "x@example.com"}, headers=auth_headers("member-1", "member@example.com"))
    by_stranger = await client.get(url, headers=auth_headers("stranger", "s@example.com"))
    owner_role = await client.post(url, json={"email": "x@example.com", "role": "owner"}, headers=auth_headers())
    unknown_team = await client.post(
        "/api/v1/teams/no-such-team/invitations", json={"email": "x@example.com"}, headers=auth_headers()
    )

    assert by_member.status_code == 403
    assert by_member.json()["code"] == "forbidden"
    assert by_stranger.status_code == 403
    assert owner_role.status_code == 400
    assert unknown_team.status_code == 404


@pytest.mark.asyncio
async def test_cancel_invitation_twice_is_idempotent(client, auth_headers, db_session) -> None:
    team_id = await seed_team(db_session)
    created = await client.post(
        f"/api/v1/teams/{team_id}/invitations", json={"email": "a@example.com"}, headers=auth_headers()
    )
    url = f"/api/v1/teams/{team_id}/invitations/{created.json()['id']}"

    first = await client.delete(url, headers=auth_headers())
    second = await client.delete(url, headers=auth_headers())
    missing = await client.delete(f"/api/v1/teams/{team_id}/invitations/nope", headers=auth_headers())

    assert first.status_code == 200
    assert first.json()["status"] == "cancelled"
    assert first.json()["outcome"] == "applied"
    assert second.json()["outcome"] == "already_satisfied"
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_cancel_after_accept_reports_observed_state(client, auth_headers, db_session) -> None:
    team_id = await seed_team(db_session)
    created = await client.post(
        f"/api/v1/teams/{team_id}/invitations", json={"email": "a@example.com"}, headers=auth_headers()
    )
    invitation = created.json()
    await client.post(
        f"/api/v1/invitations/{invitation['token']}/accept", headers=auth_headers("user-a", "a@example.com")
    )

    resp = await client.delete(f"/api/v1/teams/{team_id}/invitations/{invitation['id']}", headers=auth_headers())

    assert resp.status_code == 409
    assert resp.json()["observed_state"] == "accepted"


@pytest.mark.asyncio
async def test_cancel_by_non_manager_does_not_reveal_invitations(client, auth_headers, db_session) -> None:
    team_id = await seed_team(db_session)
    created = await client.post(
        f"/api/v1/teams/{team_id}/invitations", json={"email": "a@example.com"}, headers=auth_headers()
    )
    stranger = auth_headers("stranger", "s@example.com")

    existing = await client.delete(f"/api/v1/teams/{team_id}/invitations/{created.json()['id']}", headers=stranger)
    unknown = await client.delete(f"/api/v1/teams/{team_id}/invitations/nope", headers=stranger)

    assert existing.status_code == 403
    assert unknown.status_code == 403
    assert existing.json() == unknown.json()


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_member_role(client, auth_headers, db_session) -> None:
    team_id = await seed_team(db_session)
    await _add_member(db_session, team_id, "member-1", "member@example.com")
    url = f"/api/v1/teams/{team_id}/members/member-1"

    promoted = await client.patch(url, json={"role": "admin"}, headers=auth_headers())
    to_owner = await client.patch(url, json={"role": "owner"}, headers=auth_headers())
    owner = await client.patch(f"/api/v1/teams/{team_id}/members/owner-1", json={"role": "member"}, headers=auth_headers())

    assert promoted.status_code == 200
    assert promoted.json() == {"team_id": team_id, "user_id": "member-1", "role": "admin"}
    assert to_owner.status_code == 422
    assert owner.status_code == 400


@pytest.mark.asyncio
async def test_remove_member(client, auth_headers, db_session) -> None:
    team_id = await seed_team(db_session)
    await _add_member(db_session, team_id, "admin-1", "admin@example.com", role="admin")
    await _add_member(db_session, team_id, "member-1", "member@example.com")
    admin = auth_headers("admin-1", "admin@example.com")

    removed = await client.delete(f"/api/v1/teams/{team_id}/members/member-1", headers=admin)
    again = await client.delete(f"/api/v1/teams/{team_id}/members/member-1", headers=admin)
    owner = await client.delete(f"/api/v1/teams/{team_id}/members/owner-1", headers=admin)
    self_removal = await client.delete(f"/api/v1/teams/{team_id}/members/admin-1", headers=admin)

    assert removed.status_code == 200
    assert removed.json()["removed"] is True
    assert again.status_code == 404
    assert owner.status_code == 400
    assert self_removal.status_code == 400
