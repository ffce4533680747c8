"""Team endpoints: create teams, manage invitations and members.

Authorisation (owner/admin) is enforced by the services against the
caller's membership, so every route only needs the authenticated claims.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, status

from tenantry_api.dependencies import ClaimsDep, SessionDep, SettingsDep
from tenantry_api.schemas import (
    CreatedInvitationResponse,
    CreateInvitationRequest,
    CreateTeamRequest,
    InvitationListResponse,
    InvitationStatusResponse,
    MemberRemovedResponse,
    MemberRoleResponse,
    TeamResponse,
    UpdateMemberRoleRequest,
)
from tenantry_api.services.invitation_service import InvitationService
from tenantry_api.services.team_service import TeamService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/teams", tags=["teams"])


def _invitation_service(session: SessionDep, settings: SettingsDep) -> InvitationService:
    return InvitationService(session, ttl=timedelta(days=settings.invitation_ttl_days))


@router.post("", response_model=TeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    body: CreateTeamRequest,
    session: SessionDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """Create a team owned by the caller."""
    service = TeamService(session)
    return await service.create_team_with_owner(owner_id=claims.sub, owner_email=claims.email, name=body.name)


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@router.post(
    "/{team_id}/invitations",
    response_model=CreatedInvitationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_invitation(
    team_id: str,
    body: CreateInvitationRequest,
    session: SessionDep,
    settings: SettingsDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """Invite an email address to the team.  Requires owner or admin."""
    service = _invitation_service(session, settings)
    return await service.create_invitation(
        team_id=team_id,
        inviter_id=claims.sub,
        email=body.email,
        role=body.role,
    )


@router.get("/{team_id}/invitations", response_model=InvitationListResponse)
async def list_invitations(
    team_id: str,
    session: SessionDep,
    settings: SettingsDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """List pending, unexpired invitations.  Requires owner or admin."""
    service = _invitation_service(session, settings)
    invitations = await service.list_pending_invitations(team_id, requestor_id=claims.sub)
    return {"invitations": invitations, "total": len(invitations)}


@router.delete("/{team_id}/invitations/{invitation_id}", response_model=InvitationStatusResponse)
async def cancel_invitation(
    team_id: str,
    invitation_id: str,
    session: SessionDep,
    settings: SettingsDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """Cancel a pending invitation.  Requires owner or admin."""
    service = _invitation_service(session, settings)
    return await service.cancel_invitation(team_id, invitation_id, requestor_id=claims.sub)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.delete("/{team_id}/members/{user_id}", response_model=MemberRemovedResponse)
async def remove_member(
    team_id: str,
    user_id: str,
    session: SessionDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """Remove a member.  The owner cannot be removed."""
    service = TeamService(session)
    return await service.remove_member(team_id, requestor_id=claims.sub, member_id=user_id)


@router.patch("/{team_id}/members/{user_id}", response_model=MemberRoleResponse)
async def update_member_role(
    team_id: str,
    user_id: str,
    body: UpdateMemberRoleRequest,
    session: SessionDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """Change a member's role to admin or member."""
    service = TeamService(session)
    return await service.update_member_role(team_id, requestor_id=claims.sub, member_id=user_id, role=body.role)
