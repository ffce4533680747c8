"""Invitee-facing invitation endpoints.

``GET /invitations/{token}`` is public so an invitee can preview the
invitation before signing in; accept and decline require a bearer token
whose email matches the invited address.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter

from tenantry_api.dependencies import ClaimsDep, SessionDep, SettingsDep
from tenantry_api.schemas import (
    InvitationAcceptedResponse,
    InvitationDetailsResponse,
    InvitationStatusResponse,
)
from tenantry_api.services.invitation_service import InvitationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.get("/{token}", response_model=InvitationDetailsResponse)
async def get_invitation(token: str, session: SessionDep) -> dict[str, Any]:
    """Return team name, invited email, role, effective status and expiry."""
    service = InvitationService(session)
    return await service.get_invitation_details(token)


@router.post("/{token}/accept", response_model=InvitationAcceptedResponse)
async def accept_invitation(
    token: str,
    session: SessionDep,
    settings: SettingsDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """Join the team with the role offered by the invitation."""
    service = InvitationService(session, ttl=timedelta(days=settings.invitation_ttl_days))
    return await service.accept_invitation(token, user_id=claims.sub, email=claims.email)


@router.post("/{token}/decline", response_model=InvitationStatusResponse)
async def decline_invitation(
    token: str,
    session: SessionDep,
    settings: SettingsDep,
    claims: ClaimsDep,
) -> dict[str, Any]:
    """Decline the invitation.  No membership is created."""
    service = InvitationService(session, ttl=timedelta(days=settings.invitation_ttl_days))
    return await service.decline_invitation(token, user_id=claims.sub, email=claims.email)
