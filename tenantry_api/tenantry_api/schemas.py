"""Shared Pydantic request and response models for API endpoints.

These schemas ensure that endpoint responses are validated and documented
in the OpenAPI specification.  Routers import from here to avoid duplication.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class CreateTeamRequest(BaseModel):
    """Request body for creating a team."""

    name: str = Field(..., min_length=1, max_length=255, description="Display name of the team.")


class TeamResponse(BaseModel):
    """A newly created team and the caller's role in it."""

    id: str
    name: str
    owner_id: str
    role: str


class UpdateMemberRoleRequest(BaseModel):
    """Request body for changing a team member's role."""

    role: str = Field(
        ...,
        pattern="^(admin|member)$",
        description="New role for the team member.",
    )


class MemberRoleResponse(BaseModel):
    team_id: str
    user_id: str
    role: str


class MemberRemovedResponse(BaseModel):
    team_id: str
    user_id: str
    removed: bool


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


class CreateInvitationRequest(BaseModel):
    """Request body for inviting an email address to a team."""

    email: str = Field(..., min_length=3, max_length=320, description="Email address of the invitee.")
    role: str = Field(
        default="member",
        description="Role offered by the invitation (admin or member).",
    )


class InvitationResponse(BaseModel):
    """An invitation as seen by team managers."""

    id: str
    team_id: str
    email: str
    role: str
    status: str
    inviter_id: str
    expires_at: str
    created_at: str | None = None


class CreatedInvitationResponse(InvitationResponse):
    """A newly created invitation, including the token to deliver."""

    token: str


class InvitationListResponse(BaseModel):
    invitations: list[InvitationResponse]
    total: int


class InvitationDetailsResponse(BaseModel):
    """Public preview of an invitation."""

    team_id: str
    team_name: str | None = None
    email: str
    role: str
    status: str
    expires_at: str


class InvitationAcceptedResponse(BaseModel):
    invitation_id: str
    team_id: str
    user_id: str
    role: str
    status: str
    membership_created: bool
    outcome: str


class InvitationStatusResponse(BaseModel):
    """Result of a decline or cancel."""

    invitation_id: str
    team_id: str
    status: str
    outcome: str


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class WebhookResponse(BaseModel):
    status: str = Field(..., description="'processed' or 'ignored'.")


class AddAddonRequest(BaseModel):
    """Request body for attaching an add-on to the active subscription."""

    item_type: str = Field(
        ...,
        pattern="^(reserved_domain|custom_domain)$",
        description="Add-on type.",
    )
    resource_id: str | None = Field(
        default=None,
        max_length=255,
        description="Resource the add-on is billed for (e.g. a domain id).",
    )


class AddonResponse(BaseModel):
    id: str
    item_type: str
    related_resource_id: str | None = None
    stripe_subscription_item_id: str
    quantity: int


class AddonRemovedResponse(BaseModel):
    resource_id: str
    item_type: str
    removed: bool
