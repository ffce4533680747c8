"""Team creation and membership management.

A team and its owner membership are written in one transaction, so a team
never exists without exactly one owner.  The owner membership can be
neither removed nor re-roled through this service.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from tenantry_core.errors import ForbiddenError, NotFoundError
from tenantry_core.models.team import TeamRole, can_manage_team, parse_assignable_role
from tenantry_core.state.repository import MembershipRepository, TeamRepository, UserRepository

logger = logging.getLogger(__name__)


class TeamService:
    """Team and membership operations.

    Parameters
    ----------
    session:
        Request-scoped session.  The caller owns commit and rollback.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._users = UserRepository(session)
        self._teams = TeamRepository(session)
        self._memberships = MembershipRepository(session)

    async def _require_manager(self, team_id: str, requestor_id: str) -> None:
        if await self._teams.get(team_id) is None:
            raise NotFoundError("Team not found")
        role = await self._memberships.get_role(requestor_id, team_id)
        if not can_manage_team(role):
            raise ForbiddenError("Only team owners and admins can manage members")

    async def create_team_with_owner(self, *, owner_id: str, owner_email: str, name: str) -> dict[str, Any]:
        """Create a team and make *owner_id* its owner."""
        name = name.strip()
        if not name:
            raise ValueError("Team name must not be empty")

        await self._users.ensure(owner_id, owner_email)
        team = await self._teams.create(name, owner_id)
        membership = await self._memberships.create(owner_id, team.id, TeamRole.OWNER)

        logger.info("Team %s created by %s", team.id, owner_id)
        return {
            "id": team.id,
            "name": team.name,
            "owner_id": owner_id,
            "role": membership.role,
        }

    async def remove_member(self, team_id: str, *, requestor_id: str, member_id: str) -> dict[str, Any]:
        """Remove *member_id* from *team_id*.

        Raises
        ------
        ForbiddenError
            If the requestor is not an owner or admin.
        ValueError
            If the target is the team owner or the requestor themselves.
        NotFoundError
            If the team is unknown or the target is not a member.
        """
        await self._require_manager(team_id, requestor_id)
        if member_id == requestor_id:
            raise ValueError("Cannot remove yourself from the team")

        target_role = await self._memberships.get_role(member_id, team_id)
        if target_role is None:
            raise NotFoundError("Member not found")
        if target_role == TeamRole.OWNER.value:
            raise ValueError("The team owner cannot be removed")

        await self._memberships.delete(member_id, team_id)
        logger.info("Member %s removed from team %s by %s", member_id, team_id, requestor_id)
        return {"team_id": team_id, "user_id": member_id, "removed": True}

    async def update_member_role(
        self,
        team_id: str,
        *,
        requestor_id: str,
        member_id: str,
        role: str,
    ) -> dict[str, Any]:
        """Change the role of *member_id* to ``admin`` or ``member``."""
        new_role = parse_assignable_role(role)
        await self._require_manager(team_id, requestor_id)

        current = await self._memberships.get_role(member_id, team_id)
        if current is None:
            raise NotFoundError("Member not found")
        if current == TeamRole.OWNER.value:
            raise ValueError("The team owner's role cannot be changed")

        await self._memberships.update_role(member_id, team_id, new_role)
        logger.info(
            "Member %s in team %s changed from %s to %s by %s",
            member_id,
            team_id,
            current,
            new_role.value,
            requestor_id,
        )
        return {"team_id": team_id, "user_id": member_id, "role": new_role.value}
