from __future__ import annotations

import logging
from typing import List

from campus_escrow.core.errors import ForbiddenError, InvalidStateError
from campus_escrow.core.money import new_id
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.enums import TeamMemberRole, UserRole
from campus_escrow.models.team import Team, TeamMember
from campus_escrow.policies.escrow_policies import require_user, team_role

logger = logging.getLogger(__name__)


class TeamService:
    """
    Teams are opaque payees for the escrow core: a team wallet receives
    releases as a whole and intra-team distribution happens elsewhere.
    """

    def create_team(self, store: Store, *, owner_id: str, name: str) -> Team:
        if not name or not name.strip():
            raise InvalidStateError("Team name is required.")

        def _op(tx: StoreTx) -> Team:
            owner = require_user(tx, owner_id)
            if owner.role != UserRole.student.value:
                raise ForbiddenError("Only students may create teams.")
            team_id = new_id()
            team = tx.set(
                "teams",
                team_id,
                {
                    "owner_user_id": owner_id,
                    "name": name.strip(),
                    "team_wallet_balance": 0,
                    "opening_balance": 0,
                    "created_at": tx.server_timestamp(),
                },
            )
            # the owner is always a lead member
            tx.set(
                "team_members",
                new_id(),
                {"team_id": team_id, "user_id": owner_id, "role": TeamMemberRole.lead.value, "created_at": tx.server_timestamp()},
            )
            return team

        return store.run(_op, op="teams.create")

    def add_member(
        self,
        store: Store,
        *,
        team_id: str,
        actor_id: str,
        user_id: str,
        role: TeamMemberRole = TeamMemberRole.member,
    ) -> TeamMember:
        def _op(tx: StoreTx) -> TeamMember:
            tx.require("teams", team_id, label="Team")
            if team_role(tx, team_id, actor_id) != TeamMemberRole.lead.value:
                raise ForbiddenError("Only team leads may add members.")
            user = require_user(tx, user_id)
            if user.role != UserRole.student.value:
                raise InvalidStateError("Only students can join teams.")
            if team_role(tx, team_id, user_id) is not None:
                raise InvalidStateError("User is already a member of this team.")
            return tx.set(
                "team_members",
                new_id(),
                {
                    "team_id": team_id,
                    "user_id": user_id,
                    "role": TeamMemberRole(role).value,
                    "created_at": tx.server_timestamp(),
                },
            )

        member = store.run(_op, op="teams.add_member")
        logger.info("[teams] team=%s added user=%s role=%s", team_id, user_id, member.role)
        return member

    def is_member(self, store: Store, *, team_id: str, user_id: str) -> bool:
        with store.read() as tx:
            return team_role(tx, team_id, user_id) is not None

    def get_team(self, store: Store, team_id: str) -> Team:
        with store.read() as tx:
            return tx.require("teams", team_id, label="Team")

    def list_members(self, store: Store, team_id: str) -> List[TeamMember]:
        with store.read() as tx:
            tx.require("teams", team_id, label="Team")
            return tx.query("team_members", team_id=team_id, order_by="created_at")
