# campus_escrow/policies/escrow_policies.py
from __future__ import annotations

from typing import Iterable, Optional

from campus_escrow.core.errors import ForbiddenError
from campus_escrow.core.types import Party, PartyKind
from campus_escrow.db.store import StoreTx
from campus_escrow.models.enums import TeamMemberRole, UserRole
from campus_escrow.models.project import Project
from campus_escrow.models.user import User


def team_role(tx: StoreTx, team_id: str, user_id: str) -> Optional[str]:
    for m in tx.query("team_members", team_id=team_id, user_id=user_id):
        return m.role
    return None


def is_party_member(tx: StoreTx, party: Party, user_id: str, *, roles: Optional[Iterable[str]] = None) -> bool:
    """
    A user party is matched by id; a team party by membership (optionally
    restricted to the given member roles).
    """
    if party.kind == PartyKind.user:
        return party.id == user_id
    role = team_role(tx, party.id, user_id)
    if role is None:
        return False
    return roles is None or role in set(roles)


def require_user(tx: StoreTx, actor_id: str) -> User:
    return tx.require("users", actor_id, label="User")


def require_admin(tx: StoreTx, actor_id: str) -> User:
    user = require_user(tx, actor_id)
    if user.role != UserRole.admin.value:
        raise ForbiddenError("Admin role required.")
    return user


def require_project_client(project: Project, actor_id: str) -> None:
    if project.client_id != actor_id:
        raise ForbiddenError("Only the project client may perform this action.")


def require_assignee(tx: StoreTx, assignee: Optional[Party], actor_id: str) -> None:
    if assignee is None or not is_party_member(tx, assignee, actor_id):
        raise ForbiddenError("Only the assignee may perform this action.")


def require_proposer_manager(tx: StoreTx, proposer: Party, actor_id: str) -> None:
    """Withdrawing a team bid is reserved for the team's leads."""
    if not is_party_member(tx, proposer, actor_id, roles=[TeamMemberRole.lead.value]):
        raise ForbiddenError("Only the proposer may manage this bid.")


def require_contract_party(tx: StoreTx, project: Project, actor_id: str) -> str:
    """Client or assignee; returns which side the actor is on."""
    if project.client_id == actor_id:
        return "client"
    if project.assignee is not None and is_party_member(tx, project.assignee, actor_id):
        return "assignee"
    raise ForbiddenError("Only the contract parties may perform this action.")
