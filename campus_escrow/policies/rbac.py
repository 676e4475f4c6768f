#campus_escrow/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Set

from campus_escrow.core.errors import ForbiddenError
from campus_escrow.models.enums import UserRole


@dataclass(frozen=True)
class Principal:
    actor_id: str
    role: UserRole
    display_name: str = "Unknown"


# --- Core action constants ---
ACTION_CREATE_PROJECT = "CREATE_PROJECT"
ACTION_DEPOSIT = "DEPOSIT"
ACTION_SUBMIT_BID = "SUBMIT_BID"
ACTION_CREATE_TEAM = "CREATE_TEAM"
ACTION_RESOLVE_DISPUTE = "RESOLVE_DISPUTE"
ACTION_ADMIN_REFUND = "ADMIN_REFUND"
ACTION_LIFT_QUARANTINE = "LIFT_QUARANTINE"
ACTION_RECONCILE = "RECONCILE"
ACTION_REVERSE_TRANSACTION = "REVERSE_TRANSACTION"


def allowed_actions(role: UserRole) -> Set[str]:
    """
    Pure RBAC: which actions a role may attempt.
    Ownership (whose project, whose bid) is checked by the services.
    """

    if role == UserRole.client:
        return {ACTION_CREATE_PROJECT, ACTION_DEPOSIT}

    if role == UserRole.student:
        return {ACTION_SUBMIT_BID, ACTION_CREATE_TEAM}

    if role == UserRole.admin:
        return {
            ACTION_RESOLVE_DISPUTE,
            ACTION_ADMIN_REFUND,
            ACTION_LIFT_QUARANTINE,
            ACTION_RECONCILE,
            ACTION_REVERSE_TRANSACTION,
        }

    return set()


def require_action(principal: Principal, action: str) -> None:
    if action not in allowed_actions(principal.role):
        raise ForbiddenError(
            f"Role {principal.role.value} not permitted for action {action}."
        )
