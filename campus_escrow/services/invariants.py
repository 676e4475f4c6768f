# campus_escrow/services/invariants.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from campus_escrow.core.errors import (
    ForbiddenError,
    InvalidStateError,
    InvariantViolationError,
    QuarantinedError,
)
from campus_escrow.core.money import PERCENT_SCALE
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.bid import Bid
from campus_escrow.models.contract import Contract
from campus_escrow.models.enums import (
    BidStatus,
    CONTRACTED_PROJECT_STATUSES,
    MilestoneStatus,
    ProjectStatus,
    UserRole,
)
from campus_escrow.models.milestone import Milestone
from campus_escrow.models.project import Project
from campus_escrow.services.audit_service import AuditAction, AuditService

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# GUARDS
# ─────────────────────────────────────────────

def ensure_not_quarantined(project: Project) -> None:
    if project.quarantined:
        raise QuarantinedError(
            "Project is quarantined pending manual inspection; writes are refused.",
            details={"project_id": project.id},
        )


# ─────────────────────────────────────────────
# POST-CONDITIONS
# ─────────────────────────────────────────────

def _violation(project: Project, message: str, **details: Any) -> InvariantViolationError:
    return InvariantViolationError(message, project_id=project.id, details={"project_id": project.id, **details})


def check_milestones(project: Project, contract: Contract, milestones: List[Milestone]) -> None:
    if milestones:
        pct_total = sum(m.percentage_bp for m in milestones)
        if pct_total != PERCENT_SCALE:
            raise _violation(project, "Milestone percentages do not sum to 100.", percentage_bp=pct_total)
        share_total = sum(m.share for m in milestones)
        if share_total != contract.total_amount:
            raise _violation(
                project,
                "Milestone shares do not sum to the contract total.",
                shares=share_total,
                total_amount=contract.total_amount,
            )
        orders = sorted(m.order for m in milestones)
        if orders != list(range(1, len(milestones) + 1)):
            raise _violation(project, "Milestone order is not dense.", orders=orders)

    for m in milestones:
        if m.released_to_date < 0 or m.released_to_date > m.share:
            raise _violation(
                project,
                "Released amount exceeds milestone share.",
                milestone_id=m.id,
                released_to_date=m.released_to_date,
                share=m.share,
            )
        if m.status == MilestoneStatus.released.value:
            if m.released_amount != m.share or m.released_to_date != m.share:
                raise _violation(
                    project,
                    "Released milestone amount differs from its share.",
                    milestone_id=m.id,
                    released_amount=m.released_amount,
                    share=m.share,
                )
        elif m.released_amount is not None:
            raise _violation(project, "released_amount set on unreleased milestone.", milestone_id=m.id)


def check_project(
    tx: StoreTx,
    project: Project,
    *,
    contract: Optional[Contract] = None,
    milestones: Optional[List[Milestone]] = None,
    accepted_bids: Optional[List[Bid]] = None,
) -> None:
    """
    Verify the project-level post-conditions before commit. Any failure is a
    bug in the core: the caller's Tx is rolled back and the project quarantined.
    """
    if project.escrow_balance is None or project.escrow_balance < 0:
        raise _violation(project, "Escrow balance is negative.", escrow_balance=project.escrow_balance)

    if project.status in CONTRACTED_PROJECT_STATUSES and not project.accepted_bid_id:
        raise _violation(project, "Contracted project has no accepted bid.", status=project.status)
    if project.accepted_bid_id and project.status in (ProjectStatus.draft.value, ProjectStatus.open.value):
        raise _violation(project, "Open project carries an accepted bid.", status=project.status)

    if accepted_bids is not None and len(accepted_bids) > 1:
        raise _violation(project, "More than one accepted bid.", bids=[b.id for b in accepted_bids])

    if contract is not None and milestones is not None:
        check_milestones(project, contract, milestones)


# ─────────────────────────────────────────────
# QUARANTINE
# ─────────────────────────────────────────────

def quarantine_project(tx: StoreTx, project_id: str, *, reason: str, details: Optional[Dict[str, Any]] = None) -> None:
    project = tx.get("projects", project_id)
    if project is None:
        return
    tx.update("projects", project_id, {"quarantined": True, "quarantine_reason": reason})
    AuditService().write(
        tx,
        action=AuditAction.INVARIANT_VIOLATION,
        actor_id=None,
        project_id=project_id,
        severity="critical",
        payload_summary={"reason": reason, "details": details or {}},
    )
    logger.critical("[invariants] project=%s quarantined: %s", project_id, reason)


def lift_quarantine(store: Store, *, project_id: str, admin_id: str, note: str) -> Project:
    if not note or not note.strip():
        raise InvalidStateError("An inspection note is required to lift a quarantine.")

    def _op(tx: StoreTx) -> Project:
        admin = tx.require("users", admin_id, label="User")
        if admin.role != UserRole.admin.value:
            raise ForbiddenError("Only admins may lift a quarantine.")
        project = tx.require("projects", project_id, label="Project")
        if not project.quarantined:
            raise InvalidStateError("Project is not quarantined.")
        tx.update("projects", project_id, {"quarantined": False, "quarantine_reason": None})
        AuditService().write(
            tx,
            action=AuditAction.QUARANTINE_LIFTED,
            actor_id=admin_id,
            project_id=project_id,
            payload_summary={"note": note.strip()},
        )
        return project

    return store.run(_op, op="lift_quarantine", project_id=project_id)


def accepted_bids_for(tx: StoreTx, project_id: str) -> List[Bid]:
    # filter in memory: unflushed status changes live on the identity-mapped rows
    return [b for b in tx.query("bids", project_id=project_id) if b.status == BidStatus.accepted.value]
