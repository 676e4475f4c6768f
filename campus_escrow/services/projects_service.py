#campus_escrow/services/projects_service.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from campus_escrow.core.errors import ForbiddenError, InvalidStateError
from campus_escrow.core.money import PERCENT_SCALE, new_id, parse_percentage
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.enums import BidStatus, ProjectStatus, UserRole
from campus_escrow.models.project import Project
from campus_escrow.policies.escrow_policies import require_project_client, require_user
from campus_escrow.services.escrow_service import EscrowService
from campus_escrow.services.invariants import check_project, ensure_not_quarantined

logger = logging.getLogger(__name__)

PROJECT_CANCELLED_REASON = "project_cancelled"


def normalize_milestone_plan(plan: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """
    [{"title", "percentage", "due_date"?}] -> stored plan with basis points.
    Percentages must sum to exactly 100 unless the plan is empty.
    """
    if not plan:
        return []

    normalized = []
    for item in plan:
        title = (item.get("title") or "").strip()
        if not title:
            raise InvalidStateError("Every milestone needs a title.")
        pct = item.get("percentage_bp")
        bp = int(pct) if pct is not None else parse_percentage(item.get("percentage", 0))
        if bp < 0 or bp > PERCENT_SCALE:
            raise InvalidStateError("Milestone percentage must be within [0, 100].")
        due = item.get("due_date")
        if isinstance(due, date):
            due = due.isoformat()
        normalized.append({"title": title, "percentage_bp": bp, "due_date": due})

    total = sum(m["percentage_bp"] for m in normalized)
    if total != PERCENT_SCALE:
        raise InvalidStateError(
            "Milestone percentages must sum to 100.",
            details={"percentage_bp_total": total},
        )
    return normalized


class ProjectService:
    def __init__(self, escrow: Optional[EscrowService] = None):
        self._escrow = escrow

    @property
    def escrow(self) -> EscrowService:
        if self._escrow is None:
            self._escrow = EscrowService()
        return self._escrow

    def create_project(
        self,
        store: Store,
        *,
        client_id: str,
        title: str,
        description: str = "",
        milestone_plan: Optional[List[Dict[str, Any]]] = None,
    ) -> Project:
        if not title or not title.strip():
            raise InvalidStateError("title is required.")
        plan = normalize_milestone_plan(milestone_plan)

        def _op(tx: StoreTx) -> Project:
            client = require_user(tx, client_id)
            if client.role != UserRole.client.value:
                raise ForbiddenError("Only clients may create projects.")
            return tx.set(
                "projects",
                new_id(),
                {
                    "client_id": client_id,
                    "title": title.strip(),
                    "description": description or "",
                    "status": ProjectStatus.draft.value,
                    "milestone_plan": plan,
                    "escrow_balance": 0,
                    "bid_count": 0,
                    "created_at": tx.server_timestamp(),
                },
            )

        project = store.run(_op, op="projects.create")
        logger.info("[projects] created %s client=%s milestones=%d", project.id, client_id, len(plan))
        return project

    def publish_project(self, store: Store, *, project_id: str, actor_id: str) -> Project:
        def _op(tx: StoreTx) -> Project:
            project = tx.require("projects", project_id, label="Project")
            require_project_client(project, actor_id)
            ensure_not_quarantined(project)
            if project.status != ProjectStatus.draft.value:
                raise InvalidStateError(f"Cannot publish a {project.status} project.")
            tx.update("projects", project_id, {"status": ProjectStatus.open.value})
            return project

        return store.run(_op, op="projects.publish", project_id=project_id)

    def cancel_project(self, store: Store, *, project_id: str, actor_id: str) -> Project:
        """
        Withdraw a project that never reached a contract. Pending bids are
        rejected and any escrow already deposited goes back to the client.
        """

        def _op(tx: StoreTx) -> Project:
            project = tx.require("projects", project_id, label="Project")
            require_project_client(project, actor_id)
            ensure_not_quarantined(project)
            if project.status not in (ProjectStatus.draft.value, ProjectStatus.open.value):
                raise InvalidStateError(
                    f"Cannot cancel a {project.status} project; cancel its contract instead."
                )

            for bid in tx.query("bids", project_id=project_id):
                if bid.status != BidStatus.pending.value:
                    continue
                tx.update(
                    "bids",
                    bid.id,
                    {
                        "status": BidStatus.rejected.value,
                        "rejection_reason": PROJECT_CANCELLED_REASON,
                        "decided_by": actor_id,
                        "decided_at": tx.server_timestamp(bid),
                    },
                )

            self.escrow.refund_remaining(tx, project, nonce=f"project_cancel:{project_id}", reason=PROJECT_CANCELLED_REASON)
            tx.update("projects", project_id, {"status": ProjectStatus.cancelled.value})
            check_project(tx, project)
            return project

        return store.run(_op, op="projects.cancel", project_id=project_id)

    def get_project(self, store: Store, project_id: str) -> Project:
        with store.read() as tx:
            return tx.require("projects", project_id, label="Project")

    def list_for_client(self, store: Store, client_id: str) -> List[Project]:
        with store.read() as tx:
            return tx.query("projects", client_id=client_id, order_by="created_at")

    def list_open(self, store: Store) -> List[Project]:
        with store.read() as tx:
            return tx.query("projects", status=ProjectStatus.open.value, order_by="created_at")
