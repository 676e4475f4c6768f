from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from campus_escrow.core.errors import InvalidStateError, NotFoundError
from campus_escrow.core.money import PERCENT_SCALE, new_id, split_shares
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.bid import Bid
from campus_escrow.models.contract import Contract
from campus_escrow.models.enums import ContractStatus, MilestoneStatus, ProjectStatus
from campus_escrow.models.milestone import Milestone
from campus_escrow.models.project import Project
from campus_escrow.policies.escrow_policies import require_contract_party
from campus_escrow.services.audit_service import AuditAction, AuditService
from campus_escrow.services.escrow_service import EscrowService, load_contract, load_milestones
from campus_escrow.services.invariants import check_project, ensure_not_quarantined
from campus_escrow.services.outbox_service import OutboxTopic, enqueue

logger = logging.getLogger(__name__)

IMPLICIT_MILESTONE_TITLE = "Project delivery"


def _parse_due_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidStateError(f"Invalid milestone due date: {value!r}.")


def plan_milestones(milestone_plan: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Normalise a project's milestone plan. An empty plan is one implicit 100%
    milestone covering the whole contract.
    """
    if not milestone_plan:
        return [{"title": IMPLICIT_MILESTONE_TITLE, "percentage_bp": PERCENT_SCALE, "due_date": None}]
    return [
        {
            "title": item["title"],
            "percentage_bp": int(item["percentage_bp"]),
            "due_date": _parse_due_date(item.get("due_date")),
        }
        for item in milestone_plan
    ]


class ContractService:
    def __init__(self, escrow: Optional[EscrowService] = None):
        self._escrow = escrow
        self.audit = AuditService()

    @property
    def escrow(self) -> EscrowService:
        if self._escrow is None:
            self._escrow = EscrowService()
        return self._escrow

    # ─────────────────────────────────────────────
    # CREATION (bid acceptance only)
    # ─────────────────────────────────────────────

    def create_for_bid(self, tx: StoreTx, project: Project, bid: Bid, *, actor_id: str) -> Tuple[Contract, List[Milestone]]:
        """
        Called by BidService.accept inside its transaction. Shares are computed
        here, once, and stored; releases never recompute them.
        """
        if load_contract(tx, project.id) is not None:
            raise InvalidStateError("Project already has a contract.")

        plan = plan_milestones(project.milestone_plan or [])
        shares = split_shares(bid.price, [p["percentage_bp"] for p in plan])

        now = tx.server_timestamp()
        contract_id = new_id()
        contract = tx.set(
            "contracts",
            contract_id,
            {
                "project_id": project.id,
                "accepted_bid_id": bid.id,
                "client_id": project.client_id,
                "assignee_kind": bid.proposer_kind,
                "assignee_id": bid.proposer_id,
                "total_amount": bid.price,
                "status": ContractStatus.active.value,
                "started_at": now,
            },
        )

        milestones = []
        for order, (item, share) in enumerate(zip(plan, shares), start=1):
            milestones.append(
                tx.set(
                    "milestones",
                    new_id(),
                    {
                        "contract_id": contract_id,
                        "project_id": project.id,
                        "order": order,
                        "title": item["title"],
                        "percentage_bp": item["percentage_bp"],
                        "share": share,
                        "due_date": item["due_date"],
                        "status": MilestoneStatus.pending.value,
                    },
                )
            )

        self.audit.write(
            tx,
            action=AuditAction.CONTRACT_CREATED,
            actor_id=actor_id,
            project_id=project.id,
            ref_id=contract_id,
            payload_summary={
                "bid_id": bid.id,
                "total_amount": bid.price,
                "shares": shares,
            },
        )
        logger.info(
            "[contracts] created contract=%s project=%s total=%d milestones=%d",
            contract_id, project.id, bid.price, len(milestones),
        )
        return contract, milestones

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def get_contract(self, store: Store, contract_id: str) -> Contract:
        with store.read() as tx:
            return tx.require("contracts", contract_id, label="Contract")

    def get_for_project(self, store: Store, project_id: str) -> Contract:
        with store.read() as tx:
            contract = load_contract(tx, project_id)
        if contract is None:
            raise NotFoundError("Contract not found.")
        return contract

    # ─────────────────────────────────────────────
    # CANCELLATION
    # ─────────────────────────────────────────────

    def cancel_contract(self, store: Store, *, contract_id: str, actor_id: str, reason: str) -> Contract:
        if not reason or not reason.strip():
            raise InvalidStateError("A cancellation reason is required.")

        def _op(tx: StoreTx) -> Contract:
            contract = tx.require("contracts", contract_id, label="Contract")
            project = tx.require("projects", contract.project_id, label="Project")
            side = require_contract_party(tx, project, actor_id)
            ensure_not_quarantined(project)

            if contract.status != ContractStatus.active.value:
                raise InvalidStateError(f"Cannot cancel a {contract.status} contract.")

            milestones = load_milestones(tx, contract_id)
            cancelled = self.escrow.cancel_unreleased(tx, milestones)
            refund_id = self.escrow.refund_remaining(
                tx, project, nonce=f"contract_cancel:{contract_id}", reason="contract_cancelled"
            )

            now = tx.server_timestamp(contract)
            tx.update(
                "contracts",
                contract_id,
                {
                    "status": ContractStatus.cancelled.value,
                    "closed_at": now,
                    "cancelled_by": actor_id,
                    "cancellation_reason": reason.strip(),
                },
            )
            tx.update("projects", project.id, {"status": ProjectStatus.cancelled.value})

            self.audit.write(
                tx,
                action=AuditAction.CONTRACT_CANCELLED,
                actor_id=actor_id,
                project_id=project.id,
                ref_id=contract_id,
                payload_summary={
                    "side": side,
                    "cancelled_milestones": cancelled,
                    "refund_transaction_id": refund_id,
                },
            )
            counterparty = project.assignee_id if side == "client" else project.client_id
            enqueue(
                tx,
                topic=OutboxTopic.CONTRACT_CANCELLED,
                recipient_id=counterparty,
                project_id=project.id,
                payload={"contract_id": contract_id, "reason": reason.strip()},
            )
            check_project(tx, project, contract=contract, milestones=milestones)
            return contract

        return store.run(_op, op="contracts.cancel", project_id=None)
