# campus_escrow/services/dispute_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from campus_escrow.core.errors import InsufficientFundsError, InvalidStateError, NotFoundError
from campus_escrow.core.hashing import ledger_entry_id
from campus_escrow.core.money import new_id, require_amount
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.dispute import Dispute
from campus_escrow.models.enums import (
    ContractStatus,
    DisputeStatus,
    MilestoneStatus,
    ProjectStatus,
)
from campus_escrow.policies.escrow_policies import require_admin, require_contract_party
from campus_escrow.services.audit_service import AuditAction, AuditService
from campus_escrow.services.escrow_service import EscrowService, load_contract, load_milestones
from campus_escrow.services.invariants import check_project, ensure_not_quarantined
from campus_escrow.services.milestone_state_machine import MilestoneEvent
from campus_escrow.services.outbox_service import OutboxTopic, enqueue

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# OUTCOMES
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class RefundClient:
    amount: int

    kind = "refund_client"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "amount": self.amount}


@dataclass(frozen=True)
class ReleaseToAssignee:
    milestone_id: str

    kind = "release_to_assignee"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "milestone_id": self.milestone_id}


@dataclass(frozen=True)
class Split:
    client_amount: int
    assignee_amount: int

    kind = "split"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "client_amount": self.client_amount, "assignee_amount": self.assignee_amount}


Outcome = Union[RefundClient, ReleaseToAssignee, Split]


def outcome_from_dict(data: Dict[str, Any]) -> Outcome:
    kind = data.get("kind")
    if kind == RefundClient.kind:
        return RefundClient(amount=data["amount"])
    if kind == ReleaseToAssignee.kind:
        return ReleaseToAssignee(milestone_id=data["milestone_id"])
    if kind == Split.kind:
        return Split(client_amount=data["client_amount"], assignee_amount=data["assignee_amount"])
    raise InvalidStateError(f"Unknown dispute outcome: {kind!r}.")


def _validate_outcome(outcome: Outcome) -> None:
    if isinstance(outcome, RefundClient):
        require_amount(outcome.amount)
    elif isinstance(outcome, ReleaseToAssignee):
        if not outcome.milestone_id:
            raise InvalidStateError("milestone_id is required.")
    elif isinstance(outcome, Split):
        for name in ("client_amount", "assignee_amount"):
            value = getattr(outcome, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidStateError(f"{name} must be a non-negative integer.")
        if outcome.client_amount + outcome.assignee_amount == 0:
            raise InvalidStateError("A split must move a positive amount.")
    else:
        raise InvalidStateError("Unknown dispute outcome.")


class DisputeService:
    """
    Freezes a contract while a disagreement is open, then applies the admin's
    decision through the escrow ledger paths in a single transaction.
    """

    def __init__(self, escrow: Optional[EscrowService] = None):
        self.escrow = escrow or EscrowService()
        self.audit = AuditService()

    # ─────────────────────────────────────────────
    # OPEN
    # ─────────────────────────────────────────────

    def open_dispute(self, store: Store, *, project_id: str, initiator_id: str, reason: str) -> str:
        if not reason or not reason.strip():
            raise InvalidStateError("A dispute reason is required.")

        def _op(tx: StoreTx) -> str:
            project = tx.require("projects", project_id, label="Project")
            side = require_contract_party(tx, project, initiator_id)
            ensure_not_quarantined(project)
            if project.status != ProjectStatus.in_progress.value:
                raise InvalidStateError(f"Cannot dispute a {project.status} project.")

            contract = load_contract(tx, project_id)
            if contract is None or contract.status != ContractStatus.active.value:
                raise InvalidStateError("Contract is not active.")

            for d in tx.query("disputes", project_id=project_id):
                if d.status == DisputeStatus.open.value:
                    raise InvalidStateError("Project already has an open dispute.")

            dispute_id = new_id()
            tx.set(
                "disputes",
                dispute_id,
                {
                    "project_id": project_id,
                    "contract_id": contract.id,
                    "initiator_id": initiator_id,
                    "reason": reason.strip(),
                    "status": DisputeStatus.open.value,
                    "created_at": tx.server_timestamp(),
                },
            )
            tx.update("projects", project_id, {"status": ProjectStatus.disputed.value})
            tx.update("contracts", contract.id, {"status": ContractStatus.disputed.value})

            self.audit.write(
                tx,
                action=AuditAction.DISPUTE_OPENED,
                actor_id=initiator_id,
                project_id=project_id,
                ref_id=dispute_id,
                payload_summary={"side": side, "contract_id": contract.id},
            )
            counterparty = project.assignee_id if side == "client" else project.client_id
            enqueue(
                tx,
                topic=OutboxTopic.DISPUTE_OPENED,
                recipient_id=counterparty,
                project_id=project_id,
                payload={"dispute_id": dispute_id},
            )
            check_project(tx, project)
            return dispute_id

        dispute_id = store.run(_op, op="disputes.open", project_id=project_id)
        logger.info("[disputes] opened %s project=%s", dispute_id, project_id)
        return dispute_id

    # ─────────────────────────────────────────────
    # RESOLVE
    # ─────────────────────────────────────────────

    def _entry_id(self, project_id: str, dispute_id: str, intent: str) -> str:
        return ledger_entry_id(project_id, f"dispute_{intent}", None, dispute_id)

    def resolve(self, store: Store, *, dispute_id: str, admin_id: str, outcome: Outcome) -> List[str]:
        """
        Apply the outcome, cancel every milestone that was not paid out,
        return leftover escrow to the client and close the project: completed
        when the assignee received money from the resolution, cancelled
        otherwise. Returns the ledger transaction ids posted.
        """
        _validate_outcome(outcome)

        def _op(tx: StoreTx) -> List[str]:
            require_admin(tx, admin_id)
            dispute = tx.require("disputes", dispute_id, label="Dispute")
            if dispute.status == DisputeStatus.resolved.value:
                return list(dispute.transaction_ids or [])

            project = tx.require("projects", dispute.project_id, label="Project")
            ensure_not_quarantined(project)
            if project.status != ProjectStatus.disputed.value:
                raise InvalidStateError("Project is not under dispute.")
            contract = tx.require("contracts", dispute.contract_id, label="Contract")
            milestones = load_milestones(tx, contract.id)

            txn_ids: List[str] = []
            assignee_paid = False

            if isinstance(outcome, RefundClient):
                txn_ids.append(
                    self.escrow.refund_client(
                        tx,
                        project,
                        amount=outcome.amount,
                        entry_id=self._entry_id(project.id, dispute_id, "refund"),
                        metadata={"dispute_id": dispute_id},
                    )
                )

            elif isinstance(outcome, ReleaseToAssignee):
                target = next((m for m in milestones if m.id == outcome.milestone_id), None)
                if target is None:
                    raise NotFoundError("Milestone not found.")
                if target.status in (MilestoneStatus.released.value, MilestoneStatus.cancelled.value):
                    raise InvalidStateError(f"Milestone is already {target.status}.")
                amount, txn_id = self.escrow.settle_milestone(
                    tx,
                    project,
                    target,
                    event=MilestoneEvent.settle,
                    actor_id=admin_id,
                    entry_id=self._entry_id(project.id, dispute_id, "release"),
                )
                if txn_id:
                    txn_ids.append(txn_id)
                assignee_paid = amount > 0

            else:
                needed = outcome.client_amount + outcome.assignee_amount
                if needed > project.escrow_balance:
                    raise InsufficientFundsError(
                        "Escrow balance does not cover the split.",
                        details={"escrow_balance": project.escrow_balance, "required": needed},
                    )
                if outcome.assignee_amount > 0:
                    txn_ids.append(
                        self.escrow.pay_assignee(
                            tx,
                            project,
                            amount=outcome.assignee_amount,
                            entry_id=self._entry_id(project.id, dispute_id, "split_assignee"),
                            metadata={"dispute_id": dispute_id},
                        )
                    )
                    assignee_paid = True
                if outcome.client_amount > 0:
                    txn_ids.append(
                        self.escrow.refund_client(
                            tx,
                            project,
                            amount=outcome.client_amount,
                            entry_id=self._entry_id(project.id, dispute_id, "split_client"),
                            metadata={"dispute_id": dispute_id},
                        )
                    )

            cancelled = self.escrow.cancel_unreleased(tx, milestones)
            leftover_id = self.escrow.refund_remaining(tx, project, nonce=f"dispute:{dispute_id}", reason="dispute_resolved")
            if leftover_id:
                txn_ids.append(leftover_id)

            now = tx.server_timestamp(contract)
            if assignee_paid:
                project_status, contract_status = ProjectStatus.completed, ContractStatus.completed
            else:
                project_status, contract_status = ProjectStatus.cancelled, ContractStatus.cancelled
            tx.update("contracts", contract.id, {"status": contract_status.value, "closed_at": now})
            tx.update("projects", project.id, {"status": project_status.value})
            tx.update(
                "disputes",
                dispute_id,
                {
                    "status": DisputeStatus.resolved.value,
                    "outcome_json": outcome.to_dict(),
                    "transaction_ids": txn_ids,
                    "resolved_by": admin_id,
                    "resolved_at": tx.server_timestamp(dispute),
                },
            )

            self.audit.write(
                tx,
                action=AuditAction.DISPUTE_RESOLVED,
                actor_id=admin_id,
                project_id=project.id,
                ref_id=dispute_id,
                payload_summary={
                    "outcome": outcome.to_dict(),
                    "transaction_ids": txn_ids,
                    "cancelled_milestones": cancelled,
                    "project_status": project_status.value,
                },
            )
            for recipient in dict.fromkeys([project.client_id, project.assignee_id]):
                enqueue(
                    tx,
                    topic=OutboxTopic.DISPUTE_RESOLVED,
                    recipient_id=recipient,
                    project_id=project.id,
                    payload={"dispute_id": dispute_id, "outcome": outcome.kind},
                )
            check_project(tx, project, contract=contract, milestones=milestones)
            return txn_ids

        txn_ids = store.run(_op, op="disputes.resolve")
        logger.info("[disputes] resolved %s outcome=%s txns=%d", dispute_id, outcome.kind, len(txn_ids))
        return txn_ids

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def get(self, store: Store, dispute_id: str) -> Dispute:
        with store.read() as tx:
            return tx.require("disputes", dispute_id, label="Dispute")

    def list_for_project(self, store: Store, project_id: str) -> List[Dispute]:
        with store.read() as tx:
            return tx.query("disputes", project_id=project_id, order_by="created_at")
