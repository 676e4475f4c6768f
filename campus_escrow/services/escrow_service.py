#campus_escrow/services/escrow_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from campus_escrow.core.config import get_settings
from campus_escrow.core.errors import (
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
)
from campus_escrow.core.hashing import ledger_entry_id
from campus_escrow.core.money import PercentInput, new_id, parse_percentage, portion, require_amount
from campus_escrow.core.types import TREASURY, escrow_account, user_account
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.contract import Contract
from campus_escrow.models.enums import (
    ContractStatus,
    MilestoneStatus,
    ProjectStatus,
    TransactionType,
)
from campus_escrow.models.milestone import Milestone
from campus_escrow.models.project import Project
from campus_escrow.policies.escrow_policies import require_admin, require_project_client
from campus_escrow.services.audit_service import AuditAction, AuditService
from campus_escrow.services.invariants import check_project, ensure_not_quarantined
from campus_escrow.services.ledger_service import LedgerEntry, LedgerService
from campus_escrow.services.milestone_state_machine import MilestoneEvent, MilestoneStateMachine
from campus_escrow.services.outbox_service import OutboxTopic, enqueue

logger = logging.getLogger(__name__)

# nonce of the one full release a milestone can have
FINAL_RELEASE_NONCE = "final"

DEPOSIT_STATUSES = (ProjectStatus.open.value, ProjectStatus.in_progress.value)


@dataclass(frozen=True)
class DepositReceipt:
    escrow_balance: int
    transaction_id: str
    replayed: bool = False


@dataclass(frozen=True)
class ReleaseReceipt:
    release_amount: int
    transaction_id: Optional[str]
    contract_status_after: str
    replayed: bool = False


@dataclass(frozen=True)
class PartialReleaseReceipt:
    cumulative_released: int
    transaction_id: str
    milestone_status: str
    replayed: bool = False


@dataclass(frozen=True)
class RefundReceipt:
    escrow_balance: int
    transaction_id: str
    replayed: bool = False


# ─────────────────────────────────────────────
# TX-LEVEL HELPERS (shared with contracts / disputes)
# ─────────────────────────────────────────────

def load_contract(tx: StoreTx, project_id: str) -> Optional[Contract]:
    rows = tx.query("contracts", project_id=project_id)
    return rows[0] if rows else None


def load_milestones(tx: StoreTx, contract_id: str) -> List[Milestone]:
    return sorted(tx.query("milestones", contract_id=contract_id), key=lambda m: m.order)


def load_project_milestone(tx: StoreTx, project_id: str, milestone_id: str) -> Tuple[Project, Milestone]:
    project = tx.require("projects", project_id, label="Project")
    milestone = tx.get("milestones", milestone_id)
    if milestone is None or milestone.project_id != project_id:
        raise NotFoundError("Milestone not found.")
    return project, milestone


def ensure_releases_open(project: Project, contract: Optional[Contract]) -> Contract:
    if project.status == ProjectStatus.disputed.value:
        raise InvalidStateError("Project is under dispute; releases are frozen.")
    if contract is None or contract.status != ContractStatus.active.value:
        raise InvalidStateError("Contract is not active.")
    return contract


class EscrowService:
    """
    The only mutator of project escrow balances. Every operation is one
    Store transaction; ledger entries carry deterministic ids so a retried
    call after an unknown commit outcome replays instead of double-posting.
    """

    def __init__(
        self,
        *,
        ledger: Optional[LedgerService] = None,
        min_deposit_amount: Optional[int] = None,
        dev_wallet_topup: Optional[bool] = None,
    ):
        settings = get_settings() if min_deposit_amount is None or dev_wallet_topup is None else None
        self.ledger = ledger or LedgerService()
        self.audit = AuditService()
        self.min_deposit_amount = (
            min_deposit_amount if min_deposit_amount is not None else settings.min_deposit_amount
        )
        self.dev_wallet_topup = dev_wallet_topup if dev_wallet_topup is not None else settings.escrow_dev_wallet_topup

    # ─────────────────────────────────────────────
    # LEDGER PRIMITIVES (inside the caller's Tx)
    # ─────────────────────────────────────────────

    def assignee_entry(self, project: Project, *, amount: int, entry_id: str, metadata: Optional[dict] = None) -> LedgerEntry:
        assignee = project.assignee
        if assignee is None:
            raise InvalidStateError("Project has no assignee.")
        return LedgerEntry(
            id=entry_id,
            project_id=project.id,
            source=escrow_account(project.id),
            destination=assignee.account(),
            amount=amount,
            type=TransactionType.milestone_release,
            metadata=metadata or {},
        )

    def pay_assignee(
        self,
        tx: StoreTx,
        project: Project,
        *,
        amount: int,
        entry_id: str,
        metadata: dict,
    ) -> str:
        entry = self.assignee_entry(project, amount=amount, entry_id=entry_id, metadata=metadata)
        return self.ledger.post(tx, entry).transaction_id

    def client_refund_entry(self, project: Project, *, amount: int, entry_id: str, metadata: Optional[dict] = None) -> LedgerEntry:
        return LedgerEntry(
            id=entry_id,
            project_id=project.id,
            source=escrow_account(project.id),
            destination=user_account(project.client_id),
            amount=amount,
            type=TransactionType.refund,
            metadata=metadata or {},
        )

    def refund_client(
        self,
        tx: StoreTx,
        project: Project,
        *,
        amount: int,
        entry_id: str,
        metadata: dict,
    ) -> str:
        entry = self.client_refund_entry(project, amount=amount, entry_id=entry_id, metadata=metadata)
        return self.ledger.post(tx, entry).transaction_id

    def refund_remaining(self, tx: StoreTx, project: Project, *, nonce: str, reason: str) -> Optional[str]:
        """Return whatever is left in escrow to the client. No entry when empty."""
        if project.escrow_balance <= 0:
            return None
        return self.refund_client(
            tx,
            project,
            amount=project.escrow_balance,
            entry_id=ledger_entry_id(project.id, "refund_remaining", None, nonce),
            metadata={"reason": reason},
        )

    def cancel_unreleased(self, tx: StoreTx, milestones: List[Milestone]) -> List[str]:
        cancelled = []
        for m in milestones:
            if MilestoneStateMachine.is_terminal(m.status):
                continue
            nxt = MilestoneStateMachine.next_status(m.status, MilestoneEvent.cancel)
            tx.update("milestones", m.id, {"status": nxt.value})
            cancelled.append(m.id)
        return cancelled

    def settle_milestone(
        self,
        tx: StoreTx,
        project: Project,
        milestone: Milestone,
        *,
        event: MilestoneEvent,
        actor_id: str,
        entry_id: str,
    ) -> Tuple[int, Optional[str]]:
        """
        Move the milestone's unreleased remainder to the assignee and mark it
        released. A zero-share milestone is released without a ledger entry.
        """
        nxt = MilestoneStateMachine.next_status(milestone.status, event)
        amount = milestone.share - milestone.released_to_date

        txn_id: Optional[str] = None
        if amount > 0:
            if project.escrow_balance < amount:
                raise InsufficientFundsError(
                    "Escrow balance does not cover this milestone.",
                    details={"escrow_balance": project.escrow_balance, "required": amount},
                )
            txn_id = self.pay_assignee(
                tx,
                project,
                amount=amount,
                entry_id=entry_id,
                metadata={"milestone_id": milestone.id, "order": milestone.order, "event": event.value},
            )

        tx.update(
            "milestones",
            milestone.id,
            {
                "status": nxt.value,
                "released_to_date": milestone.share,
                "released_amount": milestone.share,
                "release_transaction_id": txn_id or milestone.release_transaction_id,
                "released_at": tx.server_timestamp(milestone),
            },
        )
        self.audit.write(
            tx,
            action=AuditAction.MILESTONE_RELEASED,
            actor_id=actor_id,
            project_id=project.id,
            ref_id=milestone.id,
            payload_summary={"milestone_id": milestone.id, "amount": amount, "transaction_id": txn_id},
        )
        return amount, txn_id

    def complete_if_done(self, tx: StoreTx, project: Project, contract: Contract, milestones: List[Milestone]) -> None:
        if any(m.status != MilestoneStatus.released.value for m in milestones):
            return
        now = tx.server_timestamp(contract)
        tx.update("contracts", contract.id, {"status": ContractStatus.completed.value, "closed_at": now})
        tx.update("projects", project.id, {"status": ProjectStatus.completed.value})
        logger.info("[escrow] project=%s completed", project.id)

    # ─────────────────────────────────────────────
    # DEPOSIT
    # ─────────────────────────────────────────────

    def deposit(
        self,
        store: Store,
        *,
        project_id: str,
        client_id: str,
        amount: int,
        idempotency_key: Optional[str] = None,
    ) -> DepositReceipt:
        require_amount(amount)
        if amount < self.min_deposit_amount:
            raise InvalidStateError(
                f"Minimum deposit is {self.min_deposit_amount} minor units.",
                details={"min_deposit_amount": self.min_deposit_amount},
            )

        nonce = idempotency_key or new_id()
        entry_id = ledger_entry_id(project_id, TransactionType.escrow_fund.value, None, nonce)
        funding = LedgerEntry(
            id=entry_id,
            project_id=project_id,
            source=user_account(client_id),
            destination=escrow_account(project_id),
            amount=amount,
            type=TransactionType.escrow_fund,
        )

        def _op(tx: StoreTx) -> DepositReceipt:
            project = tx.require("projects", project_id, label="Project")
            require_project_client(project, client_id)

            existing = self.ledger.find_replay(tx, funding)
            if existing is not None:
                return DepositReceipt(project.escrow_balance, existing.id, replayed=True)

            ensure_not_quarantined(project)
            if project.status not in DEPOSIT_STATUSES:
                raise InvalidStateError(f"Cannot deposit into a {project.status} project.")

            client = tx.require("users", client_id, label="User")
            shortfall = amount - client.wallet_balance
            if shortfall > 0:
                if not self.dev_wallet_topup:
                    raise InsufficientFundsError(
                        "Wallet balance is insufficient for this deposit.",
                        details={"wallet_balance": client.wallet_balance, "required": amount},
                    )
                logger.warning("[escrow] dev top-up of %d for user=%s", shortfall, client_id)
                self.ledger.post(
                    tx,
                    LedgerEntry(
                        id=ledger_entry_id(project_id, "dev_topup", None, nonce),
                        project_id=project_id,
                        source=TREASURY,
                        destination=user_account(client_id),
                        amount=shortfall,
                        type=TransactionType.adjustment,
                        metadata={"reason": "dev_wallet_topup"},
                    ),
                )

            result = self.ledger.post(tx, funding)
            self.audit.write(
                tx,
                action=AuditAction.ESCROW_DEPOSIT,
                actor_id=client_id,
                project_id=project_id,
                ref_id=result.transaction_id,
                payload_summary={"amount": amount, "escrow_balance": project.escrow_balance},
            )
            check_project(tx, project)
            return DepositReceipt(project.escrow_balance, result.transaction_id, replayed=result.replayed)

        return store.run(_op, op="escrow.deposit", project_id=project_id)

    # ─────────────────────────────────────────────
    # MILESTONES
    # ─────────────────────────────────────────────

    def approve_milestone(self, store: Store, *, project_id: str, milestone_id: str, actor_id: str) -> Milestone:
        def _op(tx: StoreTx) -> Milestone:
            project, milestone = load_project_milestone(tx, project_id, milestone_id)
            require_project_client(project, actor_id)
            if milestone.status == MilestoneStatus.approved.value:
                return milestone

            ensure_not_quarantined(project)
            ensure_releases_open(project, load_contract(tx, project_id))
            nxt = MilestoneStateMachine.next_status(milestone.status, MilestoneEvent.approve)
            tx.update(
                "milestones",
                milestone_id,
                {"status": nxt.value, "approved_at": tx.server_timestamp(milestone)},
            )
            self.audit.write(
                tx,
                action=AuditAction.MILESTONE_APPROVED,
                actor_id=actor_id,
                project_id=project_id,
                ref_id=milestone_id,
                payload_summary={"milestone_id": milestone_id, "order": milestone.order},
            )
            return milestone

        return store.run(_op, op="escrow.approve_milestone", project_id=project_id)

    def release_milestone(self, store: Store, *, project_id: str, milestone_id: str, actor_id: str) -> ReleaseReceipt:
        entry_id = ledger_entry_id(project_id, TransactionType.milestone_release.value, milestone_id, FINAL_RELEASE_NONCE)

        def _op(tx: StoreTx) -> ReleaseReceipt:
            project, milestone = load_project_milestone(tx, project_id, milestone_id)
            require_project_client(project, actor_id)
            contract = load_contract(tx, project_id)

            if milestone.status == MilestoneStatus.released.value:
                # no final entry when partial releases or a dispute settled the milestone
                original = self.ledger.find(tx, entry_id)
                return ReleaseReceipt(
                    release_amount=original.amount if original is not None else (milestone.released_amount or 0),
                    transaction_id=milestone.release_transaction_id,
                    contract_status_after=contract.status if contract else ContractStatus.completed.value,
                    replayed=True,
                )

            ensure_not_quarantined(project)
            contract = ensure_releases_open(project, contract)

            amount, txn_id = self.settle_milestone(
                tx,
                project,
                milestone,
                event=MilestoneEvent.release,
                actor_id=actor_id,
                entry_id=entry_id,
            )
            milestones = load_milestones(tx, contract.id)
            self.complete_if_done(tx, project, contract, milestones)

            enqueue(
                tx,
                topic=OutboxTopic.MILESTONE_RELEASED,
                recipient_id=project.assignee_id,
                project_id=project_id,
                payload={"milestone_id": milestone_id, "amount": amount},
            )
            check_project(tx, project, contract=contract, milestones=milestones)
            return ReleaseReceipt(amount, txn_id, contract.status)

        return store.run(_op, op="escrow.release_milestone", project_id=project_id)

    def partial_release(
        self,
        store: Store,
        *,
        project_id: str,
        milestone_id: str,
        percent: PercentInput,
        actor_id: str,
        idempotency_key: Optional[str] = None,
    ) -> PartialReleaseReceipt:
        pct_bp = parse_percentage(percent)
        if pct_bp == 0:
            raise InvalidStateError("percent must be greater than 0.")

        nonce = idempotency_key or new_id()
        entry_id = ledger_entry_id(project_id, "partial_release", milestone_id, nonce)

        def _op(tx: StoreTx) -> PartialReleaseReceipt:
            project, milestone = load_project_milestone(tx, project_id, milestone_id)
            require_project_client(project, actor_id)

            amount = portion(milestone.share, pct_bp)
            if self.ledger.find(tx, entry_id) is not None:
                existing = self.ledger.find_replay(tx, self.assignee_entry(project, amount=amount, entry_id=entry_id))
                return PartialReleaseReceipt(
                    cumulative_released=milestone.released_to_date,
                    transaction_id=existing.id,
                    milestone_status=milestone.status,
                    replayed=True,
                )

            ensure_not_quarantined(project)
            contract = ensure_releases_open(project, load_contract(tx, project_id))
            MilestoneStateMachine.next_status(milestone.status, MilestoneEvent.partial_release)

            if amount <= 0:
                raise InvalidStateError("Partial release amount rounds to zero.")
            cumulative = milestone.released_to_date + amount
            if cumulative > milestone.share:
                raise InvalidStateError(
                    "Partial release would exceed the milestone share.",
                    details={
                        "share": milestone.share,
                        "released_to_date": milestone.released_to_date,
                        "requested": amount,
                    },
                )

            txn_id = self.pay_assignee(
                tx,
                project,
                amount=amount,
                entry_id=entry_id,
                metadata={"milestone_id": milestone_id, "percentage_bp": pct_bp, "event": "partial_release"},
            )

            patch = {"released_to_date": cumulative}
            if cumulative == milestone.share:
                nxt = MilestoneStateMachine.next_status(milestone.status, MilestoneEvent.release)
                patch.update(
                    {
                        "status": nxt.value,
                        "released_amount": milestone.share,
                        "release_transaction_id": txn_id,
                        "released_at": tx.server_timestamp(milestone),
                    }
                )
            tx.update("milestones", milestone_id, patch)

            self.audit.write(
                tx,
                action=AuditAction.MILESTONE_PARTIAL_RELEASE,
                actor_id=actor_id,
                project_id=project_id,
                ref_id=milestone_id,
                payload_summary={"milestone_id": milestone_id, "amount": amount, "cumulative": cumulative},
            )

            milestones = load_milestones(tx, contract.id)
            self.complete_if_done(tx, project, contract, milestones)
            check_project(tx, project, contract=contract, milestones=milestones)
            return PartialReleaseReceipt(cumulative, txn_id, milestone.status)

        return store.run(_op, op="escrow.partial_release", project_id=project_id)

    # ─────────────────────────────────────────────
    # REFUND (ADMIN)
    # ─────────────────────────────────────────────

    def refund(
        self,
        store: Store,
        *,
        project_id: str,
        amount: int,
        actor_id: str,
        idempotency_key: Optional[str] = None,
    ) -> RefundReceipt:
        require_amount(amount)
        nonce = idempotency_key or new_id()
        entry_id = ledger_entry_id(project_id, TransactionType.refund.value, None, nonce)

        def _op(tx: StoreTx) -> RefundReceipt:
            require_admin(tx, actor_id)
            project = tx.require("projects", project_id, label="Project")

            existing = self.ledger.find_replay(
                tx, self.client_refund_entry(project, amount=amount, entry_id=entry_id)
            )
            if existing is not None:
                return RefundReceipt(project.escrow_balance, existing.id, replayed=True)

            ensure_not_quarantined(project)
            txn_id = self.refund_client(
                tx,
                project,
                amount=amount,
                entry_id=entry_id,
                metadata={"reason": "admin_refund"},
            )
            self.audit.write(
                tx,
                action=AuditAction.ESCROW_REFUND,
                actor_id=actor_id,
                project_id=project_id,
                ref_id=txn_id,
                payload_summary={"amount": amount, "escrow_balance": project.escrow_balance},
            )
            check_project(tx, project)
            return RefundReceipt(project.escrow_balance, txn_id)

        return store.run(_op, op="escrow.refund", project_id=project_id)

    # ─────────────────────────────────────────────
    # READS
    # ─────────────────────────────────────────────

    def get_escrow_balance(self, store: Store, project_id: str) -> int:
        with store.read() as tx:
            project = tx.require("projects", project_id, label="Project")
            return project.escrow_balance
