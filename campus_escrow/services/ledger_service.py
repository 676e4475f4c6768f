#campus_escrow/services/ledger_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, select

from campus_escrow.core.errors import (
    IdempotentReplay,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
)
from campus_escrow.core.hashing import ledger_entry_id
from campus_escrow.core.money import require_amount
from campus_escrow.core.types import AccountKind, AccountRef
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.enums import TransactionStatus, TransactionType
from campus_escrow.models.ledger_transaction import LedgerTransaction
from campus_escrow.policies.escrow_policies import require_admin
from campus_escrow.services.audit_service import AuditAction, AuditService
from campus_escrow.services.invariants import check_project, ensure_not_quarantined

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerEntry:
    id: str
    project_id: Optional[str]
    source: AccountRef
    destination: AccountRef
    amount: int
    type: TransactionType
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PostResult:
    transaction: LedgerTransaction
    replayed: bool

    @property
    def transaction_id(self) -> str:
        return self.transaction.id


def _balance_target(account: AccountRef):
    """(collection, doc id, balance field) holding an account's balance."""
    if account.kind == AccountKind.user:
        return "users", account.id, "wallet_balance"
    if account.kind == AccountKind.team:
        return "teams", account.id, "team_wallet_balance"
    if account.is_escrow:
        return "projects", account.escrow_project_id, "escrow_balance"
    return None


class LedgerService:
    """
    Append-only double-entry transaction log.
    The only writer of `transactions` and of every stored balance.
    """

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _same_contents(self, row: LedgerTransaction, entry: LedgerEntry) -> bool:
        return (
            row.project_id == entry.project_id
            and row.source == entry.source
            and row.destination == entry.destination
            and row.amount == entry.amount
            and row.type == entry.type.value
        )

    def _apply(self, tx: StoreTx, account: AccountRef, delta: int) -> None:
        target = _balance_target(account)
        if target is None:
            # treasury / payout: external, unbounded
            return
        collection, doc_id, balance_field = target
        doc = tx.get(collection, doc_id)
        if doc is None:
            raise NotFoundError(f"Account {account} not found.")
        current = getattr(doc, balance_field) or 0
        if current + delta < 0:
            raise InsufficientFundsError(
                f"Insufficient funds in {account}.",
                details={"account": str(account), "balance": current, "required": -delta},
            )
        tx.increment(collection, doc_id, balance_field, delta)

    def _append(self, tx: StoreTx, entry: LedgerEntry) -> LedgerTransaction:
        if self.find_replay(tx, entry) is not None:
            raise IdempotentReplay("Ledger entry already applied.", details={"transaction_id": entry.id})

        # debit first: insufficient funds must leave no trace
        self._apply(tx, entry.source, -entry.amount)
        self._apply(tx, entry.destination, entry.amount)

        return tx.set(
            "transactions",
            entry.id,
            {
                "project_id": entry.project_id,
                "from_kind": entry.source.kind.value,
                "from_id": entry.source.id,
                "to_kind": entry.destination.kind.value,
                "to_id": entry.destination.id,
                "amount": entry.amount,
                "type": entry.type.value,
                "status": TransactionStatus.settled.value,
                "reverses_id": entry.metadata.get("reverses"),
                "metadata_json": dict(entry.metadata),
                "created_at": tx.server_timestamp(),
            },
        )

    # ─────────────────────────────────────────────
    # PUBLIC API
    # ─────────────────────────────────────────────

    def post(self, tx: StoreTx, entry: LedgerEntry) -> PostResult:
        """
        Append one settled entry and move the two balances it implies, in the
        caller's transaction. Re-posting an identical entry is a no-op that
        returns the stored row.
        """
        require_amount(entry.amount)
        if entry.source == entry.destination:
            raise InvalidStateError("Ledger entry must move funds between two accounts.")

        try:
            row = self._append(tx, entry)
        except IdempotentReplay:
            logger.info("[ledger] replay of %s (%s)", entry.id, entry.type.value)
            return PostResult(transaction=tx.get("transactions", entry.id), replayed=True)

        logger.info(
            "[ledger] posted %s %s %s -> %s amount=%d project=%s",
            entry.id, entry.type.value, entry.source, entry.destination, entry.amount, entry.project_id,
        )
        return PostResult(transaction=row, replayed=False)

    def reverse(self, tx: StoreTx, entry_id: str, reason: str) -> PostResult:
        original = tx.get("transactions", entry_id)
        if original is None:
            raise NotFoundError("Transaction not found.")

        mirror = LedgerEntry(
            id=ledger_entry_id(original.project_id, "reverse", None, entry_id),
            project_id=original.project_id,
            source=original.destination,
            destination=original.source,
            amount=original.amount,
            type=TransactionType.refund,
            metadata={"reverses": entry_id, "reason": reason},
        )

        if original.status == TransactionStatus.reversed.value:
            existing = tx.get("transactions", mirror.id)
            if existing is not None:
                return PostResult(transaction=existing, replayed=True)
        if original.status != TransactionStatus.settled.value:
            raise InvalidStateError("Only settled transactions can be reversed.")

        result = self.post(tx, mirror)
        tx.update("transactions", entry_id, {"status": TransactionStatus.reversed.value})
        return result

    def find(self, tx: StoreTx, entry_id: str) -> Optional[LedgerTransaction]:
        return tx.get("transactions", entry_id)

    def find_replay(self, tx: StoreTx, entry: LedgerEntry) -> Optional[LedgerTransaction]:
        """
        The stored row when `entry` was already posted, None when its id is
        unused. A stored row with other contents means the idempotency key
        was reused for a different request.
        """
        existing = tx.get("transactions", entry.id)
        if existing is not None and not self._same_contents(existing, entry):
            raise InvalidStateError(
                "Idempotency key reused with different contents.",
                details={"transaction_id": entry.id},
            )
        return existing

    # ─────────────────────────────────────────────
    # READ-ONLY HELPERS (AUDIT)
    # ─────────────────────────────────────────────

    def balance_of(self, store: Store, account: AccountRef) -> Optional[int]:
        """Stored balance, or None for unbounded system accounts."""
        target = _balance_target(account)
        if target is None:
            return None
        collection, doc_id, balance_field = target
        with store.read() as tx:
            doc = tx.get(collection, doc_id)
            if doc is None:
                raise NotFoundError(f"Account {account} not found.")
            return getattr(doc, balance_field)

    def list_for_project(self, store: Store, project_id: str) -> List[LedgerTransaction]:
        with store.read() as tx:
            rows = tx.query("transactions", project_id=project_id, order_by="created_at")
            return rows

    def list_for_account(self, store: Store, account: AccountRef) -> List[LedgerTransaction]:
        with store.read() as tx:
            stmt = (
                select(LedgerTransaction)
                .where(
                    or_(
                        (LedgerTransaction.from_kind == account.kind.value) & (LedgerTransaction.from_id == account.id),
                        (LedgerTransaction.to_kind == account.kind.value) & (LedgerTransaction.to_id == account.id),
                    )
                )
                .order_by(LedgerTransaction.created_at.asc())
            )
            rows = list(tx.session.execute(stmt).scalars().all())
            return rows

    # ─────────────────────────────────────────────
    # ADMIN REVERSAL
    # ─────────────────────────────────────────────

    def reverse_transaction(self, store: Store, *, entry_id: str, admin_id: str, reason: str) -> PostResult:
        """
        Post the mirror of a settled entry and mark the original reversed.
        Reversing twice returns the first mirror.
        """
        if not reason or not reason.strip():
            raise InvalidStateError("A reversal reason is required.")

        def _op(tx: StoreTx) -> PostResult:
            require_admin(tx, admin_id)
            original = tx.get("transactions", entry_id)
            project = tx.get("projects", original.project_id) if original is not None and original.project_id else None
            if project is not None:
                ensure_not_quarantined(project)

            result = self.reverse(tx, entry_id, reason.strip())
            if not result.replayed:
                AuditService().write(
                    tx,
                    action=AuditAction.TRANSACTION_REVERSED,
                    actor_id=admin_id,
                    project_id=project.id if project is not None else None,
                    ref_id=entry_id,
                    payload_summary={"mirror_id": result.transaction_id, "amount": result.transaction.amount},
                )
            if project is not None:
                check_project(tx, project)
            return result

        result = store.run(_op, op="ledger.reverse")
        logger.info("[ledger] reversed %s via %s (replayed=%s)", entry_id, result.transaction_id, result.replayed)
        return result
