#campus_escrow/services/wallet_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from campus_escrow.core.errors import InsufficientFundsError
from campus_escrow.core.hashing import ledger_entry_id
from campus_escrow.core.money import new_id, require_amount
from campus_escrow.core.types import PAYOUT, AccountKind, AccountRef, user_account
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.enums import TransactionType
from campus_escrow.models.ledger_transaction import LedgerTransaction
from campus_escrow.services.ledger_service import LedgerEntry, LedgerService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletView:
    account: AccountRef
    balance: int
    opening_balance: int


@dataclass(frozen=True)
class WithdrawalReceipt:
    wallet_balance: int
    transaction_id: str
    replayed: bool = False


class WalletService:
    def __init__(self, ledger: Optional[LedgerService] = None):
        self.ledger = ledger or LedgerService()

    def get_wallet(self, store: Store, user_id: str) -> WalletView:
        with store.read() as tx:
            user = tx.require("users", user_id, label="User")
            return WalletView(user_account(user_id), user.wallet_balance, user.opening_balance)

    def get_team_wallet(self, store: Store, team_id: str) -> WalletView:
        with store.read() as tx:
            team = tx.require("teams", team_id, label="Team")
            return WalletView(AccountRef(AccountKind.team, team_id), team.team_wallet_balance, team.opening_balance)

    def list_transactions(self, store: Store, user_id: str) -> List[LedgerTransaction]:
        return self.ledger.list_for_account(store, user_account(user_id))

    def withdraw(
        self,
        store: Store,
        *,
        user_id: str,
        amount: int,
        idempotency_key: Optional[str] = None,
    ) -> WithdrawalReceipt:
        """Pay a wallet out to the external payout account."""
        require_amount(amount)
        nonce = idempotency_key or new_id()
        entry_id = ledger_entry_id(None, TransactionType.withdrawal.value, None, f"{user_id}:{nonce}")
        payout = LedgerEntry(
            id=entry_id,
            project_id=None,
            source=user_account(user_id),
            destination=PAYOUT,
            amount=amount,
            type=TransactionType.withdrawal,
        )

        def _op(tx: StoreTx) -> WithdrawalReceipt:
            user = tx.require("users", user_id, label="User")
            existing = self.ledger.find_replay(tx, payout)
            if existing is not None:
                return WithdrawalReceipt(user.wallet_balance, existing.id, replayed=True)

            if user.wallet_balance < amount:
                raise InsufficientFundsError(
                    "Wallet balance is insufficient for this withdrawal.",
                    details={"wallet_balance": user.wallet_balance, "required": amount},
                )
            result = self.ledger.post(tx, payout)
            return WithdrawalReceipt(user.wallet_balance, result.transaction_id, replayed=result.replayed)

        receipt = store.run(_op, op="wallet.withdraw")
        logger.info("[wallet] user=%s withdrew %d (txn=%s)", user_id, amount, receipt.transaction_id)
        return receipt
