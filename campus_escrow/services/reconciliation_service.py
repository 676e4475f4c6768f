#campus_escrow/services/reconciliation_service.py
from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from campus_escrow.core.config import get_settings
from campus_escrow.core.types import AccountKind, AccountRef, escrow_account
from campus_escrow.db.store import Store
from campus_escrow.models.enums import MilestoneStatus, ProjectStatus, TransactionStatus

logger = logging.getLogger(__name__)

# a reversed entry was applied and then mirrored by a separate refund entry
EFFECTIVE_STATUSES = (TransactionStatus.settled.value, TransactionStatus.reversed.value)


@dataclass(frozen=True)
class BalanceMismatch:
    account: str
    stored: int
    computed: int

    @property
    def difference(self) -> int:
        return self.stored - self.computed


@dataclass(frozen=True)
class UnderfundedProject:
    project_id: str
    escrow_balance: int
    outstanding: int


@dataclass
class ReconciliationReport:
    started_at: datetime
    accounts_checked: int = 0
    transactions_scanned: int = 0
    mismatches: List[BalanceMismatch] = field(default_factory=list)
    underfunded: List[UnderfundedProject] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatches


class ReconciliationService:
    """
    Read-only sweeper: recomputes every stored balance from the transaction
    log and reports drift. It never writes; fixing drift is an admin task.
    """

    def sweep(self, store: Store) -> ReconciliationReport:
        report = ReconciliationReport(started_at=datetime.now(timezone.utc))

        with store.read() as tx:
            transactions = tx.query("transactions", status=list(EFFECTIVE_STATUSES))
            users = tx.query("users")
            teams = tx.query("teams")
            projects = tx.query("projects")
            milestones = tx.query("milestones")

        net: Dict[AccountRef, int] = defaultdict(int)
        for t in transactions:
            net[t.source] -= t.amount
            net[t.destination] += t.amount
        report.transactions_scanned = len(transactions)

        expected: List[tuple] = []
        for u in users:
            acct = AccountRef(AccountKind.user, u.id)
            expected.append((acct, u.wallet_balance, u.opening_balance + net.get(acct, 0)))
        for team in teams:
            acct = AccountRef(AccountKind.team, team.id)
            expected.append((acct, team.team_wallet_balance, team.opening_balance + net.get(acct, 0)))
        for p in projects:
            acct = escrow_account(p.id)
            expected.append((acct, p.escrow_balance, net.get(acct, 0)))

        for acct, stored, computed in expected:
            report.accounts_checked += 1
            if stored != computed:
                report.mismatches.append(BalanceMismatch(str(acct), stored, computed))
                logger.error(
                    "[reconciliation] %s stored=%d computed=%d", acct, stored, computed,
                )

        outstanding: Dict[str, int] = defaultdict(int)
        for m in milestones:
            if m.status in (MilestoneStatus.released.value, MilestoneStatus.cancelled.value):
                continue
            outstanding[m.project_id] += m.share - m.released_to_date

        for p in projects:
            if p.status != ProjectStatus.in_progress.value:
                continue
            owed = outstanding.get(p.id, 0)
            if p.escrow_balance < owed:
                report.underfunded.append(UnderfundedProject(p.id, p.escrow_balance, owed))
                logger.warning(
                    "[reconciliation] project=%s escrow=%d below outstanding=%d",
                    p.id, p.escrow_balance, owed,
                )

        logger.info(
            "[reconciliation] checked=%d txns=%d mismatches=%d underfunded=%d",
            report.accounts_checked,
            report.transactions_scanned,
            len(report.mismatches),
            len(report.underfunded),
        )
        return report

    def sweep_forever(
        self,
        store: Store,
        *,
        stop: threading.Event,
        interval_seconds: Optional[float] = None,
        on_report: Optional[Callable[[ReconciliationReport], None]] = None,
    ) -> None:
        interval = interval_seconds if interval_seconds is not None else get_settings().reconciliation_interval_seconds
        while not stop.is_set():
            started = time.monotonic()
            try:
                report = self.sweep(store)
                if on_report is not None:
                    on_report(report)
            except Exception:
                logger.exception("[reconciliation] sweep failed")
            stop.wait(max(0.0, interval - (time.monotonic() - started)))
