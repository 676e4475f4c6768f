#campus_escrow/services/bids_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from campus_escrow.core.errors import ForbiddenError, InvalidStateError, NotFoundError
from campus_escrow.core.money import new_id, require_amount
from campus_escrow.core.types import Party, PartyKind
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.bid import Bid
from campus_escrow.models.contract import Contract
from campus_escrow.models.enums import (
    ACTIVE_BID_STATUSES,
    AUTO_REJECT_REASON,
    BidStatus,
    ProjectStatus,
    UserRole,
)
from campus_escrow.models.milestone import Milestone
from campus_escrow.policies.escrow_policies import (
    is_party_member,
    require_project_client,
    require_proposer_manager,
    require_user,
)
from campus_escrow.services.audit_service import AuditAction, AuditService
from campus_escrow.services.contract_service import ContractService
from campus_escrow.services.invariants import accepted_bids_for, check_project, ensure_not_quarantined
from campus_escrow.services.outbox_service import OutboxTopic, enqueue

logger = logging.getLogger(__name__)

NO_LONGER_ACCEPTABLE = "Bid no longer acceptable."


# ---------------------------------------------------------------------
# inputs / outputs
# ---------------------------------------------------------------------


@dataclass(frozen=True)
class BidDraft:
    project_id: str
    actor_id: str
    price: int
    eta_days: int
    pitch: str
    proposer_kind: PartyKind = PartyKind.user
    proposer_id: Optional[str] = None  # defaults to the actor for user bids


@dataclass(frozen=True)
class AcceptResult:
    contract: Contract
    milestones: List[Milestone]
    rejected_bid_ids: List[str]


# ---------------------------------------------------------------------
# service
# ---------------------------------------------------------------------


class BidService:
    def __init__(self, contracts: Optional[ContractService] = None):
        self.contracts = contracts or ContractService()
        self.audit = AuditService()

    def _resolve_proposer(self, tx: StoreTx, draft: BidDraft) -> Party:
        if draft.proposer_kind == PartyKind.user:
            if draft.proposer_id not in (None, draft.actor_id):
                raise ForbiddenError("Students may only bid as themselves or for their team.")
            return Party(PartyKind.user, draft.actor_id)

        if not draft.proposer_id:
            raise InvalidStateError("Team bids require a team id.")
        tx.require("teams", draft.proposer_id, label="Team")
        party = Party(PartyKind.team, draft.proposer_id)
        if not is_party_member(tx, party, draft.actor_id):
            raise ForbiddenError("Only team members may bid for the team.")
        return party

    def _active_bid_of(self, tx: StoreTx, project_id: str, proposer: Party) -> Optional[Bid]:
        rows = tx.query(
            "bids",
            project_id=project_id,
            proposer_kind=proposer.kind.value,
            proposer_id=proposer.id,
        )
        for row in rows:
            if row.status in ACTIVE_BID_STATUSES:
                return row
        return None

    def _decide(self, tx: StoreTx, bid: Bid, status: BidStatus, *, actor_id: str, reason: Optional[str] = None) -> None:
        tx.update(
            "bids",
            bid.id,
            {
                "status": status.value,
                "rejection_reason": reason,
                "decided_by": actor_id,
                "decided_at": tx.server_timestamp(bid),
            },
        )

    # -----------------------------------------------------------------
    # submit / withdraw / reject
    # -----------------------------------------------------------------

    def submit(self, store: Store, draft: BidDraft) -> Bid:
        require_amount(draft.price, field="price")
        if isinstance(draft.eta_days, bool) or not isinstance(draft.eta_days, int) or draft.eta_days <= 0:
            raise InvalidStateError("eta_days must be a positive integer.")
        if not draft.pitch or not draft.pitch.strip():
            raise InvalidStateError("pitch is required.")

        def _op(tx: StoreTx) -> Bid:
            actor = require_user(tx, draft.actor_id)
            if actor.role != UserRole.student.value:
                raise ForbiddenError("Only students may submit bids.")

            project = tx.require("projects", draft.project_id, label="Project")
            ensure_not_quarantined(project)
            if project.status != ProjectStatus.open.value:
                raise InvalidStateError("Project is not open for bids.")
            if project.client_id == draft.actor_id:
                raise ForbiddenError("Clients cannot bid on their own project.")

            proposer = self._resolve_proposer(tx, draft)
            if self._active_bid_of(tx, project.id, proposer) is not None:
                raise InvalidStateError("Proposer already has an active bid on this project.")

            bid = tx.set(
                "bids",
                new_id(),
                {
                    "project_id": project.id,
                    "proposer_kind": proposer.kind.value,
                    "proposer_id": proposer.id,
                    "submitted_by": draft.actor_id,
                    "price": draft.price,
                    "eta_days": draft.eta_days,
                    "pitch": draft.pitch.strip(),
                    "status": BidStatus.pending.value,
                    "created_at": tx.server_timestamp(),
                },
            )
            tx.increment("projects", project.id, "bid_count", 1)
            return bid

        return store.run(_op, op="bids.submit", project_id=draft.project_id)

    def withdraw(self, store: Store, *, bid_id: str, actor_id: str) -> Bid:
        def _op(tx: StoreTx) -> Bid:
            bid = tx.require("bids", bid_id, label="Bid")
            require_proposer_manager(tx, bid.proposer, actor_id)
            if bid.status != BidStatus.pending.value:
                raise InvalidStateError(f"Cannot withdraw a {bid.status} bid.")
            project = tx.require("projects", bid.project_id, label="Project")
            ensure_not_quarantined(project)

            self._decide(tx, bid, BidStatus.withdrawn, actor_id=actor_id)
            tx.increment("projects", project.id, "bid_count", -1)
            return bid

        return store.run(_op, op="bids.withdraw")

    def reject(self, store: Store, *, bid_id: str, actor_id: str, reason: Optional[str] = None) -> Bid:
        def _op(tx: StoreTx) -> Bid:
            bid = tx.require("bids", bid_id, label="Bid")
            project = tx.require("projects", bid.project_id, label="Project")
            require_project_client(project, actor_id)
            ensure_not_quarantined(project)
            if bid.status != BidStatus.pending.value:
                raise InvalidStateError(f"Cannot reject a {bid.status} bid.")

            self._decide(tx, bid, BidStatus.rejected, actor_id=actor_id, reason=(reason or "").strip() or None)
            enqueue(
                tx,
                topic=OutboxTopic.BID_REJECTED,
                recipient_id=bid.proposer_id,
                project_id=project.id,
                payload={"bid_id": bid.id, "reason": bid.rejection_reason},
            )
            return bid

        return store.run(_op, op="bids.reject")

    # -----------------------------------------------------------------
    # accept
    # -----------------------------------------------------------------

    def accept(self, store: Store, *, bid_id: str, actor_id: str) -> AcceptResult:
        """
        One transaction: accept the bid, auto-reject every other pending bid,
        move the project to in_progress and create the contract. A competing
        accept that committed first makes this one conflict, and its retry
        sees a project that is no longer open.
        """

        def _op(tx: StoreTx) -> AcceptResult:
            bid = tx.require("bids", bid_id, label="Bid")
            project = tx.require("projects", bid.project_id, label="Project")
            require_project_client(project, actor_id)
            ensure_not_quarantined(project)

            if bid.status != BidStatus.pending.value or project.status != ProjectStatus.open.value:
                raise InvalidStateError(
                    NO_LONGER_ACCEPTABLE,
                    details={"bid_status": bid.status, "project_status": project.status},
                )

            self._decide(tx, bid, BidStatus.accepted, actor_id=actor_id)
            tx.update(
                "projects",
                project.id,
                {
                    "status": ProjectStatus.in_progress.value,
                    "accepted_bid_id": bid.id,
                    "assignee_kind": bid.proposer_kind,
                    "assignee_id": bid.proposer_id,
                },
            )

            rejected: List[Bid] = []
            for other in tx.query("bids", project_id=project.id, order_by="created_at"):
                if other.id == bid.id or other.status != BidStatus.pending.value:
                    continue
                self._decide(tx, other, BidStatus.rejected, actor_id=actor_id, reason=AUTO_REJECT_REASON)
                rejected.append(other)

            contract, milestones = self.contracts.create_for_bid(tx, project, bid, actor_id=actor_id)

            self.audit.write(
                tx,
                action=AuditAction.BID_ACCEPTED,
                actor_id=actor_id,
                project_id=project.id,
                ref_id=bid.id,
                payload_summary={
                    "bid_id": bid.id,
                    "contract_id": contract.id,
                    "rejected_bid_ids": [b.id for b in rejected],
                },
            )

            enqueue(
                tx,
                topic=OutboxTopic.BID_ACCEPTED,
                recipient_id=bid.proposer_id,
                project_id=project.id,
                payload={"bid_id": bid.id, "contract_id": contract.id},
            )
            for other in rejected:
                enqueue(
                    tx,
                    topic=OutboxTopic.BID_REJECTED,
                    recipient_id=other.proposer_id,
                    project_id=project.id,
                    payload={"bid_id": other.id, "reason": AUTO_REJECT_REASON},
                )

            check_project(
                tx,
                project,
                contract=contract,
                milestones=milestones,
                accepted_bids=accepted_bids_for(tx, project.id),
            )
            return AcceptResult(contract, milestones, [b.id for b in rejected])

        result = store.run(_op, op="bids.accept")
        logger.info(
            "[bids] accepted bid=%s contract=%s auto_rejected=%d",
            bid_id, result.contract.id, len(result.rejected_bid_ids),
        )
        return result

    # -----------------------------------------------------------------
    # reads
    # -----------------------------------------------------------------

    def get(self, store: Store, bid_id: str) -> Bid:
        with store.read() as tx:
            return tx.require("bids", bid_id, label="Bid")

    def list_for_project(self, store: Store, project_id: str, status: Optional[BidStatus] = None) -> List[Bid]:
        with store.read() as tx:
            if tx.get("projects", project_id) is None:
                raise NotFoundError("Project not found.")
            filters = {"project_id": project_id}
            if status is not None:
                filters["status"] = BidStatus(status).value
            return tx.query("bids", order_by="created_at", **filters)
