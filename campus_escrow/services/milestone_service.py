from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from campus_escrow.core.errors import InvalidStateError
from campus_escrow.db.store import Store, StoreTx
from campus_escrow.models.enums import ContractStatus
from campus_escrow.models.milestone import Milestone
from campus_escrow.policies.escrow_policies import require_assignee, require_project_client
from campus_escrow.services.escrow_service import load_milestones
from campus_escrow.services.invariants import ensure_not_quarantined
from campus_escrow.services.milestone_state_machine import MilestoneEvent, MilestoneStateMachine
from campus_escrow.services.outbox_service import OutboxTopic, enqueue

logger = logging.getLogger(__name__)


class MilestoneService:
    """
    Work-side transitions of a milestone (start / submit / reject).
    Money-moving transitions (approve / release) live in EscrowService.
    """

    def _load(self, tx: StoreTx, milestone_id: str):
        milestone = tx.require("milestones", milestone_id, label="Milestone")
        contract = tx.require("contracts", milestone.contract_id, label="Contract")
        project = tx.require("projects", milestone.project_id, label="Project")
        ensure_not_quarantined(project)
        return milestone, contract, project

    def _ensure_active(self, contract) -> None:
        if contract.status != ContractStatus.active.value:
            raise InvalidStateError("Contract is not active.")

    def start(self, store: Store, *, milestone_id: str, actor_id: str) -> Milestone:
        def _op(tx: StoreTx) -> Milestone:
            milestone, contract, project = self._load(tx, milestone_id)
            require_assignee(tx, contract.assignee, actor_id)
            self._ensure_active(contract)

            nxt = MilestoneStateMachine.next_status(milestone.status, MilestoneEvent.start)
            tx.update(
                "milestones",
                milestone_id,
                {"status": nxt.value, "started_at": tx.server_timestamp(milestone)},
            )
            return milestone

        return store.run(_op, op="milestones.start")

    def submit(
        self,
        store: Store,
        *,
        milestone_id: str,
        actor_id: str,
        artifacts: Optional[List[Dict[str, Any]]] = None,
        note: Optional[str] = None,
    ) -> Milestone:
        def _op(tx: StoreTx) -> Milestone:
            milestone, contract, project = self._load(tx, milestone_id)
            require_assignee(tx, contract.assignee, actor_id)
            self._ensure_active(contract)

            nxt = MilestoneStateMachine.next_status(milestone.status, MilestoneEvent.submit)
            tx.update(
                "milestones",
                milestone_id,
                {
                    "status": nxt.value,
                    "artifacts": list(artifacts or []),
                    "submission_note": note,
                    "submitted_at": tx.server_timestamp(milestone),
                },
            )
            enqueue(
                tx,
                topic=OutboxTopic.MILESTONE_SUBMITTED,
                recipient_id=project.client_id,
                project_id=project.id,
                payload={"milestone_id": milestone_id, "order": milestone.order},
            )
            return milestone

        return store.run(_op, op="milestones.submit")

    def reject(self, store: Store, *, milestone_id: str, actor_id: str, feedback: str) -> Milestone:
        if not feedback or not feedback.strip():
            raise InvalidStateError("Feedback is required to reject a submission.")

        def _op(tx: StoreTx) -> Milestone:
            milestone, contract, project = self._load(tx, milestone_id)
            require_project_client(project, actor_id)
            self._ensure_active(contract)

            nxt = MilestoneStateMachine.next_status(milestone.status, MilestoneEvent.reject)
            tx.update(
                "milestones",
                milestone_id,
                {
                    "status": nxt.value,
                    "rejection_count": milestone.rejection_count + 1,
                    "last_feedback": feedback.strip(),
                },
            )
            enqueue(
                tx,
                topic=OutboxTopic.MILESTONE_REJECTED,
                recipient_id=project.assignee_id,
                project_id=project.id,
                payload={"milestone_id": milestone_id, "rejection_count": milestone.rejection_count},
            )
            logger.info("[milestones] rejected %s (count=%d)", milestone_id, milestone.rejection_count)
            return milestone

        return store.run(_op, op="milestones.reject")

    def get(self, store: Store, milestone_id: str) -> Milestone:
        with store.read() as tx:
            return tx.require("milestones", milestone_id, label="Milestone")

    def list_for_contract(self, store: Store, contract_id: str) -> List[Milestone]:
        with store.read() as tx:
            tx.require("contracts", contract_id, label="Contract")
            return load_milestones(tx, contract_id)
