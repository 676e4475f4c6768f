from __future__ import annotations

from fastapi import APIRouter, Depends

from campus_escrow.core.auth_deps import get_current_principal
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.policies.rbac import ACTION_RESOLVE_DISPUTE, Principal, require_action
from campus_escrow.schemas.disputes import (
    DisputeResolveRequest,
    DisputeResolveResponse,
    RefundClientOutcome,
    ReleaseToAssigneeOutcome,
)
from campus_escrow.services.dispute_service import (
    DisputeService,
    Outcome,
    RefundClient,
    ReleaseToAssignee,
    Split,
)

router = APIRouter(prefix="/admin/disputes", tags=["admin"])


def _to_outcome(body: DisputeResolveRequest) -> Outcome:
    o = body.outcome
    if isinstance(o, RefundClientOutcome):
        return RefundClient(amount=o.amount)
    if isinstance(o, ReleaseToAssigneeOutcome):
        return ReleaseToAssignee(milestone_id=o.milestoneId)
    return Split(client_amount=o.clientAmount, assignee_amount=o.assigneeAmount)


@router.post("/{disputeId}/resolve", response_model=DisputeResolveResponse)
def resolve_dispute(
    disputeId: str,
    body: DisputeResolveRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    require_action(principal, ACTION_RESOLVE_DISPUTE)
    txn_ids = DisputeService().resolve(
        store, dispute_id=disputeId, admin_id=principal.actor_id, outcome=_to_outcome(body)
    )
    return {"disputeId": disputeId, "transactionIds": txn_ids}
