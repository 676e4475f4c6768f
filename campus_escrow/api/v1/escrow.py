# campus_escrow/api/v1/escrow.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from campus_escrow.core.auth_deps import get_current_principal
from campus_escrow.core.deps_idempotency import optional_idempotency_key
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.policies.rbac import ACTION_DEPOSIT, Principal, require_action
from campus_escrow.schemas.contracts import MilestoneResponse
from campus_escrow.schemas.escrow import (
    DepositRequest,
    DepositResponse,
    EscrowBalanceResponse,
    PartialReleaseRequest,
    PartialReleaseResponse,
    ReleaseResponse,
)
from campus_escrow.schemas.serializers import milestone_to_resp
from campus_escrow.services.escrow_service import EscrowService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects/{projectId}/escrow", tags=["escrow"])


@router.get("", response_model=EscrowBalanceResponse)
def get_escrow_balance(
    projectId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return {"projectId": projectId, "escrowBalance": EscrowService().get_escrow_balance(store, projectId)}


@router.post("/deposit", response_model=DepositResponse)
def deposit(
    projectId: str,
    body: DepositRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
    idem_key: Optional[str] = Depends(optional_idempotency_key),
):
    require_action(principal, ACTION_DEPOSIT)
    receipt = EscrowService().deposit(
        store,
        project_id=projectId,
        client_id=principal.actor_id,
        amount=body.amount,
        idempotency_key=idem_key,
    )
    logger.info("[escrow] deposit project=%s txn=%s replayed=%s", projectId, receipt.transaction_id, receipt.replayed)
    return {
        "escrowBalance": receipt.escrow_balance,
        "transactionId": receipt.transaction_id,
        "replayed": receipt.replayed,
    }


@router.post("/milestones/{milestoneId}/approve", response_model=MilestoneResponse)
def approve_milestone(
    projectId: str,
    milestoneId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    milestone = EscrowService().approve_milestone(
        store, project_id=projectId, milestone_id=milestoneId, actor_id=principal.actor_id
    )
    return milestone_to_resp(milestone)


@router.post("/milestones/{milestoneId}/release", response_model=ReleaseResponse)
def release_milestone(
    projectId: str,
    milestoneId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    receipt = EscrowService().release_milestone(
        store, project_id=projectId, milestone_id=milestoneId, actor_id=principal.actor_id
    )
    return {
        "releaseAmount": receipt.release_amount,
        "transactionId": receipt.transaction_id,
        "contractStatusAfter": receipt.contract_status_after,
        "replayed": receipt.replayed,
    }


@router.post("/milestones/{milestoneId}/partial-release", response_model=PartialReleaseResponse)
def partial_release(
    projectId: str,
    milestoneId: str,
    body: PartialReleaseRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
    idem_key: Optional[str] = Depends(optional_idempotency_key),
):
    receipt = EscrowService().partial_release(
        store,
        project_id=projectId,
        milestone_id=milestoneId,
        percent=body.percent,
        actor_id=principal.actor_id,
        idempotency_key=idem_key,
    )
    return {
        "cumulativeReleased": receipt.cumulative_released,
        "transactionId": receipt.transaction_id,
        "milestoneStatus": receipt.milestone_status,
        "replayed": receipt.replayed,
    }
