# campus_escrow/api/v1/contracts.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from campus_escrow.core.auth_deps import get_current_principal
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.policies.rbac import Principal
from campus_escrow.schemas.contracts import (
    ContractCancelRequest,
    ContractResponse,
    MilestoneRejectRequest,
    MilestoneResponse,
    MilestoneSubmitRequest,
)
from campus_escrow.schemas.serializers import contract_to_resp, milestone_to_resp
from campus_escrow.services.contract_service import ContractService
from campus_escrow.services.milestone_service import MilestoneService

router = APIRouter(tags=["contracts"])


@router.get("/projects/{projectId}/contract", response_model=ContractResponse)
def get_contract_for_project(
    projectId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return contract_to_resp(ContractService().get_for_project(store, projectId))


@router.get("/contracts/{contractId}", response_model=ContractResponse)
def get_contract(
    contractId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return contract_to_resp(ContractService().get_contract(store, contractId))


@router.post("/contracts/{contractId}/cancel", response_model=ContractResponse)
def cancel_contract(
    contractId: str,
    body: ContractCancelRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    contract = ContractService().cancel_contract(
        store, contract_id=contractId, actor_id=principal.actor_id, reason=body.reason
    )
    return contract_to_resp(contract)


# ─────────────────────────────────────────────
# MILESTONES (work side)
# ─────────────────────────────────────────────

@router.get("/contracts/{contractId}/milestones", response_model=list[MilestoneResponse])
def list_milestones(
    contractId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return [milestone_to_resp(m) for m in MilestoneService().list_for_contract(store, contractId)]


@router.get("/milestones/{milestoneId}", response_model=MilestoneResponse)
def get_milestone(
    milestoneId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return milestone_to_resp(MilestoneService().get(store, milestoneId))


@router.post("/milestones/{milestoneId}/start", response_model=MilestoneResponse)
def start_milestone(
    milestoneId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return milestone_to_resp(MilestoneService().start(store, milestone_id=milestoneId, actor_id=principal.actor_id))


@router.post("/milestones/{milestoneId}/submit", response_model=MilestoneResponse)
def submit_milestone(
    milestoneId: str,
    body: MilestoneSubmitRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    milestone = MilestoneService().submit(
        store,
        milestone_id=milestoneId,
        actor_id=principal.actor_id,
        artifacts=body.artifacts,
        note=body.note,
    )
    return milestone_to_resp(milestone)


@router.post("/milestones/{milestoneId}/reject", response_model=MilestoneResponse)
def reject_milestone(
    milestoneId: str,
    body: MilestoneRejectRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    milestone = MilestoneService().reject(
        store, milestone_id=milestoneId, actor_id=principal.actor_id, feedback=body.feedback
    )
    return milestone_to_resp(milestone)
