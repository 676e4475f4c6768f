# campus_escrow/api/v1/disputes.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from campus_escrow.core.auth_deps import get_current_principal
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.policies.rbac import Principal
from campus_escrow.schemas.disputes import DisputeOpenRequest, DisputeOpenResponse, DisputeResponse
from campus_escrow.schemas.serializers import dispute_to_resp
from campus_escrow.services.dispute_service import DisputeService

router = APIRouter(tags=["disputes"])


@router.post("/projects/{projectId}/disputes", response_model=DisputeOpenResponse, status_code=201)
def open_dispute(
    projectId: str,
    body: DisputeOpenRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    dispute_id = DisputeService().open_dispute(
        store, project_id=projectId, initiator_id=principal.actor_id, reason=body.reason
    )
    return {"disputeId": dispute_id}


@router.get("/projects/{projectId}/disputes", response_model=list[DisputeResponse])
def list_disputes(
    projectId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return [dispute_to_resp(d) for d in DisputeService().list_for_project(store, projectId)]


@router.get("/disputes/{disputeId}", response_model=DisputeResponse)
def get_dispute(
    disputeId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return dispute_to_resp(DisputeService().get(store, disputeId))
