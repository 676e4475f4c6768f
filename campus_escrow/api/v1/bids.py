# campus_escrow/api/v1/bids.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from campus_escrow.core.auth_deps import get_current_principal
from campus_escrow.core.types import PartyKind
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.models.enums import BidStatus
from campus_escrow.policies.rbac import ACTION_SUBMIT_BID, Principal, require_action
from campus_escrow.schemas.bids import AcceptBidResponse, BidRejectRequest, BidResponse, BidSubmitRequest
from campus_escrow.schemas.serializers import bid_to_resp, contract_to_resp, milestone_to_resp
from campus_escrow.services.bids_service import BidDraft, BidService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bids"])


@router.post("/projects/{projectId}/bids", response_model=BidResponse, status_code=201)
def submit_bid(
    projectId: str,
    body: BidSubmitRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    require_action(principal, ACTION_SUBMIT_BID)
    bid = BidService().submit(
        store,
        BidDraft(
            project_id=projectId,
            actor_id=principal.actor_id,
            price=body.price,
            eta_days=body.etaDays,
            pitch=body.pitch,
            proposer_kind=PartyKind(body.proposerKind),
            proposer_id=body.proposerId,
        ),
    )
    return bid_to_resp(bid)


@router.get("/projects/{projectId}/bids", response_model=list[BidResponse])
def list_bids(
    projectId: str,
    status: Optional[BidStatus] = Query(default=None),
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return [bid_to_resp(b) for b in BidService().list_for_project(store, projectId, status=status)]


@router.get("/bids/{bidId}", response_model=BidResponse)
def get_bid(
    bidId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return bid_to_resp(BidService().get(store, bidId))


@router.post("/bids/{bidId}/withdraw", response_model=BidResponse)
def withdraw_bid(
    bidId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    return bid_to_resp(BidService().withdraw(store, bid_id=bidId, actor_id=principal.actor_id))


@router.post("/bids/{bidId}/reject", response_model=BidResponse)
def reject_bid(
    bidId: str,
    body: BidRejectRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    bid = BidService().reject(store, bid_id=bidId, actor_id=principal.actor_id, reason=body.reason)
    return bid_to_resp(bid)


@router.post("/bids/{bidId}/accept", response_model=AcceptBidResponse)
def accept_bid(
    bidId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    result = BidService().accept(store, bid_id=bidId, actor_id=principal.actor_id)
    return {
        "contract": contract_to_resp(result.contract),
        "milestones": [milestone_to_resp(m) for m in result.milestones],
        "rejectedBidIds": result.rejected_bid_ids,
    }
