#campus_escrow/schemas/bids.py
from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from campus_escrow.schemas.contracts import ContractResponse, MilestoneResponse


class BidSubmitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    price: int = Field(..., gt=0, description="Minor units")
    etaDays: int = Field(..., gt=0)
    pitch: str = Field(..., min_length=1)
    proposerKind: Literal["user", "team"] = "user"
    proposerId: Optional[str] = None


class BidRejectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = None


class BidResponse(BaseModel):
    bidId: str
    projectId: str
    proposer: dict
    submittedBy: str
    price: int
    etaDays: int
    pitch: str
    status: str
    rejectionReason: Optional[str] = None
    createdAtIso: Optional[str] = None


class AcceptBidResponse(BaseModel):
    contract: ContractResponse
    milestones: List[MilestoneResponse]
    rejectedBidIds: List[str]
