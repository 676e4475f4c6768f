from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class MilestoneResponse(BaseModel):
    milestoneId: str
    contractId: str
    projectId: str
    order: int
    title: str
    percentage: str
    share: int
    dueDate: Optional[str] = None
    status: str
    releasedToDate: int
    releasedAmount: Optional[int] = None
    releaseTransactionId: Optional[str] = None
    rejectionCount: int
    lastFeedback: Optional[str] = None
    artifacts: List[Dict[str, Any]]


class ContractResponse(BaseModel):
    contractId: str
    projectId: str
    acceptedBidId: str
    clientId: str
    assignee: dict
    totalAmount: int
    status: str
    startedAtIso: Optional[str] = None
    closedAtIso: Optional[str] = None


class ContractCancelRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1)


class MilestoneSubmitRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    artifacts: List[Dict[str, Any]] = Field(default_factory=list)
    note: Optional[str] = None


class MilestoneRejectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    feedback: str = Field(..., min_length=1)
