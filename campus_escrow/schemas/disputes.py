from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class DisputeOpenRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1)


class RefundClientOutcome(BaseModel):
    kind: Literal["refund_client"]
    amount: int = Field(..., gt=0)


class ReleaseToAssigneeOutcome(BaseModel):
    kind: Literal["release_to_assignee"]
    milestoneId: str


class SplitOutcome(BaseModel):
    kind: Literal["split"]
    clientAmount: int = Field(..., ge=0)
    assigneeAmount: int = Field(..., ge=0)


DisputeOutcome = Annotated[
    Union[RefundClientOutcome, ReleaseToAssigneeOutcome, SplitOutcome],
    Field(discriminator="kind"),
]


class DisputeResolveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    outcome: DisputeOutcome


class DisputeOpenResponse(BaseModel):
    disputeId: str


class DisputeResolveResponse(BaseModel):
    disputeId: str
    transactionIds: List[str]


class DisputeResponse(BaseModel):
    disputeId: str
    projectId: str
    contractId: str
    initiatorId: str
    reason: str
    status: str
    outcome: Optional[dict] = None
    transactionIds: List[str]
    resolvedBy: Optional[str] = None
    resolvedAtIso: Optional[str] = None
