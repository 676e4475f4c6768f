from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class DepositRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: int = Field(..., gt=0, description="Minor units")


class DepositResponse(BaseModel):
    escrowBalance: int
    transactionId: str
    replayed: bool = False


class ReleaseResponse(BaseModel):
    releaseAmount: int
    transactionId: Optional[str] = None
    contractStatusAfter: str
    replayed: bool = False


class PartialReleaseRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    percent: Union[int, str]


class PartialReleaseResponse(BaseModel):
    cumulativeReleased: int
    transactionId: str
    milestoneStatus: str
    replayed: bool = False


class RefundRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: int = Field(..., gt=0)


class RefundResponse(BaseModel):
    escrowBalance: int
    transactionId: str
    replayed: bool = False


class EscrowBalanceResponse(BaseModel):
    projectId: str
    escrowBalance: int
