from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class QuarantineLiftRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    note: str = Field(..., min_length=1)


class BalanceMismatchResponse(BaseModel):
    account: str
    stored: int
    computed: int


class UnderfundedProjectResponse(BaseModel):
    projectId: str
    escrowBalance: int
    outstanding: int


class ReconciliationResponse(BaseModel):
    ok: bool
    accountsChecked: int
    transactionsScanned: int
    mismatches: List[BalanceMismatchResponse]
    underfunded: List[UnderfundedProjectResponse]
