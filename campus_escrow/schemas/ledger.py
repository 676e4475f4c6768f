from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TransactionResponse(BaseModel):
    transactionId: str
    projectId: Optional[str] = None
    source: dict
    destination: dict
    amount: int
    type: str
    status: str
    metadata: Dict[str, Any]
    createdAtIso: Optional[str] = None


class WalletResponse(BaseModel):
    account: dict
    balance: int
    openingBalance: int


class WithdrawRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: int = Field(..., gt=0)


class WithdrawResponse(BaseModel):
    walletBalance: int
    transactionId: str
    replayed: bool = False


class ReverseTransactionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1)


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]
