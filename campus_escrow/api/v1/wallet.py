# campus_escrow/api/v1/wallet.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from campus_escrow.core.auth_deps import get_current_principal
from campus_escrow.core.deps_idempotency import optional_idempotency_key
from campus_escrow.core.errors import ForbiddenError
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.models.enums import UserRole
from campus_escrow.policies.rbac import Principal
from campus_escrow.schemas.ledger import (
    TransactionListResponse,
    WalletResponse,
    WithdrawRequest,
    WithdrawResponse,
)
from campus_escrow.schemas.serializers import transaction_to_resp
from campus_escrow.services.ledger_service import LedgerService
from campus_escrow.services.projects_service import ProjectService
from campus_escrow.services.wallet_service import WalletService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["wallet"])


@router.get("/wallet", response_model=WalletResponse)
def get_my_wallet(
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    view = WalletService().get_wallet(store, principal.actor_id)
    return {"account": view.account.to_dict(), "balance": view.balance, "openingBalance": view.opening_balance}


@router.get("/wallet/transactions", response_model=TransactionListResponse)
def list_my_transactions(
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    rows = WalletService().list_transactions(store, principal.actor_id)
    return {"transactions": [transaction_to_resp(t) for t in rows]}


@router.post("/wallet/withdraw", response_model=WithdrawResponse)
def withdraw(
    body: WithdrawRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
    idem_key: Optional[str] = Depends(optional_idempotency_key),
):
    receipt = WalletService().withdraw(
        store, user_id=principal.actor_id, amount=body.amount, idempotency_key=idem_key
    )
    return {
        "walletBalance": receipt.wallet_balance,
        "transactionId": receipt.transaction_id,
        "replayed": receipt.replayed,
    }


@router.get("/projects/{projectId}/transactions", response_model=TransactionListResponse)
def list_project_transactions(
    projectId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    """Ledger view of one project: visible to its client, its assignee and admins."""
    project = ProjectService().get_project(store, projectId)
    if principal.role != UserRole.admin and principal.actor_id not in (project.client_id, project.assignee_id):
        raise ForbiddenError("Only the project parties may view its ledger.")
    rows = LedgerService().list_for_project(store, projectId)
    return {"transactions": [transaction_to_resp(t) for t in rows]}
