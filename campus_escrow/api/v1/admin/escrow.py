from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from campus_escrow.core.auth_deps import get_current_principal, require_roles
from campus_escrow.core.deps_idempotency import optional_idempotency_key
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.models.enums import UserRole
from campus_escrow.policies.rbac import (
    ACTION_ADMIN_REFUND,
    ACTION_LIFT_QUARANTINE,
    ACTION_RECONCILE,
    ACTION_REVERSE_TRANSACTION,
    Principal,
    require_action,
)
from campus_escrow.schemas.admin import QuarantineLiftRequest, ReconciliationResponse
from campus_escrow.schemas.escrow import RefundRequest, RefundResponse
from campus_escrow.schemas.ledger import ReverseTransactionRequest, TransactionResponse
from campus_escrow.schemas.projects import ProjectResponse
from campus_escrow.schemas.serializers import audit_to_resp, project_to_resp, transaction_to_resp
from campus_escrow.services.audit_service import AuditService
from campus_escrow.services.escrow_service import EscrowService
from campus_escrow.services.invariants import lift_quarantine
from campus_escrow.services.ledger_service import LedgerService
from campus_escrow.services.outbox_service import OutboxDispatcher
from campus_escrow.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/projects/{projectId}/refund", response_model=RefundResponse)
def refund_escrow(
    projectId: str,
    body: RefundRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
    idem_key: Optional[str] = Depends(optional_idempotency_key),
):
    require_action(principal, ACTION_ADMIN_REFUND)
    receipt = EscrowService().refund(
        store,
        project_id=projectId,
        amount=body.amount,
        actor_id=principal.actor_id,
        idempotency_key=idem_key,
    )
    return {
        "escrowBalance": receipt.escrow_balance,
        "transactionId": receipt.transaction_id,
        "replayed": receipt.replayed,
    }


@router.post("/projects/{projectId}/lift-quarantine", response_model=ProjectResponse)
def lift_project_quarantine(
    projectId: str,
    body: QuarantineLiftRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    require_action(principal, ACTION_LIFT_QUARANTINE)
    project = lift_quarantine(store, project_id=projectId, admin_id=principal.actor_id, note=body.note)
    logger.warning("[admin] quarantine lifted project=%s by=%s", projectId, principal.actor_id)
    return project_to_resp(project)


@router.post("/transactions/{transactionId}/reverse", response_model=TransactionResponse)
def reverse_transaction(
    transactionId: str,
    body: ReverseTransactionRequest,
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    require_action(principal, ACTION_REVERSE_TRANSACTION)
    result = LedgerService().reverse_transaction(
        store, entry_id=transactionId, admin_id=principal.actor_id, reason=body.reason
    )
    return transaction_to_resp(result.transaction)


@router.post("/reconciliation", response_model=ReconciliationResponse)
def run_reconciliation(
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    require_action(principal, ACTION_RECONCILE)
    report = ReconciliationService().sweep(store)
    return {
        "ok": report.ok,
        "accountsChecked": report.accounts_checked,
        "transactionsScanned": report.transactions_scanned,
        "mismatches": [
            {"account": m.account, "stored": m.stored, "computed": m.computed} for m in report.mismatches
        ],
        "underfunded": [
            {"projectId": u.project_id, "escrowBalance": u.escrow_balance, "outstanding": u.outstanding}
            for u in report.underfunded
        ],
    }


@router.post("/outbox/dispatch")
def dispatch_outbox(
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_roles(UserRole.admin)),
):
    stats = OutboxDispatcher().dispatch_pending(store)
    return {"delivered": stats.delivered, "retried": stats.retried, "failed": stats.failed}


@router.get("/projects/{projectId}/audit")
def project_audit_trail(
    projectId: str,
    store: Store = Depends(get_store),
    principal: Principal = Depends(require_roles(UserRole.admin)),
) -> List[dict]:
    with store.read() as tx:
        tx.require("projects", projectId, label="Project")
        records = AuditService().list_for_project(tx, projectId)
    return [audit_to_resp(r) for r in records]
