from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from campus_escrow.core.hashing import payload_hash
from campus_escrow.core.middleware import current_request_id
from campus_escrow.core.money import new_id
from campus_escrow.db.store import StoreTx
from campus_escrow.models.audit_log import AuditLogRecord

logger = logging.getLogger(__name__)


class AuditAction:
    # Escrow
    ESCROW_DEPOSIT = "ESCROW_DEPOSIT"
    ESCROW_REFUND = "ESCROW_REFUND"
    MILESTONE_APPROVED = "MILESTONE_APPROVED"
    MILESTONE_RELEASED = "MILESTONE_RELEASED"
    MILESTONE_PARTIAL_RELEASE = "MILESTONE_PARTIAL_RELEASE"

    # Bids / contracts
    BID_ACCEPTED = "BID_ACCEPTED"
    CONTRACT_CREATED = "CONTRACT_CREATED"
    CONTRACT_CANCELLED = "CONTRACT_CANCELLED"

    # Disputes
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"

    # Ledger
    TRANSACTION_REVERSED = "TRANSACTION_REVERSED"

    # Integrity
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
    QUARANTINE_LIFTED = "QUARANTINE_LIFTED"


class AuditService:
    def write(
        self,
        tx: StoreTx,
        *,
        action: str,
        actor_id: Optional[str],
        project_id: Optional[str],
        payload_summary: Dict[str, Any],
        severity: str = "info",
        ref_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AuditLogRecord:
        """
        Append-only audit record insert, inside the caller's transaction.

        payload_summary MUST be safe: ids, amounts and statuses only.
        """
        return tx.set(
            "audit_log",
            new_id(),
            {
                "request_id": request_id or current_request_id(),
                "actor_id": actor_id,
                "project_id": project_id,
                "action": action,
                "severity": severity,
                "payload_hash": payload_hash(payload_summary),
                "payload_summary_json": payload_summary,
                "ref_id": ref_id,
                "created_at": tx.server_timestamp(),
            },
        )

    def list_for_project(self, tx: StoreTx, project_id: str):
        return tx.query("audit_log", project_id=project_id, order_by="created_at")
