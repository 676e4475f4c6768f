#campus_escrow/schemas/serializers.py
from __future__ import annotations

from typing import Any, Dict

from campus_escrow.core.money import format_percentage
from campus_escrow.models.audit_log import AuditLogRecord
from campus_escrow.models.bid import Bid
from campus_escrow.models.contract import Contract
from campus_escrow.models.dispute import Dispute
from campus_escrow.models.ledger_transaction import LedgerTransaction
from campus_escrow.models.milestone import Milestone
from campus_escrow.models.project import Project


def _iso(dt):
    return dt.isoformat() if dt else None


def project_to_resp(p: Project) -> Dict[str, Any]:
    return {
        "projectId": p.id,
        "clientId": p.client_id,
        "title": p.title,
        "description": p.description or "",
        "status": p.status,
        "escrowBalance": p.escrow_balance,
        "bidCount": p.bid_count,
        "acceptedBidId": p.accepted_bid_id,
        "assignee": p.assignee.to_dict() if p.assignee else None,
        "milestonePlan": [
            {
                "title": m["title"],
                "percentage": format_percentage(m["percentage_bp"]),
                "dueDate": m.get("due_date"),
            }
            for m in (p.milestone_plan or [])
        ],
        "quarantined": bool(p.quarantined),
        "createdAtIso": _iso(p.created_at),
    }


def bid_to_resp(b: Bid) -> Dict[str, Any]:
    return {
        "bidId": b.id,
        "projectId": b.project_id,
        "proposer": b.proposer.to_dict(),
        "submittedBy": b.submitted_by,
        "price": b.price,
        "etaDays": b.eta_days,
        "pitch": b.pitch,
        "status": b.status,
        "rejectionReason": b.rejection_reason,
        "createdAtIso": _iso(b.created_at),
    }


def contract_to_resp(c: Contract) -> Dict[str, Any]:
    return {
        "contractId": c.id,
        "projectId": c.project_id,
        "acceptedBidId": c.accepted_bid_id,
        "clientId": c.client_id,
        "assignee": c.assignee.to_dict(),
        "totalAmount": c.total_amount,
        "status": c.status,
        "startedAtIso": _iso(c.started_at),
        "closedAtIso": _iso(c.closed_at),
    }


def milestone_to_resp(m: Milestone) -> Dict[str, Any]:
    return {
        "milestoneId": m.id,
        "contractId": m.contract_id,
        "projectId": m.project_id,
        "order": m.order,
        "title": m.title,
        "percentage": format_percentage(m.percentage_bp),
        "share": m.share,
        "dueDate": m.due_date.isoformat() if m.due_date else None,
        "status": m.status,
        "releasedToDate": m.released_to_date,
        "releasedAmount": m.released_amount,
        "releaseTransactionId": m.release_transaction_id,
        "rejectionCount": m.rejection_count,
        "lastFeedback": m.last_feedback,
        "artifacts": m.artifacts or [],
    }


def transaction_to_resp(t: LedgerTransaction) -> Dict[str, Any]:
    return {
        "transactionId": t.id,
        "projectId": t.project_id,
        "source": t.source.to_dict(),
        "destination": t.destination.to_dict(),
        "amount": t.amount,
        "type": t.type,
        "status": t.status,
        "metadata": t.metadata_json or {},
        "createdAtIso": _iso(t.created_at),
    }


def dispute_to_resp(d: Dispute) -> Dict[str, Any]:
    return {
        "disputeId": d.id,
        "projectId": d.project_id,
        "contractId": d.contract_id,
        "initiatorId": d.initiator_id,
        "reason": d.reason,
        "status": d.status,
        "outcome": d.outcome_json,
        "transactionIds": list(d.transaction_ids or []),
        "resolvedBy": d.resolved_by,
        "resolvedAtIso": _iso(d.resolved_at),
    }


def audit_to_resp(a: AuditLogRecord) -> Dict[str, Any]:
    return {
        "auditId": a.id,
        "projectId": a.project_id,
        "actorId": a.actor_id,
        "action": a.action,
        "severity": a.severity,
        "refId": a.ref_id,
        "requestId": a.request_id,
        "payloadHash": a.payload_hash,
        "payload": a.payload_summary_json or {},
        "createdAtIso": _iso(a.created_at),
    }
