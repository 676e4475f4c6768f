from __future__ import annotations

from fastapi import APIRouter, Depends

from campus_escrow.core.auth_deps import get_current_principal
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store
from campus_escrow.policies.rbac import Principal
from campus_escrow.services.outbox_service import OutboxDispatcher

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def list_my_notifications(
    store: Store = Depends(get_store),
    principal: Principal = Depends(get_current_principal),
):
    messages = OutboxDispatcher().list_for_recipient(store, principal.actor_id)
    return {
        "notifications": [
            {
                "id": m.id,
                "topic": m.topic,
                "projectId": m.project_id,
                "payload": m.payload_json,
                "status": m.status,
                "createdAt": m.created_at.isoformat() if m.created_at else None,
            }
            for m in messages
        ]
    }
