from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from campus_escrow.core.config import get_settings
from campus_escrow.db.session import get_store
from campus_escrow.db.store import Store

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request, store: Store = Depends(get_store)):
    """Liveness plus a database round trip; 503 when the store is unreachable."""
    db_ok = store.ping()
    body = {
        "status": "ok" if db_ok else "degraded",
        "database": "ok" if db_ok else "unreachable",
        "environment": get_settings().environment,
        "request_id": getattr(request.state, "request_id", None),
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=body)
