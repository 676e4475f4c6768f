from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request


async def optional_idempotency_key(request: Request) -> Optional[str]:
    """
    Idempotency-Key header, when the caller sends one. It becomes the nonce of
    the ledger entry id, so a resent request replays the original transaction.
    """
    key = request.headers.get("Idempotency-Key")
    if key is None:
        return None
    key = key.strip()
    if not key:
        raise HTTPException(status_code=400, detail="Empty Idempotency-Key header.")
    if len(key) > 128:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long.")
    request.state.idempotency_key = key
    return key
