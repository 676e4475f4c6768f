#campus_escrow/core/auth_deps.py
from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError

from campus_escrow.core.security import decode_token
from campus_escrow.models.enums import UserRole
from campus_escrow.policies.rbac import Principal

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=True)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Principal:
    """
    Resolve the bearer token to a Principal.

    The token must be signed with our key, issued by the configured issuer,
    unexpired, and carry `sub` plus a `role` in {client, student, admin}.
    Whether the actor still exists is left to the services, which load the
    user row inside their own transaction.
    """
    try:
        payload = decode_token(creds.credentials)
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired.")
    except JWTError as exc:
        logger.info("[auth] rejected token: %s", exc)
        raise HTTPException(status_code=401, detail="Invalid token.")

    actor_id = payload.get("sub")
    role = payload.get("role")
    if not role or not actor_id:
        raise HTTPException(status_code=401, detail="Token missing required claims.")

    try:
        role_enum = UserRole(role)
    except ValueError:
        raise HTTPException(status_code=401, detail=f"Unknown role {role!r} in token.")

    principal = Principal(
        actor_id=str(actor_id),
        role=role_enum,
        display_name=str(payload.get("display_name") or "Unknown"),
    )
    request.state.principal = principal
    return principal


def require_roles(*roles: UserRole) -> Callable[..., Principal]:
    """Dependency factory for routes that only some roles may call at all."""

    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"Role {principal.role.value} may not call this endpoint.",
            )
        return principal

    return _dep
