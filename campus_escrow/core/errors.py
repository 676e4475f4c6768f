from __future__ import annotations

from typing import Any, Dict, Optional


class EscrowError(Exception):
    """
    Base of the closed error taxonomy.

    Every error carries a short machine-readable `code` and the HTTP status the
    API adapter maps it to. Messages are safe to show to the caller.
    """

    code: str = "error"
    http_status: int = 500

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(EscrowError):
    code = "not_found"
    http_status = 404


class ForbiddenError(EscrowError):
    code = "forbidden"
    http_status = 403


class InvalidStateError(EscrowError):
    code = "invalid_state"
    http_status = 409


class QuarantinedError(InvalidStateError):
    """Writes refused on a project held for manual inspection."""


class InsufficientFundsError(EscrowError):
    code = "insufficient_funds"
    http_status = 409


class ConflictError(EscrowError):
    """Optimistic-concurrency conflict. Recovered locally by the Store retry loop."""

    code = "conflict"
    http_status = 409


class StoreTimeoutError(EscrowError):
    """Commit outcome unknown (timeout / dropped connection)."""

    code = "conflict"
    http_status = 503


class ConflictExceededError(EscrowError):
    code = "conflict_exceeded"
    http_status = 503


class IdempotentReplay(EscrowError):
    """Entry already applied. Converted into success at the ledger boundary."""

    code = "idempotent_replay"
    http_status = 200


class InvariantViolationError(EscrowError):
    code = "invariant_violation"
    http_status = 500

    def __init__(self, message: str, *, project_id: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.project_id = project_id
