from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Optional


def canonical_dumps(obj: Dict[str, Any]) -> str:
    # Deterministic JSON string: sorted keys, no whitespace
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def payload_hash(payload: Dict[str, Any]) -> str:
    return sha256_hex(canonical_dumps(payload))


def ledger_entry_id(
    project_id: Optional[str],
    intent: str,
    milestone_id: Optional[str] = None,
    nonce: Optional[str] = None,
) -> str:
    """
    Content-hash idempotency key for a ledger entry: a retry of the same
    (project, intent, milestone, nonce) maps to the same 128-bit id.
    """
    digest = payload_hash(
        {
            "project_id": project_id,
            "intent": intent,
            "milestone_id": milestone_id,
            "nonce": nonce,
        }
    )
    return digest[:32]
