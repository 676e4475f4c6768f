from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, DateTime, Integer, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from campus_escrow.db.base import Base, JSONType


class AuditLogRecord(Base):
    """
    Audit trail record.
    - Append-only (never UPDATE)
    - Stores actor, project, action, severity, payload hash and a safe payload summary.
    """
    __tablename__ = "audit_log_records"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    # Correlation
    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)

    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # What happened
    action: Mapped[str] = mapped_column(String(96), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False, default="info")

    # Payload traceability (hash + safe summary)
    payload_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    payload_summary_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    # Optional result reference id (transaction / contract / dispute)
    ref_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_audit_project", "project_id"),
        Index("ix_audit_action", "action"),
        Index("ix_audit_created", "created_at"),
    )
