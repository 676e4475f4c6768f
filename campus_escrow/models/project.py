# campus_escrow/models/project.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    String,
    Text,
    DateTime,
    Boolean,
    BigInteger,
    Integer,
    ForeignKey,
    CheckConstraint,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from campus_escrow.core.types import Party, PartyKind
from campus_escrow.db.base import Base, JSONType
from campus_escrow.models.enums import ProjectStatus


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )

    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ProjectStatus.draft.value
    )

    # [{"title", "percentage_bp", "due_date"}]; empty => one implicit 100% milestone
    milestone_plan: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    escrow_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    bid_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    accepted_bid_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    assignee_kind: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    assignee_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # read-only hold after an invariant violation
    quarantined: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quarantine_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("escrow_balance >= 0", name="ck_projects_escrow_nonnegative"),
        Index("ix_projects_client_status", "client_id", "status"),
    )

    @property
    def assignee(self) -> Optional[Party]:
        if not self.assignee_kind or not self.assignee_id:
            return None
        return Party(PartyKind(self.assignee_kind), self.assignee_id)
