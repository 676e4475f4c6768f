# campus_escrow/models/milestone.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    String,
    Text,
    Date,
    DateTime,
    BigInteger,
    Integer,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from campus_escrow.db.base import Base, JSONType
from campus_escrow.models.enums import MilestoneStatus


class Milestone(Base):
    """
    share is computed once at contract creation.
    released_to_date accumulates partial releases and never exceeds share;
    released_amount is set (to share) only on the transition to released.
    """

    __tablename__ = "milestones"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    contract_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[str] = mapped_column(String(64), nullable=False)

    order: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-based, dense
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    percentage_bp: Mapped[int] = mapped_column(Integer, nullable=False)
    share: Mapped[int] = mapped_column(BigInteger, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MilestoneStatus.pending.value)

    released_to_date: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    released_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    release_transaction_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    rejection_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    artifacts: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    submission_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("contract_id", "order", name="uq_milestones_contract_order"),
        CheckConstraint("share >= 0", name="ck_milestones_share_nonnegative"),
        CheckConstraint("released_to_date >= 0 AND released_to_date <= share", name="ck_milestones_release_cap"),
        CheckConstraint("percentage_bp >= 0 AND percentage_bp <= 10000", name="ck_milestones_pct_range"),
        Index("ix_milestones_project", "project_id"),
    )

    @property
    def remaining(self) -> int:
        return self.share - self.released_to_date
