# campus_escrow/models/bid.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    Text,
    DateTime,
    BigInteger,
    Integer,
    ForeignKey,
    CheckConstraint,
    Index,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from campus_escrow.core.types import Party, PartyKind
from campus_escrow.db.base import Base
from campus_escrow.models.enums import BidStatus


class Bid(Base):
    """
    Proposal on a project. Mutable only while pending; accepted / rejected /
    withdrawn are terminal.
    """

    __tablename__ = "bids"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )

    proposer_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    proposer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    submitted_by: Mapped[str] = mapped_column(String(64), nullable=False)

    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    eta_days: Mapped[int] = mapped_column(Integer, nullable=False)
    pitch: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=BidStatus.pending.value)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    decided_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_bids_price_positive"),
        CheckConstraint("eta_days > 0", name="ck_bids_eta_positive"),
        Index("ix_bids_project_status", "project_id", "status"),
        # one pending/accepted bid per (project, proposer)
        Index(
            "uq_bids_active_proposer",
            "project_id",
            "proposer_kind",
            "proposer_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'accepted')"),
            sqlite_where=text("status IN ('pending', 'accepted')"),
        ),
        # at most one accepted bid per project
        Index(
            "uq_bids_one_accepted",
            "project_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
    )

    @property
    def proposer(self) -> Party:
        return Party(PartyKind(self.proposer_kind), self.proposer_id)
