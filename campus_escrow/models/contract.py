# campus_escrow/models/contract.py
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
    UniqueConstraint,
    CheckConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from campus_escrow.core.types import Party, PartyKind
from campus_escrow.db.base import Base
from campus_escrow.models.enums import ContractStatus


class Contract(Base):
    """
    Produced only by bid acceptance.

    Immutability rule:
      - total_amount equals the accepted bid's price and never changes.
      - only status / closed_at / cancellation fields are updated.
    """

    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id", ondelete="RESTRICT"), nullable=False
    )
    accepted_bid_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("bids.id", ondelete="RESTRICT"), nullable=False
    )
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    assignee_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    assignee_id: Mapped[str] = mapped_column(String(64), nullable=False)

    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ContractStatus.active.value)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("project_id", name="uq_contracts_project"),
        CheckConstraint("total_amount > 0", name="ck_contracts_total_positive"),
    )

    @property
    def assignee(self) -> Party:
        return Party(PartyKind(self.assignee_kind), self.assignee_id)
