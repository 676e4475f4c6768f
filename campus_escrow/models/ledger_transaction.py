# campus_escrow/models/ledger_transaction.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    String,
    DateTime,
    BigInteger,
    Integer,
    CheckConstraint,
    Index,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from campus_escrow.core.types import AccountKind, AccountRef
from campus_escrow.db.base import Base, JSONType
from campus_escrow.models.enums import TransactionStatus


class LedgerTransaction(Base):
    """
    Append-only double-entry ledger row.

    - id is the idempotency key (content hash of project/intent/milestone/nonce)
    - never deleted; the only update is settled -> reversed
    """

    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    from_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    from_id: Mapped[str] = mapped_column(String(128), nullable=False)
    to_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    to_id: Mapped[str] = mapped_column(String(128), nullable=False)

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=TransactionStatus.settled.value)

    reverses_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    metadata_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        Index("ix_transactions_project", "project_id", "created_at"),
        Index("ix_transactions_from", "from_kind", "from_id"),
        Index("ix_transactions_to", "to_kind", "to_id"),
    )

    @property
    def source(self) -> AccountRef:
        return AccountRef(AccountKind(self.from_kind), self.from_id)

    @property
    def destination(self) -> AccountRef:
        return AccountRef(AccountKind(self.to_kind), self.to_id)
