# campus_escrow/models/user.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import String, DateTime, Boolean, BigInteger, Integer, CheckConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from campus_escrow.db.base import Base


class User(Base):
    """
    Wallet holder. wallet_balance only moves through ledger entries;
    opening_balance is the balance the account was created with.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False, server_default="")
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    wallet_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    opening_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_users_wallet_nonnegative"),
    )
