from __future__ import annotations

import uuid
from decimal import Decimal, InvalidOperation
from typing import List, Sequence, Union

from campus_escrow.core.errors import InvalidStateError

# 100 % == 10_000 basis points
PERCENT_SCALE = 10_000

PercentInput = Union[int, str, Decimal]


def new_id() -> str:
    """Opaque 128-bit identifier as 32 lowercase hex chars."""
    return uuid.uuid4().hex


def require_amount(amount: int, *, field: str = "amount") -> int:
    # bool is an int subclass; never accept it as money
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidStateError(f"{field} must be an integer number of minor units.")
    if amount <= 0:
        raise InvalidStateError(f"{field} must be positive.")
    return amount


def parse_percentage(value: PercentInput) -> int:
    """
    Whole percent (int) or a decimal string / Decimal with at most two decimal
    places -> basis points in [0, 10_000].
    """
    if isinstance(value, bool):
        raise InvalidStateError("percentage must be numeric.")
    if isinstance(value, int):
        bp = value * 100
    elif isinstance(value, (str, Decimal)):
        try:
            d = Decimal(value)
        except InvalidOperation:
            raise InvalidStateError(f"Invalid percentage: {value!r}.")
        if not d.is_finite():
            raise InvalidStateError(f"Invalid percentage: {value!r}.")
        scaled = d * 100
        if scaled != scaled.to_integral_value():
            raise InvalidStateError("percentage supports at most two decimal places.")
        bp = int(scaled)
    else:
        raise InvalidStateError("percentage must be an int, str or Decimal.")

    if bp < 0 or bp > PERCENT_SCALE:
        raise InvalidStateError("percentage must be within [0, 100].")
    return bp


def format_percentage(bp: int) -> str:
    return str((Decimal(bp) / 100).quantize(Decimal("0.01")))


def portion(amount: int, pct_bp: int) -> int:
    """floor(amount * pct / 100)"""
    return amount * pct_bp // PERCENT_SCALE


def split_shares(total_amount: int, percentages_bp: Sequence[int]) -> List[int]:
    """
    Divide a contract total by milestone percentages.

    All but the last milestone get floor(total * pct / 100); the last one takes
    the remainder, so the shares always sum to total_amount exactly.
    """
    if not percentages_bp:
        return [total_amount]
    if sum(percentages_bp) != PERCENT_SCALE:
        raise InvalidStateError("Milestone percentages must sum to 100.")

    shares = [portion(total_amount, pct) for pct in percentages_bp[:-1]]
    shares.append(total_amount - sum(shares))
    return shares
