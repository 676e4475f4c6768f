from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class PartyKind(str, Enum):
    user = "user"
    team = "team"


class AccountKind(str, Enum):
    user = "user"
    team = "team"
    system = "system"


# system pseudo-accounts
ESCROW_PREFIX = "escrow:"
TREASURY_ID = "treasury"  # funds dev-mode wallet top-ups
PAYOUT_ID = "payout"  # receives wallet withdrawals


@dataclass(frozen=True)
class Party:
    """Proposer / assignee: a user or a team."""

    kind: PartyKind
    id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "id": self.id}

    def account(self) -> "AccountRef":
        return AccountRef(AccountKind(self.kind.value), self.id)


@dataclass(frozen=True)
class AccountRef:
    kind: AccountKind
    id: str

    @property
    def is_escrow(self) -> bool:
        return self.kind == AccountKind.system and self.id.startswith(ESCROW_PREFIX)

    @property
    def is_external(self) -> bool:
        # unbounded system accounts with no stored balance
        return self.kind == AccountKind.system and not self.is_escrow

    @property
    def escrow_project_id(self) -> str:
        return self.id[len(ESCROW_PREFIX):]

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "id": self.id}

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def escrow_account(project_id: str) -> AccountRef:
    return AccountRef(AccountKind.system, f"{ESCROW_PREFIX}{project_id}")


def user_account(user_id: str) -> AccountRef:
    return AccountRef(AccountKind.user, user_id)


TREASURY = AccountRef(AccountKind.system, TREASURY_ID)
PAYOUT = AccountRef(AccountKind.system, PAYOUT_ID)
