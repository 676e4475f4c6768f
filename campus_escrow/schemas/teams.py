from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


class TeamCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=256)


class TeamMemberAddRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    userId: str
    role: Literal["lead", "member"] = "member"


class TeamMemberResponse(BaseModel):
    userId: str
    role: str


class TeamResponse(BaseModel):
    teamId: str
    ownerUserId: str
    name: str
    teamWalletBalance: int
    members: List[TeamMemberResponse] = []
