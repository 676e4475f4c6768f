#campus_escrow/schemas/projects.py
from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class MilestonePlanItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=256)
    # whole percent or a decimal string with up to two places ("33.33")
    percentage: Union[int, str]
    dueDate: Optional[str] = None


class ProjectCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, max_length=256)
    description: str = ""
    milestones: List[MilestonePlanItem] = Field(default_factory=list)


class ProjectResponse(BaseModel):
    projectId: str
    clientId: str
    title: str
    description: str
    status: str
    escrowBalance: int
    bidCount: int
    acceptedBidId: Optional[str] = None
    assignee: Optional[dict] = None
    milestonePlan: List[dict]
    quarantined: bool
    createdAtIso: Optional[str] = None
