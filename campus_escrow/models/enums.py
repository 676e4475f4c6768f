#campus_escrow/models/enums.py
from __future__ import annotations
from enum import Enum


class UserRole(str, Enum):
    student = "student"
    client = "client"
    admin = "admin"


class TeamMemberRole(str, Enum):
    lead = "lead"
    member = "member"


class ProjectStatus(str, Enum):
    draft = "draft"
    open = "open"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    disputed = "disputed"


class BidStatus(str, Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    withdrawn = "withdrawn"


class ContractStatus(str, Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"
    disputed = "disputed"


class MilestoneStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    submitted = "submitted"
    approved = "approved"
    released = "released"
    cancelled = "cancelled"


class TransactionType(str, Enum):
    escrow_fund = "escrow_fund"
    milestone_release = "milestone_release"
    refund = "refund"
    adjustment = "adjustment"
    withdrawal = "withdrawal"


class TransactionStatus(str, Enum):
    pending = "pending"
    settled = "settled"
    reversed = "reversed"


class DisputeStatus(str, Enum):
    open = "open"
    resolved = "resolved"


class OutboxStatus(str, Enum):
    pending = "pending"
    delivered = "delivered"
    failed = "failed"


# bids that count against the one-active-bid-per-proposer rule
ACTIVE_BID_STATUSES = (BidStatus.pending.value, BidStatus.accepted.value)

# projects that must carry an accepted bid
CONTRACTED_PROJECT_STATUSES = (
    ProjectStatus.in_progress.value,
    ProjectStatus.completed.value,
    ProjectStatus.disputed.value,
)

AUTO_REJECT_REASON = "auto_rejected_on_competitor_acceptance"
