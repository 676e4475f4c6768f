# Importing the package registers every table on Base.metadata.
from campus_escrow.models.user import User
from campus_escrow.models.team import Team, TeamMember
from campus_escrow.models.project import Project
from campus_escrow.models.bid import Bid
from campus_escrow.models.contract import Contract
from campus_escrow.models.milestone import Milestone
from campus_escrow.models.ledger_transaction import LedgerTransaction
from campus_escrow.models.dispute import Dispute
from campus_escrow.models.outbox import OutboxMessage
from campus_escrow.models.audit_log import AuditLogRecord

__all__ = [
    "User",
    "Team",
    "TeamMember",
    "Project",
    "Bid",
    "Contract",
    "Milestone",
    "LedgerTransaction",
    "Dispute",
    "OutboxMessage",
    "AuditLogRecord",
]
