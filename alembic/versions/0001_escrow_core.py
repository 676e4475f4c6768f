"""escrow core tables

Revision ID: 0001_escrow_core
Revises:
Create Date: 2026-10-18 20:10:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_escrow_core'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _created_at():
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("CURRENT_TIMESTAMP"),
        nullable=False,
    )


def _updated_at():
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True)


def _version():
    return sa.Column("version", sa.Integer(), nullable=False)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("display_name", sa.String(length=256), server_default="", nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False),
        sa.Column("wallet_balance", sa.BigInteger(), nullable=False),
        sa.Column("opening_balance", sa.BigInteger(), nullable=False),
        _created_at(),
        _updated_at(),
        _version(),
        sa.CheckConstraint("wallet_balance >= 0", name="ck_users_wallet_nonnegative"),
    )

    op.create_table(
        "teams",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "owner_user_id",
            sa.String(length=64),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("team_wallet_balance", sa.BigInteger(), nullable=False),
        sa.Column("opening_balance", sa.BigInteger(), nullable=False),
        _created_at(),
        _updated_at(),
        _version(),
        sa.CheckConstraint("team_wallet_balance >= 0", name="ck_teams_wallet_nonnegative"),
    )

    op.create_table(
        "team_members",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "team_id",
            sa.String(length=64),
            sa.ForeignKey("teams.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.String(length=64),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(length=16), nullable=False),
        _created_at(),
        _updated_at(),
        _version(),
        sa.UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
    )

    op.create_table(
        "projects",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "client_id",
            sa.String(length=64),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("milestone_plan", JSON, nullable=False),
        sa.Column("escrow_balance", sa.BigInteger(), nullable=False),
        sa.Column("bid_count", sa.Integer(), nullable=False),
        sa.Column("accepted_bid_id", sa.String(length=64), nullable=True),
        sa.Column("assignee_kind", sa.String(length=16), nullable=True),
        sa.Column("assignee_id", sa.String(length=64), nullable=True),
        sa.Column("quarantined", sa.Boolean(), nullable=False),
        sa.Column("quarantine_reason", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        _version(),
        sa.CheckConstraint("escrow_balance >= 0", name="ck_projects_escrow_nonnegative"),
    )
    op.create_index("ix_projects_client_status", "projects", ["client_id", "status"])

    op.create_table(
        "bids",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "project_id",
            sa.String(length=64),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("proposer_kind", sa.String(length=16), nullable=False),
        sa.Column("proposer_id", sa.String(length=64), nullable=False),
        sa.Column("submitted_by", sa.String(length=64), nullable=False),
        sa.Column("price", sa.BigInteger(), nullable=False),
        sa.Column("eta_days", sa.Integer(), nullable=False),
        sa.Column("pitch", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("decided_by", sa.String(length=64), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        _version(),
        sa.CheckConstraint("price > 0", name="ck_bids_price_positive"),
        sa.CheckConstraint("eta_days > 0", name="ck_bids_eta_positive"),
    )
    op.create_index("ix_bids_project_status", "bids", ["project_id", "status"])
    op.create_index(
        "uq_bids_active_proposer",
        "bids",
        ["project_id", "proposer_kind", "proposer_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'accepted')"),
        sqlite_where=sa.text("status IN ('pending', 'accepted')"),
    )
    op.create_index(
        "uq_bids_one_accepted",
        "bids",
        ["project_id"],
        unique=True,
        postgresql_where=sa.text("status = 'accepted'"),
        sqlite_where=sa.text("status = 'accepted'"),
    )

    op.create_table(
        "contracts",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "project_id",
            sa.String(length=64),
            sa.ForeignKey("projects.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "accepted_bid_id",
            sa.String(length=64),
            sa.ForeignKey("bids.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("assignee_kind", sa.String(length=16), nullable=False),
        sa.Column("assignee_id", sa.String(length=64), nullable=False),
        sa.Column("total_amount", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column(
            "started_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(length=64), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        _updated_at(),
        _version(),
        sa.UniqueConstraint("project_id", name="uq_contracts_project"),
        sa.CheckConstraint("total_amount > 0", name="ck_contracts_total_positive"),
    )

    op.create_table(
        "milestones",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "contract_id",
            sa.String(length=64),
            sa.ForeignKey("contracts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("project_id", sa.String(length=64), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=256), nullable=False),
        sa.Column("percentage_bp", sa.Integer(), nullable=False),
        sa.Column("share", sa.BigInteger(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("released_to_date", sa.BigInteger(), nullable=False),
        sa.Column("released_amount", sa.BigInteger(), nullable=True),
        sa.Column("release_transaction_id", sa.String(length=64), nullable=True),
        sa.Column("rejection_count", sa.Integer(), nullable=False),
        sa.Column("last_feedback", sa.Text(), nullable=True),
        sa.Column("artifacts", JSON, nullable=False),
        sa.Column("submission_note", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        _updated_at(),
        _version(),
        sa.UniqueConstraint("contract_id", "order", name="uq_milestones_contract_order"),
        sa.CheckConstraint("share >= 0", name="ck_milestones_share_nonnegative"),
        sa.CheckConstraint(
            "released_to_date >= 0 AND released_to_date <= share",
            name="ck_milestones_release_cap",
        ),
        sa.CheckConstraint(
            "percentage_bp >= 0 AND percentage_bp <= 10000",
            name="ck_milestones_pct_range",
        ),
    )
    op.create_index("ix_milestones_project", "milestones", ["project_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("from_kind", sa.String(length=16), nullable=False),
        sa.Column("from_id", sa.String(length=128), nullable=False),
        sa.Column("to_kind", sa.String(length=16), nullable=False),
        sa.Column("to_id", sa.String(length=128), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("reverses_id", sa.String(length=64), nullable=True),
        sa.Column("metadata_json", JSON, nullable=False),
        _created_at(),
        _updated_at(),
        _version(),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_project", "transactions", ["project_id", "created_at"])
    op.create_index("ix_transactions_from", "transactions", ["from_kind", "from_id"])
    op.create_index("ix_transactions_to", "transactions", ["to_kind", "to_id"])

    op.create_table(
        "disputes",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column(
            "project_id",
            sa.String(length=64),
            sa.ForeignKey("projects.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "contract_id",
            sa.String(length=64),
            sa.ForeignKey("contracts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("initiator_id", sa.String(length=64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("outcome_json", JSON, nullable=True),
        sa.Column("transaction_ids", JSON, nullable=False),
        sa.Column("resolved_by", sa.String(length=64), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        _version(),
    )
    op.create_index("ix_disputes_project_status", "disputes", ["project_id", "status"])

    op.create_table(
        "outbox",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("topic", sa.String(length=64), nullable=False),
        sa.Column("recipient_id", sa.String(length=64), nullable=False),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("payload_json", JSON, nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        _created_at(),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        _updated_at(),
        _version(),
    )
    op.create_index("ix_outbox_status_created", "outbox", ["status", "created_at"])

    op.create_table(
        "audit_log_records",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        _created_at(),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("actor_id", sa.String(length=64), nullable=True),
        sa.Column("project_id", sa.String(length=64), nullable=True),
        sa.Column("action", sa.String(length=96), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("payload_hash", sa.String(length=128), nullable=False),
        sa.Column("payload_summary_json", JSON, nullable=False),
        sa.Column("ref_id", sa.String(length=128), nullable=True),
        _version(),
    )
    op.create_index("ix_audit_log_records_request_id", "audit_log_records", ["request_id"])
    op.create_index("ix_audit_project", "audit_log_records", ["project_id"])
    op.create_index("ix_audit_action", "audit_log_records", ["action"])
    op.create_index("ix_audit_created", "audit_log_records", ["created_at"])


def downgrade():
    op.drop_table("audit_log_records")
    op.drop_table("outbox")
    op.drop_table("disputes")
    op.drop_table("transactions")
    op.drop_table("milestones")
    op.drop_table("contracts")
    op.drop_index("uq_bids_one_accepted", table_name="bids")
    op.drop_index("uq_bids_active_proposer", table_name="bids")
    op.drop_table("bids")
    op.drop_table("projects")
    op.drop_table("team_members")
    op.drop_table("teams")
    op.drop_table("users")
