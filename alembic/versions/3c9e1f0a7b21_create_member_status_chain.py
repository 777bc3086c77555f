"""create member status chain tables

Revision ID: 3c9e1f0a7b21
Revises:
Create Date: 2026-02-14 23:13:35.000000
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "3c9e1f0a7b21"
down_revision = None
branch_labels = None
depends_on = None

MEMBER_STATUSES = ("PENDING", "PROBATION", "ACTIVE", "DORMANT", "SUSPENDED", "LEFT")
LEFT_CATEGORIES = ("VOLUNTARY", "EXCLUSION", "REJECTED", "DEATH", "OTHER")


def upgrade() -> None:
    member_status_enum = postgresql.ENUM(*MEMBER_STATUSES, name="member_status_enum")
    left_category_enum = postgresql.ENUM(*LEFT_CATEGORIES, name="left_category_enum")
    member_status_enum.create(op.get_bind(), checkfirst=True)
    left_category_enum.create(op.get_bind(), checkfirst=True)

    status_column_type = postgresql.ENUM(
        *MEMBER_STATUSES, name="member_status_enum", create_type=False
    )

    op.create_table(
        "members",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("club_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("status", status_column_type, nullable=False),
        sa.Column("status_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status_changed_by", sa.String(), nullable=True),
        sa.Column("status_change_reason", sa.String(), nullable=True),
        sa.Column("cancellation_date", sa.Date(), nullable=True),
        sa.Column("cancellation_received_at", sa.Date(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_members_club_id", "members", ["club_id"])

    op.create_table(
        "member_status_transitions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("members.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("club_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("to_status", status_column_type, nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column(
            "left_category",
            postgresql.ENUM(*LEFT_CATEGORIES, name="left_category_enum", create_type=False),
            nullable=True,
        ),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.String(), nullable=True),
        sa.Column(
            "deleted_by_transition_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("member_status_transitions.id"),
            nullable=True,
        ),
    )
    op.create_index(
        "ix_member_status_transitions_member_id",
        "member_status_transitions",
        ["member_id"],
    )
    op.create_index(
        "ix_member_status_transitions_club_id",
        "member_status_transitions",
        ["club_id"],
    )
    op.create_index(
        "ix_member_status_transitions_chain_order",
        "member_status_transitions",
        ["member_id", "effective_date", "created_at"],
    )
    # At most one live entry per member and day
    op.create_index(
        "uq_member_status_transitions_live_date",
        "member_status_transitions",
        ["member_id", "effective_date"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "membership_periods",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "member_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("members.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("join_date", sa.Date(), nullable=False),
        sa.Column("leave_date", sa.Date(), nullable=True),
        sa.Column("membership_type_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_membership_periods_member_id", "membership_periods", ["member_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_membership_periods_member_id", table_name="membership_periods")
    op.drop_table("membership_periods")
    op.drop_index(
        "uq_member_status_transitions_live_date",
        table_name="member_status_transitions",
    )
    op.drop_index(
        "ix_member_status_transitions_chain_order",
        table_name="member_status_transitions",
    )
    op.drop_index(
        "ix_member_status_transitions_club_id",
        table_name="member_status_transitions",
    )
    op.drop_index(
        "ix_member_status_transitions_member_id",
        table_name="member_status_transitions",
    )
    op.drop_table("member_status_transitions")
    op.drop_index("ix_members_club_id", table_name="members")
    op.drop_table("members")
    postgresql.ENUM(name="left_category_enum").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="member_status_enum").drop(op.get_bind(), checkfirst=True)
