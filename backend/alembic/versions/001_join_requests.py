"""Join request schema: events, co-hosts, join requests, participants.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Events table (mirrors the event component's columns this service reads)
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("host_id", sa.Integer(), nullable=False),
        sa.Column("capacity_total", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'published'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("capacity_total >= 1", name="check_event_capacity_positive"),
        sa.CheckConstraint(
            "status IN ('draft', 'published', 'cancelled', 'completed')",
            name="check_event_status",
        ),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_host_id", "events", ["host_id"])

    op.create_table(
        "event_cohosts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "user_id", name="uq_event_cohost"),
    )
    op.create_index("ix_event_cohosts_event_id", "event_cohosts", ["event_id"])

    # Join requests
    op.create_table(
        "event_join_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("party_size", sa.Integer(), nullable=False),
        sa.Column("note", sa.String(500), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("waitlist_pos", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("party_size >= 1", name="check_join_request_party_size_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'declined', 'waitlisted', 'expired', 'cancelled')",
            name="check_join_request_status",
        ),
        sa.CheckConstraint(
            "(status = 'pending') = (hold_expires_at IS NOT NULL)",
            name="check_hold_only_while_pending",
        ),
        sa.CheckConstraint(
            "(status = 'waitlisted') = (waitlist_pos IS NOT NULL)",
            name="check_position_only_while_waitlisted",
        ),
    )
    op.create_index("ix_event_join_requests_id", "event_join_requests", ["id"])
    op.create_index("ix_event_join_requests_user_id", "event_join_requests", ["user_id"])
    # ONE PENDING REQUEST PER GUEST: the locked transaction checks this first,
    # the partial unique index catches anything that slips past it.
    op.create_index(
        "uq_join_requests_one_pending",
        "event_join_requests",
        ["event_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )
    # Availability sums and the sweeper's stale-hold scan both filter on
    # (event_id, status) and range over hold_expires_at.
    op.create_index(
        "ix_join_requests_event_status_hold",
        "event_join_requests",
        ["event_id", "status", "hold_expires_at"],
    )
    op.create_index("ix_join_requests_waitlist", "event_join_requests", ["event_id", "status", "waitlist_pos"])
    op.create_index("ix_join_requests_event_created", "event_join_requests", ["event_id", "created_at"])

    # Accepted participants
    op.create_table(
        "event_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("join_request_id", sa.Integer(), sa.ForeignKey("event_join_requests.id"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'accepted'")),
        sa.Column("party_size", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("join_request_id"),
        sa.CheckConstraint("party_size >= 1", name="check_participant_party_size_positive"),
    )
    op.create_index("ix_event_participants_id", "event_participants", ["id"])
    op.create_index("ix_event_participants_event_id", "event_participants", ["event_id"])
    op.create_index("ix_event_participants_user_id", "event_participants", ["user_id"])


def downgrade() -> None:
    op.drop_table("event_participants")
    op.drop_table("event_join_requests")
    op.drop_table("event_cohosts")
    op.drop_table("events")
