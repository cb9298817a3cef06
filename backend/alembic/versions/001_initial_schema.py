"""Initial schema: operators, events, slots, registrations, OTP challenges, rate limits.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Operators
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Event scopes
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("organizer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("roster_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
    )
    op.create_index("ix_events_id", "events", ["id"])
    op.create_index("ix_events_date", "events", ["date"])

    # Slots: registered_count is only moved by conditional UPDATEs
    op.create_table(
        "slots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("registered_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.CheckConstraint("capacity >= 0", name="check_slot_capacity_non_negative"),
        sa.CheckConstraint("registered_count >= 0", name="check_slot_registered_non_negative"),
        sa.CheckConstraint("ends_at >= starts_at", name="check_slot_window"),
    )
    op.create_index("ix_slots_id", "slots", ["id"])
    op.create_index("ix_slots_event_id", "slots", ["event_id"])

    # Registrations
    op.create_table(
        "registrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.Integer(), sa.ForeignKey("events.id"), nullable=False),
        sa.Column("slot_id", sa.Integer(), sa.ForeignKey("slots.id"), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("avatar_url", sa.String(1024), nullable=True),
        sa.Column("avatar_type", sa.String(10), nullable=False, server_default=sa.text("'none'")),
        sa.Column("access_token", sa.String(64), nullable=False),
        sa.Column("verification_status", sa.String(20), nullable=False, server_default=sa.text("'unverified'")),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'registered'")),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_by", sa.String(20), nullable=True),
        sa.Column("registered_by_operator", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("count >= 1 AND count <= 10", name="check_registration_count_range"),
        sa.CheckConstraint("status IN ('registered', 'arrived', 'cancelled')", name="check_registration_status"),
        sa.CheckConstraint(
            "verification_status IN ('unverified', 'verified')",
            name="check_registration_verification",
        ),
    )
    op.create_index("ix_registrations_id", "registrations", ["id"])
    op.create_index("ix_registrations_event_id", "registrations", ["event_id"])
    op.create_index("ix_registrations_slot_id", "registrations", ["slot_id"])
    op.create_index("ix_registrations_access_token", "registrations", ["access_token"], unique=True)
    # ONE ACTIVE REGISTRATION PER PHONE PER SLOT.
    # Partial: a cancelled registration frees the phone to register again.
    # This is what catches two racing intents the service pre-check cannot see.
    op.create_index(
        "uq_active_registration_slot_phone",
        "registrations",
        ["slot_id", "phone"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
        sqlite_where=sa.text("status <> 'cancelled'"),
    )

    # OTP challenges: primary key on registration_id, a new send replaces the row
    op.create_table(
        "otp_challenges",
        sa.Column("registration_id", sa.Integer(), sa.ForeignKey("registrations.id"), primary_key=True),
        sa.Column("challenge_id", sa.String(36), nullable=False, unique=True),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("salt", sa.String(32), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts_remaining", sa.Integer(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("attempts_remaining >= 0", name="check_otp_attempts_non_negative"),
    )

    # Fixed-window counters for the database rate limiter
    op.create_table(
        "rate_limit_windows",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("rate_limit_windows")
    op.drop_table("otp_challenges")
    op.drop_index("uq_active_registration_slot_phone", table_name="registrations")
    op.drop_table("registrations")
    op.drop_table("slots")
    op.drop_table("events")
    op.drop_table("users")
