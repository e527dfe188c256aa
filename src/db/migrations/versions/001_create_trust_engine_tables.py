"""Create checkout session, fraud signal, detection rule and trust ledger tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "device_fingerprints",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("fingerprint_hash", sa.String(64), nullable=False),
        sa.Column("attribute_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("trust_flag", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint("user_id", "fingerprint_hash", name="uq_device_fingerprints_user_hash"),
    )
    op.create_index(op.f("ix_device_fingerprints_user_id"), "device_fingerprints", ["user_id"])

    op.create_table(
        "checkout_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("fingerprint_id", sa.BigInteger(), nullable=True),
        sa.Column("telemetry", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("risk_score", sa.Float(), nullable=True),
        sa.Column("recommendation", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(op.f("ix_checkout_sessions_user_id"), "checkout_sessions", ["user_id"])
    op.create_index(op.f("ix_checkout_sessions_status"), "checkout_sessions", ["status"])
    op.create_index(op.f("ix_checkout_sessions_expires_at"), "checkout_sessions", ["expires_at"])

    op.create_table(
        "fraud_signals",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("order_id", sa.String(), nullable=True),
        sa.Column("signal_type", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False, server_default="0"),
        sa.Column("raw_evidence", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolution_status", sa.String(), nullable=False, server_default="open"),
        sa.Column("resolved_by", sa.String(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    for column in ("session_id", "user_id", "signal_type", "severity", "created_at"):
        op.create_index(op.f(f"ix_fraud_signals_{column}"), "fraud_signals", [column])
    op.create_index(
        op.f("ix_fraud_signals_resolution_status"), "fraud_signals", ["resolution_status"]
    )

    op.create_table(
        "detection_rules",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("rule_key", sa.String(), nullable=False),
        sa.Column("signal_type", sa.String(), nullable=False),
        sa.Column("comparator", sa.String(), nullable=False),
        sa.Column("threshold_value", sa.Float(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("description", sa.String(), nullable=False, server_default=""),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        op.f("ix_detection_rules_rule_key"), "detection_rules", ["rule_key"], unique=True
    )

    op.create_table(
        "trust_scores",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False, server_default="50"),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "consecutive_clean_transactions", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_confirmed_fraud_signals", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("total_completed_orders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_suspended", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("score BETWEEN 0 AND 100", name="ck_trust_scores_score_range"),
    )
    op.create_index(op.f("ix_trust_scores_user_id"), "trust_scores", ["user_id"], unique=True)

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("idempotency_key", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("mutation", sa.String(), nullable=False),
        sa.Column("reference_id", sa.String(), nullable=False),
        sa.Column("score_before", sa.Integer(), nullable=False),
        sa.Column("score_after", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        op.f("ix_ledger_entries_idempotency_key"),
        "ledger_entries",
        ["idempotency_key"],
        unique=True,
    )
    op.create_index(op.f("ix_ledger_entries_user_id"), "ledger_entries", ["user_id"])

    op.create_table(
        "completed_orders",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("seller_id", sa.String(), nullable=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        op.f("ix_completed_orders_order_id"), "completed_orders", ["order_id"], unique=True
    )
    op.create_index(op.f("ix_completed_orders_user_id"), "completed_orders", ["user_id"])
    op.create_index(op.f("ix_completed_orders_completed_at"), "completed_orders", ["completed_at"])

    op.create_table(
        "review_decisions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("signal_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("reviewer_id", sa.String(), nullable=False),
        sa.Column("decision", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        op.f("ix_review_decisions_signal_id"), "review_decisions", ["signal_id"], unique=True
    )
    op.create_index(op.f("ix_review_decisions_user_id"), "review_decisions", ["user_id"])


def downgrade() -> None:
    for table in (
        "review_decisions",
        "completed_orders",
        "ledger_entries",
        "trust_scores",
        "detection_rules",
        "fraud_signals",
        "checkout_sessions",
        "device_fingerprints",
    ):
        op.drop_table(table)
