"""create_billing_tables

Revision ID: 3f9c2a7d1b04
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d1b04'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("role", sa.String(50), nullable=False, server_default="student"),
        sa.Column("payment_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_amount", sa.Integer(), nullable=True),
        sa.Column("payment_date", sa.DateTime(), nullable=True),
        sa.Column("access_courses", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("access_tests", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("access_unlimited_ai", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ai_tokens_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_tokens_limit", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("access_refreshed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plan_type", sa.String(32), nullable=False),
        sa.Column("course_id", sa.UUID(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="XAF"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("transaction_id", sa.String(64), nullable=False),
        sa.Column("course_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("test_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ai_access", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ai_token_limit", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unlimited_ai", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
    op.create_index("ix_subscriptions_transaction_id", "subscriptions", ["transaction_id"])
    op.create_index(
        "ix_subscriptions_user_status_end", "subscriptions", ["user_id", "status", "end_date"]
    )
    op.create_index(
        "ix_subscriptions_user_plan_course", "subscriptions", ["user_id", "plan_type", "course_id"]
    )
    op.create_index("ix_subscriptions_end_status", "subscriptions", ["end_date", "status"])

    op.create_table(
        "payments",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("transaction_id", sa.String(64), nullable=False),
        sa.Column("provider_transaction_id", sa.String(128), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="XAF"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("purpose", sa.String(32), nullable=False, server_default="registration_fee"),
        sa.Column("plan_type", sa.String(32), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column(
            "subscription_id",
            sa.UUID(),
            sa.ForeignKey("subscriptions.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("provider_response", sa.JSON(), nullable=True),
        sa.Column("webhook_received", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("webhook_payload", sa.JSON(), nullable=True),
        sa.Column("webhook_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("initiated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error_code", sa.String(64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payments_transaction_id", "payments", ["transaction_id"], unique=True)
    op.create_index("ix_payments_provider_transaction_id", "payments", ["provider_transaction_id"])
    op.create_index("ix_payments_status", "payments", ["status"])
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_subscription_id", "payments", ["subscription_id"])
    op.create_index("ix_payments_user_status", "payments", ["user_id", "status"])
    op.create_index("ix_payments_phone_status", "payments", ["phone_number", "status"])

    # At most one open payment per (user, purpose, plan)
    op.create_index(
        "uq_payments_open_user_purpose_plan",
        "payments",
        ["user_id", "purpose", sa.text("coalesce(plan_type, '')")],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
        sqlite_where=sa.text("status IN ('pending', 'processing')"),
    )

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("available_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_outbox_events_status_available", "outbox_events", ["status", "available_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_outbox_events_status_available", table_name="outbox_events")
    op.drop_table("outbox_events")

    op.drop_index("uq_payments_open_user_purpose_plan", table_name="payments")
    op.drop_index("ix_payments_phone_status", table_name="payments")
    op.drop_index("ix_payments_user_status", table_name="payments")
    op.drop_index("ix_payments_subscription_id", table_name="payments")
    op.drop_index("ix_payments_user_id", table_name="payments")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_provider_transaction_id", table_name="payments")
    op.drop_index("ix_payments_transaction_id", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_subscriptions_end_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_user_plan_course", table_name="subscriptions")
    op.drop_index("ix_subscriptions_user_status_end", table_name="subscriptions")
    op.drop_index("ix_subscriptions_transaction_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
