"""initial family finance schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(12, 2)
PERCENT = sa.Numeric(5, 2)

ROLES = ("admin", "editor", "viewer")
FREQUENCIES = ("once", "weekly", "biweekly", "monthly", "quarterly", "annual")
REPORT_TYPES = (
    "cash_flow",
    "spending_analysis",
    "budget_performance",
    "income_analysis",
    "net_worth",
    "savings_rate",
    "monthly_summary",
    "annual_summary",
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "family",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column(
            "subscription_status",
            sa.Enum("trial", "active", "suspended", "cancelled", name="subscription_status"),
            nullable=False,
        ),
        sa.Column("data_retention_consent", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "family_member",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("family.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("role", sa.Enum(*ROLES, name="member_role"), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False),
        sa.Column("email_verification_token", sa.String(length=128), nullable=True),
        sa.Column("password_reset_token_hash", sa.String(length=64), nullable=True),
        sa.Column("password_reset_expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_family_member_family_id", "family_member", ["family_id"])

    op.create_table(
        "session",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "family_member_id",
            sa.Integer(),
            sa.ForeignKey("family_member.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("remember_me", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_session_family_member_id", "session", ["family_member_id"])

    op.create_table(
        "invitation",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("family.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.Enum(*ROLES, name="invitation_role"), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False, unique=True),
        sa.Column(
            "status",
            sa.Enum("pending", "accepted", "revoked", "expired", name="invitation_status"),
            nullable=False,
        ),
        sa.Column(
            "invited_by_id", sa.Integer(), sa.ForeignKey("family_member.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_invitation_family_id", "invitation", ["family_id"])

    op.create_table(
        "bank_account",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("family.id", ondelete="CASCADE"), nullable=False),
        sa.Column("plaid_account_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("plaid_item_id", sa.String(length=255), nullable=False),
        sa.Column("plaid_access_token", sa.String(length=255), nullable=True),
        sa.Column("institution_name", sa.String(length=255), nullable=False),
        sa.Column("account_name", sa.String(length=255), nullable=False),
        sa.Column(
            "account_type",
            sa.Enum("checking", "savings", "credit", "loan", name="account_type"),
            nullable=False,
        ),
        sa.Column("account_number", sa.String(length=4), nullable=True),
        sa.Column("current_balance", MONEY, nullable=False),
        sa.Column("available_balance", MONEY, nullable=True),
        sa.Column("last_sync_at", sa.DateTime(), nullable=True),
        sa.Column(
            "sync_status",
            sa.Enum("active", "error", "disconnected", name="sync_status"),
            nullable=False,
        ),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_bank_account_family_id", "bank_account", ["family_id"])
    op.create_index("ix_bank_account_plaid_item_id", "bank_account", ["plaid_item_id"])

    op.create_table(
        "budget_category",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("family.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("target_percentage", PERCENT, nullable=False),
        sa.Column("color", sa.String(length=7), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("family_id", "name", name="uq_budget_category_name"),
        sa.CheckConstraint(
            "target_percentage >= 0 AND target_percentage <= 100",
            name="ck_budget_category_target_percentage_range",
        ),
    )
    op.create_index("ix_budget_category_family_id", "budget_category", ["family_id"])

    op.create_table(
        "spending_category",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("family.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "parent_category_id",
            sa.Integer(),
            sa.ForeignKey("spending_category.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("budget_category_id", sa.Integer(), sa.ForeignKey("budget_category.id"), nullable=False),
        sa.Column("icon", sa.String(length=50), nullable=True),
        sa.Column("color", sa.String(length=7), nullable=True),
        sa.Column("monthly_target", MONEY, nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_spending_category_family_id", "spending_category", ["family_id"])
    op.create_index("ix_spending_category_budget_category_id", "spending_category", ["budget_category_id"])

    op.create_table(
        "transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "bank_account_id", sa.Integer(), sa.ForeignKey("bank_account.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("plaid_transaction_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("merchant_name", sa.String(length=255), nullable=True),
        sa.Column("pending", sa.Boolean(), nullable=False),
        sa.Column(
            "spending_category_id",
            sa.Integer(),
            sa.ForeignKey("spending_category.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("category_confidence", sa.Numeric(3, 2), nullable=False),
        sa.Column("user_categorized", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "category_confidence >= 0 AND category_confidence <= 1", name="ck_transaction_confidence_range"
        ),
    )
    op.create_index("ix_transaction_bank_account_id", "transaction", ["bank_account_id"])
    op.create_index("ix_transaction_spending_category_id", "transaction", ["spending_category_id"])
    op.create_index("ix_transaction_account_date", "transaction", ["bank_account_id", "date"])

    op.create_table(
        "income_event",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("family.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("actual_date", sa.Date(), nullable=True),
        sa.Column("actual_amount", MONEY, nullable=True),
        sa.Column("frequency", sa.Enum(*FREQUENCIES, name="income_frequency"), nullable=False),
        sa.Column("next_occurrence", sa.Date(), nullable=True),
        sa.Column("allocated_amount", MONEY, nullable=False),
        sa.Column("remaining_amount", MONEY, nullable=False),
        sa.Column(
            "status",
            sa.Enum("scheduled", "received", "cancelled", name="income_status"),
            nullable=False,
        ),
        sa.Column("source", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_income_event_amount_positive"),
        sa.CheckConstraint("allocated_amount >= 0", name="ck_income_event_allocated_non_negative"),
    )
    op.create_index("ix_income_event_family_id", "income_event", ["family_id"])
    op.create_index("ix_income_event_family_date", "income_event", ["family_id", "scheduled_date"])

    op.create_table(
        "payment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("family.id", ondelete="CASCADE"), nullable=False),
        sa.Column("payee", sa.String(length=255), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("paid_date", sa.Date(), nullable=True),
        sa.Column("paid_amount", MONEY, nullable=True),
        sa.Column(
            "payment_type",
            sa.Enum("once", "recurring", "variable", name="payment_type"),
            nullable=False,
        ),
        sa.Column("frequency", sa.Enum(*FREQUENCIES, name="payment_frequency"), nullable=False),
        sa.Column("next_due_date", sa.Date(), nullable=True),
        sa.Column(
            "status",
            sa.Enum("scheduled", "paid", "overdue", "cancelled", "partial", name="payment_status"),
            nullable=False,
        ),
        sa.Column(
            "spending_category_id",
            sa.Integer(),
            sa.ForeignKey("spending_category.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("auto_pay_enabled", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )
    op.create_index("ix_payment_family_id", "payment", ["family_id"])
    op.create_index("ix_payment_spending_category_id", "payment", ["spending_category_id"])
    op.create_index("ix_payment_family_due", "payment", ["family_id", "due_date"])

    op.create_table(
        "payment_attribution",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payment.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "income_event_id", sa.Integer(), sa.ForeignKey("income_event.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column(
            "attribution_type",
            sa.Enum("manual", "automatic", name="attribution_type"),
            nullable=False,
        ),
        sa.Column(
            "created_by_id", sa.Integer(), sa.ForeignKey("family_member.id", ondelete="SET NULL"), nullable=True
        ),
        *_timestamps(),
        sa.UniqueConstraint("payment_id", "income_event_id", name="uq_attribution_pair"),
        sa.CheckConstraint("amount > 0", name="ck_payment_attribution_amount_positive"),
    )
    op.create_index("ix_payment_attribution_payment_id", "payment_attribution", ["payment_id"])
    op.create_index("ix_payment_attribution_income_event_id", "payment_attribution", ["income_event_id"])

    op.create_table(
        "budget_allocation",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "income_event_id", sa.Integer(), sa.ForeignKey("income_event.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column(
            "budget_category_id",
            sa.Integer(),
            sa.ForeignKey("budget_category.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("percentage", PERCENT, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("income_event_id", "budget_category_id", name="uq_allocation_pair"),
    )
    op.create_index("ix_budget_allocation_income_event_id", "budget_allocation", ["income_event_id"])
    op.create_index("ix_budget_allocation_budget_category_id", "budget_allocation", ["budget_category_id"])

    op.create_table(
        "scheduled_report",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("family.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "created_by_id", sa.Integer(), sa.ForeignKey("family_member.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("report_type", sa.Enum(*REPORT_TYPES, name="report_type"), nullable=False),
        sa.Column(
            "frequency",
            sa.Enum("weekly", "monthly", "quarterly", "annual", name="report_frequency"),
            nullable=False,
        ),
        sa.Column("recipients", sa.JSON(), nullable=False),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("delivery_day", sa.Integer(), nullable=True),
        sa.Column("delivery_hour", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "paused", "error", "completed", name="scheduled_report_status"),
            nullable=False,
        ),
        sa.Column("next_execution", sa.DateTime(), nullable=True),
        sa.Column("last_execution", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "delivery_hour >= 0 AND delivery_hour <= 23", name="ck_scheduled_report_delivery_hour_range"
        ),
    )
    op.create_index("ix_scheduled_report_family_id", "scheduled_report", ["family_id"])

    op.create_table(
        "report_execution",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "scheduled_report_id",
            sa.Integer(),
            sa.ForeignKey("scheduled_report.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.Enum("success", "failed", name="execution_status"), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("summary", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_report_execution_scheduled_report_id", "report_execution", ["scheduled_report_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("family_id", sa.Integer(), sa.ForeignKey("family.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "family_member_id",
            sa.Integer(),
            sa.ForeignKey("family_member.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "action",
            sa.Enum("create", "update", "delete", "login", "logout", "sync", name="audit_action"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_log_family_created", "audit_log", ["family_id", "created_at"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "report_execution",
        "scheduled_report",
        "budget_allocation",
        "payment_attribution",
        "payment",
        "income_event",
        "transaction",
        "spending_category",
        "budget_category",
        "bank_account",
        "invitation",
        "session",
        "family_member",
        "family",
    ):
        op.drop_table(table)
