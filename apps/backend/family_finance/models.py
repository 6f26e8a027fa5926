from __future__ import annotations

import datetime as dt
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Index,
    Boolean,
    JSON,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.ext.mutable import MutableDict, MutableList

from .core.database import Base


def utcnow_naive() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum(cls: type[Enum], name: str) -> SAEnum:
    # persist the lowercase wire values rather than member names
    return SAEnum(cls, name=name, values_callable=lambda e: [m.value for m in e])


MONEY = Numeric(12, 2)
PERCENT = Numeric(5, 2)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, onupdate=utcnow_naive, nullable=False)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Role(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    LOAN = "loan"

    @property
    def is_liability(self) -> bool:
        return self in (AccountType.CREDIT, AccountType.LOAN)


class SyncStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class Frequency(str, Enum):
    ONCE = "once"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class IncomeStatus(str, Enum):
    SCHEDULED = "scheduled"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    SCHEDULED = "scheduled"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    PARTIAL = "partial"


class PaymentType(str, Enum):
    ONCE = "once"
    RECURRING = "recurring"
    VARIABLE = "variable"


class AttributionType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"
    SYNC = "sync"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ReportType(str, Enum):
    CASH_FLOW = "cash_flow"
    SPENDING_ANALYSIS = "spending_analysis"
    BUDGET_PERFORMANCE = "budget_performance"
    INCOME_ANALYSIS = "income_analysis"
    NET_WORTH = "net_worth"
    SAVINGS_RATE = "savings_rate"
    MONTHLY_SUMMARY = "monthly_summary"
    ANNUAL_SUMMARY = "annual_summary"


class ReportFrequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class ScheduledReportStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ERROR = "error"
    COMPLETED = "completed"


class ExecutionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


PERMISSION_KEYS = (
    "can_manage_bank_accounts",
    "can_edit_payments",
    "can_view_reports",
    "can_manage_family",
)


def default_permissions(role: Role | str) -> dict[str, bool]:
    role = Role(role)
    if role == Role.ADMIN:
        return {key: True for key in PERMISSION_KEYS}
    if role == Role.EDITOR:
        return {
            "can_manage_bank_accounts": True,
            "can_edit_payments": True,
            "can_view_reports": True,
            "can_manage_family": False,
        }
    return {
        "can_manage_bank_accounts": False,
        "can_edit_payments": False,
        "can_view_reports": True,
        "can_manage_family": False,
    }


DEFAULT_FAMILY_SETTINGS: dict[str, Any] = {
    "timezone": "America/New_York",
    "currency": "USD",
    "fiscal_year_start": 1,
}


# ---------------------------------------------------------------------------
# Family & members
# ---------------------------------------------------------------------------


class Family(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    settings: Mapped[dict[str, Any]] = mapped_column(
        MutableDict.as_mutable(JSON), nullable=False, default=lambda: dict(DEFAULT_FAMILY_SETTINGS)
    )
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        _enum(SubscriptionStatus, "subscription_status"), nullable=False, default=SubscriptionStatus.TRIAL
    )
    data_retention_consent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    members: Mapped[list["FamilyMember"]] = relationship(back_populates="family")


class FamilyMember(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("family.id", ondelete="CASCADE"), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    role: Mapped[Role] = mapped_column(_enum(Role, "member_role"), nullable=False, default=Role.VIEWER)
    permissions: Mapped[dict[str, bool]] = mapped_column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_verification_token: Mapped[str | None] = mapped_column(String(128))
    password_reset_token_hash: Mapped[str | None] = mapped_column(String(64))
    password_reset_expires_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)

    family: Mapped[Family] = relationship(back_populates="members")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def has_permission(self, key: str) -> bool:
        if self.role == Role.ADMIN:
            return True
        return bool((self.permissions or {}).get(key, False))


class Session(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_member_id: Mapped[int] = mapped_column(
        ForeignKey("family_member.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(512))
    remember_me: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class Invitation(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("family.id", ondelete="CASCADE"), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[Role] = mapped_column(_enum(Role, "invitation_role"), nullable=False)
    permissions: Mapped[dict[str, bool]] = mapped_column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    status: Mapped[InvitationStatus] = mapped_column(
        _enum(InvitationStatus, "invitation_status"), nullable=False, default=InvitationStatus.PENDING
    )
    invited_by_id: Mapped[int | None] = mapped_column(ForeignKey("family_member.id", ondelete="SET NULL"))
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime)


# ---------------------------------------------------------------------------
# Banking
# ---------------------------------------------------------------------------


class BankAccount(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("family.id", ondelete="CASCADE"), nullable=False, index=True)
    plaid_account_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    plaid_item_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    plaid_access_token: Mapped[str | None] = mapped_column(String(255))
    institution_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[AccountType] = mapped_column(_enum(AccountType, "account_type"), nullable=False)
    account_number: Mapped[str | None] = mapped_column(String(4))
    current_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    available_balance: Mapped[Decimal | None] = mapped_column(MONEY)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime)
    sync_status: Mapped[SyncStatus] = mapped_column(
        _enum(SyncStatus, "sync_status"), nullable=False, default=SyncStatus.ACTIVE
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(back_populates="bank_account")


class Transaction(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bank_account_id: Mapped[int] = mapped_column(
        ForeignKey("bank_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    plaid_transaction_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    # Plaid sign convention: positive = money out, negative = money in
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    merchant_name: Mapped[str | None] = mapped_column(String(255))
    pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    spending_category_id: Mapped[int | None] = mapped_column(
        ForeignKey("spending_category.id", ondelete="SET NULL"), index=True
    )
    category_confidence: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False, default=Decimal("0"))
    user_categorized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text)

    bank_account: Mapped[BankAccount] = relationship(back_populates="transactions")
    spending_category: Mapped["SpendingCategory | None"] = relationship()

    __table_args__ = (
        Index("ix_transaction_account_date", "bank_account_id", "date"),
        CheckConstraint("category_confidence >= 0 AND category_confidence <= 1", name="confidence_range"),
    )


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------


class BudgetCategory(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("family.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    target_percentage: Mapped[Decimal] = mapped_column(PERCENT, nullable=False)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#3B82F6")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    spending_categories: Mapped[list["SpendingCategory"]] = relationship(back_populates="budget_category")

    __table_args__ = (
        UniqueConstraint("family_id", "name", name="uq_budget_category_name"),
        CheckConstraint("target_percentage >= 0 AND target_percentage <= 100", name="target_percentage_range"),
    )


class SpendingCategory(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("family.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    parent_category_id: Mapped[int | None] = mapped_column(ForeignKey("spending_category.id", ondelete="SET NULL"))
    budget_category_id: Mapped[int] = mapped_column(ForeignKey("budget_category.id"), nullable=False, index=True)
    icon: Mapped[str | None] = mapped_column(String(50))
    color: Mapped[str | None] = mapped_column(String(7))
    monthly_target: Mapped[Decimal | None] = mapped_column(MONEY)
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    budget_category: Mapped[BudgetCategory] = relationship(back_populates="spending_categories")
    parent: Mapped["SpendingCategory | None"] = relationship(remote_side="SpendingCategory.id")


class IncomeEvent(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("family.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    actual_date: Mapped[date | None] = mapped_column(Date)
    actual_amount: Mapped[Decimal | None] = mapped_column(MONEY)
    frequency: Mapped[Frequency] = mapped_column(_enum(Frequency, "income_frequency"), nullable=False, default=Frequency.ONCE)
    next_occurrence: Mapped[date | None] = mapped_column(Date)
    allocated_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    remaining_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    status: Mapped[IncomeStatus] = mapped_column(
        _enum(IncomeStatus, "income_status"), nullable=False, default=IncomeStatus.SCHEDULED
    )
    source: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)

    attributions: Mapped[list["PaymentAttribution"]] = relationship(back_populates="income_event")
    allocations: Mapped[list["BudgetAllocation"]] = relationship(back_populates="income_event")

    __table_args__ = (
        Index("ix_income_event_family_date", "family_id", "scheduled_date"),
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint("allocated_amount >= 0", name="allocated_non_negative"),
    )

    @property
    def effective_amount(self) -> Decimal:
        """Amount available for attribution: actual once received."""
        if self.status == IncomeStatus.RECEIVED and self.actual_amount is not None:
            return Decimal(self.actual_amount)
        return Decimal(self.amount)


class Payment(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("family.id", ondelete="CASCADE"), nullable=False, index=True)
    payee: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    paid_date: Mapped[date | None] = mapped_column(Date)
    paid_amount: Mapped[Decimal | None] = mapped_column(MONEY)
    payment_type: Mapped[PaymentType] = mapped_column(
        _enum(PaymentType, "payment_type"), nullable=False, default=PaymentType.ONCE
    )
    frequency: Mapped[Frequency] = mapped_column(_enum(Frequency, "payment_frequency"), nullable=False, default=Frequency.ONCE)
    next_due_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"), nullable=False, default=PaymentStatus.SCHEDULED
    )
    spending_category_id: Mapped[int | None] = mapped_column(
        ForeignKey("spending_category.id", ondelete="SET NULL"), index=True
    )
    auto_pay_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text)

    spending_category: Mapped[SpendingCategory | None] = relationship()
    attributions: Mapped[list["PaymentAttribution"]] = relationship(back_populates="payment")

    __table_args__ = (
        Index("ix_payment_family_due", "family_id", "due_date"),
        CheckConstraint("amount > 0", name="amount_positive"),
    )

    @property
    def attributed_amount(self) -> Decimal:
        return sum((Decimal(a.amount) for a in self.attributions), Decimal("0.00"))


class PaymentAttribution(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payment.id", ondelete="CASCADE"), nullable=False, index=True)
    income_event_id: Mapped[int] = mapped_column(
        ForeignKey("income_event.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    attribution_type: Mapped[AttributionType] = mapped_column(
        _enum(AttributionType, "attribution_type"), nullable=False, default=AttributionType.MANUAL
    )
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("family_member.id", ondelete="SET NULL"))

    payment: Mapped[Payment] = relationship(back_populates="attributions")
    income_event: Mapped[IncomeEvent] = relationship(back_populates="attributions")

    __table_args__ = (
        UniqueConstraint("payment_id", "income_event_id", name="uq_attribution_pair"),
        CheckConstraint("amount > 0", name="amount_positive"),
    )

    @property
    def income_event_name(self) -> str | None:
        return self.income_event.name if self.income_event else None

    @property
    def payee(self) -> str | None:
        return self.payment.payee if self.payment else None


class BudgetAllocation(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    income_event_id: Mapped[int] = mapped_column(
        ForeignKey("income_event.id", ondelete="CASCADE"), nullable=False, index=True
    )
    budget_category_id: Mapped[int] = mapped_column(
        ForeignKey("budget_category.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(PERCENT, nullable=False)

    income_event: Mapped[IncomeEvent] = relationship(back_populates="allocations")
    budget_category: Mapped[BudgetCategory] = relationship()

    __table_args__ = (
        UniqueConstraint("income_event_id", "budget_category_id", name="uq_allocation_pair"),
    )

    @property
    def income_event_name(self) -> str | None:
        return self.income_event.name if self.income_event else None

    @property
    def budget_category_name(self) -> str | None:
        return self.budget_category.name if self.budget_category else None


# ---------------------------------------------------------------------------
# Reports & audit
# ---------------------------------------------------------------------------


class ScheduledReport(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("family.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("family_member.id", ondelete="SET NULL"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    report_type: Mapped[ReportType] = mapped_column(_enum(ReportType, "report_type"), nullable=False)
    frequency: Mapped[ReportFrequency] = mapped_column(_enum(ReportFrequency, "report_frequency"), nullable=False)
    recipients: Mapped[list[str]] = mapped_column(MutableList.as_mutable(JSON), nullable=False, default=list)
    parameters: Mapped[dict[str, Any]] = mapped_column(MutableDict.as_mutable(JSON), nullable=False, default=dict)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    delivery_day: Mapped[int | None] = mapped_column(Integer)
    delivery_hour: Mapped[int] = mapped_column(Integer, nullable=False, default=9)
    status: Mapped[ScheduledReportStatus] = mapped_column(
        _enum(ScheduledReportStatus, "scheduled_report_status"), nullable=False, default=ScheduledReportStatus.ACTIVE
    )
    next_execution: Mapped[datetime | None] = mapped_column(DateTime)
    last_execution: Mapped[datetime | None] = mapped_column(DateTime)

    executions: Mapped[list["ReportExecution"]] = relationship(
        back_populates="scheduled_report", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("delivery_hour >= 0 AND delivery_hour <= 23", name="delivery_hour_range"),
    )


class ReportExecution(Base, TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scheduled_report_id: Mapped[int] = mapped_column(
        ForeignKey("scheduled_report.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[ExecutionStatus] = mapped_column(_enum(ExecutionStatus, "execution_status"), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    error_message: Mapped[str | None] = mapped_column(Text)
    summary: Mapped[dict[str, Any]] = mapped_column(MutableDict.as_mutable(JSON), nullable=False, default=dict)

    scheduled_report: Mapped[ScheduledReport] = relationship(back_populates="executions")


class AuditLog(Base):
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    family_id: Mapped[int] = mapped_column(ForeignKey("family.id", ondelete="CASCADE"), nullable=False)
    family_member_id: Mapped[int | None] = mapped_column(ForeignKey("family_member.id", ondelete="SET NULL"))
    action: Mapped[AuditAction] = mapped_column(_enum(AuditAction, "audit_action"), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(Integer)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive, nullable=False)

    __table_args__ = (
        Index("ix_audit_log_family_created", "family_id", "created_at"),
    )
