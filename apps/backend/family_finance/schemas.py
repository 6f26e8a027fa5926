from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Annotated, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from .models import (
    AccountType,
    AttributionType,
    AuditAction,
    Frequency,
    IncomeStatus,
    InvitationStatus,
    PaymentStatus,
    PaymentType,
    ReportFrequency,
    ReportType,
    Role,
    ScheduledReportStatus,
    SubscriptionStatus,
    SyncStatus,
    ExecutionStatus,
)

# Request side keeps Decimal precision; responses render floats like the rest of the API.
Money = Annotated[Decimal, Field(max_digits=12, decimal_places=2)]
PositiveMoney = Annotated[Decimal, Field(gt=0, max_digits=12, decimal_places=2)]
NonNegativeMoney = Annotated[Decimal, Field(ge=0, max_digits=12, decimal_places=2)]
Percentage = Annotated[Decimal, Field(ge=0, le=100, max_digits=5, decimal_places=2)]
HexColor = Annotated[str, Field(pattern=r"^#[0-9A-Fa-f]{6}$")]
Password = Annotated[str, Field(min_length=8, max_length=72)]


class _ORM(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Auth & members
# ---------------------------------------------------------------------------


class Permissions(BaseModel):
    can_manage_bank_accounts: bool = False
    can_edit_payments: bool = False
    can_view_reports: bool = False
    can_manage_family: bool = False


class PermissionsUpdate(BaseModel):
    can_manage_bank_accounts: Optional[bool] = None
    can_edit_payments: Optional[bool] = None
    can_view_reports: Optional[bool] = None
    can_manage_family: Optional[bool] = None


class RegisterRequest(BaseModel):
    email: EmailStr
    password: Password
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    family_name: Optional[str] = Field(default=None, min_length=1, max_length=255)

    @field_validator("password")
    @classmethod
    def _password_strength(cls, v: str) -> str:
        if not any(c.isalpha() for c in v) or not any(c.isdigit() for c in v):
            raise ValueError("password must contain letters and digits")
        return v


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    remember_me: bool = False


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=10)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


class MemberOut(_ORM):
    id: int
    family_id: int
    email: str
    first_name: str
    last_name: str
    role: Role
    permissions: dict[str, bool]
    email_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime


class FamilySettings(BaseModel):
    timezone: Optional[str] = Field(default=None, max_length=64)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    fiscal_year_start: Optional[int] = Field(default=None, ge=1, le=12)


class FamilyOut(_ORM):
    id: int
    name: str
    settings: dict[str, Any]
    subscription_status: SubscriptionStatus
    data_retention_consent: bool
    created_at: datetime


class FamilyDetailOut(FamilyOut):
    members: list[MemberOut] = Field(default_factory=list)


class FamilyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    settings: Optional[FamilySettings] = None
    data_retention_consent: Optional[bool] = None


class AuthResponse(BaseModel):
    member: MemberOut
    family: FamilyOut
    tokens: TokenPair


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: Password


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=10)
    new_password: Password


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=10)


class SessionOut(_ORM):
    id: int
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    remember_me: bool
    created_at: datetime
    expires_at: datetime
    current: bool = False


class MemberUpdate(BaseModel):
    role: Optional[Role] = None
    permissions: Optional[PermissionsUpdate] = None


class InviteRequest(BaseModel):
    email: EmailStr
    role: Role = Role.VIEWER
    permissions: Optional[PermissionsUpdate] = None


class InvitationOut(_ORM):
    id: int
    email: str
    role: Role
    permissions: dict[str, bool]
    status: InvitationStatus
    invited_by_id: Optional[int] = None
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime


class InvitationCreatedOut(InvitationOut):
    token: str


class AcceptInvitationRequest(BaseModel):
    token: str = Field(..., min_length=10)
    password: Password
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)


class AuditLogOut(_ORM):
    id: int
    family_member_id: Optional[int] = None
    action: AuditAction
    entity_type: str
    entity_id: Optional[int] = None
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    created_at: datetime


class ActivityPage(BaseModel):
    items: list[AuditLogOut]
    total: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Bank accounts & transactions
# ---------------------------------------------------------------------------


class LinkTokenOut(BaseModel):
    link_token: str
    expiration: Optional[str] = None


class ConnectBankRequest(BaseModel):
    public_token: str = Field(..., min_length=1)
    institution_name: Optional[str] = Field(default=None, max_length=255)


class BankAccountOut(_ORM):
    id: int
    institution_name: str
    account_name: str
    account_type: AccountType
    account_number: Optional[str] = None
    current_balance: float
    available_balance: Optional[float] = None
    last_sync_at: Optional[datetime] = None
    sync_status: SyncStatus
    created_at: datetime


class BankAccountUpdate(BaseModel):
    account_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    sync_status: Optional[SyncStatus] = None


class SyncRequest(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _ordered(self) -> "SyncRequest":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class SyncResult(BaseModel):
    account_id: int
    new_count: int
    updated_count: int


class SyncAllItem(BaseModel):
    account_id: int
    account_name: str
    success: bool
    new_count: int = 0
    updated_count: int = 0
    error: Optional[str] = None


class SyncAllResult(BaseModel):
    total_accounts: int
    success_count: int
    error_count: int
    results: list[SyncAllItem]


class PlaidWebhook(BaseModel):
    model_config = ConfigDict(extra="allow")

    webhook_type: str
    webhook_code: str
    item_id: str
    error: Optional[dict[str, Any]] = None


class TransactionOut(_ORM):
    id: int
    bank_account_id: int
    amount: float
    date: dt.date
    description: str
    merchant_name: Optional[str] = None
    pending: bool
    spending_category_id: Optional[int] = None
    category_confidence: float
    user_categorized: bool
    notes: Optional[str] = None
    created_at: datetime


class TransactionPage(BaseModel):
    transactions: list[TransactionOut]
    total: int
    limit: int
    offset: int


class TransactionUpdate(BaseModel):
    spending_category_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class BatchCategorizeItem(BaseModel):
    transaction_id: int
    spending_category_id: int


class BatchCategorizeRequest(BaseModel):
    updates: list[BatchCategorizeItem] = Field(..., min_length=1, max_length=500)


class BatchError(BaseModel):
    transaction_id: int
    error: str


class BatchCategorizeResult(BaseModel):
    updated_count: int
    errors: list[BatchError]


class CategorySuggestion(BaseModel):
    spending_category_id: int
    name: str
    confidence: float
    reason: str


class UncategorizedTransactionOut(TransactionOut):
    suggestions: list[CategorySuggestion] = Field(default_factory=list)


class UncategorizedPage(BaseModel):
    transactions: list[UncategorizedTransactionOut]
    total: int
    limit: int
    offset: int


class MatchPaymentsRequest(BaseModel):
    transaction_ids: Optional[list[int]] = None
    payment_ids: Optional[list[int]] = None


class PaymentMatchOut(BaseModel):
    transaction_id: int
    payment_id: int
    payee: str
    transaction_amount: float
    payment_amount: float
    confidence: float
    reasons: list[str]


class AutoCategorizeRequest(BaseModel):
    transaction_ids: Optional[list[int]] = Field(default=None, max_length=1000)


class AutoCategorizedItem(CategorySuggestion):
    transaction_id: int


class AutoCategorizeResult(BaseModel):
    categorized_count: int
    results: list[AutoCategorizedItem]


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class SpendingCategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    budget_category_id: int
    parent_category_id: Optional[int] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[HexColor] = None
    monthly_target: Optional[NonNegativeMoney] = None
    description: Optional[str] = Field(default=None, max_length=1000)


class SpendingCategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    budget_category_id: Optional[int] = None
    parent_category_id: Optional[int] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[HexColor] = None
    monthly_target: Optional[NonNegativeMoney] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    is_active: Optional[bool] = None


class SpendingCategoryOut(_ORM):
    id: int
    name: str
    budget_category_id: int
    parent_category_id: Optional[int] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    monthly_target: Optional[float] = None
    description: Optional[str] = None
    is_active: bool
    created_at: datetime


class BudgetCategoryRef(BaseModel):
    id: int
    name: str
    color: str


class SpendingCategoryNode(BaseModel):
    id: int
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None
    is_active: bool
    monthly_target: Optional[float] = None
    budget_category: BudgetCategoryRef
    transaction_count: int
    total_spent: float
    children: list["SpendingCategoryNode"] = Field(default_factory=list)


class CategoryUsageOut(BaseModel):
    category_id: int
    category_name: str
    transaction_count: int
    total_amount: float
    average_amount: float
    last_used: Optional[date] = None
    monthly_average: float
    percentage_of_total_spending: float


class DefaultCategoryChild(BaseModel):
    name: str
    icon: str
    color: str


class DefaultCategoryOut(BaseModel):
    name: str
    icon: str
    color: str
    budget_category_name: str
    children: list[DefaultCategoryChild] = Field(default_factory=list)


class BudgetCategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_percentage: Percentage
    color: Optional[HexColor] = None


class BudgetCategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    target_percentage: Optional[Percentage] = None
    color: Optional[HexColor] = None
    sort_order: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class BudgetCategoryOut(_ORM):
    id: int
    name: str
    target_percentage: float
    color: str
    sort_order: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PercentageItem(BaseModel):
    id: int
    target_percentage: Decimal


class ValidatePercentagesRequest(BaseModel):
    categories: list[PercentageItem] = Field(..., min_length=1)


class ValidatePercentagesOut(BaseModel):
    is_valid: bool
    total_percentage: float
    difference: float
    suggestions: list[str]


class BudgetOverviewOut(BaseModel):
    categories: list[BudgetCategoryOut]
    total_percentage: float
    remaining_percentage: float
    is_complete: bool
    category_count: int


class CategoryPerformanceOut(BaseModel):
    budget_category_id: int
    name: str
    target_percentage: float
    budgeted: float
    spent: float
    variance: float
    percent_used: float


class BudgetPerformanceOut(BaseModel):
    start_date: date
    end_date: date
    categories: list[CategoryPerformanceOut]
    total_budgeted: float
    total_spent: float
    total_variance: float


class ProjectionCategory(BaseModel):
    budget_category_id: int
    name: str
    percentage: float
    budgeted: float
    projected_spending: float


class MonthProjection(BaseModel):
    month: str
    total_budgeted: float
    total_projected: float
    categories: list[ProjectionCategory]


class BudgetProjectionsOut(BaseModel):
    months: int
    average_monthly_income: float
    projections: list[MonthProjection]


class TemplateCategory(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    target_percentage: Percentage
    color: Optional[HexColor] = None


class BudgetTemplateOut(BaseModel):
    name: str
    description: str
    categories: list[TemplateCategory]


class ApplyTemplateRequest(BaseModel):
    template_name: Optional[str] = None
    categories: Optional[list[TemplateCategory]] = Field(default=None, min_length=1, max_length=20)

    @model_validator(mode="after")
    def _one_source(self) -> "ApplyTemplateRequest":
        if bool(self.template_name) == bool(self.categories):
            raise ValueError("Provide either template_name or categories")
        return self


# ---------------------------------------------------------------------------
# Income, allocations
# ---------------------------------------------------------------------------


class IncomeEventCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    amount: PositiveMoney
    scheduled_date: date
    frequency: Frequency = Frequency.ONCE
    source: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=2000)


class IncomeEventUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[PositiveMoney] = None
    scheduled_date: Optional[date] = None
    frequency: Optional[Frequency] = None
    source: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[IncomeStatus] = None


class IncomeEventOut(_ORM):
    id: int
    name: str
    amount: float
    scheduled_date: date
    actual_date: Optional[date] = None
    actual_amount: Optional[float] = None
    frequency: Frequency
    next_occurrence: Optional[date] = None
    allocated_amount: float
    remaining_amount: float
    status: IncomeStatus
    source: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class IncomeEventPage(BaseModel):
    income_events: list[IncomeEventOut]
    total: int
    limit: int
    offset: int


class IncomeBulkCreate(BaseModel):
    income_events: list[IncomeEventCreate] = Field(..., min_length=1, max_length=100)


class MarkReceivedRequest(BaseModel):
    actual_amount: Optional[PositiveMoney] = None
    actual_date: Optional[date] = None


class IncomeSummaryOut(BaseModel):
    total_scheduled: float
    total_received: float
    total_allocated: float
    total_remaining: float
    count: int
    scheduled_count: int
    received_count: int


class AllocationOverride(BaseModel):
    budget_category_id: int
    percentage: Decimal


class GenerateAllocationRequest(BaseModel):
    overrides: list[AllocationOverride] = Field(default_factory=list)


class BudgetAllocationOut(_ORM):
    id: int
    income_event_id: int
    income_event_name: Optional[str] = None
    budget_category_id: int
    budget_category_name: Optional[str] = None
    amount: float
    percentage: float
    created_at: datetime


class AllocationSummary(BaseModel):
    total_allocated: float
    income_amount: float
    unallocated_amount: float
    categories_allocated: int


class GenerateAllocationOut(BaseModel):
    allocations: list[BudgetAllocationOut]
    summary: AllocationSummary


class AllocationUpdate(BaseModel):
    amount: NonNegativeMoney


# ---------------------------------------------------------------------------
# Payments & attributions
# ---------------------------------------------------------------------------


class PaymentCreate(BaseModel):
    payee: str = Field(..., min_length=1, max_length=255)
    amount: PositiveMoney
    due_date: date
    payment_type: PaymentType = PaymentType.ONCE
    frequency: Frequency = Frequency.ONCE
    spending_category_id: Optional[int] = None
    auto_pay_enabled: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _frequency_matches_type(self) -> "PaymentCreate":
        if self.payment_type == PaymentType.RECURRING and self.frequency == Frequency.ONCE:
            raise ValueError("Recurring payments require a frequency other than once")
        if self.payment_type == PaymentType.ONCE and self.frequency != Frequency.ONCE:
            raise ValueError("One-time payments must use frequency once")
        return self


class PaymentUpdate(BaseModel):
    payee: Optional[str] = Field(default=None, min_length=1, max_length=255)
    amount: Optional[PositiveMoney] = None
    due_date: Optional[date] = None
    payment_type: Optional[PaymentType] = None
    frequency: Optional[Frequency] = None
    spending_category_id: Optional[int] = None
    auto_pay_enabled: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[PaymentStatus] = None


class PaymentOut(_ORM):
    id: int
    payee: str
    amount: float
    due_date: date
    paid_date: Optional[date] = None
    paid_amount: Optional[float] = None
    payment_type: PaymentType
    frequency: Frequency
    next_due_date: Optional[date] = None
    status: PaymentStatus
    spending_category_id: Optional[int] = None
    auto_pay_enabled: bool
    notes: Optional[str] = None
    attributed_amount: float
    created_at: datetime
    updated_at: datetime


class PaymentPage(BaseModel):
    payments: list[PaymentOut]
    total: int
    limit: int
    offset: int


class PaymentBulkCreate(BaseModel):
    payments: list[PaymentCreate] = Field(..., min_length=1, max_length=100)


class MarkPaidRequest(BaseModel):
    paid_amount: Optional[PositiveMoney] = None
    paid_date: Optional[date] = None


class PaymentSummaryOut(BaseModel):
    total_scheduled: float
    total_paid: float
    count: int
    scheduled_count: int
    paid_count: int
    overdue_count: int


class AutoAttributeResult(BaseModel):
    payments_considered: int
    attributed_count: int


class AttributionCreate(BaseModel):
    income_event_id: int
    amount: Money
    attribution_type: AttributionType = AttributionType.MANUAL


class AttributionUpdate(BaseModel):
    amount: Money


class AttributionOut(_ORM):
    id: int
    payment_id: int
    income_event_id: int
    income_event_name: Optional[str] = None
    payee: Optional[str] = None
    amount: float
    attribution_type: AttributionType
    created_by_id: Optional[int] = None
    created_at: datetime


class AttributionItemOut(AttributionOut):
    percentage: float


class PaymentAttributionsOut(BaseModel):
    payment_id: int
    payment_amount: float
    total_attributed: float
    remaining_amount: float
    attributions: list[AttributionItemOut]


class IncomeAttributionsOut(BaseModel):
    income_event_id: int
    income_amount: float
    allocated_amount: float
    remaining_amount: float
    attributions: list[AttributionOut]


class SplitItem(BaseModel):
    income_event_id: int
    amount: Money


class SplitRequest(BaseModel):
    splits: list[SplitItem] = Field(..., min_length=1, max_length=50)


class ValidateCapacityRequest(BaseModel):
    attributions: list[SplitItem] = Field(..., min_length=1, max_length=50)


class CapacityOut(BaseModel):
    is_valid: bool
    errors: list[str]
    total_proposed: float
    payment_amount: float


class AttributionSuggestionOut(BaseModel):
    income_event_id: int
    income_event_name: str
    scheduled_date: date
    available_amount: float
    suggested_amount: float
    confidence: Literal["high", "medium", "low"]
    reason: str


class AttributionHistoryPage(BaseModel):
    items: list[AttributionOut]
    total: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Scheduled reports
# ---------------------------------------------------------------------------


class ReportParameters(BaseModel):
    """Parameters a scheduled report replays on every run."""

    model_config = ConfigDict(extra="forbid")

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    months: Optional[int] = Field(default=None, ge=1, le=60)
    group_by: Optional[Literal["day", "week", "month", "quarter", "year"]] = None
    target_rate: Optional[float] = Field(default=None, ge=0, le=100)
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}(-\d{2})?$")
    year: Optional[int] = Field(default=None, ge=1900, le=2100)

    @model_validator(mode="after")
    def _ordered(self) -> "ReportParameters":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


def _clean_parameters(value: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    if value is None:
        return None
    return ReportParameters.model_validate(value).model_dump(mode="json", exclude_none=True)


class ScheduledReportCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    report_type: ReportType
    frequency: ReportFrequency
    recipients: list[EmailStr] = Field(..., min_length=1, max_length=20)
    parameters: dict[str, Any] = Field(default_factory=dict)
    timezone: str = Field(default="UTC", max_length=64)
    delivery_day: Optional[int] = None
    delivery_hour: int = Field(default=9, ge=0, le=23)

    @field_validator("parameters")
    @classmethod
    def _known_parameters(cls, v: dict[str, Any]) -> dict[str, Any]:
        return _clean_parameters(v)


class ScheduledReportUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    report_type: Optional[ReportType] = None
    frequency: Optional[ReportFrequency] = None
    recipients: Optional[list[EmailStr]] = Field(default=None, min_length=1, max_length=20)
    parameters: Optional[dict[str, Any]] = None
    timezone: Optional[str] = Field(default=None, max_length=64)
    delivery_day: Optional[int] = None
    delivery_hour: Optional[int] = Field(default=None, ge=0, le=23)
    status: Optional[ScheduledReportStatus] = None

    @field_validator("parameters")
    @classmethod
    def _known_parameters(cls, v: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        return _clean_parameters(v)


class ScheduledReportOut(_ORM):
    id: int
    name: str
    description: Optional[str] = None
    report_type: ReportType
    frequency: ReportFrequency
    recipients: list[str]
    parameters: dict[str, Any]
    timezone: str
    delivery_day: Optional[int] = None
    delivery_hour: int
    status: ScheduledReportStatus
    next_execution: Optional[datetime] = None
    last_execution: Optional[datetime] = None
    created_at: datetime


class ReportExecutionOut(_ORM):
    id: int
    scheduled_report_id: int
    status: ExecutionStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    summary: dict[str, Any]


class CustomReportRequest(BaseModel):
    sections: list[ReportType] = Field(..., min_length=1, max_length=8)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _ordered(self) -> "CustomReportRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class ReportRunOut(BaseModel):
    execution: ReportExecutionOut
    data: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class DashboardBudget(BaseModel):
    total_percentage: float
    remaining_percentage: float
    is_complete: bool
    category_count: int


class DashboardOut(BaseModel):
    as_of: date
    total_balance: float
    account_count: int
    accounts_needing_attention: int
    month: str
    month_income: float
    month_expenses: float
    month_net: float
    upcoming_payments: list[PaymentOut]
    upcoming_payments_total: float
    upcoming_income: list[IncomeEventOut]
    upcoming_income_total: float
    overdue_count: int
    overdue_total: float
    budget: DashboardBudget
    recent_transactions: list[TransactionOut]
    period_end: date
