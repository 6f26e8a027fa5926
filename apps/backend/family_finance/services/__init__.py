"""
Service layer: one class per resource, each wrapping a SQLAlchemy session.
"""

from .attribution_service import AttributionService
from .audit_service import AuditService
from .auth_service import AuthService
from .bank_service import BankService
from .budget_service import BudgetService
from .dashboard_service import DashboardService
from .family_service import FamilyService
from .income_service import IncomeService
from .payment_service import PaymentService
from .report_service import ReportService
from .scheduled_report_service import ScheduledReportService
from .spending_category_service import SpendingCategoryService
from .transaction_service import TransactionService

__all__ = [
    "AttributionService",
    "AuditService",
    "AuthService",
    "BankService",
    "BudgetService",
    "DashboardService",
    "FamilyService",
    "IncomeService",
    "PaymentService",
    "ReportService",
    "ScheduledReportService",
    "SpendingCategoryService",
    "TransactionService",
]
