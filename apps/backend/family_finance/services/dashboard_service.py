from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from family_finance import models
from family_finance.services.budget_service import BudgetService
from family_finance.services.income_service import IncomeService
from family_finance.services.payment_service import PaymentService
from family_finance.services.report_service import ReportService
from family_finance.utils.money import ZERO, to_money
from family_finance.utils.schedule import month_bounds

UPCOMING_DAYS = 7
RECENT_TRANSACTIONS = 10


class DashboardService:
    """One-call snapshot of the family's finances for the landing page."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def snapshot(self, family_id: int, *, today: Optional[date] = None) -> dict:
        today = today or date.today()
        first, last = month_bounds(today)
        reports = ReportService(self.db)

        accounts = (
            self.db.query(models.BankAccount)
            .filter(models.BankAccount.family_id == family_id, models.BankAccount.deleted_at.is_(None))
            .all()
        )
        # liabilities count against the balance
        total_balance = sum(
            (
                -abs(Decimal(a.current_balance or 0)) if a.account_type.is_liability else Decimal(a.current_balance or 0)
                for a in accounts
            ),
            ZERO,
        )

        month_income = sum((f.amount for f in reports.income_flows(family_id, first, today)), ZERO)
        month_expenses = sum((f.amount for f in reports.expense_flows(family_id, first, today)), ZERO)

        payments = PaymentService(self.db)
        upcoming_payments = payments.upcoming(family_id, UPCOMING_DAYS, today=today)
        overdue = payments.overdue(family_id, today=today)
        upcoming_income = IncomeService(self.db).upcoming(family_id, UPCOMING_DAYS, today=today)
        overview = BudgetService(self.db).overview(family_id)

        recent = (
            self.db.query(models.Transaction)
            .join(models.BankAccount, models.BankAccount.id == models.Transaction.bank_account_id)
            .filter(models.BankAccount.family_id == family_id)
            .order_by(models.Transaction.date.desc(), models.Transaction.id.desc())
            .limit(RECENT_TRANSACTIONS)
            .all()
        )
        return {
            "as_of": today,
            "total_balance": float(to_money(total_balance)),
            "account_count": len(accounts),
            "accounts_needing_attention": sum(1 for a in accounts if a.sync_status == models.SyncStatus.ERROR),
            "month": first.strftime("%Y-%m"),
            "month_income": float(to_money(month_income)),
            "month_expenses": float(to_money(month_expenses)),
            "month_net": float(to_money(month_income - month_expenses)),
            "upcoming_payments": upcoming_payments,
            "upcoming_payments_total": float(sum((Decimal(p.amount) for p in upcoming_payments), ZERO)),
            "upcoming_income": upcoming_income,
            "upcoming_income_total": float(sum((Decimal(i.amount) for i in upcoming_income), ZERO)),
            "overdue_count": len(overdue),
            "overdue_total": float(sum((Decimal(p.amount) for p in overdue), ZERO)),
            "budget": {
                "total_percentage": overview["total_percentage"],
                "remaining_percentage": overview["remaining_percentage"],
                "is_complete": overview["is_complete"],
                "category_count": overview["category_count"],
            },
            "recent_transactions": recent,
            "period_end": last,
        }
