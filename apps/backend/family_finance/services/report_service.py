"""Financial reports computed on demand from the family's ledger.

Income is what was actually received (received income events, by
``actual_date``). Money out is bank transactions with a positive amount plus
the paid amount of payments marked paid or partial. Every report returns
plain dicts with float amounts so they serialize straight to JSON or CSV.
"""

from __future__ import annotations

import logging
import statistics
from collections import OrderedDict, defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.errors import ValidationFailed
from family_finance.services.budget_service import BudgetService
from family_finance.utils.money import ZERO, ratio_percent, to_money
from family_finance.utils.schedule import add_months, iter_months, month_bounds

logger = logging.getLogger(__name__)

GROUP_BY_CHOICES = ("day", "week", "month", "quarter", "year")
MAX_RANGE_DAYS = 366 * 5
UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class Flow:
    when: date
    amount: Decimal
    label: str
    counterparty: Optional[str] = None


def period_key(value: date, group_by: str) -> str:
    if group_by == "day":
        return value.isoformat()
    if group_by == "week":
        return (value - timedelta(days=value.weekday())).isoformat()
    if group_by == "month":
        return value.strftime("%Y-%m")
    if group_by == "quarter":
        return f"{value.year}-Q{(value.month - 1) // 3 + 1}"
    if group_by == "year":
        return str(value.year)
    raise ValidationFailed(f"group_by must be one of: {', '.join(GROUP_BY_CHOICES)}")


def budget_status(percent_used: Decimal, budgeted: Decimal, spent: Decimal) -> str:
    """under_budget <= 75% < on_track <= 100% < over_budget <= 125% < way_over_budget."""
    if budgeted <= 0:
        return "way_over_budget" if spent > 0 else "under_budget"
    if percent_used <= 75:
        return "under_budget"
    if percent_used <= 100:
        return "on_track"
    if percent_used <= 125:
        return "over_budget"
    return "way_over_budget"


def savings_trend(rates: list[float]) -> str:
    """Compare the mean of the last three months with the three before them."""
    if len(rates) < 2:
        return "stable"
    recent = rates[-3:]
    earlier = rates[-6:-3] or rates[: len(rates) - len(recent)]
    if not earlier:
        return "stable"
    diff = sum(recent) / len(recent) - sum(earlier) / len(earlier)
    if diff > 2:
        return "increasing"
    if diff < -2:
        return "decreasing"
    return "stable"


def _f(value: Decimal) -> float:
    return float(to_money(value))


def _check_range(start: date, end: date) -> None:
    if end < start:
        raise ValidationFailed("end_date must be on or after start_date")
    if (end - start).days > MAX_RANGE_DAYS:
        raise ValidationFailed("Date range cannot exceed 5 years")


def default_range(today: Optional[date] = None, months: int = 12) -> tuple[date, date]:
    today = today or date.today()
    return add_months(today.replace(day=1), -(months - 1)), today


class ReportService:
    def __init__(self, db: Session) -> None:
        self.db = db

    # Raw flows ----------------------------------------------------------
    def _received_income(self, family_id: int, start: date, end: date) -> list[models.IncomeEvent]:
        return (
            self.db.query(models.IncomeEvent)
            .filter(
                models.IncomeEvent.family_id == family_id,
                models.IncomeEvent.status == models.IncomeStatus.RECEIVED,
                models.IncomeEvent.actual_date >= start,
                models.IncomeEvent.actual_date <= end,
            )
            .order_by(models.IncomeEvent.actual_date)
            .all()
        )

    def income_flows(self, family_id: int, start: date, end: date) -> list[Flow]:
        return [
            Flow(e.actual_date, e.effective_amount, e.source or e.name, e.name)
            for e in self._received_income(family_id, start, end)
        ]

    def expense_flows(self, family_id: int, start: date, end: date) -> list[Flow]:
        flows: list[Flow] = []
        txns = (
            self.db.query(models.Transaction)
            .join(models.BankAccount, models.BankAccount.id == models.Transaction.bank_account_id)
            .filter(
                models.BankAccount.family_id == family_id,
                models.Transaction.amount > 0,
                models.Transaction.date >= start,
                models.Transaction.date <= end,
            )
            .all()
        )
        for t in txns:
            label = t.spending_category.name if t.spending_category else UNCATEGORIZED
            flows.append(Flow(t.date, Decimal(t.amount), label, t.merchant_name or t.description))
        paid = (
            self.db.query(models.Payment)
            .filter(
                models.Payment.family_id == family_id,
                models.Payment.status.in_((models.PaymentStatus.PAID, models.PaymentStatus.PARTIAL)),
                models.Payment.paid_date >= start,
                models.Payment.paid_date <= end,
            )
            .all()
        )
        for p in paid:
            label = p.spending_category.name if p.spending_category else UNCATEGORIZED
            flows.append(Flow(p.paid_date, Decimal(p.paid_amount or p.amount), label, p.payee))
        return flows

    @staticmethod
    def _monthly_totals(flows: Iterable[Flow], start: date, end: date) -> "OrderedDict[str, Decimal]":
        totals: OrderedDict[str, Decimal] = OrderedDict((m.strftime("%Y-%m"), ZERO) for m in iter_months(start, end))
        for flow in flows:
            key = flow.when.strftime("%Y-%m")
            if key in totals:
                totals[key] += flow.amount
        return totals

    # Reports ------------------------------------------------------------
    def cash_flow(self, family_id: int, start: date, end: date, group_by: str = "month") -> dict:
        _check_range(start, end)
        if group_by not in GROUP_BY_CHOICES:
            raise ValidationFailed(f"group_by must be one of: {', '.join(GROUP_BY_CHOICES)}")
        periods: OrderedDict[str, dict[str, Any]] = OrderedDict()
        cursor = start
        while cursor <= end:
            key = period_key(cursor, group_by)
            if key not in periods:
                periods[key] = {
                    "period": key,
                    "start_date": cursor,
                    "income": ZERO,
                    "expenses": ZERO,
                    "income_breakdown": defaultdict(lambda: ZERO),
                    "expense_breakdown": defaultdict(lambda: ZERO),
                }
            cursor += timedelta(days=1)

        for flow in self.income_flows(family_id, start, end):
            bucket = periods[period_key(flow.when, group_by)]
            bucket["income"] += flow.amount
            bucket["income_breakdown"][flow.label] += flow.amount
        for flow in self.expense_flows(family_id, start, end):
            bucket = periods[period_key(flow.when, group_by)]
            bucket["expenses"] += flow.amount
            bucket["expense_breakdown"][flow.label] += flow.amount

        rows = []
        total_in = total_out = ZERO
        for bucket in periods.values():
            total_in += bucket["income"]
            total_out += bucket["expenses"]
            rows.append(
                {
                    "period": bucket["period"],
                    "start_date": bucket["start_date"].isoformat(),
                    "income": _f(bucket["income"]),
                    "expenses": _f(bucket["expenses"]),
                    "net": _f(bucket["income"] - bucket["expenses"]),
                    "income_breakdown": {k: _f(v) for k, v in bucket["income_breakdown"].items()},
                    "expense_breakdown": {k: _f(v) for k, v in bucket["expense_breakdown"].items()},
                }
            )
        return {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "group_by": group_by,
            "periods": rows,
            "totals": {"income": _f(total_in), "expenses": _f(total_out), "net": _f(total_in - total_out)},
        }

    def spending_analysis(self, family_id: int, start: date, end: date) -> dict:
        _check_range(start, end)
        flows = self.expense_flows(family_id, start, end)
        total = sum((f.amount for f in flows), ZERO)
        by_category: dict[str, list[Decimal]] = defaultdict(list)
        by_merchant: dict[str, list[Decimal]] = defaultdict(list)
        for flow in flows:
            by_category[flow.label].append(flow.amount)
            if flow.counterparty:
                by_merchant[flow.counterparty].append(flow.amount)
        categories = sorted(
            (
                {
                    "category": name,
                    "amount": _f(sum(amounts, ZERO)),
                    "count": len(amounts),
                    "percentage": float(ratio_percent(sum(amounts, ZERO), total)),
                }
                for name, amounts in by_category.items()
            ),
            key=lambda r: r["amount"],
            reverse=True,
        )
        merchants = sorted(
            ({"merchant": name, "amount": _f(sum(a, ZERO)), "count": len(a)} for name, a in by_merchant.items()),
            key=lambda r: r["amount"],
            reverse=True,
        )[:10]
        trends = [{"month": k, "amount": _f(v)} for k, v in self._monthly_totals(flows, start, end).items()]
        return {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "total_spending": _f(total),
            "category_breakdown": categories,
            "monthly_trends": trends,
            "top_merchants": merchants,
        }

    def budget_performance(self, family_id: int, start: date, end: date) -> dict:
        _check_range(start, end)
        perf = BudgetService(self.db).performance(family_id, start, end)
        rows = []
        for cat in perf["categories"]:
            budgeted = Decimal(str(cat["budgeted"]))
            spent = Decimal(str(cat["spent"]))
            pct = ratio_percent(spent, budgeted)
            rows.append({**cat, "status": budget_status(pct, budgeted, spent)})
        total_budgeted = Decimal(str(perf["total_budgeted"]))
        total_spent = Decimal(str(perf["total_spent"]))
        overall_pct = ratio_percent(total_spent, total_budgeted)
        return {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "overall": {
                "total_budgeted": _f(total_budgeted),
                "total_spent": _f(total_spent),
                "variance": _f(total_budgeted - total_spent),
                "percent_used": float(overall_pct),
                "status": budget_status(overall_pct, total_budgeted, total_spent),
            },
            "categories": rows,
        }

    def income_analysis(self, family_id: int, start: date, end: date, *, today: Optional[date] = None) -> dict:
        _check_range(start, end)
        today = today or date.today()
        received = self._received_income(family_id, start, end)
        total = sum((e.effective_amount for e in received), ZERO)
        regular = sum((e.effective_amount for e in received if e.frequency != models.Frequency.ONCE), ZERO)
        monthly = self._monthly_totals(
            (Flow(e.actual_date, e.effective_amount, e.name) for e in received), start, end
        )
        month_values = [float(v) for v in monthly.values()]
        months = max(1, len(month_values))
        if len(month_values) > 1 and statistics.mean(month_values) > 0:
            cv = statistics.pstdev(month_values) / statistics.mean(month_values)
            consistency = max(0.0, round(100 - cv * 100, 1))
        else:
            consistency = 100.0 if total > 0 else 0.0

        # reliability: share of a source's due events that actually arrived
        scheduled = (
            self.db.query(models.IncomeEvent)
            .filter(
                models.IncomeEvent.family_id == family_id,
                models.IncomeEvent.scheduled_date >= start,
                models.IncomeEvent.scheduled_date <= min(end, today),
            )
            .all()
        )
        due_counts: dict[str, int] = defaultdict(int)
        hit_counts: dict[str, int] = defaultdict(int)
        for e in scheduled:
            key = e.source or e.name
            due_counts[key] += 1
            if e.status == models.IncomeStatus.RECEIVED:
                hit_counts[key] += 1
        sources: dict[str, dict[str, Any]] = {}
        for e in received:
            key = e.source or e.name
            entry = sources.setdefault(key, {"source": key, "amount": ZERO, "count": 0, "frequency": e.frequency.value})
            entry["amount"] += e.effective_amount
            entry["count"] += 1
        source_rows = []
        for key, entry in sources.items():
            due = due_counts.get(key, 0)
            reliability = float(ratio_percent(Decimal(hit_counts.get(key, 0)), Decimal(due))) if due else 100.0
            source_rows.append({**entry, "amount": _f(entry["amount"]), "reliability": reliability})
        source_rows.sort(key=lambda r: r["amount"], reverse=True)

        recent = month_values[-3:]
        earlier = month_values[-6:-3]
        recent_avg = sum(recent) / max(1, len(recent))
        earlier_avg = sum(earlier) / max(1, len(earlier))
        growth = round((recent_avg - earlier_avg) / earlier_avg * 100, 2) if earlier_avg > 0 else 0.0
        return {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "total_income": _f(total),
            "regular_income": _f(regular),
            "irregular_income": _f(total - regular),
            "regular_income_percentage": float(ratio_percent(regular, total)),
            "average_monthly_income": _f(total / months),
            "income_consistency": consistency,
            "growth_rate": growth,
            "growth_trend": "increasing" if growth > 5 else "decreasing" if growth < -5 else "stable",
            "sources": source_rows,
            "monthly_trends": [{"month": k, "amount": _f(v)} for k, v in monthly.items()],
        }

    def net_worth(self, family_id: int) -> dict:
        accounts = (
            self.db.query(models.BankAccount)
            .filter(models.BankAccount.family_id == family_id, models.BankAccount.deleted_at.is_(None))
            .order_by(models.BankAccount.institution_name, models.BankAccount.account_name)
            .all()
        )
        assets = liabilities = ZERO
        by_type: dict[str, Decimal] = defaultdict(lambda: ZERO)
        breakdown = []
        for acct in accounts:
            balance = Decimal(acct.current_balance or 0)
            if acct.account_type.is_liability:
                balance = abs(balance)
                liabilities += balance
                kind = "liability"
            else:
                assets += balance
                kind = "asset"
            by_type[acct.account_type.value] += balance
            breakdown.append(
                {
                    "account_id": acct.id,
                    "account_name": acct.account_name,
                    "institution_name": acct.institution_name,
                    "account_type": acct.account_type.value,
                    "kind": kind,
                    "balance": _f(balance),
                }
            )
        return {
            "as_of": date.today().isoformat(),
            "total_assets": _f(assets),
            "total_liabilities": _f(liabilities),
            "net_worth": _f(assets - liabilities),
            "by_type": {k: _f(v) for k, v in by_type.items()},
            "accounts": breakdown,
        }

    def savings_rate(self, family_id: int, start: date, end: date, target_rate: float = 20.0) -> dict:
        _check_range(start, end)
        if not 0 <= target_rate <= 100:
            raise ValidationFailed("Target rate must be between 0 and 100")
        income = self._monthly_totals(self.income_flows(family_id, start, end), start, end)
        expenses = self._monthly_totals(self.expense_flows(family_id, start, end), start, end)
        rows = []
        for month, inc in income.items():
            out = expenses[month]
            saved = inc - out
            rows.append(
                {
                    "month": month,
                    "income": _f(inc),
                    "expenses": _f(out),
                    "savings": _f(saved),
                    "savings_rate": float(ratio_percent(saved, inc)),
                }
            )
        rates = [r["savings_rate"] for r in rows]
        total_in = sum(income.values(), ZERO)
        total_out = sum(expenses.values(), ZERO)
        return {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "target_rate": target_rate,
            "monthly_data": rows,
            "average_savings_rate": round(sum(rates) / len(rates), 2) if rates else 0.0,
            "current_savings_rate": rates[-1] if rates else 0.0,
            "overall_savings_rate": float(ratio_percent(total_in - total_out, total_in)),
            "savings_trend": savings_trend(rates),
            "months_above_target": sum(1 for r in rates if r >= target_rate),
            "total_income": _f(total_in),
            "total_expenses": _f(total_out),
            "total_saved": _f(total_in - total_out),
        }

    def monthly_summary(self, family_id: int, month: Optional[date] = None) -> dict:
        first, last = month_bounds(month or date.today())
        income = sum((f.amount for f in self.income_flows(family_id, first, last)), ZERO)
        spending = self.spending_analysis(family_id, first, last)
        expenses = Decimal(str(spending["total_spending"]))
        payments = (
            self.db.query(models.Payment)
            .filter(
                models.Payment.family_id == family_id,
                models.Payment.due_date >= first,
                models.Payment.due_date <= last,
            )
            .all()
        )
        return {
            "month": first.strftime("%Y-%m"),
            "income": _f(income),
            "expenses": _f(expenses),
            "net": _f(income - expenses),
            "savings_rate": float(ratio_percent(income - expenses, income)),
            "top_categories": spending["category_breakdown"][:5],
            "payments": {
                "total": len(payments),
                "paid": sum(1 for p in payments if p.status == models.PaymentStatus.PAID),
                "overdue": sum(1 for p in payments if p.status == models.PaymentStatus.OVERDUE),
                "scheduled": sum(1 for p in payments if p.status == models.PaymentStatus.SCHEDULED),
            },
            "budget": self.budget_performance(family_id, first, last)["overall"],
        }

    def annual_summary(self, family_id: int, year: Optional[int] = None) -> dict:
        year = year or date.today().year
        start, end = date(year, 1, 1), date(year, 12, 31)
        income = self._monthly_totals(self.income_flows(family_id, start, end), start, end)
        expenses = self._monthly_totals(self.expense_flows(family_id, start, end), start, end)
        months = [
            {
                "month": key,
                "income": _f(income[key]),
                "expenses": _f(expenses[key]),
                "net": _f(income[key] - expenses[key]),
            }
            for key in income
        ]
        total_in = sum(income.values(), ZERO)
        total_out = sum(expenses.values(), ZERO)
        best = max(months, key=lambda m: m["net"])
        worst = min(months, key=lambda m: m["net"])
        return {
            "year": year,
            "months": months,
            "totals": {
                "income": _f(total_in),
                "expenses": _f(total_out),
                "net": _f(total_in - total_out),
                "savings_rate": float(ratio_percent(total_in - total_out, total_in)),
                "average_monthly_income": _f(total_in / 12),
                "average_monthly_expenses": _f(total_out / 12),
            },
            "best_month": best["month"],
            "worst_month": worst["month"],
        }

    def debt_analysis(self, family_id: int, *, today: Optional[date] = None) -> dict:
        today = today or date.today()
        accounts = (
            self.db.query(models.BankAccount)
            .filter(
                models.BankAccount.family_id == family_id,
                models.BankAccount.deleted_at.is_(None),
                models.BankAccount.account_type.in_((models.AccountType.CREDIT, models.AccountType.LOAN)),
            )
            .all()
        )
        total_debt = sum((abs(Decimal(a.current_balance or 0)) for a in accounts), ZERO)
        by_type: dict[str, dict[str, Any]] = {}
        for acct in accounts:
            entry = by_type.setdefault(acct.account_type.value, {"amount": ZERO, "accounts": 0})
            entry["amount"] += abs(Decimal(acct.current_balance or 0))
            entry["accounts"] += 1
        obligations = (
            self.db.query(models.Payment)
            .filter(
                models.Payment.family_id == family_id,
                models.Payment.payment_type == models.PaymentType.RECURRING,
                models.Payment.frequency == models.Frequency.MONTHLY,
                models.Payment.status.in_(
                    (models.PaymentStatus.SCHEDULED, models.PaymentStatus.OVERDUE, models.PaymentStatus.PARTIAL)
                ),
            )
            .all()
        )
        monthly_payments = sum((Decimal(p.amount) for p in obligations), ZERO)
        three_months_ago = add_months(today, -3)
        recent_income = sum((f.amount for f in self.income_flows(family_id, three_months_ago, today)), ZERO)
        avg_income = recent_income / 3
        # flat 18% APR estimate
        monthly_interest = total_debt * Decimal("0.015")
        if monthly_payments > monthly_interest and total_debt > 0:
            months_to_payoff: Optional[int] = int(
                (total_debt / (monthly_payments - monthly_interest)).to_integral_value(rounding="ROUND_CEILING")
            )
        elif total_debt == 0:
            months_to_payoff = 0
        else:
            months_to_payoff = None
        return {
            "total_debt": _f(total_debt),
            "debt_by_type": {k: {"amount": _f(v["amount"]), "accounts": v["accounts"]} for k, v in by_type.items()},
            "accounts": [
                {
                    "account_id": a.id,
                    "account_name": a.account_name,
                    "account_type": a.account_type.value,
                    "balance": _f(abs(Decimal(a.current_balance or 0))),
                }
                for a in accounts
            ],
            "monthly_payment_obligations": _f(monthly_payments),
            "average_monthly_income": _f(avg_income),
            "debt_to_income_ratio": float(ratio_percent(monthly_payments, avg_income)),
            "estimated_monthly_interest": _f(monthly_interest),
            "months_to_payoff": months_to_payoff,
        }

    # Dispatch -----------------------------------------------------------
    def generate(self, family_id: int, report_type: models.ReportType | str, params: Optional[dict] = None) -> dict:
        """Build any report from loose parameters (query strings, scheduled-report JSON)."""
        params = params or {}
        report_type = models.ReportType(report_type)
        start, end = _param_range(params)
        builders: dict[models.ReportType, Callable[[], dict]] = {
            models.ReportType.CASH_FLOW: lambda: self.cash_flow(family_id, start, end, params.get("group_by", "month")),
            models.ReportType.SPENDING_ANALYSIS: lambda: self.spending_analysis(family_id, start, end),
            models.ReportType.BUDGET_PERFORMANCE: lambda: self.budget_performance(family_id, start, end),
            models.ReportType.INCOME_ANALYSIS: lambda: self.income_analysis(family_id, start, end),
            models.ReportType.NET_WORTH: lambda: self.net_worth(family_id),
            models.ReportType.SAVINGS_RATE: lambda: self.savings_rate(
                family_id, start, end, _param_number(params, "target_rate", float, 20.0)
            ),
            models.ReportType.MONTHLY_SUMMARY: lambda: self.monthly_summary(family_id, _param_date(params, "month") or end),
            models.ReportType.ANNUAL_SUMMARY: lambda: self.annual_summary(
                family_id, _param_number(params, "year", int, end.year)
            ),
        }
        return builders[report_type]()

    def custom(self, family_id: int, sections: Iterable[models.ReportType], start: date, end: date) -> dict:
        _check_range(start, end)
        params = {"start_date": start.isoformat(), "end_date": end.isoformat()}
        out: dict[str, Any] = {"start_date": start.isoformat(), "end_date": end.isoformat(), "sections": {}}
        for section in sections:
            out["sections"][models.ReportType(section).value] = self.generate(family_id, section, params)
        return out


def _param_date(params: dict, key: str) -> Optional[date]:
    value = params.get(key)
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10] if len(str(value)) > 7 else f"{value}-01")
    except ValueError:
        raise ValidationFailed(f"Invalid date for {key}: {value}")


def _param_range(params: dict) -> tuple[date, date]:
    default_start, default_end = default_range()
    start = _param_date(params, "start_date") or default_start
    end = _param_date(params, "end_date") or default_end
    if "months" in params and not params.get("start_date"):
        start = add_months(end.replace(day=1), -(_param_number(params, "months", int, 1) - 1))
    return start, end


def _param_number(params: dict, key: str, cast: Callable[[Any], Any], default):
    value = params.get(key)
    if value in (None, ""):
        return default
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValidationFailed(f"Invalid value for {key}: {value}")
