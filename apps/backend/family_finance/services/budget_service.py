"""Budget categories, percentage validation and income allocation.

The arithmetic lives in module-level functions so it can be exercised
without a database; ``BudgetService`` wraps them with persistence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from family_finance import models
from family_finance.core.errors import Conflict, NotFound, ValidationFailed
from family_finance.services.audit_service import AuditService, snapshot
from family_finance.utils.money import HUNDRED, ZERO, percent_of, ratio_percent, to_money, to_percent
from family_finance.utils.schedule import add_months

logger = logging.getLogger(__name__)

DEFAULT_COLORS = (
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#EF4444",
    "#8B5CF6",
    "#F97316",
    "#06B6D4",
    "#84CC16",
)

BUILTIN_TEMPLATES: tuple[dict, ...] = (
    {
        "name": "50/30/20",
        "description": "Needs, wants and savings split of take-home pay.",
        "categories": [
            {"name": "Needs", "target_percentage": Decimal("50"), "color": "#3B82F6"},
            {"name": "Wants", "target_percentage": Decimal("30"), "color": "#F59E0B"},
            {"name": "Savings", "target_percentage": Decimal("20"), "color": "#10B981"},
        ],
    },
    {
        "name": "70/20/10",
        "description": "Living expenses, savings and giving or debt payoff.",
        "categories": [
            {"name": "Living Expenses", "target_percentage": Decimal("70"), "color": "#3B82F6"},
            {"name": "Savings", "target_percentage": Decimal("20"), "color": "#10B981"},
            {"name": "Debt & Giving", "target_percentage": Decimal("10"), "color": "#EF4444"},
        ],
    },
    {
        "name": "Zero-Based",
        "description": "Every dollar assigned across detailed buckets.",
        "categories": [
            {"name": "Housing", "target_percentage": Decimal("30"), "color": "#3B82F6"},
            {"name": "Transportation", "target_percentage": Decimal("15"), "color": "#EF4444"},
            {"name": "Food", "target_percentage": Decimal("15"), "color": "#10B981"},
            {"name": "Utilities", "target_percentage": Decimal("10"), "color": "#F59E0B"},
            {"name": "Savings", "target_percentage": Decimal("15"), "color": "#8B5CF6"},
            {"name": "Personal", "target_percentage": Decimal("10"), "color": "#F97316"},
            {"name": "Giving", "target_percentage": Decimal("5"), "color": "#06B6D4"},
        ],
    },
    {
        "name": "Envelope",
        "description": "Fixed envelopes for household essentials and fun money.",
        "categories": [
            {"name": "Bills", "target_percentage": Decimal("40"), "color": "#3B82F6"},
            {"name": "Groceries", "target_percentage": Decimal("15"), "color": "#10B981"},
            {"name": "Gas", "target_percentage": Decimal("10"), "color": "#EF4444"},
            {"name": "Fun Money", "target_percentage": Decimal("10"), "color": "#F59E0B"},
            {"name": "Emergency Fund", "target_percentage": Decimal("25"), "color": "#8B5CF6"},
        ],
    },
)

PERCENT_TOLERANCE = Decimal("0.01")


# ---- Pure arithmetic ------------------------------------------------------


@dataclass(frozen=True)
class CategoryShare:
    category_id: int
    target_percentage: Decimal


@dataclass(frozen=True)
class AllocationLine:
    category_id: int
    percentage: Decimal
    amount: Decimal


def total_active_percentage(categories: Iterable[models.BudgetCategory], exclude_id: Optional[int] = None) -> Decimal:
    total = ZERO
    for cat in categories:
        if not cat.is_active or (exclude_id is not None and cat.id == exclude_id):
            continue
        total += Decimal(cat.target_percentage)
    return to_percent(total)


def validate_category_percentages(
    categories: Iterable[models.BudgetCategory],
    new_percentage: Decimal,
    exclude_id: Optional[int] = None,
) -> Decimal:
    """Return the would-be total; raise when it exceeds 100%."""
    total = total_active_percentage(categories, exclude_id) + to_percent(new_percentage)
    if total > HUNDRED:
        raise ValidationFailed(
            f"Total budget percentages cannot exceed 100%. Current total: {_fmt_pct(total)}%"
        )
    return total


def compute_allocation_amounts(
    income_amount: Decimal,
    categories: Sequence[CategoryShare],
    overrides: Optional[Mapping[int, Decimal]] = None,
) -> list[AllocationLine]:
    """Split ``income_amount`` by category percentage, each rounded half-up to cents."""
    overrides = overrides or {}
    lines: list[AllocationLine] = []
    for share in categories:
        pct = to_percent(overrides.get(share.category_id, share.target_percentage))
        if pct < 0 or pct > HUNDRED:
            raise ValidationFailed("Allocation percentages must be between 0 and 100")
        lines.append(AllocationLine(share.category_id, pct, percent_of(income_amount, pct)))
    return lines


def summarize_percentage_set(percentages: Iterable[Decimal]) -> dict:
    total = to_percent(sum((Decimal(p) for p in percentages), ZERO))
    difference = to_percent(total - HUNDRED)
    suggestions: list[str] = []
    if difference < -PERCENT_TOLERANCE:
        suggestions.append(f"Add {_fmt_pct(-difference)}% to reach 100%")
        suggestions.append("Consider creating a savings or miscellaneous category for the unallocated share")
    elif difference > PERCENT_TOLERANCE:
        suggestions.append(f"Reduce category percentages by {_fmt_pct(difference)}%")
    return {
        "is_valid": abs(difference) < PERCENT_TOLERANCE,
        "total_percentage": float(total),
        "difference": float(difference),
        "suggestions": suggestions,
    }


def _fmt_pct(value: Decimal) -> str:
    return f"{Decimal(value).normalize():f}"


# ---- Service --------------------------------------------------------------


class BudgetService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)

    # Categories ---------------------------------------------------------
    def _family_categories(self, family_id: int) -> list[models.BudgetCategory]:
        return self.db.query(models.BudgetCategory).filter(models.BudgetCategory.family_id == family_id).all()

    def list_categories(self, family_id: int, *, include_inactive: bool = False) -> list[models.BudgetCategory]:
        q = self.db.query(models.BudgetCategory).filter(models.BudgetCategory.family_id == family_id)
        if not include_inactive:
            q = q.filter(models.BudgetCategory.is_active.is_(True))
        return q.order_by(models.BudgetCategory.sort_order, models.BudgetCategory.id).all()

    def get_category(self, family_id: int, category_id: int) -> models.BudgetCategory:
        row = (
            self.db.query(models.BudgetCategory)
            .filter(models.BudgetCategory.family_id == family_id, models.BudgetCategory.id == category_id)
            .first()
        )
        if row is None:
            raise NotFound("Budget category not found")
        return row

    def _ensure_unique_name(self, family_id: int, name: str, exclude_id: Optional[int] = None) -> None:
        q = self.db.query(models.BudgetCategory).filter(
            models.BudgetCategory.family_id == family_id,
            func.lower(models.BudgetCategory.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            q = q.filter(models.BudgetCategory.id != exclude_id)
        if q.first() is not None:
            raise Conflict("A budget category with this name already exists")

    def create_category(self, family_id: int, member_id: int, payload: dict) -> models.BudgetCategory:
        existing = self._family_categories(family_id)
        self._ensure_unique_name(family_id, payload["name"])
        validate_category_percentages(existing, payload["target_percentage"])
        max_order = max((c.sort_order for c in existing), default=0)
        row = models.BudgetCategory(
            family_id=family_id,
            name=payload["name"].strip(),
            target_percentage=to_percent(payload["target_percentage"]),
            color=payload.get("color") or DEFAULT_COLORS[len(existing) % len(DEFAULT_COLORS)],
            sort_order=max_order + 1,
            is_active=True,
        )
        self.db.add(row)
        self.db.flush()
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="BudgetCategory",
            entity_id=row.id,
            new_values=snapshot(row, ("name", "target_percentage", "color", "sort_order")),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def update_category(self, family_id: int, member_id: int, category_id: int, patch: dict) -> models.BudgetCategory:
        row = self.get_category(family_id, category_id)
        if not patch:
            return row
        fields = ("name", "target_percentage", "color", "sort_order", "is_active")
        before = snapshot(row, fields)
        if "name" in patch and patch["name"] is not None:
            self._ensure_unique_name(family_id, patch["name"], exclude_id=row.id)
            patch["name"] = patch["name"].strip()
        will_be_active = patch.get("is_active", row.is_active)
        if will_be_active:
            pct = patch.get("target_percentage")
            pct = row.target_percentage if pct is None else pct
            validate_category_percentages(self._family_categories(family_id), pct, exclude_id=row.id)
        for key, value in patch.items():
            if value is None and key in ("name", "target_percentage", "color", "sort_order", "is_active"):
                continue
            if key == "target_percentage":
                value = to_percent(value)
            setattr(row, key, value)
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="BudgetCategory",
            entity_id=row.id,
            old_values=before,
            new_values=snapshot(row, fields),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete_category(self, family_id: int, member_id: int, category_id: int) -> None:
        row = self.get_category(family_id, category_id)
        in_use = (
            self.db.query(models.SpendingCategory)
            .filter(
                models.SpendingCategory.budget_category_id == row.id,
                models.SpendingCategory.is_active.is_(True),
            )
            .count()
        )
        if in_use:
            raise Conflict("Cannot delete budget category with active spending categories")
        self.db.query(models.BudgetAllocation).filter(models.BudgetAllocation.budget_category_id == row.id).delete(
            synchronize_session=False
        )
        # inactive spending categories keep their FK; park the row instead of deleting it
        has_children = (
            self.db.query(models.SpendingCategory)
            .filter(models.SpendingCategory.budget_category_id == row.id)
            .first()
            is not None
        )
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.DELETE,
            entity_type="BudgetCategory",
            entity_id=row.id,
            old_values=snapshot(row, ("name", "target_percentage")),
        )
        if has_children:
            row.is_active = False
        else:
            self.db.delete(row)
        self.db.commit()

    def validate_percentages(self, family_id: int, items: Sequence[tuple[int, Decimal]]) -> dict:
        owned = {c.id for c in self._family_categories(family_id)}
        for category_id, pct in items:
            if category_id not in owned:
                raise ValidationFailed(f"Budget category {category_id} does not belong to this family")
            if pct < 0 or pct > HUNDRED:
                raise ValidationFailed("Percentages must be between 0 and 100")
        return summarize_percentage_set(pct for _, pct in items)

    def overview(self, family_id: int) -> dict:
        categories = self.list_categories(family_id)
        total = total_active_percentage(categories)
        return {
            "categories": categories,
            "total_percentage": float(total),
            "remaining_percentage": float(to_percent(HUNDRED - total)),
            "is_complete": abs(total - HUNDRED) < PERCENT_TOLERANCE,
            "category_count": len(categories),
        }

    # Allocations --------------------------------------------------------
    def _income(self, family_id: int, income_event_id: int) -> models.IncomeEvent:
        row = (
            self.db.query(models.IncomeEvent)
            .filter(models.IncomeEvent.family_id == family_id, models.IncomeEvent.id == income_event_id)
            .first()
        )
        if row is None:
            raise NotFound("Income event not found")
        return row

    def generate_allocation(
        self,
        family_id: int,
        income_event_id: int,
        overrides: Optional[Mapping[int, Decimal]] = None,
    ) -> dict:
        income = self._income(family_id, income_event_id)
        exists = (
            self.db.query(models.BudgetAllocation)
            .filter(models.BudgetAllocation.income_event_id == income.id)
            .first()
        )
        if exists is not None:
            raise Conflict("Budget allocation already exists for this income event")
        categories = self.list_categories(family_id)
        if not categories:
            raise ValidationFailed("No active budget categories found")
        overrides = dict(overrides or {})
        unknown = set(overrides) - {c.id for c in categories}
        if unknown:
            raise ValidationFailed("Overrides reference unknown or inactive budget categories")
        lines = compute_allocation_amounts(
            Decimal(income.amount),
            [CategoryShare(c.id, Decimal(c.target_percentage)) for c in categories],
            overrides,
        )
        if sum((line.percentage for line in lines), ZERO) > HUNDRED:
            raise ValidationFailed("Allocation percentages cannot exceed 100% in total")
        rows = []
        for line in lines:
            row = models.BudgetAllocation(
                income_event_id=income.id,
                budget_category_id=line.category_id,
                amount=line.amount,
                percentage=line.percentage,
            )
            self.db.add(row)
            rows.append(row)
        self.db.commit()
        for row in rows:
            self.db.refresh(row)
        total_allocated = sum((line.amount for line in lines), ZERO)
        logger.info("Generated %d allocations for income event %s", len(rows), income.id)
        return {
            "allocations": rows,
            "summary": {
                "total_allocated": float(total_allocated),
                "income_amount": float(income.amount),
                "unallocated_amount": float(to_money(Decimal(income.amount) - total_allocated)),
                "categories_allocated": len(rows),
            },
        }

    def list_allocations(self, family_id: int, income_event_id: Optional[int] = None) -> list[models.BudgetAllocation]:
        q = (
            self.db.query(models.BudgetAllocation)
            .join(models.IncomeEvent, models.IncomeEvent.id == models.BudgetAllocation.income_event_id)
            .filter(models.IncomeEvent.family_id == family_id)
            .options(
                selectinload(models.BudgetAllocation.budget_category),
                selectinload(models.BudgetAllocation.income_event),
            )
        )
        if income_event_id is not None:
            q = q.filter(models.BudgetAllocation.income_event_id == income_event_id)
        return q.order_by(models.IncomeEvent.scheduled_date.desc(), models.BudgetAllocation.id).all()

    def _allocation(self, family_id: int, allocation_id: int) -> models.BudgetAllocation:
        row = (
            self.db.query(models.BudgetAllocation)
            .join(models.IncomeEvent, models.IncomeEvent.id == models.BudgetAllocation.income_event_id)
            .filter(models.IncomeEvent.family_id == family_id, models.BudgetAllocation.id == allocation_id)
            .first()
        )
        if row is None:
            raise NotFound("Budget allocation not found")
        return row

    def update_allocation(self, family_id: int, allocation_id: int, amount: Decimal) -> models.BudgetAllocation:
        row = self._allocation(family_id, allocation_id)
        income_amount = Decimal(row.income_event.amount)
        amount = to_money(amount)
        others = (
            self.db.query(func.coalesce(func.sum(models.BudgetAllocation.amount), 0))
            .filter(
                models.BudgetAllocation.income_event_id == row.income_event_id,
                models.BudgetAllocation.id != row.id,
            )
            .scalar()
        )
        if to_money(others) + amount > income_amount:
            raise ValidationFailed("Total allocations cannot exceed the income amount")
        row.amount = amount
        row.percentage = ratio_percent(amount, income_amount)
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete_allocation(self, family_id: int, allocation_id: int) -> None:
        row = self._allocation(family_id, allocation_id)
        self.db.delete(row)
        self.db.commit()

    # Analysis -----------------------------------------------------------
    def performance(self, family_id: int, start: date, end: date) -> dict:
        categories = self.list_categories(family_id)
        budgeted_rows = dict(
            self.db.query(models.BudgetAllocation.budget_category_id, func.sum(models.BudgetAllocation.amount))
            .join(models.IncomeEvent, models.IncomeEvent.id == models.BudgetAllocation.income_event_id)
            .filter(
                models.IncomeEvent.family_id == family_id,
                models.IncomeEvent.scheduled_date >= start,
                models.IncomeEvent.scheduled_date <= end,
            )
            .group_by(models.BudgetAllocation.budget_category_id)
            .all()
        )
        txn_rows = dict(
            self.db.query(models.SpendingCategory.budget_category_id, func.sum(models.Transaction.amount))
            .join(models.SpendingCategory, models.SpendingCategory.id == models.Transaction.spending_category_id)
            .join(models.BankAccount, models.BankAccount.id == models.Transaction.bank_account_id)
            .filter(
                models.BankAccount.family_id == family_id,
                models.Transaction.amount > 0,
                models.Transaction.date >= start,
                models.Transaction.date <= end,
            )
            .group_by(models.SpendingCategory.budget_category_id)
            .all()
        )
        paid_rows = dict(
            self.db.query(models.SpendingCategory.budget_category_id, func.sum(models.Payment.paid_amount))
            .join(models.SpendingCategory, models.SpendingCategory.id == models.Payment.spending_category_id)
            .filter(
                models.Payment.family_id == family_id,
                models.Payment.status.in_((models.PaymentStatus.PAID, models.PaymentStatus.PARTIAL)),
                models.Payment.paid_date >= start,
                models.Payment.paid_date <= end,
            )
            .group_by(models.SpendingCategory.budget_category_id)
            .all()
        )
        rows = []
        total_budgeted = total_spent = ZERO
        for cat in categories:
            budgeted = to_money(budgeted_rows.get(cat.id))
            spent = to_money(txn_rows.get(cat.id)) + to_money(paid_rows.get(cat.id))
            total_budgeted += budgeted
            total_spent += spent
            rows.append(
                {
                    "budget_category_id": cat.id,
                    "name": cat.name,
                    "target_percentage": float(cat.target_percentage),
                    "budgeted": float(budgeted),
                    "spent": float(spent),
                    "variance": float(budgeted - spent),
                    "percent_used": float(ratio_percent(spent, budgeted)),
                }
            )
        return {
            "start_date": start,
            "end_date": end,
            "categories": rows,
            "total_budgeted": float(total_budgeted),
            "total_spent": float(total_spent),
            "total_variance": float(total_budgeted - total_spent),
        }

    def average_monthly_income(self, family_id: int, *, today: Optional[date] = None, lookback_months: int = 6) -> Decimal:
        today = today or date.today()
        since = add_months(today, -lookback_months)
        received = (
            self.db.query(models.IncomeEvent)
            .filter(
                models.IncomeEvent.family_id == family_id,
                models.IncomeEvent.status == models.IncomeStatus.RECEIVED,
                models.IncomeEvent.actual_date >= since,
                models.IncomeEvent.actual_date <= today,
            )
            .all()
        )
        total = sum((Decimal(e.actual_amount if e.actual_amount is not None else e.amount) for e in received), ZERO)
        return to_money(total / lookback_months)

    def projections(self, family_id: int, months: int = 6, *, today: Optional[date] = None) -> dict:
        today = today or date.today()
        average = self.average_monthly_income(family_id, today=today)
        categories = self.list_categories(family_id)
        out = []
        first = today.replace(day=1)
        for i in range(months):
            month_start = add_months(first, i)
            cats = []
            for cat in categories:
                budgeted = percent_of(average, Decimal(cat.target_percentage))
                cats.append(
                    {
                        "budget_category_id": cat.id,
                        "name": cat.name,
                        "percentage": float(cat.target_percentage),
                        "budgeted": float(budgeted),
                        "projected_spending": float(to_money(budgeted * Decimal("0.9"))),
                    }
                )
            out.append(
                {
                    "month": month_start.strftime("%Y-%m"),
                    "total_budgeted": float(sum((Decimal(str(c["budgeted"])) for c in cats), ZERO)),
                    "total_projected": float(sum((Decimal(str(c["projected_spending"])) for c in cats), ZERO)),
                    "categories": cats,
                }
            )
        return {"months": months, "average_monthly_income": float(average), "projections": out}

    # Templates ----------------------------------------------------------
    @staticmethod
    def templates() -> list[dict]:
        return [dict(t) for t in BUILTIN_TEMPLATES]

    def apply_template(
        self,
        family_id: int,
        member_id: int,
        *,
        template_name: Optional[str] = None,
        categories: Optional[Sequence[Mapping]] = None,
    ) -> list[models.BudgetCategory]:
        if template_name:
            match = next((t for t in BUILTIN_TEMPLATES if t["name"].lower() == template_name.lower()), None)
            if match is None:
                raise NotFound("Budget template not found")
            categories = match["categories"]
        categories = list(categories or [])
        names = [c["name"].strip().lower() for c in categories]
        if len(set(names)) != len(names):
            raise ValidationFailed("Template category names must be unique")
        total = sum((to_percent(c["target_percentage"]) for c in categories), ZERO)
        if total > HUNDRED:
            raise ValidationFailed(
                f"Total budget percentages cannot exceed 100%. Current total: {_fmt_pct(total)}%"
            )

        existing = {c.name.lower(): c for c in self._family_categories(family_id)}
        for cat in existing.values():
            cat.is_active = False
        result: list[models.BudgetCategory] = []
        for index, spec in enumerate(categories):
            row = existing.get(spec["name"].strip().lower())
            color = spec.get("color") or DEFAULT_COLORS[index % len(DEFAULT_COLORS)]
            if row is None:
                row = models.BudgetCategory(family_id=family_id, name=spec["name"].strip())
                self.db.add(row)
            row.target_percentage = to_percent(spec["target_percentage"])
            row.color = color
            row.sort_order = index + 1
            row.is_active = True
            result.append(row)
        self.db.flush()
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="BudgetTemplate",
            new_values={"template": template_name or "custom", "categories": [r.name for r in result]},
        )
        self.db.commit()
        for row in result:
            self.db.refresh(row)
        logger.info("Applied budget template %s to family %s", template_name or "custom", family_id)
        return result
