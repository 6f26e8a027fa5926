from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from family_finance import models
from family_finance.core.errors import Conflict, NotFound, ValidationFailed
from family_finance.services.audit_service import AuditService, snapshot
from family_finance.utils.money import ZERO, ratio_percent, to_money

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = ("name", "budget_category_id", "parent_category_id", "monthly_target", "is_active")

DEFAULT_SPENDING_CATEGORIES: tuple[dict, ...] = (
    {
        "name": "Housing",
        "icon": "home",
        "color": "#3B82F6",
        "budget_category_name": "Needs",
        "children": [
            {"name": "Rent/Mortgage", "icon": "key", "color": "#3B82F6"},
            {"name": "Home Maintenance", "icon": "tool", "color": "#60A5FA"},
        ],
    },
    {
        "name": "Utilities",
        "icon": "zap",
        "color": "#F59E0B",
        "budget_category_name": "Needs",
        "children": [
            {"name": "Electric", "icon": "zap", "color": "#F59E0B"},
            {"name": "Water", "icon": "droplet", "color": "#06B6D4"},
            {"name": "Internet", "icon": "wifi", "color": "#8B5CF6"},
        ],
    },
    {"name": "Groceries", "icon": "shopping-cart", "color": "#10B981", "budget_category_name": "Needs", "children": []},
    {
        "name": "Transportation",
        "icon": "car",
        "color": "#EF4444",
        "budget_category_name": "Needs",
        "children": [
            {"name": "Gas", "icon": "fuel", "color": "#EF4444"},
            {"name": "Car Insurance", "icon": "shield", "color": "#F87171"},
        ],
    },
    {"name": "Healthcare", "icon": "heart", "color": "#EC4899", "budget_category_name": "Needs", "children": []},
    {"name": "Dining Out", "icon": "coffee", "color": "#F97316", "budget_category_name": "Wants", "children": []},
    {"name": "Entertainment", "icon": "film", "color": "#8B5CF6", "budget_category_name": "Wants", "children": []},
    {"name": "Shopping", "icon": "shopping-bag", "color": "#84CC16", "budget_category_name": "Wants", "children": []},
    {
        "name": "Savings",
        "icon": "piggy-bank",
        "color": "#10B981",
        "budget_category_name": "Savings",
        "children": [
            {"name": "Emergency Fund", "icon": "umbrella", "color": "#10B981"},
            {"name": "Retirement", "icon": "trending-up", "color": "#059669"},
        ],
    },
)


class SpendingCategoryService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)

    def get(self, family_id: int, category_id: int) -> models.SpendingCategory:
        row = (
            self.db.query(models.SpendingCategory)
            .filter(models.SpendingCategory.family_id == family_id, models.SpendingCategory.id == category_id)
            .first()
        )
        if row is None:
            raise NotFound("Spending category not found")
        return row

    def _budget_category(self, family_id: int, budget_category_id: int) -> models.BudgetCategory:
        row = (
            self.db.query(models.BudgetCategory)
            .filter(models.BudgetCategory.family_id == family_id, models.BudgetCategory.id == budget_category_id)
            .first()
        )
        if row is None:
            raise NotFound("Budget category not found")
        return row

    def _ensure_unique(
        self, family_id: int, name: str, parent_id: Optional[int], exclude_id: Optional[int] = None
    ) -> None:
        q = self.db.query(models.SpendingCategory).filter(
            models.SpendingCategory.family_id == family_id,
            models.SpendingCategory.is_active.is_(True),
            func.lower(models.SpendingCategory.name) == name.strip().lower(),
        )
        if parent_id is None:
            q = q.filter(models.SpendingCategory.parent_category_id.is_(None))
        else:
            q = q.filter(models.SpendingCategory.parent_category_id == parent_id)
        if exclude_id is not None:
            q = q.filter(models.SpendingCategory.id != exclude_id)
        if q.first() is not None:
            raise Conflict("Category name already exists")

    def create(self, family_id: int, member_id: int, payload: dict) -> models.SpendingCategory:
        self._budget_category(family_id, payload["budget_category_id"])
        parent_id = payload.get("parent_category_id")
        if parent_id is not None:
            self.get(family_id, parent_id)
        self._ensure_unique(family_id, payload["name"], parent_id)
        row = models.SpendingCategory(
            family_id=family_id,
            name=payload["name"].strip(),
            budget_category_id=payload["budget_category_id"],
            parent_category_id=parent_id,
            icon=payload.get("icon"),
            color=payload.get("color"),
            monthly_target=to_money(payload["monthly_target"]) if payload.get("monthly_target") is not None else None,
            description=payload.get("description"),
            is_active=True,
        )
        self.db.add(row)
        self.db.flush()
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="SpendingCategory",
            entity_id=row.id,
            new_values=snapshot(row, _AUDIT_FIELDS),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def list(
        self,
        family_id: int,
        *,
        include_inactive: bool = False,
        parent_category_id: Optional[int] = None,
        budget_category_id: Optional[int] = None,
        search: Optional[str] = None,
    ) -> list[models.SpendingCategory]:
        q = self.db.query(models.SpendingCategory).filter(models.SpendingCategory.family_id == family_id)
        if not include_inactive:
            q = q.filter(models.SpendingCategory.is_active.is_(True))
        if parent_category_id is not None:
            q = q.filter(models.SpendingCategory.parent_category_id == parent_category_id)
        if budget_category_id is not None:
            q = q.filter(models.SpendingCategory.budget_category_id == budget_category_id)
        if search:
            q = q.filter(models.SpendingCategory.name.ilike(f"%{search.strip()}%"))
        return q.order_by(models.SpendingCategory.name, models.SpendingCategory.id).all()

    def _would_cycle(self, family_id: int, category_id: int, new_parent_id: int) -> bool:
        parents = dict(
            self.db.query(models.SpendingCategory.id, models.SpendingCategory.parent_category_id)
            .filter(models.SpendingCategory.family_id == family_id)
            .all()
        )
        seen = set()
        cursor: Optional[int] = new_parent_id
        while cursor is not None and cursor not in seen:
            if cursor == category_id:
                return True
            seen.add(cursor)
            cursor = parents.get(cursor)
        return False

    def update(self, family_id: int, member_id: int, category_id: int, patch: dict) -> models.SpendingCategory:
        row = self.get(family_id, category_id)
        if not patch:
            return row
        before = snapshot(row, _AUDIT_FIELDS)
        if patch.get("budget_category_id") is not None:
            self._budget_category(family_id, patch["budget_category_id"])
        if "parent_category_id" in patch and patch["parent_category_id"] is not None:
            parent_id = patch["parent_category_id"]
            if parent_id == row.id:
                raise ValidationFailed("Category cannot be its own parent")
            try:
                self.get(family_id, parent_id)
            except NotFound:
                raise ValidationFailed("Invalid parent category")
            if self._would_cycle(family_id, row.id, parent_id):
                raise ValidationFailed("Category hierarchy cannot contain cycles")
        name = patch.get("name") or row.name
        parent = patch["parent_category_id"] if "parent_category_id" in patch else row.parent_category_id
        if patch.get("name") is not None or "parent_category_id" in patch:
            self._ensure_unique(family_id, name, parent, exclude_id=row.id)
        for key, value in patch.items():
            if value is None and key in ("name", "budget_category_id", "is_active"):
                continue
            if key == "name":
                value = value.strip()
            if key == "monthly_target" and value is not None:
                value = to_money(value)
            setattr(row, key, value)
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="SpendingCategory",
            entity_id=row.id,
            old_values=before,
            new_values=snapshot(row, _AUDIT_FIELDS),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(
        self,
        family_id: int,
        member_id: int,
        category_id: int,
        *,
        move_transactions_to: Optional[int] = None,
        move_payments_to: Optional[int] = None,
    ) -> None:
        row = self.get(family_id, category_id)
        before = snapshot(row, _AUDIT_FIELDS)
        for target in (move_transactions_to, move_payments_to):
            if target is None:
                continue
            if target == row.id:
                raise ValidationFailed("Cannot move items to the category being deleted")
            dest = self.get(family_id, target)
            if not dest.is_active:
                raise ValidationFailed("Target category is inactive")

        self.db.query(models.SpendingCategory).filter(
            models.SpendingCategory.parent_category_id == row.id
        ).update({models.SpendingCategory.parent_category_id: row.parent_category_id}, synchronize_session=False)

        moved_txns = (
            self.db.query(models.Transaction)
            .filter(models.Transaction.spending_category_id == row.id)
            .update(
                {
                    models.Transaction.spending_category_id: move_transactions_to,
                    models.Transaction.category_confidence: Decimal("1.00") if move_transactions_to else Decimal("0"),
                    models.Transaction.user_categorized: move_transactions_to is not None,
                },
                synchronize_session=False,
            )
        )
        moved_payments = (
            self.db.query(models.Payment)
            .filter(models.Payment.spending_category_id == row.id)
            .update({models.Payment.spending_category_id: move_payments_to}, synchronize_session=False)
        )
        row.is_active = False
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.DELETE,
            entity_type="SpendingCategory",
            entity_id=row.id,
            old_values=before,
            new_values={"transactions_moved": moved_txns, "payments_moved": moved_payments},
        )
        self.db.commit()

    def _spend_by_category(
        self, family_id: int, start: Optional[date] = None, end: Optional[date] = None
    ) -> dict[int, tuple[int, Decimal, Optional[date]]]:
        q = (
            self.db.query(
                models.Transaction.spending_category_id,
                func.count(models.Transaction.id),
                func.coalesce(func.sum(models.Transaction.amount), 0),
                func.max(models.Transaction.date),
            )
            .join(models.BankAccount, models.BankAccount.id == models.Transaction.bank_account_id)
            .filter(
                models.BankAccount.family_id == family_id,
                models.Transaction.spending_category_id.isnot(None),
                models.Transaction.amount > 0,
            )
        )
        if start is not None:
            q = q.filter(models.Transaction.date >= start)
        if end is not None:
            q = q.filter(models.Transaction.date <= end)
        return {cid: (int(n), to_money(total), last) for cid, n, total, last in q.group_by(models.Transaction.spending_category_id)}

    def hierarchy(self, family_id: int) -> list[dict]:
        rows = (
            self.db.query(models.SpendingCategory)
            .options(selectinload(models.SpendingCategory.budget_category))
            .filter(models.SpendingCategory.family_id == family_id, models.SpendingCategory.is_active.is_(True))
            .order_by(models.SpendingCategory.name)
            .all()
        )
        stats = self._spend_by_category(family_id)
        children: dict[Optional[int], list[models.SpendingCategory]] = defaultdict(list)
        ids = {r.id for r in rows}
        for r in rows:
            # orphans of an inactive parent surface at the top level
            parent = r.parent_category_id if r.parent_category_id in ids else None
            children[parent].append(r)

        def build(node: models.SpendingCategory) -> dict:
            count, total, _ = stats.get(node.id, (0, ZERO, None))
            return {
                "id": node.id,
                "name": node.name,
                "icon": node.icon,
                "color": node.color,
                "is_active": node.is_active,
                "monthly_target": float(node.monthly_target) if node.monthly_target is not None else None,
                "budget_category": {
                    "id": node.budget_category.id,
                    "name": node.budget_category.name,
                    "color": node.budget_category.color,
                },
                "transaction_count": count,
                "total_spent": float(total),
                "children": [build(child) for child in children.get(node.id, [])],
            }

        return [build(root) for root in children.get(None, [])]

    def usage_stats(self, family_id: int, start: Optional[date] = None, end: Optional[date] = None) -> list[dict]:
        categories = self.list(family_id)
        stats = self._spend_by_category(family_id, start, end)
        grand_total = sum((total for _, total, _ in stats.values()), ZERO)
        if start and end:
            months = max(1, (end.year - start.year) * 12 + end.month - start.month + 1)
        else:
            months = 12
        out = []
        for cat in categories:
            count, total, last = stats.get(cat.id, (0, ZERO, None))
            out.append(
                {
                    "category_id": cat.id,
                    "category_name": cat.name,
                    "transaction_count": count,
                    "total_amount": float(total),
                    "average_amount": float(to_money(total / count)) if count else 0.0,
                    "last_used": last,
                    "monthly_average": float(to_money(total / months)),
                    "percentage_of_total_spending": float(ratio_percent(total, grand_total)),
                }
            )
        out.sort(key=lambda r: r["total_amount"], reverse=True)
        return out

    @staticmethod
    def defaults() -> list[dict]:
        return [dict(d) for d in DEFAULT_SPENDING_CATEGORIES]