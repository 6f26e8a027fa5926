from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.errors import NotFound, ValidationFailed
from family_finance.services.audit_service import AuditService
from family_finance.utils.money import to_money
from family_finance.utils.text import names_match

logger = logging.getLogger(__name__)

UNCATEGORIZED_CONFIDENCE = Decimal("0.80")
AUTO_APPLY_CONFIDENCE = 0.7
SUGGEST_CONFIDENCE = 0.5
MATCH_AMOUNT_TOLERANCE = Decimal("0.01")
MATCH_DATE_TOLERANCE_DAYS = 3


@dataclass(frozen=True)
class KeywordRule:
    keywords: tuple[str, ...]
    category_name: str
    weight: float


KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(("grocery", "market", "food", "supermarket"), "Groceries", 0.9),
    KeywordRule(("gas", "fuel", "station", "shell", "chevron"), "Transportation", 0.9),
    KeywordRule(("restaurant", "cafe", "dining", "food"), "Dining Out", 0.8),
    KeywordRule(("pharmacy", "medical", "hospital", "doctor"), "Healthcare", 0.9),
    KeywordRule(("amazon", "target", "walmart", "retail"), "Shopping", 0.8),
    KeywordRule(("electric", "utility", "water", "gas bill"), "Utilities", 0.9),
    KeywordRule(("mortgage", "rent", "housing"), "Housing", 0.9),
)

# provider category keywords -> spending category name fragment
PROVIDER_CATEGORY_MAP: tuple[tuple[tuple[str, ...], str], ...] = (
    (("food", "grocery", "restaurant"), "groceries"),
    (("gas", "transportation", "travel"), "transportation"),
    (("retail", "shopping", "shops"), "shopping"),
    (("utility", "utilities", "electric", "water"), "utilities"),
    (("medical", "healthcare"), "healthcare"),
)


def suggest_category(
    description: str,
    merchant_name: Optional[str],
    categories: Sequence[models.SpendingCategory],
) -> Optional[dict]:
    """Best keyword-rule match against the family's category names, or None.

    Score is ``matched keywords / rule keywords * rule weight``.
    """
    text = f"{description or ''} {merchant_name or ''}".lower()
    best: Optional[dict] = None
    best_score = 0.0
    for rule in KEYWORD_RULES:
        matched = [k for k in rule.keywords if k in text]
        if not matched:
            continue
        score = round(len(matched) / len(rule.keywords) * rule.weight, 2)
        if score <= best_score:
            continue
        target = rule.category_name.lower()
        category = next((c for c in categories if target in c.name.lower()), None)
        if category is None:
            continue
        best = {
            "spending_category_id": category.id,
            "name": category.name,
            "confidence": score,
            "reason": "Matched keywords: " + ", ".join(matched),
        }
        best_score = score
    return best


def map_provider_category(
    provider_categories: Iterable[str],
    categories: Sequence[models.SpendingCategory],
) -> Optional[models.SpendingCategory]:
    joined = " ".join(provider_categories).lower()
    if not joined:
        return None
    for keywords, fragment in PROVIDER_CATEGORY_MAP:
        if any(k in joined for k in keywords):
            return next((c for c in categories if fragment in c.name.lower()), None)
    return None


def score_payment_match(
    txn_amount: Decimal,
    txn_date: date,
    merchant: Optional[str],
    payment: models.Payment,
) -> tuple[float, list[str]]:
    """0.4 for amount, 0.3 for date proximity, 0.3 for a payee/merchant name match."""
    reasons: list[str] = []
    amount_diff = abs(Decimal(txn_amount) - Decimal(payment.amount))
    if amount_diff == 0:
        amount_score = 0.4
        reasons.append("exact amount match")
    else:
        amount_score = 0.4 * (1 - min(float(amount_diff / MATCH_AMOUNT_TOLERANCE), 1.0))
        if amount_diff <= MATCH_AMOUNT_TOLERANCE:
            reasons.append("amount match within $0.01")
    days = abs((txn_date - payment.due_date).days)
    if days == 0:
        date_score = 0.3
        reasons.append("same date")
    else:
        date_score = 0.3 * (1 - min(days / MATCH_DATE_TOLERANCE_DAYS, 1.0))
        if days <= MATCH_DATE_TOLERANCE_DAYS:
            reasons.append(f"{days} day(s) apart")
    name_score = 0.0
    if names_match(payment.payee, merchant):
        name_score = 0.3
        reasons.append("merchant/payee name match")
    return round(min(amount_score + date_score + name_score, 1.0), 2), reasons


class TransactionService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)

    def _query(self, family_id: int):
        return (
            self.db.query(models.Transaction)
            .join(models.BankAccount, models.BankAccount.id == models.Transaction.bank_account_id)
            .filter(models.BankAccount.family_id == family_id)
        )

    def _categories(self, family_id: int) -> list[models.SpendingCategory]:
        return (
            self.db.query(models.SpendingCategory)
            .filter(models.SpendingCategory.family_id == family_id, models.SpendingCategory.is_active.is_(True))
            .order_by(models.SpendingCategory.name)
            .all()
        )

    def _category(self, family_id: int, category_id: int) -> models.SpendingCategory:
        row = (
            self.db.query(models.SpendingCategory)
            .filter(
                models.SpendingCategory.family_id == family_id,
                models.SpendingCategory.id == category_id,
                models.SpendingCategory.is_active.is_(True),
            )
            .first()
        )
        if row is None:
            raise ValidationFailed("Spending category not found or inactive")
        return row

    def list(
        self,
        family_id: int,
        *,
        bank_account_ids: Optional[Sequence[int]] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        spending_category_id: Optional[int] = None,
        uncategorized: Optional[bool] = None,
        pending: Optional[bool] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[models.Transaction], int]:
        q = self._query(family_id)
        if bank_account_ids:
            q = q.filter(models.Transaction.bank_account_id.in_(list(bank_account_ids)))
        if start_date is not None:
            q = q.filter(models.Transaction.date >= start_date)
        if end_date is not None:
            q = q.filter(models.Transaction.date <= end_date)
        if spending_category_id is not None:
            q = q.filter(models.Transaction.spending_category_id == spending_category_id)
        if uncategorized:
            q = q.filter(
                or_(
                    models.Transaction.spending_category_id.is_(None),
                    models.Transaction.category_confidence < UNCATEGORIZED_CONFIDENCE,
                )
            )
        if pending is not None:
            q = q.filter(models.Transaction.pending.is_(pending))
        if min_amount is not None:
            q = q.filter(models.Transaction.amount >= min_amount)
        if max_amount is not None:
            q = q.filter(models.Transaction.amount <= max_amount)
        if search:
            like = f"%{search.strip()}%"
            q = q.filter(
                or_(
                    models.Transaction.description.ilike(like),
                    models.Transaction.merchant_name.ilike(like),
                    models.Transaction.notes.ilike(like),
                )
            )
        total = q.count()
        rows = (
            q.order_by(models.Transaction.date.desc(), models.Transaction.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return rows, total

    def get(self, family_id: int, transaction_id: int) -> models.Transaction:
        row = self._query(family_id).filter(models.Transaction.id == transaction_id).first()
        if row is None:
            raise NotFound("Transaction not found")
        return row

    def update(self, family_id: int, member_id: int, transaction_id: int, patch: dict) -> models.Transaction:
        row = self.get(family_id, transaction_id)
        if not patch:
            return row
        old = {"spending_category_id": row.spending_category_id, "notes": row.notes}
        if "spending_category_id" in patch:
            category_id = patch["spending_category_id"]
            if category_id is None:
                row.spending_category_id = None
                row.category_confidence = Decimal("0")
                row.user_categorized = False
            else:
                self._category(family_id, category_id)
                row.spending_category_id = category_id
                row.category_confidence = Decimal("1.00")
                row.user_categorized = True
        if "notes" in patch:
            row.notes = patch["notes"]
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="Transaction",
            entity_id=row.id,
            old_values=old,
            new_values={"spending_category_id": row.spending_category_id, "notes": row.notes},
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def categorize_batch(self, family_id: int, member_id: int, updates: Sequence[tuple[int, int]]) -> dict:
        valid_categories = {c.id for c in self._categories(family_id)}
        errors = []
        updated = 0
        for transaction_id, category_id in updates:
            row = self._query(family_id).filter(models.Transaction.id == transaction_id).first()
            if row is None:
                errors.append({"transaction_id": transaction_id, "error": "Transaction not found"})
                continue
            if category_id not in valid_categories:
                errors.append({"transaction_id": transaction_id, "error": "Spending category not found or inactive"})
                continue
            row.spending_category_id = category_id
            row.category_confidence = Decimal("1.00")
            row.user_categorized = True
            updated += 1
        if updated:
            self.audit.record(
                family_id=family_id,
                member_id=member_id,
                action=models.AuditAction.UPDATE,
                entity_type="Transaction",
                new_values={"batch_categorized": updated},
            )
        self.db.commit()
        return {"updated_count": updated, "errors": errors}

    def uncategorized(self, family_id: int, *, limit: int = 50, offset: int = 0) -> tuple[list[dict], int]:
        rows, total = self.list(family_id, uncategorized=True, limit=limit, offset=offset)
        categories = self._categories(family_id)
        out = []
        for row in rows:
            suggestion = suggest_category(row.description, row.merchant_name, categories)
            item = {
                "id": row.id,
                "bank_account_id": row.bank_account_id,
                "amount": float(row.amount),
                "date": row.date,
                "description": row.description,
                "merchant_name": row.merchant_name,
                "pending": row.pending,
                "spending_category_id": row.spending_category_id,
                "category_confidence": float(row.category_confidence),
                "user_categorized": row.user_categorized,
                "notes": row.notes,
                "created_at": row.created_at,
                "suggestions": [suggestion] if suggestion and suggestion["confidence"] >= SUGGEST_CONFIDENCE else [],
            }
            out.append(item)
        return out, total

    def auto_categorize(self, family_id: int, member_id: int, transaction_ids: Optional[Sequence[int]] = None) -> dict:
        """Apply keyword rules to uncategorized rows scoring at least 0.7."""
        q = self._query(family_id).filter(
            models.Transaction.user_categorized.is_(False),
            or_(
                models.Transaction.spending_category_id.is_(None),
                models.Transaction.category_confidence < UNCATEGORIZED_CONFIDENCE,
            ),
        )
        if transaction_ids:
            q = q.filter(models.Transaction.id.in_(list(transaction_ids)))
        categories = self._categories(family_id)
        results = []
        for row in q.limit(1000).all():
            suggestion = suggest_category(row.description, row.merchant_name, categories)
            if suggestion is None or suggestion["confidence"] < AUTO_APPLY_CONFIDENCE:
                continue
            row.spending_category_id = suggestion["spending_category_id"]
            row.category_confidence = Decimal(str(suggestion["confidence"]))
            results.append({"transaction_id": row.id, **suggestion})
        if results:
            self.audit.record(
                family_id=family_id,
                member_id=member_id,
                action=models.AuditAction.UPDATE,
                entity_type="Transaction",
                new_values={"auto_categorized": len(results)},
            )
        self.db.commit()
        return {"categorized_count": len(results), "results": results}

    def match_payments(
        self,
        family_id: int,
        *,
        transaction_ids: Optional[Sequence[int]] = None,
        payment_ids: Optional[Sequence[int]] = None,
        today: Optional[date] = None,
    ) -> list[dict]:
        today = today or date.today()
        q = self._query(family_id).filter(
            models.Transaction.amount > 0,
            models.Transaction.user_categorized.is_(False),
        )
        if transaction_ids:
            q = q.filter(models.Transaction.id.in_(list(transaction_ids)))
        else:
            q = q.filter(models.Transaction.date >= today - timedelta(days=30))
        transactions = q.order_by(models.Transaction.date.desc()).limit(1000).all()
        if not transactions:
            return []

        pq = self.db.query(models.Payment).filter(
            models.Payment.family_id == family_id,
            models.Payment.status != models.PaymentStatus.CANCELLED,
        )
        if payment_ids:
            pq = pq.filter(models.Payment.id.in_(list(payment_ids)))
        else:
            window = timedelta(days=MATCH_DATE_TOLERANCE_DAYS)
            pq = pq.filter(
                models.Payment.due_date >= min(t.date for t in transactions) - window,
                models.Payment.due_date <= max(t.date for t in transactions) + window,
            )
        payments = pq.all()

        matches = []
        for txn in transactions:
            amount = to_money(txn.amount)
            candidates = []
            for payment in payments:
                if abs(amount - Decimal(payment.amount)) > MATCH_AMOUNT_TOLERANCE:
                    continue
                if abs((txn.date - payment.due_date).days) > MATCH_DATE_TOLERANCE_DAYS:
                    continue
                if txn.merchant_name and not names_match(payment.payee, txn.merchant_name):
                    continue
                candidates.append(payment)
            if not candidates:
                continue
            best = min(candidates, key=lambda p: (abs(amount - Decimal(p.amount)), abs((txn.date - p.due_date).days)))
            confidence, reasons = score_payment_match(amount, txn.date, txn.merchant_name, best)
            matches.append(
                {
                    "transaction_id": txn.id,
                    "payment_id": best.id,
                    "payee": best.payee,
                    "transaction_amount": float(amount),
                    "payment_amount": float(best.amount),
                    "confidence": confidence,
                    "reasons": reasons,
                }
            )
        return matches
