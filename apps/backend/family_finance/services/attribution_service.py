"""Payment-to-income attribution bookkeeping.

Every mutation keeps two balances in step:

- ``income.allocated_amount`` equals the sum of that income's attributions and
  ``income.remaining_amount`` is its effective amount minus that sum.
- the attributions of one payment never add up to more than ``payment.amount``.

Each public mutation commits once, so a failed check leaves nothing behind.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from family_finance import models
from family_finance.core.errors import Conflict, NotFound, ValidationFailed
from family_finance.services.audit_service import AuditService
from family_finance.utils.money import CENT, ZERO, ratio_percent, to_money

logger = logging.getLogger(__name__)

_CONFIDENCE_RANK = {"high": 0, "medium": 1, "low": 2}


class AttributionService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)

    # Lookups ------------------------------------------------------------
    def _payment(self, family_id: int, payment_id: int) -> models.Payment:
        row = (
            self.db.query(models.Payment)
            .filter(models.Payment.family_id == family_id, models.Payment.id == payment_id)
            .first()
        )
        if row is None:
            raise NotFound("Payment not found")
        return row

    def _income(self, family_id: int, income_id: int) -> models.IncomeEvent:
        row = (
            self.db.query(models.IncomeEvent)
            .filter(models.IncomeEvent.family_id == family_id, models.IncomeEvent.id == income_id)
            .first()
        )
        if row is None:
            raise NotFound("Income event not found")
        return row

    def _attribution(self, family_id: int, payment_id: int, attribution_id: int) -> models.PaymentAttribution:
        row = (
            self.db.query(models.PaymentAttribution)
            .join(models.Payment, models.Payment.id == models.PaymentAttribution.payment_id)
            .filter(
                models.Payment.family_id == family_id,
                models.PaymentAttribution.payment_id == payment_id,
                models.PaymentAttribution.id == attribution_id,
            )
            .first()
        )
        if row is None:
            raise NotFound("Attribution not found")
        return row

    def attributed_total(self, payment_id: int, *, exclude_id: Optional[int] = None) -> Decimal:
        q = self.db.query(func.coalesce(func.sum(models.PaymentAttribution.amount), 0)).filter(
            models.PaymentAttribution.payment_id == payment_id
        )
        if exclude_id is not None:
            q = q.filter(models.PaymentAttribution.id != exclude_id)
        return to_money(q.scalar())

    @staticmethod
    def _shift_income(income: models.IncomeEvent, delta: Decimal) -> None:
        """Move ``delta`` from remaining to allocated (negative moves it back)."""
        allocated = to_money(Decimal(income.allocated_amount) + delta)
        if allocated < 0:
            allocated = ZERO
        income.allocated_amount = allocated
        income.remaining_amount = to_money(income.effective_amount - allocated)

    # Mutations ----------------------------------------------------------
    def _add(
        self,
        payment: models.Payment,
        income: models.IncomeEvent,
        amount: Decimal,
        attribution_type: models.AttributionType,
        member_id: Optional[int],
    ) -> models.PaymentAttribution:
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationFailed("Attribution amount must be positive")
        if self.attributed_total(payment.id) + amount > Decimal(payment.amount):
            raise ValidationFailed("Attribution amount exceeds payment amount")
        if amount > Decimal(income.remaining_amount):
            raise ValidationFailed("Attribution amount exceeds available income")
        duplicate = (
            self.db.query(models.PaymentAttribution)
            .filter(
                models.PaymentAttribution.payment_id == payment.id,
                models.PaymentAttribution.income_event_id == income.id,
            )
            .first()
        )
        if duplicate is not None:
            raise Conflict("Payment is already attributed to this income event")
        row = models.PaymentAttribution(
            payment_id=payment.id,
            income_event_id=income.id,
            amount=amount,
            attribution_type=attribution_type,
            created_by_id=member_id,
        )
        self.db.add(row)
        self._shift_income(income, amount)
        self.db.flush()
        return row

    def create(
        self,
        family_id: int,
        member_id: int,
        payment_id: int,
        income_event_id: int,
        amount: Decimal,
        attribution_type: models.AttributionType = models.AttributionType.MANUAL,
    ) -> models.PaymentAttribution:
        payment = self._payment(family_id, payment_id)
        income = self._income(family_id, income_event_id)
        row = self._add(payment, income, amount, attribution_type, member_id)
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="PaymentAttribution",
            entity_id=row.id,
            new_values={"payment_id": payment.id, "income_event_id": income.id, "amount": float(row.amount)},
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def update(
        self, family_id: int, member_id: int, payment_id: int, attribution_id: int, amount: Decimal
    ) -> models.PaymentAttribution:
        row = self._attribution(family_id, payment_id, attribution_id)
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationFailed("Attribution amount must be positive")
        payment = row.payment
        income = row.income_event
        current = Decimal(row.amount)
        if self.attributed_total(payment.id, exclude_id=row.id) + amount > Decimal(payment.amount):
            raise ValidationFailed("Attribution amount exceeds payment amount")
        if amount > Decimal(income.remaining_amount) + current:
            raise ValidationFailed("Attribution amount exceeds available income")
        self._shift_income(income, amount - current)
        row.amount = amount
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="PaymentAttribution",
            entity_id=row.id,
            old_values={"amount": float(current)},
            new_values={"amount": float(amount)},
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def _remove(self, row: models.PaymentAttribution) -> None:
        self._shift_income(row.income_event, -Decimal(row.amount))
        self.db.delete(row)

    def delete(self, family_id: int, member_id: int, payment_id: int, attribution_id: int) -> None:
        row = self._attribution(family_id, payment_id, attribution_id)
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.DELETE,
            entity_type="PaymentAttribution",
            entity_id=row.id,
            old_values={"income_event_id": row.income_event_id, "amount": float(row.amount)},
        )
        self._remove(row)
        self.db.commit()

    def remove_all_for_payment(self, payment: models.Payment) -> int:
        """Drop every attribution of ``payment`` and restore income balances. No commit."""
        rows = (
            self.db.query(models.PaymentAttribution)
            .filter(models.PaymentAttribution.payment_id == payment.id)
            .all()
        )
        for row in rows:
            self._remove(row)
        self.db.flush()
        self.db.expire(payment, ["attributions"])
        return len(rows)

    def split(
        self, family_id: int, member_id: int, payment_id: int, splits: Sequence[tuple[int, Decimal]]
    ) -> list[models.PaymentAttribution]:
        payment = self._payment(family_id, payment_id)
        if self.attributed_total(payment.id) > 0:
            raise Conflict("Payment already has attributions")
        income_ids = [income_id for income_id, _ in splits]
        if len(set(income_ids)) != len(income_ids):
            raise ValidationFailed("Each income event can only appear once in a split")
        total = to_money(sum((to_money(a) for _, a in splits), ZERO))
        if abs(total - Decimal(payment.amount)) > CENT:
            raise ValidationFailed(
                f"Split amounts must add up to the payment amount ({to_money(payment.amount)}); got {total}"
            )
        rows = []
        for income_id, amount in splits:
            income = self._income(family_id, income_id)
            rows.append(self._add(payment, income, amount, models.AttributionType.MANUAL, member_id))
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="PaymentAttribution",
            entity_id=payment.id,
            new_values={"split": [{"income_event_id": i, "amount": float(to_money(a))} for i, a in splits]},
        )
        self.db.commit()
        for row in rows:
            self.db.refresh(row)
        return rows

    # Queries ------------------------------------------------------------
    def for_payment(self, family_id: int, payment_id: int) -> dict:
        payment = self._payment(family_id, payment_id)
        rows = (
            self.db.query(models.PaymentAttribution)
            .options(selectinload(models.PaymentAttribution.income_event))
            .filter(models.PaymentAttribution.payment_id == payment.id)
            .order_by(models.PaymentAttribution.id)
            .all()
        )
        total = sum((Decimal(r.amount) for r in rows), ZERO)
        items = []
        for r in rows:
            items.append(
                {
                    "id": r.id,
                    "payment_id": r.payment_id,
                    "income_event_id": r.income_event_id,
                    "income_event_name": r.income_event_name,
                    "payee": payment.payee,
                    "amount": float(r.amount),
                    "attribution_type": r.attribution_type,
                    "created_by_id": r.created_by_id,
                    "created_at": r.created_at,
                    "percentage": float(ratio_percent(Decimal(r.amount), Decimal(payment.amount))),
                }
            )
        return {
            "payment_id": payment.id,
            "payment_amount": float(payment.amount),
            "total_attributed": float(total),
            "remaining_amount": float(to_money(Decimal(payment.amount) - total)),
            "attributions": items,
        }

    def for_income(self, family_id: int, income_id: int) -> dict:
        income = self._income(family_id, income_id)
        rows = (
            self.db.query(models.PaymentAttribution)
            .options(selectinload(models.PaymentAttribution.payment))
            .filter(models.PaymentAttribution.income_event_id == income.id)
            .order_by(models.PaymentAttribution.id)
            .all()
        )
        return {
            "income_event_id": income.id,
            "income_amount": float(income.effective_amount),
            "allocated_amount": float(income.allocated_amount),
            "remaining_amount": float(income.remaining_amount),
            "attributions": rows,
        }

    def history(self, family_id: int, *, limit: int = 50, offset: int = 0) -> tuple[list[models.PaymentAttribution], int]:
        q = (
            self.db.query(models.PaymentAttribution)
            .join(models.Payment, models.Payment.id == models.PaymentAttribution.payment_id)
            .filter(models.Payment.family_id == family_id)
        )
        total = q.count()
        rows = (
            q.options(
                selectinload(models.PaymentAttribution.payment),
                selectinload(models.PaymentAttribution.income_event),
            )
            .order_by(models.PaymentAttribution.created_at.desc(), models.PaymentAttribution.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return rows, total

    # Automatic matching -------------------------------------------------
    def _auto_for(self, payment: models.Payment, member_id: Optional[int]) -> Optional[models.PaymentAttribution]:
        amount = Decimal(payment.amount)
        income = (
            self.db.query(models.IncomeEvent)
            .filter(
                models.IncomeEvent.family_id == payment.family_id,
                models.IncomeEvent.status == models.IncomeStatus.SCHEDULED,
                models.IncomeEvent.remaining_amount >= amount,
                models.IncomeEvent.scheduled_date <= payment.due_date,
            )
            .order_by(models.IncomeEvent.scheduled_date, models.IncomeEvent.id)
            .first()
        )
        if income is None:
            return None
        return self._add(payment, income, amount, models.AttributionType.AUTOMATIC, member_id)

    def auto_attribute(self, family_id: int, member_id: int, payment_id: int) -> Optional[models.PaymentAttribution]:
        payment = self._payment(family_id, payment_id)
        if self.attributed_total(payment.id) > 0:
            raise Conflict("Payment already has attributions")
        row = self._auto_for(payment, member_id)
        if row is None:
            return None
        self.db.commit()
        self.db.refresh(row)
        logger.info("Auto-attributed payment %s to income event %s", payment.id, row.income_event_id)
        return row

    def auto_attribute_all(self, family_id: int, member_id: int) -> dict:
        candidates = (
            self.db.query(models.Payment)
            .outerjoin(models.PaymentAttribution, models.PaymentAttribution.payment_id == models.Payment.id)
            .filter(
                models.Payment.family_id == family_id,
                models.Payment.status == models.PaymentStatus.SCHEDULED,
                models.PaymentAttribution.id.is_(None),
            )
            .order_by(models.Payment.due_date, models.Payment.id)
            .all()
        )
        attributed = 0
        for payment in candidates:
            if self._auto_for(payment, member_id) is not None:
                attributed += 1
        self.db.commit()
        return {"payments_considered": len(candidates), "attributed_count": attributed}

    def suggest(self, family_id: int, payment_id: int) -> list[dict]:
        payment = self._payment(family_id, payment_id)
        outstanding = to_money(Decimal(payment.amount) - self.attributed_total(payment.id))
        incomes = (
            self.db.query(models.IncomeEvent)
            .filter(
                models.IncomeEvent.family_id == family_id,
                models.IncomeEvent.status == models.IncomeStatus.SCHEDULED,
                models.IncomeEvent.remaining_amount > 0,
            )
            .order_by(models.IncomeEvent.scheduled_date, models.IncomeEvent.id)
            .limit(10)
            .all()
        )
        suggestions = []
        for income in incomes:
            available = Decimal(income.remaining_amount)
            before_due = income.scheduled_date <= payment.due_date
            if before_due and available >= outstanding:
                confidence, reason = "high", "Income arrives before the due date and covers the full amount"
            elif available >= outstanding * Decimal("0.5"):
                confidence, reason = "medium", "Income covers at least half of the payment"
            else:
                confidence, reason = "low", "Income covers only part of the payment"
            if not before_due:
                reason += " (arrives after the due date)"
            suggestions.append(
                {
                    "income_event_id": income.id,
                    "income_event_name": income.name,
                    "scheduled_date": income.scheduled_date,
                    "available_amount": float(available),
                    "suggested_amount": float(min(available, outstanding)),
                    "confidence": confidence,
                    "reason": reason,
                }
            )
        suggestions.sort(key=lambda s: (_CONFIDENCE_RANK[s["confidence"]], s["scheduled_date"]))
        return suggestions

    def validate_capacity(self, family_id: int, payment_id: int, proposed: Sequence[tuple[int, Decimal]]) -> dict:
        payment = self._payment(family_id, payment_id)
        errors: list[str] = []
        total = to_money(sum((to_money(a) for _, a in proposed), ZERO))
        existing = self.attributed_total(payment.id)
        if existing + total > Decimal(payment.amount):
            errors.append(
                f"Total attributions ({existing + total}) exceed payment amount ({to_money(payment.amount)})"
            )
        for income_id, amount in proposed:
            amount = to_money(amount)
            if amount <= 0:
                errors.append(f"Amount for income event {income_id} must be positive")
                continue
            income = (
                self.db.query(models.IncomeEvent)
                .filter(models.IncomeEvent.family_id == family_id, models.IncomeEvent.id == income_id)
                .first()
            )
            if income is None:
                errors.append(f"Income event {income_id} not found")
            elif amount > Decimal(income.remaining_amount):
                errors.append(
                    f"Amount {amount} exceeds available income for {income.name} ({to_money(income.remaining_amount)})"
                )
        return {
            "is_valid": not errors,
            "errors": errors,
            "total_proposed": float(total),
            "payment_amount": float(payment.amount),
        }
