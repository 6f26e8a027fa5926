from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from family_finance import models
from family_finance.core.errors import NotFound, ValidationFailed
from family_finance.services.attribution_service import AttributionService
from family_finance.services.audit_service import AuditService, snapshot
from family_finance.utils.money import ZERO, to_money
from family_finance.utils.schedule import advance_date

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = ("payee", "amount", "due_date", "status", "paid_amount", "paid_date", "frequency")
_OPEN_STATUSES = (models.PaymentStatus.SCHEDULED, models.PaymentStatus.PARTIAL, models.PaymentStatus.OVERDUE)


class PaymentService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)
        self.attributions = AttributionService(db)

    def _query(self, family_id: int):
        return (
            self.db.query(models.Payment)
            .options(selectinload(models.Payment.attributions))
            .filter(models.Payment.family_id == family_id)
        )

    def get(self, family_id: int, payment_id: int) -> models.Payment:
        row = self._query(family_id).filter(models.Payment.id == payment_id).first()
        if row is None:
            raise NotFound("Payment not found")
        return row

    def _check_category(self, family_id: int, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        found = (
            self.db.query(models.SpendingCategory.id)
            .filter(
                models.SpendingCategory.family_id == family_id,
                models.SpendingCategory.id == category_id,
                models.SpendingCategory.is_active.is_(True),
            )
            .first()
        )
        if found is None:
            raise ValidationFailed("Spending category not found or inactive")

    def _build(self, family_id: int, payload: dict, today: date) -> models.Payment:
        self._check_category(family_id, payload.get("spending_category_id"))
        payment_type = models.PaymentType(payload.get("payment_type") or models.PaymentType.ONCE)
        frequency = models.Frequency(payload.get("frequency") or models.Frequency.ONCE)
        due = payload["due_date"]
        next_due = advance_date(due, frequency) if payment_type != models.PaymentType.ONCE else None
        return models.Payment(
            family_id=family_id,
            payee=payload["payee"].strip(),
            amount=to_money(payload["amount"]),
            due_date=due,
            payment_type=payment_type,
            frequency=frequency,
            next_due_date=next_due,
            status=models.PaymentStatus.OVERDUE if due < today else models.PaymentStatus.SCHEDULED,
            spending_category_id=payload.get("spending_category_id"),
            auto_pay_enabled=bool(payload.get("auto_pay_enabled", False)),
            notes=payload.get("notes"),
        )

    def create(self, family_id: int, member_id: int, payload: dict, *, today: Optional[date] = None) -> models.Payment:
        row = self._build(family_id, payload, today or date.today())
        self.db.add(row)
        self.db.flush()
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="Payment",
            entity_id=row.id,
            new_values=snapshot(row, _AUDIT_FIELDS),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def bulk_create(self, family_id: int, member_id: int, payloads: Sequence[dict]) -> list[models.Payment]:
        if len(payloads) > 100:
            raise ValidationFailed("At most 100 payments can be created at once")
        today = date.today()
        rows = [self._build(family_id, p, today) for p in payloads]
        self.db.add_all(rows)
        self.db.flush()
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="Payment",
            new_values={"bulk_count": len(rows), "ids": [r.id for r in rows]},
        )
        self.db.commit()
        for row in rows:
            self.db.refresh(row)
        return rows

    def list(
        self,
        family_id: int,
        *,
        status: Optional[models.PaymentStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        spending_category_id: Optional[int] = None,
        payment_type: Optional[models.PaymentType] = None,
        search: Optional[str] = None,
        overdue_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[models.Payment], int]:
        q = self._query(family_id)
        if status is not None:
            q = q.filter(models.Payment.status == status)
        if start_date is not None:
            q = q.filter(models.Payment.due_date >= start_date)
        if end_date is not None:
            q = q.filter(models.Payment.due_date <= end_date)
        if spending_category_id is not None:
            q = q.filter(models.Payment.spending_category_id == spending_category_id)
        if payment_type is not None:
            q = q.filter(models.Payment.payment_type == payment_type)
        if search:
            like = f"%{search.strip()}%"
            q = q.filter(or_(models.Payment.payee.ilike(like), models.Payment.notes.ilike(like)))
        if overdue_only:
            q = q.filter(models.Payment.status.in_(_OPEN_STATUSES), models.Payment.due_date < date.today())
        total = q.count()
        rows = q.order_by(models.Payment.due_date, models.Payment.id).offset(offset).limit(limit).all()
        return rows, total

    def update(self, family_id: int, member_id: int, payment_id: int, patch: dict) -> models.Payment:
        row = self.get(family_id, payment_id)
        if row.status == models.PaymentStatus.PAID:
            raise ValidationFailed("Cannot update paid payment")
        if not patch:
            return row
        before = snapshot(row, _AUDIT_FIELDS)

        status = patch.pop("status", None)
        if status is not None and status not in (models.PaymentStatus.SCHEDULED, models.PaymentStatus.CANCELLED):
            raise ValidationFailed("Use mark-paid to record a payment")
        if "spending_category_id" in patch:
            self._check_category(family_id, patch["spending_category_id"])
        if patch.get("amount") is not None:
            amount = to_money(patch["amount"])
            if amount < self.attributions.attributed_total(row.id):
                raise ValidationFailed("Amount cannot be less than the attributed total")
            patch["amount"] = amount

        for key, value in patch.items():
            if value is None and key in ("payee", "amount", "due_date", "payment_type", "frequency", "auto_pay_enabled"):
                continue
            setattr(row, key, value)
        if row.payment_type == models.PaymentType.ONCE:
            row.next_due_date = None
        elif "due_date" in patch or "frequency" in patch or "payment_type" in patch:
            row.next_due_date = advance_date(row.due_date, row.frequency)
        if status is not None:
            row.status = status

        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="Payment",
            entity_id=row.id,
            old_values=before,
            new_values=snapshot(row, _AUDIT_FIELDS),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(self, family_id: int, member_id: int, payment_id: int) -> None:
        row = self.get(family_id, payment_id)
        removed = self.attributions.remove_all_for_payment(row)
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.DELETE,
            entity_type="Payment",
            entity_id=row.id,
            old_values={**snapshot(row, _AUDIT_FIELDS), "attributions_removed": removed},
        )
        self.db.delete(row)
        self.db.commit()

    def mark_paid(
        self,
        family_id: int,
        member_id: int,
        payment_id: int,
        *,
        paid_amount: Optional[Decimal] = None,
        paid_date: Optional[date] = None,
    ) -> models.Payment:
        row = self.get(family_id, payment_id)
        if row.status == models.PaymentStatus.PAID:
            raise ValidationFailed("Payment already marked as paid")
        if row.status == models.PaymentStatus.CANCELLED:
            raise ValidationFailed("Cannot pay a cancelled payment")
        paid = to_money(paid_amount if paid_amount is not None else row.amount)
        row.paid_amount = paid
        row.paid_date = paid_date or date.today()
        row.status = models.PaymentStatus.PAID if paid >= Decimal(row.amount) else models.PaymentStatus.PARTIAL

        if row.payment_type == models.PaymentType.RECURRING and row.next_due_date is not None:
            upcoming = models.Payment(
                family_id=family_id,
                payee=row.payee,
                amount=row.amount,
                due_date=row.next_due_date,
                payment_type=row.payment_type,
                frequency=row.frequency,
                next_due_date=advance_date(row.next_due_date, row.frequency),
                status=models.PaymentStatus.SCHEDULED,
                spending_category_id=row.spending_category_id,
                auto_pay_enabled=row.auto_pay_enabled,
                notes=row.notes,
            )
            self.db.add(upcoming)

        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="Payment",
            entity_id=row.id,
            new_values={"status": row.status.value, "paid_amount": float(paid), "paid_date": row.paid_date.isoformat()},
        )
        self.db.commit()
        self.db.refresh(row)
        logger.info("Payment %s marked %s", row.id, row.status.value)
        return row

    def revert_paid(self, family_id: int, member_id: int, payment_id: int, *, today: Optional[date] = None) -> models.Payment:
        row = self.get(family_id, payment_id)
        if row.status not in (models.PaymentStatus.PAID, models.PaymentStatus.PARTIAL):
            raise ValidationFailed("Only paid or partial payments can be reverted")
        today = today or date.today()
        row.paid_amount = None
        row.paid_date = None
        row.status = models.PaymentStatus.OVERDUE if row.due_date < today else models.PaymentStatus.SCHEDULED
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="Payment",
            entity_id=row.id,
            new_values={"status": row.status.value},
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def upcoming(self, family_id: int, days: int = 30, *, today: Optional[date] = None) -> list[models.Payment]:
        today = today or date.today()
        return (
            self._query(family_id)
            .filter(
                models.Payment.status.in_((models.PaymentStatus.SCHEDULED, models.PaymentStatus.PARTIAL)),
                models.Payment.due_date >= today,
                models.Payment.due_date <= today + timedelta(days=days),
            )
            .order_by(models.Payment.due_date, models.Payment.id)
            .all()
        )

    def overdue(self, family_id: int, *, today: Optional[date] = None) -> list[models.Payment]:
        today = today or date.today()
        rows = (
            self._query(family_id)
            .filter(models.Payment.status.in_(_OPEN_STATUSES), models.Payment.due_date < today)
            .order_by(models.Payment.due_date, models.Payment.id)
            .all()
        )
        flipped = 0
        for row in rows:
            if row.status != models.PaymentStatus.OVERDUE:
                row.status = models.PaymentStatus.OVERDUE
                flipped += 1
        if flipped:
            self.db.commit()
            logger.info("Marked %d payments overdue for family %s", flipped, family_id)
        return rows

    def summary(self, family_id: int, start: Optional[date] = None, end: Optional[date] = None) -> dict:
        q = self.db.query(models.Payment).filter(
            models.Payment.family_id == family_id,
            models.Payment.status != models.PaymentStatus.CANCELLED,
        )
        if start is not None:
            q = q.filter(models.Payment.due_date >= start)
        if end is not None:
            q = q.filter(models.Payment.due_date <= end)
        rows = q.all()
        paid = [r for r in rows if r.status in (models.PaymentStatus.PAID, models.PaymentStatus.PARTIAL)]
        return {
            "total_scheduled": float(sum((Decimal(r.amount) for r in rows), ZERO)),
            "total_paid": float(sum((Decimal(r.paid_amount or 0) for r in paid), ZERO)),
            "count": len(rows),
            "scheduled_count": sum(1 for r in rows if r.status == models.PaymentStatus.SCHEDULED),
            "paid_count": sum(1 for r in rows if r.status == models.PaymentStatus.PAID),
            "overdue_count": sum(1 for r in rows if r.status == models.PaymentStatus.OVERDUE),
        }
