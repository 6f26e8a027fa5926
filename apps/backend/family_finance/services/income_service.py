from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.errors import Conflict, NotFound, ValidationFailed
from family_finance.services.audit_service import AuditService, snapshot
from family_finance.utils.money import ZERO, to_money
from family_finance.utils.schedule import advance_date

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = ("name", "amount", "scheduled_date", "frequency", "status", "actual_amount", "actual_date")


class IncomeService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)

    def get(self, family_id: int, income_id: int) -> models.IncomeEvent:
        row = (
            self.db.query(models.IncomeEvent)
            .filter(models.IncomeEvent.family_id == family_id, models.IncomeEvent.id == income_id)
            .first()
        )
        if row is None:
            raise NotFound("Income event not found")
        return row

    def _build(self, family_id: int, payload: dict) -> models.IncomeEvent:
        amount = to_money(payload["amount"])
        frequency = models.Frequency(payload.get("frequency") or models.Frequency.ONCE)
        return models.IncomeEvent(
            family_id=family_id,
            name=payload["name"].strip(),
            amount=amount,
            scheduled_date=payload["scheduled_date"],
            frequency=frequency,
            next_occurrence=advance_date(payload["scheduled_date"], frequency),
            allocated_amount=ZERO,
            remaining_amount=amount,
            status=models.IncomeStatus.SCHEDULED,
            source=payload.get("source"),
            notes=payload.get("notes"),
        )

    def create(self, family_id: int, member_id: int, payload: dict) -> models.IncomeEvent:
        row = self._build(family_id, payload)
        self.db.add(row)
        self.db.flush()
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="IncomeEvent",
            entity_id=row.id,
            new_values=snapshot(row, _AUDIT_FIELDS),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def bulk_create(self, family_id: int, member_id: int, payloads: Sequence[dict]) -> list[models.IncomeEvent]:
        if len(payloads) > 100:
            raise ValidationFailed("At most 100 income events can be created at once")
        rows = [self._build(family_id, p) for p in payloads]
        self.db.add_all(rows)
        self.db.flush()
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="IncomeEvent",
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
        status: Optional[models.IncomeStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[models.IncomeEvent], int]:
        q = self.db.query(models.IncomeEvent).filter(models.IncomeEvent.family_id == family_id)
        if status is not None:
            q = q.filter(models.IncomeEvent.status == status)
        if start_date is not None:
            q = q.filter(models.IncomeEvent.scheduled_date >= start_date)
        if end_date is not None:
            q = q.filter(models.IncomeEvent.scheduled_date <= end_date)
        if search:
            like = f"%{search.strip()}%"
            q = q.filter(
                or_(
                    models.IncomeEvent.name.ilike(like),
                    models.IncomeEvent.source.ilike(like),
                    models.IncomeEvent.notes.ilike(like),
                )
            )
        total = q.count()
        rows = (
            q.order_by(models.IncomeEvent.scheduled_date, models.IncomeEvent.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return rows, total

    def update(self, family_id: int, member_id: int, income_id: int, patch: dict) -> models.IncomeEvent:
        row = self.get(family_id, income_id)
        if row.status == models.IncomeStatus.RECEIVED:
            raise ValidationFailed("Cannot update received income event")
        if not patch:
            return row
        before = snapshot(row, _AUDIT_FIELDS)

        status = patch.pop("status", None)
        if status is not None and status not in (models.IncomeStatus.SCHEDULED, models.IncomeStatus.CANCELLED):
            raise ValidationFailed("Use mark-received to record received income")

        if patch.get("amount") is not None:
            amount = to_money(patch["amount"])
            if amount < Decimal(row.allocated_amount):
                raise ValidationFailed("Amount cannot be less than the already allocated amount")
            patch["amount"] = amount

        schedule_changed = False
        for key, value in patch.items():
            if value is None and key in ("name", "amount", "scheduled_date", "frequency"):
                continue
            if key in ("scheduled_date", "frequency") and getattr(row, key) != value:
                schedule_changed = True
            setattr(row, key, value)
        if status is not None:
            row.status = status
        if schedule_changed:
            row.next_occurrence = advance_date(row.scheduled_date, row.frequency)
        row.remaining_amount = to_money(Decimal(row.amount) - Decimal(row.allocated_amount))

        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="IncomeEvent",
            entity_id=row.id,
            old_values=before,
            new_values=snapshot(row, _AUDIT_FIELDS),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(self, family_id: int, member_id: int, income_id: int) -> None:
        row = self.get(family_id, income_id)
        attributions = (
            self.db.query(models.PaymentAttribution)
            .filter(models.PaymentAttribution.income_event_id == row.id)
            .count()
        )
        if attributions:
            raise Conflict("Cannot delete income event with payment attributions")
        self.db.query(models.BudgetAllocation).filter(models.BudgetAllocation.income_event_id == row.id).delete(
            synchronize_session=False
        )
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.DELETE,
            entity_type="IncomeEvent",
            entity_id=row.id,
            old_values=snapshot(row, _AUDIT_FIELDS),
        )
        self.db.delete(row)
        self.db.commit()

    def mark_received(
        self,
        family_id: int,
        member_id: int,
        income_id: int,
        *,
        actual_amount: Optional[Decimal] = None,
        actual_date: Optional[date] = None,
    ) -> models.IncomeEvent:
        row = self.get(family_id, income_id)
        if row.status == models.IncomeStatus.RECEIVED:
            raise ValidationFailed("Income event already marked as received")
        if row.status == models.IncomeStatus.CANCELLED:
            raise ValidationFailed("Cannot receive a cancelled income event")
        actual = to_money(actual_amount if actual_amount is not None else row.amount)
        if actual < Decimal(row.allocated_amount):
            raise ValidationFailed("Actual amount cannot be less than the already allocated amount")

        row.status = models.IncomeStatus.RECEIVED
        row.actual_amount = actual
        row.actual_date = actual_date or date.today()
        row.remaining_amount = to_money(actual - Decimal(row.allocated_amount))

        if row.frequency != models.Frequency.ONCE and row.next_occurrence is not None:
            upcoming = models.IncomeEvent(
                family_id=family_id,
                name=row.name,
                amount=row.amount,
                scheduled_date=row.next_occurrence,
                frequency=row.frequency,
                next_occurrence=advance_date(row.next_occurrence, row.frequency),
                allocated_amount=ZERO,
                remaining_amount=to_money(row.amount),
                status=models.IncomeStatus.SCHEDULED,
                source=row.source,
                notes=row.notes,
            )
            self.db.add(upcoming)

        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="IncomeEvent",
            entity_id=row.id,
            new_values={"status": "received", "actual_amount": float(actual), "actual_date": row.actual_date.isoformat()},
        )
        self.db.commit()
        self.db.refresh(row)
        logger.info("Income event %s received (%s)", row.id, actual)
        return row

    def revert_received(self, family_id: int, member_id: int, income_id: int) -> models.IncomeEvent:
        row = self.get(family_id, income_id)
        if row.status != models.IncomeStatus.RECEIVED:
            raise ValidationFailed("Only received income events can be reverted")
        if Decimal(row.amount) < Decimal(row.allocated_amount):
            raise ValidationFailed("Cannot revert: allocations exceed the scheduled amount")
        row.status = models.IncomeStatus.SCHEDULED
        row.actual_amount = None
        row.actual_date = None
        row.remaining_amount = to_money(Decimal(row.amount) - Decimal(row.allocated_amount))
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="IncomeEvent",
            entity_id=row.id,
            new_values={"status": "scheduled"},
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def upcoming(self, family_id: int, days: int = 30, *, today: Optional[date] = None) -> list[models.IncomeEvent]:
        today = today or date.today()
        return (
            self.db.query(models.IncomeEvent)
            .filter(
                models.IncomeEvent.family_id == family_id,
                models.IncomeEvent.status == models.IncomeStatus.SCHEDULED,
                models.IncomeEvent.scheduled_date >= today,
                models.IncomeEvent.scheduled_date <= today + timedelta(days=days),
            )
            .order_by(models.IncomeEvent.scheduled_date, models.IncomeEvent.id)
            .all()
        )

    def summary(self, family_id: int, start: Optional[date] = None, end: Optional[date] = None) -> dict:
        q = self.db.query(models.IncomeEvent).filter(
            models.IncomeEvent.family_id == family_id,
            models.IncomeEvent.status != models.IncomeStatus.CANCELLED,
        )
        if start is not None:
            q = q.filter(models.IncomeEvent.scheduled_date >= start)
        if end is not None:
            q = q.filter(models.IncomeEvent.scheduled_date <= end)
        rows = q.all()
        total_scheduled = sum((Decimal(r.amount) for r in rows), ZERO)
        received = [r for r in rows if r.status == models.IncomeStatus.RECEIVED]
        total_received = sum((r.effective_amount for r in received), ZERO)
        return {
            "total_scheduled": float(total_scheduled),
            "total_received": float(total_received),
            "total_allocated": float(sum((Decimal(r.allocated_amount) for r in rows), ZERO)),
            "total_remaining": float(sum((Decimal(r.remaining_amount) for r in rows), ZERO)),
            "count": len(rows),
            "scheduled_count": len(rows) - len(received),
            "received_count": len(received),
        }

    def monthly_received_total(self, family_id: int, start: date, end: date) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(func.coalesce(models.IncomeEvent.actual_amount, models.IncomeEvent.amount)), 0))
            .filter(
                models.IncomeEvent.family_id == family_id,
                models.IncomeEvent.status == models.IncomeStatus.RECEIVED,
                models.IncomeEvent.actual_date >= start,
                models.IncomeEvent.actual_date <= end,
            )
            .scalar()
        )
        return to_money(total)
