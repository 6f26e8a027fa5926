"""Payment handlers, including the attribution sub-resource."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import can_edit_payments, get_current_member
from family_finance.schemas import (
    AttributionCreate,
    AttributionUpdate,
    MarkPaidRequest,
    PaymentBulkCreate,
    PaymentCreate,
    PaymentUpdate,
    SplitRequest,
    ValidateCapacityRequest,
)
from family_finance.services.attribution_service import AttributionService
from family_finance.services.payment_service import PaymentService


def list_payments(
    status: Optional[models.PaymentStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    spending_category_id: Optional[int] = None,
    payment_type: Optional[models.PaymentType] = None,
    search: Optional[str] = Query(None, max_length=200),
    overdue_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    rows, total = PaymentService(db).list(
        member.family_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        spending_category_id=spending_category_id,
        payment_type=payment_type,
        search=search,
        overdue_only=overdue_only,
        limit=limit,
        offset=offset,
    )
    return {"payments": rows, "total": total, "limit": limit, "offset": offset}


def create_payment(
    payload: PaymentCreate,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> models.Payment:
    return PaymentService(db).create(member.family_id, member.id, payload.model_dump())


def bulk_create_payments(
    payload: PaymentBulkCreate,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> list[models.Payment]:
    return PaymentService(db).bulk_create(member.family_id, member.id, [p.model_dump() for p in payload.payments])


def get_payment(
    payment_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> models.Payment:
    return PaymentService(db).get(member.family_id, payment_id)


def update_payment(
    payment_id: int,
    payload: PaymentUpdate,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> models.Payment:
    return PaymentService(db).update(member.family_id, member.id, payment_id, payload.model_dump(exclude_unset=True))


def delete_payment(
    payment_id: int,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> None:
    PaymentService(db).delete(member.family_id, member.id, payment_id)


def mark_paid(
    payment_id: int,
    payload: Optional[MarkPaidRequest] = None,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> models.Payment:
    payload = payload or MarkPaidRequest()
    return PaymentService(db).mark_paid(
        member.family_id,
        member.id,
        payment_id,
        paid_amount=payload.paid_amount,
        paid_date=payload.paid_date,
    )


def revert_paid(
    payment_id: int,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> models.Payment:
    return PaymentService(db).revert_paid(member.family_id, member.id, payment_id)


def upcoming_payments(
    days: int = Query(30, ge=1, le=365),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> list[models.Payment]:
    return PaymentService(db).upcoming(member.family_id, days)


def overdue_payments(
    member: models.FamilyMember = Depends(get_current_member), db: Session = Depends(get_db)
) -> list[models.Payment]:
    return PaymentService(db).overdue(member.family_id)


def payment_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    return PaymentService(db).summary(member.family_id, start_date, end_date)


def auto_attribute_all(
    member: models.FamilyMember = Depends(can_edit_payments), db: Session = Depends(get_db)
) -> dict:
    return AttributionService(db).auto_attribute_all(member.family_id, member.id)


def attribution_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    rows, total = AttributionService(db).history(member.family_id, limit=limit, offset=offset)
    return {"items": rows, "total": total, "limit": limit, "offset": offset}


# Attributions ---------------------------------------------------------------
def list_attributions(
    payment_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    return AttributionService(db).for_payment(member.family_id, payment_id)


def create_attribution(
    payment_id: int,
    payload: AttributionCreate,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> models.PaymentAttribution:
    return AttributionService(db).create(
        member.family_id,
        member.id,
        payment_id,
        payload.income_event_id,
        payload.amount,
        payload.attribution_type,
    )


def update_attribution(
    payment_id: int,
    attribution_id: int,
    payload: AttributionUpdate,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> models.PaymentAttribution:
    return AttributionService(db).update(member.family_id, member.id, payment_id, attribution_id, payload.amount)


def delete_attribution(
    payment_id: int,
    attribution_id: int,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> None:
    AttributionService(db).delete(member.family_id, member.id, payment_id, attribution_id)


def split_attributions(
    payment_id: int,
    payload: SplitRequest,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> list[models.PaymentAttribution]:
    splits = [(s.income_event_id, s.amount) for s in payload.splits]
    return AttributionService(db).split(member.family_id, member.id, payment_id, splits)


def auto_attribute(
    payment_id: int,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> Optional[models.PaymentAttribution]:
    return AttributionService(db).auto_attribute(member.family_id, member.id, payment_id)


def validate_attributions(
    payment_id: int,
    payload: ValidateCapacityRequest,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    proposed = [(a.income_event_id, a.amount) for a in payload.attributions]
    return AttributionService(db).validate_capacity(member.family_id, payment_id, proposed)


def attribution_suggestions(
    payment_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> list[dict]:
    return AttributionService(db).suggest(member.family_id, payment_id)
