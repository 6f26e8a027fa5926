from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import get_current_member, require_editor
from family_finance.schemas import (
    IncomeBulkCreate,
    IncomeEventCreate,
    IncomeEventUpdate,
    MarkReceivedRequest,
)
from family_finance.services.attribution_service import AttributionService
from family_finance.services.income_service import IncomeService


def list_income_events(
    status: Optional[models.IncomeStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    rows, total = IncomeService(db).list(
        member.family_id,
        status=status,
        start_date=start_date,
        end_date=end_date,
        search=search,
        limit=limit,
        offset=offset,
    )
    return {"income_events": rows, "total": total, "limit": limit, "offset": offset}


def create_income_event(
    payload: IncomeEventCreate,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> models.IncomeEvent:
    return IncomeService(db).create(member.family_id, member.id, payload.model_dump())


def bulk_create_income_events(
    payload: IncomeBulkCreate,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> list[models.IncomeEvent]:
    return IncomeService(db).bulk_create(member.family_id, member.id, [e.model_dump() for e in payload.income_events])


def get_income_event(
    income_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> models.IncomeEvent:
    return IncomeService(db).get(member.family_id, income_id)


def update_income_event(
    income_id: int,
    payload: IncomeEventUpdate,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> models.IncomeEvent:
    return IncomeService(db).update(member.family_id, member.id, income_id, payload.model_dump(exclude_unset=True))


def delete_income_event(
    income_id: int,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> None:
    IncomeService(db).delete(member.family_id, member.id, income_id)


def mark_received(
    income_id: int,
    payload: Optional[MarkReceivedRequest] = None,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> models.IncomeEvent:
    payload = payload or MarkReceivedRequest()
    return IncomeService(db).mark_received(
        member.family_id,
        member.id,
        income_id,
        actual_amount=payload.actual_amount,
        actual_date=payload.actual_date,
    )


def revert_received(
    income_id: int,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> models.IncomeEvent:
    return IncomeService(db).revert_received(member.family_id, member.id, income_id)


def upcoming_income(
    days: int = Query(30, ge=1, le=365),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> list[models.IncomeEvent]:
    return IncomeService(db).upcoming(member.family_id, days)


def income_summary(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    return IncomeService(db).summary(member.family_id, start_date, end_date)


def income_attributions(
    income_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    return AttributionService(db).for_income(member.family_id, income_id)
