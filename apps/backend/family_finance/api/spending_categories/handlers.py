from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import can_edit_payments, get_current_member
from family_finance.schemas import SpendingCategoryCreate, SpendingCategoryUpdate
from family_finance.services.spending_category_service import SpendingCategoryService


def list_spending_categories(
    include_inactive: bool = False,
    parent_category_id: Optional[int] = None,
    budget_category_id: Optional[int] = None,
    search: Optional[str] = Query(None, max_length=100),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> list[models.SpendingCategory]:
    return SpendingCategoryService(db).list(
        member.family_id,
        include_inactive=include_inactive,
        parent_category_id=parent_category_id,
        budget_category_id=budget_category_id,
        search=search,
    )


def create_spending_category(
    payload: SpendingCategoryCreate,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> models.SpendingCategory:
    return SpendingCategoryService(db).create(member.family_id, member.id, payload.model_dump())


def get_spending_category(
    category_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> models.SpendingCategory:
    return SpendingCategoryService(db).get(member.family_id, category_id)


def update_spending_category(
    category_id: int,
    payload: SpendingCategoryUpdate,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> models.SpendingCategory:
    return SpendingCategoryService(db).update(
        member.family_id, member.id, category_id, payload.model_dump(exclude_unset=True)
    )


def delete_spending_category(
    category_id: int,
    move_transactions_to: Optional[int] = None,
    move_payments_to: Optional[int] = None,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> None:
    SpendingCategoryService(db).delete(
        member.family_id,
        member.id,
        category_id,
        move_transactions_to=move_transactions_to,
        move_payments_to=move_payments_to,
    )


def get_hierarchy(
    member: models.FamilyMember = Depends(get_current_member), db: Session = Depends(get_db)
) -> list[dict]:
    return SpendingCategoryService(db).hierarchy(member.family_id)


def get_usage_stats(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> list[dict]:
    return SpendingCategoryService(db).usage_stats(member.family_id, start_date, end_date)


def get_defaults(member: models.FamilyMember = Depends(get_current_member)) -> list[dict]:
    return SpendingCategoryService.defaults()
