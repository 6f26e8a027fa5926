"""Budget categories, per-income allocations and budget analysis."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import get_current_member, require_editor
from family_finance.core.errors import ValidationFailed
from family_finance.schemas import (
    AllocationUpdate,
    ApplyTemplateRequest,
    BudgetCategoryCreate,
    BudgetCategoryUpdate,
    GenerateAllocationRequest,
    ValidatePercentagesRequest,
)
from family_finance.services.budget_service import BudgetService
from family_finance.utils.schedule import month_bounds


# Budget categories ------------------------------------------------------
def list_budget_categories(
    include_inactive: bool = False,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> list[models.BudgetCategory]:
    return BudgetService(db).list_categories(member.family_id, include_inactive=include_inactive)


def create_budget_category(
    payload: BudgetCategoryCreate,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> models.BudgetCategory:
    return BudgetService(db).create_category(member.family_id, member.id, payload.model_dump())


def get_budget_category(
    category_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> models.BudgetCategory:
    return BudgetService(db).get_category(member.family_id, category_id)


def update_budget_category(
    category_id: int,
    payload: BudgetCategoryUpdate,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> models.BudgetCategory:
    return BudgetService(db).update_category(
        member.family_id, member.id, category_id, payload.model_dump(exclude_unset=True)
    )


def delete_budget_category(
    category_id: int,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> None:
    BudgetService(db).delete_category(member.family_id, member.id, category_id)


def validate_percentages(
    payload: ValidatePercentagesRequest,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    items = [(item.id, item.target_percentage) for item in payload.categories]
    return BudgetService(db).validate_percentages(member.family_id, items)


# Allocations --------------------------------------------------------------
def list_allocations(
    income_event_id: Optional[int] = None,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> list[models.BudgetAllocation]:
    return BudgetService(db).list_allocations(member.family_id, income_event_id)


def generate_allocation(
    income_event_id: int,
    payload: Optional[GenerateAllocationRequest] = None,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> dict:
    overrides = {o.budget_category_id: o.percentage for o in (payload.overrides if payload else [])}
    return BudgetService(db).generate_allocation(member.family_id, income_event_id, overrides)


def update_allocation(
    allocation_id: int,
    payload: AllocationUpdate,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> models.BudgetAllocation:
    return BudgetService(db).update_allocation(member.family_id, allocation_id, payload.amount)


def delete_allocation(
    allocation_id: int,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> None:
    BudgetService(db).delete_allocation(member.family_id, allocation_id)


# Budget analysis ----------------------------------------------------------
def get_overview(member: models.FamilyMember = Depends(get_current_member), db: Session = Depends(get_db)) -> dict:
    return BudgetService(db).overview(member.family_id)


def get_performance(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    default_start, default_end = month_bounds(date.today())
    start = start_date or default_start
    end = end_date or default_end
    if end < start:
        raise ValidationFailed("end_date must be on or after start_date")
    return BudgetService(db).performance(member.family_id, start, end)


def get_projections(
    months: int = Query(6, ge=1, le=24),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    return BudgetService(db).projections(member.family_id, months)


def list_templates(member: models.FamilyMember = Depends(get_current_member)) -> list[dict]:
    return BudgetService.templates()


def apply_template(
    payload: ApplyTemplateRequest,
    member: models.FamilyMember = Depends(require_editor),
    db: Session = Depends(get_db),
) -> list[models.BudgetCategory]:
    categories = [c.model_dump() for c in payload.categories] if payload.categories else None
    return BudgetService(db).apply_template(
        member.family_id, member.id, template_name=payload.template_name, categories=categories
    )
