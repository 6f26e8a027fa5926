from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import Depends, Query
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import can_edit_payments, get_current_member
from family_finance.schemas import (
    AutoCategorizeRequest,
    BatchCategorizeRequest,
    MatchPaymentsRequest,
    TransactionUpdate,
)
from family_finance.services.transaction_service import TransactionService


def list_transactions(
    bank_account_ids: Optional[list[int]] = Query(None),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    spending_category_id: Optional[int] = None,
    uncategorized: Optional[bool] = None,
    pending: Optional[bool] = None,
    min_amount: Optional[Decimal] = None,
    max_amount: Optional[Decimal] = None,
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    rows, total = TransactionService(db).list(
        member.family_id,
        bank_account_ids=bank_account_ids,
        start_date=start_date,
        end_date=end_date,
        spending_category_id=spending_category_id,
        uncategorized=uncategorized,
        pending=pending,
        min_amount=min_amount,
        max_amount=max_amount,
        search=search,
        limit=limit,
        offset=offset,
    )
    return {"transactions": rows, "total": total, "limit": limit, "offset": offset}


def get_transaction(
    transaction_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> models.Transaction:
    return TransactionService(db).get(member.family_id, transaction_id)


def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> models.Transaction:
    return TransactionService(db).update(
        member.family_id, member.id, transaction_id, payload.model_dump(exclude_unset=True)
    )


def list_uncategorized(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    rows, total = TransactionService(db).uncategorized(member.family_id, limit=limit, offset=offset)
    return {"transactions": rows, "total": total, "limit": limit, "offset": offset}


def categorize_batch(
    payload: BatchCategorizeRequest,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> dict:
    updates = [(item.transaction_id, item.spending_category_id) for item in payload.updates]
    return TransactionService(db).categorize_batch(member.family_id, member.id, updates)


def auto_categorize(
    payload: AutoCategorizeRequest,
    member: models.FamilyMember = Depends(can_edit_payments),
    db: Session = Depends(get_db),
) -> dict:
    return TransactionService(db).auto_categorize(member.family_id, member.id, payload.transaction_ids)


def match_payments(
    payload: MatchPaymentsRequest,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> list[dict]:
    return TransactionService(db).match_payments(
        member.family_id, transaction_ids=payload.transaction_ids, payment_ids=payload.payment_ids
    )
