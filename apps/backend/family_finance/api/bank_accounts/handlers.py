"""Bank account handlers backed by the Plaid integration."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import can_manage_bank_accounts, get_current_member
from family_finance.core.rate_limit import enforce_rate_limit
from family_finance.integrations.plaid import PlaidClient, get_plaid_client, verify_webhook
from family_finance.schemas import BankAccountUpdate, ConnectBankRequest, PlaidWebhook, SyncRequest
from family_finance.services.bank_service import BankService

logger = logging.getLogger(__name__)


def create_link_token(
    member: models.FamilyMember = Depends(can_manage_bank_accounts),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> dict:
    return BankService(db, plaid).create_link_token(member)


def connect_bank_account(
    payload: ConnectBankRequest,
    member: models.FamilyMember = Depends(can_manage_bank_accounts),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> list[models.BankAccount]:
    return BankService(db, plaid).connect(
        member.family_id, member.id, payload.public_token, payload.institution_name
    )


def list_bank_accounts(
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> list[models.BankAccount]:
    return BankService(db, plaid).list(member.family_id)


def get_bank_account(
    account_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> models.BankAccount:
    return BankService(db, plaid).get(member.family_id, account_id)


def update_bank_account(
    account_id: int,
    payload: BankAccountUpdate,
    member: models.FamilyMember = Depends(can_manage_bank_accounts),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> models.BankAccount:
    return BankService(db, plaid).update(
        member.family_id, member.id, account_id, payload.model_dump(exclude_unset=True)
    )


def delete_bank_account(
    account_id: int,
    member: models.FamilyMember = Depends(can_manage_bank_accounts),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> None:
    BankService(db, plaid).delete(member.family_id, member.id, account_id)


def sync_bank_account(
    account_id: int,
    request: Request,
    payload: Optional[SyncRequest] = None,
    member: models.FamilyMember = Depends(can_manage_bank_accounts),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> dict:
    enforce_rate_limit(request, "bank_sync", str(member.family_id))
    payload = payload or SyncRequest()
    return BankService(db, plaid).sync(
        member.family_id,
        member.id,
        account_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )


def sync_all_bank_accounts(
    request: Request,
    member: models.FamilyMember = Depends(can_manage_bank_accounts),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> dict:
    enforce_rate_limit(request, "bank_sync", str(member.family_id))
    return BankService(db, plaid).sync_all(member.family_id, member.id)


def reconnect_bank_account(
    account_id: int,
    member: models.FamilyMember = Depends(can_manage_bank_accounts),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> dict:
    return BankService(db, plaid).reconnect(member.family_id, member, account_id)


async def _raw_body(request: Request) -> bytes:
    return await request.body()


def plaid_webhook(
    payload: PlaidWebhook,
    body: bytes = Depends(_raw_body),
    plaid_verification: Optional[str] = Header(default=None, alias="Plaid-Verification"),
    db: Session = Depends(get_db),
    plaid: PlaidClient = Depends(get_plaid_client),
) -> dict:
    verify_webhook(plaid, body, plaid_verification)
    logger.info("Plaid webhook %s/%s for item %s", payload.webhook_type, payload.webhook_code, payload.item_id)
    return BankService(db, plaid).handle_webhook(payload.model_dump())
