from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import case
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.errors import NotFound, UpstreamError, ValidationFailed
from family_finance.integrations.plaid import PlaidClient, PlaidError
from family_finance.services.audit_service import AuditService
from family_finance.services.transaction_service import map_provider_category
from family_finance.utils.money import to_money

logger = logging.getLogger(__name__)

SYNC_WINDOW_DAYS = 30
SYNC_PAGE_SIZE = 500
PROVIDER_CATEGORY_CONFIDENCE = Decimal("0.60")


def map_account_type(plaid_type: Optional[str], subtype: Optional[str]) -> models.AccountType:
    """depository splits on subtype; credit and loan map through."""
    if plaid_type == "credit":
        return models.AccountType.CREDIT
    if plaid_type == "loan":
        return models.AccountType.LOAN
    if (subtype or "").lower() in ("savings", "money market", "cd", "hsa"):
        return models.AccountType.SAVINGS
    return models.AccountType.CHECKING


class BankService:
    def __init__(self, db: Session, plaid: PlaidClient) -> None:
        self.db = db
        self.plaid = plaid
        self.audit = AuditService(db)

    def _query(self, family_id: int):
        return self.db.query(models.BankAccount).filter(
            models.BankAccount.family_id == family_id,
            models.BankAccount.deleted_at.is_(None),
        )

    def get(self, family_id: int, account_id: int) -> models.BankAccount:
        row = self._query(family_id).filter(models.BankAccount.id == account_id).first()
        if row is None:
            raise NotFound("Bank account not found")
        return row

    def list(self, family_id: int) -> list[models.BankAccount]:
        active_first = case((models.BankAccount.sync_status == models.SyncStatus.ACTIVE, 0), else_=1)
        return (
            self._query(family_id)
            .order_by(active_first, models.BankAccount.institution_name, models.BankAccount.account_name)
            .all()
        )

    def create_link_token(self, member: models.FamilyMember, *, access_token: Optional[str] = None) -> dict:
        try:
            data = self.plaid.link_token_create(user_id=str(member.id), access_token=access_token)
        except PlaidError as exc:
            raise UpstreamError(f"Failed to create link token: {exc.message}")
        return {"link_token": data["link_token"], "expiration": data.get("expiration")}

    def connect(
        self,
        family_id: int,
        member_id: int,
        public_token: str,
        institution_name: Optional[str] = None,
    ) -> list[models.BankAccount]:
        try:
            exchange = self.plaid.item_public_token_exchange(public_token)
            access_token = exchange["access_token"]
            item_id = exchange["item_id"]
            accounts_payload = self.plaid.accounts_get(access_token)
        except PlaidError as exc:
            raise UpstreamError(f"Failed to connect bank account: {exc.message}")

        institution = institution_name or (accounts_payload.get("item") or {}).get("institution_name") or "Unknown Institution"
        rows: list[models.BankAccount] = []
        for acct in accounts_payload.get("accounts", []):
            row = (
                self.db.query(models.BankAccount)
                .filter(models.BankAccount.plaid_account_id == acct["account_id"])
                .first()
            )
            if row is not None and row.family_id != family_id:
                raise ValidationFailed("Bank account is already linked to another family")
            if row is None:
                row = models.BankAccount(family_id=family_id, plaid_account_id=acct["account_id"])
                self.db.add(row)
            row.plaid_item_id = item_id
            row.plaid_access_token = access_token
            row.institution_name = institution
            row.account_name = acct.get("official_name") or acct.get("name") or "Account"
            row.account_type = map_account_type(acct.get("type"), acct.get("subtype"))
            mask = acct.get("mask")
            row.account_number = str(mask)[-4:] if mask else None
            self._apply_balances(row, acct.get("balances") or {})
            row.sync_status = models.SyncStatus.ACTIVE
            row.deleted_at = None
            rows.append(row)
        if not rows:
            raise ValidationFailed("No accounts were returned for this connection")
        self.db.flush()
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.CREATE,
            entity_type="BankAccount",
            new_values={"institution": institution, "accounts": [r.id for r in rows]},
        )
        self.db.commit()
        logger.info("Connected %d accounts from %s for family %s", len(rows), institution, family_id)

        for row in rows:
            try:
                self.sync(family_id, member_id, row.id)
            except UpstreamError:
                logger.warning("Initial sync failed for bank account %s", row.id)
        for row in rows:
            self.db.refresh(row)
        return rows

    @staticmethod
    def _apply_balances(row: models.BankAccount, balances: dict[str, Any]) -> None:
        if balances.get("current") is not None:
            row.current_balance = to_money(balances["current"])
        elif row.current_balance is None:
            row.current_balance = to_money(0)
        row.available_balance = to_money(balances["available"]) if balances.get("available") is not None else None

    def update(self, family_id: int, member_id: int, account_id: int, patch: dict) -> models.BankAccount:
        row = self.get(family_id, account_id)
        old = {"account_name": row.account_name, "sync_status": row.sync_status.value}
        for key, value in patch.items():
            if value is not None:
                setattr(row, key, value)
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="BankAccount",
            entity_id=row.id,
            old_values=old,
            new_values={"account_name": row.account_name, "sync_status": row.sync_status.value},
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(self, family_id: int, member_id: int, account_id: int) -> None:
        row = self.get(family_id, account_id)
        row.deleted_at = models.utcnow_naive()
        row.sync_status = models.SyncStatus.DISCONNECTED
        siblings = (
            self._query(family_id)
            .filter(models.BankAccount.plaid_item_id == row.plaid_item_id, models.BankAccount.id != row.id)
            .count()
        )
        if siblings == 0 and row.plaid_access_token:
            try:
                self.plaid.item_remove(row.plaid_access_token)
            except PlaidError as exc:
                # the local disconnect still stands
                logger.warning("Failed to remove Plaid item %s: %s", row.plaid_item_id, exc.message)
            row.plaid_access_token = None
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.DELETE,
            entity_type="BankAccount",
            entity_id=row.id,
            old_values={"account_name": row.account_name, "institution_name": row.institution_name},
        )
        self.db.commit()

    def sync(
        self,
        family_id: int,
        member_id: Optional[int],
        account_id: int,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> dict:
        row = self.get(family_id, account_id)
        if row.sync_status == models.SyncStatus.DISCONNECTED or not row.plaid_access_token:
            raise ValidationFailed("Bank account is disconnected; reconnect it first")
        end_date = end_date or date.today()
        start_date = start_date or end_date - timedelta(days=SYNC_WINDOW_DAYS)
        try:
            payload = self.plaid.transactions_get(
                row.plaid_access_token,
                start_date,
                end_date,
                account_ids=[row.plaid_account_id],
                count=SYNC_PAGE_SIZE,
            )
            balances = self.plaid.accounts_get(row.plaid_access_token)
        except PlaidError as exc:
            row.sync_status = models.SyncStatus.ERROR
            self.db.commit()
            logger.warning("Sync failed for bank account %s: %s", row.id, exc.message)
            raise UpstreamError(f"Bank sync failed: {exc.message}")

        categories = (
            self.db.query(models.SpendingCategory)
            .filter(models.SpendingCategory.family_id == family_id, models.SpendingCategory.is_active.is_(True))
            .all()
        )
        new_count = updated_count = 0
        for item in payload.get("transactions", []):
            if item.get("account_id") not in (None, row.plaid_account_id):
                continue
            txn = (
                self.db.query(models.Transaction)
                .filter(models.Transaction.plaid_transaction_id == item["transaction_id"])
                .first()
            )
            if txn is None:
                txn = models.Transaction(bank_account_id=row.id, plaid_transaction_id=item["transaction_id"])
                self.db.add(txn)
                new_count += 1
                mapped = map_provider_category(item.get("category") or [], categories)
                if mapped is not None:
                    txn.spending_category_id = mapped.id
                    txn.category_confidence = PROVIDER_CATEGORY_CONFIDENCE
            else:
                updated_count += 1
            txn.amount = to_money(item["amount"])
            txn.date = _parse_date(item["date"])
            txn.description = item.get("name") or item.get("merchant_name") or "Transaction"
            txn.merchant_name = item.get("merchant_name")
            txn.pending = bool(item.get("pending", False))

        for acct in balances.get("accounts", []):
            if acct.get("account_id") == row.plaid_account_id:
                self._apply_balances(row, acct.get("balances") or {})
        row.last_sync_at = models.utcnow_naive()
        row.sync_status = models.SyncStatus.ACTIVE
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.SYNC,
            entity_type="BankAccount",
            entity_id=row.id,
            new_values={"new": new_count, "updated": updated_count},
        )
        self.db.commit()
        logger.info("Synced bank account %s: %d new, %d updated", row.id, new_count, updated_count)
        return {"account_id": row.id, "new_count": new_count, "updated_count": updated_count}

    def sync_all(self, family_id: int, member_id: int) -> dict:
        accounts = [a for a in self.list(family_id) if a.sync_status != models.SyncStatus.DISCONNECTED]
        results = []
        for acct in accounts:
            try:
                outcome = self.sync(family_id, member_id, acct.id)
                results.append(
                    {
                        "account_id": acct.id,
                        "account_name": acct.account_name,
                        "success": True,
                        "new_count": outcome["new_count"],
                        "updated_count": outcome["updated_count"],
                    }
                )
            except (UpstreamError, ValidationFailed) as exc:
                results.append(
                    {"account_id": acct.id, "account_name": acct.account_name, "success": False, "error": exc.message}
                )
        success = sum(1 for r in results if r["success"])
        return {
            "total_accounts": len(accounts),
            "success_count": success,
            "error_count": len(results) - success,
            "results": results,
        }

    def reconnect(self, family_id: int, member: models.FamilyMember, account_id: int) -> dict:
        row = self.get(family_id, account_id)
        if not row.plaid_access_token:
            raise ValidationFailed("Bank account has no provider connection; link it again")
        return self.create_link_token(member, access_token=row.plaid_access_token)

    def handle_webhook(self, payload: dict) -> dict:
        """Act on a verified provider callback; it only ever triggers a sync or flags an error."""
        webhook_type = payload.get("webhook_type")
        code = payload.get("webhook_code")
        accounts = (
            self.db.query(models.BankAccount)
            .filter(
                models.BankAccount.plaid_item_id == payload.get("item_id"),
                models.BankAccount.deleted_at.is_(None),
            )
            .all()
        )
        if not accounts:
            logger.info("Ignoring %s/%s webhook for unknown item", webhook_type, code)
            return {"handled": False, "accounts": 0}

        if webhook_type == "TRANSACTIONS" and code in (
            "INITIAL_UPDATE",
            "HISTORICAL_UPDATE",
            "DEFAULT_UPDATE",
            "SYNC_UPDATES_AVAILABLE",
        ):
            synced = 0
            for acct in accounts:
                try:
                    self.sync(acct.family_id, None, acct.id)
                    synced += 1
                except (UpstreamError, ValidationFailed):
                    logger.warning("Webhook sync failed for bank account %s", acct.id)
            return {"handled": True, "accounts": synced}

        if webhook_type == "ITEM" and code == "ERROR":
            for acct in accounts:
                acct.sync_status = models.SyncStatus.ERROR
            self.db.commit()
            logger.warning("Plaid item %s reported an error: %s", payload.get("item_id"), payload.get("error"))
            return {"handled": True, "accounts": len(accounts)}

        logger.info("Unhandled webhook %s/%s", webhook_type, code)
        return {"handled": False, "accounts": 0}


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value), "%Y-%m-%d").date()
