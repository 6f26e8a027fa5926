from __future__ import annotations

import hashlib
import json
import os
import tempfile
import time
from datetime import date
from decimal import Decimal
from typing import Any, Generator

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwk, jwt
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from family_finance import models
from family_finance.core.database import Base, get_db
from family_finance.core.rate_limit import storage as rate_limit_storage
from family_finance.integrations.plaid import PlaidError, get_plaid_client
from family_finance.main import app
from family_finance.services.auth_service import AuthService
from family_finance.services.budget_service import BudgetService

PASSWORD = "correct-horse-1"

WEBHOOK_KEY_ID = "webhook-key-1"
_WEBHOOK_KEY = ec.generate_private_key(ec.SECP256R1())
_WEBHOOK_PEM = _WEBHOOK_KEY.private_bytes(
    serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
).decode()
_WEBHOOK_JWK = jwk.construct(
    _WEBHOOK_KEY.public_key()
    .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
    .decode(),
    "ES256",
).to_dict()


class FakePlaid:
    """Stands in for PlaidClient; tests tweak ``accounts``/``transactions`` or set ``fail``."""

    def __init__(self) -> None:
        self.item_id = "item-1"
        self.access_token = "access-sandbox-1"
        self.accounts = [
            {
                "account_id": "acc-checking",
                "name": "Everyday Checking",
                "type": "depository",
                "subtype": "checking",
                "mask": "0001",
                "balances": {"current": 2500.0, "available": 2400.0},
            },
            {
                "account_id": "acc-credit",
                "name": "Rewards Card",
                "type": "credit",
                "subtype": "credit card",
                "mask": "9876",
                "balances": {"current": 400.0, "available": None},
            },
        ]
        self.transactions: list[dict] = []
        self.fail = False
        self.removed: list[str] = []

    def _check(self) -> None:
        if self.fail:
            raise PlaidError("ITEM_LOGIN_REQUIRED", error_code="ITEM_LOGIN_REQUIRED", status_code=400)

    def link_token_create(self, *, user_id: str, access_token: str | None = None) -> dict:
        self._check()
        return {"link_token": f"link-sandbox-{user_id}", "expiration": "2030-01-01T00:00:00Z"}

    def item_public_token_exchange(self, public_token: str) -> dict:
        self._check()
        return {"access_token": self.access_token, "item_id": self.item_id}

    def accounts_get(self, access_token: str) -> dict:
        self._check()
        return {"accounts": self.accounts, "item": {"institution_name": "Test Bank"}}

    def transactions_get(self, access_token, start_date, end_date, *, account_ids=None, count=500, offset=0) -> dict:
        self._check()
        rows = [t for t in self.transactions if not account_ids or t["account_id"] in account_ids]
        return {"transactions": rows, "total_transactions": len(rows)}

    def item_remove(self, access_token: str) -> dict:
        self.removed.append(access_token)
        return {}

    def webhook_verification_key_get(self, key_id: str) -> dict:
        if key_id != WEBHOOK_KEY_ID:
            raise PlaidError("key not found", error_code="INVALID_WEBHOOK_VERIFICATION_KEY_ID", status_code=400)
        return {"key": _WEBHOOK_JWK}


def _sign_webhook(payload: dict, *, issued_at: float | None = None, key_id: str = WEBHOOK_KEY_ID) -> tuple[bytes, dict]:
    """Body bytes and headers for a webhook signed the way Plaid signs them."""
    body = json.dumps(payload).encode()
    token = jwt.encode(
        {
            "iat": int(time.time() if issued_at is None else issued_at),
            "request_body_sha256": hashlib.sha256(body).hexdigest(),
        },
        _WEBHOOK_PEM,
        algorithm="ES256",
        headers={"kid": key_id},
    )
    return body, {"Plaid-Verification": token, "Content-Type": "application/json"}


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # temp-file SQLite so the developer database is never touched
    fd, path = tempfile.mkstemp(prefix="ff_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = create_engine(test_db_url, connect_args={"check_same_thread": False})

    @event.listens_for(eng, "connect")
    def _fk_on(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Any, Any, Any]:
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        with engine.begin() as conn:
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")


@pytest.fixture()
def fake_plaid() -> FakePlaid:
    return FakePlaid()


@pytest.fixture(autouse=True)
def override_dependency(db_session, fake_plaid):
    def _get_db_override():
        try:
            yield db_session
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_plaid_client] = lambda: fake_plaid
    rate_limit_storage.reset()
    yield
    app.dependency_overrides.clear()
    rate_limit_storage.reset()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient

    with TestClient(app) as c:
        yield c


def _add_member(db, family: models.Family, email: str, role: models.Role) -> models.FamilyMember:
    from family_finance.core.security import hash_password

    member = models.FamilyMember(
        family_id=family.id,
        email=email,
        password_hash=hash_password(PASSWORD),
        first_name=role.value.title(),
        last_name="Tester",
        role=role,
        permissions=models.default_permissions(role),
        email_verified=True,
    )
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


@pytest.fixture()
def family(db_session) -> dict:
    """A family with an admin, an editor and a viewer, each holding a live session."""
    auth = AuthService(db_session)
    admin, fam, tokens = auth.register(
        email="admin@example.com",
        password=PASSWORD,
        first_name="Alex",
        last_name="Admin",
        family_name="Tester Family",
    )
    editor = _add_member(db_session, fam, "editor@example.com", models.Role.EDITOR)
    viewer = _add_member(db_session, fam, "viewer@example.com", models.Role.VIEWER)
    return {
        "family": fam,
        "admin": admin,
        "editor": editor,
        "viewer": viewer,
        "headers": {
            "admin": {"Authorization": f"Bearer {tokens['access_token']}"},
            "editor": {"Authorization": f"Bearer {auth.start_session(editor)['access_token']}"},
            "viewer": {"Authorization": f"Bearer {auth.start_session(viewer)['access_token']}"},
        },
        "refresh_token": tokens["refresh_token"],
    }


@pytest.fixture()
def admin_headers(family) -> dict:
    return family["headers"]["admin"]


@pytest.fixture()
def other_family(db_session) -> dict:
    admin, fam, tokens = AuthService(db_session).register(
        email="other@example.com",
        password=PASSWORD,
        first_name="Olive",
        last_name="Other",
        family_name="Other Family",
    )
    return {"family": fam, "admin": admin, "headers": {"Authorization": f"Bearer {tokens['access_token']}"}}


@pytest.fixture()
def budget(db_session, family) -> dict[str, models.BudgetCategory]:
    """50/30/20 categories keyed by name."""
    rows = BudgetService(db_session).apply_template(family["family"].id, family["admin"].id, template_name="50/30/20")
    return {r.name: r for r in rows}


def _make_account(db, family_id: int, *, account_type=models.AccountType.CHECKING, balance="1000.00", name="Checking"):
    row = models.BankAccount(
        family_id=family_id,
        plaid_account_id=f"plaid-{name}-{family_id}-{account_type.value}",
        plaid_item_id=f"item-{family_id}",
        plaid_access_token="access-token",
        institution_name="Test Bank",
        account_name=name,
        account_type=account_type,
        current_balance=Decimal(balance),
        sync_status=models.SyncStatus.ACTIVE,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _make_transaction(db, account, *, amount, when: date, description="Purchase", merchant=None, category_id=None):
    row = models.Transaction(
        bank_account_id=account.id,
        plaid_transaction_id=f"txn-{account.id}-{description}-{when.isoformat()}-{amount}",
        amount=Decimal(str(amount)),
        date=when,
        description=description,
        merchant_name=merchant,
        spending_category_id=category_id,
        category_confidence=Decimal("1.00") if category_id else Decimal("0"),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture()
def make_account(db_session):
    return lambda family_id, **kw: _make_account(db_session, family_id, **kw)


@pytest.fixture()
def make_transaction(db_session):
    return lambda account, **kw: _make_transaction(db_session, account, **kw)


@pytest.fixture()
def sign_webhook():
    return _sign_webhook
