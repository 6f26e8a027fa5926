"""Thin httpx wrapper around the Plaid REST endpoints the app uses."""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from datetime import date
from typing import Any, Optional

import httpx
from jose import JWTError, jwt

from family_finance.core.config import settings
from family_finance.core.errors import AuthenticationFailed

logger = logging.getLogger(__name__)


class PlaidError(Exception):
    """Raised for transport failures and Plaid error payloads."""

    def __init__(self, message: str, *, error_code: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code


class PlaidClient:
    def __init__(
        self,
        client_id: str,
        secret: str,
        *,
        base_url: str = "https://sandbox.plaid.com",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.client_id = client_id
        self.secret = secret
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        payload = {"client_id": self.client_id, "secret": self.secret, **body}
        try:
            resp = self._http.post(path, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Plaid request %s failed: %s", path, exc)
            raise PlaidError(f"Bank provider unavailable: {exc}") from exc
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            message = data.get("error_message") or data.get("display_message") or resp.reason_phrase
            logger.warning("Plaid %s returned %s (%s)", path, resp.status_code, data.get("error_code"))
            raise PlaidError(message, error_code=data.get("error_code"), status_code=resp.status_code)
        return data

    def link_token_create(self, *, user_id: str, access_token: Optional[str] = None) -> dict[str, Any]:
        body: dict[str, Any] = {
            "client_name": settings.APP_NAME,
            "user": {"client_user_id": user_id},
            "country_codes": list(settings.PLAID_COUNTRY_CODES),
            "language": "en",
        }
        if access_token:
            # update mode re-authenticates an existing item
            body["access_token"] = access_token
        else:
            body["products"] = list(settings.PLAID_PRODUCTS)
        if settings.PLAID_WEBHOOK_URL:
            body["webhook"] = settings.PLAID_WEBHOOK_URL
        return self._post("/link/token/create", body)

    def item_public_token_exchange(self, public_token: str) -> dict[str, Any]:
        return self._post("/item/public_token/exchange", {"public_token": public_token})

    def accounts_get(self, access_token: str) -> dict[str, Any]:
        return self._post("/accounts/get", {"access_token": access_token})

    def transactions_get(
        self,
        access_token: str,
        start_date: date,
        end_date: date,
        *,
        account_ids: Optional[list[str]] = None,
        count: int = 500,
        offset: int = 0,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {"count": count, "offset": offset}
        if account_ids:
            options["account_ids"] = account_ids
        return self._post(
            "/transactions/get",
            {
                "access_token": access_token,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "options": options,
            },
        )

    def item_remove(self, access_token: str) -> dict[str, Any]:
        return self._post("/item/remove", {"access_token": access_token})

    def webhook_verification_key_get(self, key_id: str) -> dict[str, Any]:
        return self._post("/webhook_verification_key/get", {"key_id": key_id})


def verify_webhook(client: PlaidClient, body: bytes, token: Optional[str], *, now: Optional[float] = None) -> dict:
    """Check the ``Plaid-Verification`` JWT against the raw request body.

    The token is ES256-signed with a key Plaid serves by ``kid``; its
    ``request_body_sha256`` claim must match the body and ``iat`` must be recent.
    Returns the verified claims.
    """
    if not token:
        raise AuthenticationFailed("Missing webhook signature")
    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        raise AuthenticationFailed("Invalid webhook signature") from exc
    if header.get("alg") != "ES256" or not header.get("kid"):
        raise AuthenticationFailed("Invalid webhook signature")
    try:
        key = client.webhook_verification_key_get(header["kid"])["key"]
    except (PlaidError, KeyError) as exc:
        logger.warning("Could not fetch webhook key %s: %s", header["kid"], exc)
        raise AuthenticationFailed("Invalid webhook signature") from exc
    try:
        claims = jwt.decode(token, key, algorithms=["ES256"])
    except JWTError as exc:
        raise AuthenticationFailed("Invalid webhook signature") from exc
    now = time.time() if now is None else now
    issued = claims.get("iat")
    if not isinstance(issued, (int, float)) or now - issued > settings.PLAID_WEBHOOK_MAX_AGE_SECONDS:
        raise AuthenticationFailed("Webhook signature expired")
    digest = hashlib.sha256(body).hexdigest()
    if not hmac.compare_digest(digest, str(claims.get("request_body_sha256", ""))):
        raise AuthenticationFailed("Webhook body does not match signature")
    return claims


_client: Optional[PlaidClient] = None


def get_plaid_client() -> PlaidClient:
    """FastAPI dependency; tests override it with a fake."""
    global _client
    if _client is None:
        _client = PlaidClient(
            settings.PLAID_CLIENT_ID,
            settings.PLAID_SECRET,
            base_url=settings.PLAID_BASE_URL,
            timeout=settings.PLAID_TIMEOUT_SECONDS,
        )
    return _client
