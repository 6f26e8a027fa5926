from __future__ import annotations

from typing import Any, Callable

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from family_finance.core.database import get_db
from family_finance.core.errors import AuthenticationFailed, PermissionDenied
from family_finance.core.security import ACCESS, decode_token
from family_finance import models

bearer_scheme = HTTPBearer(auto_error=False)


def get_token_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationFailed("Not authenticated")
    return decode_token(credentials.credentials, ACCESS)


def get_current_member(
    claims: dict[str, Any] = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> models.FamilyMember:
    """Resolve the member behind the bearer token.

    The session referenced by ``sid`` must still exist so logout and
    password changes revoke outstanding access tokens.
    """
    member_id = int(claims["sub"])
    session = db.get(models.Session, claims["sid"])
    if session is None or session.family_member_id != member_id or session.expires_at < models.utcnow_naive():
        raise AuthenticationFailed("Session expired or revoked")
    member = db.get(models.FamilyMember, member_id)
    if member is None or member.deleted_at is not None:
        raise AuthenticationFailed("Account no longer active")
    return member


def get_current_session_id(claims: dict[str, Any] = Depends(get_token_claims)) -> int:
    return int(claims["sid"])


def require_permission(key: str) -> Callable[..., models.FamilyMember]:
    """Dependency factory: the member must hold ``key`` (admins hold all)."""

    def _dep(member: models.FamilyMember = Depends(get_current_member)) -> models.FamilyMember:
        if not member.has_permission(key):
            raise PermissionDenied("You do not have permission to perform this action")
        return member

    return _dep


def require_role(*roles: models.Role) -> Callable[..., models.FamilyMember]:
    def _dep(member: models.FamilyMember = Depends(get_current_member)) -> models.FamilyMember:
        if member.role not in roles:
            raise PermissionDenied("Your role does not allow this action")
        return member

    return _dep


require_admin = require_role(models.Role.ADMIN)
require_editor = require_role(models.Role.ADMIN, models.Role.EDITOR)
can_manage_bank_accounts = require_permission("can_manage_bank_accounts")
can_edit_payments = require_permission("can_edit_payments")
can_view_reports = require_permission("can_view_reports")
can_manage_family = require_permission("can_manage_family")
