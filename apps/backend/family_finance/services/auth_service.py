"""Registration, login and session lifecycle.

A login creates a ``Session`` row whose id travels in both tokens as ``sid``;
the refresh token also carries the session's current ``jti``. Refreshing
rotates the jti, so a replayed refresh token stops working, and deleting the
row revokes every access token minted for it.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.config import settings
from family_finance.core.errors import AuthenticationFailed, Conflict, NotFound, PermissionDenied, ValidationFailed
from family_finance.core.security import (
    REFRESH,
    create_access_token,
    create_refresh_token,
    decode_token,
    hash_password,
    hash_token,
    new_token,
    verify_password,
)
from family_finance.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)

    # Helpers ------------------------------------------------------------
    def find_by_email(self, email: str) -> Optional[models.FamilyMember]:
        return (
            self.db.query(models.FamilyMember)
            .filter(func.lower(models.FamilyMember.email) == email.strip().lower())
            .first()
        )

    @staticmethod
    def _lifetimes(remember_me: bool) -> tuple[timedelta, timedelta]:
        if remember_me:
            return (
                timedelta(days=settings.REMEMBER_ME_ACCESS_TOKEN_EXPIRE_DAYS),
                timedelta(days=settings.REMEMBER_ME_REFRESH_TOKEN_EXPIRE_DAYS),
            )
        return (
            timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        )

    def _issue(self, member: models.FamilyMember, session: models.Session) -> dict:
        access_ttl, refresh_ttl = self._lifetimes(session.remember_me)
        return {
            "access_token": create_access_token(
                member_id=member.id, family_id=member.family_id, session_id=session.id, expires_delta=access_ttl
            ),
            "refresh_token": create_refresh_token(
                member_id=member.id, session_id=session.id, jti=session.token_id, expires_delta=refresh_ttl
            ),
            "expires_in": int(access_ttl.total_seconds()),
            "token_type": "Bearer",
        }

    def start_session(
        self,
        member: models.FamilyMember,
        *,
        remember_me: bool = False,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """Create a session row and mint its token pair. Commits."""
        _, refresh_ttl = self._lifetimes(remember_me)
        session = models.Session(
            family_member_id=member.id,
            token_id=new_token(16),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
            remember_me=remember_me,
            expires_at=models.utcnow_naive() + refresh_ttl,
        )
        self.db.add(session)
        member.last_login_at = models.utcnow_naive()
        self.db.flush()
        tokens = self._issue(member, session)
        self.db.commit()
        return tokens

    # Public operations ----------------------------------------------------
    def register(
        self,
        *,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        family_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> tuple[models.FamilyMember, models.Family, dict]:
        if self.find_by_email(email) is not None:
            raise Conflict("An account with this email already exists")
        family = models.Family(
            name=family_name or f"{first_name.strip()}'s Family",
            settings=dict(models.DEFAULT_FAMILY_SETTINGS),
            subscription_status=models.SubscriptionStatus.TRIAL,
        )
        self.db.add(family)
        self.db.flush()
        member = models.FamilyMember(
            family_id=family.id,
            email=email.strip().lower(),
            password_hash=hash_password(password),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            role=models.Role.ADMIN,
            permissions=models.default_permissions(models.Role.ADMIN),
            email_verified=False,
            email_verification_token=new_token(),
        )
        self.db.add(member)
        self.db.flush()
        self.audit.record(
            family_id=family.id,
            member_id=member.id,
            action=models.AuditAction.CREATE,
            entity_type="Family",
            entity_id=family.id,
            new_values={"name": family.name, "admin_email": member.email},
            ip_address=ip_address,
        )
        tokens = self.start_session(member, ip_address=ip_address, user_agent=user_agent)
        logger.info("Registered family %s with admin %s", family.id, member.id)
        logger.info("Email verification pending for member %s", member.id)
        return member, family, tokens

    def login(
        self,
        *,
        email: str,
        password: str,
        remember_me: bool = False,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> tuple[models.FamilyMember, models.Family, dict]:
        member = self.find_by_email(email)
        if member is None or member.deleted_at is not None or not verify_password(password, member.password_hash):
            logger.info("Failed login for %s", email)
            raise AuthenticationFailed("Invalid email or password")
        if settings.REQUIRE_EMAIL_VERIFICATION and not member.email_verified:
            raise PermissionDenied("Email address has not been verified")
        self.audit.record(
            family_id=member.family_id,
            member_id=member.id,
            action=models.AuditAction.LOGIN,
            entity_type="FamilyMember",
            entity_id=member.id,
            ip_address=ip_address,
        )
        tokens = self.start_session(member, remember_me=remember_me, ip_address=ip_address, user_agent=user_agent)
        logger.info("Member %s logged in", member.id)
        return member, member.family, tokens

    def refresh(self, refresh_token: str) -> dict:
        claims = decode_token(refresh_token, REFRESH)
        session = self.db.get(models.Session, claims["sid"])
        if session is None or session.token_id != claims.get("jti"):
            raise AuthenticationFailed("Invalid refresh token")
        if session.expires_at < models.utcnow_naive():
            self.db.delete(session)
            self.db.commit()
            raise AuthenticationFailed("Session expired")
        member = self.db.get(models.FamilyMember, int(claims["sub"]))
        if member is None or member.deleted_at is not None or member.id != session.family_member_id:
            raise AuthenticationFailed("Invalid refresh token")
        session.token_id = new_token(16)
        tokens = self._issue(member, session)
        self.db.commit()
        return tokens

    def logout(self, member: models.FamilyMember, session_id: int) -> None:
        session = self.db.get(models.Session, session_id)
        if session is not None and session.family_member_id == member.id:
            self.db.delete(session)
        self.audit.record(
            family_id=member.family_id,
            member_id=member.id,
            action=models.AuditAction.LOGOUT,
            entity_type="FamilyMember",
            entity_id=member.id,
        )
        self.db.commit()

    def list_sessions(self, member: models.FamilyMember) -> list[models.Session]:
        return (
            self.db.query(models.Session)
            .filter(
                models.Session.family_member_id == member.id,
                models.Session.expires_at >= models.utcnow_naive(),
            )
            .order_by(models.Session.created_at.desc(), models.Session.id.desc())
            .all()
        )

    def delete_session(self, member: models.FamilyMember, session_id: int) -> None:
        session = self.db.get(models.Session, session_id)
        if session is None or session.family_member_id != member.id:
            raise NotFound("Session not found")
        self.db.delete(session)
        self.db.commit()

    def update_profile(self, member: models.FamilyMember, patch: dict) -> models.FamilyMember:
        for key in ("first_name", "last_name"):
            if patch.get(key) is not None:
                setattr(member, key, patch[key].strip())
        self.db.commit()
        self.db.refresh(member)
        return member

    def change_password(
        self, member: models.FamilyMember, *, current_password: str, new_password: str, keep_session_id: int
    ) -> None:
        if not verify_password(current_password, member.password_hash):
            raise ValidationFailed("Current password is incorrect")
        if current_password == new_password:
            raise ValidationFailed("New password must be different from the current password")
        member.password_hash = hash_password(new_password)
        self.db.query(models.Session).filter(
            models.Session.family_member_id == member.id,
            models.Session.id != keep_session_id,
        ).delete(synchronize_session=False)
        self.audit.record(
            family_id=member.family_id,
            member_id=member.id,
            action=models.AuditAction.UPDATE,
            entity_type="FamilyMember",
            entity_id=member.id,
            new_values={"password_changed": True},
        )
        self.db.commit()
        logger.info("Member %s changed password", member.id)

    def forgot_password(self, email: str) -> Optional[str]:
        """Issue a reset token when the address is known. Callers answer the same either way."""
        member = self.find_by_email(email)
        if member is None or member.deleted_at is not None:
            logger.info("Password reset requested for unknown address")
            return None
        token = new_token()
        member.password_reset_token_hash = hash_token(token)
        member.password_reset_expires_at = models.utcnow_naive() + timedelta(
            minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES
        )
        self.db.commit()
        logger.info("Password reset issued for member %s", member.id)
        return token

    def reset_password(self, token: str, new_password: str) -> None:
        member = (
            self.db.query(models.FamilyMember)
            .filter(models.FamilyMember.password_reset_token_hash == hash_token(token))
            .first()
        )
        if (
            member is None
            or member.password_reset_expires_at is None
            or member.password_reset_expires_at < models.utcnow_naive()
        ):
            raise ValidationFailed("Invalid or expired reset token")
        member.password_hash = hash_password(new_password)
        member.password_reset_token_hash = None
        member.password_reset_expires_at = None
        self.db.query(models.Session).filter(models.Session.family_member_id == member.id).delete(
            synchronize_session=False
        )
        self.db.commit()
        logger.info("Password reset completed for member %s", member.id)

    def verify_email(self, token: str) -> models.FamilyMember:
        member = (
            self.db.query(models.FamilyMember)
            .filter(models.FamilyMember.email_verification_token == token)
            .first()
        )
        if member is None:
            raise ValidationFailed("Invalid verification token")
        member.email_verified = True
        member.email_verification_token = None
        self.db.commit()
        return member
