from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from family_finance import models
from family_finance.core.config import settings
from family_finance.core.errors import Conflict, NotFound, PermissionDenied, ValidationFailed
from family_finance.core.security import hash_password, new_token
from family_finance.services.audit_service import AuditService
from family_finance.services.auth_service import AuthService

logger = logging.getLogger(__name__)


def merge_permissions(role: models.Role, overrides: Optional[dict]) -> dict[str, bool]:
    """Role defaults with explicit overrides applied; admins always hold everything."""
    merged = models.default_permissions(role)
    if role == models.Role.ADMIN:
        return merged
    for key, value in (overrides or {}).items():
        if key in models.PERMISSION_KEYS and value is not None:
            merged[key] = bool(value)
    return merged


class FamilyService:
    def __init__(self, db: Session) -> None:
        self.db = db
        self.audit = AuditService(db)

    # Family -------------------------------------------------------------
    def get_family(self, family_id: int) -> models.Family:
        family = (
            self.db.query(models.Family)
            .options(selectinload(models.Family.members))
            .filter(models.Family.id == family_id)
            .first()
        )
        if family is None:
            raise NotFound("Family not found")
        return family

    def family_detail(self, family_id: int) -> dict:
        family = self.get_family(family_id)
        return {
            "id": family.id,
            "name": family.name,
            "settings": dict(family.settings or {}),
            "subscription_status": family.subscription_status,
            "data_retention_consent": family.data_retention_consent,
            "created_at": family.created_at,
            "members": [m for m in family.members if m.deleted_at is None],
        }

    def update_family(self, family_id: int, member_id: int, patch: dict) -> models.Family:
        family = self.get_family(family_id)
        old = {"name": family.name, "settings": dict(family.settings or {})}
        if patch.get("name") is not None:
            family.name = patch["name"].strip()
        if patch.get("settings"):
            merged = dict(family.settings or {})
            merged.update({k: v for k, v in patch["settings"].items() if v is not None})
            family.settings = merged
        if patch.get("data_retention_consent") is not None:
            family.data_retention_consent = patch["data_retention_consent"]
        self.audit.record(
            family_id=family_id,
            member_id=member_id,
            action=models.AuditAction.UPDATE,
            entity_type="Family",
            entity_id=family.id,
            old_values=old,
            new_values={"name": family.name, "settings": dict(family.settings or {})},
        )
        self.db.commit()
        self.db.refresh(family)
        return family

    # Members ------------------------------------------------------------
    def _members(self, family_id: int):
        return self.db.query(models.FamilyMember).filter(
            models.FamilyMember.family_id == family_id,
            models.FamilyMember.deleted_at.is_(None),
        )

    def list_members(self, family_id: int) -> list[models.FamilyMember]:
        return self._members(family_id).order_by(models.FamilyMember.created_at, models.FamilyMember.id).all()

    def get_member(self, family_id: int, member_id: int) -> models.FamilyMember:
        row = self._members(family_id).filter(models.FamilyMember.id == member_id).first()
        if row is None:
            raise NotFound("Member not found")
        return row

    def _admin_count(self, family_id: int) -> int:
        return self._members(family_id).filter(models.FamilyMember.role == models.Role.ADMIN).count()

    def update_member(self, actor: models.FamilyMember, member_id: int, patch: dict) -> models.FamilyMember:
        if actor.role != models.Role.ADMIN:
            raise PermissionDenied("Only admins can update family members")
        target = self.get_member(actor.family_id, member_id)
        old = {"role": target.role.value, "permissions": dict(target.permissions or {})}
        role = patch.get("role") or target.role
        if role != target.role:
            if role == models.Role.ADMIN and self._admin_count(actor.family_id) >= settings.MAX_ADMINS:
                raise ValidationFailed(f"Maximum of {settings.MAX_ADMINS} admin members allowed per family")
            if target.role == models.Role.ADMIN and self._admin_count(actor.family_id) <= 1:
                raise ValidationFailed("Cannot demote the last admin member")
            target.role = role
            target.permissions = merge_permissions(role, patch.get("permissions"))
        elif patch.get("permissions") is not None:
            current = dict(target.permissions or models.default_permissions(role))
            current.update({k: bool(v) for k, v in patch["permissions"].items() if v is not None})
            target.permissions = merge_permissions(role, current)
        self.audit.record(
            family_id=actor.family_id,
            member_id=actor.id,
            action=models.AuditAction.UPDATE,
            entity_type="FamilyMember",
            entity_id=target.id,
            old_values=old,
            new_values={"role": target.role.value, "permissions": dict(target.permissions)},
        )
        self.db.commit()
        self.db.refresh(target)
        return target

    def delete_member(self, actor: models.FamilyMember, member_id: int) -> None:
        target = self.get_member(actor.family_id, member_id)
        if target.id == actor.id:
            raise ValidationFailed("You cannot remove yourself from the family")
        if target.role == models.Role.ADMIN and self._admin_count(actor.family_id) <= 1:
            raise ValidationFailed("Cannot delete the last admin member")
        target.deleted_at = models.utcnow_naive()
        self.db.query(models.Session).filter(models.Session.family_member_id == target.id).delete(
            synchronize_session=False
        )
        self.audit.record(
            family_id=actor.family_id,
            member_id=actor.id,
            action=models.AuditAction.DELETE,
            entity_type="FamilyMember",
            entity_id=target.id,
            old_values={"email": target.email, "role": target.role.value},
        )
        self.db.commit()
        logger.info("Member %s removed from family %s", target.id, actor.family_id)

    # Invitations --------------------------------------------------------
    def _invitation(self, family_id: int, invitation_id: int) -> models.Invitation:
        row = (
            self.db.query(models.Invitation)
            .filter(models.Invitation.family_id == family_id, models.Invitation.id == invitation_id)
            .first()
        )
        if row is None:
            raise NotFound("Invitation not found")
        return row

    def _check_capacity(self, family_id: int, role: models.Role) -> None:
        if self._members(family_id).count() >= settings.MAX_FAMILY_MEMBERS:
            raise ValidationFailed(f"Families are limited to {settings.MAX_FAMILY_MEMBERS} members")
        if role == models.Role.ADMIN and self._admin_count(family_id) >= settings.MAX_ADMINS:
            raise ValidationFailed(f"Maximum of {settings.MAX_ADMINS} admin members allowed per family")

    def invite(
        self, actor: models.FamilyMember, *, email: str, role: models.Role, permissions: Optional[dict] = None
    ) -> models.Invitation:
        if not actor.has_permission("can_manage_family"):
            raise PermissionDenied("Insufficient permissions to invite members")
        email = email.strip().lower()
        existing = AuthService(self.db).find_by_email(email)
        if existing is not None and existing.deleted_at is None:
            if existing.family_id == actor.family_id:
                raise Conflict("User is already a member of this family")
            raise Conflict("An account with this email already exists")
        pending = (
            self.db.query(models.Invitation)
            .filter(
                models.Invitation.family_id == actor.family_id,
                func.lower(models.Invitation.email) == email,
                models.Invitation.status == models.InvitationStatus.PENDING,
                models.Invitation.expires_at >= models.utcnow_naive(),
            )
            .first()
        )
        if pending is not None:
            raise Conflict("A pending invitation already exists for this email")
        self._check_capacity(actor.family_id, role)
        row = models.Invitation(
            family_id=actor.family_id,
            email=email,
            role=role,
            permissions=merge_permissions(role, permissions),
            token=new_token(),
            status=models.InvitationStatus.PENDING,
            invited_by_id=actor.id,
            expires_at=models.utcnow_naive() + timedelta(days=settings.INVITATION_EXPIRE_DAYS),
        )
        self.db.add(row)
        self.db.flush()
        self.audit.record(
            family_id=actor.family_id,
            member_id=actor.id,
            action=models.AuditAction.CREATE,
            entity_type="Invitation",
            entity_id=row.id,
            new_values={"email": email, "role": role.value},
        )
        self.db.commit()
        self.db.refresh(row)
        logger.info("Invitation %s sent to %s for family %s", row.id, email, actor.family_id)
        return row

    def list_invitations(self, family_id: int) -> list[models.Invitation]:
        rows = (
            self.db.query(models.Invitation)
            .filter(models.Invitation.family_id == family_id)
            .order_by(models.Invitation.created_at.desc(), models.Invitation.id.desc())
            .all()
        )
        now = models.utcnow_naive()
        changed = False
        for row in rows:
            if row.status == models.InvitationStatus.PENDING and row.expires_at < now:
                row.status = models.InvitationStatus.EXPIRED
                changed = True
        if changed:
            self.db.commit()
        return rows

    def revoke_invitation(self, actor: models.FamilyMember, invitation_id: int) -> None:
        row = self._invitation(actor.family_id, invitation_id)
        if row.status != models.InvitationStatus.PENDING:
            raise ValidationFailed("Only pending invitations can be revoked")
        row.status = models.InvitationStatus.REVOKED
        self.audit.record(
            family_id=actor.family_id,
            member_id=actor.id,
            action=models.AuditAction.DELETE,
            entity_type="Invitation",
            entity_id=row.id,
        )
        self.db.commit()

    def resend_invitation(self, actor: models.FamilyMember, invitation_id: int) -> models.Invitation:
        row = self._invitation(actor.family_id, invitation_id)
        if row.status not in (models.InvitationStatus.PENDING, models.InvitationStatus.EXPIRED):
            raise ValidationFailed("Only pending or expired invitations can be resent")
        row.token = new_token()
        row.status = models.InvitationStatus.PENDING
        row.expires_at = models.utcnow_naive() + timedelta(days=settings.INVITATION_EXPIRE_DAYS)
        self.db.commit()
        self.db.refresh(row)
        return row

    def accept_invitation(
        self,
        invitation_id: int,
        *,
        token: str,
        password: str,
        first_name: str,
        last_name: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> tuple[models.FamilyMember, models.Family, dict]:
        row = self.db.get(models.Invitation, invitation_id)
        if row is None or row.token != token:
            raise NotFound("Invitation not found")
        if row.status != models.InvitationStatus.PENDING:
            raise ValidationFailed(f"Invitation is {row.status.value}")
        if row.expires_at < models.utcnow_naive():
            row.status = models.InvitationStatus.EXPIRED
            self.db.commit()
            raise ValidationFailed("Invitation has expired")
        auth = AuthService(self.db)
        member = auth.find_by_email(row.email)
        if member is not None and member.deleted_at is None:
            raise Conflict("An account with this email already exists")
        # caps hold at accept time too, with other invitations possibly accepted first
        self._check_capacity(row.family_id, row.role)
        if member is None:
            member = models.FamilyMember(family_id=row.family_id, email=row.email)
            self.db.add(member)
        else:
            # removed members rejoin on their old row (email is unique)
            member.family_id = row.family_id
            member.deleted_at = None
            member.email_verification_token = None
            member.password_reset_token_hash = None
            member.password_reset_expires_at = None
        member.password_hash = hash_password(password)
        member.first_name = first_name.strip()
        member.last_name = last_name.strip()
        member.role = row.role
        member.permissions = merge_permissions(row.role, row.permissions)
        # the invitation link proves ownership of the address
        member.email_verified = True
        row.status = models.InvitationStatus.ACCEPTED
        row.accepted_at = models.utcnow_naive()
        self.db.flush()
        self.audit.record(
            family_id=row.family_id,
            member_id=member.id,
            action=models.AuditAction.CREATE,
            entity_type="FamilyMember",
            entity_id=member.id,
            new_values={"email": member.email, "role": member.role.value, "invitation_id": row.id},
            ip_address=ip_address,
        )
        tokens = auth.start_session(member, ip_address=ip_address, user_agent=user_agent)
        self.db.refresh(member)
        return member, member.family, tokens

    def activity(self, family_id: int, *, limit: int = 50, offset: int = 0):
        return self.audit.list_for_family(family_id, limit=limit, offset=offset)
