from __future__ import annotations

from fastapi import Depends, Query, Request
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import can_manage_family, get_current_member, require_admin
from family_finance.core.rate_limit import client_key
from family_finance.schemas import (
    AcceptInvitationRequest,
    FamilyUpdate,
    InviteRequest,
    MemberUpdate,
)
from family_finance.services.family_service import FamilyService


def get_family(member: models.FamilyMember = Depends(get_current_member), db: Session = Depends(get_db)) -> dict:
    return FamilyService(db).family_detail(member.family_id)


def update_family(
    payload: FamilyUpdate,
    member: models.FamilyMember = Depends(require_admin),
    db: Session = Depends(get_db),
) -> models.Family:
    return FamilyService(db).update_family(member.family_id, member.id, payload.model_dump(exclude_unset=True))


def list_members(
    member: models.FamilyMember = Depends(get_current_member), db: Session = Depends(get_db)
) -> list[models.FamilyMember]:
    return FamilyService(db).list_members(member.family_id)


def update_member(
    member_id: int,
    payload: MemberUpdate,
    member: models.FamilyMember = Depends(require_admin),
    db: Session = Depends(get_db),
) -> models.FamilyMember:
    return FamilyService(db).update_member(member, member_id, payload.model_dump(exclude_unset=True))


def delete_member(
    member_id: int,
    member: models.FamilyMember = Depends(require_admin),
    db: Session = Depends(get_db),
) -> None:
    FamilyService(db).delete_member(member, member_id)


def invite_member(
    payload: InviteRequest,
    member: models.FamilyMember = Depends(can_manage_family),
    db: Session = Depends(get_db),
) -> models.Invitation:
    permissions = payload.permissions.model_dump(exclude_none=True) if payload.permissions else None
    return FamilyService(db).invite(member, email=payload.email, role=payload.role, permissions=permissions)


def list_invitations(
    member: models.FamilyMember = Depends(can_manage_family), db: Session = Depends(get_db)
) -> list[models.Invitation]:
    return FamilyService(db).list_invitations(member.family_id)


def revoke_invitation(
    invitation_id: int,
    member: models.FamilyMember = Depends(can_manage_family),
    db: Session = Depends(get_db),
) -> None:
    FamilyService(db).revoke_invitation(member, invitation_id)


def resend_invitation(
    invitation_id: int,
    member: models.FamilyMember = Depends(can_manage_family),
    db: Session = Depends(get_db),
) -> models.Invitation:
    return FamilyService(db).resend_invitation(member, invitation_id)


def accept_invitation(
    invitation_id: int,
    payload: AcceptInvitationRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> dict:
    member, family, tokens = FamilyService(db).accept_invitation(
        invitation_id,
        token=payload.token,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        ip_address=client_key(request),
        user_agent=request.headers.get("user-agent"),
    )
    return {"member": member, "family": family, "tokens": tokens}


def get_activity(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> dict:
    rows, total = FamilyService(db).activity(member.family_id, limit=limit, offset=offset)
    return {"items": rows, "total": total, "limit": limit, "offset": offset}
