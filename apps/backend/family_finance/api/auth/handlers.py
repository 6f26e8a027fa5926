"""Authentication handlers: registration, login, token refresh and profile."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from family_finance import models
from family_finance.core.database import get_db
from family_finance.core.deps import get_current_member, get_current_session_id
from family_finance.core.rate_limit import client_key, enforce_rate_limit
from family_finance.schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    SessionOut,
    VerifyEmailRequest,
)
from family_finance.services.auth_service import AuthService


def _auth_response(member: models.FamilyMember, family: models.Family, tokens: dict) -> dict:
    return {"member": member, "family": family, "tokens": tokens}


def register(payload: RegisterRequest, request: Request, db: Session = Depends(get_db)) -> dict:
    enforce_rate_limit(request, "auth")
    member, family, tokens = AuthService(db).register(
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        family_name=payload.family_name,
        ip_address=client_key(request),
        user_agent=request.headers.get("user-agent"),
    )
    return _auth_response(member, family, tokens)


def login(payload: LoginRequest, request: Request, db: Session = Depends(get_db)) -> dict:
    enforce_rate_limit(request, "auth")
    member, family, tokens = AuthService(db).login(
        email=payload.email,
        password=payload.password,
        remember_me=payload.remember_me,
        ip_address=client_key(request),
        user_agent=request.headers.get("user-agent"),
    )
    return _auth_response(member, family, tokens)


def refresh(payload: RefreshRequest, request: Request, db: Session = Depends(get_db)) -> dict:
    enforce_rate_limit(request, "auth")
    return AuthService(db).refresh(payload.refresh_token)


def logout(
    member: models.FamilyMember = Depends(get_current_member),
    session_id: int = Depends(get_current_session_id),
    db: Session = Depends(get_db),
) -> dict:
    AuthService(db).logout(member, session_id)
    return {"message": "Logged out successfully"}


def get_me(member: models.FamilyMember = Depends(get_current_member)) -> models.FamilyMember:
    return member


def update_me(
    payload: ProfileUpdate,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> models.FamilyMember:
    return AuthService(db).update_profile(member, payload.model_dump(exclude_unset=True))


def change_password(
    payload: ChangePasswordRequest,
    member: models.FamilyMember = Depends(get_current_member),
    session_id: int = Depends(get_current_session_id),
    db: Session = Depends(get_db),
) -> dict:
    AuthService(db).change_password(
        member,
        current_password=payload.current_password,
        new_password=payload.new_password,
        keep_session_id=session_id,
    )
    return {"message": "Password changed successfully"}


def list_sessions(
    member: models.FamilyMember = Depends(get_current_member),
    session_id: int = Depends(get_current_session_id),
    db: Session = Depends(get_db),
) -> list[SessionOut]:
    return [
        SessionOut.model_validate(row).model_copy(update={"current": row.id == session_id})
        for row in AuthService(db).list_sessions(member)
    ]


def delete_session(
    session_id: int,
    member: models.FamilyMember = Depends(get_current_member),
    db: Session = Depends(get_db),
) -> None:
    AuthService(db).delete_session(member, session_id)


def forgot_password(payload: ForgotPasswordRequest, request: Request, db: Session = Depends(get_db)) -> dict:
    enforce_rate_limit(request, "password_reset")
    AuthService(db).forgot_password(payload.email)
    # same answer whether or not the address exists
    return {"message": "If an account exists for this email, a reset link has been sent"}


def reset_password(payload: ResetPasswordRequest, request: Request, db: Session = Depends(get_db)) -> dict:
    enforce_rate_limit(request, "password_reset")
    AuthService(db).reset_password(payload.token, payload.new_password)
    return {"message": "Password has been reset"}


def verify_email(payload: VerifyEmailRequest, db: Session = Depends(get_db)) -> models.FamilyMember:
    return AuthService(db).verify_email(payload.token)
