"""Authentication router."""

from fastapi import APIRouter

from family_finance.api.auth import handlers
from family_finance.schemas import AuthResponse, MemberOut, MessageOut, SessionOut, TokenPair

router = APIRouter(prefix="/auth", tags=["auth"])

router.add_api_route(
    "/register",
    handlers.register,
    methods=["POST"],
    response_model=AuthResponse,
    status_code=201,
)

router.add_api_route("/login", handlers.login, methods=["POST"], response_model=AuthResponse)

router.add_api_route("/refresh", handlers.refresh, methods=["POST"], response_model=TokenPair)

router.add_api_route("/logout", handlers.logout, methods=["POST"], response_model=MessageOut)

router.add_api_route("/me", handlers.get_me, methods=["GET"], response_model=MemberOut)

router.add_api_route("/me", handlers.update_me, methods=["PATCH"], response_model=MemberOut)

router.add_api_route(
    "/change-password",
    handlers.change_password,
    methods=["POST"],
    response_model=MessageOut,
)

router.add_api_route("/sessions", handlers.list_sessions, methods=["GET"], response_model=list[SessionOut])

router.add_api_route(
    "/sessions/{session_id}",
    handlers.delete_session,
    methods=["DELETE"],
    status_code=204,
)

router.add_api_route(
    "/forgot-password",
    handlers.forgot_password,
    methods=["POST"],
    response_model=MessageOut,
)

router.add_api_route(
    "/reset-password",
    handlers.reset_password,
    methods=["POST"],
    response_model=MessageOut,
)

router.add_api_route("/verify-email", handlers.verify_email, methods=["POST"], response_model=MemberOut)
