from fastapi import APIRouter

from family_finance.api.families import handlers
from family_finance.schemas import (
    ActivityPage,
    AuthResponse,
    FamilyDetailOut,
    FamilyOut,
    InvitationCreatedOut,
    InvitationOut,
    MemberOut,
)

router = APIRouter(prefix="/families", tags=["families"])

router.add_api_route("", handlers.get_family, methods=["GET"], response_model=FamilyDetailOut)

router.add_api_route("", handlers.update_family, methods=["PATCH"], response_model=FamilyOut)

router.add_api_route("/members", handlers.list_members, methods=["GET"], response_model=list[MemberOut])

router.add_api_route(
    "/members/invite",
    handlers.invite_member,
    methods=["POST"],
    response_model=InvitationCreatedOut,
    status_code=201,
)

router.add_api_route(
    "/members/{member_id}",
    handlers.update_member,
    methods=["PATCH"],
    response_model=MemberOut,
)

router.add_api_route(
    "/members/{member_id}",
    handlers.delete_member,
    methods=["DELETE"],
    status_code=204,
)

router.add_api_route(
    "/invitations",
    handlers.list_invitations,
    methods=["GET"],
    response_model=list[InvitationOut],
)

router.add_api_route(
    "/invitations/{invitation_id}",
    handlers.revoke_invitation,
    methods=["DELETE"],
    status_code=204,
)

router.add_api_route(
    "/invitations/{invitation_id}/resend",
    handlers.resend_invitation,
    methods=["POST"],
    response_model=InvitationCreatedOut,
)

router.add_api_route(
    "/invitations/{invitation_id}/accept",
    handlers.accept_invitation,
    methods=["POST"],
    response_model=AuthResponse,
    status_code=201,
)

router.add_api_route("/activity", handlers.get_activity, methods=["GET"], response_model=ActivityPage)
