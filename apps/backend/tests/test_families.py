from __future__ import annotations

import pytest

from family_finance import models
from family_finance.core.config import settings
from family_finance.core.errors import ValidationFailed
from family_finance.services.family_service import FamilyService, merge_permissions


def test_merge_permissions():
    viewer = merge_permissions(models.Role.VIEWER, {"can_edit_payments": True, "unknown": True})
    assert viewer == {
        "can_manage_bank_accounts": False,
        "can_edit_payments": True,
        "can_view_reports": True,
        "can_manage_family": False,
    }
    # admins cannot be narrowed
    assert all(merge_permissions(models.Role.ADMIN, {"can_view_reports": False}).values())


def test_get_and_update_family(client, family):
    headers = family["headers"]["admin"]
    detail = client.get("/api/families", headers=headers).json()
    assert detail["name"] == "Tester Family"
    assert len(detail["members"]) == 3

    res = client.patch(
        "/api/families", json={"name": "The Testers", "settings": {"currency": "EUR"}}, headers=headers
    )
    assert res.status_code == 200, res.text
    assert res.json()["name"] == "The Testers"
    assert res.json()["settings"]["currency"] == "EUR"

    assert client.patch("/api/families", json={"name": "x"}, headers=family["headers"]["editor"]).status_code == 403


def test_invite_and_accept(client, family):
    headers = family["headers"]["admin"]
    res = client.post(
        "/api/families/members/invite",
        json={"email": "Teen@Example.com", "role": "viewer", "permissions": {"can_edit_payments": True}},
        headers=headers,
    )
    assert res.status_code == 201, res.text
    invitation = res.json()
    assert invitation["email"] == "teen@example.com"
    assert invitation["permissions"]["can_edit_payments"] is True

    dup = client.post("/api/families/members/invite", json={"email": "teen@example.com"}, headers=headers)
    assert dup.status_code == 409
    member_dup = client.post("/api/families/members/invite", json={"email": "viewer@example.com"}, headers=headers)
    assert member_dup.status_code == 409

    bad_token = client.post(
        f"/api/families/invitations/{invitation['id']}/accept",
        json={"token": "wrong-token-123", "password": "teen-pass-1", "first_name": "Sam", "last_name": "Tester"},
    )
    assert bad_token.status_code == 404

    accepted = client.post(
        f"/api/families/invitations/{invitation['id']}/accept",
        json={"token": invitation["token"], "password": "teen-pass-1", "first_name": "Sam", "last_name": "Tester"},
    )
    assert accepted.status_code == 201, accepted.text
    body = accepted.json()
    assert body["member"]["role"] == "viewer"
    assert body["member"]["email_verified"] is True
    assert body["family"]["id"] == family["family"].id

    again = client.post(
        f"/api/families/invitations/{invitation['id']}/accept",
        json={"token": invitation["token"], "password": "teen-pass-1", "first_name": "Sam", "last_name": "Tester"},
    )
    assert again.status_code == 400

    new_headers = {"Authorization": f"Bearer {body['tokens']['access_token']}"}
    assert len(client.get("/api/families/members", headers=new_headers).json()) == 4


def test_revoke_and_resend(client, family):
    headers = family["headers"]["admin"]
    invitation = client.post(
        "/api/families/members/invite", json={"email": "cousin@example.com"}, headers=headers
    ).json()
    resent = client.post(f"/api/families/invitations/{invitation['id']}/resend", headers=headers)
    assert resent.status_code == 200
    assert client.delete(f"/api/families/invitations/{invitation['id']}", headers=headers).status_code == 204

    statuses = [i["status"] for i in client.get("/api/families/invitations", headers=headers).json()]
    assert statuses == ["revoked"]
    assert client.post(f"/api/families/invitations/{invitation['id']}/resend", headers=headers).status_code == 400


def test_member_role_changes(client, family):
    headers = family["headers"]["admin"]
    editor_id = family["editor"].id
    res = client.patch(
        f"/api/families/members/{editor_id}", json={"role": "viewer"}, headers=headers
    )
    assert res.status_code == 200
    assert res.json()["permissions"] == models.default_permissions(models.Role.VIEWER)

    last_admin = client.patch(
        f"/api/families/members/{family['admin'].id}", json={"role": "editor"}, headers=headers
    )
    assert last_admin.status_code == 400
    assert last_admin.json()["detail"] == "Cannot demote the last admin member"


def test_remove_member(client, family):
    headers = family["headers"]["admin"]
    assert client.delete(f"/api/families/members/{family['admin'].id}", headers=headers).status_code == 400

    res = client.delete(f"/api/families/members/{family['viewer'].id}", headers=headers)
    assert res.status_code == 204
    # removed members lose their sessions
    assert client.get("/api/auth/me", headers=family["headers"]["viewer"]).status_code == 401
    assert len(client.get("/api/families/members", headers=headers).json()) == 2


def test_last_admin_cannot_be_deleted(db_session, family):
    with pytest.raises(ValidationFailed, match="last admin"):
        FamilyService(db_session).delete_member(family["editor"], family["admin"].id)


def test_member_cap(db_session, family, monkeypatch):
    monkeypatch.setattr(settings, "MAX_FAMILY_MEMBERS", 3)
    with pytest.raises(ValidationFailed, match="limited to 3 members"):
        FamilyService(db_session).invite(family["admin"], email="fourth@example.com", role=models.Role.VIEWER)


def test_activity_log(client, family):
    headers = family["headers"]["admin"]
    client.patch("/api/families", json={"name": "Renamed"}, headers=headers)
    page = client.get("/api/families/activity", headers=headers).json()
    assert page["total"] >= 2
    assert page["items"][0]["entity_type"] == "Family"
    assert page["items"][0]["action"] == "update"


def _accept(svc: FamilyService, invitation: models.Invitation, first_name: str = "New"):
    return svc.accept_invitation(
        invitation.id, token=invitation.token, password="joiner-pass-1", first_name=first_name, last_name="Tester"
    )


def test_admin_cap_at_invite(db_session, family, monkeypatch):
    monkeypatch.setattr(settings, "MAX_ADMINS", 1)
    with pytest.raises(ValidationFailed, match="Maximum of 1 admin"):
        FamilyService(db_session).invite(family["admin"], email="second@example.com", role=models.Role.ADMIN)


def test_admin_cap_rechecked_on_accept(db_session, family, monkeypatch):
    monkeypatch.setattr(settings, "MAX_ADMINS", 2)
    svc = FamilyService(db_session)
    first = svc.invite(family["admin"], email="aunt@example.com", role=models.Role.ADMIN)
    second = svc.invite(family["admin"], email="uncle@example.com", role=models.Role.ADMIN)

    member, _, _ = _accept(svc, first)
    assert member.role == models.Role.ADMIN
    with pytest.raises(ValidationFailed, match="Maximum of 2 admin"):
        _accept(svc, second)
    db_session.refresh(second)
    assert second.status == models.InvitationStatus.PENDING
    assert svc._admin_count(family["family"].id) == 2


def test_member_cap_rechecked_on_accept(db_session, family, monkeypatch):
    monkeypatch.setattr(settings, "MAX_FAMILY_MEMBERS", 4)
    svc = FamilyService(db_session)
    first = svc.invite(family["admin"], email="kid1@example.com", role=models.Role.VIEWER)
    second = svc.invite(family["admin"], email="kid2@example.com", role=models.Role.VIEWER)

    _accept(svc, first)
    with pytest.raises(ValidationFailed, match="limited to 4 members"):
        _accept(svc, second)
    assert len(svc.list_members(family["family"].id)) == 4


def test_removed_member_can_rejoin(client, db_session, family):
    headers = family["headers"]["admin"]
    viewer = family["viewer"]
    assert client.delete(f"/api/families/members/{viewer.id}", headers=headers).status_code == 204

    res = client.post(
        "/api/families/members/invite", json={"email": "viewer@example.com", "role": "editor"}, headers=headers
    )
    assert res.status_code == 201, res.text
    invitation = res.json()
    accepted = client.post(
        f"/api/families/invitations/{invitation['id']}/accept",
        json={"token": invitation["token"], "password": "back-again-1", "first_name": "Vic", "last_name": "Returns"},
    )
    assert accepted.status_code == 201, accepted.text
    body = accepted.json()
    assert body["member"]["id"] == viewer.id
    assert body["member"]["role"] == "editor"
    assert body["member"]["first_name"] == "Vic"

    login = client.post("/api/auth/login", json={"email": "viewer@example.com", "password": "back-again-1"})
    assert login.status_code == 200
    assert len(client.get("/api/families/members", headers=headers).json()) == 3
