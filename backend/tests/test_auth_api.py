from datetime import timedelta

from tenant_auth.core.config import settings
from tenant_auth.models import AuditLog, EmailToken, RefreshToken, Tenant, User, UserTenant, TenantRole
from tenant_auth.models.base import utcnow
from tenant_auth.services import token_service

API = "/api/v1"


def refresh_with(client, raw):
    """Present a refresh token in the body with an empty cookie jar"""
    client.cookies.clear()
    return client.post(f"{API}/auth/refresh", json={"refresh_token": raw})


def test_signup_sends_confirmation_and_blocks_login_until_confirmed(client, outbox, helpers):
    response = helpers.signup(client, "new@example.com")
    assert response.status_code == 201
    assert response.json() == {"message": "Signup ok, check your email to confirm."}

    mail = outbox.last_for("new@example.com")
    assert "Confirm your" in mail["subject"]
    assert f"{settings.FRONTEND_URL}/auth/confirm-email?token=" in mail["text"]

    response = helpers.login(client, "new@example.com")
    assert response.status_code == 403
    assert response.json() == {"error": "Email not confirmed"}

    assert helpers.confirm(client, outbox, "new@example.com").json() == {"message": "Email confirmed"}
    assert helpers.login(client, "new@example.com").status_code == 200


def test_signup_with_tenant_makes_user_admin(client, outbox, helpers, db):
    assert helpers.signup(client, "owner@example.com", tenant_slug="Acme Corp").status_code == 201

    tenant = db.query(Tenant).filter(Tenant.slug == "acme-corp").one()
    user = db.query(User).filter(User.email == "owner@example.com").one()
    membership = db.query(UserTenant).filter(UserTenant.tenant_id == tenant.id).one()
    assert membership.user_id == user.id
    assert membership.role == TenantRole.TENANT_ADMIN

    audit = db.query(AuditLog).filter(AuditLog.event == "signup").one()
    assert audit.meta == {"tenantSlug": "acme-corp"}


def test_signup_duplicate_email_conflicts(client, outbox, helpers):
    assert helpers.signup(client, "dup@example.com").status_code == 201
    response = helpers.signup(client, "DUP@example.com")
    assert response.status_code == 409
    assert response.json() == {"error": "Email already exists"}


def test_signup_accepts_apostrophe_in_address(client, outbox, helpers):
    body = helpers.register(client, outbox, "o'brien@example.com")

    response = client.get(f"{API}/users/me", headers=helpers.auth_header(body["access_token"]))
    assert response.json()["email"] == "o'brien@example.com"


def test_signup_rejects_weak_password_and_bad_email(client, helpers):
    response = helpers.signup(client, "weak@example.com", password="short")
    assert response.status_code == 400
    assert "Password must be at least" in response.json()["error"]

    response = client.post(f"{API}/auth/signup", json={"email": "not-an-email", "password": "Passw0rd!"})
    assert response.status_code == 400
    assert response.json()["error"] == "Validation error"


def test_confirmation_link_is_single_use(client, outbox, helpers):
    helpers.signup(client, "once@example.com")
    token, uid = outbox.link_params("once@example.com")

    assert client.get(f"{API}/auth/confirm-email", params={"token": token, "uid": uid}).status_code == 200
    response = client.get(f"{API}/auth/confirm-email", params={"token": token, "uid": uid})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid or expired token"}


def test_resend_confirmation_invalidates_previous_link(client, outbox, helpers):
    helpers.signup(client, "resend@example.com")
    old_token, uid = outbox.link_params("resend@example.com")

    response = client.post(f"{API}/auth/resend-confirmation", json={"email": "resend@example.com"})
    assert response.status_code == 200
    new_token, _ = outbox.link_params("resend@example.com")
    assert new_token != old_token

    assert client.get(f"{API}/auth/confirm-email", params={"token": old_token, "uid": uid}).status_code == 400
    assert client.get(f"{API}/auth/confirm-email", params={"token": new_token, "uid": uid}).status_code == 200


def test_resend_for_unknown_email_looks_the_same(client, outbox):
    response = client.post(f"{API}/auth/resend-confirmation", json={"email": "ghost@example.com"})
    assert response.status_code == 200
    assert outbox.messages == []


def test_login_returns_access_token_and_refresh_cookie(client, outbox, helpers):
    helpers.signup(client, "login@example.com", tenant_slug="login-co")
    helpers.confirm(client, outbox, "login@example.com")

    response = helpers.login(client, "login@example.com")
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == settings.JWT_ACCESS_TTL_SEC
    assert body["roles"] == ["TENANT_ADMIN"]
    assert body["tenant_id"] is not None
    assert response.headers["cache-control"] == "no-store"

    set_cookie = response.headers["set-cookie"]
    assert set_cookie.startswith(f"{settings.REFRESH_COOKIE_NAME}=")
    assert "HttpOnly" in set_cookie
    assert f"Path={settings.refresh_cookie_path}" in set_cookie
    assert "samesite=lax" in set_cookie.lower()

    claims = token_service.decode_access_token(body["access_token"])
    assert claims["tid"] == body["tenant_id"]
    assert claims["email"] == "login@example.com"


def test_login_with_wrong_password(client, outbox, helpers, db):
    helpers.register(client, outbox, "wrong@example.com")

    response = helpers.login(client, "wrong@example.com", password="Wrongpass1")
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid credentials"}

    response = helpers.login(client, "nobody@example.com")
    assert response.status_code == 401
    assert response.json() == {"error": "Invalid credentials"}

    assert db.query(AuditLog).filter(AuditLog.event == "login_failed").count() == 2


def test_login_into_foreign_tenant_forbidden(client, outbox, helpers, db):
    helpers.signup(client, "first@example.com", tenant_slug="first")
    helpers.register(client, outbox, "second@example.com")
    tenant = db.query(Tenant).filter(Tenant.slug == "first").one()

    response = helpers.login(client, "second@example.com", tenant_id=tenant.id)
    assert response.status_code == 403
    assert response.json() == {"error": "Not a member of tenant"}


def test_disabled_account_cannot_login(client, outbox, helpers, db):
    helpers.register(client, outbox, "disabled@example.com")
    user = db.query(User).filter(User.email == "disabled@example.com").one()
    user.is_active = False
    db.commit()

    response = helpers.login(client, "disabled@example.com")
    assert response.status_code == 403
    assert response.json() == {"error": "Account disabled"}


def test_refresh_rotates_the_cookie(client, outbox, helpers):
    helpers.register(client, outbox, "rotate@example.com")
    first = client.cookies.get(settings.REFRESH_COOKIE_NAME)
    assert first

    response = client.post(f"{API}/auth/refresh")
    assert response.status_code == 200
    second = response.cookies.get(settings.REFRESH_COOKIE_NAME)
    assert second and second != first
    assert token_service.decode_access_token(response.json()["access_token"])["email"] == "rotate@example.com"


def test_refresh_accepts_body_token(client, outbox, helpers):
    helpers.register(client, outbox, "body@example.com")
    raw = client.cookies.get(settings.REFRESH_COOKIE_NAME)

    response = refresh_with(client, raw)
    assert response.status_code == 200
    assert response.json()["access_token"]


def test_refresh_without_token(client):
    response = client.post(f"{API}/auth/refresh")
    assert response.status_code == 401
    assert response.json() == {"error": "Missing refresh token"}


def test_refresh_token_reuse_revokes_all_sessions(client, outbox, helpers, db):
    helpers.register(client, outbox, "reuse@example.com")
    stolen = client.cookies.get(settings.REFRESH_COOKIE_NAME)

    rotated = refresh_with(client, stolen)
    assert rotated.status_code == 200
    current = rotated.cookies.get(settings.REFRESH_COOKIE_NAME)

    replay = refresh_with(client, stolen)
    assert replay.status_code == 401
    assert replay.json() == {"error": "Refresh token reuse detected"}

    # The legitimate holder is signed out as well
    assert refresh_with(client, current).status_code == 401

    user = db.query(User).filter(User.email == "reuse@example.com").one()
    assert db.query(RefreshToken).filter(
        RefreshToken.user_id == user.id, RefreshToken.revoked.is_(False)
    ).count() == 0
    assert db.query(AuditLog).filter(AuditLog.event == "refresh_token_reuse").count() >= 1


def test_logout_revokes_refresh_token(client, outbox, helpers):
    helpers.register(client, outbox, "logout@example.com")
    raw = client.cookies.get(settings.REFRESH_COOKIE_NAME)

    response = client.post(f"{API}/auth/logout")
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out"}
    assert 'refresh_token=""' in response.headers["set-cookie"] or "Max-Age=0" in response.headers["set-cookie"]

    assert refresh_with(client, raw).status_code == 401


def test_logout_all(client, outbox, helpers):
    body = helpers.register(client, outbox, "everywhere@example.com")
    first = client.cookies.get(settings.REFRESH_COOKIE_NAME)
    client.cookies.clear()
    helpers.login(client, "everywhere@example.com")
    second = client.cookies.get(settings.REFRESH_COOKIE_NAME)

    response = client.post(f"{API}/auth/logout-all", headers=helpers.auth_header(body["access_token"]))
    assert response.status_code == 200
    assert response.json() == {"message": "Logged out of 2 sessions"}

    assert refresh_with(client, first).status_code == 401
    assert refresh_with(client, second).status_code == 401


def test_password_reset_flow(client, outbox, helpers):
    helpers.register(client, outbox, "reset@example.com")
    old_session = client.cookies.get(settings.REFRESH_COOKIE_NAME)

    response = client.post(f"{API}/auth/forgot-password", json={"email": "reset@example.com"})
    assert response.status_code == 200
    mail = outbox.last_for("reset@example.com")
    assert "Reset your" in mail["subject"]
    assert "/auth/reset-password?token=" in mail["text"]
    token, uid = outbox.link_params("reset@example.com")

    response = client.post(
        f"{API}/auth/reset-password",
        json={"uid": uid, "token": token, "new_password": "N3wPassword"},
    )
    assert response.status_code == 200
    assert response.json() == {"message": "Password updated"}

    assert helpers.login(client, "reset@example.com").status_code == 401
    assert helpers.login(client, "reset@example.com", password="N3wPassword").status_code == 200
    assert refresh_with(client, old_session).status_code == 401

    response = client.post(
        f"{API}/auth/reset-password",
        json={"uid": uid, "token": token, "new_password": "An0therPass"},
    )
    assert response.status_code == 400


def test_expired_reset_link_rejected(client, outbox, helpers, db):
    helpers.register(client, outbox, "late@example.com")
    client.post(f"{API}/auth/forgot-password", json={"email": "late@example.com"})
    token, uid = outbox.link_params("late@example.com")

    for email_token in db.query(EmailToken).all():
        email_token.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    response = client.post(
        f"{API}/auth/reset-password",
        json={"uid": uid, "token": token, "new_password": "N3wPassword"},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid or expired token"}


def test_forgot_password_for_unknown_email_is_silent(client, outbox):
    response = client.post(f"{API}/auth/forgot-password", json={"email": "ghost@example.com"})
    assert response.status_code == 200
    assert response.json() == {"message": "If an account exists for that email, a message has been sent."}
    assert outbox.messages == []


def test_switch_tenant(client, outbox, helpers, db):
    body = helpers.register(client, outbox, "switch@example.com", tenant_slug="alpha")
    created = client.post(
        f"{API}/tenants/",
        json={"name": "Beta"},
        headers=helpers.auth_header(body["access_token"]),
    )
    assert created.status_code == 201
    beta_id = created.json()["id"]

    response = client.post(
        f"{API}/auth/switch-tenant",
        json={"tenant_id": beta_id},
        headers=helpers.auth_header(body["access_token"]),
    )
    assert response.status_code == 200
    assert response.json()["tenant_id"] == beta_id
    assert response.json()["roles"] == ["TENANT_ADMIN"]

    # The rotated session keeps the new tenant context
    refreshed = client.post(f"{API}/auth/refresh")
    assert refreshed.json()["tenant_id"] == beta_id


def test_switch_to_foreign_tenant_forbidden(client, outbox, helpers, db):
    helpers.signup(client, "other-owner@example.com", tenant_slug="other")
    body = helpers.register(client, outbox, "outsider@example.com")
    tenant = db.query(Tenant).filter(Tenant.slug == "other").one()

    response = client.post(
        f"{API}/auth/switch-tenant",
        json={"tenant_id": str(tenant.id)},
        headers=helpers.auth_header(body["access_token"]),
    )
    assert response.status_code == 403
