from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from tenant_auth.core.config import settings
from tenant_auth.core.encryption import decrypt_token
from tenant_auth.main import app
from tenant_auth.models import AuditLog, OAuthAccount, User
from tenant_auth.services.oauth_service import (
    FACEBOOK_ME_URL,
    FACEBOOK_TOKEN_URL,
    GOOGLE_TOKEN_URL,
    oauth_service,
)

API = "/api/v1"


class FakeProvider:
    """Canned provider responses keyed by URL without the query string"""

    def __init__(self):
        self.responses = {}
        self.requests = []

    def on(self, method, url, status_code=200, json=None):
        self.responses[(method, url)] = httpx.Response(status_code, json=json)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = request.url
        key = (request.method, f"{url.scheme}://{url.host}{url.path}")
        if key not in self.responses:
            return httpx.Response(404, json={"error": "unexpected request"})
        return self.responses[key]


@pytest.fixture
def provider(monkeypatch):
    fake = FakeProvider()
    monkeypatch.setattr(oauth_service, "transport", httpx.MockTransport(fake))
    return fake


def google_id_token(sub="g-123", email="oauth@example.com", email_verified=True, aud=None):
    claims = {
        "iss": "https://accounts.google.com",
        "aud": aud or settings.GOOGLE_CLIENT_ID,
        "sub": sub,
        "email": email,
        "email_verified": email_verified,
        "name": "OAuth User",
    }
    return jwt.encode(claims, "google-signing-key-not-checked-here", algorithm="HS256")


def start_flow(client, name):
    response = client.get(f"{API}/auth/oauth/{name}", follow_redirects=False)
    assert response.status_code == 307
    return response, parse_qs(urlparse(response.headers["location"]).query)


def finish_flow(client, name, state, code="auth-code"):
    return client.get(
        f"{API}/auth/oauth/{name}/callback",
        params={"code": code, "state": state},
        follow_redirects=False,
    )


def google_sign_in(client, provider, **claims):
    provider.on("POST", GOOGLE_TOKEN_URL, json={"access_token": "g-access", "id_token": google_id_token(**claims)})
    _, query = start_flow(client, "google")
    return finish_flow(client, "google", query["state"][0])


def test_google_redirect_carries_state_and_client_id(client):
    response, query = start_flow(client, "google")
    assert response.headers["location"].startswith("https://accounts.google.com/")
    assert query["client_id"] == [settings.GOOGLE_CLIENT_ID]
    assert query["redirect_uri"] == [f"{settings.OAUTH_REDIRECT_BASE_URL}{API}/auth/oauth/google/callback"]
    assert query["state"][0] == response.cookies.get(settings.OAUTH_STATE_COOKIE_NAME)


def test_unknown_provider(client):
    response = client.get(f"{API}/auth/oauth/myspace", follow_redirects=False)
    assert response.status_code == 404
    assert response.json() == {"error": "Unknown provider"}


def test_google_sign_in_creates_verified_user(client, provider, db):
    response = google_sign_in(client, provider)

    assert response.status_code == 303
    assert response.headers["location"] == f"{settings.FRONTEND_URL}/auth/callback?created=1"
    assert response.cookies.get(settings.REFRESH_COOKIE_NAME)

    exchange = provider.requests[0]
    assert exchange.method == "POST"
    assert b"code=auth-code" in exchange.content
    assert b"grant_type=authorization_code" in exchange.content

    user = db.query(User).filter(User.email == "oauth@example.com").one()
    assert user.email_verified
    assert not user.has_password
    account = db.query(OAuthAccount).filter(OAuthAccount.user_id == user.id).one()
    assert account.provider == "google"
    assert account.access_token != "g-access"
    assert decrypt_token(account.access_token) == "g-access"

    # The frontend exchanges the cookie for an access token
    refreshed = client.post(f"{API}/auth/refresh")
    assert refreshed.status_code == 200


def test_second_google_sign_in_reuses_account(client, provider, db):
    for expected in ("1", "0"):
        client.cookies.clear()
        response = google_sign_in(client, provider)
        assert response.headers["location"].endswith(f"created={expected}")

    assert db.query(User).count() == 1
    assert db.query(OAuthAccount).count() == 1


def test_google_links_existing_password_account(client, outbox, helpers, provider, db):
    helpers.register(client, outbox, "oauth@example.com")
    client.cookies.clear()

    response = google_sign_in(client, provider)

    assert response.status_code == 303
    assert response.headers["location"].endswith("created=0")
    user = db.query(User).filter(User.email == "oauth@example.com").one()
    assert user.has_password
    assert db.query(OAuthAccount).filter(OAuthAccount.user_id == user.id).count() == 1


def test_unverified_provider_email_cannot_claim_registered_account(client, outbox, helpers, provider, db):
    helpers.register(client, outbox, "oauth@example.com")
    client.cookies.clear()

    response = google_sign_in(client, provider, email_verified=False)

    assert response.status_code == 400
    assert response.json() == {"error": "Email is registered; sign in with your password to link this provider"}
    assert db.query(OAuthAccount).count() == 0


def test_linking_unconfirmed_account_drops_its_password_and_sessions(client, outbox, helpers, provider, db):
    # Someone else signed up first with this address and never confirmed it
    other = TestClient(app)
    assert helpers.signup(other, "oauth@example.com", password="Attack3r!").status_code == 201

    response = google_sign_in(client, provider)

    assert response.status_code == 303
    assert response.headers["location"].endswith("created=0")
    user = db.query(User).filter(User.email == "oauth@example.com").one()
    assert user.email_verified
    assert not user.has_password
    assert db.query(AuditLog).filter(AuditLog.event == "unverified_credentials_cleared").count() == 1

    login = helpers.login(other, "oauth@example.com", password="Attack3r!")
    assert login.status_code == 401
    assert login.json() == {"error": "Invalid credentials"}


def test_id_token_for_another_app_rejected(client, provider):
    response = google_sign_in(client, provider, aud="someone-else")
    assert response.status_code == 400
    assert response.json() == {"error": "id_token was not issued for this application"}


def test_provider_error_becomes_oauth_error(client, provider):
    provider.on("POST", GOOGLE_TOKEN_URL, status_code=400, json={"error": "invalid_grant"})
    _, query = start_flow(client, "google")
    response = finish_flow(client, "google", query["state"][0])

    assert response.status_code == 400
    assert response.json() == {"error": "Failed to complete google sign-in"}


def test_state_mismatch_rejected(client, provider):
    start_flow(client, "google")
    response = finish_flow(client, "google", "forged-state")
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid OAuth state"}
    assert provider.requests == []


def test_callback_without_code(client):
    _, query = start_flow(client, "google")
    response = client.get(
        f"{API}/auth/oauth/google/callback",
        params={"state": query["state"][0]},
        follow_redirects=False,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "No code"}


def test_facebook_sign_in(client, provider, db):
    provider.on("GET", FACEBOOK_TOKEN_URL, json={"access_token": "fb-access"})
    provider.on("GET", FACEBOOK_ME_URL, json={"id": "fb-1", "name": "Fb User", "email": "fb@example.com"})

    _, query = start_flow(client, "facebook")
    response = finish_flow(client, "facebook", query["state"][0])

    assert response.status_code == 303
    assert provider.requests[1].url.params["fields"] == "id,name,email"
    user = db.query(User).filter(User.email == "fb@example.com").one()
    assert user.name == "Fb User"
    assert db.query(OAuthAccount).filter(OAuthAccount.provider_id == "fb-1").count() == 1


def test_facebook_profile_without_email(client, provider):
    provider.on("GET", FACEBOOK_TOKEN_URL, json={"access_token": "fb-access"})
    provider.on("GET", FACEBOOK_ME_URL, json={"id": "fb-2", "name": "No Mail"})

    _, query = start_flow(client, "facebook")
    response = finish_flow(client, "facebook", query["state"][0])

    assert response.status_code == 400
    assert response.json() == {"error": "No email"}
