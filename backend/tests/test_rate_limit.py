from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from tenant_auth.core.config import settings
from tenant_auth.core.exceptions import RateLimited
from tenant_auth.main import app
from tenant_auth.models import RateLimitTracker
from tenant_auth.models.base import utcnow
from tenant_auth.services.rate_limit import API_LIMIT, LOGIN_LIMIT, RateLimiter

API = "/api/v1"


def test_hit_counts_until_limit(db, monkeypatch):
    monkeypatch.setattr(settings, "API_RATE_LIMIT", 3)
    limiter = RateLimiter(db)
    for _ in range(3):
        limiter.hit(API_LIMIT, "10.0.0.1")

    with pytest.raises(RateLimited) as excinfo:
        limiter.hit(API_LIMIT, "10.0.0.1")
    assert 1 <= excinfo.value.retry_after <= settings.API_RATE_LIMIT_WINDOW_SEC

    # Other keys have their own budget
    limiter.hit(API_LIMIT, "10.0.0.2")


def test_window_expiry_resets_the_count(db, monkeypatch):
    monkeypatch.setattr(settings, "API_RATE_LIMIT", 1)
    limiter = RateLimiter(db)
    limiter.hit(API_LIMIT, "10.0.0.3")

    tracker = db.query(RateLimitTracker).filter(RateLimitTracker.limit_key == "10.0.0.3").one()
    tracker.window_end = utcnow() - timedelta(seconds=1)
    db.commit()

    limiter.hit(API_LIMIT, "10.0.0.3")
    db.refresh(tracker)
    assert tracker.attempt_count == 1


def test_reset_forgets_the_key(db):
    limiter = RateLimiter(db)
    limiter.record_failure(LOGIN_LIMIT, "a@example.com")
    db.commit()
    limiter.reset(LOGIN_LIMIT, "a@example.com")
    db.commit()
    assert db.query(RateLimitTracker).count() == 0


def test_login_locked_after_repeated_failures(client, outbox, helpers):
    helpers.register(client, outbox, "locked@example.com")

    for _ in range(settings.LOGIN_MAX_ATTEMPTS):
        assert helpers.login(client, "locked@example.com", password="Wrongpass1").status_code == 401

    response = helpers.login(client, "locked@example.com")
    assert response.status_code == 429
    assert response.json() == {"error": "Too many requests, please try again later"}
    assert int(response.headers["retry-after"]) >= 1


def test_successful_login_clears_failures(client, outbox, helpers):
    helpers.register(client, outbox, "clears@example.com")

    for _ in range(settings.LOGIN_MAX_ATTEMPTS - 1):
        helpers.login(client, "clears@example.com", password="Wrongpass1")
    assert helpers.login(client, "clears@example.com").status_code == 200

    for _ in range(settings.LOGIN_MAX_ATTEMPTS - 1):
        helpers.login(client, "clears@example.com", password="Wrongpass1")
    assert helpers.login(client, "clears@example.com").status_code == 200


def forgot(client, headers=None):
    return client.post(f"{API}/auth/forgot-password", json={"email": "x@example.com"}, headers=headers)


def test_auth_endpoints_are_rate_limited_per_client(monkeypatch):
    monkeypatch.setattr(settings, "API_RATE_LIMIT", 2)
    first = TestClient(app, client=("198.51.100.1", 40000))
    second = TestClient(app, client=("198.51.100.2", 40000))

    assert [forgot(first).status_code for _ in range(2)] == [200, 200]

    response = forgot(first)
    assert response.status_code == 429
    assert "retry-after" in response.headers

    assert forgot(second).status_code == 200


def test_forwarded_for_from_untrusted_client_is_ignored(monkeypatch):
    monkeypatch.setattr(settings, "API_RATE_LIMIT", 2)
    client = TestClient(app, client=("198.51.100.3", 40000))

    codes = [forgot(client, {"X-Forwarded-For": f"203.0.113.{n}"}).status_code for n in range(4)]

    assert codes == [200, 200, 429, 429]


def test_forwarded_for_from_trusted_proxy_names_the_client(db):
    proxy = TestClient(app, client=("127.0.0.1", 40000))

    assert forgot(proxy, {"X-Forwarded-For": "203.0.113.50"}).status_code == 200

    keys = [t.limit_key for t in db.query(RateLimitTracker).filter(RateLimitTracker.limit_type == API_LIMIT)]
    assert keys == ["203.0.113.50"]
