from __future__ import annotations

import time
import uuid

from fastapi.testclient import TestClient

from friendfinder.services.location_pipeline import Position


PASSWORD = "password123!"


def _register(client: TestClient, *, email: str, display_name: str = "Tester") -> str:
    r = client.post(
        "/v1/auth/register",
        json={"email": email, "display_name": display_name, "password": PASSWORD},
    )
    assert r.status_code == 201, r.text
    return r.json()["user_id"]


def _login(client: TestClient, *, email: str, password: str = PASSWORD) -> str:
    r = client.post("/v1/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["token_type"] == "Bearer"
    assert body["expires_in"] > 0
    return body["access_token"]


def test_register_login_and_me(client: TestClient) -> None:
    email = f"u-{uuid.uuid4().hex}@test.com"
    user_id = _register(client, email=email, display_name="Ada")

    token = _login(client, email=email.upper())
    r = client.get("/v1/users/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["user_id"] == user_id
    assert body["email"] == email
    assert body["display_name"] == "Ada"
    assert body["sharing_enabled"] is True
    assert body["created_at"].endswith("Z")


def test_duplicate_email_is_rejected(client: TestClient) -> None:
    email = f"dup-{uuid.uuid4().hex}@test.com"
    _register(client, email=email)

    r = client.post(
        "/v1/auth/register",
        json={"email": email, "display_name": "Again", "password": PASSWORD},
    )
    assert r.status_code == 409, r.text
    assert r.json()["code"] == "AUTH_EMAIL_TAKEN"


def test_register_validates_password_and_email(client: TestClient) -> None:
    r = client.post(
        "/v1/auth/register",
        json={"email": "short@test.com", "display_name": "S", "password": "short"},
    )
    assert r.status_code == 422
    assert r.json()["code"] == "VALIDATION_ERROR"

    r = client.post(
        "/v1/auth/register",
        json={"email": "not-an-email", "display_name": "S", "password": PASSWORD},
    )
    assert r.status_code == 422


def test_wrong_password_and_missing_token(client: TestClient) -> None:
    email = f"u-{uuid.uuid4().hex}@test.com"
    _register(client, email=email)

    r = client.post("/v1/auth/login", json={"email": email, "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_INVALID_CREDENTIALS"

    r = client.get("/v1/users/me")
    assert r.status_code == 401
    body = r.json()
    assert body["code"] == "AUTH_TOKEN_INVALID"
    assert body["trace_id"] == r.headers["X-Trace-Id"]

    r = client.get("/v1/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_trace_id_is_echoed(client: TestClient) -> None:
    r = client.get("/healthz", headers={"X-Trace-Id": "trace-123"})
    assert r.status_code == 200
    assert r.headers["X-Trace-Id"] == "trace-123"


def test_login_starts_location_session_and_logout_stops_it(make_client) -> None:
    class _Provider:
        async def current_position(self) -> Position:
            return Position(latitude=51.5007, longitude=-0.1246, accuracy=4.0)

    client = make_client(provider_factory=lambda user_id: _Provider())
    email = f"u-{uuid.uuid4().hex}@test.com"
    user_id = _register(client, email=email)
    token = _login(client, email=email)
    headers = {"Authorization": f"Bearer {token}"}

    supervisor = client.app.state.supervisor
    assert supervisor.session_for(user_id) is not None

    # The first report is taken immediately after login.
    body = None
    for _ in range(100):
        r = client.get("/v1/locations/me", headers=headers)
        if r.status_code == 200:
            body = r.json()
            break
        time.sleep(0.02)
    assert body is not None
    assert body["latitude"] == 51.5007

    r = client.post("/v1/auth/logout", headers=headers)
    assert r.status_code == 204
    assert supervisor.session_for(user_id) is None
