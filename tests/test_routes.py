import json
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from auxin_api.main import create_app
from auxin_api.utils.security import get_password_hash


BOOKING = {"date": "2099-01-10", "time": "09:00", "userEmail": "a@b.com", "userName": "A"}


@pytest.fixture
def signed_in(make_user, auth_headers):
    user = make_user(email="a@b.com", name="A", password=get_password_hash("secret1"))
    return user, auth_headers(user)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["database"] == "connected"


def test_signup_verification_and_login(client, mailer, raw_db):
    response = client.post("/api/auth/register", json={"name": "A", "email": "a@b.com", "password": "secret1"})
    assert response.status_code == 201
    assert response.json()["requiresVerification"] is True

    response = client.post("/api/auth/login", json={"email": "a@b.com", "password": "secret1"})
    assert response.status_code == 403
    assert response.json()["requiresVerification"] is True
    assert response.json()["email"] == "a@b.com"

    response = client.post("/api/auth/send-otp", json={"email": "a@b.com"})
    assert response.status_code == 200
    code = mailer.last_code
    assert len(code) == 6

    wrong = "000000" if code != "000000" else "111111"
    response = client.post("/api/auth/verify-otp", json={"email": "a@b.com", "code": wrong})
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_CODE"
    assert raw_db["pendingusers"].count_documents({"email": "a@b.com"}) == 1

    response = client.post("/api/auth/verify-otp", json={"email": "a@b.com", "code": code})
    assert response.status_code == 200
    assert response.json()["token"]
    assert response.json()["user"]["isEmailVerified"] is True
    assert raw_db["pendingusers"].count_documents({}) == 0

    response = client.post("/auth/login", json={"email": "a@b.com", "password": "secret1"})
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "a@b.com"


def test_register_validation_errors_are_400(client):
    response = client.post("/api/auth/register", json={"name": "A", "email": "not-an-email", "password": "secret1"})
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"

    response = client.post("/api/auth/register", json={"name": "A", "email": "a@b.com", "password": "123"})
    assert response.status_code == 400


def test_register_existing_user(client, signed_in):
    response = client.post("/api/auth/register", json={"name": "A", "email": "a@b.com", "password": "secret1"})
    assert response.status_code == 400
    assert response.json()["code"] == "USER_EXISTS"


def test_send_otp_unknown_email(client):
    response = client.post("/api/auth/send-otp", json={"email": "nobody@example.com"})
    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": "No signup found for this email",
        "code": "SIGNUP_NOT_FOUND",
    }


def test_send_otp_without_mail_config(client, mailer):
    mailer.configured = False
    response = client.post("/api/auth/send-otp", json={"email": "a@b.com"})
    assert response.status_code == 500
    assert response.json()["code"] == "MAIL_NOT_CONFIGURED"


def test_verify_and_refresh(client, signed_in):
    user, headers = signed_in

    response = client.get("/api/auth/verify", headers=headers)
    assert response.status_code == 200
    assert response.json()["user"]["id"] == str(user["_id"])
    assert response.headers["cache-control"].startswith("no-store")

    token = headers["Authorization"].split(" ")[1]
    response = client.post("/api/auth/refresh-token", json={"token": token})
    assert response.status_code == 200
    assert response.json()["token"]


def test_verify_without_token(client):
    response = client.get("/api/auth/verify")
    assert response.status_code == 401
    assert response.json()["code"] == "NO_TOKEN"

    response = client.get("/api/auth/verify", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"


def test_google_redirects(client, oauth):
    response = client.get("/api/auth/google", follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"].startswith("https://accounts.google.com/")

    response = client.get("/api/auth/google/callback", params={"code": "auth-code"}, follow_redirects=False)
    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert location.path == "/auth/google/callback"
    query = parse_qs(location.query)
    assert query["token"][0]
    assert json.loads(query["user"][0])["email"] == "gina@example.com"


def test_google_callback_without_code_redirects_with_error(client):
    response = client.get("/api/auth/google/callback", follow_redirects=False)
    assert response.status_code == 302
    assert "error=" in response.headers["location"]


def test_google_callback_post(client):
    response = client.post("/api/auth/google/callback", json={"code": "auth-code"})
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "gina@example.com"

    response = client.post("/api/auth/google/callback", json={})
    assert response.status_code == 400


def test_forgot_password_does_not_reveal_accounts(client, signed_in):
    known = client.post("/api/auth/forgot-password", json={"email": "a@b.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    assert known.json() == unknown.json()


def test_booking_scenario(client, signed_in):
    _, headers = signed_in

    response = client.post("/api/appointments/book", json=BOOKING, headers=headers)
    assert response.status_code == 201
    appointment = response.json()["appointment"]
    assert appointment["status"] == "confirmed"
    assert appointment["date"] == "2099-01-10"

    response = client.post("/api/appointments/book", json=BOOKING, headers=headers)
    assert response.status_code == 409
    assert response.json()["code"] == "SLOT_UNAVAILABLE"

    response = client.get("/api/appointments/available", params={"date": "2099-01-10"})
    slot = next(s for s in response.json()["slots"] if s["time"] == "09:00")
    assert slot["available"] is False

    response = client.get("/api/appointments/my-appointments", headers=headers)
    assert response.json()["pagination"]["total"] == 1

    response = client.put(f"/api/appointments/{appointment['id']}/cancel", headers=headers)
    assert response.status_code == 200
    assert response.json()["appointment"]["status"] == "cancelled"

    response = client.put(f"/api/appointments/{appointment['id']}/cancel", headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "ALREADY_CANCELLED"


def test_booking_requires_sign_in(client):
    response = client.post("/api/appointments/book", json=BOOKING)
    assert response.status_code == 401


def test_booking_missing_fields(client, signed_in):
    _, headers = signed_in
    response = client.post("/api/appointments/book", json={"date": "2099-01-10"}, headers=headers)
    assert response.status_code == 400
    assert response.json()["code"] == "MISSING_FIELDS"


def test_cancel_unknown_appointment(client, signed_in):
    _, headers = signed_in
    response = client.put("/api/appointments/64b7f0c2a1b2c3d4e5f60718/cancel", headers=headers)
    assert response.status_code == 404
    assert response.json()["code"] == "APPOINTMENT_NOT_FOUND"


def test_admin_listing(client, signed_in):
    _, headers = signed_in
    client.post("/api/appointments/book", json=BOOKING, headers=headers)

    response = client.get("/api/appointments/admin/all", params={"status": "nonsense"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["pagination"]["total"] == 1


def test_unexpected_errors_are_500(services, monkeypatch):
    async def explode(date_value):
        raise RuntimeError("boom")

    monkeypatch.setattr(services.booking, "compute_availability", explode)
    client = TestClient(create_app(services), raise_server_exceptions=False)

    response = client.get("/api/appointments/available", params={"date": "2099-01-10"})
    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_ERROR"


def test_unknown_route(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.json()["error"] == "Route not found"


def test_google_callback_failure_still_redirects(client, services, monkeypatch):
    async def database_down(code):
        raise RuntimeError("connection refused")

    monkeypatch.setattr(services.auth, "oauth_callback", database_down)

    response = client.get("/api/auth/google/callback", params={"code": "auth-code"}, follow_redirects=False)
    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert location.path == "/auth/google/callback"
    assert parse_qs(location.query)["error"] == ["server_error"]
