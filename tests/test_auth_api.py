from fastapi.testclient import TestClient

from conftest import ADMIN_EMAIL, login, register_verified


def _register(client: TestClient, email: str = "jane@example.com", password: str = "secret-123"):
    return client.post("/api/auth/register", json={"name": "Jane Doe", "email": email, "password": password})


def test_register_creates_unverified_user_and_sends_code(client: TestClient, email_sender):
    res = _register(client)

    assert res.status_code == 201, res.text
    body = res.json()
    assert body["status"] == "success"
    assert body["statusCode"] == 201
    assert "timestamp" in body

    users = client.app.state.container.users_repository
    stored = users.find_one([("email", "eq", "jane@example.com")], include_hidden=True)
    assert stored["email_verified"] is False
    assert stored["email_verification_code"]
    assert len(email_sender.sent) == 1
    assert email_sender.sent[0]["subject"] == "Verify Your Email"


def test_register_rolls_back_when_email_fails(client: TestClient, email_sender):
    email_sender.fail = True

    res = _register(client)

    assert res.status_code == 500, res.text
    assert res.json()["message"] == "Failed to send verification email"
    users = client.app.state.container.users_repository
    assert users.count([("email", "eq", "jane@example.com")]) == 0


def test_register_rejects_duplicate_email(client: TestClient):
    assert _register(client).status_code == 201
    res = _register(client, email="JANE@example.com")

    assert res.status_code == 400
    assert res.json()["errors"] == [{"field": "email", "message": "Email already in use"}]


def test_register_validation_errors_use_envelope(client: TestClient):
    res = client.post("/api/auth/register", json={"name": "", "email": "not-an-email", "password": "1"})

    assert res.status_code == 400
    body = res.json()
    assert body["status"] == "fail"
    assert {error["field"] for error in body["errors"]} == {"name", "email", "password"}


def test_login_requires_verified_email(client: TestClient, email_sender):
    _register(client)

    res = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret-123"})
    assert res.status_code == 403

    code = email_sender.last_code()
    res = client.post("/api/auth/verify-email", json={"email": "jane@example.com", "code": code})
    assert res.status_code == 200, res.text
    assert res.json()["message"] == "Email verified successfully"

    res = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "secret-123"})
    assert res.status_code == 200, res.text
    result = res.json()["result"]
    assert result["token"]
    assert result["user"]["email"] == "jane@example.com"
    assert "password" not in result["user"]


def test_login_with_wrong_password(client: TestClient):
    res = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "wrong-password"})
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid Credentials"


def test_login_unknown_user(client: TestClient):
    res = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "whatever"})
    assert res.status_code == 404


def test_verify_email_expired_and_wrong_code_look_the_same(client: TestClient, email_sender, clock):
    _register(client)
    code = email_sender.last_code()

    wrong = client.post("/api/auth/verify-email", json={"email": "jane@example.com", "code": "not-it"})
    clock.advance(minutes=11)
    expired = client.post("/api/auth/verify-email", json={"email": "jane@example.com", "code": code})

    assert wrong.status_code == expired.status_code == 401
    assert wrong.json()["message"] == expired.json()["message"]


def test_resend_verification_code_replaces_previous(client: TestClient, email_sender):
    _register(client)
    first = email_sender.last_code()

    res = client.post("/api/auth/resend-email-verification-code", json={"email": "jane@example.com"})
    assert res.status_code == 200, res.text
    second = email_sender.last_code()
    assert len(email_sender.sent) == 2

    if first != second:
        res = client.post("/api/auth/verify-email", json={"email": "jane@example.com", "code": first})
        assert res.status_code == 401
    res = client.post("/api/auth/verify-email", json={"email": "jane@example.com", "code": second})
    assert res.status_code == 200


def test_resend_verification_for_verified_user_is_rejected(client: TestClient, email_sender):
    register_verified(client, email_sender)
    res = client.post("/api/auth/resend-email-verification-code", json={"email": "jane@example.com"})
    assert res.status_code == 400
    assert res.json()["message"] == "Email already verified"


def test_password_reset_flow(client: TestClient, email_sender):
    register_verified(client, email_sender)

    res = client.put(
        "/api/auth/reset-password", json={"email": "jane@example.com", "new_password": "brand-new-1"}
    )
    assert res.status_code == 401

    res = client.post("/api/auth/forgot-password", json={"email": "jane@example.com"})
    assert res.status_code == 200, res.text
    code = email_sender.last_code()

    res = client.post("/api/auth/verify-reset-code", json={"email": "jane@example.com", "code": code})
    assert res.status_code == 200, res.text

    res = client.put(
        "/api/auth/reset-password", json={"email": "jane@example.com", "new_password": "brand-new-1"}
    )
    assert res.status_code == 200, res.text
    assert res.json()["result"]["token"]

    # The reset state is cleared, so the same verification cannot be replayed.
    res = client.put(
        "/api/auth/reset-password", json={"email": "jane@example.com", "new_password": "another-1"}
    )
    assert res.status_code == 401

    assert login(client, "jane@example.com", "brand-new-1")


def test_forgot_password_delivery_failure_is_server_error(client: TestClient, email_sender):
    register_verified(client, email_sender)
    email_sender.fail = True

    res = client.post("/api/auth/forgot-password", json={"email": "jane@example.com"})

    assert res.status_code == 500
    assert res.json()["message"] == "Failed to send email"
    users = client.app.state.container.users_repository
    stored = users.find_one([("email", "eq", "jane@example.com")], include_hidden=True)
    assert "password_reset_code" not in stored


def test_resend_password_reset_requires_pending_reset(client: TestClient, email_sender):
    register_verified(client, email_sender)
    res = client.post("/api/auth/resend-password-reset-code", json={"email": "jane@example.com"})
    assert res.status_code == 400

    client.post("/api/auth/forgot-password", json={"email": "jane@example.com"})
    res = client.post("/api/auth/resend-password-reset-code", json={"email": "jane@example.com"})
    assert res.status_code == 200, res.text


def test_unknown_route_uses_envelope(client: TestClient):
    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    assert res.json()["status"] == "fail"


def test_failed_verification_resend_clears_pending_code(client: TestClient, email_sender):
    _register(client)
    first = email_sender.last_code()
    email_sender.fail = True

    res = client.post("/api/auth/resend-email-verification-code", json={"email": "jane@example.com"})

    assert res.status_code == 500
    assert res.json()["message"] == "Failed to send verification email"
    users = client.app.state.container.users_repository
    stored = users.find_one([("email", "eq", "jane@example.com")], include_hidden=True)
    assert "email_verification_code" not in stored
    assert "email_verification_code_expires" not in stored
    assert stored["email_verified"] is False

    email_sender.fail = False
    res = client.post("/api/auth/verify-email", json={"email": "jane@example.com", "code": first})
    assert res.status_code == 401


def test_failed_reset_resend_revokes_verified_reset(client: TestClient, email_sender):
    register_verified(client, email_sender)
    client.post("/api/auth/forgot-password", json={"email": "jane@example.com"})
    code = email_sender.last_code()
    res = client.post("/api/auth/verify-reset-code", json={"email": "jane@example.com", "code": code})
    assert res.status_code == 200, res.text

    email_sender.fail = True
    res = client.post("/api/auth/resend-password-reset-code", json={"email": "jane@example.com"})
    assert res.status_code == 500
    assert res.json()["message"] == "Failed to send email"

    users = client.app.state.container.users_repository
    stored = users.find_one([("email", "eq", "jane@example.com")], include_hidden=True)
    for field in ("password_reset_code", "password_reset_code_expires", "password_reset_verified"):
        assert field not in stored

    res = client.put(
        "/api/auth/reset-password", json={"email": "jane@example.com", "new_password": "brand-new-1"}
    )
    assert res.status_code == 401


def test_failed_forgot_password_after_verified_reset_blocks_reset(client: TestClient, email_sender):
    register_verified(client, email_sender)
    client.post("/api/auth/forgot-password", json={"email": "jane@example.com"})
    code = email_sender.last_code()
    client.post("/api/auth/verify-reset-code", json={"email": "jane@example.com", "code": code})

    email_sender.fail = True
    res = client.post("/api/auth/forgot-password", json={"email": "jane@example.com"})
    assert res.status_code == 500

    res = client.put(
        "/api/auth/reset-password", json={"email": "jane@example.com", "new_password": "brand-new-1"}
    )
    assert res.status_code == 401
