import asyncio
from datetime import timedelta

import pytest

from eshop_api.application.services.crud_service import CrudService
from eshop_api.application.services.verification import (
    ACCOUNT_DELETION,
    EMAIL_VERIFICATION,
    PASSWORD_RESET,
    VerificationCodeWorkflow,
)
from eshop_api.core.errors import ApiError, ErrorKind
from eshop_api.core.security import hash_code
from eshop_api.services.expiry_sweeper import ExpirySweeper


@pytest.fixture
def workflow(users, email_sender, clock) -> VerificationCodeWorkflow:
    return VerificationCodeWorkflow(users, email_sender, clock=clock)


@pytest.fixture
def user(users):
    created = CrudService(users).create(
        {"name": "Jane", "email": "jane@example.com", "password": "secret-123", "email_verified": True}
    )
    return users.find_by_id(created["id"], include_hidden=True)


def test_issue_stores_hash_and_expiry_then_emails_code(workflow, users, user, email_sender, clock):
    asyncio.run(workflow.issue(user, PASSWORD_RESET))

    code = email_sender.last_code("jane@example.com")
    stored = users.find_by_id(user["id"], include_hidden=True)
    assert len(code) == 6
    assert stored["password_reset_code"] == hash_code(code)
    assert stored["password_reset_code"] != code
    assert stored["password_reset_code_expires"] == clock.now + timedelta(minutes=10)
    assert stored["password_reset_verified"] is False
    assert email_sender.sent[-1]["subject"] == "Reset Password Code"


def test_check_accepts_issued_code(workflow, users, user, email_sender):
    asyncio.run(workflow.issue(user, ACCOUNT_DELETION))
    code = email_sender.last_code()
    fresh = users.find_by_id(user["id"], include_hidden=True)

    workflow.check(fresh, code, ACCOUNT_DELETION)


def test_email_verification_code_is_consumed(workflow, users, email_sender):
    created = CrudService(users).create({"name": "New", "email": "new@example.com", "password": "secret-123"})
    pending = users.find_by_id(created["id"], include_hidden=True)
    asyncio.run(workflow.issue(pending, EMAIL_VERIFICATION))
    code = email_sender.last_code()

    verified = workflow.verify("new@example.com", code, EMAIL_VERIFICATION)
    stored = users.find_by_id(created["id"], include_hidden=True)
    assert verified["id"] == created["id"]
    assert stored["email_verified"] is True
    assert "email_verification_code" not in stored

    with pytest.raises(ApiError) as exc_info:
        workflow.verify("new@example.com", code, EMAIL_VERIFICATION)
    assert exc_info.value.kind == ErrorKind.UNAUTHORIZED


def test_expired_and_wrong_codes_fail_identically(workflow, user, email_sender, clock):
    asyncio.run(workflow.issue(user, PASSWORD_RESET))
    code = email_sender.last_code()
    wrong = "000000" if code != "000000" else "111111"

    with pytest.raises(ApiError) as wrong_exc:
        workflow.verify("jane@example.com", wrong, PASSWORD_RESET)

    clock.advance(minutes=10, seconds=1)
    with pytest.raises(ApiError) as expired_exc:
        workflow.verify("jane@example.com", code, PASSWORD_RESET)

    assert wrong_exc.value.kind == expired_exc.value.kind == ErrorKind.UNAUTHORIZED
    assert wrong_exc.value.message == expired_exc.value.message == "Invalid reset code or expired"


def test_password_reset_verify_keeps_code_and_marks_verified(workflow, users, user, email_sender):
    asyncio.run(workflow.issue(user, PASSWORD_RESET))
    workflow.verify("jane@example.com", email_sender.last_code(), PASSWORD_RESET)

    stored = users.find_by_id(user["id"], include_hidden=True)
    assert stored["password_reset_verified"] is True
    assert stored["password_reset_code"]


def test_reissue_invalidates_previous_code(workflow, users, user, email_sender):
    asyncio.run(workflow.issue(user, PASSWORD_RESET))
    first = email_sender.last_code()
    asyncio.run(workflow.issue(users.find_by_id(user["id"], include_hidden=True), PASSWORD_RESET))
    second = email_sender.last_code()

    if first != second:
        with pytest.raises(ApiError):
            workflow.verify("jane@example.com", first, PASSWORD_RESET)
    workflow.verify("jane@example.com", second, PASSWORD_RESET)


def test_issue_with_stale_document_conflicts(workflow, users, user):
    asyncio.run(workflow.issue(user, PASSWORD_RESET))
    with pytest.raises(ApiError) as exc_info:
        asyncio.run(workflow.issue(user, PASSWORD_RESET))
    assert exc_info.value.kind == ErrorKind.CONFLICT


def test_delivery_failure_clears_flow_fields(workflow, users, user, email_sender):
    asyncio.run(workflow.issue(user, PASSWORD_RESET))
    workflow.verify("jane@example.com", email_sender.last_code(), PASSWORD_RESET)
    verified = users.find_by_id(user["id"], include_hidden=True)
    assert verified["password_reset_verified"] is True

    email_sender.fail = True
    with pytest.raises(ApiError) as exc_info:
        asyncio.run(workflow.issue(verified, PASSWORD_RESET))

    after = users.find_by_id(user["id"], include_hidden=True)
    assert exc_info.value.kind == ErrorKind.INTERNAL_SERVER_ERROR
    assert exc_info.value.message == "Failed to send email"
    for field in PASSWORD_RESET.fields:
        assert field not in after


def test_check_without_code_is_bad_request(workflow, user):
    with pytest.raises(ApiError) as exc_info:
        workflow.check(user, "123456", ACCOUNT_DELETION)
    assert exc_info.value.kind == ErrorKind.BAD_REQUEST
    assert exc_info.value.message == "No verification code found"


def test_check_rejects_expired_code(workflow, users, user, email_sender, clock):
    asyncio.run(workflow.issue(user, ACCOUNT_DELETION))
    code = email_sender.last_code()
    clock.advance(minutes=11)

    with pytest.raises(ApiError) as exc_info:
        workflow.check(users.find_by_id(user["id"], include_hidden=True), code, ACCOUNT_DELETION)
    assert exc_info.value.kind == ErrorKind.UNAUTHORIZED


def test_sweeper_removes_only_expired_unverified_users(workflow, users, user, email_sender, clock):
    crud = CrudService(users)
    pending = crud.create({"name": "Pending", "email": "pending@example.com", "password": "secret-123"})
    asyncio.run(workflow.issue(users.find_by_id(pending["id"], include_hidden=True), EMAIL_VERIFICATION))
    sweeper = ExpirySweeper(users, clock=clock)

    assert sweeper.sweep_once() == 0
    clock.advance(minutes=10)
    assert sweeper.sweep_once() == 1
    assert users.find_by_id(pending["id"]) is None
    assert users.find_by_id(user["id"]) is not None
