from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ...core.errors import ApiError, EmailDeliveryError, ErrorKind, FieldError, ValidationFailed
from ...core.security import TokenService, hash_password, verify_password
from ...domain.models.user import ROLE_ADMIN
from ...domain.ports.persistence import Document, DocumentRepository
from .crud_service import CrudService
from .verification import EMAIL_VERIFICATION, PASSWORD_RESET, VerificationCodeWorkflow

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Registration, login and the email-code flows that gate them."""

    def __init__(
        self,
        users: CrudService,
        repository: DocumentRepository,
        workflow: VerificationCodeWorkflow,
        tokens: TokenService,
    ) -> None:
        self._users = users
        self._repository = repository
        self._workflow = workflow
        self._tokens = tokens

    def ensure_default_admin(self, email: Optional[str], password: Optional[str]) -> Optional[Document]:
        if not email or not password:
            return None
        existing = self._repository.find_one([("email", "eq", normalize_email(email))])
        if existing:
            return existing
        logger.info("Creating default administrator account for %s", email)
        return self._users.create(
            {
                "name": "Administrator",
                "email": normalize_email(email),
                "password": password,
                "role": ROLE_ADMIN,
                "email_verified": True,
            }
        )

    async def register(self, name: str, email: str, password: str, phone: Optional[str] = None) -> str:
        if self._repository.find_one([("email", "eq", normalize_email(email))]):
            raise ValidationFailed([FieldError("email", "Email already in use")])
        code, fields = self._workflow.prepare(EMAIL_VERIFICATION)
        user = self._users.create(
            {
                "name": name,
                "email": normalize_email(email),
                "password": password,
                "phone": phone,
                "email_verified": False,
                **fields,
            }
        )
        try:
            await self._workflow.deliver(user["email"], EMAIL_VERIFICATION, code)
        except EmailDeliveryError as exc:
            # No account is kept without a delivered verification code
            self._repository.delete(user["id"])
            logger.warning("Verification email to %s failed; registration rolled back", user["email"])
            raise ApiError(EMAIL_VERIFICATION.delivery_failure_message, ErrorKind.INTERNAL_SERVER_ERROR) from exc
        logger.info("Registered user %s", user["id"])
        return "Verification code sent to your email. Please verify to activate your account."

    async def resend_email_verification_code(self, email: str) -> str:
        user = self._require_user(email)
        if user.get("email_verified"):
            raise ApiError("Email already verified", ErrorKind.BAD_REQUEST)
        if not user.get(EMAIL_VERIFICATION.code_field) or not user.get(EMAIL_VERIFICATION.expires_field):
            raise ApiError("No verification in progress. Please register again.", ErrorKind.BAD_REQUEST)
        await self._workflow.issue(user, EMAIL_VERIFICATION)
        return "Verification code resent"

    def verify_email(self, email: str, code: str) -> str:
        self._workflow.verify(normalize_email(email), code, EMAIL_VERIFICATION)
        return "Email verified successfully"

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self._require_user(email)
        if not verify_password(password, user.get("password")):
            raise ApiError("Invalid Credentials", ErrorKind.UNAUTHORIZED)
        if not user.get("email_verified"):
            raise ApiError("Email must be verified before login - go check your mailbox", ErrorKind.FORBIDDEN)
        public = self._repository.find_by_id(user["id"])
        if public is None:
            raise ApiError("User not found", ErrorKind.INTERNAL_SERVER_ERROR)
        return {"user": public, "token": self._tokens.create_token(user["id"])}

    async def forgot_password(self, email: str) -> None:
        user = self._require_user(email)
        await self._workflow.issue(user, PASSWORD_RESET)

    async def resend_password_reset_code(self, email: str) -> str:
        user = self._require_user(email)
        if not user.get(PASSWORD_RESET.code_field) or not user.get(PASSWORD_RESET.expires_field):
            raise ApiError(
                "No password reset in progress. Please request a reset first.", ErrorKind.BAD_REQUEST
            )
        await self._workflow.issue(user, PASSWORD_RESET)
        return "Password reset code resent"

    def verify_reset_code(self, email: str, code: str) -> None:
        self._workflow.verify(normalize_email(email), code, PASSWORD_RESET)

    def reset_password(self, email: str, new_password: str) -> Dict[str, str]:
        user = self._require_user(email)
        if not user.get(PASSWORD_RESET.verified_field):
            raise ApiError("Reset code not verified", ErrorKind.UNAUTHORIZED)
        changes: Dict[str, Any] = {
            "password": hash_password(new_password),
            "password_changed_at": self._workflow.now(),
            **self._workflow.cleared(PASSWORD_RESET),
        }
        updated = self._repository.update_fields(
            user["id"], changes, expected=[(PASSWORD_RESET.verified_field, "eq", True)]
        )
        if updated is None:
            raise ApiError("Reset code not verified", ErrorKind.UNAUTHORIZED)
        logger.info("Password reset for user %s", user["id"])
        return {"token": self._tokens.create_token(user["id"])}

    def _require_user(self, email: str) -> Document:
        user = self._repository.find_one([("email", "eq", normalize_email(email))], include_hidden=True)
        if user is None:
            raise ApiError("User not found", ErrorKind.NOT_FOUND)
        return user
