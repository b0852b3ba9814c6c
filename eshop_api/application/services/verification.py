from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from ...core.errors import ApiError, EmailDeliveryError, ErrorKind
from ...core.security import codes_match, generate_code, hash_code
from ...core.utils import utcnow
from ...domain.ports.persistence import Document, DocumentRepository
from ...services.email_service import EmailSender
from ...services.email_templates import (
    delete_account_template,
    email_verification_template,
    reset_password_template,
)

logger = logging.getLogger(__name__)

CODE_TTL_MINUTES = 10


@dataclass(frozen=True, slots=True)
class CodeFlow:
    """Field layout and wording of one code-gated flow on the user record."""

    name: str
    code_field: str
    expires_field: str
    verified_field: Optional[str]
    subject: str
    template: Callable[[str, int], str]
    invalid_message: str
    delivery_failure_message: str
    # Email verification consumes the code on verify; password reset keeps it for the final step.
    clear_on_verify: bool = True
    reset_verified_on_issue: bool = False

    @property
    def fields(self) -> Tuple[str, ...]:
        names = (self.code_field, self.expires_field)
        if self.verified_field and self.reset_verified_on_issue:
            names += (self.verified_field,)
        return names


EMAIL_VERIFICATION = CodeFlow(
    name="email_verification",
    code_field="email_verification_code",
    expires_field="email_verification_code_expires",
    verified_field="email_verified",
    subject="Verify Your Email",
    template=email_verification_template,
    invalid_message="Invalid or expired verification code",
    delivery_failure_message="Failed to send verification email",
)

PASSWORD_RESET = CodeFlow(
    name="password_reset",
    code_field="password_reset_code",
    expires_field="password_reset_code_expires",
    verified_field="password_reset_verified",
    subject="Reset Password Code",
    template=reset_password_template,
    invalid_message="Invalid reset code or expired",
    delivery_failure_message="Failed to send email",
    clear_on_verify=False,
    reset_verified_on_issue=True,
)

ACCOUNT_DELETION = CodeFlow(
    name="account_deletion",
    code_field="delete_account_code",
    expires_field="delete_account_code_expires",
    verified_field=None,
    subject="Delete Account Verification Code",
    template=delete_account_template,
    invalid_message="Invalid or expired verification code",
    delivery_failure_message="Failed to send verification email",
)


class VerificationCodeWorkflow:
    """Issues, stores (hashed, with expiry) and checks one-time codes on user documents."""

    def __init__(
        self,
        repository: DocumentRepository,
        email_sender: EmailSender,
        *,
        ttl_minutes: int = CODE_TTL_MINUTES,
        code_length: int = 6,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._email_sender = email_sender
        self._ttl = timedelta(minutes=ttl_minutes)
        self._ttl_minutes = ttl_minutes
        self._code_length = code_length
        self._clock = clock

    def prepare(self, flow: CodeFlow) -> Tuple[str, Dict[str, Any]]:
        """Return a fresh plaintext code and the document fields that store it."""
        code = generate_code(self._code_length)
        fields: Dict[str, Any] = {
            flow.code_field: hash_code(code),
            flow.expires_field: self._clock() + self._ttl,
        }
        if flow.verified_field and flow.reset_verified_on_issue:
            fields[flow.verified_field] = False
        return code, fields

    async def deliver(self, email: str, flow: CodeFlow, code: str) -> None:
        await self._email_sender.send(email, flow.subject, flow.template(code, self._ttl_minutes))

    async def issue(self, user: Document, flow: CodeFlow) -> None:
        """
        Store a new code for ``flow`` on ``user`` and email it.

        ``user`` must be read with hidden fields so its version is known; the
        write only lands if nobody changed the document since. When delivery
        fails the flow fields are cleared and the caller gets an
        INTERNAL_SERVER_ERROR; nothing is retried.
        """
        code, fields = self.prepare(flow)
        updated = self._repository.update_fields(
            user["id"], fields, expected=[("version", "eq", user.get("version"))]
        )
        if updated is None:
            raise ApiError("Request conflicted with another update, please retry", ErrorKind.CONFLICT)
        logger.info("Issued %s code for user %s", flow.name, user["id"])

        try:
            await self.deliver(user["email"], flow, code)
        except EmailDeliveryError as exc:
            logger.warning("Delivery of %s code to user %s failed; rolling back", flow.name, user["id"])
            self._repository.update_fields(user["id"], self.cleared(flow))
            raise ApiError(flow.delivery_failure_message, ErrorKind.INTERNAL_SERVER_ERROR) from exc

    def verify(self, email: str, code: str, flow: CodeFlow) -> Document:
        """
        Match ``email``, the code hash and an unexpired window in one lookup.

        Wrong and expired codes raise the same UNAUTHORIZED error.
        """
        hashed = hash_code(code)
        user = self._repository.find_one(
            [
                ("email", "eq", email),
                (flow.code_field, "eq", hashed),
                (flow.expires_field, "gt", self._clock()),
            ],
            include_hidden=True,
        )
        if user is None:
            raise ApiError(flow.invalid_message, ErrorKind.UNAUTHORIZED)

        changes: Dict[str, Any] = {}
        if flow.verified_field:
            changes[flow.verified_field] = True
        if flow.clear_on_verify:
            changes[flow.code_field] = None
            changes[flow.expires_field] = None
        updated = self._repository.update_fields(user["id"], changes, expected=[(flow.code_field, "eq", hashed)])
        if updated is None:
            raise ApiError(flow.invalid_message, ErrorKind.UNAUTHORIZED)
        logger.info("Verified %s code for user %s", flow.name, user["id"])
        return updated

    def check(self, user: Document, code: str, flow: CodeFlow) -> None:
        """Validate ``code`` against a user document already read with hidden fields."""
        stored = user.get(flow.code_field)
        expires = user.get(flow.expires_field)
        if not stored or not expires:
            raise ApiError("No verification code found", ErrorKind.BAD_REQUEST)
        if expires <= self._clock() or not codes_match(stored, code):
            raise ApiError(flow.invalid_message, ErrorKind.UNAUTHORIZED)

    def now(self) -> datetime:
        return self._clock()

    @staticmethod
    def cleared(flow: CodeFlow) -> Dict[str, Any]:
        fields: Dict[str, Any] = {flow.code_field: None, flow.expires_field: None}
        if flow.verified_field and flow.reset_verified_on_issue:
            fields[flow.verified_field] = None
        return fields
