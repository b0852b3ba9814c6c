from __future__ import annotations

import logging
from typing import Mapping, Optional

from ...core.errors import ApiError, ErrorKind, FieldError, ValidationFailed
from ...core.security import hash_code, hash_password, verify_password
from ...domain.ports.persistence import Document, DocumentRepository
from .auth_service import normalize_email
from .crud_service import CrudService
from .verification import ACCOUNT_DELETION, VerificationCodeWorkflow

logger = logging.getLogger(__name__)


class AccountService:
    """Self-service operations for the authenticated user."""

    def __init__(
        self,
        users: CrudService,
        repository: DocumentRepository,
        workflow: VerificationCodeWorkflow,
    ) -> None:
        self._users = users
        self._repository = repository
        self._workflow = workflow

    def get_profile(self, user_id: str, params: Optional[Mapping[str, str]] = None) -> Document:
        return self._users.get_one(user_id, params)

    def update_profile(self, user_id: str, name: str) -> Document:
        return self._users.update(user_id, {"name": name})

    def change_password(self, user_id: str, current_password: str, new_password: str) -> Document:
        user = self._repository.find_by_id(user_id, include_hidden=True)
        if user is None:
            raise ApiError("Not found", ErrorKind.NOT_FOUND)
        if not verify_password(current_password, user.get("password")):
            raise ValidationFailed([FieldError("current_password", "Current password is incorrect")])
        updated = self._repository.update_fields(
            user_id,
            {"password": hash_password(new_password), "password_changed_at": self._workflow.now()},
        )
        if updated is None:
            raise ApiError("Not found", ErrorKind.NOT_FOUND)
        logger.info("Password changed for user %s", user_id)
        return updated

    async def send_delete_account_code(self, user_id: str) -> str:
        user = self._repository.find_by_id(user_id, include_hidden=True)
        if user is None or not user.get("email_verified"):
            raise ApiError("Unauthorized", ErrorKind.UNAUTHORIZED)
        await self._workflow.issue(user, ACCOUNT_DELETION)
        return "Verification code sent to your email"

    def delete_account(self, user_id: str, email: str, password: str, code: str) -> str:
        """Confirm deletion with email, password and the emailed code in one step."""
        user = self._repository.find_by_id(user_id, include_hidden=True)
        if user is None:
            raise ApiError("User not found", ErrorKind.UNAUTHORIZED)
        if user.get("email") != normalize_email(email):
            raise ApiError("Email does not match authenticated user", ErrorKind.UNAUTHORIZED)
        if not verify_password(password, user.get("password")):
            raise ApiError("Incorrect password", ErrorKind.UNAUTHORIZED)
        self._workflow.check(user, code, ACCOUNT_DELETION)

        removed = self._repository.delete_where(
            [
                ("id", "eq", user_id),
                (ACCOUNT_DELETION.code_field, "eq", hash_code(code)),
                (ACCOUNT_DELETION.expires_field, "gt", self._workflow.now()),
            ]
        )
        if not removed:
            raise ApiError(ACCOUNT_DELETION.invalid_message, ErrorKind.UNAUTHORIZED)
        logger.info("Deleted account %s", user_id)
        return "Account deleted successfully"
