"""Custom body rules for the user CRUD endpoints."""

from typing import Any, List, Mapping

from fastapi import Request
from pydantic import EmailStr, TypeAdapter, ValidationError

from ...core.dependencies import get_container
from ...core.errors import FieldError

_email_adapter = TypeAdapter(EmailStr)


def email_rule(*, optional: bool):
    """Email must be well formed and not already registered."""

    async def rule(body: Mapping[str, Any], request: Request) -> List[FieldError]:
        value = body.get("email")
        if value is None:
            return [] if optional else [FieldError("email", "Email is required")]
        try:
            email = _email_adapter.validate_python(value)
        except ValidationError:
            return [FieldError("email", "Invalid email format")]
        repository = get_container(request).users_repository
        if repository.find_one([("email", "eq", str(email).strip().lower())]):
            return [FieldError("email", "Email already in use")]
        return []

    return rule


USER_CUSTOM_VALIDATORS = {
    "create": [email_rule(optional=False)],
    "update": [email_rule(optional=True)],
}
