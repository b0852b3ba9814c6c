"""Request-body validator chains for the generic CRUD endpoints."""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Type

from fastapi import Request
from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from ...core.errors import ApiError, ErrorKind, FieldError, ValidationFailed, field_errors_from
from ...domain.models.entity import INTERNAL_FIELDS, EntityDescriptor

# A rule inspects the parsed body (and the request, for path params or app state)
# and returns every problem it found.
Rule = Callable[[Mapping[str, Any], Request], Awaitable[List[FieldError]]]

_DOCUMENT_ID = re.compile(r"^[0-9a-f]{32}$")


def build_body_model(
    descriptor: EntityDescriptor,
    operation: str,
    skip: Iterable[str] = (),
) -> Type[BaseModel]:
    """
    Derive a pydantic model for the ``create`` or ``update`` body of ``descriptor``.

    Internal and managed fields are never part of a body. Fields listed in
    ``skip`` are left to custom rules. On ``update`` every field is optional.
    """
    skipped = set(skip) | set(INTERNAL_FIELDS) | set(descriptor.managed_fields)
    definitions: Dict[str, Any] = {}
    for spec in descriptor.fields:
        if spec.name in skipped:
            continue
        type_ = Annotated[spec.type_, Field(**spec.constraints)] if spec.constraints else spec.type_
        if operation == "create" and spec.required:
            definitions[spec.name] = (type_, ...)
        else:
            definitions[spec.name] = (Optional[type_], None)
    return create_model(
        f"{descriptor.name.title()}{operation.title()}Body",
        __config__=ConfigDict(extra="ignore"),
        **definitions,
    )


class ValidatorChain:
    """Runs a body model and custom rules, reporting every failure at once."""

    def __init__(self, model: Optional[Type[BaseModel]] = None, rules: Sequence[Rule] = ()) -> None:
        self.model = model
        self.rules = list(rules)

    async def validate(self, body: Mapping[str, Any], request: Request) -> Dict[str, Any]:
        errors: List[FieldError] = []
        data = dict(body)
        for rule in self.rules:
            errors.extend(await rule(body, request))
        if self.model is not None:
            try:
                parsed = self.model.model_validate(body)
            except ValidationError as exc:
                errors.extend(field_errors_from(exc))
            else:
                data.update(parsed.model_dump(mode="json", exclude_unset=True))
        if errors:
            raise ValidationFailed(errors)
        return data

    def dependency(self, *, with_body: bool = True) -> Callable[[Request], Awaitable[Dict[str, Any]]]:
        """FastAPI dependency yielding the validated body of the current request."""

        async def validated(request: Request) -> Dict[str, Any]:
            body = await read_json_body(request) if with_body else {}
            return await self.validate(body, request)

        return validated


async def read_json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError as exc:
        raise ApiError("Malformed JSON body", ErrorKind.BAD_REQUEST) from exc
    if not isinstance(body, dict):
        raise ApiError("Request body must be a JSON object", ErrorKind.BAD_REQUEST)
    return body


async def document_id_rule(body: Mapping[str, Any], request: Request) -> List[FieldError]:
    value = request.path_params.get("id", "")
    if _DOCUMENT_ID.match(str(value)):
        return []
    return [FieldError("id", "Invalid id format")]


def require_any_of(fields: Sequence[str], message: str) -> Rule:
    """Rule failing unless the body carries at least one of ``fields``."""
    allowed = tuple(fields)

    async def rule(body: Mapping[str, Any], request: Request) -> List[FieldError]:
        if any(name in body for name in allowed):
            return []
        return [FieldError("body", message)]

    return rule
