import asyncio

import pytest
from starlette.requests import Request

from eshop_api.core.errors import ValidationFailed
from eshop_api.domain.models import USER_ENTITY
from eshop_api.presentation.api.controllers import (
    UPDATE_REQUIRES_FIELD,
    build_crud_controller,
    normalize_excluded,
    query_params_dict,
)

DOCUMENT_ID = "a" * 32


def _request(document_id: str = DOCUMENT_ID, query: bytes = b"") -> Request:
    return Request({"type": "http", "method": "PUT", "path_params": {"id": document_id}, "query_string": query, "headers": []})


@pytest.fixture
def controller():
    return build_crud_controller(
        USER_ENTITY,
        excluded_data={"create": ["wishlist"], "update": ["password", "email", "wishlist"]},
        exclude_validation=["email", "phone", "wishlist"],
    )


def test_excluded_data_list_applies_to_both_operations():
    excluded = normalize_excluded(["secret"], ["id", "slug"])
    assert excluded == {"create": ["secret", "id", "slug"], "update": ["secret", "id", "slug"]}


def test_id_and_managed_fields_are_always_excluded(controller):
    for operation in ("create", "update"):
        assert "id" in controller.excluded[operation]
        assert "slug" in controller.excluded[operation]
        assert "email_verified" in controller.excluded[operation]


def test_updatable_fields(controller):
    assert controller.updatable_fields == ("name", "phone", "role", "addresses")


def test_update_without_updatable_field_fails_with_single_message(controller):
    with pytest.raises(ValidationFailed) as exc_info:
        asyncio.run(controller.update.validator.validate({"email": "x@example.com", "slug": "x"}, _request()))

    messages = [error.message for error in exc_info.value.errors]
    assert messages == [UPDATE_REQUIRES_FIELD]


def test_update_with_one_updatable_field_passes(controller):
    data = asyncio.run(controller.update.validator.validate({"name": "Jane"}, _request()))
    assert data["name"] == "Jane"


def test_update_collects_every_failure(controller):
    with pytest.raises(ValidationFailed) as exc_info:
        asyncio.run(controller.update.validator.validate({"role": "root", "name": ""}, _request("not-an-id")))

    fields = {error.field for error in exc_info.value.errors}
    assert fields == {"id", "role", "name"}


def test_create_requires_declared_fields(controller):
    with pytest.raises(ValidationFailed) as exc_info:
        asyncio.run(controller.create.validator.validate({"password": "123"}, _request()))

    fields = {error.field for error in exc_info.value.errors}
    assert fields == {"name", "password"}


def test_query_params_join_repeated_keys():
    request = _request(query=b"fields=name&fields=email&page=2")
    assert query_params_dict(request.query_params) == {"fields": "name,email", "page": "2"}
