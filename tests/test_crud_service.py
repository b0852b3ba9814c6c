import pytest

from eshop_api.application.services.crud_service import CrudService
from eshop_api.core.errors import ApiError, ErrorKind, ValidationFailed
from eshop_api.core.security import verify_password


@pytest.fixture
def service(users) -> CrudService:
    return CrudService(users)


def _create(service: CrudService, **overrides):
    data = {"name": "Jane Doe", "email": "Jane@Example.com", "password": "secret-123"}
    data.update(overrides)
    return service.create(data)


def test_create_applies_defaults_and_before_save_hook(service: CrudService, users):
    created = _create(service)

    assert created["email"] == "jane@example.com"
    assert created["slug"] == "jane-doe"
    assert created["role"] == "user"
    assert created["wishlist"] == []
    assert "password" not in created
    assert "email_verified" not in created

    stored = users.find_by_id(created["id"], include_hidden=True)
    assert stored["email_verified"] is False
    assert verify_password("secret-123", stored["password"])


def test_create_drops_internal_excluded_and_undeclared_keys(service: CrudService):
    created = service.create(
        {
            "id": "forced",
            "name": "Jane",
            "email": "jane@example.com",
            "password": "secret-123",
            "wishlist": ["x"],
            "favourite_colour": "blue",
        },
        excluded_keys=["wishlist"],
    )

    assert created["id"] != "forced"
    assert created["wishlist"] == []
    assert "favourite_colour" not in created


def test_duplicate_unique_field_is_bad_request(service: CrudService):
    _create(service)
    with pytest.raises(ApiError) as exc_info:
        _create(service, email="jane@example.com")
    assert exc_info.value.kind == ErrorKind.BAD_REQUEST
    assert exc_info.value.message == "email already exists"


def test_get_one_missing_is_not_found(service: CrudService):
    with pytest.raises(ApiError) as exc_info:
        service.get_one("0" * 32)
    assert exc_info.value.kind == ErrorKind.NOT_FOUND


def test_update_merges_changes_and_reruns_hook(service: CrudService):
    created = _create(service)

    updated = service.update(created["id"], {"name": "  Janet Smith ", "email": "new@example.com"}, ["email"])

    assert updated["name"] == "Janet Smith"
    assert updated["slug"] == "janet-smith"
    assert updated["email"] == "jane@example.com"


def test_update_validates_merged_record(service: CrudService):
    created = _create(service)
    with pytest.raises(ValidationFailed) as exc_info:
        service.update(created["id"], {"role": "superuser"})
    assert exc_info.value.errors[0].field == "role"


def test_update_missing_document_is_not_found(service: CrudService):
    with pytest.raises(ApiError) as exc_info:
        service.update("0" * 32, {"name": "x"})
    assert exc_info.value.kind == ErrorKind.NOT_FOUND


def test_delete_one(service: CrudService):
    created = _create(service)
    assert service.delete_one(created["id"])["id"] == created["id"]
    with pytest.raises(ApiError) as exc_info:
        service.delete_one(created["id"])
    assert exc_info.value.kind == ErrorKind.NOT_FOUND
