from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ....application.services.account_service import AccountService
from ....core.dependencies import get_account_service, get_user_crud_service
from ....domain.models import USER_ENTITY
from ..controllers import build_crud_controller, query_params_dict
from ..dependencies import get_current_user, require_admin_user
from ..responses import api_success
from ..schemas.user_schemas import ChangePasswordRequest, DeleteAccountRequest, UpdateProfileRequest
from ..user_validators import USER_CUSTOM_VALIDATORS

router = APIRouter(prefix="/api/users", tags=["Users"])

user_controller = build_crud_controller(
    USER_ENTITY,
    excluded_data={"create": ["wishlist"], "update": ["password", "email", "wishlist"]},
    exclude_validation=["email", "phone", "wishlist"],
    custom_validators=USER_CUSTOM_VALIDATORS,
)


# Self-service routes are registered before the "/{id}" routes so they match first.
@router.get("/profile")
async def get_profile(
    request: Request,
    user: Dict[str, Any] = Depends(get_current_user),
    account_service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    profile = account_service.get_profile(user["id"], query_params_dict(request.query_params))
    return api_success("OK", "document found", profile)


@router.put("/update")
async def update_profile(
    payload: UpdateProfileRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    account_service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    updated = account_service.update_profile(user["id"], payload.name)
    return api_success("OK", "document updated", updated)


@router.patch("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    account_service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    account_service.change_password(user["id"], payload.current_password, payload.new_password)
    return api_success("OK", "Password changed successfully - please login again")


@router.post("/send-delete-account-code")
async def send_delete_account_code(
    user: Dict[str, Any] = Depends(get_current_user),
    account_service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    message = await account_service.send_delete_account_code(user["id"])
    return api_success("OK", message)


@router.delete("/delete-account")
async def delete_account(
    payload: DeleteAccountRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    account_service: AccountService = Depends(get_account_service),
) -> JSONResponse:
    message = account_service.delete_account(user["id"], payload.email, payload.password, payload.code)
    return api_success("OK", message)


_admin_only = [Depends(require_admin_user)]

user_controller.mount(
    router,
    get_user_crud_service,
    {operation: _admin_only for operation in ("create", "get_all", "get_one", "update", "delete_one")},
)
