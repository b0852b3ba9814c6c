"""Factory producing standard CRUD endpoints for an entity descriptor."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from fastapi import APIRouter, Depends, Request
from fastapi.params import Depends as DependsParam
from fastapi.responses import JSONResponse
from starlette.datastructures import QueryParams

from ...application.services.crud_service import CrudService
from ...domain.models.entity import INTERNAL_FIELDS, EntityDescriptor
from .responses import api_success
from .validation import Rule, ValidatorChain, build_body_model, document_id_rule, require_any_of

logger = logging.getLogger(__name__)

OPERATIONS = ("create", "get_one", "get_all", "update", "delete_one")
UPDATE_REQUIRES_FIELD = "At least one valid field must be provided to update"

ExcludedData = Union[Sequence[str], Mapping[str, Sequence[str]]]
Handler = Callable[[Request, CrudService, Dict[str, Any]], Awaitable[JSONResponse]]
ServiceProvider = Callable[..., CrudService]

_ROUTES: Dict[str, Tuple[str, str]] = {
    "create": ("POST", ""),
    "get_all": ("GET", ""),
    "get_one": ("GET", "/{id}"),
    "update": ("PUT", "/{id}"),
    "delete_one": ("DELETE", "/{id}"),
}


def query_params_dict(params: QueryParams) -> Dict[str, str]:
    """Flatten query params, joining repeated keys with commas."""
    flattened: Dict[str, List[str]] = {}
    for key, value in params.multi_items():
        flattened.setdefault(key, []).append(value)
    return {key: ",".join(values) for key, values in flattened.items()}


def normalize_excluded(excluded_data: Optional[ExcludedData], always: Sequence[str]) -> Dict[str, List[str]]:
    if excluded_data is None:
        create: Sequence[str] = ()
        update: Sequence[str] = ()
    elif isinstance(excluded_data, Mapping):
        create = excluded_data.get("create", ())
        update = excluded_data.get("update", ())
    else:
        create = update = excluded_data
    return {
        "create": list(dict.fromkeys([*create, *always])),
        "update": list(dict.fromkeys([*update, *always])),
    }


@dataclass(slots=True)
class Endpoint:
    validator: ValidatorChain
    handler: Handler
    reads_body: bool = False


@dataclass(slots=True)
class CrudController:
    descriptor: EntityDescriptor
    excluded: Dict[str, List[str]]
    updatable_fields: Tuple[str, ...]
    create: Endpoint
    get_one: Endpoint
    get_all: Endpoint
    update: Endpoint
    delete_one: Endpoint

    def endpoint(self, operation: str) -> Endpoint:
        if operation not in OPERATIONS:
            raise KeyError(operation)
        return getattr(self, operation)

    def mount(
        self,
        router: APIRouter,
        service_provider: ServiceProvider,
        dependencies_by_op: Optional[Mapping[str, Sequence[DependsParam]]] = None,
    ) -> None:
        """Register every endpoint on ``router`` with per-operation dependencies (auth guards)."""
        dependencies_by_op = dependencies_by_op or {}
        for operation in OPERATIONS:
            method, path = _ROUTES[operation]
            endpoint = self.endpoint(operation)
            router.add_api_route(
                path,
                _route(endpoint, service_provider),
                methods=[method],
                name=f"{self.descriptor.name}_{operation}",
                dependencies=list(dependencies_by_op.get(operation, ())),
            )


def _route(endpoint: Endpoint, service_provider: ServiceProvider):
    validated_body = endpoint.validator.dependency(with_body=endpoint.reads_body)

    async def route(
        request: Request,
        data: Dict[str, Any] = Depends(validated_body),
        service: CrudService = Depends(service_provider),
    ) -> JSONResponse:
        return await endpoint.handler(request, service, data)

    return route


def build_crud_controller(
    descriptor: EntityDescriptor,
    excluded_data: Optional[ExcludedData] = None,
    exclude_validation: Sequence[str] = (),
    custom_validators: Optional[Mapping[str, Sequence[Rule]]] = None,
) -> CrudController:
    """
    Build create/get_one/get_all/update/delete_one endpoints for ``descriptor``.

    ``excluded_data`` names fields dropped from incoming bodies, either for both
    writes or separately as ``{"create": [...], "update": [...]}``. The id and
    managed fields are always excluded. ``exclude_validation`` skips the
    generated type checks for fields whose rules live in ``custom_validators``
    (``{"create": [...], "update": [...]}``).
    """
    always = ["id", *descriptor.managed_fields]
    excluded = normalize_excluded(excluded_data, always)
    skip_validation = list(dict.fromkeys([*exclude_validation, *always]))
    custom_validators = custom_validators or {}

    update_excluded = set(excluded["update"]) | set(INTERNAL_FIELDS)
    updatable = tuple(name for name in descriptor.field_names if name not in update_excluded)

    create_chain = ValidatorChain(
        build_body_model(descriptor, "create", skip_validation),
        list(custom_validators.get("create", ())),
    )
    update_chain = ValidatorChain(
        build_body_model(descriptor, "update", skip_validation),
        [
            document_id_rule,
            require_any_of(updatable, UPDATE_REQUIRES_FIELD),
            *custom_validators.get("update", ()),
        ],
    )
    by_id_chain = ValidatorChain(rules=[document_id_rule])

    async def create(request: Request, service: CrudService, data: Dict[str, Any]) -> JSONResponse:
        document = service.create(data, excluded["create"])
        return api_success("CREATED", "document created", document)

    async def get_one(request: Request, service: CrudService, data: Dict[str, Any]) -> JSONResponse:
        params = query_params_dict(request.query_params)
        document = service.get_one(request.path_params["id"], params)
        return api_success("OK", "document found", document)

    async def get_all(request: Request, service: CrudService, data: Dict[str, Any]) -> JSONResponse:
        params = query_params_dict(request.query_params)
        return api_success("OK", "documents found", service.get_all(params))

    async def update(request: Request, service: CrudService, data: Dict[str, Any]) -> JSONResponse:
        document = service.update(request.path_params["id"], data, excluded["update"])
        return api_success("OK", "document updated", document)

    async def delete_one(request: Request, service: CrudService, data: Dict[str, Any]) -> JSONResponse:
        service.delete_one(request.path_params["id"])
        return api_success("OK", "document deleted")

    logger.debug("Built CRUD controller for %s (updatable: %s)", descriptor.name, ", ".join(updatable))
    return CrudController(
        descriptor=descriptor,
        excluded=excluded,
        updatable_fields=updatable,
        create=Endpoint(create_chain, create, reads_body=True),
        get_one=Endpoint(by_id_chain, get_one),
        get_all=Endpoint(ValidatorChain(), get_all),
        update=Endpoint(update_chain, update, reads_body=True),
        delete_one=Endpoint(by_id_chain, delete_one),
    )
