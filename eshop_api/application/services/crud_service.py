from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError, create_model

from ...core.errors import ApiError, DuplicateKeyError, ErrorKind, ValidationFailed, field_errors_from
from ...core.utils import filter_excluded_keys
from ...domain.models.entity import INTERNAL_FIELDS, EntityDescriptor
from ...domain.ports.persistence import Document, DocumentRepository
from .query_features import QueryFeatures, RepositoryResolver

logger = logging.getLogger(__name__)


def build_record_model(descriptor: EntityDescriptor) -> Type[BaseModel]:
    """Pydantic model describing a complete stored record of ``descriptor``."""
    definitions: Dict[str, Any] = {}
    for spec in descriptor.fields:
        if spec.required:
            definitions[spec.name] = (spec.type_, ...)
        else:
            definitions[spec.name] = (Optional[spec.type_], None)
    return create_model(f"{descriptor.name.title()}Record", **definitions)


class CrudService:
    """Standard create/read/update/delete operations over one entity collection."""

    def __init__(
        self,
        repository: DocumentRepository,
        *,
        resolver: Optional[RepositoryResolver] = None,
        default_limit: int = 50,
    ) -> None:
        self._repository = repository
        self._descriptor = repository.descriptor
        self._resolver = resolver
        self._default_limit = default_limit
        self._record_model = build_record_model(self._descriptor)

    @property
    def descriptor(self) -> EntityDescriptor:
        return self._descriptor

    def create(self, data: Mapping[str, Any], excluded_keys: Iterable[str] = ()) -> Document:
        filtered = self._accepted(data, excluded_keys)
        document: Dict[str, Any] = {}
        for spec in self._descriptor.fields:
            initial = spec.initial_value()
            if initial is not None:
                document[spec.name] = initial
        document.update(filtered)
        if self._descriptor.before_save:
            self._descriptor.before_save(document, filtered)
        try:
            created = self._repository.insert(document)
        except DuplicateKeyError as exc:
            raise ApiError(f"{exc.field} already exists", ErrorKind.BAD_REQUEST) from exc
        logger.info("Created %s %s", self._descriptor.name, created["id"])
        return created

    def get_one(self, document_id: str, params: Optional[Mapping[str, str]] = None) -> Document:
        features = self._features(params or {}).limit_fields().populate("one")
        features.query.where("id", "eq", document_id)
        document = features.first()
        if document is None:
            raise ApiError("Not found", ErrorKind.NOT_FOUND)
        return document

    def get_all(self, params: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        features = self._features(params or {}).filter().search()
        total = features.query.count()
        documents = features.sort().paginate(total).limit_fields().populate("all").all()
        return {"documents": documents, "pagination": features.pagination}

    def update(self, document_id: str, data: Mapping[str, Any], excluded_keys: Iterable[str] = ()) -> Document:
        changes = self._accepted(data, excluded_keys)
        existing = self._repository.find_by_id(document_id, include_hidden=True)
        if existing is None:
            raise ApiError("Not found", ErrorKind.NOT_FOUND)

        merged = filter_excluded_keys(existing, INTERNAL_FIELDS)
        merged.update(changes)
        try:
            self._record_model.model_validate(merged)
        except ValidationError as exc:
            raise ValidationFailed(field_errors_from(exc)) from exc
        if self._descriptor.before_save:
            self._descriptor.before_save(merged, changes)

        written = {
            key: merged.get(key)
            for key in set(merged) | set(changes)
            if key not in INTERNAL_FIELDS and merged.get(key) != existing.get(key)
        }
        try:
            updated = self._repository.update_fields(
                document_id,
                written,
                expected=[("version", "eq", existing["version"])],
            )
        except DuplicateKeyError as exc:
            raise ApiError(f"{exc.field} already exists", ErrorKind.BAD_REQUEST) from exc
        if updated is None:
            raise ApiError("Document was modified concurrently, please retry", ErrorKind.CONFLICT)
        logger.info("Updated %s %s", self._descriptor.name, document_id)
        return updated

    def delete_one(self, document_id: str) -> Document:
        removed = self._repository.delete(document_id)
        if removed is None:
            raise ApiError("Not found", ErrorKind.NOT_FOUND)
        logger.info("Deleted %s %s", self._descriptor.name, document_id)
        return removed

    def _accepted(self, data: Mapping[str, Any], excluded_keys: Iterable[str]) -> Dict[str, Any]:
        """Drop excluded, internal and undeclared keys from an incoming payload."""
        declared = set(self._descriptor.field_names)
        filtered = filter_excluded_keys(data, list(excluded_keys) + list(INTERNAL_FIELDS))
        return {key: value for key, value in filtered.items() if key in declared}

    def _features(self, params: Mapping[str, str]) -> QueryFeatures:
        return QueryFeatures(
            self._repository.query(),
            params,
            self._descriptor,
            resolver=self._resolver,
            default_limit=self._default_limit,
        )
