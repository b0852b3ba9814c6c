from __future__ import annotations

import logging
import math
import re
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, get_origin

from pydantic import TypeAdapter, ValidationError

from ...core.errors import ApiError, ErrorKind
from ...domain.models.entity import VERSION_FIELD, EntityDescriptor, Relation
from ...domain.ports.persistence import Document, DocumentQuery, DocumentRepository

logger = logging.getLogger(__name__)

RESERVED_PARAMS = frozenset({"page", "limit", "sort", "fields", "search", "keyword"})
COMPARATORS = frozenset({"gt", "gte", "lt", "lte", "ne", "in"})
_BRACKET_PARAM = re.compile(r"^(?P<field>[A-Za-z_][A-Za-z0-9_]*)\[(?P<op>[a-z]+)\]$")

RepositoryResolver = Callable[[str], Optional[DocumentRepository]]


@lru_cache(maxsize=None)
def _adapter(type_: Any) -> TypeAdapter:
    return TypeAdapter(type_)


def _is_collection_type(type_: Any) -> bool:
    return get_origin(type_) in (list, tuple, set, frozenset)


class QueryFeatures:
    """
    Translates flat request query parameters into directives on a document query.

    Each transformation mutates the wrapped query and returns ``self`` so calls
    can be chained::

        features = QueryFeatures(repo.query(), params, descriptor).filter().search()
        total = features.query.count()
        documents = features.sort().paginate(total).limit_fields().populate("all").all()
    """

    def __init__(
        self,
        query: DocumentQuery,
        params: Mapping[str, str],
        descriptor: EntityDescriptor,
        *,
        resolver: Optional[RepositoryResolver] = None,
        default_limit: int = 50,
    ) -> None:
        self.query = query
        self.params = dict(params)
        self.descriptor = descriptor
        self.pagination: Optional[Dict[str, Any]] = None
        self._resolver = resolver
        self._default_limit = default_limit
        self._projection: Optional[List[str]] = None
        self._populate: List[Relation] = []

    def filter(self) -> "QueryFeatures":
        for key, raw in self.params.items():
            if key in RESERVED_PARAMS:
                continue
            field, operator = key, "eq"
            match = _BRACKET_PARAM.match(key)
            if match:
                field, operator = match.group("field"), match.group("op")
            if not self.descriptor.is_queryable(field):
                continue
            if operator not in COMPARATORS:
                raise ApiError(f"Unsupported filter operator: {operator}", ErrorKind.BAD_REQUEST)
            spec = self.descriptor.get_field(field)
            if spec is None or _is_collection_type(spec.type_):
                continue
            if operator == "in":
                value: Any = [self._coerce(field, spec.type_, item.strip()) for item in raw.split(",") if item.strip()]
            else:
                value = self._coerce(field, spec.type_, raw)
            self.query.where(field, operator, value)
        return self

    def search(self) -> "QueryFeatures":
        term = (self.params.get("search") or self.params.get("keyword") or "").strip()
        if term:
            self.query.where_any_contains(self.descriptor.searchable_fields, term)
        return self

    def sort(self) -> "QueryFeatures":
        raw = self.params.get("sort") or self.descriptor.default_sort
        for item in raw.split(","):
            item = item.strip()
            if not item:
                continue
            descending = item.startswith("-")
            field = item.lstrip("-+")
            if not self.descriptor.is_queryable(field):
                continue
            self.query.order_by(field, descending=descending)
        return self

    def paginate(self, total: int) -> "QueryFeatures":
        page = self._positive_int("page", 1)
        limit = self._positive_int("limit", self._default_limit)
        pages = math.ceil(total / limit) if limit else 0
        self.query.skip((page - 1) * limit).limit(limit)
        pagination: Dict[str, Any] = {
            "page": page,
            "limit": limit,
            "pages": pages,
            "total": total,
            "has_next": page < pages,
            "has_prev": page > 1,
        }
        if pagination["has_next"]:
            pagination["next_page"] = page + 1
        if pagination["has_prev"]:
            pagination["prev_page"] = page - 1
        self.pagination = pagination
        return self

    def limit_fields(self) -> "QueryFeatures":
        raw = self.params.get("fields")
        if raw:
            requested = [item.strip() for item in raw.split(",") if item.strip()]
            fields = [name for name in requested if self.descriptor.is_queryable(name)]
            self._projection = ["id"] + [name for name in fields if name != "id"]
        else:
            self._projection = None
        self.query.select(self._projection)
        return self

    def populate(self, scope: str = "one") -> "QueryFeatures":
        self._populate = [
            relation
            for relation in self.descriptor.relations
            if (relation.on_one if scope == "one" else relation.on_all)
        ]
        return self

    # Execution -----------------------------------------------------------
    def all(self) -> List[Document]:
        documents = self.query.all()
        for relation in self._populate:
            self._expand(relation, documents)
        return documents

    def first(self) -> Optional[Document]:
        documents = self.query.limit(1).all()
        for relation in self._populate:
            self._expand(relation, documents)
        return documents[0] if documents else None

    def _expand(self, relation: Relation, documents: List[Document]) -> None:
        if self._projection is not None and relation.field not in self._projection:
            return
        repository = self._resolver(relation.collection) if self._resolver else None
        if repository is None:
            logger.debug("No repository registered for %s; leaving references unexpanded.", relation.collection)
            return
        for document in documents:
            value = document.get(relation.field)
            if value is None:
                continue
            if relation.many:
                document[relation.field] = repository.find_by_ids([str(item) for item in value])
            else:
                document[relation.field] = repository.find_by_id(str(value))

    # Helpers -------------------------------------------------------------
    def _coerce(self, field: str, type_: Any, raw: str) -> Any:
        try:
            return _adapter(type_).validate_python(raw)
        except ValidationError as exc:
            raise ApiError(f"Invalid value for {field}: {raw}", ErrorKind.BAD_REQUEST) from exc

    def _positive_int(self, key: str, default: int) -> int:
        try:
            value = int(self.params.get(key, default))
        except (TypeError, ValueError):
            return default
        return value if value > 0 else default


def default_projection(descriptor: EntityDescriptor, document: Document) -> Document:
    hidden = set(descriptor.hidden_fields) | {VERSION_FIELD}
    return {key: value for key, value in document.items() if key not in hidden}
