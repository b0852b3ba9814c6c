"""Explicit field descriptors for entities served by the generic CRUD layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, get_args

# Bookkeeping fields managed by the store; never accepted from request bodies.
INTERNAL_FIELDS: Tuple[str, ...] = ("id", "created_at", "updated_at", "version")
VERSION_FIELD = "version"

BeforeSaveHook = Callable[[Dict[str, Any], Mapping[str, Any]], None]


@dataclass(frozen=True, slots=True)
class FieldSpec:
    name: str
    type_: Any = str
    required: bool = False
    hidden: bool = False
    searchable: bool = False
    unique: bool = False
    managed: bool = False
    default: Any = None
    default_factory: Optional[Callable[[], Any]] = None
    constraints: Dict[str, Any] = field(default_factory=dict)

    def initial_value(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return self.default


@dataclass(frozen=True, slots=True)
class Relation:
    """Reference field expanded into embedded documents on read."""

    field: str
    collection: str
    many: bool = False
    on_one: bool = True
    on_all: bool = False


@dataclass(frozen=True, slots=True)
class EntityDescriptor:
    name: str
    collection: str
    fields: Tuple[FieldSpec, ...]
    relations: Tuple[Relation, ...] = ()
    before_save: Optional[BeforeSaveHook] = None
    default_sort: str = "-created_at"

    def __post_init__(self) -> None:
        names = [spec.name for spec in self.fields]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate field names declared for {self.name}")

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    @property
    def hidden_fields(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.hidden)

    @property
    def searchable_fields(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.searchable)

    @property
    def managed_fields(self) -> Tuple[str, ...]:
        """Fields written only by server-side workflows, never from request bodies."""
        return tuple(spec.name for spec in self.fields if spec.managed)

    @property
    def unique_fields(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields if spec.unique)

    @property
    def datetime_fields(self) -> Tuple[str, ...]:
        declared = tuple(spec.name for spec in self.fields if _is_datetime(spec.type_))
        return declared + ("created_at", "updated_at")

    def get_field(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        if name in ("created_at", "updated_at"):
            return FieldSpec(name, type_=datetime)
        if name == "id":
            return FieldSpec(name)
        return None

    def is_queryable(self, name: str) -> bool:
        """Whether ``name`` may be used in filters, sorting and projections."""
        spec = self.get_field(name)
        return spec is not None and not spec.hidden and name != VERSION_FIELD

    def relation_for(self, name: str) -> Optional[Relation]:
        for relation in self.relations:
            if relation.field == name:
                return relation
        return None


def _is_datetime(type_: Any) -> bool:
    if type_ is datetime:
        return True
    return any(arg is datetime for arg in get_args(type_))
