from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from ..models.entity import EntityDescriptor

Document = Dict[str, Any]

# (field, operator, value) with operator one of eq, ne, gt, gte, lt, lte, in, exists
Condition = Tuple[str, str, Any]


class DocumentQuery(Protocol):
    """Mutable query builder over one collection."""

    def where(self, field: str, operator: str, value: Any) -> "DocumentQuery":
        ...

    def where_any_contains(self, fields: Sequence[str], term: str) -> "DocumentQuery":
        ...

    def order_by(self, field: str, descending: bool = False) -> "DocumentQuery":
        ...

    def skip(self, count: int) -> "DocumentQuery":
        ...

    def limit(self, count: int) -> "DocumentQuery":
        ...

    def select(self, fields: Optional[Iterable[str]]) -> "DocumentQuery":
        ...

    def count(self) -> int:
        ...

    def all(self) -> List[Document]:
        ...

    def first(self) -> Optional[Document]:
        ...


class DocumentRepository(Protocol):
    """Document CRUD over a single collection."""

    descriptor: EntityDescriptor

    def insert(self, document: Mapping[str, Any]) -> Document:
        ...

    def find_by_id(self, document_id: str, *, include_hidden: bool = False) -> Optional[Document]:
        ...

    def find_by_ids(self, document_ids: Sequence[str]) -> List[Document]:
        ...

    def find_one(self, conditions: Sequence[Condition], *, include_hidden: bool = False) -> Optional[Document]:
        ...

    def query(self, *, include_hidden: bool = False) -> DocumentQuery:
        ...

    def count(self, conditions: Sequence[Condition] = ()) -> int:
        ...

    def update_fields(
        self,
        document_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Sequence[Condition] = (),
    ) -> Optional[Document]:
        ...

    def delete(self, document_id: str) -> Optional[Document]:
        ...

    def delete_where(self, conditions: Sequence[Condition]) -> int:
        ...


class DocumentStore(Protocol):
    """Factory for per-entity repositories."""

    def collection(self, descriptor: EntityDescriptor) -> DocumentRepository:
        ...

    def get(self, collection: str) -> Optional[DocumentRepository]:
        ...

    def close(self) -> None:
        ...
