import json
import logging
import re
import sqlite3
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import uuid4

from ...core.errors import DuplicateKeyError
from ...domain.models.entity import VERSION_FIELD, EntityDescriptor
from ...domain.ports.persistence import Condition, Document

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_COLUMNS = ("id", "created_at", "updated_at", "version")
_OPERATORS = {"eq": "=", "ne": "!=", "gt": ">", "gte": ">=", "lt": "<", "lte": "<="}


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


def _timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return _timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return _encode_value(value)
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return str(value)


def _now() -> str:
    return _timestamp(datetime.now(tz=timezone.utc))


class SQLiteDocumentStore:
    """SQLite-backed document store: one table per collection, JSON bodies queried through json_extract."""

    def __init__(self, path: Path) -> None:
        if str(path) != ":memory:":
            path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._collections: Dict[str, "SQLiteCollection"] = {}

    def collection(self, descriptor: EntityDescriptor) -> "SQLiteCollection":
        existing = self._collections.get(descriptor.collection)
        if existing is not None:
            return existing
        collection = SQLiteCollection(self._conn, self._lock, descriptor)
        self._collections[descriptor.collection] = collection
        return collection

    def get(self, collection: str) -> Optional["SQLiteCollection"]:
        return self._collections.get(collection)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class SQLiteCollection:
    """Repository over a single collection table."""

    def __init__(self, conn: sqlite3.Connection, lock: threading.RLock, descriptor: EntityDescriptor) -> None:
        self._conn = conn
        self._lock = lock
        self.descriptor = descriptor
        self.table = _check_identifier(descriptor.collection)
        self._hidden = set(descriptor.hidden_fields)
        self._datetime_fields = set(descriptor.datetime_fields)
        self._unique_indexes: Dict[str, str] = {}
        self._initialize()

    def _initialize(self) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS "{self.table}" (
                    id TEXT PRIMARY KEY,
                    body TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            self._conn.execute(
                f'CREATE INDEX IF NOT EXISTS "idx_{self.table}_created_at" ON "{self.table}"(created_at)'
            )
            for field in self.descriptor.unique_fields:
                index = f"ux_{self.table}_{_check_identifier(field)}"
                self._conn.execute(
                    f'CREATE UNIQUE INDEX IF NOT EXISTS "{index}" '
                    f"ON \"{self.table}\"(json_extract(body, '$.{field}'))"
                )
                self._unique_indexes[index] = field

    # Reads ---------------------------------------------------------------
    def find_by_id(self, document_id: str, *, include_hidden: bool = False) -> Optional[Document]:
        return self.find_one([("id", "eq", document_id)], include_hidden=include_hidden)

    def find_by_ids(self, document_ids: Sequence[str]) -> List[Document]:
        if not document_ids:
            return []
        found = {doc["id"]: doc for doc in self.query().where("id", "in", list(document_ids)).all()}
        return [found[item] for item in document_ids if item in found]

    def find_one(self, conditions: Sequence[Condition], *, include_hidden: bool = False) -> Optional[Document]:
        query = self.query(include_hidden=include_hidden)
        for field, operator, value in conditions:
            query.where(field, operator, value)
        return query.first()

    def query(self, *, include_hidden: bool = False) -> "SQLiteQuery":
        return SQLiteQuery(self, include_hidden=include_hidden)

    def count(self, conditions: Sequence[Condition] = ()) -> int:
        query = self.query()
        for field, operator, value in conditions:
            query.where(field, operator, value)
        return query.count()

    # Writes --------------------------------------------------------------
    def insert(self, document: Mapping[str, Any]) -> Document:
        body = {key: value for key, value in document.items() if key not in _COLUMNS and value is not None}
        document_id = str(document.get("id") or uuid4().hex)
        now = _now()
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    f'INSERT INTO "{self.table}" (id, body, created_at, updated_at, version) '
                    "VALUES (?, ?, ?, ?, 0)",
                    (document_id, self._dumps(body), now, now),
                )
        except sqlite3.IntegrityError as exc:
            raise self._duplicate_error(exc) from exc
        logger.debug("Inserted %s document %s", self.table, document_id)
        return self._read(document_id)

    def update_fields(
        self,
        document_id: str,
        changes: Mapping[str, Any],
        *,
        expected: Sequence[Condition] = (),
    ) -> Optional[Document]:
        """
        Apply ``changes`` to one document, only if it still matches ``expected``.

        Keys mapped to ``None`` are removed from the document. The match and the
        write happen under the store lock, so a concurrent writer that changed a
        guarded field makes this call return ``None`` instead of overwriting it.
        """
        with self._lock:
            query = self.query(include_hidden=True).where("id", "eq", document_id)
            for field, operator, value in expected:
                query.where(field, operator, value)
            sql, params = query._compile("body, version")
            row = self._conn.execute(sql, params).fetchone()
            if row is None:
                return None
            body = json.loads(row["body"])
            for key, value in changes.items():
                if key in _COLUMNS:
                    continue
                if value is None:
                    body.pop(key, None)
                else:
                    body[key] = value
            try:
                with self._conn:
                    cur = self._conn.execute(
                        f'UPDATE "{self.table}" SET body = ?, updated_at = ?, version = version + 1 '
                        "WHERE id = ? AND version = ?",
                        (self._dumps(body), _now(), document_id, row["version"]),
                    )
            except sqlite3.IntegrityError as exc:
                raise self._duplicate_error(exc) from exc
            if cur.rowcount == 0:
                return None
            return self._read(document_id)

    def delete(self, document_id: str) -> Optional[Document]:
        with self._lock:
            existing = self._read(document_id)
            if existing is None:
                return None
            with self._conn:
                self._conn.execute(f'DELETE FROM "{self.table}" WHERE id = ?', (document_id,))
        return existing

    def delete_where(self, conditions: Sequence[Condition]) -> int:
        query = self.query(include_hidden=True)
        for field, operator, value in conditions:
            query.where(field, operator, value)
        where_sql, params = query._where_clause()
        with self._lock, self._conn:
            cur = self._conn.execute(f'DELETE FROM "{self.table}"{where_sql}', params)
        return cur.rowcount

    # Helpers -------------------------------------------------------------
    def expression(self, field: str) -> Tuple[str, List[Any]]:
        if field in _COLUMNS:
            return field, []
        return "json_extract(body, ?)", [f"$.{_check_identifier(field)}"]

    def to_document(self, row: sqlite3.Row, include_hidden: bool = False) -> Document:
        body: Dict[str, Any] = json.loads(row["body"])
        document: Document = {"id": row["id"]}
        document.update(body)
        document["created_at"] = row["created_at"]
        document["updated_at"] = row["updated_at"]
        if include_hidden:
            document[VERSION_FIELD] = row["version"]
        else:
            for name in self._hidden:
                document.pop(name, None)
        for name in self._datetime_fields:
            value = document.get(name)
            if isinstance(value, str):
                document[name] = datetime.fromisoformat(value)
        return document

    def _read(self, document_id: str) -> Optional[Document]:
        with self._lock:
            row = self._conn.execute(
                f'SELECT id, body, created_at, updated_at, version FROM "{self.table}" WHERE id = ?',
                (document_id,),
            ).fetchone()
        return self.to_document(row) if row else None

    def _dumps(self, body: Mapping[str, Any]) -> str:
        encoded = {key: _encode_value(value) for key, value in body.items()}
        return json.dumps(encoded, default=_json_default, ensure_ascii=False)

    def _duplicate_error(self, exc: sqlite3.IntegrityError) -> Exception:
        message = str(exc)
        for index, field in self._unique_indexes.items():
            if index in message:
                return DuplicateKeyError(self.table, field)
        if "UNIQUE" in message and "id" in message:
            return DuplicateKeyError(self.table, "id")
        return exc


class SQLiteQuery:
    """Chainable query over a collection; every builder method returns the same instance."""

    def __init__(self, collection: SQLiteCollection, include_hidden: bool = False) -> None:
        self._collection = collection
        self._include_hidden = include_hidden
        self._clauses: List[str] = []
        self._params: List[Any] = []
        self._order: List[Tuple[str, List[Any], bool]] = []
        self._skip = 0
        self._limit: Optional[int] = None
        self._fields: Optional[List[str]] = None

    def where(self, field: str, operator: str, value: Any) -> "SQLiteQuery":
        expr, expr_params = self._collection.expression(field)
        if operator == "exists":
            self._clauses.append(f"{expr} IS {'NOT ' if value else ''}NULL")
            self._params.extend(expr_params)
        elif operator == "in":
            values = [_encode_value(item) for item in value]
            if not values:
                self._clauses.append("0")
                return self
            placeholders = ", ".join("?" for _ in values)
            self._clauses.append(f"{expr} IN ({placeholders})")
            self._params.extend(expr_params + values)
        elif operator in _OPERATORS:
            if value is None and operator in ("eq", "ne"):
                self._clauses.append(f"{expr} IS {'NOT ' if operator == 'ne' else ''}NULL")
                self._params.extend(expr_params)
            elif operator == "ne":
                self._clauses.append(f"({expr} IS NULL OR {expr} != ?)")
                self._params.extend(expr_params + expr_params + [_encode_value(value)])
            else:
                self._clauses.append(f"{expr} {_OPERATORS[operator]} ?")
                self._params.extend(expr_params + [_encode_value(value)])
        else:
            raise ValueError(f"Unsupported operator: {operator}")
        return self

    def where_any_contains(self, fields: Sequence[str], term: str) -> "SQLiteQuery":
        if not fields:
            return self
        pattern = "%" + term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        parts: List[str] = []
        for field in fields:
            expr, expr_params = self._collection.expression(field)
            parts.append(f"lower({expr}) LIKE ? ESCAPE '\\'")
            self._params.extend(expr_params + [pattern])
        self._clauses.append("(" + " OR ".join(parts) + ")")
        return self

    def order_by(self, field: str, descending: bool = False) -> "SQLiteQuery":
        expr, expr_params = self._collection.expression(field)
        self._order.append((expr, expr_params, descending))
        return self

    def skip(self, count: int) -> "SQLiteQuery":
        self._skip = max(count, 0)
        return self

    def limit(self, count: int) -> "SQLiteQuery":
        self._limit = max(count, 0)
        return self

    def select(self, fields: Optional[Iterable[str]]) -> "SQLiteQuery":
        self._fields = list(fields) if fields is not None else None
        return self

    def count(self) -> int:
        where_sql, params = self._where_clause()
        with self._collection._lock:
            row = self._collection._conn.execute(
                f'SELECT COUNT(*) AS total FROM "{self._collection.table}"{where_sql}', params
            ).fetchone()
        return int(row["total"])

    def all(self) -> List[Document]:
        sql, params = self._compile("id, body, created_at, updated_at, version")
        order_sql, order_params = self._order_clause()
        sql += order_sql
        params += order_params
        if self._limit is not None or self._skip:
            sql += " LIMIT ? OFFSET ?"
            params += [self._limit if self._limit is not None else -1, self._skip]
        with self._collection._lock:
            rows = self._collection._conn.execute(sql, params).fetchall()
        return [self._project(self._collection.to_document(row, self._include_hidden)) for row in rows]

    def first(self) -> Optional[Document]:
        self._limit = 1
        results = self.all()
        return results[0] if results else None

    def _where_clause(self) -> Tuple[str, List[Any]]:
        if not self._clauses:
            return "", list(self._params)
        return " WHERE " + " AND ".join(self._clauses), list(self._params)

    def _compile(self, columns: str) -> Tuple[str, List[Any]]:
        where_sql, params = self._where_clause()
        return f'SELECT {columns} FROM "{self._collection.table}"{where_sql}', params

    def _order_clause(self) -> Tuple[str, List[Any]]:
        parts: List[str] = []
        params: List[Any] = []
        for expr, expr_params, descending in self._order:
            parts.append(f"{expr} {'DESC' if descending else 'ASC'}")
            params.extend(expr_params)
        parts.append("rowid ASC")
        return " ORDER BY " + ", ".join(parts), params

    def _project(self, document: Document) -> Document:
        if self._fields is None:
            return document
        keep = set(self._fields) | {"id"}
        return {key: value for key, value in document.items() if key in keep}
