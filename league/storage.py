"""Document storage for the league.

The league only needs a small slice of a document database: get a document
by id, query a collection by field filters, create/update/delete documents
(optionally guarded by a compare-and-swap on current field values), commit
several writes atomically, and subscribe to changes. SqliteDocumentStore
implements that slice on top of aiosqlite with one JSON table.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import aiosqlite

from .config import DATABASE_PATH, STORE_MAX_RETRIES, STORE_RETRY_BASE_SECONDS
from .errors import Conflict, InvalidData, LeagueError, NotFound, QuotaExceeded, Unavailable
from .events import Change, ChangeFeed, Subscription
from .retry import retry_unavailable

logger = logging.getLogger(__name__)

OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in")
FIELD_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple, set)):
        return [_plain(item) for item in value]
    return value


def _lookup(document: Dict[str, Any], field: str) -> Any:
    value: Any = document
    for part in field.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


@dataclass
class Filter:
    """A field comparison, e.g. Filter("status", "==", "Pending")."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in OPERATORS:
            raise InvalidData(f"Unsupported filter operator: {self.op}")
        if not FIELD_PATTERN.match(self.field):
            raise InvalidData(f"Invalid field name: {self.field}")
        self.value = _plain(self.value)

    def matches(self, document: Dict[str, Any]) -> bool:
        actual = _lookup(document, self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        if actual is None or self.value is None:
            return False
        if self.op == "<":
            return actual < self.value
        if self.op == "<=":
            return actual <= self.value
        if self.op == ">":
            return actual > self.value
        return actual >= self.value


def matches_all(filters: Sequence[Filter]) -> Callable[[Dict[str, Any]], bool]:
    return lambda document: all(condition.matches(document) for condition in filters)


@dataclass
class Write:
    """One operation of an atomic commit.

    expect maps field names to the values the stored document must still
    hold when the write is applied; a mismatch raises Conflict.
    """
    kind: str
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None
    expect: Optional[Dict[str, Any]] = None

    @classmethod
    def create(cls, collection: str, doc_id: str, data: Dict[str, Any]) -> "Write":
        return cls("create", collection, doc_id, data)

    @classmethod
    def update(cls, collection: str, doc_id: str, fields: Dict[str, Any],
               expect: Optional[Dict[str, Any]] = None) -> "Write":
        return cls("update", collection, doc_id, fields, expect)

    @classmethod
    def delete(cls, collection: str, doc_id: str, expect: Optional[Dict[str, Any]] = None) -> "Write":
        return cls("delete", collection, doc_id, None, expect)


def apply_write(current: Optional[Dict[str, Any]], write: Write) -> Optional[Dict[str, Any]]:
    """Return the document after the write, raising on a failed guard."""
    if write.expect is not None:
        if current is None:
            raise NotFound(write.collection, write.doc_id)
        for field, expected in write.expect.items():
            if _lookup(current, field) != _plain(expected):
                raise Conflict(
                    f"{write.collection}/{write.doc_id} changed: {field} is no longer {_plain(expected)!r}"
                )

    if write.kind == "create":
        if current is not None:
            raise Conflict(f"{write.collection}/{write.doc_id} already exists")
        return dict(write.data or {})
    if write.kind == "update":
        if current is None:
            raise NotFound(write.collection, write.doc_id)
        updated = dict(current)
        updated.update({key: _plain(value) for key, value in (write.data or {}).items()})
        return updated
    if write.kind == "delete":
        return None
    raise InvalidData(f"Unknown write kind: {write.kind}")


class DocumentStore(ABC):
    """Generic document store the league reads and writes through."""

    def __init__(self, max_retries: int = STORE_MAX_RETRIES,
                 retry_base_seconds: float = STORE_RETRY_BASE_SECONDS):
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self.feed = ChangeFeed()

    async def _retrying(self, label: str, operation, *args):
        return await retry_unavailable(
            f"Store {label}", operation, *args,
            max_retries=self.max_retries, base_seconds=self.retry_base_seconds,
        )

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return await self._retrying("get", self._get, collection, doc_id)

    async def query(
        self,
        collection: str,
        filters: Optional[Sequence[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        if order_by is not None and not FIELD_PATTERN.match(order_by):
            raise InvalidData(f"Invalid field name: {order_by}")
        if limit is not None and limit <= 0:
            return []
        return await self._retrying(
            "query", self._query, collection, list(filters or []), order_by, descending, limit
        )

    async def commit(self, writes: Sequence[Write]):
        """Apply all writes or none of them, then notify subscribers."""
        if not writes:
            return
        results = await self._retrying("commit", self._commit, list(writes))
        for write, document in zip(writes, results):
            self.feed.publish(Change(write.collection, write.doc_id, document))

    async def create(self, collection: str, doc_id: str, data: Dict[str, Any]):
        await self.commit([Write.create(collection, doc_id, data)])

    async def update_fields(self, collection: str, doc_id: str, fields: Dict[str, Any],
                            expect: Optional[Dict[str, Any]] = None):
        await self.commit([Write.update(collection, doc_id, fields, expect)])

    async def delete(self, collection: str, doc_id: str, expect: Optional[Dict[str, Any]] = None):
        await self.commit([Write.delete(collection, doc_id, expect)])

    def subscribe(self, collection: str, doc_id: Optional[str] = None,
                  filters: Optional[Sequence[Filter]] = None) -> Subscription:
        predicate = matches_all(list(filters)) if filters else None
        return self.feed.subscribe(collection, doc_id, predicate)

    async def close(self):
        self.feed.close()

    @abstractmethod
    async def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def _query(self, collection: str, filters: List[Filter], order_by: Optional[str],
                     descending: bool, limit: Optional[int]) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def _commit(self, writes: List[Write]) -> List[Optional[Dict[str, Any]]]:
        """Apply writes atomically and return each document's new state."""


def _translate(error: Exception) -> LeagueError:
    """Map a sqlite driver error onto the league error taxonomy."""
    if isinstance(error, aiosqlite.IntegrityError):
        return Conflict(str(error))
    message = str(error).lower()
    if isinstance(error, aiosqlite.OperationalError):
        if "full" in message:
            return QuotaExceeded(str(error))
        if "locked" in message or "busy" in message or "unable to open" in message:
            return Unavailable(str(error))
    return LeagueError(f"Database error: {error}")


class SqliteDocumentStore(DocumentStore):
    """Handles all database operations for the league."""

    def __init__(self, db_path: str = DATABASE_PATH, **kwargs):
        super().__init__(**kwargs)
        self.db_path = db_path

    def _connect(self):
        return aiosqlite.connect(self.db_path, isolation_level=None)

    async def initialize(self):
        """Initialize the database with the documents table."""
        try:
            async with self._connect() as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS documents (
                        collection TEXT NOT NULL,
                        id TEXT NOT NULL,
                        data TEXT NOT NULL,
                        PRIMARY KEY(collection, id)
                    )
                """)
        except aiosqlite.Error as e:
            raise _translate(e) from e
        logger.info(f"Document store ready at {self.db_path}")

    async def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._connect() as db:
                async with db.execute(
                    "SELECT data FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
                ) as cursor:
                    row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise _translate(e) from e
        return json.loads(row[0]) if row else None

    async def _query(self, collection: str, filters: List[Filter], order_by: Optional[str],
                     descending: bool, limit: Optional[int]) -> List[Dict[str, Any]]:
        clauses = ["collection = ?"]
        params: List[Any] = [collection]
        for condition in filters:
            column = f"json_extract(data, '$.{condition.field}')"
            if condition.op == "in":
                values = list(condition.value)
                if not values:
                    return []
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            elif condition.value is None and condition.op in ("==", "!="):
                clauses.append(f"{column} IS {'NOT ' if condition.op == '!=' else ''}NULL")
            else:
                clauses.append(f"{column} {condition.op} ?")
                params.append(condition.value)

        sql = f"SELECT data FROM documents WHERE {' AND '.join(clauses)}"
        if order_by:
            sql += f" ORDER BY json_extract(data, '$.{order_by}') {'DESC' if descending else 'ASC'}, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        try:
            async with self._connect() as db:
                async with db.execute(sql, params) as cursor:
                    rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise _translate(e) from e
        return [json.loads(row[0]) for row in rows]

    async def _commit(self, writes: List[Write]) -> List[Optional[Dict[str, Any]]]:
        try:
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    results = await self._apply(db, writes)
                except BaseException:
                    await db.execute("ROLLBACK")
                    raise
                await db.execute("COMMIT")
        except aiosqlite.Error as e:
            raise _translate(e) from e
        return results

    async def _apply(self, db, writes: List[Write]) -> List[Optional[Dict[str, Any]]]:
        # Later writes in the same commit see earlier ones.
        pending: Dict[tuple, Optional[Dict[str, Any]]] = {}
        results = []
        for write in writes:
            key = (write.collection, write.doc_id)
            if key in pending:
                current = pending[key]
            else:
                async with db.execute(
                    "SELECT data FROM documents WHERE collection = ? AND id = ?", key
                ) as cursor:
                    row = await cursor.fetchone()
                current = json.loads(row[0]) if row else None

            document = apply_write(current, write)
            if document is None:
                await db.execute("DELETE FROM documents WHERE collection = ? AND id = ?", key)
            else:
                await db.execute(
                    "INSERT OR REPLACE INTO documents (collection, id, data) VALUES (?, ?, ?)",
                    (write.collection, write.doc_id, json.dumps(document)),
                )
            pending[key] = document
            results.append(document)
        return results

