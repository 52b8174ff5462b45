"""Document store adapter backed by SQLite JSON documents."""

import asyncio
import json
import logging
import re
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, TypeVar

import aiosqlite

from .config import DEFAULT_STORE_TIMEOUT, DEFAULT_WAL_MODE, SCHEMA_VERSION
from .exceptions import DatabaseError, NotFoundError, StoreTransientError
from .interfaces import (
    FILTER_OPERATORS,
    SERVER_TIMESTAMP,
    Document,
    DocumentStore,
    OrderBy,
    QueryFilter,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Native timestamp representation: {"__ts__": <microseconds since epoch, UTC>}
TIMESTAMP_KEY = "__ts__"
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_FIELD_PATH = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_BATCH_CHUNK_SIZE = 500
_TRANSIENT_MARKERS = ("locked", "busy")


def to_native_timestamp(value: datetime) -> int:
    """Convert a datetime to microseconds since the epoch (naive values are UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    delta = value.astimezone(UTC) - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def from_native_timestamp(micros: int) -> datetime:
    """Convert microseconds since the epoch to an aware UTC datetime."""
    return _EPOCH + timedelta(microseconds=micros)


def encode_value(value: Any, now: datetime) -> Any:
    """Convert a Python value to its stored JSON representation."""
    if value is SERVER_TIMESTAMP:
        value = now
    if isinstance(value, datetime):
        return {TIMESTAMP_KEY: to_native_timestamp(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: encode_value(item, now) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(item, now) for item in value]
    return value


def decode_value(value: Any) -> Any:
    """Convert a stored JSON value back to Python, restoring datetimes."""
    if isinstance(value, dict):
        if set(value) == {TIMESTAMP_KEY} and isinstance(value[TIMESTAMP_KEY], int):
            return from_native_timestamp(value[TIMESTAMP_KEY])
        return {key: decode_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_value(item) for item in value]
    return value


def _filter_param(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_native_timestamp(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def _validate_collection(collection: str) -> None:
    segments = collection.split("/")
    if not collection or any(not segment for segment in segments) or len(segments) % 2 == 0:
        raise ValueError(f"Invalid collection path: {collection!r}")


def _validate_document_id(document_id: str) -> None:
    if not document_id or "/" in document_id:
        raise ValueError(f"Invalid document id: {document_id!r}")


def _json_path(field: str) -> str:
    if not _FIELD_PATH.match(field):
        raise ValueError(f"Invalid field path: {field!r}")
    return f"$.{field}"


class SQLiteDocumentStore(DocumentStore):
    """JSON document store on SQLite, accessed asynchronously via aiosqlite."""

    def __init__(
        self,
        db_path: str,
        timeout: float = DEFAULT_STORE_TIMEOUT,
        wal_mode: bool = DEFAULT_WAL_MODE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file (use ":memory:" for in-memory)
            timeout: Upper bound in seconds for any single store call
            wal_mode: Enable WAL mode for concurrent access
            clock: Source of server timestamps (defaults to current UTC time)
        """
        self.db_path = db_path
        self.timeout = timeout
        self.wal_mode = wal_mode
        self._clock = clock or (lambda: datetime.now(UTC))
        self._connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the connection and create the schema if needed."""
        if self._connection is None:
            try:
                self._connection = await aiosqlite.connect(self.db_path)
            except aiosqlite.Error as e:
                raise DatabaseError(f"Failed to open store at {self.db_path}: {e}") from e
            self._connection.row_factory = aiosqlite.Row

            # WAL is not supported for in-memory databases
            if self.wal_mode and self.db_path != ":memory:":
                await self._connection.execute("PRAGMA journal_mode=WAL")

        await self._create_schema()
        logger.info(f"Document store ready at {self.db_path}")

    async def _create_schema(self) -> None:
        """Create the schema version table and apply migrations."""
        async with self._get_connection() as conn:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
                """
            )

            cursor = await conn.execute("SELECT version FROM schema_version")
            result = await cursor.fetchone()
            current_version = result[0] if result else 0

            if current_version < SCHEMA_VERSION:
                await self._apply_migrations(conn, current_version)

            await conn.commit()

    async def _apply_migrations(
        self, conn: aiosqlite.Connection, from_version: int
    ) -> None:
        """
        Apply database migrations.

        Args:
            conn: Database connection
            from_version: Current schema version
        """
        if from_version < 1:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (collection, id)
                )
                """
            )
            await conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)"
            )

            await conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Get database connection context manager.

        Raises:
            DatabaseError: If connection is not initialized
        """
        if self._connection is None:
            raise DatabaseError("Document store not initialized")
        yield self._connection

    @asynccontextmanager
    async def _write_transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Hold the write lock for one transaction.

        The transaction commits when the block exits normally. On any failure,
        including cancellation by the store timeout, it is rolled back before
        the lock is released so no other writer's commit can pick it up.
        """
        async with self._write_lock, self._get_connection() as conn:
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await asyncio.shield(conn.rollback())
                raise

    async def _run(self, operation: str, call: Awaitable[T]) -> T:
        """Run a store call under the timeout, translating driver errors."""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except TimeoutError as e:
            raise StoreTransientError(
                f"Store {operation} timed out after {self.timeout}s"
            ) from e
        except aiosqlite.OperationalError as e:
            if any(marker in str(e).lower() for marker in _TRANSIENT_MARKERS):
                raise StoreTransientError(f"Store {operation} unavailable: {e}") from e
            raise DatabaseError(f"Store {operation} failed: {e}") from e
        except aiosqlite.Error as e:
            raise DatabaseError(f"Store {operation} failed: {e}") from e

    async def get_schema_version(self) -> int:
        """Get current schema version."""
        async with self._get_connection() as conn:
            cursor = await conn.execute("SELECT version FROM schema_version")
            result = await cursor.fetchone()
            return result[0] if result else 0

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def get(self, collection: str, document_id: str) -> Document | None:
        _validate_collection(collection)
        _validate_document_id(document_id)
        return await self._run("get", self._get(collection, document_id))

    async def _get(self, collection: str, document_id: str) -> Document | None:
        async with self._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_document(row)

    async def query(
        self,
        collection: str,
        filters: list[QueryFilter] | None = None,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        _validate_collection(collection)
        sql, params = self._build_query(collection, filters or [], order_by or [], limit)
        return await self._run("query", self._query(sql, params))

    async def _query(self, sql: str, params: list[Any]) -> list[Document]:
        async with self._get_connection() as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
            return [self._row_to_document(row) for row in rows]

    def _build_query(
        self,
        collection: str,
        filters: list[QueryFilter],
        order_by: list[OrderBy],
        limit: int | None,
    ) -> tuple[str, list[Any]]:
        """Translate filters and ordering into SQL over json_extract."""
        clauses = ["collection = ?"]
        params: list[Any] = [collection]

        for condition in filters:
            if condition.op not in FILTER_OPERATORS:
                raise ValueError(f"Unsupported filter operator: {condition.op!r}")
            path = _json_path(condition.field)

            if condition.value is None:
                if condition.op == "==":
                    clauses.append("json_extract(data, ?) IS NULL")
                elif condition.op == "!=":
                    clauses.append("json_extract(data, ?) IS NOT NULL")
                else:
                    raise ValueError(f"Operator {condition.op!r} cannot compare with None")
                params.append(path)
                continue

            if condition.op == "in":
                values = list(condition.value)
                if not values:
                    clauses.append("0")
                    continue
                if isinstance(values[0], datetime):
                    path = f"{path}.{TIMESTAMP_KEY}"
                placeholders = ", ".join("?" for _ in values)
                clauses.append(f"json_extract(data, ?) IN ({placeholders})")
                params.append(path)
                params.extend(_filter_param(value) for value in values)
                continue

            if isinstance(condition.value, datetime):
                path = f"{path}.{TIMESTAMP_KEY}"
            operator = "=" if condition.op == "==" else condition.op
            clauses.append(f"json_extract(data, ?) {operator} ?")
            params.extend([path, _filter_param(condition.value)])

        sql = f"SELECT id, data FROM documents WHERE {' AND '.join(clauses)}"

        ordering = []
        for clause in order_by:
            path = _json_path(clause.field)
            direction = "DESC" if clause.descending else "ASC"
            # Timestamps sort by their native value, everything else as stored
            ordering.append(
                f"COALESCE(json_extract(data, ?), json_extract(data, ?)) {direction}"
            )
            params.extend([f"{path}.{TIMESTAMP_KEY}", path])
        ordering.append("id ASC")
        sql += f" ORDER BY {', '.join(ordering)}"

        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        return sql, params

    async def create(
        self,
        collection: str,
        data: dict[str, Any],
        document_id: str | None = None,
    ) -> str:
        _validate_collection(collection)
        document_id = document_id or uuid.uuid4().hex
        _validate_document_id(document_id)
        encoded = encode_value(
            {key: value for key, value in data.items() if value is not None},
            self._clock(),
        )
        await self._run("create", self._create(collection, document_id, encoded))
        logger.debug(f"Created document {collection}/{document_id}")
        return document_id

    async def _create(
        self, collection: str, document_id: str, encoded: dict[str, Any]
    ) -> None:
        try:
            async with self._write_transaction() as conn:
                await conn.execute(
                    "INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)",
                    (collection, document_id, json.dumps(encoded)),
                )
        except aiosqlite.IntegrityError as e:
            raise DatabaseError(f"Document {collection}/{document_id} already exists") from e

    async def update(
        self, collection: str, document_id: str, partial: dict[str, Any]
    ) -> None:
        _validate_collection(collection)
        _validate_document_id(document_id)
        for key in partial:
            _json_path(key)
        await self._run("update", self._update(collection, document_id, partial))

    async def _update(
        self, collection: str, document_id: str, partial: dict[str, Any]
    ) -> None:
        async with self._write_transaction() as conn:
            cursor = await conn.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Document {collection}/{document_id} not found")

            data = json.loads(row["data"])
            now = self._clock()
            for key, value in partial.items():
                if value is None:
                    data.pop(key, None)
                else:
                    data[key] = encode_value(value, now)

            await conn.execute(
                "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
                (json.dumps(data), collection, document_id),
            )

    async def delete(self, collection: str, document_id: str) -> None:
        _validate_collection(collection)
        _validate_document_id(document_id)
        await self._run("delete", self._delete(collection, document_id))

    async def _delete(self, collection: str, document_id: str) -> None:
        async with self._write_transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Document {collection}/{document_id} not found")

    async def batch_delete(self, collection: str, document_ids: list[str]) -> int:
        _validate_collection(collection)
        for document_id in document_ids:
            _validate_document_id(document_id)
        if not document_ids:
            return 0
        return await self._run("batch delete", self._batch_delete(collection, document_ids))

    async def _batch_delete(self, collection: str, document_ids: list[str]) -> int:
        removed = 0
        async with self._write_transaction() as conn:
            for start in range(0, len(document_ids), _BATCH_CHUNK_SIZE):
                chunk = document_ids[start : start + _BATCH_CHUNK_SIZE]
                placeholders = ", ".join("?" for _ in chunk)
                cursor = await conn.execute(
                    f"DELETE FROM documents WHERE collection = ? AND id IN ({placeholders})",
                    [collection, *chunk],
                )
                removed += cursor.rowcount
        return removed

    def _row_to_document(self, row: aiosqlite.Row) -> Document:
        """
        Convert database row to Document.

        Args:
            row: Database row

        Returns:
            Document with native timestamps converted to datetimes
        """
        return Document(id=row["id"], data=decode_value(json.loads(row["data"])))
