"""SQLite document store wrapper with CRUD, compare-and-swap, and transactions."""

import asyncio
import json
import logging
import re
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from lvtodo.core.clock import to_iso
from lvtodo.core.config import settings
from lvtodo.core.schema import JSON_FIELDS, init_schema


logger = logging.getLogger(__name__)


class DatabaseError(RuntimeError):
    """Store operation failed for a reason other than a missing record."""


class RecordNotFoundError(KeyError):
    """Record with the given id does not exist in the collection."""


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def _validate_field_name(field: str) -> None:
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", field):
        msg = f"Invalid field name: {field}"
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter queries via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _decode_record(collection: str, record: dict[str, Any]) -> dict[str, Any]:
    """Convert integer ids to strings and decode JSON document columns."""
    json_fields = JSON_FIELDS.get(collection, frozenset())

    converted = record.copy()
    for key, value in converted.items():
        if isinstance(value, int) and (key == "id" or key.endswith("_id")):
            converted[key] = str(value)
        elif key in json_fields and isinstance(value, str):
            converted[key] = json.loads(value)
    return converted


def _encode_value(val: Any) -> Any:  # noqa: ANN401
    if isinstance(val, Enum):
        return val.value
    if isinstance(val, datetime):
        return to_iso(val)
    if isinstance(val, dict | list | tuple | set | frozenset):
        return json.dumps(sorted(val) if isinstance(val, set | frozenset) else val)
    return val


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str | int | float | bool | None:
    """Parse a string value to the appropriate Python type for SQLite."""
    if is_like:
        return f"%{value.replace('%', '').replace('_', '')}%"

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


# Double-quoted values are JSON string literals (what sanitize_param emits); single-quoted values are raw
_COMPARISON = re.compile(r"""^(\w+)\s*(!=|>=|<=|=|>|<|~)\s*(?:"((?:[^"\\]|\\.)*)"|'([^']*)')$""")


def parse_comparison(comparison: str) -> tuple[str, str, str]:
    """Split ``field op "value"`` into its field, operator, and unescaped value."""
    match = _COMPARISON.match(comparison.strip())
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field, op, double_quoted, single_quoted = match.groups()
    if double_quoted is None:
        return field, op, single_quoted
    try:
        return field, op, json.loads(f'"{double_quoted}"')
    except json.JSONDecodeError as e:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg) from e


def _parse_single_comparison(comparison: str) -> tuple[str, str | int | float | None]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    field, op, raw_value = parse_comparison(comparison)

    sql_op = _get_sql_operator(op)
    is_like = sql_op == "LIKE"
    value = _parse_value(raw_value, is_like=is_like)

    return f"{field} {sql_op} ?", value


def _parse_or_group(or_group: str) -> tuple[str, list[str | int | float | None]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]  # Remove parentheses
    or_conditions = []
    or_params = []

    for part in split_top_level(inner, "||"):
        cond, value = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.append(value)

    return f"({' OR '.join(or_conditions)})", or_params


def split_top_level(expression: str, separator: str) -> list[str]:
    """Split on ``separator`` outside parenthesized groups and quoted values."""
    parts = []
    current = ""
    paren_depth = 0
    quote: str | None = None
    i = 0

    while i < len(expression):
        char = expression[i]
        if quote is not None:
            if char == "\\" and quote == '"':
                current += expression[i : i + 2]
                i += 2
                continue
            if char == quote:
                quote = None
        elif char in "'\"":
            quote = char
        elif char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1
        elif paren_depth == 0 and expression.startswith(separator, i):
            parts.append(current.strip())
            current = ""
            i += len(separator)
            continue

        current += char
        i += 1

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | None]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list.

    Supported syntax: ``field = "v" && (status = "a" || status = "b") && deadline < "..."``.
    """
    if not filter_query:
        return "", []

    parts = split_top_level(filter_query, "&&")
    conditions = []
    params = []

    for raw_part in parts:
        part = raw_part.strip()

        # Handle parenthesized OR groups
        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
            conditions.append(cond)
            params.extend(cond_params)
        else:
            cond, value = _parse_single_comparison(part)
            conditions.append(cond)
            params.append(value)

    return " AND ".join(conditions), params


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_write_locks: dict[tuple[int, int, str], asyncio.Lock] = {}
_db_lock = asyncio.Lock()

# Set while the current task holds the write lock inside transaction()
_active_transaction: ContextVar[aiosqlite.Connection | None] = ContextVar("_active_transaction", default=None)


def _cache_key(db_path: str | None) -> tuple[int, int, str]:
    loop = asyncio.get_running_loop()
    return (threading.get_ident(), id(loop), str(get_db_path(db_path)))


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)
    thread_id, loop_id, path_str = cache_key

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    # Create new connection with async lock to prevent races
    async with _db_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path = Path(path_str)
        path.parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode; transaction() issues BEGIN IMMEDIATE / COMMIT itself
        conn = await aiosqlite.connect(path_str, isolation_level=None)
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA journal_mode = WAL")
        await conn.execute("PRAGMA busy_timeout = 5000")

        _db_connections[cache_key] = conn
        _db_write_locks[cache_key] = asyncio.Lock()

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": path_str, "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    if cache_key not in _db_connections:
        return

    try:
        async with _db_lock:
            if cache_key in _db_connections:
                conn = _db_connections.pop(cache_key)
                _db_write_locks.pop(cache_key, None)
                await conn.close()
                logger.info("Closed SQLite connection", extra={"db_path": cache_key[2]})
    except aiosqlite.Error as e:
        logger.warning("Error closing SQLite connection", extra={"error": str(e)})


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema."""
    conn = await get_connection(db_path=db_path)
    try:
        await init_schema(conn)
    except aiosqlite.Error as e:
        logger.error("schema_init_failed", extra={"error": str(e)})
        msg = f"Failed to initialize schema: {e}"
        raise DatabaseError(msg) from e


@asynccontextmanager
async def _guarded() -> AsyncIterator[aiosqlite.Connection]:
    """Yield the connection while holding its lock unless a transaction already holds it."""
    active = _active_transaction.get()
    if active is not None:
        yield active
        return

    conn = await get_connection()
    async with _db_write_locks[_cache_key(None)]:
        yield conn


@asynccontextmanager
async def transaction() -> AsyncIterator[None]:
    """Run the enclosed store calls atomically.

    Nested calls join the outermost transaction. Any exception rolls back every
    write made inside the block and is re-raised.
    """
    if _active_transaction.get() is not None:
        yield
        return

    conn = await get_connection()
    async with _db_write_locks[_cache_key(None)]:
        token = _active_transaction.set(conn)
        try:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                await conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back")
                raise
            await conn.execute("COMMIT")
        finally:
            _active_transaction.reset(token)


def _wrap_error(*, operation: str, collection: str, error: Exception, **context: object) -> DatabaseError:
    if isinstance(error, aiosqlite.OperationalError) and "no such table" in str(error):
        logger.error("Table not found", extra={"collection": collection})
        return DatabaseError(f"Table '{collection}' does not exist. Call init_db() first.")
    logger.error(f"{operation}_failed", extra={"collection": collection, "error": str(error), **context})
    return DatabaseError(f"Failed to {operation.replace('_', ' ')} in {collection}: {error}")


async def _fetch_one(conn: aiosqlite.Connection, collection: str, record_id: str) -> dict[str, Any] | None:
    query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
    cursor = await conn.execute(query, (int(record_id),))
    row = await cursor.fetchone()
    if row is None:
        return None
    columns = [description[0] for description in cursor.description]
    return _decode_record(collection, dict(zip(columns, row, strict=True)))


def _not_found(collection: str, record_id: str) -> RecordNotFoundError:
    return RecordNotFoundError(f"Record not found in {collection}: {record_id}")


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    _validate_collection_name(collection)
    for key in data:
        _validate_field_name(key)
    try:
        columns = list(data.keys())
        columns_str = ", ".join(columns)
        placeholders_str = ", ".join("?" for _ in columns)
        values = [_encode_value(data[key]) for key in columns]

        query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated
        async with _guarded() as conn:
            cursor = await conn.execute(query, values)
            record = await _fetch_one(conn, collection, str(cursor.lastrowid))
    except aiosqlite.Error as e:
        raise _wrap_error(operation="create_record", collection=collection, error=e) from e

    logger.info("Created record", extra={"collection": collection, "record_id": record["id"] if record else None})
    return record or {}


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising RecordNotFoundError if not found."""
    _validate_collection_name(collection)
    if not str(record_id).isdigit():
        raise _not_found(collection, record_id)
    try:
        async with _guarded() as conn:
            record = await _fetch_one(conn, collection, record_id)
    except aiosqlite.Error as e:
        raise _wrap_error(operation="get_record", collection=collection, error=e, record_id=record_id) from e

    if record is None:
        raise _not_found(collection, record_id)
    logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
    return record


async def update_record(*, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
    """Update a record by ID and return the updated record."""
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)
    updated = await update_record_if(collection=collection, record_id=record_id, expected={}, data=data)
    if updated is None:
        raise _not_found(collection, record_id)
    return updated


async def update_record_if(
    *,
    collection: str,
    record_id: str,
    expected: dict[str, Any],
    data: dict[str, Any],
) -> dict[str, Any] | None:
    """Compare-and-swap update.

    Applies ``data`` only if every field in ``expected`` still holds the given
    value. Returns the updated record, or None when the comparison failed.

    Raises:
        RecordNotFoundError: If the record does not exist
    """
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)
    _validate_collection_name(collection)
    for key in (*data, *expected):
        _validate_field_name(key)
    if not str(record_id).isdigit():
        raise _not_found(collection, record_id)

    set_clause = ", ".join(f"{key} = ?" for key in data)
    where_clause = " AND ".join(["id = ?", *(f"{key} = ?" for key in expected)])
    values = [_encode_value(val) for val in data.values()]
    values.append(int(record_id))
    values.extend(_encode_value(val) for val in expected.values())

    query = f"UPDATE {collection} SET {set_clause} WHERE {where_clause}"  # noqa: S608 - names are validated
    try:
        async with _guarded() as conn:
            cursor = await conn.execute(query, values)
            record = await _fetch_one(conn, collection, record_id)
    except aiosqlite.Error as e:
        raise _wrap_error(operation="update_record", collection=collection, error=e, record_id=record_id) from e

    if record is None:
        raise _not_found(collection, record_id)
    if cursor.rowcount == 0:
        logger.info(
            "Conditional update skipped",
            extra={"collection": collection, "record_id": record_id, "expected": list(expected)},
        )
        return None

    logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
    return record


async def increment_record(
    *,
    collection: str,
    record_id: str,
    deltas: dict[str, int],
    min_values: dict[str, int] | None = None,
) -> dict[str, Any] | None:
    """Relative numeric update with an optional lower bound per field.

    Returns the updated record, or None when a bound would be violated (in
    which case nothing is written).

    Raises:
        RecordNotFoundError: If the record does not exist
    """
    _validate_collection_name(collection)
    bounds = min_values or {}
    for key in (*deltas, *bounds):
        _validate_field_name(key)
    if not str(record_id).isdigit():
        raise _not_found(collection, record_id)

    set_clause = ", ".join(f"{key} = {key} + ?" for key in deltas)
    where_clause = " AND ".join(["id = ?", *(f"{key} + ? >= ?" for key in bounds)])
    values: list[int] = list(deltas.values())
    values.append(int(record_id))
    for key, minimum in bounds.items():
        values.extend([deltas.get(key, 0), minimum])

    query = f"UPDATE {collection} SET {set_clause} WHERE {where_clause}"  # noqa: S608 - names are validated
    try:
        async with _guarded() as conn:
            cursor = await conn.execute(query, values)
            record = await _fetch_one(conn, collection, record_id)
    except aiosqlite.Error as e:
        raise _wrap_error(operation="increment_record", collection=collection, error=e, record_id=record_id) from e

    if record is None:
        raise _not_found(collection, record_id)
    if cursor.rowcount == 0:
        return None

    logger.info("Incremented record", extra={"collection": collection, "record_id": record_id, "deltas": deltas})
    return record


async def _mutate_set(*, collection: str, record_id: str, field: str, value: str, add: bool) -> bool:
    _validate_collection_name(collection)
    _validate_field_name(field)
    async with transaction():
        record = await get_record(collection=collection, record_id=record_id)
        members: list[str] = list(record.get(field) or [])
        if add == (value in members):
            return False
        members = [*members, value] if add else [m for m in members if m != value]
        await update_record(collection=collection, record_id=record_id, data={field: members})
    return True


async def add_to_set(*, collection: str, record_id: str, field: str, value: str) -> bool:
    """Add ``value`` to a JSON array field. Returns False if it was already present."""
    return await _mutate_set(collection=collection, record_id=record_id, field=field, value=value, add=True)


async def remove_from_set(*, collection: str, record_id: str, field: str, value: str) -> bool:
    """Remove ``value`` from a JSON array field. Returns False if it was absent."""
    return await _mutate_set(collection=collection, record_id=record_id, field=field, value=value, add=False)


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising RecordNotFoundError if not found."""
    _validate_collection_name(collection)
    if not str(record_id).isdigit():
        raise _not_found(collection, record_id)
    try:
        query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        async with _guarded() as conn:
            cursor = await conn.execute(query, (int(record_id),))
    except aiosqlite.Error as e:
        raise _wrap_error(operation="delete_record", collection=collection, error=e, record_id=record_id) from e

    if cursor.rowcount == 0:
        raise _not_found(collection, record_id)
    logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})


async def delete_records(*, collection: str, filter_query: str) -> int:
    """Delete every record matching the filter and return how many were removed."""
    _validate_collection_name(collection)
    where_clause, params = parse_filter(filter_query)
    if not where_clause:
        msg = "Refusing to delete without a filter"
        raise ValueError(msg)
    try:
        query = f"DELETE FROM {collection} WHERE {where_clause}"  # noqa: S608 - collection is validated
        async with _guarded() as conn:
            cursor = await conn.execute(query, params)
    except aiosqlite.Error as e:
        raise _wrap_error(operation="delete_records", collection=collection, error=e) from e

    logger.info("Deleted records", extra={"collection": collection, "count": cursor.rowcount})
    return cursor.rowcount


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination."""
    _validate_collection_name(collection)

    where_clause = ""
    params: list[Any] = []
    if filter_query:
        where_clause, params = parse_filter(filter_query)
        where_clause = f"WHERE {where_clause}"

    # Only allow: column_name [ASC|DESC]
    safe_sort = "id ASC"
    if sort:
        sort_pattern = re.match(r"^[A-Za-z_][A-Za-z0-9_]*\s*(ASC|DESC)?$", sort.strip(), re.IGNORECASE)
        if sort_pattern:
            safe_sort = f"{sort.strip()}, id ASC"
        else:
            logger.warning("Invalid sort parameter, using default", extra={"sort": sort})

    offset = (page - 1) * per_page

    query = f"SELECT * FROM {collection} {where_clause} ORDER BY {safe_sort} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
    params.extend([per_page, offset])

    try:
        async with _guarded() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
    except aiosqlite.Error as e:
        raise _wrap_error(operation="list_records", collection=collection, error=e) from e

    columns = [description[0] for description in cursor.description]
    records = [_decode_record(collection, dict(zip(columns, row, strict=True))) for row in rows]

    logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
    return records


async def list_all_records(
    *,
    collection: str,
    filter_query: str = "",
    sort: str = "",
    page_size: int = 200,
) -> list[dict[str, Any]]:
    """Page through list_records until the result set is exhausted."""
    records: list[dict[str, Any]] = []
    page = 1
    while True:
        batch = await list_records(
            collection=collection, page=page, per_page=page_size, filter_query=filter_query, sort=sort
        )
        records.extend(batch)
        if len(batch) < page_size:
            return records
        page += 1


async def get_first_record(*, collection: str, filter_query: str) -> dict[str, Any] | None:
    """Return the first matching record, or None."""
    records = await list_records(collection=collection, filter_query=filter_query, per_page=1)
    return records[0] if records else None
