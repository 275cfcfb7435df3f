"""SQLite document store client with CRUD operations and optimistic versioning.

Every collection is a table of JSON documents. Each write bumps the record's
``version`` so callers can save a whole aggregate with a compare-and-swap.
"""

import asyncio
import json
import logging
import re
import threading
import uuid
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from sitetrack.core.config import settings


logger = logging.getLogger(__name__)

# Columns stored outside the JSON body
META_FIELDS = ("id", "version", "created", "updated")


class DatabaseError(RuntimeError):
    """Raised when the document store cannot complete an operation."""


class RecordNotFoundError(KeyError):
    """Raised when a record does not exist in a collection."""


class VersionConflictError(DatabaseError):
    """Raised when a compare-and-swap write finds a different stored version."""


class InvalidFilterError(DatabaseError, ValueError):
    """Raised when a filter query does not match the filter grammar."""


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter queries via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _json_default(value: Any) -> str:  # noqa: ANN401
    """Serialize datetimes for JSON storage."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def _dump(data: dict[str, Any]) -> str:
    body = {key: value for key, value in data.items() if key not in META_FIELDS and key != "expand"}
    return json.dumps(body, default=_json_default)


def _now() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _row_to_record(row: aiosqlite.Row | tuple[Any, ...]) -> dict[str, Any]:
    record_id, version, created, updated, data = row
    return {**json.loads(data), "id": record_id, "version": version, "created": created, "updated": updated}


def get_db_path() -> Path:
    """Get the resolved SQLite database file path."""
    return Path(settings.sqlite_db_path).resolve()


def _column(field: str) -> str:
    """Map a document field to its SQL expression."""
    if field in META_FIELDS:
        return field
    return f"json_extract(data, '$.{field}')"


def _parse_value(value: str, *, op: str) -> str | int | float | bool | None:
    """Bind a filter value for SQLite according to its operator.

    Equality keeps the value as text so string identifiers made of digits still
    match, with only "true"/"false" bound as booleans. Ordering comparisons bind
    numbers as numbers.
    """
    if op == "~":
        escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"

    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    if op in {"=", "!="}:
        return value

    if value.isdigit():
        return int(value)
    if value.replace(".", "", 1).isdigit():
        return float(value)
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
        raise InvalidFilterError(msg)
    return sql_op


COMPARISON_PATTERN = re.compile(r"""^(\w+)\s*(>=|<=|!=|=|>|<|~)\s*(['"])((?:\\.|(?!\3).)*)\3$""")


def unquote_param(raw: str, quote: str) -> str:
    """Reverse the escaping applied by sanitize_param to a quoted filter value."""
    if quote == '"':
        try:
            return json.loads(f'"{raw}"', strict=False)
        except json.JSONDecodeError as e:
            msg = f"Invalid escape in filter value: {raw}"
            raise InvalidFilterError(msg) from e
    return re.sub(r"\\(.)", r"\1", raw)


def split_filter(filter_query: str, separator: str) -> list[str]:
    """Split on a separator outside quoted values and parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0
    quote: str | None = None
    escaped = False

    for char in filter_query:
        current += char
        if quote:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == quote:
                quote = None
            continue

        if char in {'"', "'"}:
            quote = char
        elif char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1
        elif paren_depth == 0 and current.endswith(separator):
            parts.append(current[: -len(separator)].strip())
            current = ""

    if quote:
        msg = f"Unterminated quote in filter: {filter_query}"
        raise InvalidFilterError(msg)
    if current.strip():
        parts.append(current.strip())

    return parts


def _parse_single_comparison(comparison: str) -> tuple[str, str | int | float | bool | None]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = COMPARISON_PATTERN.match(comparison.strip())
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise InvalidFilterError(msg)

    field, op, quote, raw_value = match.groups()
    sql_op = _get_sql_operator(op)
    value = _parse_value(unquote_param(raw_value, quote), op=op)

    if sql_op == "LIKE":
        return f"{_column(field)} LIKE ? ESCAPE '\\'", value
    return f"{_column(field)} {sql_op} ?", value


def _parse_or_group(or_group: str) -> tuple[str, list[str | int | float | bool | None]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]  # Remove parentheses
    or_conditions = []
    or_params = []

    for part in split_filter(inner, "||"):
        cond, value = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.append(value)

    return f"({' OR '.join(or_conditions)})", or_params


def parse_filter(filter_query: str) -> tuple[str, list[str | int | float | bool | None]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list.

    Raises:
        InvalidFilterError: If any comparison does not match the grammar
    """
    if not filter_query:
        return "", []

    conditions = []
    params = []

    for part in split_filter(filter_query, "&&"):
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


def _parse_sort(sort: str) -> str:
    """Translate "-field" / "+field" / "field" into an ORDER BY clause."""
    if not sort:
        return "rowid ASC"

    direction = "DESC" if sort.startswith("-") else "ASC"
    field = sort.lstrip("+-").strip()
    if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", field):
        logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
        return "rowid ASC"
    return f"{_column(field)} {direction}, rowid ASC"


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_db_lock = asyncio.Lock()


async def get_connection() -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop = asyncio.get_running_loop()
    loop_id = id(loop)
    path = get_db_path()
    cache_key = (thread_id, loop_id, str(path))

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    async with _db_lock:
        # Double-check after acquiring lock
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(path))
        await conn.execute("PRAGMA journal_mode = WAL")

        _db_connections[cache_key] = conn

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": thread_id, "loop_id": loop_id},
        )
        return conn


async def close_connection() -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    path = get_db_path()
    cache_key = (thread_id, loop_id, str(path))

    async with _db_lock:
        conn = _db_connections.pop(cache_key, None)
    if conn is None:
        return

    try:
        await conn.close()
        logger.info("Closed SQLite connection", extra={"db_path": str(path)})
    except Exception as e:
        logger.warning("Error closing SQLite connection", extra={"error": str(e), "db_path": str(path)})


async def init_db() -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from sitetrack.core import schema  # noqa: PLC0415 - schema imports this module

    await schema.init_db()


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new document and return it with its id and version."""
    if not isinstance(data, dict):
        raise DatabaseError(f"Data must be a dictionary, got {type(data)}")

    _validate_collection_name(collection)
    record_id = str(data.get("id") or uuid.uuid4().hex)
    now = _now()

    try:
        conn = await get_connection()
        query = f"INSERT INTO {collection} (id, version, created, updated, data) VALUES (?, 1, ?, ?, ?)"  # noqa: S608
        await conn.execute(query, (record_id, now, now, _dump(data)))
        await conn.commit()
    except aiosqlite.Error as e:
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to create record in {collection}: {e}"
        raise DatabaseError(msg) from e

    logger.info("Created record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single document by ID, raising RecordNotFoundError if not found."""
    _validate_collection_name(collection)

    try:
        conn = await get_connection()
        query = f"SELECT id, version, created, updated, data FROM {collection} WHERE id = ?"  # noqa: S608
        cursor = await conn.execute(query, (str(record_id),))
        row = await cursor.fetchone()
    except aiosqlite.Error as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to get record from {collection}: {e}"
        raise DatabaseError(msg) from e

    if row is None:
        msg = f"Record not found in {collection}: {record_id}"
        raise RecordNotFoundError(msg)

    logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
    return _row_to_record(row)


async def update_record(
    *,
    collection: str,
    record_id: str,
    data: dict[str, Any],
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Merge fields into a document and return the updated document.

    When ``expected_version`` is given the write is a compare-and-swap and
    raises VersionConflictError if another writer got there first.
    """
    if not isinstance(data, dict):
        raise DatabaseError(f"Data must be a dictionary, got {type(data)}")
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    current = await get_record(collection=collection, record_id=record_id)
    if expected_version is not None and current["version"] != expected_version:
        msg = (
            f"Version conflict on {collection}/{record_id}: "
            f"expected {expected_version}, found {current['version']}"
        )
        raise VersionConflictError(msg)

    merged = {**current, **data}

    try:
        conn = await get_connection()
        query = (
            f"UPDATE {collection} SET data = ?, version = version + 1, updated = ? "  # noqa: S608
            "WHERE id = ? AND version = ?"
        )
        cursor = await conn.execute(query, (_dump(merged), _now(), str(record_id), current["version"]))
        await conn.commit()
    except aiosqlite.Error as e:
        logger.error("update_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        msg = f"Failed to update record in {collection}: {e}"
        raise DatabaseError(msg) from e

    if cursor.rowcount == 0:
        msg = f"Version conflict on {collection}/{record_id}: record changed during write"
        raise VersionConflictError(msg)

    logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def _expand_record(record: dict[str, Any], expand: dict[str, str]) -> dict[str, Any]:
    """Populate referenced documents under record["expand"]."""
    expanded: dict[str, Any] = {}
    for field, target in expand.items():
        ref = record.get(field)
        if isinstance(ref, list):
            related = []
            for ref_id in ref:
                try:
                    related.append(await get_record(collection=target, record_id=str(ref_id)))
                except RecordNotFoundError:
                    continue
            expanded[field] = related
        elif ref:
            try:
                expanded[field] = await get_record(collection=target, record_id=str(ref))
            except RecordNotFoundError:
                expanded[field] = None
        else:
            expanded[field] = None
    return {**record, "expand": expanded}


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
    expand: dict[str, str] | None = None,
) -> list[dict[str, Any]]:
    """List documents with optional filtering, sorting, pagination and expansion."""
    _validate_collection_name(collection)
    for target in (expand or {}).values():
        _validate_collection_name(target)

    where_clause = ""
    params: list[Any] = []
    if filter_query:
        where_clause, params = parse_filter(filter_query)
        where_clause = f"WHERE {where_clause}"

    offset = (page - 1) * per_page
    query = (
        f"SELECT id, version, created, updated, data FROM {collection} {where_clause} "  # noqa: S608
        f"ORDER BY {_parse_sort(sort)} LIMIT ? OFFSET ?"
    )
    params.extend([per_page, offset])

    try:
        conn = await get_connection()
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
    except aiosqlite.Error as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        msg = f"Failed to list records from {collection}: {e}"
        raise DatabaseError(msg) from e

    records = [_row_to_record(row) for row in rows]
    if expand:
        records = [await _expand_record(record, expand) for record in records]

    logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
    return records
