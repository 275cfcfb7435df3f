"""SQLite schema management for the document store (code-first approach)."""

import logging

from sitetrack.core import db_client


logger = logging.getLogger(__name__)


# Central list of all collections in the schema
COLLECTIONS = [
    "users",
    "buildings",
    "floor_units",
    "property_units",
    "projects",
    "leads",
    "team_lead_memberships",
    "agent_memberships",
    "quality_issues",
    "notifications",
]

# Fields looked up by filters on hot read paths
INDEXED_FIELDS: dict[str, list[str]] = {
    "projects": ["site_incharge_id", "building_id"],
    "leads": ["added_by"],
    "team_lead_memberships": ["sales_manager_id"],
    "agent_memberships": ["team_lead_id"],
    "quality_issues": ["project_id", "contractor_id"],
    "notifications": ["user_id"],
}


def get_table_schema(collection: str) -> str:
    """Return the CREATE TABLE statement for a document collection."""
    return f"""CREATE TABLE IF NOT EXISTS {collection} (
        id TEXT PRIMARY KEY,
        version INTEGER NOT NULL DEFAULT 1,
        created TEXT NOT NULL,
        updated TEXT NOT NULL,
        data TEXT NOT NULL CHECK (json_valid(data))
    )"""


def get_indexes() -> list[str]:
    """Return expression indexes over frequently filtered JSON fields."""
    return [
        f"CREATE INDEX IF NOT EXISTS idx_{collection}_{field} ON {collection} (json_extract(data, '$.{field}'))"
        for collection, fields in INDEXED_FIELDS.items()
        for field in fields
    ]


async def init_db() -> None:
    """Create all collections and indexes if they do not exist."""
    conn = await db_client.get_connection()

    for collection in COLLECTIONS:
        await conn.execute(get_table_schema(collection))

    for index in get_indexes():
        await conn.execute(index)

    await conn.commit()
    logger.info("Database schema initialized", extra={"collections": len(COLLECTIONS)})
