"""SQLite schema for the document store (code-first approach)."""

import logging

import aiosqlite


logger = logging.getLogger(__name__)


# Central list of all collections in the schema
COLLECTIONS = [
    "users",
    "groups",
    "tasks",
    "wishes",
    "task_history",
]

# Columns holding JSON documents (sets, nested objects, ordered vote lists)
JSON_FIELDS: dict[str, frozenset[str]] = {
    "users": frozenset({"group_ids", "achievement_ids"}),
    "groups": frozenset({"member_ids", "settings"}),
    "tasks": frozenset({"notifications_sent"}),
    "wishes": frozenset({"approved_by", "cost_votes"}),
    "task_history": frozenset({"metadata"}),
}

_TABLES: dict[str, str] = {
    "users": """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            display_name TEXT NOT NULL,
            email TEXT NOT NULL DEFAULT '',
            points INTEGER NOT NULL DEFAULT 0 CHECK (points >= 0),
            xp INTEGER NOT NULL DEFAULT 0 CHECK (xp >= 0),
            group_ids TEXT NOT NULL DEFAULT '[]',
            achievement_ids TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL
        )
    """,
    "groups": """
        CREATE TABLE IF NOT EXISTS groups (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            invite_code TEXT NOT NULL,
            member_ids TEXT NOT NULL DEFAULT '[]',
            created_by TEXT NOT NULL,
            settings TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL
        )
    """,
    "tasks": """
        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            difficulty TEXT NOT NULL,
            points INTEGER NOT NULL,
            xp INTEGER NOT NULL,
            assigned_to TEXT NOT NULL,
            assigned_by TEXT NOT NULL,
            group_id TEXT NOT NULL,
            deadline TEXT NOT NULL,
            status TEXT NOT NULL,
            notifications_sent TEXT NOT NULL DEFAULT '{}',
            version INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT,
            confirmed_at TEXT,
            confirmed_by TEXT
        )
    """,
    "wishes": """
        CREATE TABLE IF NOT EXISTS wishes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            cost INTEGER NOT NULL DEFAULT 0,
            created_by TEXT NOT NULL,
            group_id TEXT NOT NULL,
            status TEXT NOT NULL,
            approved_by TEXT NOT NULL DEFAULT '[]',
            cost_votes TEXT NOT NULL DEFAULT '[]',
            version INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            approved_at TEXT,
            completed_at TEXT,
            cancelled_at TEXT
        )
    """,
    "task_history": """
        CREATE TABLE IF NOT EXISTS task_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            task_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            group_id TEXT NOT NULL,
            action TEXT NOT NULL,
            timestamp TEXT NOT NULL,
            metadata TEXT NOT NULL DEFAULT '{}'
        )
    """,
}

_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_groups_invite_code ON groups (invite_code)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status_deadline ON tasks (status, deadline)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_group ON tasks (group_id)",
    "CREATE INDEX IF NOT EXISTS idx_wishes_group ON wishes (group_id)",
    "CREATE INDEX IF NOT EXISTS idx_history_user_action ON task_history (user_id, action)",
]


async def init_schema(conn: aiosqlite.Connection) -> None:
    """Create all tables and indexes if they do not exist yet."""
    for collection in COLLECTIONS:
        await conn.execute(_TABLES[collection])
    for statement in _INDEXES:
        await conn.execute(statement)
    logger.info("Schema initialized", extra={"collections": COLLECTIONS})
