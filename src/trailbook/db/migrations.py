"""
Database migrations for trailbook.

Columns added after the first release are listed in PENDING_COLUMNS and
created with SQLite ALTER TABLE ADD COLUMN when absent, so running the
migrations twice is a no-op.

Called from init_db() after create_all(): fresh databases already have every
column, databases created by earlier versions get the missing ones.
"""
import logging
from typing import List, Set

from sqlalchemy import text

logger = logging.getLogger(__name__)

# (table, column, SQLite column definition), applied in order
PENDING_COLUMNS = [
    # Trip: date locking, merge provenance, cover photo
    ("trip", "dates_locked", "BOOLEAN NOT NULL DEFAULT 0"),
    ("trip", "merged_from", "JSON"),
    ("trip", "cover_photo", "VARCHAR"),
    # UserProfile: per-user home radius override
    ("userprofile", "home_radius_km", "REAL"),
    # Activity: manual entries and max speed
    ("activity", "is_manual_entry", "BOOLEAN NOT NULL DEFAULT 0"),
    ("activity", "max_speed_kmh", "REAL NOT NULL DEFAULT 0"),
]


def run_migrations(engine) -> List[str]:
    """Apply all pending schema migrations. SQLite only (uses PRAGMA table_info).

    Returns:
        "table.column" for every column that was added.
    """
    added = []
    with engine.begin() as conn:
        for table, column, definition in PENDING_COLUMNS:
            if column in _existing_columns(conn, table):
                continue
            conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {definition}"))
            logger.info("Added column %s.%s", table, column)
            added.append(f"{table}.{column}")
    return added


def _existing_columns(conn, table: str) -> Set[str]:
    return {row[1] for row in conn.execute(text(f"PRAGMA table_info({table})"))}
