"""
mneme Database Infrastructure

Connection management, schema initialization, migrations, and FTS5 input
helpers for the default SQLite note and relationship stores.
"""

import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)


def _apply_pragmas(db: sqlite3.Connection):
    """Apply standard SQLite pragmas for safety and concurrency."""
    db.execute("PRAGMA journal_mode=WAL")
    db.execute("PRAGMA busy_timeout=5000")
    db.execute("PRAGMA foreign_keys=ON")


def get_db(db_path: Path) -> sqlite3.Connection:
    """Open a connection with Row factory and pragmas applied.

    NOTE: Each call opens a new connection. Pipeline invocations run on
    arbitrary threadpool workers, and sqlite3 connections must not cross
    threads, so there is no shared connection.
    """
    db = sqlite3.connect(str(db_path))
    db.row_factory = sqlite3.Row
    _apply_pragmas(db)
    return db


@contextmanager
def _db(db_path: Path):
    """Context manager for database connections, ensures close on exception."""
    db = get_db(db_path)
    try:
        yield db
    finally:
        db.close()


def _ensure_migration_table(db: sqlite3.Connection):
    """Create the schema_migrations tracking table if it doesn't exist."""
    db.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            description TEXT NOT NULL,
            applied_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
    """)
    db.commit()


def run_migration(db: sqlite3.Connection, version: int, description: str, migrate_fn: Callable[[sqlite3.Connection], None]):
    """
    Run a schema migration if it hasn't been applied yet.

    Checks schema_migrations for the version. If not present, runs migrate_fn
    inside a transaction and records the version. If already applied, skips silently.
    """
    existing = db.execute(
        "SELECT version FROM schema_migrations WHERE version = ?", (version,)
    ).fetchone()
    if existing:
        return

    logger.info("Running migration %d: %s", version, description)
    try:
        migrate_fn(db)
        db.execute(
            "INSERT INTO schema_migrations (version, description) VALUES (?, ?)",
            (version, description)
        )
        db.commit()
        logger.info("Migration %d applied successfully", version)
    except Exception:
        db.rollback()
        logger.error("Migration %d failed, rolled back", version, exc_info=True)
        raise


def init_db(db_path: Path):
    """Initialize database schema."""
    with _db(db_path) as db:
        db.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                title TEXT NOT NULL,
                body TEXT NOT NULL,
                importance INTEGER NOT NULL DEFAULT 5
                    CHECK (importance BETWEEN 1 AND 10),
                archived INTEGER NOT NULL DEFAULT 0,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """)

        db.execute("""
            CREATE TABLE IF NOT EXISTS edges (
                id TEXT PRIMARY KEY,
                source_id TEXT NOT NULL,
                target_id TEXT NOT NULL,
                relation_type TEXT NOT NULL DEFAULT 'related_to',
                strength REAL NOT NULL DEFAULT 1.0
                    CHECK (strength BETWEEN 0.0 AND 1.0),
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (source_id) REFERENCES notes(id),
                FOREIGN KEY (target_id) REFERENCES notes(id)
            )
        """)

        db.execute("CREATE INDEX IF NOT EXISTS idx_notes_owner ON notes(owner_id, archived)")
        db.execute("CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(source_id)")
        db.execute("CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target_id)")

        # Full-text search for notes; title is weighted above body at query time
        db.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
                title,
                body,
                content='notes',
                content_rowid='rowid'
            )
        """)

        # Triggers to keep FTS in sync
        db.execute("""
            CREATE TRIGGER IF NOT EXISTS notes_ai AFTER INSERT ON notes BEGIN
                INSERT INTO notes_fts(rowid, title, body)
                VALUES (NEW.rowid, NEW.title, NEW.body);
            END
        """)

        db.execute("""
            CREATE TRIGGER IF NOT EXISTS notes_ad AFTER DELETE ON notes BEGIN
                INSERT INTO notes_fts(notes_fts, rowid, title, body)
                VALUES ('delete', OLD.rowid, OLD.title, OLD.body);
            END
        """)

        db.execute("""
            CREATE TRIGGER IF NOT EXISTS notes_au AFTER UPDATE ON notes BEGIN
                INSERT INTO notes_fts(notes_fts, rowid, title, body)
                VALUES ('delete', OLD.rowid, OLD.title, OLD.body);
                INSERT INTO notes_fts(rowid, title, body)
                VALUES (NEW.rowid, NEW.title, NEW.body);
            END
        """)

        db.commit()

        _ensure_migration_table(db)

        # Version 0: Mark the baseline schema as tracked
        run_migration(db, 0, "Baseline notes/edges schema", lambda _db: None)

        # Version 1: Ordering index for the substring fallback path
        def _migrate_importance_index(db: sqlite3.Connection):
            db.execute(
                "CREATE INDEX IF NOT EXISTS idx_notes_importance "
                "ON notes(owner_id, importance DESC, created_at DESC)"
            )

        run_migration(db, 1, "Importance ordering index", _migrate_importance_index)

    logger.debug("Database initialized at %s", db_path)


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards (%, _) in a value for safe use in LIKE patterns."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


_FTS5_SPECIAL_RE = re.compile(r'[\"*()^:]')
_FTS5_OPERATOR_RE = re.compile(r'\b(NEAR|NOT|AND|OR)\b', re.IGNORECASE)


def _sanitize_fts_term(text: str) -> str:
    """Strip FTS5 special syntax from a single search term.

    Removes characters that cause syntax errors (", *, (, ), ^, :) and bare
    operators. The result is meant to be wrapped in double quotes as a
    phrase, so the expression builder owns every operator in the query.
    """
    text = _FTS5_SPECIAL_RE.sub(' ', text)
    text = _FTS5_OPERATOR_RE.sub(' ', text)
    return ' '.join(text.split())
