"""
mneme Note Store (SQLite)

Default MemoryStore implementation: ranked FTS5 retrieval, substring
matching, batch lookups, plus the small write surface (add, update,
archive) that the quickstart and tests need. Graph edges live in graph.py.
"""

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from mneme.core.db import _db, _escape_like, init_db
from mneme.models import Note

logger = logging.getLogger(__name__)

# Public API input limits
MAX_TITLE_LENGTH = 500
MAX_BODY_LENGTH = 50_000

# bm25 column weights: title, body
_BM25_WEIGHTS = "2.0, 1.0"


def _parse_ts(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_note(row: sqlite3.Row) -> Note:
    return Note(
        id=row["id"],
        owner_id=row["owner_id"],
        title=row["title"],
        body=row["body"],
        importance=row["importance"],
        archived=bool(row["archived"]),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _clamp_importance(value) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        return 5
    return max(1, min(10, result))


class SqliteMemoryStore:
    """MemoryStore backed by a SQLite file with an FTS5 index."""

    def __init__(self, db_path: Path, initialize: bool = True):
        self.db_path = Path(db_path)
        if initialize:
            init_db(self.db_path)

    # ------------------------------------------------------------------
    # Reads (MemoryStore protocol)
    # ------------------------------------------------------------------

    def find_active_by_owner_ranked(
        self, owner_id: str, search_expr: str, limit: int
    ) -> list[tuple[Note, float]]:
        """
        Ranked FTS5 query scoped to owner and archived = 0.

        bm25() is negative (lower is better); it is mapped into [0, 1) with
        r / (1 + r) so it can be compared against cosine similarity.
        sqlite3.OperationalError from a malformed expression propagates.
        """
        if not search_expr or not search_expr.strip():
            raise ValueError("empty search expression")

        with _db(self.db_path) as db:
            rows = db.execute(f"""
                SELECT n.id, n.owner_id, n.title, n.body, n.importance,
                       n.archived, n.created_at, n.updated_at,
                       bm25(notes_fts, {_BM25_WEIGHTS}) AS bm25_score
                FROM notes_fts f
                JOIN notes n ON f.rowid = n.rowid
                WHERE notes_fts MATCH ?
                AND n.owner_id = ?
                AND n.archived = 0
                ORDER BY bm25(notes_fts, {_BM25_WEIGHTS}), n.importance DESC
                LIMIT ?
            """, (search_expr, owner_id, limit)).fetchall()

        results = []
        for row in rows:
            raw = max(0.0, -(row["bm25_score"] or 0.0))
            results.append((_row_to_note(row), raw / (1.0 + raw)))
        return results

    def find_active_by_owner_matching(
        self, owner_id: str, needle: str, limit: int
    ) -> list[Note]:
        pattern = f"%{_escape_like(needle.lower())}%"
        with _db(self.db_path) as db:
            rows = db.execute("""
                SELECT id, owner_id, title, body, importance, archived,
                       created_at, updated_at
                FROM notes
                WHERE owner_id = ? AND archived = 0
                AND (LOWER(title) LIKE ? ESCAPE '\\' OR LOWER(body) LIKE ? ESCAPE '\\')
                ORDER BY importance DESC, created_at DESC
                LIMIT ?
            """, (owner_id, pattern, pattern, limit)).fetchall()
        return [_row_to_note(r) for r in rows]

    def find_by_ids(self, note_ids: Iterable[str]) -> list[Note]:
        ids = list(dict.fromkeys(note_ids))
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        with _db(self.db_path) as db:
            rows = db.execute(f"""
                SELECT id, owner_id, title, body, importance, archived,
                       created_at, updated_at
                FROM notes
                WHERE id IN ({placeholders})
            """, ids).fetchall()
        return [_row_to_note(r) for r in rows]

    def find_by_id(self, note_id: str) -> Optional[Note]:
        found = self.find_by_ids([note_id])
        return found[0] if found else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add_note(
        self,
        owner_id: str,
        title: str,
        body: str,
        importance: int = 5,
    ) -> str:
        """Insert a note and return its id."""
        if not owner_id:
            raise ValueError("owner_id is required")
        note_id = f"note_{uuid.uuid4().hex[:12]}"
        now = datetime.now(timezone.utc).isoformat()

        with _db(self.db_path) as db:
            db.execute("""
                INSERT INTO notes (id, owner_id, title, body, importance, archived, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?)
            """, (
                note_id,
                owner_id,
                title[:MAX_TITLE_LENGTH],
                body[:MAX_BODY_LENGTH],
                _clamp_importance(importance),
                now,
                now,
            ))
            db.commit()
        return note_id

    def update_note(
        self,
        note_id: str,
        title: Optional[str] = None,
        body: Optional[str] = None,
        importance: Optional[int] = None,
    ) -> bool:
        """
        Update mutable fields. Archived notes are read-only.

        Returns False if the note does not exist; raises ValueError if archived.
        """
        note = self.find_by_id(note_id)
        if note is None:
            return False
        if note.archived:
            raise ValueError(f"Note {note_id} is archived and read-only")

        with _db(self.db_path) as db:
            db.execute("""
                UPDATE notes
                SET title = ?, body = ?, importance = ?, updated_at = ?
                WHERE id = ?
            """, (
                (title if title is not None else note.title)[:MAX_TITLE_LENGTH],
                (body if body is not None else note.body)[:MAX_BODY_LENGTH],
                _clamp_importance(importance if importance is not None else note.importance),
                datetime.now(timezone.utc).isoformat(),
                note_id,
            ))
            db.commit()
        return True

    def archive_note(self, note_id: str) -> bool:
        """Mark a note archived. Returns True if a row changed."""
        with _db(self.db_path) as db:
            cursor = db.execute(
                "UPDATE notes SET archived = 1, updated_at = ? WHERE id = ? AND archived = 0",
                (datetime.now(timezone.utc).isoformat(), note_id),
            )
            db.commit()
            changed = cursor.rowcount > 0
        if changed:
            logger.info("Archived note %s", note_id)
        return changed
