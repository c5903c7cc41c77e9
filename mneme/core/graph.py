"""
mneme Note Graph

Relationship storage (SQLite) and graph-based context expansion.
Expansion batches every lookup so the cost is two round trips no matter
how many seed notes there are.
"""

import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path

from mneme.core.db import _db, init_db
from mneme.core.store import _parse_ts
from mneme.models import Edge, RelationType, ScoredNote
from mneme.protocols import MemoryStore, RelationshipStore

logger = logging.getLogger(__name__)

DEFAULT_DECAY = 0.5


def _clamp_strength(value, default: float = 1.0) -> float:
    """Clamp strength to [0.0, 1.0]. Coerce non-numeric to default."""
    try:
        result = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, result))


def _row_to_edge(row: sqlite3.Row) -> Edge:
    try:
        relation_type = RelationType(row["relation_type"])
    except ValueError:
        relation_type = RelationType.RELATED_TO
    return Edge(
        id=row["id"],
        source_id=row["source_id"],
        target_id=row["target_id"],
        relation_type=relation_type,
        strength=row["strength"],
        created_at=_parse_ts(row["created_at"]),
    )


# ============================================================================
# RELATIONSHIP STORE
# ============================================================================

class SqliteRelationshipStore:
    """RelationshipStore backed by the same SQLite file as the notes."""

    def __init__(self, db_path: Path, initialize: bool = True):
        self.db_path = Path(db_path)
        if initialize:
            init_db(self.db_path)

    def find_all_touching(self, note_ids: set[str]) -> list[Edge]:
        ids = sorted(note_ids)
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        with _db(self.db_path) as db:
            rows = db.execute(f"""
                SELECT id, source_id, target_id, relation_type, strength, created_at
                FROM edges
                WHERE source_id IN ({placeholders}) OR target_id IN ({placeholders})
                ORDER BY created_at, id
            """, ids * 2).fetchall()
        return [_row_to_edge(r) for r in rows]

    def add_edge(
        self,
        source_id: str,
        target_id: str,
        relation_type: RelationType = RelationType.RELATED_TO,
        strength: float = 1.0,
    ) -> str:
        """
        Link two notes. Both must exist, share an owner, and be active.

        Raises ValueError otherwise.
        """
        if source_id == target_id:
            raise ValueError("Cannot link a note to itself")

        with _db(self.db_path) as db:
            rows = db.execute(
                "SELECT id, owner_id, archived FROM notes WHERE id IN (?, ?)",
                (source_id, target_id),
            ).fetchall()
            found = {r["id"]: r for r in rows}
            if source_id not in found or target_id not in found:
                raise ValueError("Source or target note not found")
            source, target = found[source_id], found[target_id]
            if source["owner_id"] != target["owner_id"]:
                raise ValueError("Notes belong to different owners")
            if source["archived"] or target["archived"]:
                raise ValueError("Cannot link archived notes")

            edge_id = f"edge_{uuid.uuid4().hex[:12]}"
            db.execute("""
                INSERT INTO edges (id, source_id, target_id, relation_type, strength, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                edge_id,
                source_id,
                target_id,
                relation_type.value,
                _clamp_strength(strength),
                datetime.now(timezone.utc).isoformat(),
            ))
            db.commit()
        return edge_id


# ============================================================================
# CONTEXT EXPANSION
# ============================================================================

def expand_context(
    seeds: list[ScoredNote],
    owner_id: str,
    memory_store: MemoryStore,
    relationship_store: RelationshipStore,
    decay: float = DEFAULT_DECAY,
) -> list[ScoredNote]:
    """
    Second-degree notes reachable from the seeds through one edge.

    Flow:
    1. Seed ids form the processed set
    2. One batch fetch of every edge touching any seed
    3. Non-seed endpoints become candidates (edges are walked both ways)
    4. One batch fetch of candidate notes, filtered to owner and active
    5. Every survivor scores the flat decay constant

    The result never contains a seed id. Store failures degrade to [].
    """
    if not seeds:
        return []

    seed_ids = {s.note.id for s in seeds}
    processed = set(seed_ids)

    try:
        edges = relationship_store.find_all_touching(seed_ids)
    except Exception:
        logger.warning("Edge lookup failed, skipping context expansion", exc_info=True)
        return []

    candidates: list[str] = []
    for edge in edges:
        anchor = edge.source_id if edge.source_id in seed_ids else edge.target_id
        endpoint = edge.other_end(anchor)
        if endpoint not in processed:
            processed.add(endpoint)
            candidates.append(endpoint)

    if not candidates:
        return []

    try:
        notes = memory_store.find_by_ids(candidates)
    except Exception:
        logger.warning("Candidate note lookup failed, skipping context expansion", exc_info=True)
        return []

    by_id = {n.id: n for n in notes}
    expanded = []
    for note_id in candidates:
        note = by_id.get(note_id)
        if note is None or note.owner_id != owner_id or note.archived:
            continue
        expanded.append(ScoredNote(note=note, score=decay))

    logger.debug("Expanded %d seeds to %d related notes", len(seeds), len(expanded))
    return expanded
