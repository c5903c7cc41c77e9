"""Tests for the relationship store and graph context expansion."""

import pytest

from mneme.core.graph import SqliteRelationshipStore, expand_context
from mneme.core.store import SqliteMemoryStore
from mneme.models import Edge, Note, RelationType, ScoredNote


# ============================================================================
# MOCK COLLABORATORS
# ============================================================================

class CountingMemoryStore:
    """In-memory notes; counts batch lookups."""

    def __init__(self, notes):
        self.notes = {n.id: n for n in notes}
        self.batch_calls = 0

    def find_by_ids(self, note_ids):
        self.batch_calls += 1
        return [self.notes[i] for i in note_ids if i in self.notes]

    def find_by_id(self, note_id):
        return self.notes.get(note_id)

    def find_active_by_owner_ranked(self, owner_id, search_expr, limit):
        return []

    def find_active_by_owner_matching(self, owner_id, needle, limit):
        return []


class CountingRelationshipStore:
    def __init__(self, edges):
        self.edges = edges
        self.calls = 0

    def find_all_touching(self, note_ids):
        self.calls += 1
        return [e for e in self.edges if e.source_id in note_ids or e.target_id in note_ids]


class FailingRelationshipStore:
    def find_all_touching(self, note_ids):
        raise ConnectionError("graph store down")


def _note(note_id, owner="alice", archived=False):
    return Note(id=note_id, owner_id=owner, title=note_id.title(), body=f"body of {note_id}", archived=archived)


def _edge(source, target, strength=1.0):
    return Edge(id=f"e_{source}_{target}", source_id=source, target_id=target, strength=strength)


# ============================================================================
# expand_context (fake stores)
# ============================================================================

class TestExpandContext:
    def setup_method(self):
        self.notes = [
            _note("a"), _note("b"), _note("c"), _note("d"),
            _note("archived", archived=True),
            _note("foreign", owner="bob"),
        ]
        self.edges = [
            _edge("a", "b"),
            _edge("c", "a", strength=0.2),  # reverse direction
            _edge("a", "archived"),
            _edge("b", "foreign"),
            _edge("a", "b"),  # duplicate link
            _edge("c", "d"),  # two hops away
        ]
        self.memory = CountingMemoryStore(self.notes)
        self.graph = CountingRelationshipStore(self.edges)

    def test_both_directions_flat_decay(self):
        seeds = [ScoredNote(self.memory.notes["a"], 0.9)]
        expanded = expand_context(seeds, "alice", self.memory, self.graph, decay=0.5)
        assert [s.note.id for s in expanded] == ["b", "c"]
        assert all(s.score == 0.5 for s in expanded)

    def test_disjoint_from_seeds(self):
        seeds = [ScoredNote(self.memory.notes["a"], 0.9), ScoredNote(self.memory.notes["b"], 0.8)]
        expanded = expand_context(seeds, "alice", self.memory, self.graph)
        seed_ids = {s.note.id for s in seeds}
        assert seed_ids.isdisjoint({s.note.id for s in expanded})
        assert [s.note.id for s in expanded] == ["c"]

    def test_filters_owner_and_archived(self):
        seeds = [ScoredNote(self.memory.notes["a"], 0.9), ScoredNote(self.memory.notes["b"], 0.8)]
        ids = {s.note.id for s in expand_context(seeds, "alice", self.memory, self.graph)}
        assert "archived" not in ids
        assert "foreign" not in ids

    def test_two_round_trips_regardless_of_seed_count(self):
        seeds = [ScoredNote(n, 0.5) for n in self.notes[:4]]
        expand_context(seeds, "alice", self.memory, self.graph)
        assert self.graph.calls == 1
        assert self.memory.batch_calls == 1

    def test_no_seeds(self):
        assert expand_context([], "alice", self.memory, self.graph) == []
        assert self.graph.calls == 0

    def test_store_failure_degrades_to_empty(self):
        seeds = [ScoredNote(self.memory.notes["a"], 0.9)]
        assert expand_context(seeds, "alice", self.memory, FailingRelationshipStore()) == []


# ============================================================================
# SqliteRelationshipStore
# ============================================================================

@pytest.fixture
def sqlite_stores(tmp_path):
    db_path = tmp_path / "graph.db"
    return SqliteMemoryStore(db_path), SqliteRelationshipStore(db_path)


class TestSqliteRelationshipStore:
    def test_add_and_find_touching(self, sqlite_stores):
        notes, graph = sqlite_stores
        a = notes.add_note("alice", "A", "first")
        b = notes.add_note("alice", "B", "second")
        c = notes.add_note("alice", "C", "third")
        e1 = graph.add_edge(a, b, RelationType.SUPPORTS, strength=0.7)
        e2 = graph.add_edge(c, a)

        edges = graph.find_all_touching({a})
        assert {e.id for e in edges} == {e1, e2}
        supports = next(e for e in edges if e.id == e1)
        assert supports.relation_type is RelationType.SUPPORTS
        assert supports.strength == pytest.approx(0.7)
        assert supports.other_end(a) == b
        assert graph.find_all_touching(set()) == []

    def test_strength_clamped(self, sqlite_stores):
        notes, graph = sqlite_stores
        a = notes.add_note("alice", "A", "first")
        b = notes.add_note("alice", "B", "second")
        graph.add_edge(a, b, strength=3.0)
        assert graph.find_all_touching({a})[0].strength == 1.0

    @pytest.mark.parametrize("case", ["self", "missing", "cross_owner", "archived"])
    def test_add_edge_rejects_invalid_links(self, sqlite_stores, case):
        notes, graph = sqlite_stores
        a = notes.add_note("alice", "A", "first")
        b = notes.add_note("alice", "B", "second")
        target = {
            "self": a,
            "missing": "note_missing",
            "cross_owner": notes.add_note("bob", "Bob", "bob's"),
            "archived": b,
        }[case]
        if case == "archived":
            notes.archive_note(b)
        with pytest.raises(ValueError):
            graph.add_edge(a, target)

    def test_expansion_end_to_end(self, sqlite_stores):
        notes, graph = sqlite_stores
        a = notes.add_note("alice", "Rust ownership", "owners and moves")
        b = notes.add_note("alice", "Borrow checker", "references")
        c = notes.add_note("alice", "Lifetimes", "annotations")
        graph.add_edge(a, b)
        graph.add_edge(b, c)
        notes.archive_note(c)

        seeds = [ScoredNote(notes.find_by_id(a), 0.9)]
        expanded = expand_context(seeds, "alice", notes, graph)
        assert [s.note.id for s in expanded] == [b]
