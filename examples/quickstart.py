"""
mneme quickstart: store notes, link them, ask questions, watch the cache.

This example uses a canned generation backend so you can run it without any
API keys. In production, you'd swap it for a real provider (see the
GenerationBackend protocol in mneme/protocols.py, or mneme.server.providers).

    python examples/quickstart.py
"""

import tempfile
from pathlib import Path

import mneme
from mneme.config import MnemeConfig


# -- Step 0: Implement the generation protocol ------------------------------
# mneme doesn't bundle a model. You bring your own.

class EchoGenerator:
    """Answers with the first note line of the prompt. Good enough for a demo."""

    def __init__(self):
        self.calls = 0

    def complete(self, prompt: str) -> str:
        self.calls += 1
        for line in prompt.splitlines():
            if line.startswith("- ") and not line.startswith("- (related)"):
                return f"From your notes: {line[2:]}"
        return "I don't have enough information in your memories to answer that."


# -- Step 1: Initialize mneme -----------------------------------------------

with tempfile.TemporaryDirectory() as tmp:
    db_path = Path(tmp) / "demo.db"
    generator = EchoGenerator()

    # Intent expansion needs a model that returns search terms; off for the demo
    config = MnemeConfig(db_path=db_path, intent_expansion_enabled=False)
    mneme.init(config, generator=generator)

    # -- Step 2: Store some notes -------------------------------------------

    from mneme.core.graph import SqliteRelationshipStore
    from mneme.core.store import SqliteMemoryStore

    notes = SqliteMemoryStore(db_path)
    edges = SqliteRelationshipStore(db_path)

    ownership = notes.add_note(
        "alice",
        "Rust ownership",
        "Every value in Rust has a single owner. When the owner goes out of scope the value is dropped.",
        importance=8,
    )
    borrowing = notes.add_note(
        "alice",
        "Borrow checker",
        "References must never outlive the data they point to. Mutable borrows are exclusive.",
        importance=7,
    )
    notes.add_note("alice", "Sourdough", "Feed the starter twice a day and keep it warm.", importance=3)
    notes.add_note("bob", "Rust ownership (Bob)", "Bob's private notes on Rust ownership.", importance=9)

    edges.add_edge(ownership, borrowing)
    print("Stored 4 notes and 1 relationship.\n")

    # -- Step 3: Ask ---------------------------------------------------------

    pipeline = mneme.get_pipeline()

    first = pipeline.ask("What did I learn about Rust ownership?", owner_id="alice")
    print(f"Q: {first.question}")
    print(f"A: {first.answer}")
    print(f"   confidence={first.confidence:.2f} cached={first.cached}")
    for source in first.sources:
        print(f"   source: {source.title} ({source.score:.2f})")
    print(f"   related: {first.related_note_ids}\n")

    # -- Step 4: Ask again, rephrased ---------------------------------------
    # Same intent, same retrieved notes: served from the semantic cache.

    second = pipeline.ask("Tell me about Rust's ownership model", owner_id="alice")
    print(f"Q: {second.question}")
    print(f"A: {second.answer}")
    print(f"   cached={second.cached}, generator calls so far: {generator.calls}\n")

    # -- Step 5: Cache administration ---------------------------------------

    from mneme.core.pipeline import answer_namespace

    namespace = answer_namespace("alice")
    print(f"Cache stats for {namespace}: {pipeline.cache_stats(namespace)}")
    print(f"Cleared {pipeline.clear_cache(namespace)} cache keys.")

    mneme.shutdown()
