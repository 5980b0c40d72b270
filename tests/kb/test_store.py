"""
Unit tests for knowledge_agent.kb.store
"""

from __future__ import annotations

import sqlite3
import threading

import pytest

from knowledge_agent.kb.errors import MalformedRecordError, StoreIOError
from knowledge_agent.kb.models import (
    Category,
    CodeExample,
    Command,
    CommandFlag,
    Concept,
    ErrorEntry,
    Pattern,
)
from knowledge_agent.kb.store import SCHEMA_VERSION, EntryStore


def _concept(cid: str, title: str, explanation: str, topic: str = "misc", **kw) -> Concept:
    return Concept(id=cid, topic=topic, title=title, explanation=explanation, **kw)


class TestEntryStoreBasics:
    def test_exists_false_until_created(self, tmp_path):
        path = str(tmp_path / "data" / "kb.db")
        assert EntryStore.exists(path) is False
        EntryStore(path)
        assert EntryStore.exists(path) is True

    def test_schema_version_is_current(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        assert store.schema_version() == SCHEMA_VERSION

    def test_reopen_keeps_records(self, tmp_path):
        path = str(tmp_path / "kb.db")
        EntryStore(path).upsert(Category.ERROR, ErrorEntry("E0382", "Moved", "used after move"))
        reopened = EntryStore(path)
        assert reopened.get(Category.ERROR, "E0382").title == "Moved"

    def test_migrates_v1_database(self, tmp_path):
        """A database created before when_not_to_use existed is upgraded."""
        from knowledge_agent.kb.store import _SCHEMA_V1
        path = str(tmp_path / "old.db")
        conn = sqlite3.connect(path)
        conn.executescript(_SCHEMA_V1)
        conn.execute("PRAGMA user_version = 1")
        conn.commit()
        conn.close()

        store = EntryStore(path)
        assert store.schema_version() == SCHEMA_VERSION
        store.upsert(Category.PATTERN, Pattern("p1", "Builder", "step by step",
                                               when_not_to_use="tiny structs"))
        assert store.get(Category.PATTERN, "p1").when_not_to_use == "tiny structs"

    def test_unopenable_path_raises_store_io_error(self, tmp_path):
        # A directory cannot be opened as a database file
        target = tmp_path / "is_a_dir"
        target.mkdir()
        with pytest.raises(StoreIOError) as info:
            EntryStore(str(target))
        assert info.value.db_path == str(target)


class TestEntryStoreWrites:
    def test_round_trip_every_category(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        concept = _concept(
            "ownership-move", "Move", "Values move on assignment",
            code_examples=[CodeExample("move", "let b = a;", "a is moved")],
            common_mistakes=["use after move"],
            related_concepts=["ownership-borrow"],
            tags=["ownership", "memory"],
        )
        pattern = Pattern("creational-builder", "Builder", "Chained setters",
                          template="Builder::new().build()", when_to_use="many options",
                          examples=[CodeExample("b", "x")], when_not_to_use="few fields")
        command = Command("cargo", "cargo test", "Run tests",
                          flags=[CommandFlag("--release", "optimized")],
                          examples=["cargo test -- --nocapture"])
        error = ErrorEntry("E0382", "Borrow of moved value", "Used after move",
                           example_code="let t = s; s;", fix="clone it",
                           related_errors=["E0505"])

        store.upsert(Category.CONCEPT, concept)
        store.upsert(Category.PATTERN, pattern)
        store.upsert(Category.COMMAND, command)
        store.upsert(Category.ERROR, error)

        assert store.get(Category.CONCEPT, "ownership-move") == concept
        assert store.get(Category.PATTERN, "creational-builder") == pattern
        assert store.get(Category.COMMAND, "cargo:cargo test") == command
        assert store.get(Category.ERROR, "E0382") == error

    def test_get_absent_returns_none(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        assert store.get(Category.ERROR, "E9999") is None

    def test_overwrite_same_key(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.CONCEPT, _concept("a", "First", "old text"))
        store.upsert(Category.CONCEPT, _concept("b", "Second", "other"))
        store.upsert(Category.CONCEPT, _concept("a", "First", "new text"))

        assert store.count(Category.CONCEPT) == 2
        assert store.get(Category.CONCEPT, "a").explanation == "new text"
        # Overwrite keeps the original insertion position
        assert [c.id for c in store.all(Category.CONCEPT)] == ["a", "b"]

    def test_overwrite_replaces_index_terms(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.CONCEPT, _concept("a", "Title", "lifetimes"))
        store.upsert(Category.CONCEPT, _concept("a", "Title", "traits"))
        assert store.search(Category.CONCEPT, ["lifetimes"], 10) == []
        assert [c.id for c in store.search(Category.CONCEPT, ["traits"], 10)] == ["a"]

    def test_missing_required_field_rejected(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        with pytest.raises(MalformedRecordError):
            store.upsert(Category.ERROR, ErrorEntry("E0001", "", "no title"))
        assert store.count(Category.ERROR) == 0

    def test_wrong_record_type_rejected(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        with pytest.raises(MalformedRecordError):
            store.upsert(Category.PATTERN, _concept("a", "T", "x"))

    def test_upsert_many_validates_before_writing(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        records = [
            ErrorEntry("E0001", "ok", "fine"),
            ErrorEntry("E0002", "bad", ""),
        ]
        with pytest.raises(MalformedRecordError):
            store.upsert_many(Category.ERROR, records)
        assert store.count(Category.ERROR) == 0

    def test_upsert_many_returns_count(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        n = store.upsert_many(Category.ERROR, [
            ErrorEntry("E0001", "one", "x"),
            ErrorEntry("E0002", "two", "y"),
        ])
        assert n == 2
        assert store.upsert_many(Category.ERROR, []) == 0

    def test_clear(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.CONCEPT, _concept("a", "T", "x"))
        store.clear()
        assert store.counts() == {c: 0 for c in Category}
        assert store.index_size() == 0


class TestEntryStoreSearch:
    def _ranking_store(self, tmp_path) -> EntryStore:
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.CONCEPT, _concept("c1", "Alpha", "about ownership"))
        store.upsert(Category.CONCEPT, _concept("c2", "Beta", "ownership ownership ownership"))
        store.upsert(Category.CONCEPT, _concept("c3", "Ownership", "gamma"))
        store.upsert(Category.CONCEPT, _concept("c4", "Delta", "ownership again"))
        store.upsert(Category.CONCEPT, _concept("c5", "Epsilon", "borrowing only"))
        return store

    def test_ranking_title_phrase_then_insertion(self, tmp_path):
        store = self._ranking_store(tmp_path)
        results = store.search(Category.CONCEPT, ["ownership"], 10)
        # c2 repeats the term three times but still ranks by insertion order
        assert [c.id for c in results] == ["c3", "c1", "c2", "c4"]

    def test_repeated_terms_do_not_outrank_title(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.CONCEPT, _concept("c1", "One", "about ownership"))
        store.upsert(Category.CONCEPT, _concept("c2", "Ownership", "intro"))
        store.upsert(Category.CONCEPT, _concept("c3", "Three", "ownership ownership"))
        results = store.search(Category.CONCEPT, ["ownership"], 10)
        assert [c.id for c in results] == ["c2", "c1", "c3"]

    def test_multi_term_phrase_in_title(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.CONCEPT, _concept("a", "Borrow Checker", "move semantics apply here"))
        store.upsert(Category.CONCEPT, _concept("b", "Move Semantics", "values change owner"))
        results = store.search(Category.CONCEPT, ["move", "semantics"], 10)
        assert [c.id for c in results] == ["b", "a"]

    def test_search_is_and_of_terms(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.CONCEPT, _concept("a", "Move", "ownership and move"))
        store.upsert(Category.CONCEPT, _concept("b", "Own", "ownership only"))
        results = store.search(Category.CONCEPT, ["ownership", "move"], 10)
        assert [c.id for c in results] == ["a"]

    def test_limit(self, tmp_path):
        store = self._ranking_store(tmp_path)
        assert len(store.search(Category.CONCEPT, ["ownership"], 2)) == 2
        assert store.search(Category.CONCEPT, ["ownership"], 0) == []

    def test_empty_terms(self, tmp_path):
        store = self._ranking_store(tmp_path)
        assert store.search(Category.CONCEPT, [], 10) == []

    def test_tags_are_searchable(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.CONCEPT, _concept("a", "Box", "heap pointer", tags=["smart-pointers"]))
        assert [c.id for c in store.search(Category.CONCEPT, ["smart"], 10)] == ["a"]

    def test_command_tool_filter(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.COMMAND, Command("cargo", "cargo build", "Build the package"))
        store.upsert(Category.COMMAND, Command("rustup", "rustup update", "Update and build toolchains"))
        results = store.search(Category.COMMAND, ["build"], 10, tool="CARGO")
        assert [c.command for c in results] == ["cargo build"]

    def test_search_is_deterministic(self, tmp_path):
        store = self._ranking_store(tmp_path)
        first = store.search(Category.CONCEPT, ["ownership"], 10)
        for _ in range(5):
            assert store.search(Category.CONCEPT, ["ownership"], 10) == first

    def test_concurrent_readers(self, tmp_path):
        store = self._ranking_store(tmp_path)
        expected = [c.id for c in store.search(Category.CONCEPT, ["ownership"], 10)]
        seen: list[list[str]] = []
        lock = threading.Lock()

        def _reader():
            ids = [c.id for c in store.search(Category.CONCEPT, ["ownership"], 10)]
            with lock:
                seen.append(ids)

        threads = [threading.Thread(target=_reader) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert seen == [expected] * 8


class TestEntryStoreFilter:
    def test_filter_case_insensitive_in_insertion_order(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.COMMAND, Command("cargo", "cargo test", "Run tests"))
        store.upsert(Category.COMMAND, Command("rustup", "rustup show", "Show toolchains"))
        store.upsert(Category.COMMAND, Command("cargo", "cargo build", "Build"))
        results = store.filter(Category.COMMAND, "tool", "Cargo")
        assert [c.command for c in results] == ["cargo test", "cargo build"]

    def test_filter_unknown_column(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        with pytest.raises(ValueError):
            store.filter(Category.COMMAND, "tool; DROP TABLE commands", "x")

    def test_counts_and_index_size(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.ERROR, ErrorEntry("E0382", "Moved value", "used"))
        counts = store.counts()
        assert counts[Category.ERROR] == 1
        assert counts[Category.CONCEPT] == 0
        assert store.index_size(Category.ERROR) > 0
        assert store.index_size(Category.CONCEPT) == 0

    def test_record_without_indexable_words_keeps_an_index_row(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        store.upsert(Category.PATTERN, Pattern("p1", "a", "b"))
        store.upsert(Category.COMMAND, Command("x", "y", "z"))
        assert store.index_size(Category.PATTERN) == 1
        assert store.index_size(Category.COMMAND) == 1
        assert store.search(Category.PATTERN, ["p1"], 10) == []

        # Overwriting with real words replaces the identity row
        store.upsert(Category.PATTERN, Pattern("p1", "Builder", "b"))
        assert store.index_size(Category.PATTERN) == 1
        assert [p.id for p in store.search(Category.PATTERN, ["builder"], 10)] == ["p1"]


def _index_keys(path: str, category: Category) -> set[str]:
    conn = sqlite3.connect(path)
    try:
        rows = conn.execute(
            "SELECT DISTINCT entry_key FROM search_index WHERE category = ?",
            (category.value,),
        ).fetchall()
    finally:
        conn.close()
    return {r[0] for r in rows}


class TestEntryStoreConcurrentWriters:
    WRITERS = 6
    PER_WRITER = 10

    def _run_writers(self, store: EntryStore) -> None:
        errors: list[BaseException] = []
        start = threading.Barrier(self.WRITERS)

        def _writer(n: int):
            try:
                start.wait()
                records = [
                    _concept(f"w{n}-{i}", f"w{n}x{i}", "shared concurrent text")
                    for i in range(self.PER_WRITER)
                ]
                if n % 2:
                    store.upsert_many(Category.CONCEPT, records)
                else:
                    for record in records:
                        store.upsert(Category.CONCEPT, record)
                # Every writer also overwrites one contended key
                store.upsert(Category.CONCEPT, _concept("contended", f"winner{n}", "contended"))
            except BaseException as exc:  # surfaced to the test thread below
                errors.append(exc)

        threads = [threading.Thread(target=_writer, args=(n,)) for n in range(self.WRITERS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []

    def test_counts_and_index_stay_consistent(self, tmp_path):
        path = str(tmp_path / "kb.db")
        store = EntryStore(path)
        self._run_writers(store)

        expected = self.WRITERS * self.PER_WRITER + 1
        assert store.count(Category.CONCEPT) == expected
        stored_keys = {c.id for c in store.all(Category.CONCEPT)}
        assert _index_keys(path, Category.CONCEPT) == stored_keys

        shared = store.search(Category.CONCEPT, ["shared", "concurrent"], expected)
        assert len(shared) == expected - 1
        for n in range(self.WRITERS):
            for i in range(self.PER_WRITER):
                hits = store.search(Category.CONCEPT, [f"w{n}x{i}"], 10)
                assert [c.id for c in hits] == [f"w{n}-{i}"]

    def test_contended_key_index_matches_final_record(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        self._run_writers(store)

        winner = store.get(Category.CONCEPT, "contended").title
        found = [
            n for n in range(self.WRITERS)
            if store.search(Category.CONCEPT, [f"winner{n}"], 10)
        ]
        assert [f"winner{n}" for n in found] == [winner]

        # Index size equals what a fresh store builds for the same records
        fresh = EntryStore(str(tmp_path / "fresh.db"))
        fresh.upsert_many(Category.CONCEPT, store.all(Category.CONCEPT))
        assert store.index_size(Category.CONCEPT) == fresh.index_size(Category.CONCEPT)
