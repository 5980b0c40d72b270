"""
Tests for the knowledge loader.

Covers:
- parse_document: per-kind field mapping, skipped entries
- KnowledgeLoader.load_all: round-trip, idempotence, malformed documents
- ensure_loaded: first-run behaviour
- Bundled knowledge directory loads cleanly
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
import unittest

import pytest

from knowledge_agent.config import BUNDLED_KNOWLEDGE_DIR
from knowledge_agent.kb.loader import (
    DocumentError,
    KnowledgeLoader,
    LoadStats,
    discover_documents,
    ensure_loaded,
    parse_document,
)
from knowledge_agent.kb.models import Category, CodeExample, CommandFlag
from knowledge_agent.kb.store import EntryStore

CONCEPTS_DOC = {
    "modules": [
        {
            "id": "ownership",
            "concepts": [
                {
                    "name": "Move Semantics",
                    "description": "Assignment moves ownership.",
                    "rules": ["One owner at a time"],
                    "key_points": ["Copy types are duplicated"],
                    "examples": [{"title": "move", "code": "let b = a;"}],
                    "common_errors": ["use after move"],
                    "related": ["ownership-borrowing"],
                    "tags": ["memory"],
                    "difficulty": "beginner",
                },
                {"description": "no name here"},
            ],
        }
    ]
}

PATTERNS_DOC = {
    "categories": [
        {
            "name": "Creational Patterns",
            "patterns": [
                {"name": "Builder Pattern", "description": "Chained setters.",
                 "example": "Builder::new().build()"},
                {"name": "Newtype", "description": "Wrap a type.",
                 "when_to_use": "distinct units", "when_not_to_use": "never"},
            ],
        }
    ]
}

COMMANDS_DOC = {
    "sections": [
        {
            "name": "Cargo Basics",
            "commands": [
                {"command": "cargo test", "description": "Run tests",
                 "options": ["--lib - Test only the library", "--quiet"],
                 "examples": ["cargo test"]},
                {"command": "cargo fmt", "description": "Format code", "options": "oops"},
            ],
        },
        {
            "name": "Rustup Toolchains",
            "commands": [{"command": "rustup update", "description": "Update toolchains"}],
        },
        {
            "name": "Compiler",
            "commands": [{"command": "rustc --explain", "description": "Explain an error code"}],
        },
    ]
}

ERRORS_DOC = {
    "errors": [
        {"code": "E0382", "title": "Borrow of moved value", "explanation": "Used after move.",
         "example_bad": "let t = s; s;", "fix_strategies": ["Borrow instead", "Clone"],
         "related_errors": ["E0505"]},
        {"code": "E0499", "title": "Two mutable borrows", "explanation": "Aliased mutation.",
         "fix": "Shorten the first borrow."},
        {"code": "E0000", "title": "No explanation"},
    ]
}


def _write_docs(directory: str, **docs) -> None:
    for stem, data in docs.items():
        with open(os.path.join(directory, f"{stem}.json"), "w", encoding="utf-8") as fh:
            json.dump(data, fh)


# ---------------------------------------------------------------------------
# parse_document
# ---------------------------------------------------------------------------


class TestParseDocument:
    def test_concept_mapping(self):
        records, warnings = parse_document(Category.CONCEPT, CONCEPTS_DOC)
        assert len(records) == 1
        c = records[0]
        assert c.id == "ownership-move-semantics"
        assert c.topic == "ownership"
        assert c.title == "Move Semantics"
        assert c.explanation == (
            "Assignment moves ownership.\n\n"
            "Rules:\n- One owner at a time\n\n"
            "Key Points:\n- Copy types are duplicated"
        )
        assert c.code_examples == [CodeExample("move", "let b = a;")]
        assert c.common_mistakes == ["use after move"]
        assert c.related_concepts == ["ownership-borrowing"]
        assert c.tags == ["ownership", "memory"]
        assert len(warnings) == 1
        assert "name" in warnings[0].message

    def test_pattern_mapping(self):
        records, warnings = parse_document(Category.PATTERN, PATTERNS_DOC)
        assert warnings == []
        builder, newtype = records
        assert builder.id == "creational-patterns-builder-pattern"
        assert builder.when_to_use == "Creational Patterns"
        assert builder.template == "Builder::new().build()"
        assert builder.examples[0].code == "Builder::new().build()"
        assert newtype.when_to_use == "distinct units"
        assert newtype.when_not_to_use == "never"
        assert newtype.examples == []

    def test_command_mapping(self):
        records, warnings = parse_document(Category.COMMAND, COMMANDS_DOC)
        assert warnings == []
        by_cmd = {c.command: c for c in records}
        assert by_cmd["cargo test"].tool == "cargo"
        assert by_cmd["cargo test"].flags == [
            CommandFlag("--lib", "Test only the library"),
            CommandFlag("--quiet", ""),
        ]
        assert by_cmd["cargo fmt"].flags == []
        assert by_cmd["rustup update"].tool == "rustup"
        assert by_cmd["rustc --explain"].tool == "rust"

    def test_error_mapping(self):
        records, warnings = parse_document(Category.ERROR, ERRORS_DOC)
        e0382, e0499 = records
        assert e0382.example_code == "let t = s; s;"
        assert e0382.fix == "- Borrow instead\n- Clone"
        assert e0382.related_errors == ["E0505"]
        assert e0499.fix == "Shorten the first borrow."
        assert len(warnings) == 1
        assert warnings[0].entry == "E0000"

    def test_wrong_shape_raises_document_error(self):
        with pytest.raises(DocumentError):
            parse_document(Category.ERROR, {"items": []})
        with pytest.raises(DocumentError):
            parse_document(Category.CONCEPT, ["not", "a", "mapping"])

    @pytest.mark.parametrize("category, doc", [
        (Category.CONCEPT, {"modules": [{"id": "m", "concepts": 5}]}),
        (Category.CONCEPT, {"modules": [{"id": "m", "concepts": "abc"}]}),
        (Category.PATTERN, {"categories": [{"name": "G", "patterns": {"name": "x"}}]}),
        (Category.COMMAND, {"sections": [{"name": "Cargo", "commands": 3}]}),
    ])
    def test_non_list_entries_become_warnings(self, category, doc):
        records, warnings = parse_document(category, doc)
        assert records == []
        assert len(warnings) == 1
        assert "is not a list" in warnings[0].message

    def test_bad_group_does_not_hide_later_groups(self):
        doc = {"modules": [
            {"id": "broken", "concepts": 5},
            {"id": "ok", "concepts": [{"name": "Fine", "description": "Loads."}]},
        ]}
        records, warnings = parse_document(Category.CONCEPT, doc)
        assert [c.id for c in records] == ["ok-fine"]
        assert warnings[0].entry == "broken"


# ---------------------------------------------------------------------------
# KnowledgeLoader
# ---------------------------------------------------------------------------


class TestKnowledgeLoader(unittest.TestCase):
    """Tests for ``KnowledgeLoader.load_all``."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.docs = os.path.join(self.tmpdir, "knowledge")
        os.makedirs(self.docs)
        self.store = EntryStore(os.path.join(self.tmpdir, "kb.db"))
        self.loader = KnowledgeLoader(self.store)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_load_counts(self):
        _write_docs(self.docs, rust_core_concepts=CONCEPTS_DOC,
                    rust_patterns_idioms=PATTERNS_DOC,
                    rust_toolchain_cargo=COMMANDS_DOC,
                    rust_compiler_errors=ERRORS_DOC)
        stats = self.loader.load_all(self.docs)
        self.assertEqual(stats.concepts, 1)
        self.assertEqual(stats.patterns, 2)
        self.assertEqual(stats.commands, 4)
        self.assertEqual(stats.errors, 2)
        self.assertEqual(stats.total(), 9)
        self.assertEqual(len(stats.warnings), 2)
        self.assertIn("Loaded 1 concepts, 2 patterns, 2 errors, 4 commands (total: 9)",
                      str(stats))

    def test_round_trip(self):
        """Every ingested entity can be looked up by key and equals its source."""
        _write_docs(self.docs, rust_core_concepts=CONCEPTS_DOC,
                    rust_patterns_idioms=PATTERNS_DOC,
                    rust_toolchain_cargo=COMMANDS_DOC,
                    rust_compiler_errors=ERRORS_DOC)
        self.loader.load_all(self.docs)
        for category, doc in [(Category.CONCEPT, CONCEPTS_DOC),
                              (Category.PATTERN, PATTERNS_DOC),
                              (Category.COMMAND, COMMANDS_DOC),
                              (Category.ERROR, ERRORS_DOC)]:
            records, _ = parse_document(category, doc)
            for record in records:
                self.assertEqual(self.store.get(category, record.key), record)

    def test_idempotent(self):
        _write_docs(self.docs, rust_core_concepts=CONCEPTS_DOC,
                    rust_compiler_errors=ERRORS_DOC)
        self.loader.load_all(self.docs)
        before = {c: self.store.all(c) for c in Category}
        index_before = self.store.index_size()

        self.loader.load_all(self.docs)
        after = {c: self.store.all(c) for c in Category}
        self.assertEqual(before, after)
        self.assertEqual(self.store.index_size(), index_before)

    def test_malformed_document_skipped(self):
        _write_docs(self.docs, rust_compiler_errors=ERRORS_DOC)
        with open(os.path.join(self.docs, "rust_core_concepts.json"), "w") as fh:
            fh.write("{ not json")
        stats = self.loader.load_all(self.docs)
        self.assertEqual(stats.errors, 2)
        self.assertEqual(stats.concepts, 0)
        sources = [w.source for w in stats.warnings]
        self.assertIn("rust_core_concepts.json", sources)

    def test_wrongly_typed_nesting_does_not_abort_batch(self):
        _write_docs(self.docs,
                    rust_core_concepts={"modules": [{"id": "m", "concepts": 5}]},
                    rust_patterns_idioms={"categories": [{"name": "G", "patterns": "x"}]},
                    rust_toolchain_cargo={"sections": [{"name": "Cargo", "commands": {}}]},
                    rust_compiler_errors=ERRORS_DOC)
        stats = self.loader.load_all(self.docs)
        self.assertEqual(stats.errors, 2)
        self.assertEqual(stats.concepts + stats.patterns + stats.commands, 0)
        self.assertIsNotNone(self.store.get(Category.ERROR, "E0382"))
        sources = {w.source for w in stats.warnings}
        self.assertTrue({"rust_core_concepts.json", "rust_patterns_idioms.json",
                         "rust_toolchain_cargo.json"} <= sources)

    def test_yaml_document(self):
        with open(os.path.join(self.docs, "rust_compiler_errors.yaml"), "w") as fh:
            fh.write(
                "errors:\n"
                "  - code: E0106\n"
                "    title: Missing lifetime specifier\n"
                "    explanation: Returned reference needs a lifetime.\n"
            )
        stats = self.loader.load_all(self.docs)
        self.assertEqual(stats.errors, 1)
        self.assertEqual(self.store.get(Category.ERROR, "E0106").title,
                         "Missing lifetime specifier")

    def test_missing_directory_is_a_warning(self):
        stats = self.loader.load_all(os.path.join(self.tmpdir, "nope"))
        self.assertEqual(stats.total(), 0)
        self.assertEqual(len(stats.warnings), 1)

    def test_progress_callback(self):
        _write_docs(self.docs, rust_core_concepts=CONCEPTS_DOC,
                    rust_compiler_errors=ERRORS_DOC)
        calls = []
        self.loader.load_all(self.docs, progress_callback=lambda c, t, f: calls.append((c, t, f)))
        self.assertEqual(calls, [
            (1, 2, "rust_core_concepts.json"),
            (2, 2, "rust_compiler_errors.json"),
        ])

    def test_unrelated_files_ignored(self):
        _write_docs(self.docs, notes={"errors": []})
        self.assertEqual(discover_documents(self.docs), [])

    def test_get_stats_reflects_store(self):
        _write_docs(self.docs, rust_compiler_errors=ERRORS_DOC)
        self.loader.load_all(self.docs)
        self.assertEqual(self.loader.get_stats(), LoadStats(errors=2))


class TestEnsureLoaded:
    def test_loads_empty_store_once(self, tmp_path):
        docs = tmp_path / "knowledge"
        docs.mkdir()
        _write_docs(str(docs), rust_compiler_errors=ERRORS_DOC)
        store = EntryStore(str(tmp_path / "kb.db"))

        stats = ensure_loaded(store, str(docs))
        assert stats is not None and stats.errors == 2
        assert ensure_loaded(store, str(docs)) is None


class TestBundledKnowledge:
    def test_bundled_documents_load_without_warnings(self, tmp_path):
        store = EntryStore(str(tmp_path / "kb.db"))
        stats = KnowledgeLoader(store).load_all(BUNDLED_KNOWLEDGE_DIR)
        assert stats.warnings == []
        assert stats.concepts > 0 and stats.patterns > 0
        assert stats.commands > 0 and stats.errors > 0
        assert store.get(Category.ERROR, "E0382") is not None
