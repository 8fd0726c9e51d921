"""Tests for the SQLite graph store."""

import logging
import sqlite3

import pytest

from autograph.models import EntityFilter, RelationFilter
from autograph.store import GraphStore, GraphStoreError


def _entity(store, name, file_path="src/a.ts", start_line=1, kind="class"):
    return store.upsert_entity(name, kind, file_path, start_line, start_line + 2)


class TestLifecycle:
    """Tests for opening and closing the store."""

    def test_file_database_created(self, tmp_path):
        """Opening a file path creates the database and parent directories."""
        db_path = tmp_path / ".autograph" / "graph.sqlite"

        with GraphStore(db_path) as store:
            _entity(store, "A")

        assert db_path.exists()

        with GraphStore(db_path) as store:
            assert [e.name for e in store.list_entities()] == ["A"]

    def test_closed_store_raises(self):
        """Using a store that is not open is an error."""
        store = GraphStore(":memory:")

        with pytest.raises(GraphStoreError):
            store.list_entities()

    def test_foreign_keys_enabled(self, store):
        """Relations cannot reference missing entities at the SQL level."""
        with pytest.raises(sqlite3.IntegrityError):
            store._db().execute(
                "INSERT INTO relations (id, source_entity_id, target_entity_id, verb, metadata, created_at)"
                " VALUES ('r', 'missing', 'missing', 'uses', '{}', 0)"
            )


class TestEntities:
    """Tests for entity upserts and lookups."""

    def test_upsert_preserves_identity(self, store):
        """Re-upserting the same key keeps id and created_at."""
        first = store.upsert_entity("A", "class", "src/a.ts", 1, 3, metadata={"v": 1})
        second = store.upsert_entity("A", "class", "src/a.ts", 1, 9, "doc", {"v": 2})

        assert second.id == first.id
        assert second.created_at == first.created_at
        assert second.end_line == 9
        assert second.description == "doc"
        assert second.metadata == {"v": 2}
        assert len(store.list_entities()) == 1

    def test_upsert_returns_stored_row(self, store):
        """The returned entity matches what a fresh read gives back, on insert and update."""
        inserted = store.upsert_entity("A", "class", "src/a.ts", 1, 3, "doc", {"tags": ("x",)})
        assert inserted == store.get_entity(inserted.id)
        assert inserted.metadata == {"tags": ["x"]}

        updated = store.upsert_entity("A", "class", "src/a.ts", 1, 7)
        assert updated == store.get_entity(inserted.id)
        assert updated.description is None

    def test_different_start_line_is_new_entity(self, store):
        """Start line is part of the identity key."""
        first = _entity(store, "A", start_line=1)
        second = _entity(store, "A", start_line=2)

        assert first.id != second.id

    def test_unknown_kind_rejected(self, store):
        with pytest.raises(ValueError):
            store.upsert_entity("A", "widget", "src/a.ts", 1, 1)

    def test_find_by_name_prefers_exact_path(self, store):
        """The entity in the requested file wins over earlier matches."""
        _entity(store, "Shared", "src/a.ts")
        in_b = _entity(store, "Shared", "src/b.ts")

        assert store.find_entity_by_name("Shared", "src/b.ts").id == in_b.id

    def test_find_by_name_first_match_ordering(self, store):
        """Without a path the first match by (file, start line) wins."""
        _entity(store, "Shared", "src/z.ts")
        first = _entity(store, "Shared", "src/a.ts", start_line=5)
        _entity(store, "Shared", "src/a.ts", start_line=9, kind="function")

        assert store.find_entity_by_name("Shared").id == first.id
        assert store.find_entity_by_name("Shared", "src/missing.ts").id == first.id

    def test_find_by_name_without_fallback(self, store):
        _entity(store, "Shared", "src/a.ts")

        assert store.find_entity_by_name("Shared", "src/b.ts", fallback=False) is None

    def test_list_entities_filter(self, store):
        _entity(store, "UserService", "src/a.ts")
        _entity(store, "userHelper", "src/a.ts", start_line=10, kind="function")
        _entity(store, "Order", "src/b.ts")

        assert [e.name for e in store.list_entities(EntityFilter(kind="class"))] == ["UserService", "Order"]
        assert [e.name for e in store.list_entities(EntityFilter(name="User"))] == ["UserService"]
        assert [e.name for e in store.list_entities(EntityFilter(file_path="src/b.ts"))] == ["Order"]

    def test_all_entities_by_key(self, store):
        a = _entity(store, "A", "src/a.ts", start_line=4)

        assert store.all_entities_by_key() == {("src/a.ts", "A", "class", 4): a}


class TestRelations:
    """Tests for relation upserts."""

    def test_dedup(self, store):
        """Identical (source, target, verb) yields one stored relation."""
        a = _entity(store, "A")
        b = _entity(store, "B", start_line=10)

        first = store.upsert_relation(a.id, b.id, "uses")
        second = store.upsert_relation(a.id, b.id, "uses")

        assert first.id == second.id
        assert len(store.list_relations()) == 1

    def test_different_verbs_are_distinct(self, store):
        a = _entity(store, "A")
        b = _entity(store, "B", start_line=10)

        store.upsert_relation(a.id, b.id, "uses")
        store.upsert_relation(a.id, b.id, "extends")

        assert len(store.list_relations()) == 2
        assert len(store.list_relations(RelationFilter(verb="extends"))) == 1

    def test_missing_endpoint_discarded(self, store, caplog):
        """A relation to a missing entity returns None and is not stored."""
        a = _entity(store, "A")

        with caplog.at_level(logging.WARNING, logger="autograph.store"):
            result = store.upsert_relation(a.id, "nope", "uses")

        assert result is None
        assert store.list_relations() == []
        assert "endpoint missing" in caplog.text

    def test_unknown_verb_rejected(self, store):
        a = _entity(store, "A")
        b = _entity(store, "B", start_line=10)

        with pytest.raises(ValueError):
            store.upsert_relation(a.id, b.id, "likes")

    def test_relations_by_direction(self, store):
        a = _entity(store, "A")
        b = _entity(store, "B", start_line=10)
        c = _entity(store, "C", start_line=20)
        ab = store.upsert_relation(a.id, b.id, "uses")
        cb = store.upsert_relation(c.id, b.id, "uses")

        assert [r.id for r in store.get_relations_by_entity(b.id, "incoming")] == [ab.id, cb.id]
        assert store.get_relations_by_entity(b.id, "outgoing") == []
        assert [r.id for r in store.get_relations_by_entity(a.id)] == [ab.id]


class TestCascade:
    """Tests for cascading deletes."""

    def test_delete_file_cascades(self, store):
        """Deleting a file's entities removes their relations and observations."""
        a = _entity(store, "A", "src/a.ts")
        b = _entity(store, "B", "src/b.ts")
        c = _entity(store, "C", "src/c.ts")
        store.upsert_relation(a.id, b.id, "uses")
        store.upsert_relation(b.id, c.id, "uses")
        keep = store.upsert_relation(a.id, c.id, "uses")
        store.add_observation(b.id, "hot path")

        assert store.delete_entities_by_file("src/b.ts") == 1

        assert [r.id for r in store.list_relations()] == [keep.id]
        assert store.get_observations_by_entity(b.id) == []
        assert store.get_stats().observation_count == 0

    def test_delete_entity_by_id(self, store):
        a = _entity(store, "A")

        assert store.delete_entity_by_id(a.id) is True
        assert store.delete_entity_by_id(a.id) is False

    def test_dependent_files(self, store):
        a = _entity(store, "A", "src/a.ts")
        b = _entity(store, "B", "src/b.ts")
        c = _entity(store, "C", "src/c.ts")
        store.upsert_relation(a.id, b.id, "uses")
        store.upsert_relation(c.id, b.id, "uses")

        assert store.dependent_files("src/b.ts") == ["src/a.ts", "src/c.ts"]
        assert store.dependent_files("src/a.ts") == []


class TestObservations:
    """Tests for observation CRUD."""

    def test_crud(self, store):
        a = _entity(store, "A")

        obs = store.add_observation(a.id, "initial")
        assert store.get_observation(obs.id).content == "initial"

        updated = store.update_observation(obs.id, "revised")
        assert updated.content == "revised"
        assert updated.created_at == obs.created_at

        assert store.delete_observation(obs.id) is True
        assert store.get_observation(obs.id) is None

    def test_missing_entity_or_observation(self, store):
        """Mutations on missing rows are no-ops that report failure."""
        assert store.add_observation("missing", "text") is None
        assert store.update_observation("missing", "text") is None
        assert store.delete_observation("missing") is False

    def test_migrate_observations(self, store):
        old = _entity(store, "A", start_line=1)
        new = _entity(store, "A", start_line=2)
        store.add_observation(old.id, "note")

        assert store.migrate_observations(old.id, new.id) == 1
        assert [o.content for o in store.get_observations_by_entity(new.id)] == ["note"]
        assert store.migrate_observations(new.id, "missing") == 0


class TestFileCache:
    """Tests for the file cache table."""

    def test_crud(self, store):
        store.update_file_cache("src/a.ts", "h1", analyzed_at=100)
        store.update_file_cache("src/a.ts", "h2", analyzed_at=200)

        entry = store.get_file_cache("src/a.ts")
        assert (entry.content_hash, entry.analyzed_at) == ("h2", 200)
        assert [c.file_path for c in store.list_file_cache()] == ["src/a.ts"]

        assert store.delete_file_cache("src/a.ts") is True
        assert store.get_file_cache("src/a.ts") is None

    def test_clear(self, store):
        store.update_file_cache("a.ts", "h")
        store.update_file_cache("b.ts", "h")

        assert store.clear_file_cache() == 2


class TestTransactions:
    """Tests for atomic() and transaction()."""

    def test_rollback_on_error(self, store):
        """A failing block leaves no trace."""
        with pytest.raises(RuntimeError):
            with store.atomic():
                _entity(store, "A")
                raise RuntimeError("boom")

        assert store.list_entities() == []

    def test_nested_joins_outer(self, store):
        """An inner failure that escapes rolls back the outer work too."""
        with pytest.raises(RuntimeError):
            with store.atomic():
                _entity(store, "A")
                with store.atomic():
                    _entity(store, "B", start_line=10)
                    raise RuntimeError("boom")

        assert store.list_entities() == []

    def test_transaction_returns_value(self, store):
        entity = store.transaction(lambda: _entity(store, "A"))

        assert store.get_entity(entity.id) is not None

    def test_total_changes_counts_writes(self, store):
        before = store.total_changes
        store.list_entities()
        assert store.total_changes == before

        _entity(store, "A")
        assert store.total_changes > before


class TestStats:
    """Tests for aggregates and clearing."""

    def test_stats(self, store):
        a = _entity(store, "A", "src/a.ts")
        b = _entity(store, "helper", "src/b.ts", kind="function")
        store.upsert_relation(a.id, b.id, "uses")
        store.add_observation(a.id, "note")
        store.update_file_cache("src/a.ts", "h", analyzed_at=1234)

        stats = store.get_stats()

        assert stats.entity_count == 2
        assert stats.relation_count == 1
        assert stats.observation_count == 1
        assert stats.file_count == 2
        assert stats.last_analyzed_at == 1234
        assert stats.entities_by_kind == {"class": 1, "function": 1}
        assert stats.relations_by_verb == {"uses": 1}

    def test_empty_stats(self, store):
        stats = store.get_stats()

        assert stats.entity_count == 0
        assert stats.last_analyzed_at is None

    def test_clear_all(self, store):
        a = _entity(store, "A")
        b = _entity(store, "B", start_line=10)
        store.upsert_relation(a.id, b.id, "uses")
        store.add_observation(a.id, "note")
        store.update_file_cache("src/a.ts", "h")

        store.clear_all()

        stats = store.get_stats()
        assert (stats.entity_count, stats.relation_count, stats.observation_count) == (0, 0, 0)
        assert store.list_file_cache() == []
