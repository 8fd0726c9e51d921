"""SQLite-backed persistence for entities, relations, observations and file hashes.

Every mutating call runs in its own implicit transaction unless it is made
inside :meth:`GraphStore.atomic`, in which case it joins the enclosing one.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar

from autograph.models import (
    ENTITY_KINDS,
    RELATION_VERBS,
    Entity,
    EntityFilter,
    EntityKey,
    FileCache,
    GraphStats,
    Observation,
    Relation,
    RelationFilter,
    now_ms,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    kind TEXT NOT NULL,
    file_path TEXT NOT NULL,
    start_line INTEGER NOT NULL,
    end_line INTEGER NOT NULL,
    description TEXT,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL,
    UNIQUE (file_path, name, kind, start_line)
);
CREATE INDEX IF NOT EXISTS idx_entities_name ON entities(name);
CREATE INDEX IF NOT EXISTS idx_entities_file ON entities(file_path);

CREATE TABLE IF NOT EXISTS relations (
    id TEXT PRIMARY KEY,
    source_entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    target_entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    verb TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at INTEGER NOT NULL,
    UNIQUE (source_entity_id, target_entity_id, verb)
);
CREATE INDEX IF NOT EXISTS idx_relations_source ON relations(source_entity_id);
CREATE INDEX IF NOT EXISTS idx_relations_target ON relations(target_entity_id);

CREATE TABLE IF NOT EXISTS observations (
    id TEXT PRIMARY KEY,
    entity_id TEXT NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_observations_entity ON observations(entity_id);

CREATE TABLE IF NOT EXISTS file_cache (
    file_path TEXT PRIMARY KEY,
    content_hash TEXT NOT NULL,
    analyzed_at INTEGER NOT NULL
);
"""


class GraphStoreError(Exception):
    """Raised when the store is used while closed."""


def _new_id() -> str:
    return uuid.uuid4().hex


def _dump(metadata: Optional[dict[str, Any]]) -> str:
    return json.dumps(metadata or {}, sort_keys=True)


def _load(text: Optional[str]) -> dict[str, Any]:
    if not text:
        return {}
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def _entity(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        name=row["name"],
        kind=row["kind"],
        file_path=row["file_path"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        description=row["description"],
        metadata=_load(row["metadata"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _relation(row: sqlite3.Row) -> Relation:
    return Relation(
        id=row["id"],
        source_entity_id=row["source_entity_id"],
        target_entity_id=row["target_entity_id"],
        verb=row["verb"],
        created_at=row["created_at"],
        metadata=_load(row["metadata"]),
    )


def _observation(row: sqlite3.Row) -> Observation:
    return Observation(
        id=row["id"],
        entity_id=row["entity_id"],
        content=row["content"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class GraphStore:
    """Explicit handle on one graph database.

    Usage::

        with GraphStore(".autograph/graph.sqlite") as store:
            entity = store.upsert_entity("UserService", "class", "src/a.ts", 1, 20)

    Args:
        db_path: File path, or ``":memory:"`` for a throwaway store.
    """

    def __init__(self, db_path: Path | str = ":memory:"):
        self.db_path = str(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> GraphStore:
        if self._conn is not None:
            return self

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(SCHEMA_SQL)
        self._conn = conn
        logger.debug("Opened graph store at %s", self.db_path)
        return self

    def close(self) -> None:
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        self._depth = 0

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> GraphStore:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _db(self) -> sqlite3.Connection:
        if self._conn is None:
            raise GraphStoreError(f"Graph store is not open: {self.db_path}")
        return self._conn

    @property
    def total_changes(self) -> int:
        """Rows inserted, updated or deleted through this connection."""
        return self._db().total_changes

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[GraphStore]:
        """Run the enclosed block in one transaction.

        Commits on normal exit; rolls back and re-raises on any exception.
        A nested ``atomic()`` joins the outermost transaction.
        """
        conn = self._db()

        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        conn.execute("BEGIN")
        self._depth = 1
        try:
            yield self
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
        finally:
            self._depth = 0

    def transaction(self, fn: Callable[[], T]) -> T:
        """Call ``fn`` inside :meth:`atomic` and return its result."""
        with self.atomic():
            return fn()

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def upsert_entity(
        self,
        name: str,
        kind: str,
        file_path: str,
        start_line: int,
        end_line: int,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Entity:
        """Insert or update the entity with this (file, name, kind, start line).

        An existing row keeps its ``id`` and ``created_at``; everything else
        is overwritten.

        Raises:
            ValueError: If ``kind`` is not a known entity kind.
        """
        if kind not in ENTITY_KINDS:
            raise ValueError(f"Unknown entity kind: {kind}")

        conn = self._db()
        now = now_ms()

        row = conn.execute(
            "SELECT id, created_at FROM entities"
            " WHERE file_path = ? AND name = ? AND kind = ? AND start_line = ?",
            (file_path, name, kind, start_line),
        ).fetchone()

        entity = Entity(
            id=row["id"] if row else _new_id(),
            name=name,
            kind=kind,
            file_path=file_path,
            start_line=start_line,
            end_line=end_line,
            description=description,
            metadata=_load(_dump(metadata)),
            created_at=row["created_at"] if row else now,
            updated_at=now,
        )

        if row:
            conn.execute(
                "UPDATE entities SET end_line = ?, description = ?, metadata = ?, updated_at = ?"
                " WHERE id = ?",
                (end_line, description, _dump(metadata), now, entity.id),
            )
        else:
            conn.execute(
                "INSERT INTO entities (id, name, kind, file_path, start_line, end_line,"
                " description, metadata, created_at, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (entity.id, name, kind, file_path, start_line, end_line,
                 description, _dump(metadata), entity.created_at, now),
            )

        return entity

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        row = self._db().execute(
            "SELECT * FROM entities WHERE id = ?", (entity_id,)
        ).fetchone()
        return _entity(row) if row else None

    def find_entity_by_name(
        self,
        name: str,
        file_path: Optional[str] = None,
        fallback: bool = True,
    ) -> Optional[Entity]:
        """Look up an entity by name; a heuristic, not a type-aware resolver.

        With ``file_path`` the entity in that file is preferred. Otherwise,
        or when that file has none and ``fallback`` is set, the first match
        ordered by (file_path, start_line, id) wins.
        """
        conn = self._db()

        if file_path is not None:
            row = conn.execute(
                "SELECT * FROM entities WHERE name = ? AND file_path = ?"
                " ORDER BY start_line, id LIMIT 1",
                (name, file_path),
            ).fetchone()
            if row:
                return _entity(row)
            if not fallback:
                return None

        row = conn.execute(
            "SELECT * FROM entities WHERE name = ?"
            " ORDER BY file_path, start_line, id LIMIT 1",
            (name,),
        ).fetchone()
        return _entity(row) if row else None

    def find_all_entities_by_name(self, name: str) -> list[Entity]:
        rows = self._db().execute(
            "SELECT * FROM entities WHERE name = ? ORDER BY file_path, start_line, id",
            (name,),
        ).fetchall()
        return [_entity(r) for r in rows]

    def list_entities(self, filter: Optional[EntityFilter] = None) -> list[Entity]:
        clauses = []
        params: list[Any] = []

        if filter is not None:
            if filter.kind:
                clauses.append("kind = ?")
                params.append(filter.kind)
            if filter.file_path:
                clauses.append("file_path = ?")
                params.append(filter.file_path)
            if filter.name:
                clauses.append("instr(name, ?) > 0")
                params.append(filter.name)

        sql = "SELECT * FROM entities"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY file_path, start_line, name"

        return [_entity(r) for r in self._db().execute(sql, params).fetchall()]

    def all_entities_by_key(self) -> dict[EntityKey, Entity]:
        return {e.key: e for e in self.list_entities()}

    def delete_entities_by_file(self, file_path: str) -> int:
        """Delete every entity of a file; relations and observations cascade."""
        cursor = self._db().execute("DELETE FROM entities WHERE file_path = ?", (file_path,))
        return cursor.rowcount

    def delete_entity_by_id(self, entity_id: str) -> bool:
        cursor = self._db().execute("DELETE FROM entities WHERE id = ?", (entity_id,))
        return cursor.rowcount > 0

    def dependent_files(self, file_path: str) -> list[str]:
        """Other files holding a relation whose target lives in ``file_path``."""
        rows = self._db().execute(
            "SELECT DISTINCT s.file_path FROM relations r"
            " JOIN entities s ON s.id = r.source_entity_id"
            " JOIN entities t ON t.id = r.target_entity_id"
            " WHERE t.file_path = ? AND s.file_path != ?"
            " ORDER BY s.file_path",
            (file_path, file_path),
        ).fetchall()
        return [r[0] for r in rows]

    def clear_entities(self) -> int:
        return self._db().execute("DELETE FROM entities").rowcount

    def migrate_observations(self, old_entity_id: str, new_entity_id: str) -> int:
        """Re-point observations from one entity to another.

        Returns:
            Number of observations moved; 0 if the new entity does not exist.
        """
        if self.get_entity(new_entity_id) is None:
            return 0
        cursor = self._db().execute(
            "UPDATE observations SET entity_id = ?, updated_at = ? WHERE entity_id = ?",
            (new_entity_id, now_ms(), old_entity_id),
        )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def upsert_relation(
        self,
        source_entity_id: str,
        target_entity_id: str,
        verb: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[Relation]:
        """Create a relation unless it already exists.

        Returns:
            The new or existing relation, or None when either endpoint is
            missing (the relation is discarded, never stored dangling).

        Raises:
            ValueError: If ``verb`` is not a known relation verb.
        """
        if verb not in RELATION_VERBS:
            raise ValueError(f"Unknown relation verb: {verb}")

        conn = self._db()

        endpoints = {source_entity_id, target_entity_id}
        found = conn.execute(
            f"SELECT COUNT(*) FROM entities WHERE id IN ({', '.join('?' * len(endpoints))})",
            tuple(endpoints),
        ).fetchone()[0]
        if found != len(endpoints):
            logger.warning(
                "Discarding %s relation %s -> %s: endpoint missing",
                verb, source_entity_id, target_entity_id,
            )
            return None

        row = conn.execute(
            "SELECT * FROM relations"
            " WHERE source_entity_id = ? AND target_entity_id = ? AND verb = ?",
            (source_entity_id, target_entity_id, verb),
        ).fetchone()
        if row:
            return _relation(row)

        relation = Relation(
            id=_new_id(),
            source_entity_id=source_entity_id,
            target_entity_id=target_entity_id,
            verb=verb,
            created_at=now_ms(),
            metadata=metadata or {},
        )
        conn.execute(
            "INSERT INTO relations (id, source_entity_id, target_entity_id, verb, metadata, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (relation.id, relation.source_entity_id, relation.target_entity_id,
             relation.verb, _dump(relation.metadata), relation.created_at),
        )
        return relation

    def get_relation(self, relation_id: str) -> Optional[Relation]:
        row = self._db().execute(
            "SELECT * FROM relations WHERE id = ?", (relation_id,)
        ).fetchone()
        return _relation(row) if row else None

    def list_relations(self, filter: Optional[RelationFilter] = None) -> list[Relation]:
        clauses = []
        params: list[Any] = []

        if filter is not None:
            if filter.verb:
                clauses.append("verb = ?")
                params.append(filter.verb)
            if filter.source_entity_id:
                clauses.append("source_entity_id = ?")
                params.append(filter.source_entity_id)
            if filter.target_entity_id:
                clauses.append("target_entity_id = ?")
                params.append(filter.target_entity_id)

        sql = "SELECT * FROM relations"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY rowid"

        return [_relation(r) for r in self._db().execute(sql, params).fetchall()]

    def get_relations_by_entity(
        self,
        entity_id: str,
        direction: Optional[str] = None,
    ) -> list[Relation]:
        """Relations touching an entity.

        Args:
            entity_id: The entity.
            direction: ``"outgoing"``, ``"incoming"`` or None for both.
        """
        if direction == "outgoing":
            where, params = "source_entity_id = ?", (entity_id,)
        elif direction == "incoming":
            where, params = "target_entity_id = ?", (entity_id,)
        elif direction is None:
            where, params = "source_entity_id = ? OR target_entity_id = ?", (entity_id, entity_id)
        else:
            raise ValueError(f"Unknown direction: {direction}")

        rows = self._db().execute(
            f"SELECT * FROM relations WHERE {where} ORDER BY rowid", params
        ).fetchall()
        return [_relation(r) for r in rows]

    def clear_relations(self) -> int:
        return self._db().execute("DELETE FROM relations").rowcount

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    def add_observation(self, entity_id: str, content: str) -> Optional[Observation]:
        if self.get_entity(entity_id) is None:
            return None

        now = now_ms()
        observation = Observation(
            id=_new_id(),
            entity_id=entity_id,
            content=content,
            created_at=now,
            updated_at=now,
        )
        self._db().execute(
            "INSERT INTO observations (id, entity_id, content, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (observation.id, entity_id, content, now, now),
        )
        return observation

    def get_observation(self, observation_id: str) -> Optional[Observation]:
        row = self._db().execute(
            "SELECT * FROM observations WHERE id = ?", (observation_id,)
        ).fetchone()
        return _observation(row) if row else None

    def get_observations_by_entity(self, entity_id: str) -> list[Observation]:
        rows = self._db().execute(
            "SELECT * FROM observations WHERE entity_id = ? ORDER BY created_at, rowid",
            (entity_id,),
        ).fetchall()
        return [_observation(r) for r in rows]

    def list_observations(self) -> list[Observation]:
        rows = self._db().execute(
            "SELECT * FROM observations ORDER BY created_at, rowid"
        ).fetchall()
        return [_observation(r) for r in rows]

    def update_observation(self, observation_id: str, content: str) -> Optional[Observation]:
        cursor = self._db().execute(
            "UPDATE observations SET content = ?, updated_at = ? WHERE id = ?",
            (content, now_ms(), observation_id),
        )
        if cursor.rowcount == 0:
            return None
        return self.get_observation(observation_id)

    def delete_observation(self, observation_id: str) -> bool:
        cursor = self._db().execute("DELETE FROM observations WHERE id = ?", (observation_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # File cache
    # ------------------------------------------------------------------

    def update_file_cache(
        self,
        file_path: str,
        content_hash: str,
        analyzed_at: Optional[int] = None,
    ) -> FileCache:
        entry = FileCache(
            file_path=file_path,
            content_hash=content_hash,
            analyzed_at=analyzed_at if analyzed_at is not None else now_ms(),
        )
        self._db().execute(
            "INSERT INTO file_cache (file_path, content_hash, analyzed_at) VALUES (?, ?, ?)"
            " ON CONFLICT(file_path) DO UPDATE SET"
            " content_hash = excluded.content_hash, analyzed_at = excluded.analyzed_at",
            (entry.file_path, entry.content_hash, entry.analyzed_at),
        )
        return entry

    def get_file_cache(self, file_path: str) -> Optional[FileCache]:
        row = self._db().execute(
            "SELECT * FROM file_cache WHERE file_path = ?", (file_path,)
        ).fetchone()
        if not row:
            return None
        return FileCache(row["file_path"], row["content_hash"], row["analyzed_at"])

    def list_file_cache(self) -> list[FileCache]:
        rows = self._db().execute("SELECT * FROM file_cache ORDER BY file_path").fetchall()
        return [FileCache(r["file_path"], r["content_hash"], r["analyzed_at"]) for r in rows]

    def delete_file_cache(self, file_path: str) -> bool:
        cursor = self._db().execute("DELETE FROM file_cache WHERE file_path = ?", (file_path,))
        return cursor.rowcount > 0

    def clear_file_cache(self) -> int:
        return self._db().execute("DELETE FROM file_cache").rowcount

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def get_stats(self) -> GraphStats:
        conn = self._db()

        def scalar(sql: str) -> Any:
            return conn.execute(sql).fetchone()[0]

        return GraphStats(
            entity_count=scalar("SELECT COUNT(*) FROM entities"),
            relation_count=scalar("SELECT COUNT(*) FROM relations"),
            observation_count=scalar("SELECT COUNT(*) FROM observations"),
            file_count=scalar("SELECT COUNT(DISTINCT file_path) FROM entities"),
            last_analyzed_at=scalar("SELECT MAX(analyzed_at) FROM file_cache"),
            entities_by_kind={
                r["kind"]: r["n"] for r in conn.execute(
                    "SELECT kind, COUNT(*) AS n FROM entities GROUP BY kind ORDER BY kind"
                )
            },
            relations_by_verb={
                r["verb"]: r["n"] for r in conn.execute(
                    "SELECT verb, COUNT(*) AS n FROM relations GROUP BY verb ORDER BY verb"
                )
            },
        )

    def clear_all(self) -> None:
        """Drop every relation, entity, observation and file cache row."""
        with self.atomic():
            self.clear_relations()
            self.clear_entities()
            self.clear_file_cache()
