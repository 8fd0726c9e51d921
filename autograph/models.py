"""Data model for the code-structure graph."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

ENTITY_KINDS: tuple[str, ...] = (
    "function",
    "class",
    "interface",
    "variable",
    "file",
    "directory",
    "api",
    "config",
    "database",
    "service",
    "component",
    "external",
    "other",
)

RELATION_VERBS: tuple[str, ...] = (
    "uses",
    "calls",
    "extends",
    "implements",
    "depends_on",
    "contains",
    "references",
    "imports",
    "exports",
)

# (file_path, name, kind, start_line)
EntityKey = tuple[str, str, str, int]


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def entity_key(file_path: str, name: str, kind: str, start_line: int) -> EntityKey:
    """Build the uniqueness key that carries entity identity across analyses."""
    return (file_path, name, kind, start_line)


@dataclass
class Symbol:
    """A declaration extracted from one file. Never persisted directly."""

    name: str
    kind: str
    file_path: str
    start_line: int
    end_line: int
    description: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def key(self) -> EntityKey:
        return entity_key(self.file_path, self.name, self.kind, self.start_line)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Entity:
    """Persisted representation of one symbol at a specific file location."""

    id: str
    name: str
    kind: str
    file_path: str
    start_line: int
    end_line: int
    description: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: int = 0
    updated_at: int = 0

    @property
    def key(self) -> EntityKey:
        return entity_key(self.file_path, self.name, self.kind, self.start_line)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Relation:
    """Directed, verbed edge between two persisted entities."""

    id: str
    source_entity_id: str
    target_entity_id: str
    verb: str
    created_at: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Observation:
    """Free-text, user-authored annotation attached to an entity."""

    id: str
    entity_id: str
    content: str
    created_at: int = 0
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FileCache:
    """Content hash of a file at the time it was last analyzed."""

    file_path: str
    content_hash: str
    analyzed_at: int = 0


@dataclass
class RelationCandidate:
    """A relation expressed by name only.

    The target may live in a file that has not been scanned yet, so
    resolution to entity ids is deferred to the coordinator.
    """

    source_name: str
    source_file_path: str
    target_name: str
    verb: str
    target_file_path: Optional[str] = None  # set for resolved imports
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ImportInfo:
    """One parsed import statement."""

    module_name: str
    imported_names: list[str] = field(default_factory=list)
    is_default: bool = False
    is_namespace: bool = False
    line: int = 0


@dataclass
class FileAnalysisResult:
    """Everything the extractor found in one file."""

    file_path: str
    symbols: list[Symbol] = field(default_factory=list)
    relations: list[RelationCandidate] = field(default_factory=list)
    imports: list[ImportInfo] = field(default_factory=list)


@dataclass
class AnalysisError:
    """A non-fatal, per-file failure."""

    file_path: str
    message: str
    line: Optional[int] = None


@dataclass
class AnalysisResult:
    """Outcome of a full-workspace or single-file run."""

    entities: list[Entity] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)
    files_analyzed: int = 0
    errors: list[AnalysisError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def summary(self) -> dict[str, Any]:
        """Counts plus the error list, for printing or JSON output."""
        return {
            "entities": len(self.entities),
            "relations": len(self.relations),
            "files_analyzed": self.files_analyzed,
            "errors": [asdict(e) for e in self.errors],
        }


@dataclass
class AnalysisProgress:
    """Advisory progress report passed to a caller-supplied callback."""

    phase: str  # loading, clearing, scanning, extracting, reconciling, resolving, complete
    percent: float
    message: str = ""
    current: int = 0
    total: int = 0


@dataclass
class GraphStats:
    """Aggregate counts over the whole store."""

    entity_count: int = 0
    relation_count: int = 0
    observation_count: int = 0
    file_count: int = 0
    last_analyzed_at: Optional[int] = None
    entities_by_kind: dict[str, int] = field(default_factory=dict)
    relations_by_verb: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EntityFilter:
    kind: Optional[str] = None
    file_path: Optional[str] = None
    name: Optional[str] = None  # substring match


@dataclass
class RelationFilter:
    verb: Optional[str] = None
    source_entity_id: Optional[str] = None
    target_entity_id: Optional[str] = None


@dataclass
class RelatedEntity:
    """An entity reached through one relation, with the edge direction."""

    entity: Entity
    relation: Relation
    direction: str  # incoming or outgoing

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity.to_dict(),
            "relation": self.relation.to_dict(),
            "direction": self.direction,
        }
