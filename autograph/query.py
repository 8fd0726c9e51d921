"""Read-only queries over a graph store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from autograph.models import EntityFilter, RelatedEntity
from autograph.store import GraphStore

SCHEMA_VERSION = "1.0"


def query_by_file(store: GraphStore, file_path: str) -> list[dict[str, Any]]:
    """Entities declared in one file, in line order.

    Args:
        store: Open graph store.
        file_path: Workspace-relative POSIX path.

    Returns:
        Entity dictionaries; empty if the file has no entities.
    """
    return [e.to_dict() for e in store.list_entities(EntityFilter(file_path=file_path))]


def query_by_name(
    store: GraphStore,
    name: str,
    exact: bool = False,
) -> list[dict[str, Any]]:
    """Entities whose name contains (or, with ``exact``, equals) ``name``."""
    if exact:
        entities = store.find_all_entities_by_name(name)
    else:
        entities = store.list_entities(EntityFilter(name=name))
    return [e.to_dict() for e in entities]


def query_related(
    store: GraphStore,
    entity_id: str,
    direction: Optional[str] = None,
) -> list[RelatedEntity]:
    """Entities one relation away from ``entity_id``.

    Args:
        store: Open graph store.
        entity_id: The starting entity.
        direction: ``"outgoing"``, ``"incoming"`` or None for both.

    Returns:
        RelatedEntity records in relation insertion order.
    """
    related = []

    for relation in store.get_relations_by_entity(entity_id, direction):
        outgoing = relation.source_entity_id == entity_id
        other_id = relation.target_entity_id if outgoing else relation.source_entity_id
        other = store.get_entity(other_id)
        if other is None:
            continue
        related.append(RelatedEntity(
            entity=other,
            relation=relation,
            direction="outgoing" if outgoing else "incoming",
        ))

    return related


def query_dependents(store: GraphStore, file_path: str) -> list[str]:
    """Files holding at least one relation into ``file_path``."""
    return store.dependent_files(file_path)


def get_summary(store: GraphStore) -> dict[str, Any]:
    """Summary statistics for the whole graph.

    Returns:
        Summary dictionary with counts and timestamp.
    """
    stats = store.get_stats()
    last = stats.last_analyzed_at
    return {
        "entity_count": stats.entity_count,
        "relation_count": stats.relation_count,
        "observation_count": stats.observation_count,
        "file_count": stats.file_count,
        "last_analyzed": (
            datetime.fromtimestamp(last / 1000, timezone.utc).isoformat() if last else None
        ),
        "by_kind": stats.entities_by_kind,
        "by_verb": stats.relations_by_verb,
        "schema_version": SCHEMA_VERSION,
    }


def export_graph(store: GraphStore) -> dict[str, Any]:
    """Whole graph as a JSON-ready dictionary."""
    entities = store.list_entities()
    relations = store.list_relations()
    observations = store.list_observations()

    return {
        "schema_version": SCHEMA_VERSION,
        "generated": datetime.now(timezone.utc).isoformat(),
        "entity_count": len(entities),
        "relation_count": len(relations),
        "entities": [e.to_dict() for e in entities],
        "relations": [r.to_dict() for r in relations],
        "observations": [o.to_dict() for o in observations],
    }
