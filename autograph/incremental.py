"""Content-hash change tracking for incremental analysis."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from autograph.store import GraphStore

logger = logging.getLogger(__name__)


def compute_file_hash(file_path: Path | str) -> Optional[str]:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.

    Returns:
        Hex string of SHA-256 hash, or None if file cannot be read.
    """
    file_path = Path(file_path)

    if not file_path.is_file():
        return None

    try:
        hasher = hashlib.sha256()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                hasher.update(chunk)
        return hasher.hexdigest()
    except OSError:
        return None


class ChangeTracker:
    """Decide whether a file needs re-analysis by comparing content hashes.

    The cached hash for each file lives in the store's ``file_cache`` table,
    so the tracker itself holds no state between runs.
    """

    def __init__(self, store: GraphStore, root: Path | str):
        self.store = store
        self.root = Path(root)

    def load(self) -> dict[str, str]:
        """Snapshot of every cached ``path -> hash`` pair."""
        return {row.file_path: row.content_hash for row in self.store.list_file_cache()}

    def current_hash(self, file_path: str) -> Optional[str]:
        return compute_file_hash(self.root / file_path)

    def cached_hash(self, file_path: str) -> Optional[str]:
        row = self.store.get_file_cache(file_path)
        return row.content_hash if row else None

    def should_analyze(self, file_path: str, current_hash: Optional[str] = None) -> bool:
        """True when the file is new, modified, or cannot be hashed.

        Args:
            file_path: Workspace-relative path.
            current_hash: Precomputed hash; computed from disk when omitted.
        """
        if current_hash is None:
            current_hash = self.current_hash(file_path)
        if current_hash is None:
            return True

        previous = self.cached_hash(file_path)
        if previous is None or previous != current_hash:
            return True

        logger.debug("Unchanged: %s", file_path)
        return False

    def changed_files(self, file_paths: list[str]) -> list[str]:
        """Subset of ``file_paths`` whose content differs from the cache.

        Files that cannot be read are left out.
        """
        cached = self.load()
        changed = []

        for file_path in file_paths:
            current = self.current_hash(file_path)
            if current is None:
                continue
            if cached.get(file_path) != current:
                changed.append(file_path)

        return changed

    def record_analyzed(self, file_path: str, content_hash: str) -> None:
        self.store.update_file_cache(file_path, content_hash)

    def forget(self, file_path: str) -> None:
        self.store.delete_file_cache(file_path)
