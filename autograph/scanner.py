"""Workspace file discovery.

Provides helpers for:
- Matching workspace-relative paths against include/exclude globs
- Walking the workspace and listing analyzable source files
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

DEFAULT_INCLUDE = ["**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx"]
DEFAULT_EXCLUDE = [
    "**/node_modules/**",
    "**/dist/**",
    "**/build/**",
    "**/*.d.ts",
    "**/*.test.ts",
    "**/*.spec.ts",
]
DEFAULT_MAX_FILE_SIZE = 1024 * 1024


@dataclass(frozen=True)
class ScannedFile:
    path: str  # POSIX, relative to the workspace root
    absolute_path: Path


def _pattern_variants(pattern: str) -> set[str]:
    """``**/`` and ``/**/`` may also stand for zero directories."""
    variants = {pattern, pattern.replace("/**/", "/")}
    for variant in list(variants):
        while variant.startswith("**/"):
            variant = variant[3:]
            variants.add(variant)
    return variants


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """Check a POSIX relative path against glob patterns.

    Args:
        path: Workspace-relative path, e.g. ``src/app/user.service.ts``.
        patterns: Globs such as ``**/*.ts`` or ``**/node_modules/**``.

    Returns:
        True if any pattern (or one of its zero-directory variants) matches.
    """
    for pattern in patterns:
        for variant in _pattern_variants(pattern):
            if fnmatch.fnmatchcase(path, variant):
                return True
    return False


class FileScanner:
    """Lists the files of a workspace that should be analyzed.

    Args:
        root: Workspace root directory.
        max_file_size: Files larger than this many bytes are skipped.
    """

    def __init__(self, root: Path | str, max_file_size: int = DEFAULT_MAX_FILE_SIZE):
        self.root = Path(root).resolve()
        self.max_file_size = max_file_size

    def relative_path(self, path: Path | str) -> str:
        """Workspace-relative POSIX form of ``path`` (absolute or relative)."""
        path = Path(path)
        if path.is_absolute():
            path = path.resolve().relative_to(self.root)
        return path.as_posix()

    def exists(self, relative_path: str) -> bool:
        return (self.root / relative_path).is_file()

    def scan(
        self,
        include: Optional[list[str]] = None,
        exclude: Optional[list[str]] = None,
    ) -> list[ScannedFile]:
        """Walk the workspace.

        Args:
            include: Globs a file must match; defaults to TS/JS sources.
            exclude: Globs that remove a file or prune a directory.

        Returns:
            De-duplicated files sorted by relative path.
        """
        include = DEFAULT_INCLUDE if include is None else include
        exclude = DEFAULT_EXCLUDE if exclude is None else exclude

        if not self.root.is_dir():
            logger.warning("Workspace root does not exist: %s", self.root)
            return []

        found: dict[str, ScannedFile] = {}

        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir + "/"

            # Prune excluded directories in place
            dirnames[:] = sorted(
                d for d in dirnames
                if not matches_any(f"{rel_dir}{d}/", exclude)
            )

            for filename in filenames:
                relative = f"{rel_dir}{filename}"
                if not matches_any(relative, include) or matches_any(relative, exclude):
                    continue

                absolute = Path(dirpath) / filename
                try:
                    size = absolute.stat().st_size
                except OSError:
                    continue
                if size > self.max_file_size:
                    logger.debug("Skipping %s: %d bytes exceeds limit", relative, size)
                    continue

                found[relative] = ScannedFile(path=relative, absolute_path=absolute)

        files = [found[p] for p in sorted(found)]
        logger.debug("Scanned %d files under %s", len(files), self.root)
        return files
