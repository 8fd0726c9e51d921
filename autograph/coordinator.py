"""Full-workspace and single-file analysis.

A full run walks a fixed sequence of phases::

    loading -> clearing -> scanning -> extracting -> reconciling -> resolving -> complete

Clearing, reconciling and resolving each commit in their own transaction.
If one of them fails the store keeps whatever the earlier phases committed
and the run stops with :class:`AnalysisPhaseError`.

Single-file runs never touch the global relation table. Relations that other
files hold into the re-analyzed file are only rebuilt when those files are
analyzed again, or immediately with ``refresh_dependents=True``.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Callable, Optional, TypeVar

from autograph.extractor import SymbolExtractor
from autograph.incremental import ChangeTracker
from autograph.models import (
    AnalysisError,
    AnalysisProgress,
    AnalysisResult,
    Entity,
    EntityKey,
    FileAnalysisResult,
    Relation,
    RelationCandidate,
    Symbol,
)
from autograph.scanner import FileScanner
from autograph.store import GraphStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[AnalysisProgress], None]


class AnalysisPhaseError(Exception):
    """A store failure that aborted one phase of a run."""

    def __init__(self, phase: str, cause: BaseException):
        self.phase = phase
        self.cause = cause
        super().__init__(f"Analysis failed during {phase}: {cause}")


class IncrementalCoordinator:
    """Keeps a GraphStore in sync with the files of one workspace.

    Args:
        store: Open graph store; one coordinator per store.
        root: Workspace root directory.
        scanner: File discovery; defaults to a FileScanner on ``root``.
        include: Include globs passed to the scanner.
        exclude: Exclude globs passed to the scanner.
        extractor: Symbol extractor; defaults to one that resolves relative
            imports against files on disk.
        progress: Optional callback for advisory progress reports.
    """

    def __init__(
        self,
        store: GraphStore,
        root: Path | str,
        scanner: Optional[FileScanner] = None,
        include: Optional[list[str]] = None,
        exclude: Optional[list[str]] = None,
        extractor: Optional[SymbolExtractor] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        self.store = store
        self.scanner = scanner or FileScanner(root)
        self.root = self.scanner.root
        self.include = include
        self.exclude = exclude
        self.extractor = extractor or SymbolExtractor(file_exists=self.scanner.exists)
        self.tracker = ChangeTracker(store, self.root)
        self.progress = progress

    def _report(
        self,
        phase: str,
        percent: float,
        message: str = "",
        current: int = 0,
        total: int = 0,
    ) -> None:
        if self.progress is None:
            return
        self.progress(AnalysisProgress(phase, percent, message, current, total))

    def _run_phase(self, phase: str, fn: Callable[[], T]) -> T:
        try:
            return self.store.transaction(fn)
        except sqlite3.Error as exc:
            logger.error("Phase %s rolled back: %s", phase, exc)
            raise AnalysisPhaseError(phase, exc) from exc

    def _extract(self, relative: str, absolute: Path) -> FileAnalysisResult | AnalysisError:
        try:
            text = absolute.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read %s: %s", relative, exc)
            return AnalysisError(file_path=relative, message=f"Read failed: {exc}")

        try:
            return self.extractor.extract(relative, text)
        except Exception as exc:
            logger.exception("Extraction failed for %s", relative)
            return AnalysisError(file_path=relative, message=f"Extraction failed: {exc}")

    def _create_entity(self, symbol: Symbol) -> Entity:
        return self.store.upsert_entity(
            name=symbol.name,
            kind=symbol.kind,
            file_path=symbol.file_path,
            start_line=symbol.start_line,
            end_line=symbol.end_line,
            description=symbol.description,
            metadata=symbol.metadata,
        )

    def _resolve(self, candidate: RelationCandidate) -> Optional[Relation]:
        """Turn a name-only candidate into a stored relation, or discard it.

        The source must live in its own file. A target with a stated file
        must live in that file; otherwise the first match by name anywhere
        in the store wins, ordered by (file_path, start_line, id).
        """
        source = self.store.find_entity_by_name(
            candidate.source_name, candidate.source_file_path, fallback=False
        )
        if source is None:
            return None

        if candidate.target_file_path is not None:
            target = self.store.find_entity_by_name(
                candidate.target_name, candidate.target_file_path, fallback=False
            )
        else:
            target = self.store.find_entity_by_name(candidate.target_name)
        if target is None or target.id == source.id:
            return None

        return self.store.upsert_relation(
            source.id, target.id, candidate.verb, candidate.metadata
        )

    # ------------------------------------------------------------------
    # Full workspace
    # ------------------------------------------------------------------

    def analyze_workspace(self) -> AnalysisResult:
        """Rebuild the graph from every file the scanner returns.

        Entities whose key reappears keep their id and observations. All
        relations are rebuilt from scratch.

        Returns:
            AnalysisResult with the surviving entities, the relations
            created by this run and per-file errors.

        Raises:
            AnalysisPhaseError: If a store transaction fails.
        """
        result = AnalysisResult()

        # LOAD
        self._report("loading", 0, "Loading existing entities")
        old_entities = self.store.all_entities_by_key()
        cached = self.tracker.load()
        logger.debug("Loaded %d entities, %d cached hashes", len(old_entities), len(cached))

        # CLEAR
        self._report("clearing", 5, "Clearing relations and file cache")
        self._run_phase("clearing", self._clear)

        # SCAN
        self._report("scanning", 10, "Scanning workspace")
        files = self.scanner.scan(self.include, self.exclude)
        total = len(files)

        # EXTRACT
        new_symbols: dict[EntityKey, Symbol] = {}
        candidates: list[RelationCandidate] = []
        hashes: dict[str, str] = {}

        for index, scanned in enumerate(files):
            self._report(
                "extracting",
                10 + 50 * index / max(total, 1),
                scanned.path,
                index + 1,
                total,
            )
            analysis = self._extract(scanned.path, scanned.absolute_path)
            if isinstance(analysis, AnalysisError):
                result.errors.append(analysis)
                continue

            for symbol in analysis.symbols:
                new_symbols.setdefault(symbol.key, symbol)
            candidates.extend(analysis.relations)

            content_hash = self.tracker.current_hash(scanned.path)
            if content_hash is not None:
                hashes[scanned.path] = content_hash
            result.files_analyzed += 1

        # RECONCILE
        self._report("reconciling", 70, f"Reconciling {len(new_symbols)} symbols")

        def reconcile() -> list[Entity]:
            removed = 0
            for key, entity in old_entities.items():
                if key not in new_symbols and self.store.delete_entity_by_id(entity.id):
                    removed += 1
            logger.debug("Removed %d stale entities", removed)
            return [self._create_entity(symbol) for symbol in new_symbols.values()]

        result.entities = self._run_phase("reconciling", reconcile)

        # RESOLVE
        self._report("resolving", 85, f"Resolving {len(candidates)} relation candidates")

        def resolve() -> list[Relation]:
            relations: dict[str, Relation] = {}
            for candidate in candidates:
                relation = self._resolve(candidate)
                if relation is not None:
                    relations[relation.id] = relation
            for file_path, content_hash in hashes.items():
                self.tracker.record_analyzed(file_path, content_hash)
            return list(relations.values())

        result.relations = self._run_phase("resolving", resolve)

        # REPORT
        self._report("complete", 100, "Analysis complete", total, total)
        logger.info(
            "Analyzed %d files: %d entities, %d relations, %d errors",
            result.files_analyzed, len(result.entities), len(result.relations), len(result.errors),
        )
        return result

    def _clear(self) -> None:
        self.store.clear_relations()
        self.store.clear_file_cache()

    # ------------------------------------------------------------------
    # Single file
    # ------------------------------------------------------------------

    def analyze_file(
        self,
        file_path: Path | str,
        force: bool = False,
        refresh_dependents: bool = False,
    ) -> Optional[AnalysisResult]:
        """Re-analyze one file after it changed.

        The file's entities are dropped and re-created, then its relation
        candidates are resolved against the store as it is now.

        Args:
            file_path: Workspace-relative or absolute path.
            force: Analyze even when the content hash is unchanged.
            refresh_dependents: Also rebuild the relations of the files that
                held relations into this one (one level, no recursion).
                An unchanged dependent keeps its entities and only has its
                candidates resolved again; a changed one is re-analyzed.

        Returns:
            None when the file is unchanged, otherwise an AnalysisResult.

        Raises:
            AnalysisPhaseError: If the store transaction fails.
        """
        relative = self.scanner.relative_path(file_path)
        absolute = self.root / relative

        if not absolute.is_file():
            removed = self.remove_file(relative)
            logger.info("%s no longer exists; removed %d entities", relative, removed)
            return AnalysisResult()

        current_hash = self.tracker.current_hash(relative)
        if not force and not self.tracker.should_analyze(relative, current_hash):
            return None

        result = AnalysisResult()
        analysis = self._extract(relative, absolute)
        if isinstance(analysis, AnalysisError):
            result.errors.append(analysis)
            return result

        dependents = self.store.dependent_files(relative) if refresh_dependents else []

        def apply() -> tuple[list[Entity], list[Relation]]:
            self.store.delete_entities_by_file(relative)
            self.tracker.forget(relative)

            entities = list({
                e.id: e for e in (self._create_entity(s) for s in analysis.symbols)
            }.values())

            relations: dict[str, Relation] = {}
            for candidate in analysis.relations:
                relation = self._resolve(candidate)
                if relation is not None:
                    relations[relation.id] = relation

            if current_hash is not None:
                self.tracker.record_analyzed(relative, current_hash)
            return entities, list(relations.values())

        result.entities, result.relations = self._run_phase("single-file", apply)
        result.files_analyzed = 1
        logger.info(
            "Analyzed %s: %d entities, %d relations",
            relative, len(result.entities), len(result.relations),
        )

        for dependent in dependents:
            logger.debug("Refreshing dependent %s", dependent)
            if self.tracker.should_analyze(dependent):
                sub = self.analyze_file(dependent, force=True)
            else:
                sub = self._refresh_relations(dependent)
            result.entities.extend(sub.entities)
            result.relations.extend(sub.relations)
            result.files_analyzed += sub.files_analyzed
            result.errors.extend(sub.errors)

        return result

    def _refresh_relations(self, relative: str) -> AnalysisResult:
        """Re-resolve an unchanged file's candidates, keeping its entities."""
        result = AnalysisResult()
        analysis = self._extract(relative, self.root / relative)
        if isinstance(analysis, AnalysisError):
            result.errors.append(analysis)
            return result

        def apply() -> list[Relation]:
            relations: dict[str, Relation] = {}
            for candidate in analysis.relations:
                relation = self._resolve(candidate)
                if relation is not None:
                    relations[relation.id] = relation
            return list(relations.values())

        result.relations = self._run_phase("single-file", apply)
        return result

    def remove_file(self, file_path: Path | str) -> int:
        """Drop a deleted file's entities and cache row.

        Returns:
            Number of entities removed.
        """
        relative = self.scanner.relative_path(file_path)

        def apply() -> int:
            count = self.store.delete_entities_by_file(relative)
            self.tracker.forget(relative)
            return count

        return self._run_phase("single-file", apply)
