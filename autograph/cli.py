"""Command-line interface for autograph."""

from __future__ import annotations

import argparse
import json
import logging
import sqlite3
import sys
from enum import IntEnum
from pathlib import Path
from typing import Optional

from autograph.config import (
    DEFAULT_CONFIG_PATH,
    LOG_LEVELS,
    ConfigError,
    GraphConfig,
    find_config,
    get_default_config,
    load_config,
    write_config,
)
from autograph.coordinator import AnalysisPhaseError, IncrementalCoordinator
from autograph.incremental import ChangeTracker
from autograph.models import AnalysisProgress, AnalysisResult
from autograph.query import (
    export_graph,
    get_summary,
    query_by_file,
    query_by_name,
    query_dependents,
    query_related,
)
from autograph.scanner import FileScanner
from autograph.store import GraphStore

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    CONFIG_ERROR = 1
    FILE_SYSTEM_ERROR = 2
    PARTIAL_SUCCESS = 3


def _get_config(config_path: Optional[str]) -> GraphConfig:
    """Load config from path or use defaults.

    Search order:
    1. Explicit --config path
    2. .autograph/config.yaml
    3. autograph.yaml
    4. Built-in defaults
    """
    return load_config(find_config(Path.cwd(), config_path))


def _setup_logging(args: argparse.Namespace, config: GraphConfig) -> None:
    level = (getattr(args, "log_level", None) or config.log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )


def _config_error(e: ConfigError) -> int:
    print(json.dumps(e.to_json()), file=sys.stderr)
    return ExitCode.CONFIG_ERROR


def _db_path(config: GraphConfig, root: Path) -> Path:
    db_path = Path(config.db_path)
    return db_path if db_path.is_absolute() else root / db_path


def _open_existing(config: GraphConfig, root: Path) -> Optional[GraphStore]:
    """Open the store only if the database file is already there."""
    db_path = _db_path(config, root)
    if not db_path.exists():
        print("Graph database not found. Run 'autograph analyze' first.")
        return None
    return GraphStore(db_path).open()


def _log_progress(progress: AnalysisProgress) -> None:
    logger.debug("[%3.0f%%] %s %s", progress.percent, progress.phase, progress.message)


def _print_result(result: AnalysisResult) -> None:
    print(f"  Files analyzed: {result.files_analyzed}")
    print(f"  Entities: {len(result.entities)}")
    print(f"  Relations: {len(result.relations)}")
    for error in result.errors:
        print(f"  Error: {error.file_path}: {error.message}", file=sys.stderr)


def cmd_init(_args: argparse.Namespace) -> int:
    """Initialize autograph in the current project."""
    root = Path.cwd()
    config_path = root / DEFAULT_CONFIG_PATH

    print("Initializing autograph...")

    if config_path.exists():
        print(f"  Config already exists: {config_path}")
        try:
            config = load_config(config_path)
        except ConfigError as e:
            return _config_error(e)
    else:
        config = get_default_config()
        write_config(config, config_path)
        print(f"  Created {config_path} with defaults")

    # Keep the database out of version control
    gitignore_path = root / ".gitignore"
    db_pattern = config.db_path
    if gitignore_path.exists():
        content = gitignore_path.read_text()
        if db_pattern not in content:
            with open(gitignore_path, "a") as f:
                f.write(f"\n# autograph database\n{db_pattern}\n")
            print(f"  Added {db_pattern} to .gitignore")
    else:
        gitignore_path.write_text(f"# autograph database\n{db_pattern}\n")
        print(f"  Created .gitignore with {db_pattern}")

    print("\nautograph initialized! Next steps:")
    print(f"  1. Edit {DEFAULT_CONFIG_PATH} to adjust include/exclude patterns")
    print("  2. Run 'autograph analyze' to build the graph")
    print("  3. Query with 'autograph query --name <symbol>'")

    return ExitCode.SUCCESS


def cmd_analyze(args: argparse.Namespace) -> int:
    """Analyze the whole workspace."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        return _config_error(e)
    _setup_logging(args, config)

    root = Path.cwd()
    print("Analyzing workspace...")

    try:
        with GraphStore(_db_path(config, root)) as store:
            coordinator = IncrementalCoordinator(
                store,
                root,
                scanner=FileScanner(root, config.max_file_size),
                include=config.include,
                exclude=config.exclude,
                progress=_log_progress,
            )
            result = coordinator.analyze_workspace()
    except (AnalysisPhaseError, sqlite3.Error, OSError) as e:
        print(f"Analysis failed: {e}", file=sys.stderr)
        return ExitCode.FILE_SYSTEM_ERROR

    _print_result(result)

    if result.errors:
        return ExitCode.PARTIAL_SUCCESS
    return ExitCode.SUCCESS


def cmd_analyze_file(args: argparse.Namespace) -> int:
    """Re-analyze a single file."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        return _config_error(e)
    _setup_logging(args, config)

    root = Path.cwd()

    try:
        with GraphStore(_db_path(config, root)) as store:
            coordinator = IncrementalCoordinator(
                store,
                root,
                scanner=FileScanner(root, config.max_file_size),
                include=config.include,
                exclude=config.exclude,
            )
            result = coordinator.analyze_file(
                args.path,
                force=args.force,
                refresh_dependents=args.refresh_dependents,
            )
    except ValueError as e:
        print(f"Path is outside the workspace: {e}", file=sys.stderr)
        return ExitCode.CONFIG_ERROR
    except (AnalysisPhaseError, sqlite3.Error, OSError) as e:
        print(f"Analysis failed: {e}", file=sys.stderr)
        return ExitCode.FILE_SYSTEM_ERROR

    if result is None:
        print(f"Unchanged: {args.path}")
        return ExitCode.SUCCESS

    print(f"Analyzed {args.path}")
    _print_result(result)

    if result.errors:
        return ExitCode.PARTIAL_SUCCESS
    return ExitCode.SUCCESS


def cmd_query(args: argparse.Namespace) -> int:
    """Query the graph."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        return _config_error(e)
    _setup_logging(args, config)

    store = _open_existing(config, Path.cwd())
    if store is None:
        return ExitCode.FILE_SYSTEM_ERROR

    with store:
        if args.file:
            results = query_by_file(store, args.file)
            if results:
                print(json.dumps(results, indent=2))
            else:
                print(f"No entities in: {args.file}")

        elif args.name:
            results = query_by_name(store, args.name, exact=args.exact)
            if results:
                print(json.dumps(results, indent=2))
            else:
                print(f"No entities named: {args.name}")

        elif args.related:
            related = query_related(store, args.related, args.direction)
            if related:
                print(json.dumps([r.to_dict() for r in related], indent=2))
            else:
                print(f"No related entities for: {args.related}")

        elif args.dependents:
            results = query_dependents(store, args.dependents)
            if results:
                for r in results:
                    print(r)
            else:
                print(f"No files depend on: {args.dependents}")

        elif args.summary:
            print(json.dumps(get_summary(store), indent=2))

        else:
            print("Please specify --file, --name, --related, --dependents, or --summary")
            return ExitCode.CONFIG_ERROR

    return ExitCode.SUCCESS


def cmd_status(args: argparse.Namespace) -> int:
    """Show graph status."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        return _config_error(e)
    _setup_logging(args, config)

    root = Path.cwd()
    db_path = _db_path(config, root)

    print("Graph Status")
    print("=" * 40)

    if not db_path.exists():
        print("\nGraph Database: NOT FOUND")
        print(f"  Expected at: {db_path}")
        print("\nRun 'autograph analyze' to create it.")
        return ExitCode.SUCCESS

    with GraphStore(db_path) as store:
        summary = get_summary(store)
        scanned = FileScanner(root, config.max_file_size).scan(config.include, config.exclude)
        changed = ChangeTracker(store, root).changed_files([f.path for f in scanned])

    print(f"\nGraph Database: {db_path}")
    print(f"  Last analyzed: {summary['last_analyzed'] or 'never'}")
    print(f"  Files: {summary['file_count']}")
    print(f"  Entities: {summary['entity_count']}")
    print(f"  Relations: {summary['relation_count']}")
    print(f"  Observations: {summary['observation_count']}")
    print("  By kind:")
    for kind, count in summary["by_kind"].items():
        print(f"    {kind}: {count}")
    print("  By verb:")
    for verb, count in summary["by_verb"].items():
        print(f"    {verb}: {count}")
    print(f"\nChanged since last analysis: {len(changed)} files")

    return ExitCode.SUCCESS


def cmd_observe(args: argparse.Namespace) -> int:
    """Manage observations attached to entities."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        return _config_error(e)
    _setup_logging(args, config)

    store = _open_existing(config, Path.cwd())
    if store is None:
        return ExitCode.FILE_SYSTEM_ERROR

    with store:
        if args.action == "add":
            observation = store.add_observation(args.entity_id, args.content)
            if observation is None:
                print(f"Entity not found: {args.entity_id}", file=sys.stderr)
                return ExitCode.FILE_SYSTEM_ERROR
            print(json.dumps(observation.to_dict(), indent=2))

        elif args.action == "list":
            observations = store.get_observations_by_entity(args.entity_id)
            if observations:
                print(json.dumps([o.to_dict() for o in observations], indent=2))
            else:
                print(f"No observations for: {args.entity_id}")

        elif args.action == "edit":
            observation = store.update_observation(args.observation_id, args.content)
            if observation is None:
                print(f"Observation not found: {args.observation_id}", file=sys.stderr)
                return ExitCode.FILE_SYSTEM_ERROR
            print(json.dumps(observation.to_dict(), indent=2))

        elif args.action == "delete":
            if not store.delete_observation(args.observation_id):
                print(f"Observation not found: {args.observation_id}", file=sys.stderr)
                return ExitCode.FILE_SYSTEM_ERROR
            print(f"Deleted {args.observation_id}")

    return ExitCode.SUCCESS


def cmd_export(args: argparse.Namespace) -> int:
    """Export the graph as JSON."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        return _config_error(e)
    _setup_logging(args, config)

    store = _open_existing(config, Path.cwd())
    if store is None:
        return ExitCode.FILE_SYSTEM_ERROR

    with store:
        data = export_graph(store)

    text = json.dumps(data, indent=2)
    if args.output:
        output = Path(args.output)
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(text, encoding="utf-8")
        except OSError as e:
            print(f"Cannot write {output}: {e}", file=sys.stderr)
            return ExitCode.FILE_SYSTEM_ERROR
        print(f"Exported {data['entity_count']} entities, {data['relation_count']} relations")
        print(f"Output: {output}")
    else:
        print(text)

    return ExitCode.SUCCESS


def cmd_clear(args: argparse.Namespace) -> int:
    """Remove everything from the graph."""
    try:
        config = _get_config(args.config)
    except ConfigError as e:
        return _config_error(e)
    _setup_logging(args, config)

    store = _open_existing(config, Path.cwd())
    if store is None:
        return ExitCode.FILE_SYSTEM_ERROR

    with store:
        store.clear_all()

    print("Graph cleared")
    return ExitCode.SUCCESS


def _add_config_arg(parser: argparse.ArgumentParser) -> None:
    """Add --config argument to a parser."""
    parser.add_argument(
        "--config",
        "-c",
        help=f"Path to config file (default: {DEFAULT_CONFIG_PATH})",
    )


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="autograph",
        description="Incremental code-structure graph for TypeScript/JavaScript workspaces",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        help="Logging verbosity (default: from config, else warning)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # init command
    subparsers.add_parser(
        "init",
        help="Initialize autograph in current project",
    )

    # analyze command
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Analyze the whole workspace",
    )
    _add_config_arg(analyze_parser)

    # analyze-file command
    file_parser = subparsers.add_parser(
        "analyze-file",
        help="Re-analyze one changed file",
    )
    _add_config_arg(file_parser)
    file_parser.add_argument("path", help="File to analyze")
    file_parser.add_argument(
        "--force",
        action="store_true",
        help="Analyze even if the content hash is unchanged",
    )
    file_parser.add_argument(
        "--refresh-dependents",
        action="store_true",
        help="Also re-analyze files with relations into this file",
    )

    # query command
    query_parser = subparsers.add_parser(
        "query",
        help="Query the graph",
    )
    _add_config_arg(query_parser)
    query_parser.add_argument("--file", help="Entities declared in a file")
    query_parser.add_argument("--name", help="Entities whose name contains this text")
    query_parser.add_argument("--exact", action="store_true", help="Match --name exactly")
    query_parser.add_argument("--related", metavar="ENTITY_ID", help="Entities related to an entity")
    query_parser.add_argument(
        "--direction",
        choices=["incoming", "outgoing"],
        help="Restrict --related to one direction",
    )
    query_parser.add_argument("--dependents", metavar="PATH", help="Files with relations into a file")
    query_parser.add_argument("--summary", action="store_true", help="Show summary stats")

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show graph status",
    )
    _add_config_arg(status_parser)

    # observe command
    observe_parser = subparsers.add_parser(
        "observe",
        help="Manage observations on entities",
    )
    _add_config_arg(observe_parser)
    observe_sub = observe_parser.add_subparsers(dest="action", required=True)
    observe_add = observe_sub.add_parser("add", help="Attach an observation")
    observe_add.add_argument("entity_id")
    observe_add.add_argument("content")
    observe_list = observe_sub.add_parser("list", help="List an entity's observations")
    observe_list.add_argument("entity_id")
    observe_edit = observe_sub.add_parser("edit", help="Replace an observation's text")
    observe_edit.add_argument("observation_id")
    observe_edit.add_argument("content")
    observe_delete = observe_sub.add_parser("delete", help="Delete an observation")
    observe_delete.add_argument("observation_id")

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Export the graph as JSON",
    )
    _add_config_arg(export_parser)
    export_parser.add_argument("--output", "-o", help="Write to a file instead of stdout")

    # clear command
    clear_parser = subparsers.add_parser(
        "clear",
        help="Remove all entities, relations, observations and cached hashes",
    )
    _add_config_arg(clear_parser)

    args = parser.parse_args(argv)

    commands = {
        "init": cmd_init,
        "analyze": cmd_analyze,
        "analyze-file": cmd_analyze_file,
        "query": cmd_query,
        "status": cmd_status,
        "observe": cmd_observe,
        "export": cmd_export,
        "clear": cmd_clear,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
