"""Import statement parsing and relative module resolution."""

from __future__ import annotations

import posixpath
import re
from typing import Callable, Optional

from autograph.models import ImportInfo, RelationCandidate

# Tried in order after the path as written; first existing file wins.
RESOLVE_SUFFIXES: tuple[str, ...] = (
    ".ts",
    ".tsx",
    ".js",
    ".jsx",
    "/index.ts",
    "/index.tsx",
    "/index.js",
)

SOURCE_EXTENSIONS: tuple[str, ...] = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")

# import X from 'm' | import { a, b as c } from 'm' | import * as N from 'm'
# | import X, { a } from 'm' | import X, * as N from 'm'
# Named braces may span lines.
_IMPORT_RE = re.compile(
    r"""^[ \t]*import\s+(?:type\s+)?
        (?:
            (?P<default>[A-Za-z_$][\w$]*)
            (?:\s*,\s*)?
        )?
        (?:
            \*\s*as\s+(?P<namespace>[A-Za-z_$][\w$]*)
          | \{(?P<named>[^}]*)\}
        )?
        \s*from\s*['"](?P<module>[^'"]+)['"]""",
    re.MULTILINE | re.VERBOSE,
)


def _line_of(text: str, offset: int) -> int:
    return text.count("\n", 0, offset) + 1


def _split_named(named: str) -> list[str]:
    """Split the body of `{ ... }` into exported names, dropping aliases."""
    names = []
    for part in named.split(","):
        part = part.strip()
        if not part:
            continue
        if part.startswith("type "):
            part = part[len("type "):].strip()
        name = re.split(r"\s+as\s+", part)[0].strip()
        if name:
            names.append(name)
    return names


def parse_imports(text: str) -> list[ImportInfo]:
    """Parse default, named and namespace import statements.

    Side-effect imports (``import './x'``) carry no names and are skipped.

    Args:
        text: Full file content.

    Returns:
        ImportInfo records in source order.
    """
    imports: list[ImportInfo] = []

    for match in _IMPORT_RE.finditer(text):
        default = match.group("default")
        namespace = match.group("namespace")
        named = match.group("named")
        module = match.group("module")
        line = _line_of(text, match.start())

        if default is None and namespace is None and named is None:
            continue

        if default:
            imports.append(ImportInfo(
                module_name=module,
                imported_names=[default],
                is_default=True,
                is_namespace=False,
                line=line,
            ))
        if namespace:
            imports.append(ImportInfo(
                module_name=module,
                imported_names=[namespace],
                is_default=False,
                is_namespace=True,
                line=line,
            ))
        if named is not None:
            names = _split_named(named)
            if names:
                imports.append(ImportInfo(
                    module_name=module,
                    imported_names=names,
                    is_default=False,
                    is_namespace=False,
                    line=line,
                ))

    return imports


def resolve_import_path(
    from_file: str,
    module_name: str,
    file_exists: Optional[Callable[[str], bool]] = None,
) -> str:
    """Resolve a relative module specifier to a workspace-relative file path.

    Args:
        from_file: POSIX path of the importing file, relative to the workspace.
        module_name: The specifier as written, e.g. ``'./models/user'``.
        file_exists: Predicate for workspace-relative paths. When omitted no
            candidate is confirmed and the extensionless path is returned.

    Returns:
        The first candidate accepted by ``file_exists``, otherwise the
        normalised path without an extension.
    """
    base = posixpath.normpath(posixpath.join(posixpath.dirname(from_file), module_name))

    if file_exists is None:
        return base

    candidates = []
    if posixpath.splitext(base)[1] in SOURCE_EXTENSIONS:
        candidates.append(base)
    candidates.extend(base + suffix for suffix in RESOLVE_SUFFIXES)

    for candidate in candidates:
        if file_exists(candidate):
            return candidate

    return base


def is_relative_module(module_name: str) -> bool:
    return module_name.startswith(".")


def import_candidates(
    file_path: str,
    imports: list[ImportInfo],
    file_exists: Optional[Callable[[str], bool]] = None,
) -> list[RelationCandidate]:
    """Lower local imports into ``imports`` relation candidates.

    The source is the file-level pseudo-symbol, named after the file path.
    Package imports are external and never become candidates.
    """
    candidates: list[RelationCandidate] = []

    for imp in imports:
        if not is_relative_module(imp.module_name):
            continue

        target_file = resolve_import_path(file_path, imp.module_name, file_exists)
        for name in imp.imported_names:
            candidates.append(RelationCandidate(
                source_name=file_path,
                source_file_path=file_path,
                target_name=name,
                target_file_path=target_file,
                verb="imports",
                metadata={"module": imp.module_name, "line": imp.line},
            ))

    return candidates
