"""Heuristic symbol and relation extraction for TypeScript/JavaScript.

A single brace-counting pass per declaration kind finds the line span of
each top-level class, interface, function and exported variable. Class,
interface and function bodies then get a second, regex-based pass that emits
relation candidates by name only; resolving them to entities happens later,
once every file has been scanned.

This is deliberately not a parser. Braces are counted per line with string
literals and ``//`` comments masked out; anything that does not match simply
yields fewer symbols.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

from autograph.imports import import_candidates, parse_imports
from autograph.models import FileAnalysisResult, RelationCandidate, Symbol

logger = logging.getLogger(__name__)

# Identifiers that are never worth a relation: primitives, built-ins,
# utility types, request/response framework types and generic parameters.
PRIMITIVE_TYPES: frozenset[str] = frozenset({
    "string", "number", "boolean", "any", "void", "null", "undefined",
    "unknown", "never", "object", "bigint", "symbol", "this",
    "String", "Number", "Boolean", "Object", "Array", "Promise", "Map", "Set",
    "WeakMap", "WeakSet", "ReadonlyArray", "Iterable", "AsyncIterable",
    "Record", "Partial", "Required", "Readonly", "Pick", "Omit", "Exclude",
    "Extract", "NonNullable", "ReturnType", "Parameters", "InstanceType",
    "Awaited", "Date", "RegExp", "Error", "Function", "Symbol", "BigInt",
    "JSON", "Math", "Buffer",
    "Request", "Response", "Express", "Next",
    "T", "K", "V", "U", "P",
})

# Decorator and framework names that show up inside module dependency arrays.
FRAMEWORK_BUILTINS: frozenset[str] = frozenset({
    "Module", "Controller", "Injectable", "Component",
    "Get", "Post", "Put", "Delete", "Patch", "Options", "Head", "All",
    "Body", "Param", "Query", "Headers", "Req", "Res", "Next",
    "UseGuards", "UseInterceptors", "UsePipes", "UseFilters",
    "Inject", "Optional", "Self", "SkipSelf", "Host",
    "Entity", "Column", "PrimaryColumn", "PrimaryGeneratedColumn",
    "ManyToOne", "OneToMany", "ManyToMany", "OneToOne", "JoinColumn", "JoinTable",
    "Repository", "InjectRepository",
    "Logger", "ConfigService", "Connection",
    "ApiTags", "ApiOperation", "ApiResponse", "ApiBearerAuth",
})

_IDENT = r"[A-Za-z_$][\w$]*"

_STRING_RE = re.compile(r"""'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*"|`(?:\\.|[^`\\])*`""")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/")
_GENERIC_ARGS_RE = re.compile(r"<[^<>]*>")

_CLASS_RE = re.compile(
    rf"^(?P<export>export\s+)?(?:default\s+)?(?:declare\s+)?(?P<abstract>abstract\s+)?"
    rf"class\s+(?P<name>{_IDENT})(?:\s*<[^{{]*?>)?"
    rf"(?:\s+extends\s+(?P<base>[\w$.]+)(?:\s*<[^{{]*?>)?)?"
    rf"(?:\s+implements\s+(?P<implements>[^{{]+))?"
)
_INTERFACE_RE = re.compile(
    rf"^(?P<export>export\s+)?(?:default\s+)?(?:declare\s+)?"
    rf"interface\s+(?P<name>{_IDENT})(?:\s*<[^{{]*?>)?"
    rf"(?:\s+extends\s+(?P<parents>[^{{]+))?"
)
_FUNCTION_RE = re.compile(
    rf"^(?P<export>export\s+)?(?:default\s+)?(?P<async>async\s+)?function\s*\*?\s*(?P<name>{_IDENT})"
)
_ARROW_RE = re.compile(
    rf"^(?P<export>export\s+)?(?:const|let|var)\s+(?P<name>{_IDENT})\s*(?::[^=]+)?=\s*"
    rf"(?P<async>async\s+)?(?:<[^>]*>\s*)?(?:\([^)]*\)|{_IDENT})\s*(?::\s*[^=]+)?=>"
)
_EXPORT_VAR_RE = re.compile(rf"^export\s+(?:const|let|var)\s+(?P<name>{_IDENT})\s*(?::\s*[^=]+)?\s*=")

# Class bodies
_CONSTRUCTOR_RE = re.compile(r"\bconstructor\s*\(")
_PARAM_TYPE_RE = re.compile(rf"{_IDENT}\s*\??\s*:\s*({_IDENT})")
_INJECT_RE = re.compile(rf"@Inject\(\s*({_IDENT})\s*\)")
_MEMBER_WITH_MODIFIER_RE = re.compile(
    rf"^\s*(?:(?:private|public|protected|readonly|static|override)\s+)+[\w$]+\s*[?!]?\s*:\s*({_IDENT})"
)
_MEMBER_NO_MODIFIER_RE = re.compile(r"^[\w$]+\s*[?!]?\s*:\s*([A-Z][\w$]*)\s*(?:\[\s*\])?\s*;")
_ORM_RELATION_RE = re.compile(
    rf"@(?:ManyToOne|OneToMany|ManyToMany|OneToOne)\s*\(\s*"
    rf"(?:\(?\s*[\w$]*\s*\)?\s*=>\s*|[^)]*,\s*)({_IDENT})"
)
_ARRAY_TYPE_RE = re.compile(r":\s*([A-Z][\w$]*)\s*\[\s*\]")
_NEW_INSTANCE_RE = re.compile(rf"\bnew\s+({_IDENT})\s*[<(]")
_METHOD_RETURN_RE = re.compile(
    rf"(?:async\s+)?[\w$]+\s*\([^)]*\)\s*:\s*(?:Promise\s*<\s*)?({_IDENT})"
)
_GENERIC_TYPE_RE = re.compile(
    rf"\b(?:Promise|Observable|Array|Set|Map|Subject|BehaviorSubject)\s*<\s*({_IDENT})"
)
_METHOD_PARAM_RE = re.compile(rf"[\w$]+\s*\??\s*:\s*({_IDENT})\s*[,)]")

# Function bodies
_CLASS_AS_ARG_RE = re.compile(r"\.[\w$]+\s*\(\s*([A-Z][\w$]*)\s*[,)]")
_NEW_CLASS_RE = re.compile(r"\bnew\s+([A-Z][\w$]*)\s*\(")
_STATIC_CALL_RE = re.compile(r"\b([A-Z][\w$]*)\.[\w$]+\s*\(")
_TYPE_ASSERT_RE = re.compile(r"(?:\bas\s+|<)([A-Z][\w$]*)(?:>|\s)")
_TYPED_LOCAL_RE = re.compile(r"\b(?:const|let|var)\s+[\w$]+\s*:\s*([A-Z][\w$]*)")

# Interface bodies
_PROPERTY_TYPE_RE = re.compile(rf"^\s*[\w$]+\s*[?!]?\s*:\s*({_IDENT})(?:\s*\[\s*\])?")
_PROPERTY_GENERIC_RE = re.compile(
    rf":\s*(?:Array|Set|Map|Promise|Observable)\s*<\s*({_IDENT})"
)

# Module-style decorators
_DECORATED_CLASS_RE = re.compile(
    rf"@(?P<decorator>Module|Controller|Injectable|Component)\s*\(\s*(?P<body>\{{[\s\S]*?\}})\s*\)"
    rf"\s*(?:export\s+)?(?:default\s+)?class\s+(?P<name>{_IDENT})"
)
_DEPENDENCY_ARRAY_RE = re.compile(r"\b(imports|controllers|providers|exports)\s*:\s*\[")
_ARRAY_IDENTIFIER_RE = re.compile(r"\b([A-Z][a-zA-Z0-9]*)\b(?!\s*\.)")


def is_denied(name: str) -> bool:
    """True for identifiers that should never become relation targets."""
    if not name or name.isdigit():
        return True
    return name in PRIMITIVE_TYPES


def _code_part(line: str) -> str:
    """The line with string literals and /* */ comments blanked, and any // comment dropped."""
    masked = _BLOCK_COMMENT_RE.sub(" ", _STRING_RE.sub('""', line))
    comment = masked.find("//")
    if comment != -1:
        masked = masked[:comment]
    return masked


def _strip_generics(text: str) -> str:
    previous = None
    while previous != text:
        previous = text
        text = _GENERIC_ARGS_RE.sub("", text)
    return text


def _split_type_list(text: str) -> list[str]:
    """Split ``A, B<C>, ns.D`` into bare names: ``['A', 'B', 'D']``."""
    names = []
    for part in _strip_generics(text).split(","):
        part = part.strip().split(".")[-1].strip()
        if re.fullmatch(_IDENT, part):
            names.append(part)
    return names


def _is_comment(stripped: str) -> bool:
    return stripped.startswith("//") or stripped.startswith("*") or stripped.startswith("/*")


@dataclass
class _Block:
    """A declaration whose closing brace has not been seen yet."""

    name: str
    start_line: int
    metadata: dict = field(default_factory=dict)
    lines: list[str] = field(default_factory=list)
    opened: bool = False
    arrow: bool = False


class _Collector:
    """Accumulates relation candidates for one source, skipping repeats."""

    def __init__(
        self,
        source: str,
        file_path: str,
        relations: list[RelationCandidate],
    ):
        self.source = source
        self.file_path = file_path
        self.relations = relations
        self.seen: set[str] = set()

    def add(self, target: str, metadata: Optional[dict] = None) -> None:
        if is_denied(target) or target == self.source or target in self.seen:
            return
        self.seen.add(target)
        self.relations.append(RelationCandidate(
            source_name=self.source,
            source_file_path=self.file_path,
            target_name=target,
            verb="uses",
            metadata=metadata or {},
        ))


class SymbolExtractor:
    """Extract symbols and name-only relation candidates from one file.

    Args:
        file_exists: Optional predicate over workspace-relative paths, used
            only to pick the extension of relative import targets.
    """

    def __init__(self, file_exists: Optional[Callable[[str], bool]] = None):
        self.file_exists = file_exists

    def extract(self, file_path: str, text: str) -> FileAnalysisResult:
        """Analyze one file's text.

        Args:
            file_path: Workspace-relative POSIX path; recorded on every symbol.
            text: Full file content.

        Returns:
            FileAnalysisResult with symbols sorted by start line.
        """
        lines = text.splitlines()
        symbols: list[Symbol] = []
        relations: list[RelationCandidate] = []

        imports = parse_imports(text)

        self._extract_classes(lines, file_path, symbols, relations)
        self._extract_functions(lines, file_path, symbols, relations)
        self._extract_interfaces(lines, file_path, symbols, relations)
        self._extract_variables(lines, file_path, symbols)
        self._extract_decorator_dependencies(text, file_path, relations)

        import_relations = import_candidates(file_path, imports, self.file_exists)
        if import_relations:
            # File-level source for import edges
            symbols.append(Symbol(
                name=file_path,
                kind="file",
                file_path=file_path,
                start_line=1,
                end_line=max(len(lines), 1),
                metadata={"imports": len(import_relations)},
            ))
            relations.extend(import_relations)

        symbols.sort(key=lambda s: (s.start_line, s.kind, s.name))

        logger.debug(
            "Extracted %d symbols, %d relation candidates from %s",
            len(symbols), len(relations), file_path,
        )

        return FileAnalysisResult(
            file_path=file_path,
            symbols=symbols,
            relations=_dedupe(relations),
            imports=imports,
        )

    # ------------------------------------------------------------------
    # Classes
    # ------------------------------------------------------------------

    def _extract_classes(
        self,
        lines: list[str],
        file_path: str,
        symbols: list[Symbol],
        relations: list[RelationCandidate],
    ) -> None:
        depth = 0
        current: Optional[_Block] = None

        for i, line in enumerate(lines):
            stripped = line.strip()
            code = _code_part(line)

            match = _CLASS_RE.match(stripped) if depth == 0 else None
            if match:
                name = match.group("name")
                current = _Block(
                    name=name,
                    start_line=i + 1,
                    metadata={
                        "exported": bool(match.group("export")),
                        "abstract": bool(match.group("abstract")),
                    },
                )

                if match.group("base"):
                    base = match.group("base").split(".")[-1]
                    if base != name:
                        relations.append(RelationCandidate(
                            source_name=name,
                            source_file_path=file_path,
                            target_name=base,
                            verb="extends",
                        ))

                if match.group("implements"):
                    for iface in _split_type_list(match.group("implements")):
                        relations.append(RelationCandidate(
                            source_name=name,
                            source_file_path=file_path,
                            target_name=iface,
                            verb="implements",
                        ))

            if current is not None:
                current.lines.append(line)

            depth = max(depth + code.count("{") - code.count("}"), 0)

            if current is not None and depth == 0 and "}" in code:
                self._class_dependencies(current, file_path, relations)
                symbols.append(Symbol(
                    name=current.name,
                    kind="class",
                    file_path=file_path,
                    start_line=current.start_line,
                    end_line=i + 1,
                    description=_leading_doc(lines, current.start_line - 1),
                    metadata=current.metadata,
                ))
                current = None

    def _class_dependencies(
        self,
        block: _Block,
        file_path: str,
        relations: list[RelationCandidate],
    ) -> None:
        """Second pass over a class body: emit ``uses`` candidates."""
        uses = _Collector(block.name, file_path, relations)
        body = "\n".join(block.lines)

        for params in _constructor_params(body):
            for match in _INJECT_RE.finditer(params):
                uses.add(match.group(1))
            for match in _PARAM_TYPE_RE.finditer(params):
                uses.add(match.group(1))

        for line in block.lines:
            stripped = line.strip()
            if "constructor" in line or _is_comment(stripped):
                continue

            match = _MEMBER_WITH_MODIFIER_RE.match(line)
            if match:
                uses.add(match.group(1))

            if not stripped.startswith("@") and "(" not in stripped:
                match = _MEMBER_NO_MODIFIER_RE.match(stripped)
                if match:
                    uses.add(match.group(1))

            for regex in (
                _ORM_RELATION_RE,
                _ARRAY_TYPE_RE,
                _NEW_INSTANCE_RE,
                _METHOD_RETURN_RE,
                _GENERIC_TYPE_RE,
            ):
                for match in regex.finditer(line):
                    uses.add(match.group(1))

            if "(" in line and ")" in line:
                for match in _METHOD_PARAM_RE.finditer(line):
                    uses.add(match.group(1))

    # ------------------------------------------------------------------
    # Functions
    # ------------------------------------------------------------------

    def _extract_functions(
        self,
        lines: list[str],
        file_path: str,
        symbols: list[Symbol],
        relations: list[RelationCandidate],
    ) -> None:
        depth = 0
        in_class = False
        current: Optional[_Block] = None

        def close(block: _Block, end_line: int) -> None:
            symbols.append(Symbol(
                name=block.name,
                kind="function",
                file_path=file_path,
                start_line=block.start_line,
                end_line=end_line,
                description=_leading_doc(lines, block.start_line - 1),
                metadata=block.metadata,
            ))
            self._function_dependencies(block, file_path, relations)

        for i, line in enumerate(lines):
            stripped = line.strip()
            code = _code_part(line)

            # Brace-less arrow body wrapped without `;`: ends before a blank
            # line or the next top-level declaration
            if (
                current is not None
                and current.arrow
                and not current.opened
                and depth == 0
                and (not stripped or _starts_declaration(stripped))
            ):
                close(current, i)
                current = None

            if depth == 0 and _CLASS_RE.match(stripped):
                in_class = True

            if depth == 0 and not in_class and current is None:
                match = _FUNCTION_RE.match(stripped)
                arrow = False
                if not match:
                    match = _ARROW_RE.match(stripped)
                    arrow = bool(match)
                if match:
                    current = _Block(
                        name=match.group("name"),
                        start_line=i + 1,
                        metadata={
                            "exported": bool(match.group("export")),
                            "async": bool(match.group("async")),
                            "arrow": arrow,
                        },
                        arrow=arrow,
                    )

            if current is not None:
                current.lines.append(line)
                if "{" in code:
                    current.opened = True

            depth = max(depth + code.count("{") - code.count("}"), 0)

            if current is not None and depth == 0 and _function_closes(current, code):
                close(current, i + 1)
                current = None

            if in_class and depth == 0 and "}" in code:
                in_class = False

        if current is not None and current.arrow and not current.opened:
            end_line = current.start_line + len(current.lines) - 1
            while end_line > current.start_line and not lines[end_line - 1].strip():
                end_line -= 1
            close(current, end_line)

    def _function_dependencies(
        self,
        block: _Block,
        file_path: str,
        relations: list[RelationCandidate],
    ) -> None:
        uses = _Collector(block.name, file_path, relations)

        for line in block.lines:
            if _is_comment(line.strip()):
                continue
            for regex in (
                _CLASS_AS_ARG_RE,
                _NEW_CLASS_RE,
                _STATIC_CALL_RE,
                _TYPE_ASSERT_RE,
                _TYPED_LOCAL_RE,
            ):
                for match in regex.finditer(line):
                    uses.add(match.group(1))

    # ------------------------------------------------------------------
    # Interfaces
    # ------------------------------------------------------------------

    def _extract_interfaces(
        self,
        lines: list[str],
        file_path: str,
        symbols: list[Symbol],
        relations: list[RelationCandidate],
    ) -> None:
        depth = 0
        current: Optional[_Block] = None

        for i, line in enumerate(lines):
            stripped = line.strip()
            code = _code_part(line)

            match = _INTERFACE_RE.match(stripped) if depth == 0 else None
            if match:
                name = match.group("name")
                current = _Block(
                    name=name,
                    start_line=i + 1,
                    metadata={"exported": bool(match.group("export"))},
                )
                if match.group("parents"):
                    for parent in _split_type_list(match.group("parents")):
                        if parent != name:
                            relations.append(RelationCandidate(
                                source_name=name,
                                source_file_path=file_path,
                                target_name=parent,
                                verb="extends",
                            ))

            if current is not None:
                current.lines.append(line)

            depth = max(depth + code.count("{") - code.count("}"), 0)

            if current is not None and depth == 0 and "}" in code:
                uses = _Collector(current.name, file_path, relations)
                for content_line in current.lines[1:]:
                    match = _PROPERTY_TYPE_RE.match(content_line)
                    if match:
                        uses.add(match.group(1))
                    match = _PROPERTY_GENERIC_RE.search(content_line)
                    if match:
                        uses.add(match.group(1))

                symbols.append(Symbol(
                    name=current.name,
                    kind="interface",
                    file_path=file_path,
                    start_line=current.start_line,
                    end_line=i + 1,
                    description=_leading_doc(lines, current.start_line - 1),
                    metadata=current.metadata,
                ))
                current = None

    # ------------------------------------------------------------------
    # Variables and decorators
    # ------------------------------------------------------------------

    def _extract_variables(
        self,
        lines: list[str],
        file_path: str,
        symbols: list[Symbol],
    ) -> None:
        for i, line in enumerate(lines):
            stripped = line.strip()
            match = _EXPORT_VAR_RE.match(stripped)
            if not match or "=>" in stripped:
                continue
            symbols.append(Symbol(
                name=match.group("name"),
                kind="variable",
                file_path=file_path,
                start_line=i + 1,
                end_line=i + 1,
                description=_leading_doc(lines, i),
                metadata={"exported": True},
            ))

    def _extract_decorator_dependencies(
        self,
        text: str,
        file_path: str,
        relations: list[RelationCandidate],
    ) -> None:
        """Read provider/import/export arrays of ``@Module({...})`` classes."""
        for match in _DECORATED_CLASS_RE.finditer(text):
            if match.group("decorator") != "Module":
                continue

            class_name = match.group("name")
            uses = _Collector(class_name, file_path, relations)

            for prop, content in _dependency_arrays(match.group("body")):
                for ident in _ARRAY_IDENTIFIER_RE.finditer(content):
                    name = ident.group(1)
                    if name in FRAMEWORK_BUILTINS:
                        continue
                    uses.add(name, {"decorator_prop": prop})


def _enclosed(text: str, start: int, opener: str, closer: str) -> str:
    """Text from ``start`` up to the ``closer`` that balances an opener just before it."""
    level = 1
    pos = start
    while pos < len(text):
        char = text[pos]
        if char == opener:
            level += 1
        elif char == closer:
            level -= 1
            if level == 0:
                return text[start:pos]
        pos += 1
    return text[start:]


def _constructor_params(body: str) -> list[str]:
    """Text between the parentheses of each ``constructor(...)`` in a body."""
    return [_enclosed(body, m.end(), "(", ")") for m in _CONSTRUCTOR_RE.finditer(body)]


def _dependency_arrays(body: str) -> list[tuple[str, str]]:
    """``(prop, content)`` for each dependency array of a decorator object."""
    return [
        (m.group(1), _enclosed(body, m.end(), "[", "]"))
        for m in _DEPENDENCY_ARRAY_RE.finditer(body)
    ]


def _starts_declaration(stripped: str) -> bool:
    return stripped.startswith("export") or any(
        regex.match(stripped)
        for regex in (_FUNCTION_RE, _ARROW_RE, _CLASS_RE, _INTERFACE_RE)
    )


def _function_closes(block: _Block, code: str) -> bool:
    """Whether a function that is back at depth 0 ends on this line."""
    if block.opened:
        return True
    if code.rstrip().endswith(";"):
        return True
    # Expression-bodied arrow on its own line: `const f = (x) => x + 1`
    if block.arrow and "=>" in code:
        return bool(code.split("=>", 1)[1].strip())
    return False


def _leading_doc(lines: list[str], index: int) -> Optional[str]:
    """First text line of a /** ... */ block ending right above ``lines[index]``.

    Decorator lines between the comment and the declaration are skipped.
    """
    j = index - 1
    while j >= 0 and lines[j].strip().startswith("@"):
        j -= 1
    if j < 0 or not lines[j].strip().endswith("*/"):
        return None

    end = j
    while j >= 0 and "/**" not in lines[j]:
        j -= 1
    if j < 0:
        return None

    for raw in lines[j:end + 1]:
        text = raw.strip()
        for token in ("/**", "*/"):
            text = text.replace(token, "")
        text = text.strip().lstrip("*").strip()
        if text and not text.startswith("@"):
            return text
    return None


def _dedupe(relations: list[RelationCandidate]) -> list[RelationCandidate]:
    seen: set[tuple[str, str, str]] = set()
    unique = []
    for relation in relations:
        key = (relation.source_name, relation.target_name, relation.verb)
        if key in seen:
            continue
        seen.add(key)
        unique.append(relation)
    return unique


def extract_file(
    file_path: str,
    text: str,
    file_exists: Optional[Callable[[str], bool]] = None,
) -> FileAnalysisResult:
    """Convenience wrapper around :meth:`SymbolExtractor.extract`."""
    return SymbolExtractor(file_exists).extract(file_path, text)
