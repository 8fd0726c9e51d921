"""Tests for import parsing and relative module resolution."""

import pytest

from autograph.imports import (
    import_candidates,
    is_relative_module,
    parse_imports,
    resolve_import_path,
)


IMPORTS_TS = """\
import Default from './default';
import { A, B as C } from "./named";
import * as NS from '../ns';
import Def, { D } from './mixed';
import {
  E,
  F,
} from './multi';
import './side-effect';
import type { G } from './types';
"""


class TestParseImports:
    """Tests for parse_imports."""

    def test_all_forms(self):
        """Default, named, namespace and mixed forms are recognised."""
        imports = parse_imports(IMPORTS_TS)

        summary = [
            (i.module_name, i.imported_names, i.is_default, i.is_namespace, i.line)
            for i in imports
        ]
        assert summary == [
            ("./default", ["Default"], True, False, 1),
            ("./named", ["A", "B"], False, False, 2),
            ("../ns", ["NS"], False, True, 3),
            ("./mixed", ["Def"], True, False, 4),
            ("./mixed", ["D"], False, False, 4),
            ("./multi", ["E", "F"], False, False, 5),
            ("./types", ["G"], False, False, 10),
        ]

    def test_side_effect_import_skipped(self):
        """Imports without bindings produce nothing."""
        assert parse_imports("import './polyfills';\n") == []

    def test_no_imports(self):
        assert parse_imports("export const x = 1;\n") == []


class TestResolveImportPath:
    """Tests for resolve_import_path."""

    def test_without_predicate_returns_base(self):
        """Without a file check the normalised, extensionless path is returned."""
        assert resolve_import_path("src/app/a.ts", "./b") == "src/app/b"
        assert resolve_import_path("src/app/a.ts", "../lib/c") == "src/lib/c"

    def test_extension_order(self):
        """.ts wins over .tsx when both exist."""
        existing = {"src/b.ts", "src/b.tsx"}
        assert resolve_import_path("src/a.ts", "./b", existing.__contains__) == "src/b.ts"

    def test_tsx_candidate(self):
        existing = {"src/b.tsx"}
        assert resolve_import_path("src/a.ts", "./b", existing.__contains__) == "src/b.tsx"

    def test_index_file(self):
        """A directory import resolves to its index file."""
        existing = {"src/lib/index.ts"}
        assert resolve_import_path("src/app/a.ts", "../lib", existing.__contains__) == "src/lib/index.ts"

    def test_explicit_extension(self):
        """A specifier that already carries an extension is tried as written."""
        existing = {"src/c.js"}
        assert resolve_import_path("src/a.ts", "./c.js", existing.__contains__) == "src/c.js"

    def test_dotted_basename(self):
        """A dot inside the basename is not mistaken for an extension."""
        existing = {"src/user.entity.ts"}
        assert resolve_import_path("src/a.ts", "./user.entity", existing.__contains__) == "src/user.entity.ts"

    def test_unresolved_falls_back_to_base(self):
        assert resolve_import_path("src/a.ts", "./missing", lambda p: False) == "src/missing"


class TestImportCandidates:
    """Tests for lowering imports into relation candidates."""

    def test_only_relative_modules(self):
        """Package imports never become candidates."""
        imports = parse_imports(
            "import { Injectable } from '@nestjs/common';\n"
            "import { User } from './user';\n"
        )
        candidates = import_candidates("src/a.ts", imports, {"src/user.ts"}.__contains__)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.source_name == "src/a.ts"
        assert candidate.source_file_path == "src/a.ts"
        assert candidate.target_name == "User"
        assert candidate.target_file_path == "src/user.ts"
        assert candidate.verb == "imports"
        assert candidate.metadata == {"module": "./user", "line": 2}

    @pytest.mark.parametrize("module,expected", [
        ("./a", True),
        ("../a", True),
        ("lodash", False),
        ("@scope/pkg", False),
    ])
    def test_is_relative_module(self, module, expected):
        assert is_relative_module(module) is expected
