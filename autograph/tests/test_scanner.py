"""Tests for workspace file discovery."""

import pytest

from autograph.scanner import FileScanner, matches_any


class TestMatchesAny:
    @pytest.mark.parametrize("path,patterns,expected", [
        ("src/a.ts", ["**/*.ts"], True),
        ("a.ts", ["**/*.ts"], True),
        ("src/a.tsx", ["**/*.ts"], False),
        ("node_modules/x/index.ts", ["**/node_modules/**"], True),
        ("pkg/node_modules/x/index.ts", ["**/node_modules/**"], True),
        ("src/types.d.ts", ["**/*.d.ts"], True),
        ("src/a/b/c.ts", ["src/**/*.ts"], True),
        ("src/c.ts", ["src/**/*.ts"], True),
        ("lib/c.ts", ["src/**/*.ts"], False),
    ])
    def test_patterns(self, path, patterns, expected):
        assert matches_any(path, patterns) is expected


class TestFileScanner:
    """Tests for FileScanner.scan."""

    def test_default_patterns(self, workspace):
        """Sources are found; vendored, generated and test files are not."""
        workspace.write("src/b.ts", "")
        workspace.write("src/a.tsx", "")
        workspace.write("src/c.js", "")
        workspace.write("src/types.d.ts", "")
        workspace.write("src/a.spec.ts", "")
        workspace.write("src/a.test.ts", "")
        workspace.write("README.md", "")
        workspace.write("node_modules/lib/index.ts", "")
        workspace.write("dist/out.js", "")
        workspace.write("packages/x/build/out.js", "")

        files = FileScanner(workspace.root).scan()

        assert [f.path for f in files] == ["src/a.tsx", "src/b.ts", "src/c.js"]

    def test_absolute_paths(self, workspace):
        workspace.write("src/a.ts", "")

        [scanned] = FileScanner(workspace.root).scan()

        assert scanned.absolute_path == workspace.root.resolve() / "src" / "a.ts"

    def test_custom_patterns(self, workspace):
        workspace.write("src/a.ts", "")
        workspace.write("lib/b.ts", "")
        workspace.write("src/generated/c.ts", "")

        files = FileScanner(workspace.root).scan(
            include=["src/**/*.ts"], exclude=["**/generated/**"]
        )

        assert [f.path for f in files] == ["src/a.ts"]

    def test_max_file_size(self, workspace):
        workspace.write("small.ts", "x")
        workspace.write("large.ts", "x" * 100)

        files = FileScanner(workspace.root, max_file_size=10).scan()

        assert [f.path for f in files] == ["small.ts"]

    def test_missing_root(self, tmp_path):
        assert FileScanner(tmp_path / "nope").scan() == []


class TestPaths:
    def test_relative_path(self, workspace):
        scanner = FileScanner(workspace.root)

        assert scanner.relative_path(workspace.root / "src" / "a.ts") == "src/a.ts"
        assert scanner.relative_path("src/a.ts") == "src/a.ts"

    def test_exists(self, workspace):
        workspace.write("src/a.ts", "")
        scanner = FileScanner(workspace.root)

        assert scanner.exists("src/a.ts") is True
        assert scanner.exists("src") is False
        assert scanner.exists("src/b.ts") is False
