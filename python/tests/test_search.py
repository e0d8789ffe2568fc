"""
Search Tests - Verify substring queries and result ordering.

Tests:
- Exact vs fuzzy mode semantics
- Per-file match cap
- Line numbers and display lines
- Domain and test-file ordering, combined result cap
"""

import pytest

from gosearch.search import (
    combine_results, is_test_path, search_file, search_index,
)
from gosearch.models import Domain, Index, IndexedFile, SearchMode


def add(index: Index, domain: Domain, path: str, content: str) -> None:
    index.domain(domain)[path] = IndexedFile.from_content(path, content, 0.0)


@pytest.fixture
def scenario_index() -> Index:
    index = Index(workspace_identity="/src/app")
    add(index, Domain.WORKSPACE, "/src/app/a.go", "func Foo()")
    add(index, Domain.WORKSPACE, "/src/app/b.go", "func foo()")
    add(index, Domain.WORKSPACE, "/src/app/c_test.go", "func Foo() {}")
    return index


def paths(results, domain=Domain.WORKSPACE):
    return [fm.path for fm in results.for_domain(domain)]


class TestModes:
    """Exact and fuzzy matching."""

    def test_exact_is_case_sensitive(self, scenario_index):
        """Exact mode never matches when only case differs."""
        results = search_index(scenario_index, "Foo", SearchMode.EXACT)

        assert sorted(paths(results)) == ["/src/app/a.go", "/src/app/c_test.go"]

    def test_fuzzy_ignores_case(self, scenario_index):
        """Fuzzy mode matches regardless of case."""
        results = search_index(scenario_index, "foo", SearchMode.FUZZY)

        assert sorted(paths(results)) == [
            "/src/app/a.go", "/src/app/b.go", "/src/app/c_test.go",
        ]

    def test_fuzzy_uppercase_pattern(self, scenario_index):
        """An uppercase fuzzy pattern is lowered before comparison."""
        results = search_index(scenario_index, "FOO", SearchMode.FUZZY)
        assert len(paths(results)) == 3

    def test_exact_combined_ordering(self, scenario_index):
        """Non-test files come before test files."""
        results = search_index(scenario_index, "Foo", SearchMode.EXACT)
        combined = combine_results(results, limit=10)

        assert [fm.path for fm in combined] == ["/src/app/a.go", "/src/app/c_test.go"]

    def test_no_match(self, scenario_index):
        """Files without matches are left out."""
        results = search_index(scenario_index, "Bar", SearchMode.FUZZY)
        assert results.total_files == 0


class TestSearchFile:
    """Per-file matching."""

    def test_match_cap(self):
        """At most max_matches lines are returned per file."""
        entry = IndexedFile.from_content("/x.go", "\n".join(["Foo()"] * 25), 0.0)

        assert len(search_file(entry, "foo", SearchMode.FUZZY)) == 10
        assert len(search_file(entry, "Foo", SearchMode.EXACT, max_matches=3)) == 3

    def test_line_numbers_zero_based(self):
        """Line numbers count from zero."""
        entry = IndexedFile.from_content("/x.go", "package x\n\nfunc Foo() {}\n", 0.0)
        matches = search_file(entry, "Foo", SearchMode.EXACT)

        assert [(m.line_number, m.line) for m in matches] == [(2, "func Foo() {}")]

    def test_display_is_original_case(self):
        """Fuzzy matches display the original line, not the lowercase one."""
        entry = IndexedFile.from_content("/x.go", "type HTTPServer struct{}\r\n", 0.0)
        matches = search_file(entry, "httpserver", SearchMode.FUZZY)

        assert matches[0].line == "type HTTPServer struct{}"


class TestCombination:
    """Ordering and capping across domains."""

    @pytest.fixture
    def mixed_index(self) -> Index:
        index = Index(workspace_identity="/src/app")
        add(index, Domain.STDLIB, "/goroot/src/io/io.go", "func ReadAll()")
        add(index, Domain.DEPENDENCIES, "/mod/x/read_test.go", "func ReadAll()")
        add(index, Domain.DEPENDENCIES, "/mod/x/read.go", "func ReadAll()")
        add(index, Domain.WORKSPACE, "/src/app/z_test.go", "ReadAll()")
        add(index, Domain.WORKSPACE, "/src/app/z.go", "ReadAll()")
        add(index, Domain.WORKSPACE, "/src/app/a.go", "ReadAll()")
        return index

    def test_domain_then_test_order(self, mixed_index):
        """Workspace, dependencies, stdlib; non-test first within each."""
        combined = combine_results(search_index(mixed_index, "readall"), limit=100)

        assert [fm.path for fm in combined] == [
            "/src/app/a.go",
            "/src/app/z.go",
            "/src/app/z_test.go",
            "/mod/x/read.go",
            "/mod/x/read_test.go",
            "/goroot/src/io/io.go",
        ]
        assert [fm.domain for fm in combined][-1] is Domain.STDLIB

    def test_cap(self, mixed_index):
        """The combined list is capped at the limit."""
        combined = combine_results(search_index(mixed_index, "readall"), limit=4)

        assert len(combined) == 4
        assert combined[-1].path == "/mod/x/read.go"

    def test_is_test_path(self):
        assert is_test_path("/src/app/server_test.go")
        assert not is_test_path("/src/app/testing.go")


class TestSnapshotIteration:
    """Search tolerates a writer mutating the index between calls."""

    def test_removed_file_not_returned(self, scenario_index):
        """A removed entry is invisible to the next search."""
        scenario_index.workspace.pop("/src/app/a.go")
        results = search_index(scenario_index, "Foo", SearchMode.EXACT)

        assert paths(results) == ["/src/app/c_test.go"]
