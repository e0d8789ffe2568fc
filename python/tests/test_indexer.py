"""
Indexer Tests - Verify index construction from scanned domains.

Tests:
- Per-file indexing (symbols, normalized content, line alignment)
- Full builds: ordering of steps, identity and fingerprints
- Single-file and dependency-only re-indexing
"""

import pytest

from gosearch.indexer import IndexBuilder, index_file
from gosearch.models import Domain, Index, RawFile
from gosearch.hasher import workspace_identity
from gosearch.errors import NoWorkspaceError


class TestIndexFile:
    """Tests for turning raw files into entries."""

    def test_source_entry(self):
        """Source files get declaration symbols and lowercase content."""
        raw = RawFile(path="/src/a.go", content="package a\n\nfunc ParseURL() {}\n", last_modified=1.0)
        entry = index_file(raw)

        assert entry.path == "/src/a.go"
        assert entry.symbols == ["ParseURL"]
        assert entry.normalized_content == "package a\n\nfunc parseurl() {}\n"

    def test_manifest_entry(self):
        """Manifests use the narrower module-path extraction."""
        raw = RawFile(
            path="/src/go.mod",
            content="module example.com/app\n\nrequire github.com/acme/widgets v1.2.3\n",
            last_modified=1.0,
            is_manifest=True,
        )
        entry = index_file(raw)

        assert entry.symbols == ["example.com/app", "github.com/acme/widgets"]

    def test_lines_stay_aligned(self):
        """Content and normalized content split into the same number of lines."""
        content = "A\r\nİstanbul\nß\n"
        entry = index_file(RawFile(path="/x.go", content=content, last_modified=0.0))

        assert len(entry.content.split("\n")) == len(entry.normalized_content.split("\n"))


class TestIndexBuilder:
    """Tests for full and partial builds."""

    @pytest.fixture
    def builder(self, test_config, fake_toolchain):
        b = IndexBuilder(test_config, fake_toolchain)
        yield b
        b.close()

    @pytest.mark.asyncio
    async def test_build_fills_domains(self, builder, go_tree, workspace):
        index = Index(workspace_identity="")
        stats = await builder.build(index, [workspace])

        assert str(go_tree["main"]) in index.workspace
        assert str(go_tree["go.mod"]) in index.workspace
        assert str(go_tree["git"]) not in index.workspace
        assert list(index.stdlib) == [str(go_tree["stdlib"])]
        assert list(index.dependencies) == [str(go_tree["dependency"])]
        assert stats.workspace_files == len(index.workspace)

    @pytest.mark.asyncio
    async def test_build_reports_caps_and_skips(self, builder, go_tree, workspace, test_config, monkeypatch):
        """Capped domains and unreadable files show up in the build stats."""
        test_config.max_workspace_files = 2
        monkeypatch.setattr(builder.scanner, "read_file", lambda path: None)

        stats = await builder.build(Index(workspace_identity=""), [workspace])

        assert stats.capped_domains == ["workspace"]
        assert stats.workspace_files == 0
        assert stats.skipped_files == 4
        assert "discovery capped for workspace" in str(stats)

    @pytest.mark.asyncio
    async def test_build_stats_clean_tree(self, builder, go_tree, workspace):
        stats = await builder.build(Index(workspace_identity=""), [workspace])

        assert stats.skipped_files == 0
        assert stats.capped_domains == []

    @pytest.mark.asyncio
    async def test_build_sets_identity_and_fingerprints(self, builder, go_tree, workspace, fake_toolchain):
        index = Index(workspace_identity="")
        await builder.build(index, [workspace])

        assert index.workspace_identity == workspace_identity([workspace])
        assert index.manifest_fingerprint == fake_toolchain.manifest_fingerprint([workspace])
        assert index.toolchain_fingerprint == fake_toolchain.version
        assert index.last_built > 0

    @pytest.mark.asyncio
    async def test_build_clears_previous_content(self, builder, go_tree, workspace):
        """Entries for files that no longer exist do not survive a build."""
        index = Index(workspace_identity="")
        await builder.build(index, [workspace])
        go_tree["main"].unlink()
        await builder.build(index, [workspace])

        assert str(go_tree["main"]) not in index.workspace

    @pytest.mark.asyncio
    async def test_progress_order(self, builder, go_tree, workspace):
        """Domains are reported workspace, stdlib, dependencies."""
        messages = []
        await builder.build(Index(workspace_identity=""), [workspace], lambda m, p: messages.append((p, m)))

        assert [p for p, _ in messages] == [0, 20, 40, 60]
        assert "workspace" in messages[1][1]
        assert "standard library" in messages[2][1]
        assert "dependencies" in messages[3][1]

    @pytest.mark.asyncio
    async def test_no_roots(self, builder):
        with pytest.raises(NoWorkspaceError):
            await builder.build(Index(workspace_identity=""), [])

    @pytest.mark.asyncio
    async def test_index_single_file(self, builder, go_tree, workspace):
        index = Index(workspace_identity="")
        await builder.build(index, [workspace])

        go_tree["server"].write_text("package server\n\nfunc Replaced() {}\n")
        assert await builder.index_single_file(index, Domain.WORKSPACE, go_tree["server"]) is True
        assert index.workspace[str(go_tree["server"])].symbols == ["Replaced"]

        assert await builder.index_single_file(index, Domain.WORKSPACE, workspace / "gone.go") is False

    @pytest.mark.asyncio
    async def test_rebuild_dependencies_only(self, builder, go_tree, workspace):
        """Re-indexing dependencies leaves other domains untouched."""
        index = Index(workspace_identity="")
        await builder.build(index, [workspace])
        workspace_before = dict(index.workspace)
        (go_tree["dependency_root"] / "more.go").write_text("package widgets\n")

        count = await builder.rebuild_dependencies(index, [workspace])

        assert count == 2
        assert index.workspace == workspace_before
        assert len(index.dependencies) == 2

    @pytest.mark.asyncio
    async def test_dependency_roots_deduplicated(self, builder, temp_dir, workspace, fake_toolchain):
        """The same module directory reached from two roots is indexed once."""
        second = temp_dir / "second"
        second.mkdir()

        roots = await builder.dependency_roots([workspace, second])

        assert roots == fake_toolchain.dependency_dirs
