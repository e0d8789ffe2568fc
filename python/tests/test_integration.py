"""
Integration Tests - End-to-end index lifecycle workflows.

Tests:
- Build across all three domains, with progress milestones
- Load from storage on the next start, rebuild on fingerprint change
- Idempotent rebuilds
- Workspace switching
- Advisory freshness checks
"""

import asyncio
import time

import pytest

from gosearch.orchestrator import IndexManager
from gosearch.config import IndexerConfig
from gosearch.errors import NoWorkspaceError
from gosearch.models import Domain, SearchMode
from gosearch.watcher import ChangeType, FileChange


def snapshot(manager: IndexManager) -> dict:
    return {
        domain.value: {path: f.content for path, f in files.items()}
        for domain, files in manager._index.domains()
    }


class TestBuild:
    """Full builds through the manager."""

    @pytest.mark.asyncio
    async def test_build_indexes_all_domains(self, test_config, fake_toolchain, go_tree):
        """Workspace, stdlib and dependency files all become searchable."""
        manager = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            stats = await manager.build()

            assert stats.workspace_files == 4  # main, server, server_test, go.mod
            assert stats.stdlib_files == 1
            assert stats.dependency_files == 1
            assert manager.has_index()
            assert not manager.is_building()

            results = manager.search("func")
            assert results.for_domain(Domain.STDLIB)
            assert results.for_domain(Domain.DEPENDENCIES)
        finally:
            await manager.dispose()

    @pytest.mark.asyncio
    async def test_progress_milestones(self, test_config, fake_toolchain, go_tree):
        """Progress is reported in increasing milestones ending at 100."""
        milestones = []
        manager = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            await manager.build(lambda message, percent: milestones.append(percent))
        finally:
            await manager.dispose()

        assert milestones == sorted(milestones)
        assert milestones[-1] == 100
        assert 80 in milestones

    @pytest.mark.asyncio
    async def test_failing_progress_sink_is_harmless(self, test_config, fake_toolchain, go_tree):
        def sink(message, percent):
            raise RuntimeError("UI went away")

        manager = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            await manager.build(sink)
            assert manager.has_index()
        finally:
            await manager.dispose()

    @pytest.mark.asyncio
    async def test_combined_search_order(self, test_config, fake_toolchain, go_tree):
        """Workspace results come first, test files after regular ones."""
        manager = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            await manager.build()
            files = manager.search_combined("NewServer", SearchMode.EXACT)
        finally:
            await manager.dispose()

        assert [fm.path for fm in files] == [
            str(go_tree["server"]),
            str(go_tree["main"]),
            str(go_tree["server_test"]),
            str(go_tree["dependency"]),
        ]

    @pytest.mark.asyncio
    async def test_idempotent_rebuild(self, test_config, fake_toolchain, go_tree):
        """Building twice on an unchanged tree gives equal domains."""
        manager = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            await manager.build()
            first = snapshot(manager)
            await manager.rebuild()
            second = snapshot(manager)
        finally:
            await manager.dispose()

        assert first == second

    @pytest.mark.asyncio
    async def test_missing_toolchain_empties_domains(self, test_config, go_tree, empty_toolchain):
        """Without a toolchain only the workspace is indexed."""
        manager = IndexManager(test_config, toolchain=empty_toolchain)
        try:
            stats = await manager.build()
        finally:
            await manager.dispose()

        assert stats.workspace_files == 4
        assert stats.stdlib_files == 0
        assert stats.dependency_files == 0

    @pytest.mark.asyncio
    async def test_no_workspace_aborts(self, temp_dir, empty_toolchain):
        """Building with no roots at all is the one whole-index failure."""
        config = IndexerConfig(roots=[], storage_dir=temp_dir / "storage")
        manager = IndexManager(config, toolchain=empty_toolchain)
        try:
            with pytest.raises(NoWorkspaceError):
                await manager.build()
            assert await manager.load() is False
        finally:
            await manager.dispose()


class TestLifecycle:
    """Load, invalidation and workspace switching."""

    @pytest.mark.asyncio
    async def test_second_start_loads_from_storage(self, test_config, fake_toolchain, go_tree):
        """A persisted index is loaded instead of rebuilt."""
        first = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            assert await first.ensure_index() is False
            built = snapshot(first)
        finally:
            await first.dispose()

        second = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            assert await second.ensure_index() is True
            assert snapshot(second) == built
        finally:
            await second.dispose()

    @pytest.mark.asyncio
    async def test_toolchain_upgrade_forces_rebuild(self, test_config, fake_toolchain, go_tree):
        first = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            await first.build()
        finally:
            await first.dispose()

        fake_toolchain.version = "go version go1.23.0 linux/amd64"
        second = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            assert await second.load() is False
            assert await second.ensure_index() is False
            assert second._index.toolchain_fingerprint == fake_toolchain.version
        finally:
            await second.dispose()

    @pytest.mark.asyncio
    async def test_manifest_change_forces_rebuild(self, test_config, fake_toolchain, go_tree):
        first = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            await first.build()
        finally:
            await first.dispose()

        (go_tree["go.mod"].parent / "go.sum").write_text("github.com/acme/widgets v1.2.3 h1:x=\n")
        second = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            assert await second.load() is False
        finally:
            await second.dispose()

    @pytest.mark.asyncio
    async def test_switch_workspace(self, test_config, fake_toolchain, go_tree, temp_dir):
        """Switching builds the new workspace, switching back loads the old one."""
        other = temp_dir / "other"
        other.mkdir()
        (other / "tool.go").write_text("package tool\n\nfunc OtherWorkspace() {}\n")
        original_roots = test_config.roots

        manager = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            await manager.build()
            old_identity = manager.identity

            loaded = await manager.switch_workspace([other])
            assert loaded is False
            assert manager.identity == str(other)
            assert manager.search_combined("OtherWorkspace")
            assert all(
                fm.domain is not Domain.WORKSPACE
                for fm in manager.search_combined("NewServer", SearchMode.EXACT)
            )

            loaded = await manager.switch_workspace(original_roots)
            assert loaded is True
            assert manager.identity == old_identity
        finally:
            await manager.dispose()

    @pytest.mark.asyncio
    async def test_switch_drops_pending_updates(self, test_config, fake_toolchain, go_tree, temp_dir, monkeypatch):
        """Debounced work for the old workspace never runs after a switch."""
        other = temp_dir / "other"
        other.mkdir()
        manager = IndexManager(test_config, toolchain=fake_toolchain)
        calls = []

        async def counting(index, path):
            calls.append(path)

        try:
            await manager.build()
            monkeypatch.setattr(manager.updater, "apply_file_update", counting)
            manager.updater.schedule_dependency_update()
            manager.updater.handle_change(
                FileChange(go_tree["main"], ChangeType.CHANGED, time.monotonic())
            )
            await manager.switch_workspace([other])
            await asyncio.sleep(0.3)
        finally:
            await manager.dispose()

        assert calls == []

    @pytest.mark.asyncio
    async def test_search_during_build_does_not_block(self, test_config, fake_toolchain, go_tree):
        """Search returns while a build holds the write lock."""
        manager = IndexManager(test_config, toolchain=fake_toolchain)
        try:
            build = asyncio.create_task(manager.build())
            await asyncio.sleep(0)
            assert manager.is_building()
            manager.search("func")
            await build
            assert not manager.is_building()
        finally:
            await manager.dispose()


class TestFreshness:
    """Advisory staleness checks."""

    @pytest.mark.asyncio
    async def test_fresh_index_not_reported(self, test_config, fake_toolchain, go_tree):
        reasons = []
        manager = IndexManager(test_config, toolchain=fake_toolchain, on_stale=reasons.append)
        try:
            await manager.build()
            assert await manager.check_freshness() is None
        finally:
            await manager.dispose()

        assert reasons == []

    @pytest.mark.asyncio
    async def test_old_index_with_changed_toolchain(self, test_config, fake_toolchain, go_tree):
        """An old index whose toolchain changed suggests a rebuild without mutating."""
        reasons = []
        manager = IndexManager(test_config, toolchain=fake_toolchain, on_stale=reasons.append)
        try:
            await manager.build()
            before = snapshot(manager)
            manager._index.last_built = time.time() - test_config.staleness_window_seconds - 60
            fake_toolchain.version = "go version go1.23.0 linux/amd64"

            reason = await manager.check_freshness()

            assert reason is not None
            assert reasons == [reason]
            assert snapshot(manager) == before
        finally:
            await manager.dispose()

    @pytest.mark.asyncio
    async def test_old_but_unchanged_index_not_reported(self, test_config, fake_toolchain, go_tree):
        reasons = []
        manager = IndexManager(test_config, toolchain=fake_toolchain, on_stale=reasons.append)
        try:
            await manager.build()
            manager._index.last_built = time.time() - test_config.staleness_window_seconds - 60

            assert await manager.check_freshness() is None
        finally:
            await manager.dispose()

        assert reasons == []

    @pytest.mark.asyncio
    async def test_start_and_dispose(self, test_config, fake_toolchain, go_tree):
        """start() loads or builds, watches, and dispose() releases everything."""
        manager = IndexManager(test_config, toolchain=fake_toolchain)
        loaded = await manager.start()

        assert loaded is False
        assert manager._watcher is not None and manager._watcher.running
        assert manager._freshness_task is not None

        await manager.dispose()

        assert manager._watcher is None
        assert manager._freshness_task is None
