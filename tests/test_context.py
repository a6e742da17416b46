"""
Tests for the application context.
"""

import json

import pytest

from flashrevise import AppContext, build_adapter
from flashrevise.adapters import GitHubAdapter, GoogleDriveAdapter, LocalDirectoryAdapter
from flashrevise.config import AdapterKind, DriveConfig, GitHubConfig, LocalConfig, SyncConfig
from flashrevise.core import Level
from flashrevise.errors import ConfigError, NotFoundError


def local_config(tmp_path):
    return SyncConfig(
        adapter=AdapterKind.LOCAL,
        state_path=tmp_path / "state.json",
        local=LocalConfig(capability_path=tmp_path / "caps.json"),
    )


class TestBuildAdapter:

    def test_kinds(self, tmp_path, fake_github):
        assert build_adapter(SyncConfig()) is None
        assert isinstance(build_adapter(local_config(tmp_path)), LocalDirectoryAdapter)

        drive = SyncConfig(adapter=AdapterKind.DRIVE, drive=DriveConfig(client_id="abc"))
        assert isinstance(build_adapter(drive, client=fake_github.client()), GoogleDriveAdapter)

        github = SyncConfig(
            adapter=AdapterKind.GITHUB,
            github=GitHubConfig(token="tok", owner="me", repo="cards", root="decks"),
        )
        adapter = build_adapter(github, client=fake_github.client())
        assert isinstance(adapter, GitHubAdapter)
        assert adapter.root == "decks"


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_open_rejects_bad_config(self):
        with pytest.raises(ConfigError):
            await AppContext.open(SyncConfig(adapter=AdapterKind.GITHUB))

    @pytest.mark.asyncio
    async def test_state_saved_and_restored(self, tmp_path):
        config = SyncConfig(state_path=tmp_path / "state.json")

        async with await AppContext.open(config) as app:
            goal = app.tree.add_goal("Biology")[0]
            app.tree.navigate(Level.GOAL, goal.id)

        raw = json.loads((tmp_path / "state.json").read_text(encoding="utf-8"))
        assert raw["goals"][0]["title"] == "Biology"
        assert raw["currentView"] == {"type": "goal", "id": goal.id}

        app = await AppContext.open(config)
        assert app.store.goals[0].id == goal.id
        assert app.store.resolve_location().node.title == "Biology"
        await app.close()

    @pytest.mark.asyncio
    async def test_first_run_has_no_state(self, tmp_path):
        config = SyncConfig(state_path=tmp_path / "missing.json")
        app = await AppContext.open(config)
        assert app.store.goals == ()
        assert await app.load_state() is False

    @pytest.mark.asyncio
    async def test_strictness_follows_config(self, tmp_path):
        strict = await AppContext.open(SyncConfig(state_path=tmp_path / "a.json"))
        with pytest.raises(NotFoundError):
            strict.tree.add_subject("nope", "Cells")

        lenient = await AppContext.open(SyncConfig(state_path=tmp_path / "b.json", strict_tree=False))
        assert lenient.tree.add_subject("nope", "Cells") == ()

    @pytest.mark.asyncio
    async def test_local_handle_reverified_on_open(self, tmp_path):
        root = tmp_path / "cards"
        root.mkdir()
        config = local_config(tmp_path)

        first = await AppContext.open(config, picker=lambda: root)
        await first.adapter.select_directory()
        first.tree.add_goal("Biology")
        await first.close()
        assert (root / "app_data.json").exists()

        asked = []
        second = await AppContext.open(config, prompt=lambda path, mode: asked.append(path) or True)
        assert asked == [root]
        assert second.adapter.handle.path == root
        assert second.status.last_error is None

        second.tree.add_goal("Chemistry")
        await second.orchestrator.wait_idle()
        assert second.status.last_error is None
        assert (root / "Chemistry").is_dir()
        await second.close()

    @pytest.mark.asyncio
    async def test_local_denial_is_retryable(self, tmp_path):
        root = tmp_path / "cards"
        root.mkdir()
        config = local_config(tmp_path)
        first = await AppContext.open(config, picker=lambda: root)
        await first.adapter.select_directory()
        await first.close()

        answers = iter([False, True])
        app = await AppContext.open(config, prompt=lambda path, mode: next(answers))
        assert "permission" in app.status.last_error
        assert app.status.last_error_at is not None

        assert await app.adapter.verify_permission(app.adapter.handle) is True
        app.tree.add_goal("Biology")
        await app.orchestrator.wait_idle()
        assert app.status.last_error is None
        assert (root / "Biology").is_dir()
        await app.close()

    @pytest.mark.asyncio
    async def test_no_remembered_directory(self, tmp_path):
        app = await AppContext.open(local_config(tmp_path), prompt=lambda path, mode: True)
        assert app.adapter.handle is None
        assert app.status.last_error is None
        assert await app.reverify_directory() is False

    @pytest.mark.asyncio
    async def test_github_sync_through_context(self, tmp_path, fake_github):
        config = SyncConfig(
            adapter=AdapterKind.GITHUB,
            state_path=tmp_path / "state.json",
            github=GitHubConfig(token="tok", owner="me", repo="cards"),
        )
        async with await AppContext.open(config, client=fake_github.client()) as app:
            app.tree.add_goal("Biology")
            await app.orchestrator.wait_idle()
            assert app.status.last_error is None

        assert "saved-flashcards/app_data.json" in fake_github.files()
