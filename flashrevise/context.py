"""Application context.

One ``AppContext`` is created at process start and closed at exit. It
owns the configuration, the tree store, the active adapter and the sync
orchestrator, and is handed to whatever needs them. App state (tree
plus navigation cursor) is loaded and saved explicitly through
``state_path``; directory handles live in their own capability store.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import httpx

from ._common import dump_json
from .adapters import CapabilityStore, GitHubAdapter, GoogleDriveAdapter, LocalDirectoryAdapter
from .config import AdapterKind, SyncConfig
from .core import AsyncStoreAdapter, Location, TreeStore, goals_from_json
from .error_policies import ErrorPolicy
from .errors import PermissionDeniedError
from .sync import SyncOrchestrator

logger = logging.getLogger(__name__)


def build_adapter(
    config: SyncConfig,
    *,
    picker: Optional[Callable] = None,
    prompt: Optional[Callable] = None,
    opener: Optional[Callable[[str], Any]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[AsyncStoreAdapter]:
    """Create the adapter selected by ``config.adapter``.

    Args:
        config: Validated configuration
        picker: Directory chooser (local adapter)
        prompt: Permission prompt (local adapter)
        opener: Opens the consent URL (Drive adapter)
        client: Shared HTTP client (Drive and GitHub adapters)
    """
    kind = config.adapter
    if kind is AdapterKind.LOCAL:
        return LocalDirectoryAdapter(
            CapabilityStore(config.local.capability_path),
            picker=picker,
            prompt=prompt,
            handle_key=config.local.handle_key,
            max_concurrent=config.local.max_concurrent,
        )
    if kind is AdapterKind.DRIVE:
        drive = config.drive
        return GoogleDriveAdapter(
            drive.client_id,
            scope=drive.scope,
            redirect_uri=drive.redirect_uri,
            filename=drive.filename,
            timeout=drive.timeout,
            client=client,
            opener=opener,
        )
    if kind is AdapterKind.GITHUB:
        gh = config.github
        return GitHubAdapter(
            gh.token,
            gh.owner,
            gh.repo,
            branch=gh.branch,
            root=gh.root,
            commit_message=gh.commit_message,
            max_concurrent=gh.max_concurrent,
            api_base=gh.api_base,
            timeout=gh.timeout,
            client=client,
        )
    return None


class AppContext:
    """Everything a running app needs, passed around explicitly.

    Example:
        async with await AppContext.open(config) as app:
            app.tree.add_goal("Biology")
    """

    def __init__(
        self,
        config: SyncConfig,
        store: TreeStore,
        adapter: Optional[AsyncStoreAdapter] = None,
        policy: Optional[ErrorPolicy] = None,
    ):
        self.config = config
        self.store = store
        self.adapter = adapter
        self.orchestrator = SyncOrchestrator(store, adapter, policy)

    @property
    def tree(self) -> SyncOrchestrator:
        """Mutation entry point: the store wrapped with persist-after-mutate."""
        return self.orchestrator

    @property
    def status(self):
        return self.orchestrator.status

    @classmethod
    async def open(
        cls,
        config: SyncConfig,
        policy: Optional[ErrorPolicy] = None,
        **adapter_options,
    ) -> "AppContext":
        """Validate config, build the adapter and load saved state.

        For the local adapter the remembered directory handle is restored
        and its permission re-verified through the ``prompt`` option. A
        denial does not raise: it is shown in ``status`` and can be retried
        with ``verify_permission`` followed by ``tree.sync_now()``.
        """
        config.validate()
        store = TreeStore(strict=config.strict_tree)
        adapter = build_adapter(config, **adapter_options)
        context = cls(config, store, adapter, policy)
        await context.load_state()
        if isinstance(adapter, LocalDirectoryAdapter):
            await context.reverify_directory()
        logger.info("Opened context with adapter %s", config.summary())
        return context

    async def reverify_directory(self) -> bool:
        """Restore the remembered directory and ask for read/write access.

        Returns:
            True if access was granted. False if there is no remembered
            directory or the user refused (recorded in ``status``).
        """
        handle = await self.adapter.restore_handle()
        if handle is None:
            return False
        if await self.adapter.verify_permission(handle):
            return True
        self.orchestrator.record_failure(
            PermissionDeniedError(f"No read/write permission for {handle.path}")
        )
        return False

    async def load_state(self) -> bool:
        """Load tree and cursor from ``state_path``.

        Returns:
            False if there was no state file yet
        """
        path = self.config.state_path
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return False
        raw = json.loads(text)
        self.store.replace(goals_from_json(raw.get("goals", [])))
        location = Location.from_dict(raw.get("currentView"))
        self.store.navigate(location.level, location.id)
        return True

    async def save_state(self) -> None:
        """Write tree and cursor to ``state_path``."""
        path = self.config.state_path
        state = {
            "goals": [goal.to_dict() for goal in self.store.goals],
            "currentView": self.store.location.to_dict(),
        }

        def write():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(dump_json(state), encoding="utf-8")

        await asyncio.to_thread(write)

    async def close(self) -> None:
        """Wait for in-flight syncs, save state, release the adapter."""
        await self.orchestrator.wait_idle()
        await self.save_state()
        if self.adapter is not None:
            await self.adapter.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
