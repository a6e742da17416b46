"""Persist-after-mutate orchestration.

``SyncOrchestrator`` fronts a ``TreeStore``. Reads pass straight
through; every mutation is applied and then followed by exactly one
background sync of the full snapshot to the active adapter.

Background syncs are neither queued, coalesced nor cancelled, so two
can overlap. Each one writes a complete snapshot, which means the store
ends up holding whichever snapshot finished writing last. That is not
necessarily the snapshot of the last mutation.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, Set, Tuple, Type

from ._common import stale_folders
from .core import AsyncStoreAdapter, Goal, TreeStore
from .error_policies import ErrorPolicy, RecordStatusPolicy
from .errors import NotFoundError, UserCancelled

logger = logging.getLogger(__name__)


class SyncState(Enum):
    IDLE = "idle"
    SYNCING = "syncing"


@dataclass
class SyncStatus:
    """What the user sees about the active adapter."""
    state: SyncState = SyncState.IDLE
    in_flight: int = 0
    last_synced: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    last_receipt: Any = None

    @property
    def is_syncing(self) -> bool:
        return self.state is SyncState.SYNCING


# Store methods that change the tree and are followed by a sync
MUTATIONS = frozenset({
    'add_goal',
    'add_subject',
    'add_topic',
    'add_subtopic',
    'add_flashcard',
    'set_mastery',
    'delete_flashcard',
    'delete_goal',
    'delete_subject',
    'delete_topic',
    'delete_subtopic',
})

# Mutations that can leave folders behind in the store
REMOVALS = frozenset({'delete_goal', 'delete_subject', 'delete_topic', 'delete_subtopic'})


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """Apply tree mutations and mirror each result to one adapter.

    Uses the same dynamic proxy approach as an error-handling wrapper:
    attribute access falls through to the store, and mutators come back
    wrapped so they schedule a sync after succeeding.

    Args:
        store: The tree store to front
        adapter: Active store adapter, or None for in-memory only
        policy: What to do with failed syncs (default: record and go on)
    """

    def __init__(
        self,
        store: TreeStore,
        adapter: Optional[AsyncStoreAdapter] = None,
        policy: Optional[ErrorPolicy] = None,
    ):
        self.store = store
        self.adapter = adapter
        self.policy = policy or RecordStatusPolicy()
        self.status = SyncStatus()
        self.unsynced_changes = False
        self._tasks: Set[asyncio.Task] = set()

    def __getattr__(self, name: str) -> Any:
        store = self.__dict__.get('store')
        if store is None or name.startswith('_'):
            raise AttributeError(name)
        attr = getattr(store, name)
        if name not in MUTATIONS:
            return attr

        @functools.wraps(attr)
        def wrapper(*args, **kwargs):
            before = store.goals
            goals = attr(*args, **kwargs)
            stale = stale_folders(before, goals) if name in REMOVALS else None
            self.schedule_sync(stale)
            return goals

        return wrapper

    @property
    def pending(self) -> int:
        """Number of background syncs not yet finished."""
        return len(self._tasks)

    def schedule_sync(self, stale: Optional[Sequence[Sequence[str]]] = None) -> Optional[asyncio.Task]:
        """Start one fire-and-forget sync of the current snapshot.

        Args:
            stale: Folders to remove from the store before saving

        Returns:
            The background task, or None if no adapter is active or no
            event loop is running (the change is then flagged in
            ``unsynced_changes`` until ``sync_now``)
        """
        if self.adapter is None:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No event loop running, change not synced to %s", self.adapter.name)
            self.unsynced_changes = True
            return None

        task = loop.create_task(self._sync(self.store.goals, stale))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _sync(self, goals: Sequence[Goal], stale: Optional[Sequence[Sequence[str]]] = None) -> Any:
        adapter = self.adapter
        steps = [
            ('delete_path', functools.partial(adapter.delete_path, list(segments)))
            for segments in stale or ()
        ]
        steps.append(('save_tree', functools.partial(adapter.save_tree, goals)))

        receipt = await self._tracked(steps)
        if receipt is not None:
            self.status.last_receipt = receipt
        return receipt

    async def _tracked(
        self,
        steps: Sequence[Tuple[str, Callable[[], Awaitable[Any]]]],
        skipped: Tuple[Type[BaseException], ...] = (UserCancelled,),
    ) -> Any:
        """Run adapter calls in order with status bookkeeping and error policy.

        Errors of a ``skipped`` type are logged and end the run quietly.
        Everything else is recorded in ``status`` and handed to the policy.

        Returns the result of the last step.
        """
        adapter_name = self.adapter.name
        status = self.status
        status.in_flight += 1
        status.state = SyncState.SYNCING
        operation = steps[0][0]
        try:
            result = None
            for operation, run in steps:
                result = await run()
        except skipped as e:
            logger.info("%s %s skipped: %s", adapter_name, operation, e)
            return None
        except Exception as e:
            self.record_failure(e)
            return await self.policy.handle(e, operation, adapter_name)
        else:
            status.last_synced = _now()
            status.last_error = None
            status.last_error_at = None
            logger.info("%s %s complete", adapter_name, operation)
            return result
        finally:
            status.in_flight -= 1
            if status.in_flight == 0:
                status.state = SyncState.IDLE

    def record_failure(self, error: BaseException) -> None:
        """Show ``error`` in ``status`` until the next successful sync."""
        self.status.last_error = str(error) or type(error).__name__
        self.status.last_error_at = _now()

    async def sync_now(self) -> Any:
        """Sync the current snapshot and wait for it (user-initiated retry)."""
        if self.adapter is None:
            return None
        self.unsynced_changes = False
        return await self._sync(self.store.goals)

    async def pull(self) -> Optional[Tuple[Goal, ...]]:
        """Replace the in-memory tree with the adapter's stored copy.

        Returns:
            The loaded snapshot, or None if the store is empty or the
            load failed (see ``status``). No sync is scheduled.
        """
        if self.adapter is None:
            return None
        adapter = self.adapter
        # A store with nothing in it yet is not an error when reading
        goals = await self._tracked([('load_tree', adapter.load_tree)], (UserCancelled, NotFoundError))
        if goals is None:
            return None
        logger.info("Loaded %d goals from %s", len(goals), adapter.name)
        return self.store.replace(goals)

    async def wait_idle(self) -> None:
        """Wait for every background sync, including ones started meanwhile."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.wait_idle()
