"""Async store adapter abstraction.

Defines how different stores (local directory, cloud blob, Git
repository) mirror a snapshot of the study tree. Every adapter writes
the full snapshot on each save, so a later save always supersedes an
earlier one, whatever order they complete in.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence, Set, Tuple

from .node import Goal


class AsyncStoreAdapter(ABC):
    """Abstract base class for async store adapters.

    Adapters bridge between the in-memory tree and a specific store.
    I/O runs under ``semaphore`` so fan-out writes (one per folder or per
    blob) stay bounded.
    """

    name = "store"

    def __init__(self, max_concurrent: int = 8):
        """Initialize adapter with concurrency control.

        Args:
            max_concurrent: Maximum concurrent I/O operations
        """
        self.max_concurrent = max_concurrent
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._capabilities = self._define_capabilities()

    @abstractmethod
    async def save_tree(self, goals: Sequence[Goal]) -> Any:
        """Write the full snapshot to the store.

        Args:
            goals: Snapshot to persist

        Returns:
            Adapter-specific receipt (e.g. commit SHA) or None
        """
        pass

    @abstractmethod
    async def load_tree(self) -> Optional[Tuple[Goal, ...]]:
        """Read the snapshot back.

        Returns:
            The stored snapshot, or None if nothing has been stored yet
        """
        pass

    # Optional methods with default implementations

    async def delete_path(self, segments: Sequence[str]) -> Any:
        """Remove a stored folder and everything below it.

        Blob stores keep the whole tree in one file and have nothing to
        remove; the next ``save_tree`` drops the branch.

        Args:
            segments: Folder names from the root, as produced by
                ``TreeStore.storage_path`` or ``stale_folders``
        """
        return None

    def supports_capability(self, capability: str) -> bool:
        """Check if adapter supports a specific capability.

        Args:
            capability: Capability name

        Returns:
            True if capability is supported
        """
        return capability in self._capabilities

    def _define_capabilities(self) -> Set[str]:
        """Define adapter capabilities.

        Override in subclasses to declare supported features.
        """
        return {'save_tree', 'load_tree'}

    async def get_stats(self) -> dict:
        """Get adapter statistics."""
        return {
            'adapter': self.name,
            'max_concurrent': self.max_concurrent,
        }

    async def close(self):
        """Clean up adapter resources.

        Override if adapter needs cleanup (close connections, etc.)
        """
        pass

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
