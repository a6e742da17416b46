"""Local directory adapter.

Mirrors the tree into a user-granted directory as nested folders:

    <root>/app_data.json                     full snapshot
    <root>/<Goal>/<Subject>/<Topic>/<Subtopic>/flashcards.json

Access goes through a ``DirectoryHandle``: a directory plus an explicit
permission state. Handles are kept in a ``CapabilityStore`` (a separate
file from the app state) and come back from it in the PROMPT state, so
every session has to re-verify permission before writing.

All filesystem calls run in worker threads via ``asyncio.to_thread``.
"""

import asyncio
import inspect
import json
import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .._common import FLASHCARDS_NAME, MANIFEST_NAME, dump_json, iter_folders
from ..core import AsyncStoreAdapter, Goal, goals_from_json
from ..core.node import new_id
from ..errors import PartialWriteError, PermissionDeniedError, UserCancelled

logger = logging.getLogger(__name__)

READ = "read"
READ_WRITE = "readwrite"
PROBE_NAME = ".flashrevise_probe.txt"
SWAP_SUFFIX = ".crswap"

# Asked when a handle needs permission: (path, mode) -> granted?
PromptFn = Callable[[Path, str], Union[bool, Awaitable[bool]]]
# Shows a directory chooser: returns a path, or None / raises UserCancelled
PickerFn = Callable[[], Union[Path, str, None, Awaitable[Union[Path, str, None]]]]


class PermissionState(Enum):
    GRANTED = "granted"
    DENIED = "denied"
    PROMPT = "prompt"


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class DirectoryHandle:
    """A directory together with the permissions granted on it.

    Read and read/write permission are tracked separately; granting
    read/write also grants read. A denial is remembered, so ``require``
    keeps failing, but requesting again re-prompts when a prompt is
    available. Without a prompt every request is denied.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        read: PermissionState = PermissionState.PROMPT,
        write: PermissionState = PermissionState.PROMPT,
        prompt: Optional[PromptFn] = None,
    ):
        self.path = Path(path)
        self._states = {READ: read, READ_WRITE: write}
        self._prompt = prompt

    @property
    def name(self) -> str:
        return self.path.name or str(self.path)

    async def query_permission(self, mode: str = READ_WRITE) -> PermissionState:
        state = self._states[mode]
        if mode == READ and self._states[READ_WRITE] is PermissionState.GRANTED:
            return PermissionState.GRANTED
        return state

    async def request_permission(self, mode: str = READ_WRITE) -> PermissionState:
        state = await self.query_permission(mode)
        if state is PermissionState.GRANTED:
            return state
        granted = False
        if self._prompt is not None:
            granted = bool(await _maybe_await(self._prompt(self.path, mode)))
        state = PermissionState.GRANTED if granted else PermissionState.DENIED
        self._states[mode] = state
        return state

    def require(self, mode: str = READ_WRITE) -> None:
        """Raise unless ``mode`` has been granted."""
        granted = self._states[mode] is PermissionState.GRANTED
        if mode == READ:
            granted = granted or self._states[READ_WRITE] is PermissionState.GRANTED
        if not granted:
            raise PermissionDeniedError(f"No {mode} permission for {self.path}")

    def to_record(self) -> Dict[str, str]:
        """Persistable part of the handle. Permissions are never stored."""
        return {"path": str(self.path)}

    def __repr__(self) -> str:
        return f"DirectoryHandle({self.path}, write={self._states[READ_WRITE].value})"


class CapabilityStore:
    """Keeps directory handles, keyed by a stable id, in their own file.

    The ordinary app state never holds handles; restoring one here yields
    a handle that must be re-verified.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> Dict[str, Any]:
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}

    def _write(self, records: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(dump_json(records), encoding="utf-8")

    def put(self, key: str, handle: DirectoryHandle) -> None:
        records = self._read()
        records[key] = handle.to_record()
        self._write(records)

    def get(self, key: str, prompt: Optional[PromptFn] = None) -> Optional[DirectoryHandle]:
        record = self._read().get(key)
        if not record:
            return None
        return DirectoryHandle(record["path"], prompt=prompt)

    def delete(self, key: str) -> None:
        records = self._read()
        if records.pop(key, None) is not None:
            self._write(records)


@dataclass(frozen=True)
class DiagnosticStep:
    """One line of the ``diagnose`` log."""
    name: str
    ok: bool
    detail: str = ""

    def __str__(self) -> str:
        mark = "OK" if self.ok else "FAILED"
        return f"{self.name}: {mark}" + (f" ({self.detail})" if self.detail else "")


def _check_segment(segment: str) -> str:
    if not segment or segment in (".", "..") or "/" in segment or "\\" in segment:
        raise ValueError(f"Invalid path segment: {segment!r}")
    return segment


def _write_text(path: Path, text: str) -> None:
    """Write through a swap file so a reader never sees half a file."""
    swap = path.with_name(path.name + SWAP_SUFFIX)
    swap.write_text(text, encoding="utf-8")
    os.replace(swap, path)


def _remove_tree(path: Path) -> bool:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
        return True
    if path.exists() or path.is_symlink():
        path.unlink()
        return True
    return False


class LocalDirectoryAdapter(AsyncStoreAdapter):
    """Store adapter for a user-granted local directory.

    Args:
        capabilities: Where the selected handle is remembered
        picker: Directory chooser used by ``select_directory``
        prompt: Permission prompt used when re-verifying a handle
        handle_key: Key of the handle in the capability store
        max_concurrent: Maximum concurrent file writes
    """

    name = "local"

    def __init__(
        self,
        capabilities: CapabilityStore,
        picker: Optional[PickerFn] = None,
        prompt: Optional[PromptFn] = None,
        handle_key: str = "flashrevise_dir_handle",
        max_concurrent: int = 16,
    ):
        super().__init__(max_concurrent)
        self.capabilities = capabilities
        self.picker = picker
        self.prompt = prompt
        self.handle_key = handle_key
        self.handle: Optional[DirectoryHandle] = None

    def _define_capabilities(self):
        return super()._define_capabilities() | {'delete_path', 'create_item', 'diagnose'}

    async def _io(self, func, *args):
        async with self.semaphore:
            return await asyncio.to_thread(func, *args)

    def _require_handle(self, mode: str = READ_WRITE) -> DirectoryHandle:
        if self.handle is None:
            raise PermissionDeniedError("No directory selected")
        self.handle.require(mode)
        return self.handle

    async def select_directory(self) -> Optional[DirectoryHandle]:
        """Ask the user for a directory and remember it.

        Returns:
            The new handle (read/write granted), or None if the user
            cancelled. Any other failure propagates.
        """
        if self.picker is None:
            raise RuntimeError("No directory picker configured")
        try:
            chosen = await _maybe_await(self.picker())
        except UserCancelled:
            chosen = None
        if chosen is None:
            logger.info("Directory selection cancelled")
            return None

        handle = DirectoryHandle(
            chosen,
            read=PermissionState.GRANTED,
            write=PermissionState.GRANTED,
            prompt=self.prompt,
        )
        await self._io(self.capabilities.put, self.handle_key, handle)
        self.handle = handle
        logger.info("Selected directory %s", handle.path)
        return handle

    async def restore_handle(self) -> Optional[DirectoryHandle]:
        """Load the remembered handle. It still needs ``verify_permission``."""
        self.handle = await self._io(self.capabilities.get, self.handle_key, self.prompt)
        return self.handle

    async def verify_permission(self, handle: DirectoryHandle, read_write: bool = True) -> bool:
        """Check, then if needed request, permission on a handle.

        Returns:
            True if granted. A denial returns False and never raises.
        """
        mode = READ_WRITE if read_write else READ
        if await handle.query_permission(mode) is PermissionState.GRANTED:
            return True
        if await handle.request_permission(mode) is PermissionState.GRANTED:
            return True
        logger.warning("Permission %s denied for %s", mode, handle.path)
        return False

    async def save_tree(self, goals: Sequence[Goal]) -> List[str]:
        """Write the manifest, then one folder per branch node.

        Returns:
            Relative paths of the files written

        Raises:
            PartialWriteError: A write failed after others had succeeded.
                Files already written stay written.
        """
        handle = self._require_handle(READ_WRITE)
        root = handle.path
        written: List[str] = []

        await self._io(_write_text, root / MANIFEST_NAME, dump_json([g.to_dict() for g in goals]))
        written.append(MANIFEST_NAME)

        cards: List[Tuple[str, Path, str]] = []
        for segments, node in iter_folders(goals):
            folder = root.joinpath(*segments)
            try:
                await self._io(lambda p: p.mkdir(exist_ok=True), folder)
            except OSError as e:
                raise PartialWriteError(f"Could not create folder {'/'.join(segments)}: {e}", written) from e
            if node.child_field == "flashcards":
                relative = "/".join(segments + (FLASHCARDS_NAME,))
                content = dump_json([card.to_dict() for card in node.flashcards])
                cards.append((relative, folder / FLASHCARDS_NAME, content))

        results = await asyncio.gather(
            *(self._io(_write_text, path, content) for _, path, content in cards),
            return_exceptions=True,
        )
        failures = []
        for (relative, _, _), result in zip(cards, results):
            if isinstance(result, BaseException):
                failures.append((relative, result))
            else:
                written.append(relative)
        if failures:
            relative, error = failures[0]
            raise PartialWriteError(
                f"Could not write {len(failures)} file(s), first {relative}: {error}", written
            ) from error

        logger.debug("Saved %d files under %s", len(written), root)
        return written

    async def load_tree(self) -> Optional[Tuple[Goal, ...]]:
        handle = self._require_handle(READ)
        try:
            text = await self._io(lambda p: p.read_text(encoding="utf-8"), handle.path / MANIFEST_NAME)
        except FileNotFoundError:
            return None
        return goals_from_json(json.loads(text))

    async def delete_item(self, segments: Sequence[str]) -> bool:
        """Remove the folder at ``segments`` recursively.

        Missing intermediate folders, or a missing target, mean the item
        is already gone: returns False instead of raising.
        """
        if not segments:
            raise ValueError("Refusing to delete the root directory")
        handle = self._require_handle(READ_WRITE)
        parent = handle.path
        for segment in segments[:-1]:
            parent = parent / _check_segment(segment)
            if not await self._io(parent.is_dir):
                logger.debug("Delete skipped, %s already missing", parent)
                return False
        return await self._io(_remove_tree, parent / _check_segment(segments[-1]))

    async def delete_path(self, segments: Sequence[str]) -> bool:
        return await self.delete_item(segments)

    async def create_item(self, segments: Sequence[str]) -> Path:
        """Create folders along ``segments`` and return the deepest one."""
        handle = self._require_handle(READ_WRITE)
        current = handle.path
        for segment in segments:
            current = current / _check_segment(segment)
            await self._io(lambda p: p.mkdir(exist_ok=True), current)
        return current

    async def diagnose(self) -> List[DiagnosticStep]:
        """Self-test the directory: permission, write, read, compare, delete.

        Stops at the first failing step. Never raises; the log is meant to
        be shown to the user when writes fail on some platform.
        """
        steps: List[DiagnosticStep] = []
        try:
            await self._diagnose(steps)
        finally:
            for line in steps:
                logger.debug("diagnose %s", line)
        return steps

    async def _diagnose(self, steps: List[DiagnosticStep]) -> None:
        if self.handle is None:
            steps.append(DiagnosticStep("handle", False, "no directory selected"))
            return

        granted = await self.verify_permission(self.handle, read_write=True)
        steps.append(DiagnosticStep("permission", granted, "" if granted else "read/write denied"))
        if not granted:
            return

        probe = self.handle.path / PROBE_NAME
        payload = f"flashrevise probe {new_id()}"

        async def step(name, func, *args):
            try:
                result = await self._io(func, *args)
            except OSError as e:
                steps.append(DiagnosticStep(name, False, f"{type(e).__name__}: {e}"))
                return False, None
            steps.append(DiagnosticStep(name, True))
            return True, result

        ok, _ = await step("write", _write_text, probe, payload)
        if not ok:
            return
        ok, echoed = await step("read", lambda p: p.read_bytes(), probe)
        if not ok:
            return
        same = echoed == payload.encode("utf-8")
        steps.append(DiagnosticStep("compare", same, "" if same else "content mismatch"))
        if not same:
            return
        await step("delete", lambda p: p.unlink(), probe)

    async def get_stats(self) -> dict:
        stats = await super().get_stats()
        stats['directory'] = str(self.handle.path) if self.handle else None
        return stats
