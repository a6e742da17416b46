"""GitHub adapter.

Commits the tree into a repository through the Git Data API, so the
cards live in a reviewable history:

    <root>/app_data.json
    <root>/<Goal>/<Subject>/<Topic>/<Subtopic>/flashcards.json

A sync is a chain of object writes (blobs, a tree, a commit) followed
by a forced ref update. Only the ref update is visible to readers, so a
sync that fails part way leaves unreferenced objects behind but never a
half-written branch.
"""

import asyncio
import base64
import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from .._common import MANIFEST_NAME, StoredFile, flatten_tree, join_path
from ..config import GITHUB_API_BASE
from ..core import AsyncStoreAdapter, Goal, goals_from_json
from ..errors import AuthError, NotFoundError, TransportError

logger = logging.getLogger(__name__)

BLOB_MODE = "100644"


def encode_content(text: str) -> str:
    """Base64 of the UTF-8 bytes, so multi-byte characters survive."""
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_content(encoded: str) -> str:
    """Inverse of ``encode_content``. Tolerates the line breaks GitHub adds."""
    return base64.b64decode("".join(encoded.split())).decode("utf-8")


class GitHubAdapter(AsyncStoreAdapter):
    """Store adapter committing the snapshot to a GitHub branch.

    Args:
        token: Personal access token with contents write access
        owner: Repository owner
        repo: Repository name
        branch: Branch to force-update
        root: Folder inside the repository holding the cards
        commit_message: Message of every sync commit
        max_concurrent: Bound on parallel blob uploads
        api_base: REST API base URL
        timeout: Per-request timeout in seconds
        client: Optional preconfigured ``httpx.AsyncClient``
    """

    name = "github"

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        branch: str = "main",
        root: str = "saved-flashcards",
        commit_message: str = "Sync flashcards (Nested Structure)",
        max_concurrent: int = 8,
        api_base: str = GITHUB_API_BASE,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(max_concurrent)
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.root = root
        self.commit_message = commit_message
        self.api_base = api_base.rstrip("/")
        self._token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._requests = 0

    def _define_capabilities(self):
        return super()._define_capabilities() | {'delete_path'}

    @property
    def repo_url(self) -> str:
        return f"{self.api_base}/repos/{self.owner}/{self.repo}"

    async def _request(self, method: str, path: str, what: str, **kwargs) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "Cache-Control": "no-cache",
        }
        async with self.semaphore:
            try:
                response = await self._client.request(
                    method, f"{self.repo_url}/{path}", headers=headers, **kwargs
                )
            except httpx.HTTPError as e:
                raise TransportError(f"Error {what}: {e}") from e
        self._requests += 1
        logger.debug("%s %s -> %d", method, path, response.status_code)

        if response.status_code == 404:
            raise NotFoundError(f"Error {what}: not found")
        if response.status_code == 401:
            raise AuthError(f"Error {what}: bad credentials", 401)
        if response.is_error:
            raise TransportError(
                f"Error {what}: HTTP {response.status_code} {response.reason_phrase}",
                response.status_code,
            )
        return response.json()

    # Git object database

    async def get_ref(self, branch: Optional[str] = None) -> str:
        """Resolve a branch to its commit SHA."""
        data = await self._request("GET", f"git/ref/heads/{branch or self.branch}", "getting ref")
        return data["object"]["sha"]

    async def get_commit(self, sha: str) -> Dict[str, Any]:
        return await self._request("GET", f"git/commits/{sha}", "getting commit")

    async def get_tree(self, sha: str, recursive: bool = False) -> Dict[str, Any]:
        params = {"recursive": "1"} if recursive else None
        return await self._request("GET", f"git/trees/{sha}", "getting tree", params=params)

    async def create_blob(self, content: str) -> str:
        data = await self._request("POST", "git/blobs", "creating blob", json={
            "content": encode_content(content),
            "encoding": "base64",
        })
        return data["sha"]

    async def create_tree(self, entries: List[Dict[str, Any]], base_tree: Optional[str]) -> str:
        body: Dict[str, Any] = {"tree": entries}
        if base_tree:
            body["base_tree"] = base_tree
        data = await self._request("POST", "git/trees", "creating tree", json=body)
        return data["sha"]

    async def create_commit(self, message: str, tree: str, parents: List[str]) -> str:
        data = await self._request("POST", "git/commits", "creating commit", json={
            "message": message,
            "tree": tree,
            "parents": parents,
        })
        return data["sha"]

    async def update_ref(self, sha: str, force: bool = True) -> None:
        await self._request("PATCH", f"git/refs/heads/{self.branch}", "updating ref", json={
            "sha": sha,
            "force": force,
        })

    # Sync

    async def _blob_entries(self, files: Sequence[StoredFile]) -> List[Dict[str, Any]]:
        # Concurrency is bounded by the semaphore taken in _request
        shas = await asyncio.gather(*(self.create_blob(f.content) for f in files))
        return [
            {"path": f.path, "mode": BLOB_MODE, "type": "blob", "sha": sha}
            for f, sha in zip(files, shas)
        ]

    async def sync_tree(self, goals: Sequence[Goal]) -> str:
        """Commit the full snapshot and force the branch onto it.

        One blob per file (not per card), one tree, one commit, one ref
        update. The existing tree is used as base, so files outside the
        layout are kept.

        Returns:
            SHA of the new commit
        """
        parent = await self.get_ref()
        base_tree = (await self.get_commit(parent))["tree"]["sha"]
        files = flatten_tree(goals, self.root)
        entries = await self._blob_entries(files)
        tree = await self.create_tree(entries, base_tree)
        commit = await self.create_commit(self.commit_message, tree, [parent])
        await self.update_ref(commit, force=True)
        logger.info("Synced %d files to %s/%s@%s (%s)",
                    len(files), self.owner, self.repo, self.branch, commit[:7])
        return commit

    async def save_tree(self, goals: Sequence[Goal]) -> str:
        return await self.sync_tree(goals)

    async def fetch_manifest(self) -> Optional[Any]:
        """Read and parse ``<root>/app_data.json``. None if it does not exist."""
        path = join_path(self.root, MANIFEST_NAME)
        try:
            data = await self._request(
                "GET", f"contents/{path}", "fetching manifest", params={"ref": self.branch}
            )
        except NotFoundError:
            return None
        return json.loads(decode_content(data["content"]))

    async def load_tree(self) -> Optional[Tuple[Goal, ...]]:
        raw = await self.fetch_manifest()
        return None if raw is None else goals_from_json(raw)

    async def delete_path(self, segments: Sequence[str]) -> Optional[str]:
        """Commit the removal of every file under ``<root>/<segments>``.

        Returns:
            SHA of the removal commit, or None if nothing was stored there
        """
        prefix = join_path(self.root, *segments) + "/"
        parent = await self.get_ref()
        base_tree = (await self.get_commit(parent))["tree"]["sha"]
        listing = await self.get_tree(base_tree, recursive=True)
        if listing.get("truncated"):
            logger.warning("Tree listing truncated, some files under %s may remain", prefix)

        doomed = [
            item["path"] for item in listing.get("tree", [])
            if item.get("type") == "blob" and item["path"].startswith(prefix)
        ]
        if not doomed:
            logger.debug("Nothing stored under %s", prefix)
            return None

        entries = [{"path": p, "mode": BLOB_MODE, "type": "blob", "sha": None} for p in doomed]
        tree = await self.create_tree(entries, base_tree)
        commit = await self.create_commit(f"Remove {join_path(*segments)}", tree, [parent])
        await self.update_ref(commit, force=True)
        logger.info("Removed %d files under %s (%s)", len(doomed), prefix, commit[:7])
        return commit

    async def get_stats(self) -> dict:
        stats = await super().get_stats()
        stats.update(repository=f"{self.owner}/{self.repo}", branch=self.branch, requests=self._requests)
        return stats

    async def close(self):
        if self._owns_client:
            await self._client.aclose()
