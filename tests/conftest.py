"""Shared fixtures: a sample tree and in-memory fakes of the remote stores."""

import asyncio
import base64
import hashlib
import itertools
import json
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from flashrevise.core import AsyncStoreAdapter, TreeStore


# Test implementations

class FakeGitHub:
    """In-memory Git object database behind the GitHub REST routes we use."""

    def __init__(self, owner: str = "me", repo: str = "cards", branch: str = "main"):
        self.prefix = f"/repos/{owner}/{repo}/"
        self.branch = branch
        self.calls: List[Tuple[str, str]] = []
        self.blobs: Dict[str, str] = {}
        self.trees: Dict[str, Dict[str, str]] = {}
        self.commits: Dict[str, Dict[str, Any]] = {}
        self.refs: Dict[str, str] = {}
        self.fail: Optional[Tuple[str, str]] = None  # (method, route) -> HTTP 500
        self._ids = itertools.count(1)

        readme = self._put_blob("# My notes\n")
        tree = self._put_tree({"README.md": readme})
        self.refs[branch] = self._put_commit(tree, [], "Initial commit")

    def _sha(self, kind: str) -> str:
        return hashlib.sha1(f"{kind}-{next(self._ids)}".encode()).hexdigest()

    def _put_blob(self, content: str) -> str:
        sha = hashlib.sha1(content.encode("utf-8")).hexdigest()
        self.blobs[sha] = content
        return sha

    def _put_tree(self, entries: Dict[str, str]) -> str:
        sha = self._sha("tree")
        self.trees[sha] = dict(entries)
        return sha

    def _put_commit(self, tree: str, parents: List[str], message: str) -> str:
        sha = self._sha("commit")
        self.commits[sha] = {"tree": tree, "parents": parents, "message": message}
        return sha

    def count(self, method: str, route: str) -> int:
        return sum(1 for m, r in self.calls if m == method and r.startswith(route))

    def files(self, ref: Optional[str] = None) -> Dict[str, str]:
        """Path -> content at the tip of a branch."""
        tree = self.trees[self.commits[self.refs[ref or self.branch]]["tree"]]
        return {path: self.blobs[sha] for path, sha in tree.items()}

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        assert path.startswith(self.prefix), path
        assert request.headers["Authorization"] == "Bearer tok"
        route = path[len(self.prefix):]
        method = request.method
        self.calls.append((method, route))

        if self.fail and method == self.fail[0] and route.startswith(self.fail[1]):
            return httpx.Response(500, json={"message": "boom"})

        body = json.loads(request.content) if request.content else {}

        if method == "GET" and route.startswith("git/ref/heads/"):
            name = route[len("git/ref/heads/"):]
            if name not in self.refs:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json={"object": {"sha": self.refs[name], "type": "commit"}})

        if method == "GET" and route.startswith("git/commits/"):
            sha = route[len("git/commits/"):]
            return httpx.Response(200, json={"sha": sha, "tree": {"sha": self.commits[sha]["tree"]}})

        if method == "GET" and route.startswith("git/trees/"):
            entries = self.trees[route[len("git/trees/"):]]
            return httpx.Response(200, json={
                "tree": [{"path": p, "type": "blob", "sha": s} for p, s in entries.items()],
                "truncated": False,
            })

        if method == "POST" and route == "git/blobs":
            assert body["encoding"] == "base64"
            content = base64.b64decode(body["content"]).decode("utf-8")
            return httpx.Response(201, json={"sha": self._put_blob(content)})

        if method == "POST" and route == "git/trees":
            entries = dict(self.trees[body["base_tree"]]) if body.get("base_tree") else {}
            for item in body["tree"]:
                if item["sha"] is None:
                    entries.pop(item["path"], None)
                else:
                    entries[item["path"]] = item["sha"]
            return httpx.Response(201, json={"sha": self._put_tree(entries)})

        if method == "POST" and route == "git/commits":
            sha = self._put_commit(body["tree"], body["parents"], body["message"])
            return httpx.Response(201, json={"sha": sha})

        if method == "PATCH" and route.startswith("git/refs/heads/"):
            assert body["force"] is True
            self.refs[route[len("git/refs/heads/"):]] = body["sha"]
            return httpx.Response(200, json={"object": {"sha": body["sha"]}})

        if method == "GET" and route.startswith("contents/"):
            files = self.files(request.url.params.get("ref"))
            wanted = route[len("contents/"):]
            if wanted not in files:
                return httpx.Response(404, json={"message": "Not Found"})
            encoded = base64.b64encode(files[wanted].encode("utf-8")).decode("ascii")
            # GitHub wraps base64 content at 60 characters
            wrapped = "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60))
            return httpx.Response(200, json={"content": wrapped, "encoding": "base64"})

        return httpx.Response(400, json={"message": f"unexpected {method} {route}"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


_NAME_QUERY = re.compile(r"name = '((?:[^'\\]|\\.)*)'")


class FakeDrive:
    """In-memory Drive v3 file store plus the token revocation endpoint."""

    def __init__(self, token: str = "tok"):
        self.token = token
        self.files: Dict[str, Dict[str, str]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.revoked: List[str] = []
        self.fail_status: Optional[int] = None
        self._ids = itertools.count(1)

    def _parse_multipart(self, request: httpx.Request) -> Tuple[Dict[str, Any], str]:
        boundary = request.headers["Content-Type"].split("boundary=", 1)[1]
        parts = request.content.decode("utf-8").split(f"--{boundary}")
        bodies = [part[2:].split("\r\n\r\n", 1)[1][:-2] for part in parts[1:3]]
        return json.loads(bodies[0]), bodies[1]

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = request.url
        self.calls.append((request.method, url.path))

        if url.host == "oauth2.googleapis.com":
            form = dict(x.split("=", 1) for x in request.content.decode().split("&"))
            self.revoked.append(form["token"])
            return httpx.Response(200)

        if self.fail_status is not None:
            return httpx.Response(self.fail_status, text="backend error")

        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"error": "invalid_token"})

        if request.method == "GET" and url.path == "/drive/v3/files":
            match = _NAME_QUERY.search(url.params["q"])
            name = re.sub(r"\\(.)", r"\1", match.group(1))
            found = [{"id": fid, "name": f["name"]} for fid, f in self.files.items() if f["name"] == name]
            return httpx.Response(200, json={"files": found})

        if request.method == "GET" and url.path.startswith("/drive/v3/files/"):
            assert url.params["alt"] == "media"
            return httpx.Response(200, text=self.files[url.path.rsplit("/", 1)[1]]["content"])

        if request.method == "POST" and url.path == "/upload/drive/v3/files":
            metadata, content = self._parse_multipart(request)
            fid = f"file{next(self._ids)}"
            self.files[fid] = {"name": metadata["name"], "content": content}
            return httpx.Response(200, json={"id": fid, "name": metadata["name"]})

        if request.method == "PATCH" and url.path.startswith("/upload/drive/v3/files/"):
            fid = url.path.rsplit("/", 1)[1]
            _, content = self._parse_multipart(request)
            self.files[fid]["content"] = content
            return httpx.Response(200, json={"id": fid})

        return httpx.Response(400)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class RecordingAdapter(AsyncStoreAdapter):
    """Adapter keeping everything in memory; saves can be held on gates."""

    name = "recording"

    def __init__(self, fail: Optional[Exception] = None):
        super().__init__()
        self.saves: List[Any] = []
        self.deletes: List[List[str]] = []
        self.stored: Optional[tuple] = None
        self.gates: List[asyncio.Event] = []
        self.fail = fail

    async def save_tree(self, goals):
        index = len(self.saves)
        self.saves.append(goals)
        if index < len(self.gates):
            await self.gates[index].wait()
        if self.fail is not None:
            raise self.fail
        self.stored = tuple(goals)
        return f"save-{index}"

    async def load_tree(self):
        return self.stored

    async def delete_path(self, segments):
        self.deletes.append(list(segments))


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def fake_drive():
    return FakeDrive()


@pytest.fixture
def recording_adapter():
    return RecordingAdapter()


@pytest.fixture
def adapter_factory():
    """Build recording adapters with custom failure behaviour."""
    return RecordingAdapter


@pytest.fixture
def biology_store():
    """Goal 'Biology' / Subject 'Cells' / Topic 'Mitosis' / Subtopic 'Phases' with one card."""
    store = TreeStore()
    goal = store.add_goal("Biology")[-1]
    subject = store.add_subject(goal.id, "Cells")[-1].subjects[-1]
    topic = store.add_topic(goal.id, subject.id, "Mitosis")[-1].subjects[-1].topics[-1]
    subtopic = store.add_subtopic(goal.id, subject.id, topic.id, "Phases")[-1] \
        .subjects[-1].topics[-1].subtopics[-1]
    store.add_flashcard(goal.id, subject.id, topic.id, subtopic.id,
                        "What is mitosis?", "Cell division producing two daughter cells")
    return store


def ids_of(store: TreeStore) -> Dict[str, str]:
    """Ids of the first node at each level."""
    goal = store.goals[0]
    subject = goal.subjects[0]
    topic = subject.topics[0]
    subtopic = topic.subtopics[0]
    ids = {"goal": goal.id, "subject": subject.id, "topic": topic.id, "subtopic": subtopic.id}
    if subtopic.flashcards:
        ids["card"] = subtopic.flashcards[0].id
    return ids


@pytest.fixture
def biology_ids(biology_store):
    return ids_of(biology_store)
