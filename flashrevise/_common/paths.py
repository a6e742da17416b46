"""Storage layout shared by the directory and Git adapters.

Pure computation only: turns titles into folder names and a snapshot
into the list of files a store should hold. No I/O happens here.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Sequence, Tuple


MANIFEST_NAME = "app_data.json"
FLASHCARDS_NAME = "flashcards.json"
UNTITLED = "Untitled"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_\-\s]")


@dataclass(frozen=True)
class StoredFile:
    """One file of the mirrored layout. ``path`` uses forward slashes."""
    path: str
    content: str


def sanitize(title: str) -> str:
    """Turn a free-text title into a safe path segment.

    Keeps ASCII letters, digits, underscore, hyphen and whitespace, then
    trims. An empty result becomes ``"Untitled"``.

        >>> sanitize("Math!!")
        'Math'
        >>> sanitize("   ")
        'Untitled'
    """
    return _UNSAFE_CHARS.sub("", title).strip() or UNTITLED


def folder_names(titles: Iterable[str]) -> List[str]:
    """Folder names for one set of siblings, in order.

    Siblings whose sanitized names clash (ignoring case, since common
    filesystems do) get `` (2)``, `` (3)``... appended in insertion order.
    Parentheses never survive ``sanitize``, so a suffixed name cannot clash
    with another sibling's plain name.
    """
    taken = set()
    names = []
    for title in titles:
        base = sanitize(title)
        name = base
        suffix = 2
        while name.casefold() in taken:
            name = f"{base} ({suffix})"
            suffix += 1
        taken.add(name.casefold())
        names.append(name)
    return names


def join_path(*parts: str) -> str:
    """Join path parts with ``/``, skipping empty ones."""
    return "/".join(part.strip("/") for part in parts if part and part.strip("/"))


def dump_json(value: Any) -> str:
    """Pretty-print JSON the way every store writes it."""
    return json.dumps(value, indent=2, ensure_ascii=False)


def iter_folders(nodes: Sequence[Any], parent: Tuple[str, ...] = ()) -> Iterator[Tuple[Tuple[str, ...], Any]]:
    """Yield ``(segments, node)`` for every Goal/Subject/Topic/Subtopic.

    Pre-order, so a folder is always yielded before its contents.
    Flashcards are not folders and are never yielded.
    """
    for name, node in zip(folder_names(node.title for node in nodes), nodes):
        segments = parent + (name,)
        yield segments, node
        if node.child_field != "flashcards":
            yield from iter_folders(node.children, segments)


def flatten_tree(goals: Sequence[Any], root: str = "") -> List[StoredFile]:
    """Flatten a snapshot into the files of the mirrored layout.

    The manifest comes first, followed by one ``flashcards.json`` per
    Subtopic at ``<root>/<Goal>/<Subject>/<Topic>/<Subtopic>/``.
    """
    files = [StoredFile(join_path(root, MANIFEST_NAME), dump_json([goal.to_dict() for goal in goals]))]
    for segments, node in iter_folders(goals):
        if node.child_field == "flashcards":
            files.append(StoredFile(
                join_path(root, *segments, FLASHCARDS_NAME),
                dump_json([card.to_dict() for card in node.flashcards]),
            ))
    return files


def stale_folders(before: Sequence[Any], after: Sequence[Any]) -> List[List[str]]:
    """Folders of ``before`` that have no counterpart in ``after``.

    Only the outermost stale folder of each subtree is returned, in
    pre-order. Removing a sibling can shift clash suffixes, so a node
    that survives may move from ``Math (2)`` to ``Math``; its old folder
    is stale too and shows up here.
    """
    kept = {segments for segments, _ in iter_folders(after)}
    stale: List[List[str]] = []
    for segments, _ in iter_folders(before):
        if segments in kept:
            continue
        if stale and list(segments[:len(stale[-1])]) == stale[-1]:
            continue
        stale.append(list(segments))
    return stale
