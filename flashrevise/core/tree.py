"""Copy-on-write store for the study tree.

The store owns the current snapshot, a tuple of ``Goal`` objects. Every
mutation rebuilds the path from the root to the changed node and reuses
all other subtrees by identity, then swaps the snapshot in one
assignment. A reader holding an older snapshot keeps a consistent view.

Lookups descend the tree comparing ids at each level. That is linear in
the number of nodes, which is fine for a personal collection.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple, Union

from .._common import iter_folders
from ..errors import NotFoundError
from .node import (
    BRANCH_LEVELS,
    Flashcard,
    Goal,
    Level,
    Subject,
    Subtopic,
    Topic,
    count_nodes,
)

logger = logging.getLogger(__name__)

Snapshot = Tuple[Goal, ...]


@dataclass(frozen=True)
class Location:
    """Navigation cursor: a level plus the id of the node shown.

    Holds an id rather than a node so it never pins a stale snapshot.
    """
    level: Level = Level.HOME
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return {"type": self.level.value, "id": self.id}

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "Location":
        if not raw:
            return cls()
        return cls(Level(raw.get("type", Level.HOME.value)), raw.get("id"))


@dataclass(frozen=True)
class Resolved:
    """Result of a lookup: the node plus its ancestors, root first."""
    node: Any
    ancestors: Tuple[Any, ...] = ()

    @property
    def level(self) -> Level:
        return self.node.level

    @property
    def path_ids(self) -> Tuple[str, ...]:
        """Ids from the goal down to and including the node."""
        return tuple(a.id for a in self.ancestors) + (self.node.id,)


def _rebuild(nodes: Snapshot, ids: Sequence[str], change: Callable[[Any], Any]) -> Optional[tuple]:
    """Apply ``change`` to the node addressed by ``ids`` and rebuild upwards.

    Returns the new sibling tuple, or None if any id on the path is missing
    or ``change`` returned None.
    """
    for index, node in enumerate(nodes):
        if node.id != ids[0]:
            continue
        if len(ids) == 1:
            updated = change(node)
        else:
            children = _rebuild(node.children, ids[1:], change)
            updated = None if children is None else node.with_children(children)
        if updated is None:
            return None
        return nodes[:index] + (updated,) + nodes[index + 1:]
    return None


def _append(child: Any) -> Callable[[Any], Any]:
    return lambda parent: parent.with_children(parent.children + (child,))


def _remove(child_id: str) -> Callable[[Any], Any]:
    def change(parent):
        kept = tuple(c for c in parent.children if c.id != child_id)
        if len(kept) == len(parent.children):
            return None
        return parent.with_children(kept)
    return change


class TreeStore:
    """Mutable holder of an immutable snapshot plus the navigation cursor.

    Args:
        goals: Initial snapshot
        strict: If True (default), addressing a missing id raises
            ``NotFoundError``. If False, the mutation is a silent no-op and
            the unchanged snapshot is returned.
    """

    def __init__(self, goals: Iterable[Goal] = (), strict: bool = True):
        self._goals: Snapshot = tuple(goals)
        self.strict = strict
        self._location = Location()

    @property
    def goals(self) -> Snapshot:
        return self._goals

    @property
    def location(self) -> Location:
        return self._location

    def replace(self, goals: Iterable[Goal]) -> Snapshot:
        """Install a whole snapshot, e.g. one loaded from a store."""
        self._goals = tuple(goals)
        return self._goals

    def _commit(self, goals: Optional[Snapshot], what: str, ids: Sequence[str]) -> Snapshot:
        if goals is None:
            if self.strict:
                raise NotFoundError(f"{what}: no node at path {'/'.join(ids)}")
            logger.debug("%s ignored, no node at path %s", what, "/".join(ids))
            return self._goals
        self._goals = goals
        return goals

    # Add operations

    def add_goal(self, title: str) -> Snapshot:
        self._goals = self._goals + (Goal.create(title),)
        return self._goals

    def add_subject(self, goal_id: str, title: str) -> Snapshot:
        ids = (goal_id,)
        return self._commit(_rebuild(self._goals, ids, _append(Subject.create(title))), "add_subject", ids)

    def add_topic(self, goal_id: str, subject_id: str, title: str) -> Snapshot:
        ids = (goal_id, subject_id)
        return self._commit(_rebuild(self._goals, ids, _append(Topic.create(title))), "add_topic", ids)

    def add_subtopic(self, goal_id: str, subject_id: str, topic_id: str, title: str) -> Snapshot:
        ids = (goal_id, subject_id, topic_id)
        return self._commit(_rebuild(self._goals, ids, _append(Subtopic.create(title))), "add_subtopic", ids)

    def add_flashcard(
        self,
        goal_id: str,
        subject_id: str,
        topic_id: str,
        subtopic_id: str,
        front: str,
        expansion: str,
        image: Optional[str] = None,
    ) -> Snapshot:
        ids = (goal_id, subject_id, topic_id, subtopic_id)
        card = Flashcard.create(front, expansion, image)
        return self._commit(_rebuild(self._goals, ids, _append(card)), "add_flashcard", ids)

    # Delete operations. Each removes the node with its whole subtree.

    def delete_goal(self, goal_id: str) -> Snapshot:
        kept = tuple(g for g in self._goals if g.id != goal_id)
        if len(kept) == len(self._goals):
            return self._commit(None, "delete_goal", (goal_id,))
        self._goals = kept
        return kept

    def delete_subject(self, goal_id: str, subject_id: str) -> Snapshot:
        ids = (goal_id,)
        return self._commit(_rebuild(self._goals, ids, _remove(subject_id)), "delete_subject", ids + (subject_id,))

    def delete_topic(self, goal_id: str, subject_id: str, topic_id: str) -> Snapshot:
        ids = (goal_id, subject_id)
        return self._commit(_rebuild(self._goals, ids, _remove(topic_id)), "delete_topic", ids + (topic_id,))

    def delete_subtopic(self, goal_id: str, subject_id: str, topic_id: str, subtopic_id: str) -> Snapshot:
        ids = (goal_id, subject_id, topic_id)
        return self._commit(
            _rebuild(self._goals, ids, _remove(subtopic_id)), "delete_subtopic", ids + (subtopic_id,)
        )

    def delete_flashcard(
        self, goal_id: str, subject_id: str, topic_id: str, subtopic_id: str, card_id: str
    ) -> Snapshot:
        ids = (goal_id, subject_id, topic_id, subtopic_id)
        return self._commit(_rebuild(self._goals, ids, _remove(card_id)), "delete_flashcard", ids + (card_id,))

    def set_mastery(
        self, goal_id: str, subject_id: str, topic_id: str, subtopic_id: str, card_id: str, mastery: int
    ) -> Snapshot:
        """Record a card's mastery score (0-5)."""
        ids = (goal_id, subject_id, topic_id, subtopic_id, card_id)
        return self._commit(
            _rebuild(self._goals, ids, lambda card: card.with_mastery(mastery)), "set_mastery", ids
        )

    # Lookup

    def find(self, level: Union[Level, str], node_id: str) -> Optional[Resolved]:
        """Locate a node by level and id.

        Returns:
            A ``Resolved`` record, or None if no such node exists
        """
        level = Level(level)

        def search(nodes, ancestors):
            for node in nodes:
                if node.level is level and node.id == node_id:
                    return Resolved(node, ancestors)
                if node.level is not Level.FLASHCARD and node.level is not level:
                    found = search(node.children, ancestors + (node,))
                    if found:
                        return found
            return None

        if level is Level.HOME:
            return None
        return search(self._goals, ())

    def storage_path(self, level: Union[Level, str], node_id: str) -> Optional[List[str]]:
        """Folder segments a Goal/Subject/Topic/Subtopic is stored under."""
        level = Level(level)
        if level not in BRANCH_LEVELS:
            return None
        for segments, node in iter_folders(self._goals):
            if node.level is level and node.id == node_id:
                return list(segments)
        return None

    def count_nodes(self) -> int:
        return count_nodes(self._goals)

    # Navigation

    def navigate(self, level: Union[Level, str], node_id: Optional[str] = None) -> Location:
        self._location = Location(Level(level), node_id)
        return self._location

    def resolve_location(self) -> Optional[Resolved]:
        """Resolve the cursor against the current snapshot.

        Returns None at HOME or when the node has since been deleted.
        """
        if self._location.level is Level.HOME or self._location.id is None:
            return None
        return self.find(self._location.level, self._location.id)

    def __repr__(self) -> str:
        return f"TreeStore(goals={len(self._goals)}, nodes={self.count_nodes()})"
