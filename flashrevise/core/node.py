"""Entities of the study tree.

Goal -> Subject -> Topic -> Subtopic -> Flashcard. Every entity is a
frozen dataclass and every child collection is a tuple, so a snapshot
handed to a reader can never change underneath it. Mutation happens in
``TreeStore`` by building new parents around new child tuples.

The wire format (``to_dict``/``from_dict``) uses camelCase keys, the
layout every existing ``app_data.json`` file has.
"""

import time
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Tuple


MAX_MASTERY = 5


class Level(Enum):
    """Navigation levels. Values match the stored ``currentView.type``."""
    HOME = "home"
    GOAL = "goal"
    SUBJECT = "subject"
    TOPIC = "topic"
    SUBTOPIC = "subtopic"
    FLASHCARD = "flashcard"


def new_id() -> str:
    """Generate an opaque unique id."""
    return uuid.uuid4().hex


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def require_text(value: str, field_name: str) -> str:
    """Reject empty or whitespace-only text.

    Returns the value unchanged (titles are stored as typed).
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must not be empty")
    return value


def check_mastery(mastery: int) -> int:
    if isinstance(mastery, bool) or not isinstance(mastery, int):
        raise ValueError(f"mastery must be an integer, got {mastery!r}")
    if not 0 <= mastery <= MAX_MASTERY:
        raise ValueError(f"mastery must be between 0 and {MAX_MASTERY}, got {mastery}")
    return mastery


@dataclass(frozen=True)
class Flashcard:
    """A single card. ``image`` is a data URL (see ``flashrevise.images``)."""

    id: str
    front: str
    expansion: str
    created_at: int
    mastery: int = 0
    image: Optional[str] = None

    level: ClassVar[Level] = Level.FLASHCARD

    @classmethod
    def create(cls, front: str, expansion: str, image: Optional[str] = None) -> "Flashcard":
        return cls(
            id=new_id(),
            front=require_text(front, "front"),
            expansion=require_text(expansion, "expansion"),
            created_at=now_ms(),
            image=image,
        )

    @property
    def label(self) -> str:
        return self.front

    def with_mastery(self, mastery: int) -> "Flashcard":
        return replace(self, mastery=check_mastery(mastery))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "front": self.front,
            "expansion": self.expansion,
            "createdAt": self.created_at,
            "mastery": self.mastery,
        }
        if self.image is not None:
            data["image"] = self.image
        return data

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Flashcard":
        return cls(
            id=str(raw["id"]),
            front=str(raw.get("front", "")),
            expansion=str(raw.get("expansion", "")),
            created_at=int(raw.get("createdAt", 0)),
            mastery=int(raw.get("mastery", 0)),
            image=raw.get("image"),
        )


class _Branch:
    """Shared behaviour of the four titled levels.

    Subclasses name their child field in ``child_field`` and the type of
    their children in ``child_type``.
    """

    child_field: ClassVar[str]
    child_type: ClassVar[type]
    level: ClassVar[Level]

    @classmethod
    def create(cls, title: str):
        return cls(id=new_id(), title=require_text(title, "title"), created_at=now_ms())

    @property
    def label(self) -> str:
        return self.title

    @property
    def children(self) -> Tuple[Any, ...]:
        return getattr(self, self.child_field)

    def with_children(self, children: Iterable[Any]):
        return replace(self, **{self.child_field: tuple(children)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            self.child_field: [child.to_dict() for child in self.children],
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]):
        children = tuple(cls.child_type.from_dict(item) for item in raw.get(cls.child_field) or [])
        return cls(
            id=str(raw["id"]),
            title=str(raw.get("title", "")),
            created_at=int(raw.get("createdAt", 0)),
            **{cls.child_field: children},
        )


@dataclass(frozen=True)
class Subtopic(_Branch):
    id: str
    title: str
    created_at: int
    flashcards: Tuple[Flashcard, ...] = ()

    child_field: ClassVar[str] = "flashcards"
    child_type: ClassVar[type] = Flashcard
    level: ClassVar[Level] = Level.SUBTOPIC


@dataclass(frozen=True)
class Topic(_Branch):
    id: str
    title: str
    created_at: int
    subtopics: Tuple[Subtopic, ...] = ()

    child_field: ClassVar[str] = "subtopics"
    child_type: ClassVar[type] = Subtopic
    level: ClassVar[Level] = Level.TOPIC


@dataclass(frozen=True)
class Subject(_Branch):
    id: str
    title: str
    created_at: int
    topics: Tuple[Topic, ...] = ()

    child_field: ClassVar[str] = "topics"
    child_type: ClassVar[type] = Topic
    level: ClassVar[Level] = Level.SUBJECT


@dataclass(frozen=True)
class Goal(_Branch):
    id: str
    title: str
    created_at: int
    subjects: Tuple[Subject, ...] = ()

    child_field: ClassVar[str] = "subjects"
    child_type: ClassVar[type] = Subject
    level: ClassVar[Level] = Level.GOAL


# Level -> entity class, root to leaf
LEVEL_TYPES = {
    Level.GOAL: Goal,
    Level.SUBJECT: Subject,
    Level.TOPIC: Topic,
    Level.SUBTOPIC: Subtopic,
    Level.FLASHCARD: Flashcard,
}

BRANCH_LEVELS = (Level.GOAL, Level.SUBJECT, Level.TOPIC, Level.SUBTOPIC)


def goals_to_json(goals: Iterable[Goal]) -> List[Dict[str, Any]]:
    """Serialize a snapshot into the manifest structure."""
    return [goal.to_dict() for goal in goals]


def goals_from_json(raw: Any) -> Tuple[Goal, ...]:
    """Parse a manifest structure back into a snapshot.

    Raises:
        ValueError: If the manifest is not a list of goal objects
    """
    if not isinstance(raw, list):
        raise ValueError(f"Manifest must be a JSON array, got {type(raw).__name__}")
    try:
        return tuple(Goal.from_dict(item) for item in raw)
    except (KeyError, TypeError, AttributeError) as e:
        raise ValueError(f"Malformed manifest: {e}") from e


def count_nodes(goals: Iterable[Any]) -> int:
    """Count every entity in a snapshot, flashcards included."""
    total = 0
    for node in goals:
        total += 1
        if isinstance(node, _Branch):
            total += count_nodes(node.children)
    return total
