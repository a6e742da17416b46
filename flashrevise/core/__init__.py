"""Core abstractions: tree entities, the tree store and the adapter base."""

from .node import (
    Level,
    Goal,
    Subject,
    Topic,
    Subtopic,
    Flashcard,
    MAX_MASTERY,
    goals_to_json,
    goals_from_json,
    count_nodes,
)
from .tree import TreeStore, Location, Resolved, Snapshot
from .adapter import AsyncStoreAdapter

__all__ = [
    'Level',
    'Goal',
    'Subject',
    'Topic',
    'Subtopic',
    'Flashcard',
    'MAX_MASTERY',
    'goals_to_json',
    'goals_from_json',
    'count_nodes',
    'TreeStore',
    'Location',
    'Resolved',
    'Snapshot',
    'AsyncStoreAdapter',
]
