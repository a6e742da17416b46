"""Common components shared between the store adapters.

This internal package contains non-I/O code used by more than one
adapter. It should NOT be imported directly by users.

Important: This package must NEVER import from core or adapters to avoid
circular dependencies.
"""

from .paths import (
    MANIFEST_NAME,
    FLASHCARDS_NAME,
    UNTITLED,
    StoredFile,
    sanitize,
    folder_names,
    join_path,
    dump_json,
    iter_folders,
    flatten_tree,
    stale_folders,
)

__all__ = [
    'MANIFEST_NAME',
    'FLASHCARDS_NAME',
    'UNTITLED',
    'StoredFile',
    'sanitize',
    'folder_names',
    'join_path',
    'dump_json',
    'iter_folders',
    'flatten_tree',
    'stale_folders',
]
