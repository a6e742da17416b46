"""FlashRevise - study tree and multi-store sync.

FlashRevise keeps a Goal -> Subject -> Topic -> Subtopic -> Flashcard
tree in memory and mirrors it to exactly one store:

Stores:
━━━━━━━━━━━━━━━━━━━━━━━━━━
Local directory:
    from flashrevise.adapters import LocalDirectoryAdapter

Google Drive (one JSON file):
    from flashrevise.adapters import GoogleDriveAdapter

GitHub (nested files, one commit per sync):
    from flashrevise.adapters import GitHubAdapter
━━━━━━━━━━━━━━━━━━━━━━━━━━

Most applications only need ``AppContext``, which builds the adapter
from a ``SyncConfig`` and syncs after every change made through
``context.tree``.
"""

__version__ = "0.1.0"

from .config import AdapterKind, SyncConfig, LocalConfig, DriveConfig, GitHubConfig
from .core import (
    Level,
    Goal,
    Subject,
    Topic,
    Subtopic,
    Flashcard,
    TreeStore,
    Location,
    AsyncStoreAdapter,
    goals_to_json,
    goals_from_json,
)
from ._common import sanitize
from .errors import (
    FlashReviseError,
    UserCancelled,
    PermissionDeniedError,
    NotFoundError,
    TransportError,
    AuthError,
    PartialWriteError,
    ConfigError,
)
from .error_policies import ErrorPolicy, FailFastPolicy, RecordStatusPolicy
from .sync import SyncOrchestrator, SyncStatus, SyncState
from .context import AppContext, build_adapter

__all__ = [
    "__version__",
    # Configuration
    "AdapterKind",
    "SyncConfig",
    "LocalConfig",
    "DriveConfig",
    "GitHubConfig",
    # Tree
    "Level",
    "Goal",
    "Subject",
    "Topic",
    "Subtopic",
    "Flashcard",
    "TreeStore",
    "Location",
    "AsyncStoreAdapter",
    "goals_to_json",
    "goals_from_json",
    "sanitize",
    # Errors
    "FlashReviseError",
    "UserCancelled",
    "PermissionDeniedError",
    "NotFoundError",
    "TransportError",
    "AuthError",
    "PartialWriteError",
    "ConfigError",
    "ErrorPolicy",
    "FailFastPolicy",
    "RecordStatusPolicy",
    # Sync
    "SyncOrchestrator",
    "SyncStatus",
    "SyncState",
    "AppContext",
    "build_adapter",
]
