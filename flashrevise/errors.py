"""
Error taxonomy for FlashRevise.

Adapters raise these to the orchestrator, which decides (through an
error policy) whether a failure is recorded in sync status or re-raised.
"""

from typing import List, Optional


class FlashReviseError(Exception):
    """Base class for all FlashRevise errors."""


class UserCancelled(FlashReviseError):
    """The user dismissed a picker or consent prompt.

    Not a failure: public operations translate it into a ``None`` result.
    """


class PermissionDeniedError(FlashReviseError, PermissionError):
    """A capability check failed. Retryable by asking the user again."""


class NotFoundError(FlashReviseError, LookupError):
    """An addressed node, file or ref does not exist."""


class TransportError(FlashReviseError):
    """A network or remote API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthError(TransportError):
    """No usable OAuth token, or the token grant failed."""


class PartialWriteError(FlashReviseError):
    """A local save failed part way through.

    Files listed in ``written`` were already replaced on disk and are
    not rolled back.
    """

    def __init__(self, message: str, written: List[str]):
        super().__init__(message)
        self.written = written


class ConfigError(FlashReviseError, ValueError):
    """Configuration is missing a setting the selected adapter needs."""
