"""
Error handling policies for FlashRevise.

The sync orchestrator always records a failed sync in its status. The
policy decides what happens next: keep going (the default, since syncs
run in the background and the user retries from the status display) or
re-raise to whoever awaits the sync.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List

logger = logging.getLogger(__name__)


class ErrorPolicy(ABC):
    """
    Base class for sync error policies.

    Subclasses implement different strategies for handling errors
    raised by a store adapter during a sync.
    """

    @abstractmethod
    async def handle(self, error: Exception, operation: str, adapter: str) -> Any:
        """
        Handle an error raised while syncing.

        Args:
            error: The exception that was raised
            operation: What was running (e.g. 'save_tree', 'delete_path')
            adapter: Name of the adapter that failed

        Returns:
            None to let the caller continue, or re-raises the exception.
        """
        pass


class FailFastPolicy(ErrorPolicy):
    """
    Policy that immediately re-raises any error.

    Useful in scripts and tests, where a failed sync should stop the run.
    """

    async def handle(self, error: Exception, operation: str, adapter: str) -> Any:
        """Re-raise the error immediately."""
        raise error


class RecordStatusPolicy(ErrorPolicy):
    """
    Policy that logs errors, keeps them for inspection, and continues.

    This is the orchestrator default: a background sync failure must not
    crash the caller that triggered it.
    """

    def __init__(self, verbose: bool = True, keep: int = 50):
        """
        Initialize the policy.

        Args:
            verbose: If True, log a warning for every error
            keep: How many recent error records to retain
        """
        self.verbose = verbose
        self.keep = keep
        self.errors: List[Dict[str, Any]] = []

    async def handle(self, error: Exception, operation: str, adapter: str) -> Any:
        """Record the error and return None."""
        self.errors.append({
            'operation': operation,
            'adapter': adapter,
            'error': error,
            'error_type': type(error).__name__,
            'error_message': str(error),
            'at': datetime.now(timezone.utc),
        })
        del self.errors[:-self.keep]

        if self.verbose:
            if isinstance(error, PermissionError):
                logger.warning("%s %s: permission denied: %s", adapter, operation, error)
            else:
                logger.warning("%s %s failed: %s", adapter, operation, error)
        return None

    def get_statistics(self) -> dict:
        """
        Get statistics about errors encountered.

        Returns:
            Dictionary with error counts and details
        """
        by_type: Dict[str, int] = {}
        for record in self.errors:
            by_type[record['error_type']] = by_type.get(record['error_type'], 0) + 1
        return {
            'total_errors': len(self.errors),
            'by_type': by_type,
            'errors': self.errors,
        }
