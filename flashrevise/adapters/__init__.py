"""Store adapters: local directory, Google Drive and GitHub."""

from .local_directory import (
    LocalDirectoryAdapter,
    DirectoryHandle,
    CapabilityStore,
    PermissionState,
    DiagnosticStep,
    READ,
    READ_WRITE,
)
from .drive import GoogleDriveAdapter, AccessToken, PendingAuth
from .github import GitHubAdapter, encode_content, decode_content

__all__ = [
    'LocalDirectoryAdapter',
    'DirectoryHandle',
    'CapabilityStore',
    'PermissionState',
    'DiagnosticStep',
    'READ',
    'READ_WRITE',
    'GoogleDriveAdapter',
    'AccessToken',
    'PendingAuth',
    'GitHubAdapter',
    'encode_content',
    'decode_content',
]
