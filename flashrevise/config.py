"""Configuration system for FlashRevise.

This module defines how callers choose a persistence adapter and supply
its credentials. Credentials come from the caller (environment, settings
screen, secrets file); they are never written back out by ``to_dict``.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict

from .errors import ConfigError


DRIVE_FILE_SCOPE = "https://www.googleapis.com/auth/drive.file"
GITHUB_API_BASE = "https://api.github.com"


class AdapterKind(Enum):
    """Which store mirrors the tree. Exactly one is active at a time."""
    NONE = "none"        # In-memory only
    LOCAL = "local"      # User-granted directory
    DRIVE = "drive"      # Single JSON file in Google Drive
    GITHUB = "github"    # Nested files committed through the Git Data API


@dataclass
class LocalConfig:
    """Settings for the local directory adapter."""

    # Where directory handles are kept, apart from the app state file
    capability_path: Path = Path(".flashrevise") / "capabilities.json"
    handle_key: str = "flashrevise_dir_handle"
    max_concurrent: int = 16


@dataclass
class DriveConfig:
    """Settings for the Google Drive adapter."""

    client_id: str = ""
    scope: str = DRIVE_FILE_SCOPE
    redirect_uri: str = "http://localhost:8765/oauth2callback"
    filename: str = "flashrevise_data.json"
    timeout: float = 30.0


@dataclass
class GitHubConfig:
    """Settings for the GitHub adapter."""

    token: str = ""
    owner: str = ""
    repo: str = ""
    branch: str = "main"
    root: str = "saved-flashcards"
    commit_message: str = "Sync flashcards (Nested Structure)"
    max_concurrent: int = 8  # Bound on parallel blob uploads
    api_base: str = GITHUB_API_BASE
    timeout: float = 30.0


@dataclass
class SyncConfig:
    """Top-level configuration for an application context.

    Example:
        config = SyncConfig(
            adapter=AdapterKind.GITHUB,
            github=GitHubConfig(token=token, owner="me", repo="cards"),
        )
        config.validate()
    """

    adapter: AdapterKind = AdapterKind.NONE
    state_path: Path = Path(".flashrevise") / "state.json"
    local: LocalConfig = field(default_factory=LocalConfig)
    drive: DriveConfig = field(default_factory=DriveConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)

    # Raise NotFoundError for unknown parent ids instead of a silent no-op
    strict_tree: bool = True

    def validate(self) -> None:
        """Check that the selected adapter has what it needs.

        Raises:
            ConfigError: If a required setting is empty
        """
        if self.adapter is AdapterKind.DRIVE and not self.drive.client_id:
            raise ConfigError("Drive adapter requires drive.client_id")
        if self.adapter is AdapterKind.GITHUB:
            missing = [
                name for name in ("token", "owner", "repo", "branch")
                if not getattr(self.github, name)
            ]
            if missing:
                raise ConfigError(
                    f"GitHub adapter requires github.{', github.'.join(missing)}"
                )
        if self.github.max_concurrent < 1 or self.local.max_concurrent < 1:
            raise ConfigError("max_concurrent must be at least 1")

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SyncConfig":
        """Build a config from plain data (e.g. a parsed settings file)."""
        try:
            adapter = AdapterKind(raw.get("adapter", AdapterKind.NONE.value))
        except ValueError as e:
            raise ConfigError(f"Unknown adapter: {raw.get('adapter')!r}") from e

        local_raw = dict(raw.get("local", {}))
        if "capability_path" in local_raw:
            local_raw["capability_path"] = Path(local_raw["capability_path"])

        config = cls(
            adapter=adapter,
            local=LocalConfig(**local_raw),
            drive=DriveConfig(**raw.get("drive", {})),
            github=GitHubConfig(**raw.get("github", {})),
            strict_tree=bool(raw.get("strict_tree", True)),
        )
        if "state_path" in raw:
            config.state_path = Path(raw["state_path"])
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Serialize everything except credentials."""
        return {
            "adapter": self.adapter.value,
            "state_path": str(self.state_path),
            "strict_tree": self.strict_tree,
            "local": {
                "capability_path": str(self.local.capability_path),
                "handle_key": self.local.handle_key,
                "max_concurrent": self.local.max_concurrent,
            },
            "drive": {
                "client_id": self.drive.client_id,
                "scope": self.drive.scope,
                "redirect_uri": self.drive.redirect_uri,
                "filename": self.drive.filename,
                "timeout": self.drive.timeout,
            },
            "github": {
                "owner": self.github.owner,
                "repo": self.github.repo,
                "branch": self.github.branch,
                "root": self.github.root,
                "commit_message": self.github.commit_message,
                "max_concurrent": self.github.max_concurrent,
                "api_base": self.github.api_base,
                "timeout": self.github.timeout,
            },
        }

    def summary(self) -> str:
        """One-line description for logs, without secrets."""
        if self.adapter is AdapterKind.GITHUB:
            return f"github:{self.github.owner}/{self.github.repo}@{self.github.branch}"
        if self.adapter is AdapterKind.DRIVE:
            return f"drive:{self.drive.filename}"
        if self.adapter is AdapterKind.LOCAL:
            return f"local:{self.local.handle_key}"
        return "none"
