"""Configuration parsing and validation for the lead time tool."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from .errors import ConfigurationError
from .models import RepoConfig, RepositoryKey
from .providers import GitHubProvider, GitLabProvider
from .store import DEFAULT_DATABASE_URL

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_DAYS = 30

_DEPLOYMENT_METHODS: Dict[str, Tuple[str, ...]] = {
    "github": GitHubProvider.DEPLOYMENT_METHODS,
    "gitlab": GitLabProvider.DEPLOYMENT_METHODS,
}

# Accepted spellings from older configuration files.
_METHOD_ALIASES = {
    "workflows": "workflow",
    "pipelines": "pipeline",
}


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the lead time tool."""

    repositories: Tuple[RepoConfig, ...]
    days: int = DEFAULT_DAYS
    database_url: str = DEFAULT_DATABASE_URL
    github_token: Optional[str] = field(default=None, repr=False)
    gitlab_token: Optional[str] = field(default=None, repr=False)
    gitlab_url: str = "https://gitlab.com"

    def token_for(self, platform: str) -> Optional[str]:
        if platform == "github":
            return self.github_token
        if platform == "gitlab":
            return self.gitlab_token
        return None

    def select_repositories(self, pattern: Optional[str]) -> Tuple[RepoConfig, ...]:
        """Repositories whose ``owner/name`` contains ``pattern``; all when no pattern."""
        if not pattern:
            return self.repositories
        needle = pattern.lower()
        return tuple(
            repo
            for repo in self.repositories
            if needle in f"{repo.key.owner}/{repo.key.name}".lower()
        )


def parse_repository(entry: Dict[str, Any]) -> RepoConfig:
    """Build a ``RepoConfig`` from one entry of the configuration file.

    Raises:
        ConfigurationError: If required keys are missing, the platform is
            unsupported, or the deployment method is unknown for the platform.
    """
    if not isinstance(entry, dict):
        raise ConfigurationError(f"Repository entry must be an object, got: {entry!r}")

    platform = str(entry.get("platform", "")).strip().lower()
    owner = str(entry.get("owner", "")).strip()
    name = str(entry.get("name", "")).strip()
    if not platform or not owner or not name:
        raise ConfigurationError(
            f"Repository entry requires 'platform', 'owner' and 'name': {entry!r}"
        )

    if platform not in _DEPLOYMENT_METHODS:
        raise ConfigurationError(
            f"Unsupported platform '{platform}' for {owner}/{name}. "
            f"Expected one of: {', '.join(sorted(_DEPLOYMENT_METHODS))}"
        )

    method = str(entry.get("deploymentMethod") or "auto").strip().lower()
    method = _METHOD_ALIASES.get(method, method)
    if method not in _DEPLOYMENT_METHODS[platform]:
        raise ConfigurationError(
            f"Unsupported deployment method '{method}' for {platform} repository {owner}/{name}. "
            f"Expected one of: {', '.join(_DEPLOYMENT_METHODS[platform])}"
        )

    return RepoConfig(
        key=RepositoryKey(platform=platform, owner=owner, name=name),
        deployment_method=method,
        branch=str(entry.get("branch") or "main").strip(),
    )


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Could not read configuration file '{path}': {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a JSON object.")
    return payload


def load_config(
    config_path: str = DEFAULT_CONFIG_PATH,
    days: Optional[int] = None,
    database_url: Optional[str] = None,
) -> Config:
    """Build and validate application configuration.

    Settings come from the JSON configuration file, environment variables and
    explicit arguments, later sources taking precedence. A missing file yields
    no repositories and default settings.

    Args:
        config_path: Path of the JSON configuration file.
        days: Look-back window in days; overrides ``settings.defaultDays``.
        database_url: SQLAlchemy URL of the store; overrides
            ``LEADTIME_DATABASE_URL`` and ``settings.databaseUrl``.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If the file is malformed or a value is invalid.
    """
    payload = _read_config_file(Path(config_path))
    settings = payload.get("settings") or {}
    if not isinstance(settings, dict):
        raise ConfigurationError("'settings' must be a JSON object.")

    raw_days = days if days is not None else settings.get("defaultDays", DEFAULT_DAYS)
    try:
        resolved_days = int(raw_days)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid value for 'days': {raw_days!r}") from exc
    if resolved_days <= 0:
        raise ConfigurationError("Invalid value for 'days': expected an integer greater than 0.")

    entries: Sequence[Any] = payload.get("repositories") or []
    if not isinstance(entries, list):
        raise ConfigurationError("'repositories' must be a JSON array.")
    repositories = tuple(parse_repository(entry) for entry in entries)

    resolved_database_url = (
        database_url
        or os.getenv("LEADTIME_DATABASE_URL", "").strip()
        or settings.get("databaseUrl")
        or DEFAULT_DATABASE_URL
    )

    return Config(
        repositories=repositories,
        days=resolved_days,
        database_url=resolved_database_url,
        github_token=os.getenv("GITHUB_TOKEN", "").strip() or None,
        gitlab_token=os.getenv("GITLAB_TOKEN", "").strip() or None,
        gitlab_url=os.getenv("GITLAB_URL", "").strip() or "https://gitlab.com",
    )
