"""Source providers fetching change and deployment events from hosting platforms."""

from __future__ import annotations

from typing import Any, Dict, Type

from .base import RetryPolicy, SourceProvider
from .github import GitHubProvider
from .gitlab import GitLabProvider

__all__ = [
    "GitHubProvider",
    "GitLabProvider",
    "RetryPolicy",
    "SourceProvider",
    "get_provider",
    "supported_platforms",
]

_PROVIDERS: Dict[str, Type[SourceProvider]] = {
    "github": GitHubProvider,
    "gitlab": GitLabProvider,
}


def supported_platforms() -> list[str]:
    return sorted(_PROVIDERS)


def get_provider(platform: str, **kwargs: Any) -> SourceProvider:
    """Create the source provider for ``platform``.

    Args:
        platform: Platform name, ``github`` or ``gitlab`` (case-insensitive).
        **kwargs: Provider settings such as ``token``, ``base_url`` and
            ``retry_policy``.

    Raises:
        ValueError: If the platform is not supported.
    """
    provider_class = _PROVIDERS.get(platform.lower())
    if provider_class is None:
        raise ValueError(
            f"Unsupported platform: {platform}. Supported platforms: {', '.join(supported_platforms())}"
        )
    return provider_class(**kwargs)
