"""Shared HTTP plumbing for hosting platform source providers."""

from __future__ import annotations

import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional

import requests

from ..errors import ApiError, AuthenticationError
from ..models import ChangeEvent, DeploymentEvent, RepoConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry-with-backoff settings for platform API requests.

    Attributes:
        max_attempts: Total attempts per request, including the first one.
        base_delay_seconds: Delay before the second attempt; doubles per attempt.
        max_delay_seconds: Upper bound on any single delay.
        jitter: Fraction of the delay added at random, in ``[0, 1]``.
    """

    max_attempts: int = 5
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must not be negative")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be in the range [0, 1]")

    def backoff_seconds(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before retrying after failed attempt number ``attempt`` (1-based).

        A server-provided ``retry_after`` replaces the exponential delay; both
        are capped at ``max_delay_seconds``.
        """
        if retry_after is not None:
            return min(self.max_delay_seconds, max(0.0, retry_after))

        delay = min(self.max_delay_seconds, self.base_delay_seconds * 2 ** (attempt - 1))
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return min(self.max_delay_seconds, delay)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO8601 platform timestamps into timezone-aware UTC datetimes.

    Raises:
        ApiError: If the payload carries a value that is not an ISO8601 timestamp.
    """
    if not value:
        return None
    if not isinstance(value, str):
        raise ApiError(f"Platform API returned unexpected timestamp value: {value!r}")

    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ApiError(f"Platform API returned invalid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def window_start(days: int, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc)) - timedelta(days=days)


class SourceProvider(ABC):
    """Fetches deployment and merged-change events from one hosting platform.

    Subclasses implement the platform wire format; this base class owns the
    authenticated session, retries and ``Link`` header pagination.
    """

    platform: str = ""
    _PAGE_SIZE = 100
    _MAX_PAGES = 10
    _RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._retry_policy = retry_policy or RetryPolicy()
        self._timeout_seconds = timeout_seconds

        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        self._session.headers.update(self._auth_headers())

    @abstractmethod
    def _auth_headers(self) -> Dict[str, str]:
        """Headers carrying the platform token, empty when no token is configured."""

    @abstractmethod
    def list_deployments(self, repo: RepoConfig, days: int) -> List[DeploymentEvent]:
        """List deployment events of ``repo`` within the last ``days`` days."""

    @abstractmethod
    def list_merged_changes(self, repo: RepoConfig, days: int) -> List[ChangeEvent]:
        """List changes of ``repo`` merged within the last ``days`` days."""

    def _build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def _retry_after_seconds(self, response: requests.Response) -> Optional[float]:
        """Server-requested wait from ``Retry-After``, if present and numeric."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                return float(retry_after_header)
            except ValueError:
                return None
        return None

    def _is_retryable(self, response: requests.Response) -> bool:
        return response.status_code in self._RETRYABLE_STATUS_CODES

    def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Execute a GET request, retrying connection errors and retryable responses.

        Raises:
            AuthenticationError: If the platform answers 401, or 403 without
                a retryable rate-limit condition.
            ApiError: If the request repeatedly fails, stays rate limited after
                the last attempt, or returns HTTP >= 400.
        """
        url = self._build_url(path)
        policy = self._retry_policy
        last_error: Optional[Exception] = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                response = self._session.get(url, params=params, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                last_error = exc
                if attempt == policy.max_attempts:
                    raise ApiError(f"{self.platform} request failed after retries: GET {url}") from exc
                time.sleep(policy.backoff_seconds(attempt))
                continue

            status_code = response.status_code

            if self._is_retryable(response):
                if attempt < policy.max_attempts:
                    delay = policy.backoff_seconds(attempt, self._retry_after_seconds(response))
                    logger.debug(
                        "Retrying platform request",
                        extra={"url": url, "status_code": status_code, "attempt": attempt, "delay": delay},
                    )
                    time.sleep(delay)
                    continue
                raise ApiError(
                    f"{self.platform} API request failed after {attempt} attempts "
                    f"(rate limited or unavailable): GET {url} returned {status_code} - {response.text}"
                )

            if status_code in (401, 403):
                raise AuthenticationError(
                    f"{self.platform} API rejected the request: GET {url} returned "
                    f"{status_code}. Check the configured token and its permissions."
                )

            if status_code >= 400:
                raise ApiError(
                    f"{self.platform} API request failed: "
                    f"GET {url} returned {status_code} - {response.text}"
                )

            return response

        raise ApiError(f"{self.platform} request failed after retries: GET {url}") from last_error

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a JSON document.

        Raises:
            ApiError: If the response body is not valid JSON.
        """
        response = self._request(path, params=params)
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f"{self.platform} API returned invalid JSON: GET {response.url}") from exc

    def _get_list(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        payload = self._get_json(path, params=params)
        if not isinstance(payload, list):
            raise ApiError(f"{self.platform} API returned unexpected payload shape: GET {path}")
        return payload

    def _paginate(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        max_pages: Optional[int] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Yield list items across pages by following ``Link: rel="next"``.

        Callers may stop iterating early; no further pages are requested then.
        """
        query: Optional[Dict[str, Any]] = dict(params or {})
        query.setdefault("per_page", self._PAGE_SIZE)
        next_path: Optional[str] = path
        page_limit = max_pages or self._MAX_PAGES
        pages = 0

        while next_path and pages < page_limit:
            response = self._request(next_path, params=query)
            pages += 1

            try:
                payload = response.json()
            except ValueError as exc:
                raise ApiError(f"{self.platform} API returned invalid JSON: GET {next_path}") from exc
            if not isinstance(payload, list):
                raise ApiError(f"{self.platform} API returned unexpected payload shape: GET {next_path}")

            yield from payload

            next_link = response.links.get("next") if response.links else None
            next_path = next_link.get("url") if next_link else None
            # The next link already carries the query string.
            query = None
