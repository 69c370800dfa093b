"""GitHub REST API source provider."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from ..errors import ApiError, ConfigurationError
from ..models import ChangeEvent, DeploymentEvent, RepoConfig
from .base import RetryPolicy, SourceProvider, parse_timestamp, window_start

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


class GitHubProvider(SourceProvider):
    """Reads releases, tags, workflow runs and merged pull requests from GitHub."""

    platform = "github"
    DEPLOYMENT_METHODS = ("auto", "releases", "tags", "workflow")

    # Resolving a tag's date costs one commit lookup per tag.
    _MAX_TAGS = 20

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = GITHUB_API_URL,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(
            base_url=base_url,
            token=token,
            retry_policy=retry_policy,
            timeout_seconds=timeout_seconds,
            session=session,
        )

    def _auth_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _is_retryable(self, response: requests.Response) -> bool:
        if response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
            return True
        return super()._is_retryable(response)

    def _retry_after_seconds(self, response: requests.Response) -> Optional[float]:
        retry_after = super()._retry_after_seconds(response)
        if retry_after is not None:
            return retry_after

        reset_header = response.headers.get("X-RateLimit-Reset")
        if response.headers.get("X-RateLimit-Remaining") == "0" and reset_header:
            try:
                return max(1.0, float(reset_header) - time.time())
            except ValueError:
                return None
        return None

    def _repo_path(self, repo: RepoConfig) -> str:
        return f"repos/{repo.key.owner}/{repo.key.name}"

    def list_deployments(self, repo: RepoConfig, days: int) -> List[DeploymentEvent]:
        """List deployments using the repository's detection method.

        ``auto`` uses releases and falls back to tags when there are none.
        """
        since = window_start(days)
        method = repo.deployment_method

        if method == "releases":
            return self._list_releases(repo, since)
        if method == "tags":
            return self._list_tags(repo, since)
        if method == "workflow":
            return self._list_workflow_runs(repo, since)
        if method == "auto":
            releases = self._list_releases(repo, since)
            if releases:
                return releases
            return self._list_tags(repo, since)

        raise ConfigurationError(
            f"Unsupported GitHub deployment method '{method}' for {repo.key}. "
            f"Expected one of: {', '.join(self.DEPLOYMENT_METHODS)}"
        )

    def _list_releases(self, repo: RepoConfig, since: datetime) -> List[DeploymentEvent]:
        deployments: List[DeploymentEvent] = []

        for item in self._paginate(f"{self._repo_path(repo)}/releases"):
            created_at = parse_timestamp(item.get("published_at") or item.get("created_at"))
            if created_at is None or created_at < since:
                continue
            if item.get("draft"):
                continue

            deployments.append(
                DeploymentEvent(
                    repository=repo.key,
                    deployment_id=f"release-{item.get('id')}",
                    deployed_at=created_at,
                    commit_sha=item.get("target_commitish"),
                    deployment_type="release",
                    environment="pre-release" if item.get("prerelease") else "production",
                    tag_name=item.get("tag_name"),
                    branch=item.get("target_commitish"),
                    status="published",
                )
            )

        return deployments

    def _list_tags(self, repo: RepoConfig, since: datetime) -> List[DeploymentEvent]:
        """List tags dated by their tagged commit; tags whose commit cannot be read are skipped."""
        deployments: List[DeploymentEvent] = []
        tags = self._get_list(f"{self._repo_path(repo)}/tags", params={"per_page": self._PAGE_SIZE})

        for tag in tags[: self._MAX_TAGS]:
            commit_sha = (tag.get("commit") or {}).get("sha")
            if not commit_sha:
                continue

            try:
                commit = self._get_json(f"{self._repo_path(repo)}/commits/{commit_sha}")
            except ApiError as exc:
                logger.warning(
                    "Skipping tag whose commit could not be fetched",
                    extra={"repository": str(repo.key), "tag": tag.get("name"), "error": str(exc)},
                )
                continue

            committed_at = parse_timestamp(
                ((commit.get("commit") or {}).get("author") or {}).get("date")
            )
            if committed_at is None or committed_at < since:
                continue

            deployments.append(
                DeploymentEvent(
                    repository=repo.key,
                    deployment_id=f"tag-{tag.get('name')}",
                    deployed_at=committed_at,
                    commit_sha=commit_sha,
                    deployment_type="tag",
                    environment="production",
                    tag_name=tag.get("name"),
                    branch=repo.branch,
                    status="success",
                )
            )

        return deployments

    def _list_workflow_runs(self, repo: RepoConfig, since: datetime) -> List[DeploymentEvent]:
        deployments: List[DeploymentEvent] = []
        payload = self._get_json(
            f"{self._repo_path(repo)}/actions/runs",
            params={
                "per_page": self._PAGE_SIZE,
                "status": "completed",
                "event": "push",
                "branch": repo.branch,
            },
        )
        if not isinstance(payload, dict):
            raise ApiError(f"GitHub API returned unexpected workflow runs payload for {repo.key}")

        for run in payload.get("workflow_runs", []):
            created_at = parse_timestamp(run.get("created_at"))
            if created_at is None or created_at < since:
                continue
            if run.get("conclusion") != "success":
                continue

            deployments.append(
                DeploymentEvent(
                    repository=repo.key,
                    deployment_id=f"workflow-{run.get('id')}",
                    deployed_at=created_at,
                    commit_sha=run.get("head_sha"),
                    deployment_type="workflow",
                    environment="production" if run.get("head_branch") == repo.branch else "staging",
                    branch=run.get("head_branch"),
                    status=run.get("conclusion"),
                )
            )

        return deployments

    def list_merged_changes(self, repo: RepoConfig, days: int) -> List[ChangeEvent]:
        """List pull requests merged within the window.

        Closed pull requests are read newest-updated first, so paging stops at
        the first pull request last updated before the window.
        """
        since = window_start(days)
        changes: List[ChangeEvent] = []

        pages = self._paginate(
            f"{self._repo_path(repo)}/pulls",
            params={"state": "closed", "sort": "updated", "direction": "desc"},
        )
        for item in pages:
            updated_at = parse_timestamp(item.get("updated_at"))
            if updated_at is not None and updated_at < since:
                break

            merged_at = parse_timestamp(item.get("merged_at"))
            if merged_at is None or merged_at < since:
                continue

            changes.append(self._build_change(repo, item, merged_at))

        return changes

    def _build_change(self, repo: RepoConfig, item: Dict[str, Any], merged_at: datetime) -> ChangeEvent:
        number = int(item["number"])
        created_at = parse_timestamp(item.get("created_at"))
        first_commit_at = created_at
        last_commit_at = created_at
        commits_count = 0

        try:
            commits = self._get_list(
                f"{self._repo_path(repo)}/pulls/{number}/commits",
                params={"per_page": self._PAGE_SIZE},
            )
        except ApiError as exc:
            logger.warning(
                "Could not fetch commits for pull request; using its creation time",
                extra={"repository": str(repo.key), "change_number": number, "error": str(exc)},
            )
            commits = []

        if commits:
            commits_count = len(commits)
            first_commit_at = self._commit_date(commits[0]) or created_at
            last_commit_at = self._commit_date(commits[-1]) or created_at

        return ChangeEvent(
            repository=repo.key,
            change_number=number,
            change_id=f"github-pr-{item.get('id')}",
            created_at=created_at,
            merged_at=merged_at,
            first_commit_at=first_commit_at,
            last_commit_at=last_commit_at,
            closed_at=parse_timestamp(item.get("closed_at")),
            head_commit=(item.get("head") or {}).get("sha"),
            merge_commit=item.get("merge_commit_sha"),
            is_merged=True,
            title=item.get("title"),
            author=(item.get("user") or {}).get("login"),
            base_branch=(item.get("base") or {}).get("ref"),
            head_branch=(item.get("head") or {}).get("ref"),
            commits_count=commits_count,
        )

    @staticmethod
    def _commit_date(commit: Dict[str, Any]) -> Optional[datetime]:
        return parse_timestamp(((commit.get("commit") or {}).get("author") or {}).get("date"))
