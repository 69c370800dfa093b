"""GitLab REST API source provider."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from ..errors import ApiError, ConfigurationError
from ..models import ChangeEvent, DeploymentEvent, RepoConfig
from .base import RetryPolicy, SourceProvider, parse_timestamp, window_start

logger = logging.getLogger(__name__)

GITLAB_URL = "https://gitlab.com"


class GitLabProvider(SourceProvider):
    """Reads deployments, releases, tags, pipelines and merged requests from GitLab."""

    platform = "gitlab"
    DEPLOYMENT_METHODS = ("auto", "deployments", "releases", "tags", "pipeline")

    _MAX_TAGS = 20
    _PIPELINE_BRANCHES = ("main", "master")

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = GITLAB_URL,
        retry_policy: Optional[RetryPolicy] = None,
        timeout_seconds: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        super().__init__(
            base_url=f"{base_url.rstrip('/')}/api/v4",
            token=token,
            retry_policy=retry_policy,
            timeout_seconds=timeout_seconds,
            session=session,
        )
        self._project_ids: Dict[str, int] = {}

    def _auth_headers(self) -> Dict[str, str]:
        if self._token:
            return {"PRIVATE-TOKEN": self._token}
        return {}

    def resolve_project_id(self, repo: RepoConfig) -> int:
        """Resolve ``owner/name`` to GitLab's numeric project id, cached per path."""
        project_path = f"{repo.key.owner}/{repo.key.name}"
        if project_path in self._project_ids:
            return self._project_ids[project_path]

        payload = self._get_json(f"projects/{quote(project_path, safe='')}")
        project_id = payload.get("id") if isinstance(payload, dict) else None
        if project_id is None:
            raise ApiError(f"GitLab project '{project_path}' did not return a project id")

        self._project_ids[project_path] = int(project_id)
        return self._project_ids[project_path]

    def list_deployments(self, repo: RepoConfig, days: int) -> List[DeploymentEvent]:
        """List deployments using the repository's detection method.

        ``auto`` uses the environments deployment API and falls back to
        releases when it reports nothing.
        """
        since = window_start(days)
        method = repo.deployment_method
        if method not in self.DEPLOYMENT_METHODS:
            raise ConfigurationError(
                f"Unsupported GitLab deployment method '{method}' for {repo.key}. "
                f"Expected one of: {', '.join(self.DEPLOYMENT_METHODS)}"
            )

        project_id = self.resolve_project_id(repo)

        if method == "releases":
            return self._list_releases(repo, project_id, since)
        if method == "tags":
            return self._list_tags(repo, project_id, since)
        if method == "pipeline":
            return self._list_pipelines(repo, project_id, since)

        deployments = self._list_environment_deployments(repo, project_id, since)
        if deployments or method == "deployments":
            return deployments
        return self._list_releases(repo, project_id, since)

    def _list_environment_deployments(
        self, repo: RepoConfig, project_id: int, since: datetime
    ) -> List[DeploymentEvent]:
        """List environment deployments; they are produced by pipelines and typed as such."""
        deployments: List[DeploymentEvent] = []
        items = self._paginate(
            f"projects/{project_id}/deployments",
            params={"order_by": "created_at", "sort": "desc"},
        )

        for item in items:
            created_at = parse_timestamp(item.get("created_at"))
            if created_at is None:
                continue
            if created_at < since:
                break

            deployments.append(
                DeploymentEvent(
                    repository=repo.key,
                    deployment_id=f"deployment-{item.get('id')}",
                    deployed_at=created_at,
                    commit_sha=item.get("sha"),
                    deployment_type="pipeline",
                    environment=(item.get("environment") or {}).get("name"),
                    tag_name=item.get("tag") if isinstance(item.get("tag"), str) else None,
                    branch=item.get("ref"),
                    status=item.get("status"),
                )
            )

        return deployments

    def _list_releases(self, repo: RepoConfig, project_id: int, since: datetime) -> List[DeploymentEvent]:
        deployments: List[DeploymentEvent] = []

        for item in self._paginate(f"projects/{project_id}/releases"):
            released_at = parse_timestamp(item.get("released_at") or item.get("created_at"))
            if released_at is None or released_at < since:
                continue

            deployments.append(
                DeploymentEvent(
                    repository=repo.key,
                    deployment_id=f"release-{item.get('tag_name')}",
                    deployed_at=released_at,
                    commit_sha=(item.get("commit") or {}).get("id"),
                    deployment_type="release",
                    environment="production",
                    tag_name=item.get("tag_name"),
                    branch=repo.branch,
                    status="published",
                )
            )

        return deployments

    def _list_tags(self, repo: RepoConfig, project_id: int, since: datetime) -> List[DeploymentEvent]:
        deployments: List[DeploymentEvent] = []
        tags = self._get_list(
            f"projects/{project_id}/repository/tags",
            params={"per_page": self._PAGE_SIZE},
        )

        for tag in tags[: self._MAX_TAGS]:
            commit = tag.get("commit") or {}
            committed_at = parse_timestamp(commit.get("created_at"))
            if committed_at is None or committed_at < since:
                continue

            deployments.append(
                DeploymentEvent(
                    repository=repo.key,
                    deployment_id=f"tag-{tag.get('name')}",
                    deployed_at=committed_at,
                    commit_sha=commit.get("id"),
                    deployment_type="tag",
                    environment="production",
                    tag_name=tag.get("name"),
                    branch=repo.branch,
                    status="success",
                )
            )

        return deployments

    def _list_pipelines(self, repo: RepoConfig, project_id: int, since: datetime) -> List[DeploymentEvent]:
        deployments: List[DeploymentEvent] = []
        items = self._paginate(
            f"projects/{project_id}/pipelines",
            params={"status": "success", "order_by": "updated_at", "sort": "desc"},
        )

        for item in items:
            created_at = parse_timestamp(item.get("created_at"))
            if created_at is None or created_at < since:
                continue
            ref = item.get("ref")
            if ref not in self._PIPELINE_BRANCHES and ref != repo.branch:
                continue

            deployments.append(
                DeploymentEvent(
                    repository=repo.key,
                    deployment_id=f"pipeline-{item.get('id')}",
                    deployed_at=created_at,
                    commit_sha=item.get("sha"),
                    deployment_type="pipeline",
                    environment="production" if ref == repo.branch else "staging",
                    branch=ref,
                    status=item.get("status"),
                )
            )

        return deployments

    def list_merged_changes(self, repo: RepoConfig, days: int) -> List[ChangeEvent]:
        """List merge requests merged within the window, dated by their oldest commit."""
        since = window_start(days)
        project_id = self.resolve_project_id(repo)
        changes: List[ChangeEvent] = []

        items = self._paginate(
            f"projects/{project_id}/merge_requests",
            params={
                "state": "merged",
                "order_by": "updated_at",
                "sort": "desc",
                "updated_after": since.isoformat().replace("+00:00", "Z"),
            },
        )
        for item in items:
            merged_at = parse_timestamp(item.get("merged_at"))
            if merged_at is None or merged_at < since:
                continue
            changes.append(self._build_change(repo, project_id, item, merged_at))

        return changes

    def _build_change(
        self,
        repo: RepoConfig,
        project_id: int,
        item: Dict[str, Any],
        merged_at: datetime,
    ) -> ChangeEvent:
        iid = int(item["iid"])
        created_at = parse_timestamp(item.get("created_at"))
        first_commit_at = created_at
        last_commit_at = created_at
        commits_count = 0

        try:
            commits = self._get_list(
                f"projects/{project_id}/merge_requests/{iid}/commits",
                params={"per_page": self._PAGE_SIZE},
            )
        except ApiError as exc:
            logger.warning(
                "Could not fetch commits for merge request; using its creation time",
                extra={"repository": str(repo.key), "change_number": iid, "error": str(exc)},
            )
            commits = []

        if commits:
            # GitLab lists merge request commits newest first.
            commits_count = len(commits)
            first_commit_at = parse_timestamp(commits[-1].get("created_at")) or created_at
            last_commit_at = parse_timestamp(commits[0].get("created_at")) or created_at

        return ChangeEvent(
            repository=repo.key,
            change_number=iid,
            change_id=f"gitlab-mr-{item.get('id')}",
            created_at=created_at,
            merged_at=merged_at,
            first_commit_at=first_commit_at,
            last_commit_at=last_commit_at,
            closed_at=parse_timestamp(item.get("closed_at")),
            head_commit=item.get("sha"),
            merge_commit=item.get("merge_commit_sha") or item.get("squash_commit_sha"),
            is_merged=item.get("state") == "merged",
            title=item.get("title"),
            author=(item.get("author") or {}).get("username"),
            base_branch=item.get("target_branch"),
            head_branch=item.get("source_branch"),
            commits_count=commits_count,
        )
