"""SQLite-backed event store for changes, deployments and lead time metrics."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .errors import DataValidationError, StoreError
from .models import (
    DEPLOYMENT_TYPES,
    ChangeEvent,
    DeploymentEvent,
    LeadTimeMetric,
    RepositoryKey,
)

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///data/stats.db"

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS deployments (
      platform TEXT NOT NULL,
      owner TEXT NOT NULL,
      repo_name TEXT NOT NULL,
      deployment_id TEXT NOT NULL,
      deployment_type TEXT NOT NULL,
      deployed_at TEXT NOT NULL,
      commit_sha TEXT,
      tag_name TEXT,
      branch TEXT,
      status TEXT,
      environment TEXT,
      updated_at TEXT NOT NULL,
      PRIMARY KEY (platform, owner, repo_name, deployment_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS changes (
      platform TEXT NOT NULL,
      owner TEXT NOT NULL,
      repo_name TEXT NOT NULL,
      change_number INTEGER NOT NULL,
      change_id TEXT NOT NULL,
      title TEXT,
      author TEXT,
      created_at TEXT,
      merged_at TEXT,
      closed_at TEXT,
      first_commit_at TEXT,
      last_commit_at TEXT,
      base_branch TEXT,
      head_branch TEXT,
      head_commit TEXT,
      merge_commit TEXT,
      is_merged INTEGER NOT NULL DEFAULT 0,
      commits_count INTEGER NOT NULL DEFAULT 0,
      updated_at TEXT NOT NULL,
      PRIMARY KEY (platform, owner, repo_name, change_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS lead_time_metrics (
      platform TEXT NOT NULL,
      owner TEXT NOT NULL,
      repo_name TEXT NOT NULL,
      change_id TEXT NOT NULL,
      change_number INTEGER NOT NULL,
      deployment_id TEXT,
      coding_time_hours REAL NOT NULL,
      review_time_hours REAL NOT NULL,
      deployment_time_hours REAL NOT NULL,
      total_lead_time_hours REAL NOT NULL,
      commit_to_merge_hours REAL NOT NULL,
      merge_to_deploy_hours REAL NOT NULL,
      first_commit_at TEXT NOT NULL,
      created_at TEXT,
      merged_at TEXT NOT NULL,
      deployed_at TEXT NOT NULL,
      match_confidence TEXT NOT NULL,
      calculated_at TEXT NOT NULL,
      PRIMARY KEY (platform, owner, repo_name, change_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_deployments_deployed_at ON deployments(deployed_at)",
    "CREATE INDEX IF NOT EXISTS idx_changes_merged_at ON changes(merged_at)",
    "CREATE INDEX IF NOT EXISTS idx_lead_time_metrics_first_commit_at ON lead_time_metrics(first_commit_at)",
]

_REPOSITORY_FILTER = "platform = :platform AND owner = :owner AND repo_name = :repo_name"


def _dt_to_sqlite(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as a fixed-width UTC string; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def _dt_from_sqlite(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _repository_params(repository: RepositoryKey) -> Dict[str, str]:
    return {
        "platform": repository.platform,
        "owner": repository.owner,
        "repo_name": repository.name,
    }


def _repository_from_row(row: Mapping[str, Any]) -> RepositoryKey:
    return RepositoryKey(platform=row["platform"], owner=row["owner"], name=row["repo_name"])


def _is_memory_url(db_url: str) -> bool:
    database = make_url(db_url).database
    return not database or database == ":memory:"


class LeadTimeStore:
    """SQLite store with idempotent upserts keyed by repository and event identity.

    All access goes through a single lock, so one instance may be shared by the
    per-repository workers of a batch run.
    """

    def __init__(self, db_url: str = DEFAULT_DATABASE_URL) -> None:
        if not db_url:
            raise ValueError("SQLite DB URL is required")

        if _is_memory_url(db_url):
            self.engine: Engine = create_engine(
                db_url,
                echo=False,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            database = make_url(db_url).database
            if database:
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(db_url, echo=False)

        self._lock = threading.RLock()

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        with self._lock:
            try:
                with self.engine.begin() as conn:
                    yield conn
            except SQLAlchemyError as exc:
                raise StoreError(f"Store operation failed: {exc}") from exc

    def ensure_tables(self) -> None:
        with self._begin() as conn:
            for stmt in _SCHEMA:
                conn.execute(text(stmt))

    def upsert_deployment(self, deployment: DeploymentEvent) -> None:
        """Insert or refresh a deployment, keyed by repository and deployment id."""
        if deployment.deployment_type not in DEPLOYMENT_TYPES:
            raise DataValidationError(
                f"Unknown deployment type '{deployment.deployment_type}' "
                f"for deployment {deployment.deployment_id}"
            )
        if deployment.deployed_at is None:
            raise DataValidationError(
                f"Deployment {deployment.deployment_id} has no deployment timestamp"
            )

        stmt = text(
            """
            INSERT INTO deployments (
              platform, owner, repo_name, deployment_id, deployment_type,
              deployed_at, commit_sha, tag_name, branch, status, environment,
              updated_at
            ) VALUES (
              :platform, :owner, :repo_name, :deployment_id, :deployment_type,
              :deployed_at, :commit_sha, :tag_name, :branch, :status, :environment,
              :updated_at
            )
            ON CONFLICT(platform, owner, repo_name, deployment_id) DO UPDATE SET
              deployment_type=excluded.deployment_type,
              deployed_at=excluded.deployed_at,
              commit_sha=excluded.commit_sha,
              tag_name=excluded.tag_name,
              branch=excluded.branch,
              status=excluded.status,
              environment=excluded.environment,
              updated_at=excluded.updated_at
            """
        )
        params = _repository_params(deployment.repository)
        params.update(
            {
                "deployment_id": deployment.deployment_id,
                "deployment_type": deployment.deployment_type,
                "deployed_at": _dt_to_sqlite(deployment.deployed_at),
                "commit_sha": deployment.commit_sha,
                "tag_name": deployment.tag_name,
                "branch": deployment.branch,
                "status": deployment.status,
                "environment": deployment.environment,
                "updated_at": _dt_to_sqlite(_utcnow()),
            }
        )
        with self._begin() as conn:
            conn.execute(stmt, params)

    def upsert_change(self, change: ChangeEvent) -> None:
        """Insert or refresh a change, keyed by repository and change number."""
        stmt = text(
            """
            INSERT INTO changes (
              platform, owner, repo_name, change_number, change_id, title, author,
              created_at, merged_at, closed_at, first_commit_at, last_commit_at,
              base_branch, head_branch, head_commit, merge_commit, is_merged,
              commits_count, updated_at
            ) VALUES (
              :platform, :owner, :repo_name, :change_number, :change_id, :title, :author,
              :created_at, :merged_at, :closed_at, :first_commit_at, :last_commit_at,
              :base_branch, :head_branch, :head_commit, :merge_commit, :is_merged,
              :commits_count, :updated_at
            )
            ON CONFLICT(platform, owner, repo_name, change_number) DO UPDATE SET
              change_id=excluded.change_id,
              title=excluded.title,
              author=excluded.author,
              created_at=excluded.created_at,
              merged_at=excluded.merged_at,
              closed_at=excluded.closed_at,
              first_commit_at=excluded.first_commit_at,
              last_commit_at=excluded.last_commit_at,
              base_branch=excluded.base_branch,
              head_branch=excluded.head_branch,
              head_commit=excluded.head_commit,
              merge_commit=excluded.merge_commit,
              is_merged=excluded.is_merged,
              commits_count=excluded.commits_count,
              updated_at=excluded.updated_at
            """
        )
        params = _repository_params(change.repository)
        params.update(
            {
                "change_number": change.change_number,
                "change_id": change.change_id,
                "title": change.title,
                "author": change.author,
                "created_at": _dt_to_sqlite(change.created_at),
                "merged_at": _dt_to_sqlite(change.merged_at),
                "closed_at": _dt_to_sqlite(change.closed_at),
                "first_commit_at": _dt_to_sqlite(change.first_commit_at),
                "last_commit_at": _dt_to_sqlite(change.last_commit_at),
                "base_branch": change.base_branch,
                "head_branch": change.head_branch,
                "head_commit": change.head_commit,
                "merge_commit": change.merge_commit,
                "is_merged": 1 if change.is_merged else 0,
                "commits_count": change.commits_count,
                "updated_at": _dt_to_sqlite(_utcnow()),
            }
        )
        with self._begin() as conn:
            conn.execute(stmt, params)

    def query_deployments(
        self,
        repository: RepositoryKey,
        since: datetime,
        commit_shas: Optional[Sequence[Optional[str]]] = None,
    ) -> List[DeploymentEvent]:
        """Return deployments at or after ``since``, earliest first.

        When ``commit_shas`` is given, only deployments of one of those commits
        are returned; ``None`` entries are ignored, so a sequence holding no
        usable sha yields no deployments.
        """
        sql = (
            "SELECT * FROM deployments "
            f"WHERE {_REPOSITORY_FILTER} AND deployed_at >= :since"
        )
        params: Dict[str, Any] = _repository_params(repository)
        params["since"] = _dt_to_sqlite(since)

        if commit_shas is None:
            stmt = text(sql + " ORDER BY deployed_at ASC, deployment_id ASC")
        else:
            shas = sorted({sha for sha in commit_shas if sha})
            if not shas:
                return []
            params["commit_shas"] = shas
            stmt = text(
                sql + " AND commit_sha IN :commit_shas ORDER BY deployed_at ASC, deployment_id ASC"
            ).bindparams(bindparam("commit_shas", expanding=True))

        with self._begin() as conn:
            rows = conn.execute(stmt, params).mappings().all()

        return [self._deployment_from_row(row) for row in rows]

    def deployment_count(self, repository: RepositoryKey) -> int:
        stmt = text(f"SELECT COUNT(*) FROM deployments WHERE {_REPOSITORY_FILTER}")
        with self._begin() as conn:
            return int(conn.execute(stmt, _repository_params(repository)).scalar_one())

    def upsert_lead_time_metric(self, metric: LeadTimeMetric) -> None:
        """Replace the lead time metric stored for the metric's change."""
        stmt = text(
            """
            INSERT INTO lead_time_metrics (
              platform, owner, repo_name, change_id, change_number, deployment_id,
              coding_time_hours, review_time_hours, deployment_time_hours,
              total_lead_time_hours, commit_to_merge_hours, merge_to_deploy_hours,
              first_commit_at, created_at, merged_at, deployed_at,
              match_confidence, calculated_at
            ) VALUES (
              :platform, :owner, :repo_name, :change_id, :change_number, :deployment_id,
              :coding_time_hours, :review_time_hours, :deployment_time_hours,
              :total_lead_time_hours, :commit_to_merge_hours, :merge_to_deploy_hours,
              :first_commit_at, :created_at, :merged_at, :deployed_at,
              :match_confidence, :calculated_at
            )
            ON CONFLICT(platform, owner, repo_name, change_id) DO UPDATE SET
              change_number=excluded.change_number,
              deployment_id=excluded.deployment_id,
              coding_time_hours=excluded.coding_time_hours,
              review_time_hours=excluded.review_time_hours,
              deployment_time_hours=excluded.deployment_time_hours,
              total_lead_time_hours=excluded.total_lead_time_hours,
              commit_to_merge_hours=excluded.commit_to_merge_hours,
              merge_to_deploy_hours=excluded.merge_to_deploy_hours,
              first_commit_at=excluded.first_commit_at,
              created_at=excluded.created_at,
              merged_at=excluded.merged_at,
              deployed_at=excluded.deployed_at,
              match_confidence=excluded.match_confidence,
              calculated_at=excluded.calculated_at
            """
        )
        params = _repository_params(metric.repository)
        params.update(
            {
                "change_id": metric.change_id,
                "change_number": metric.change_number,
                "deployment_id": metric.deployment_id,
                "coding_time_hours": metric.coding_time_hours,
                "review_time_hours": metric.review_time_hours,
                "deployment_time_hours": metric.deployment_time_hours,
                "total_lead_time_hours": metric.total_lead_time_hours,
                "commit_to_merge_hours": metric.commit_to_merge_hours,
                "merge_to_deploy_hours": metric.merge_to_deploy_hours,
                "first_commit_at": _dt_to_sqlite(metric.first_commit_at),
                "created_at": _dt_to_sqlite(metric.created_at),
                "merged_at": _dt_to_sqlite(metric.merged_at),
                "deployed_at": _dt_to_sqlite(metric.deployed_at),
                "match_confidence": metric.match_confidence,
                "calculated_at": _dt_to_sqlite(_utcnow()),
            }
        )
        with self._begin() as conn:
            conn.execute(stmt, params)

    def query_merged_changes(
        self,
        repository: RepositoryKey,
        days: int,
        now: Optional[datetime] = None,
    ) -> List[ChangeEvent]:
        """Return merged changes whose merge falls inside the window, newest first."""
        since = (now or _utcnow()) - timedelta(days=days)
        stmt = text(
            "SELECT * FROM changes "
            f"WHERE {_REPOSITORY_FILTER} AND is_merged = 1 "
            "AND merged_at IS NOT NULL AND merged_at >= :since "
            "ORDER BY merged_at DESC, change_number DESC"
        )
        params: Dict[str, Any] = _repository_params(repository)
        params["since"] = _dt_to_sqlite(since)

        with self._begin() as conn:
            rows = conn.execute(stmt, params).mappings().all()

        return [self._change_from_row(row) for row in rows]

    def query_metrics(
        self,
        repository: Optional[RepositoryKey],
        days: int,
        now: Optional[datetime] = None,
    ) -> List[LeadTimeMetric]:
        """Return metrics whose first commit falls inside the window.

        ``repository=None`` returns metrics for every repository.
        """
        since = (now or _utcnow()) - timedelta(days=days)
        sql = "SELECT * FROM lead_time_metrics WHERE first_commit_at >= :since"
        params: Dict[str, Any] = {"since": _dt_to_sqlite(since)}
        if repository is not None:
            sql += f" AND {_REPOSITORY_FILTER}"
            params.update(_repository_params(repository))
        sql += " ORDER BY platform, owner, repo_name, total_lead_time_hours"

        with self._begin() as conn:
            rows = conn.execute(text(sql), params).mappings().all()

        return [self._metric_from_row(row) for row in rows]

    @staticmethod
    def _deployment_from_row(row: Mapping[str, Any]) -> DeploymentEvent:
        return DeploymentEvent(
            repository=_repository_from_row(row),
            deployment_id=row["deployment_id"],
            deployed_at=_dt_from_sqlite(row["deployed_at"]),
            commit_sha=row["commit_sha"],
            deployment_type=row["deployment_type"],
            environment=row["environment"],
            tag_name=row["tag_name"],
            branch=row["branch"],
            status=row["status"],
        )

    @staticmethod
    def _change_from_row(row: Mapping[str, Any]) -> ChangeEvent:
        return ChangeEvent(
            repository=_repository_from_row(row),
            change_number=int(row["change_number"]),
            change_id=row["change_id"],
            created_at=_dt_from_sqlite(row["created_at"]),
            merged_at=_dt_from_sqlite(row["merged_at"]),
            first_commit_at=_dt_from_sqlite(row["first_commit_at"]),
            last_commit_at=_dt_from_sqlite(row["last_commit_at"]),
            closed_at=_dt_from_sqlite(row["closed_at"]),
            head_commit=row["head_commit"],
            merge_commit=row["merge_commit"],
            is_merged=bool(row["is_merged"]),
            title=row["title"],
            author=row["author"],
            base_branch=row["base_branch"],
            head_branch=row["head_branch"],
            commits_count=int(row["commits_count"] or 0),
        )

    @staticmethod
    def _metric_from_row(row: Mapping[str, Any]) -> LeadTimeMetric:
        return LeadTimeMetric(
            repository=_repository_from_row(row),
            change_id=row["change_id"],
            change_number=int(row["change_number"]),
            coding_time_hours=float(row["coding_time_hours"]),
            review_time_hours=float(row["review_time_hours"]),
            deployment_time_hours=float(row["deployment_time_hours"]),
            total_lead_time_hours=float(row["total_lead_time_hours"]),
            commit_to_merge_hours=float(row["commit_to_merge_hours"]),
            merge_to_deploy_hours=float(row["merge_to_deploy_hours"]),
            first_commit_at=_dt_from_sqlite(row["first_commit_at"]),
            created_at=_dt_from_sqlite(row["created_at"]),
            merged_at=_dt_from_sqlite(row["merged_at"]),
            deployed_at=_dt_from_sqlite(row["deployed_at"]),
            deployment_id=row["deployment_id"],
            match_confidence=row["match_confidence"],
        )
