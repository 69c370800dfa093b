"""Batch orchestration: event collection and per-repository lead time passes.

Repositories are independent of each other, so passes run one per worker.
Within a repository, changes are processed sequentially against the store.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from .errors import DataValidationError, LeadTimeError
from .lead_time import calculate_lead_times
from .models import RepoConfig, RepositoryKey
from .providers import SourceProvider
from .store import LeadTimeStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RepositoryRunResult:
    """Outcome of one repository pass within a batch."""

    repository: RepositoryKey
    metrics_written: int = 0
    skipped: int = 0
    failed: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def collect_repository_events(
    provider: SourceProvider,
    store: LeadTimeStore,
    repo: RepoConfig,
    days: int,
) -> Tuple[int, int]:
    """Fetch deployments and merged changes for ``repo`` and upsert them.

    Deployments are stored before changes so a later lead time pass sees the
    deployment history the changes are matched against. Events rejected by the
    store's validation are logged and skipped.

    Returns:
        ``(deployments_stored, changes_stored)``.
    """
    deployments = provider.list_deployments(repo, days)
    stored_deployments = 0
    for deployment in deployments:
        try:
            store.upsert_deployment(deployment)
        except DataValidationError as exc:
            logger.warning(
                "Skipping invalid deployment event",
                extra={"repository": str(repo.key), "deployment_id": deployment.deployment_id, "error": str(exc)},
            )
            continue
        stored_deployments += 1

    changes = provider.list_merged_changes(repo, days)
    for change in changes:
        store.upsert_change(change)

    logger.info(
        "Collected repository events",
        extra={
            "repository": str(repo.key),
            "deployments_found": len(deployments),
            "deployments_stored": stored_deployments,
            "changes_stored": len(changes),
        },
    )
    return stored_deployments, len(changes)


def process_repository(
    store: LeadTimeStore,
    repository: RepositoryKey,
    days: int,
    timeout_seconds: Optional[float] = None,
    now: Optional[datetime] = None,
) -> RepositoryRunResult:
    """Run the lead time pass for one repository, capturing its failure if any."""
    deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None

    try:
        run = calculate_lead_times(store, repository, days, now=now, deadline=deadline)
    except LeadTimeError as exc:
        logger.exception("Lead time pass failed", extra={"repository": str(repository)})
        return RepositoryRunResult(repository=repository, error=str(exc))
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected failure in lead time pass", extra={"repository": str(repository)})
        return RepositoryRunResult(repository=repository, error=f"unexpected error: {exc}")

    return RepositoryRunResult(
        repository=repository,
        metrics_written=len(run.metrics),
        skipped=run.skipped,
        failed=run.failed,
    )


def run_lead_time_batch(
    store: LeadTimeStore,
    repositories: Sequence[RepositoryKey],
    days: int,
    timeout_seconds: Optional[float] = None,
    max_workers: int = 4,
    now: Optional[datetime] = None,
) -> List[RepositoryRunResult]:
    """Run lead time passes for many repositories, one worker per repository.

    A failing or timed-out repository is reported in its result and does not
    prevent the other repositories from completing.

    Args:
        store: Event store shared by all passes.
        repositories: Repositories to process.
        days: Look-back window over merge timestamps.
        timeout_seconds: Optional per-repository time budget.
        max_workers: Upper bound on concurrently processed repositories.
        now: Reference time for the window; defaults to the current UTC time.

    Returns:
        One result per repository, in input order.
    """
    if not repositories:
        return []

    workers = max(1, min(max_workers, len(repositories)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [
            executor.submit(process_repository, store, repository, days, timeout_seconds, now)
            for repository in repositories
        ]
        results = [future.result() for future in futures]

    failed = [result for result in results if not result.succeeded]
    logger.info(
        "Lead time batch finished",
        extra={
            "repositories_total": len(results),
            "repositories_failed": len(failed),
            "metrics_written": sum(result.metrics_written for result in results),
        },
    )
    return results
