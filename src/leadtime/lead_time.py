"""Lead time computation for merged changes.

This module decomposes a merged change's lifecycle into timed phases:
- Coding time (first commit to change opened)
- Review time (opened to merged)
- Deployment time (merged to deployed)

and runs the per-repository pass that persists one metric per change.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .errors import DataValidationError, RepositoryTimeoutError
from .matcher import DeploymentMatcher
from .models import ChangeEvent, LeadTimeMetric, RepositoryKey
from .stats import hours_between
from .store import LeadTimeStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LeadTimeRun:
    """Outcome of one repository pass over its merged changes."""

    repository: RepositoryKey
    metrics: List[LeadTimeMetric] = field(default_factory=list)
    skipped: int = 0
    failed: int = 0


def compute_lead_time(
    matcher: DeploymentMatcher,
    repository: RepositoryKey,
    change: ChangeEvent,
) -> Optional[LeadTimeMetric]:
    """Compute the lead time metric for a single merged change.

    Business logic:
    - Changes without ``first_commit_at`` or ``merged_at`` yield ``None``.
    - The deployment is resolved by the matcher; without one, the merge itself
      is treated as the deployment, so lead time degrades to commit-to-merge.
    - Coding and review time are clamped at zero, since rebases can move the
      first commit after the change was opened. The other durations are kept
      as computed so inconsistent upstream data stays visible.

    This is a pure computation; persisting the result is up to the caller.
    """
    if change.first_commit_at is None or change.merged_at is None:
        logger.debug(
            "Skipping lead time computation due to missing timestamps",
            extra={
                "repository": str(repository),
                "change_number": change.change_number,
                "has_first_commit_at": change.first_commit_at is not None,
                "has_merged_at": change.merged_at is not None,
            },
        )
        return None

    first_commit_at = change.first_commit_at
    merged_at = change.merged_at

    match = matcher.resolve(repository, change)
    if match.deployment is not None:
        deployed_at = match.deployment.deployed_at
        merge_to_deploy_hours = hours_between(merged_at, deployed_at)
        total_lead_time_hours = hours_between(first_commit_at, deployed_at)
    else:
        deployed_at = merged_at
        merge_to_deploy_hours = 0.0
        total_lead_time_hours = hours_between(first_commit_at, merged_at)

    commit_to_merge_hours = hours_between(first_commit_at, merged_at)

    if change.created_at is not None:
        coding_time_hours = max(0.0, hours_between(first_commit_at, change.created_at))
        review_time_hours = max(0.0, hours_between(change.created_at, merged_at))
    else:
        coding_time_hours = 0.0
        review_time_hours = max(0.0, commit_to_merge_hours)

    return LeadTimeMetric(
        repository=repository,
        change_id=change.change_id,
        change_number=change.change_number,
        coding_time_hours=coding_time_hours,
        review_time_hours=review_time_hours,
        deployment_time_hours=merge_to_deploy_hours,
        total_lead_time_hours=total_lead_time_hours,
        commit_to_merge_hours=commit_to_merge_hours,
        merge_to_deploy_hours=merge_to_deploy_hours,
        first_commit_at=first_commit_at,
        created_at=change.created_at,
        merged_at=merged_at,
        deployed_at=deployed_at,
        deployment_id=match.deployment.deployment_id if match.deployment is not None else None,
        match_confidence=match.confidence,
    )


def calculate_lead_times(
    store: LeadTimeStore,
    repository: RepositoryKey,
    days: int,
    now: Optional[datetime] = None,
    deadline: Optional[float] = None,
) -> LeadTimeRun:
    """Compute and persist lead time metrics for a repository's merged changes.

    Changes are processed one at a time. A change that cannot produce a metric
    is counted as skipped; a change whose computation raises a data error is
    logged, counted as failed and does not stop the pass. Store failures
    propagate and abort the pass, leaving already written metrics in place.

    Args:
        store: Event store holding changes and deployments.
        repository: Repository to process.
        days: Look-back window over merge timestamps.
        now: Reference time for the window; defaults to the current UTC time.
        deadline: Optional ``time.monotonic()`` value after which the pass
            stops with :class:`RepositoryTimeoutError`.
    """
    matcher = DeploymentMatcher(store)
    changes = store.query_merged_changes(repository, days, now=now)
    run = LeadTimeRun(repository=repository)

    if not changes:
        logger.info(
            "No merged changes found for lead time calculation",
            extra={"repository": str(repository), "days": days},
        )
        return run

    for change in changes:
        if deadline is not None and time.monotonic() > deadline:
            raise RepositoryTimeoutError(
                f"Lead time pass for {repository} exceeded its deadline after "
                f"{len(run.metrics)} of {len(changes)} changes"
            )

        try:
            metric = compute_lead_time(matcher, repository, change)
        except (DataValidationError, TypeError, ValueError) as exc:
            run.failed += 1
            logger.warning(
                "Could not calculate lead time for change",
                extra={
                    "repository": str(repository),
                    "change_number": change.change_number,
                    "error": str(exc),
                },
            )
            continue

        if metric is None:
            run.skipped += 1
            continue

        store.upsert_lead_time_metric(metric)
        run.metrics.append(metric)

    logger.info(
        "Calculated lead time metrics",
        extra={
            "repository": str(repository),
            "changes_total": len(changes),
            "metrics_written": len(run.metrics),
            "changes_skipped": run.skipped,
            "changes_failed": run.failed,
        },
    )

    return run
