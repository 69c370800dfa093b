"""Per-repository aggregation of stored lead time metrics."""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .models import MATCH_EXACT, LeadTimeMetric, RepositoryKey, RepoSummary
from .stats import compute_percentiles
from .store import LeadTimeStore

ONE_DAY_HOURS = 24.0
ONE_WEEK_HOURS = 168.0


def _mean(values: List[float]) -> float:
    return sum(values) / len(values)


def summarize_repository(repository: RepositoryKey, metrics: List[LeadTimeMetric]) -> RepoSummary:
    """Build summary statistics for one repository's non-empty metric list."""
    totals = [metric.total_lead_time_hours for metric in metrics]

    return RepoSummary(
        repository=repository,
        change_count=len(metrics),
        avg_lead_time_hours=_mean(totals),
        min_lead_time_hours=min(totals),
        max_lead_time_hours=max(totals),
        avg_commit_to_merge_hours=_mean([metric.commit_to_merge_hours for metric in metrics]),
        avg_merge_to_deploy_hours=_mean([metric.merge_to_deploy_hours for metric in metrics]),
        under_24h_count=sum(1 for total in totals if total <= ONE_DAY_HOURS),
        under_1week_count=sum(1 for total in totals if total <= ONE_WEEK_HOURS),
        exact_match_count=sum(1 for metric in metrics if metric.match_confidence == MATCH_EXACT),
        percentiles=compute_percentiles(totals),
    )


def summarize_metrics(metrics: Iterable[LeadTimeMetric]) -> List[RepoSummary]:
    """Group metrics by repository and summarize each group.

    Results are ordered by average lead time, best performers first.
    """
    grouped: Dict[RepositoryKey, List[LeadTimeMetric]] = OrderedDict()
    for metric in metrics:
        grouped.setdefault(metric.repository, []).append(metric)

    summaries = [
        summarize_repository(repository, repo_metrics)
        for repository, repo_metrics in grouped.items()
    ]
    summaries.sort(key=lambda summary: summary.avg_lead_time_hours)
    return summaries


def summarize(
    store: LeadTimeStore,
    repository: Optional[RepositoryKey] = None,
    days: int = 30,
    now: Optional[datetime] = None,
) -> List[RepoSummary]:
    """Summarize stored metrics whose first commit falls inside the window.

    Args:
        store: Event store holding lead time metrics.
        repository: Restrict to one repository; ``None`` covers all of them.
        days: Look-back window over first-commit timestamps.
        now: Reference time for the window; defaults to the current UTC time.

    Returns:
        One summary per repository with at least one metric in the window,
        or an empty list.
    """
    return summarize_metrics(store.query_metrics(repository, days, now=now))
