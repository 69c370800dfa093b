"""Interval math, statistics and formatting helpers for lead time reporting.

This module provides utilities for:
- Measuring signed hour differences between two instants.
- Computing nearest-rank-above percentiles from duration samples.
- Formatting hour-based durations as compact ``Nh`` / ``N.Nd`` strings.
- Building a human-readable lead time report for one or more repositories.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from .insights import categorize_lead_time
from .models import LeadTimeInsights, Percentiles, PerformanceCategory, RepoSummary

_SECONDS_PER_HOUR = 3600.0


def hours_between(start: datetime, end: datetime) -> float:
    """Return ``end - start`` in hours.

    The result is signed; callers decide how to treat negative differences.
    """
    return (end - start).total_seconds() / _SECONDS_PER_HOUR


def calculate_percentile(values: Sequence[float], p: float) -> Optional[float]:
    """Calculate a percentile using the nearest-rank-above method.

    Values are sorted internally. The rank of the value at 1-indexed position
    ``i`` among ``n`` values is ``i * 100 / n``; the result is the first value
    whose rank is at least ``p``. No interpolation takes place, so the result
    is always one of the input values.

    Args:
        values: Numeric samples in any order.
        p: Percentile in the inclusive range ``[0, 100]``.

    Returns:
        Percentile value as ``float`` or ``None`` when input is empty.

    Raises:
        ValueError: If ``p`` is outside ``[0, 100]``.
    """
    if not 0 <= p <= 100:
        raise ValueError("Percentile 'p' must be in the range [0, 100].")

    if not values:
        return None

    sorted_values = sorted(values)
    count = len(sorted_values)
    for position, value in enumerate(sorted_values, start=1):
        if position * 100.0 / count >= p:
            return float(value)

    return float(sorted_values[-1])


def compute_percentiles(values: Iterable[float]) -> Percentiles:
    """Compute P50, P75, P90 and P95 for lead time samples.

    ``NaN`` samples are dropped; negative samples are kept.
    """
    clean_values: List[float] = [value for value in values if not math.isnan(value)]
    return Percentiles(
        p50=calculate_percentile(clean_values, 50),
        p75=calculate_percentile(clean_values, 75),
        p90=calculate_percentile(clean_values, 90),
        p95=calculate_percentile(clean_values, 95),
    )


def format_hours(hours: Optional[float]) -> str:
    """Format a duration in hours for display.

    Returns ``"n/a"`` for ``None``, whole hours below one day (``"5h"``), and
    days rounded to one decimal otherwise (``"2.5d"``).
    """
    if hours is None:
        return "n/a"

    days = round(hours / 24, 1)
    if abs(days) < 1:
        return f"{int(round(hours))}h"
    return f"{days}d"


def _share(count: int, total: int) -> str:
    if total <= 0:
        return "0%"
    return f"{count * 100 / total:.0f}%"


def generate_report(summaries: Sequence[RepoSummary], days: int) -> str:
    """Generate a human-readable lead time report.

    One block is rendered per repository summary, in the given order, with
    sample counts, average/min/max, percentiles, DORA band shares and the
    performance category. A legend of the categories closes the report.

    Args:
        summaries: Aggregated repository summaries.
        days: Look-back window the summaries were computed over.

    Returns:
        Formatted multi-line text report.
    """
    lines = [
        "Lead Time for Changes (DORA Metric)",
        f"Window: last {days} days",
        "",
    ]

    if not summaries:
        lines.append("No lead time statistics available.")
        return "\n".join(lines)

    for summary in summaries:
        category = categorize_lead_time(summary.avg_lead_time_hours)
        percentiles = summary.percentiles
        lines.extend(
            [
                f"Repository: {summary.repository}",
                f"   Changes: {summary.change_count}",
                f"   Avg Lead Time: {format_hours(summary.avg_lead_time_hours)}",
                f"   Min/Max: {format_hours(summary.min_lead_time_hours)}"
                f" / {format_hours(summary.max_lead_time_hours)}",
                f"   Avg Commit to Merge: {format_hours(summary.avg_commit_to_merge_hours)}",
                f"   Avg Merge to Deploy: {format_hours(summary.avg_merge_to_deploy_hours)}",
                f"   P50: {format_hours(percentiles.p50)}"
                f" | P75: {format_hours(percentiles.p75)}"
                f" | P90: {format_hours(percentiles.p90)}"
                f" | P95: {format_hours(percentiles.p95)}",
                f"   Under 1 Day: {_share(summary.under_24h_count, summary.change_count)}"
                f" | Under 1 Week: {_share(summary.under_1week_count, summary.change_count)}",
                f"   Exact Deployment Matches: {summary.exact_match_count}/{summary.change_count}",
                f"   Performance: {category.value}",
                "",
            ]
        )

    lines.append("DORA Performance Categories:")
    for member in PerformanceCategory:
        lines.append(f"   {member.value}: {member.description}")

    return "\n".join(lines)


def format_insights(insights: LeadTimeInsights) -> str:
    """Render insights and recommendations for one repository as text."""
    title = str(insights.repository) if insights.repository is not None else "All repositories"
    lines = [f"{title}:"]

    if insights.category is None:
        lines.append(f"   {insights.message or 'No lead time data available'}")
    else:
        lines.append(f"   Performance: {insights.category.value}")
        if insights.avg_lead_time_days is not None:
            lines.append(f"   Average Lead Time: {insights.avg_lead_time_days:.1f} days")

    if insights.recommendations:
        lines.append("   Recommendations:")
        lines.extend(f"     - {recommendation}" for recommendation in insights.recommendations)

    return "\n".join(lines)
