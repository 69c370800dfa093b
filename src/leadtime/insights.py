"""Lead time performance classification and recommendations.

Categories follow the DORA "Lead Time for Changes" bands, with inclusive
upper bounds:

- Elite: at most 1 day
- High: at most 7 days
- Medium: at most 30 days
- Low: more than 30 days
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from .models import LeadTimeInsights, Percentiles, PerformanceCategory, RepoSummary

_ELITE_MAX_HOURS = 24.0
_HIGH_MAX_HOURS = 7 * 24.0
_MEDIUM_MAX_HOURS = 30 * 24.0

NO_DATA_MESSAGE = "No lead time data available"

NO_DATA_RECOMMENDATIONS: Tuple[str, ...] = (
    "Set up deployment tracking",
    "Ensure PRs are properly linked to deployments",
)

_STRONG_PERFORMER_RECOMMENDATIONS: Tuple[str, ...] = (
    "Great lead time performance! Consider sharing practices with other teams",
    "Monitor for any increases in lead time as the team scales",
)

RECOMMENDATIONS: Dict[PerformanceCategory, Tuple[str, ...]] = {
    PerformanceCategory.ELITE: _STRONG_PERFORMER_RECOMMENDATIONS,
    PerformanceCategory.HIGH: _STRONG_PERFORMER_RECOMMENDATIONS,
    PerformanceCategory.MEDIUM: (
        "Focus on reducing review time through better PR practices",
        "Automate more of the deployment process",
        "Consider trunk-based development",
    ),
    PerformanceCategory.LOW: (
        "Consider implementing feature flags to reduce batch sizes",
        "Review deployment pipeline for automation opportunities",
        "Implement more frequent deployments to reduce lead time",
    ),
}


def categorize_lead_time(hours: float) -> PerformanceCategory:
    """Map an average lead time in hours to its DORA performance category."""
    if hours <= _ELITE_MAX_HOURS:
        return PerformanceCategory.ELITE
    if hours <= _HIGH_MAX_HOURS:
        return PerformanceCategory.HIGH
    if hours <= _MEDIUM_MAX_HOURS:
        return PerformanceCategory.MEDIUM
    return PerformanceCategory.LOW


def recommendations_for(category: PerformanceCategory) -> List[str]:
    return list(RECOMMENDATIONS[category])


def generate_insights(summary: Optional[RepoSummary]) -> LeadTimeInsights:
    """Classify a repository summary and attach recommendations.

    Args:
        summary: Aggregated statistics for one repository, or ``None`` when the
            repository has no lead time metrics in the window.

    Returns:
        Insights carrying the category and its fixed recommendation list, or a
        "no data" result with bootstrapping advice and no category.
    """
    if summary is None or summary.change_count == 0:
        return LeadTimeInsights(
            repository=summary.repository if summary is not None else None,
            category=None,
            avg_lead_time_days=None,
            percentiles=Percentiles(),
            recommendations=list(NO_DATA_RECOMMENDATIONS),
            message=NO_DATA_MESSAGE,
        )

    category = categorize_lead_time(summary.avg_lead_time_hours)
    return LeadTimeInsights(
        repository=summary.repository,
        category=category,
        avg_lead_time_days=summary.avg_lead_time_days,
        percentiles=summary.percentiles,
        recommendations=recommendations_for(category),
    )
