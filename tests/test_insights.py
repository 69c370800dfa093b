"""Tests for performance classification and recommendation generation."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from leadtime.insights import (
    NO_DATA_MESSAGE,
    NO_DATA_RECOMMENDATIONS,
    RECOMMENDATIONS,
    categorize_lead_time,
    generate_insights,
)
from leadtime.models import Percentiles, PerformanceCategory, RepositoryKey, RepoSummary

REPO = RepositoryKey(platform="gitlab", owner="group", name="service")


@pytest.mark.parametrize(
    "hours, expected",
    [
        (0.0, PerformanceCategory.ELITE),
        (24.0, PerformanceCategory.ELITE),
        (24.0001, PerformanceCategory.HIGH),
        (168.0, PerformanceCategory.HIGH),
        (168.0001, PerformanceCategory.MEDIUM),
        (720.0, PerformanceCategory.MEDIUM),
        (720.0001, PerformanceCategory.LOW),
        (5000.0, PerformanceCategory.LOW),
    ],
)
def test_categorize_lead_time_uses_inclusive_upper_bounds(hours, expected):
    """Verify category boundaries at 1, 7 and 30 days are inclusive."""
    assert categorize_lead_time(hours) is expected


def test_categorize_lead_time_negative_average_is_elite():
    """Verify inconsistent negative averages still map to a category."""
    assert categorize_lead_time(-3.0) is PerformanceCategory.ELITE


def test_every_category_has_recommendations():
    """Verify each category maps to a non-empty recommendation list."""
    for category in PerformanceCategory:
        assert RECOMMENDATIONS[category]


def _summary(avg_hours: float, count: int = 3) -> RepoSummary:
    return RepoSummary(
        repository=REPO,
        change_count=count,
        avg_lead_time_hours=avg_hours,
        min_lead_time_hours=avg_hours,
        max_lead_time_hours=avg_hours,
        avg_commit_to_merge_hours=avg_hours,
        avg_merge_to_deploy_hours=0.0,
        under_24h_count=0,
        under_1week_count=0,
        percentiles=Percentiles(p50=avg_hours),
    )


def test_generate_insights_low_performer_gets_batch_size_advice():
    """Verify low performers receive the fixed low-category recommendations."""
    insights = generate_insights(_summary(avg_hours=24 * 40))

    assert insights.has_data
    assert insights.category is PerformanceCategory.LOW
    assert insights.avg_lead_time_days == pytest.approx(40.0)
    assert insights.recommendations == list(RECOMMENDATIONS[PerformanceCategory.LOW])
    assert insights.recommendations[0] == "Consider implementing feature flags to reduce batch sizes"


def test_generate_insights_is_deterministic_per_category():
    """Verify two repositories in the same band receive identical recommendations."""
    first = generate_insights(_summary(avg_hours=200.0))
    second = generate_insights(_summary(avg_hours=600.0))

    assert first.category is second.category is PerformanceCategory.MEDIUM
    assert first.recommendations == second.recommendations


def test_generate_insights_without_summary_returns_no_data_result():
    """Verify missing metrics yield bootstrapping advice instead of a category."""
    insights = generate_insights(None)

    assert not insights.has_data
    assert insights.category is None
    assert insights.avg_lead_time_days is None
    assert insights.message == NO_DATA_MESSAGE
    assert insights.recommendations == list(NO_DATA_RECOMMENDATIONS)


def test_generate_insights_with_empty_summary_keeps_repository():
    """Verify a summary with zero changes is treated as no data for that repository."""
    insights = generate_insights(_summary(avg_hours=0.0, count=0))

    assert insights.repository == REPO
    assert insights.category is None
    assert insights.recommendations == list(NO_DATA_RECOMMENDATIONS)
