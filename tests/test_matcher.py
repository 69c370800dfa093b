"""Tests for matching merged changes to deployments."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from leadtime.matcher import DeploymentMatcher
from leadtime.models import ChangeEvent, DeploymentEvent, RepositoryKey
from leadtime.store import LeadTimeStore

MERGED_AT = datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc)
REPO = RepositoryKey(platform="github", owner="acme", name="web")


def _matcher_with(*deployments: DeploymentEvent) -> DeploymentMatcher:
    store = LeadTimeStore("sqlite://")
    store.ensure_tables()
    for deployment in deployments:
        store.upsert_deployment(deployment)
    return DeploymentMatcher(store)


def _deployment(deployment_id: str, hours_after_merge: float, commit_sha: str | None) -> DeploymentEvent:
    return DeploymentEvent(
        repository=REPO,
        deployment_id=deployment_id,
        deployed_at=MERGED_AT + timedelta(hours=hours_after_merge),
        commit_sha=commit_sha,
        deployment_type="tag",
    )


def _change(merged_at: datetime | None = MERGED_AT) -> ChangeEvent:
    return ChangeEvent(
        repository=REPO,
        change_number=12,
        change_id="github-pr-12",
        created_at=MERGED_AT - timedelta(hours=5),
        merged_at=merged_at,
        first_commit_at=MERGED_AT - timedelta(hours=8),
        head_commit="head-sha",
        merge_commit="merge-sha",
        is_merged=merged_at is not None,
    )


def test_match_prefers_exact_commit_over_earlier_unrelated_deployment():
    """Verify an exact commit match wins even when another deployment happened sooner."""
    matcher = _matcher_with(
        _deployment("unrelated", 1, "other-sha"),
        _deployment("exact", 6, "merge-sha"),
    )

    result = matcher.resolve(REPO, _change())

    assert result.deployment.deployment_id == "exact"
    assert result.confidence == "exact"


def test_match_accepts_head_commit():
    """Verify deployments of the change's head commit count as exact matches."""
    matcher = _matcher_with(_deployment("head", 2, "head-sha"))

    assert matcher.match(REPO, _change()).deployment_id == "head"


def test_match_returns_earliest_exact_deployment():
    """Verify the first of several exact deployments is chosen."""
    matcher = _matcher_with(
        _deployment("second", 10, "merge-sha"),
        _deployment("first", 3, "merge-sha"),
    )

    assert matcher.match(REPO, _change()).deployment_id == "first"


def test_match_ignores_exact_commit_deployed_before_merge():
    """Verify a deployment of the commit before the merge falls back to the next deployment."""
    matcher = _matcher_with(
        _deployment("too-early", -1, "merge-sha"),
        _deployment("next", 4, "unrelated"),
    )

    result = matcher.resolve(REPO, _change())

    assert result.deployment.deployment_id == "next"
    assert result.confidence == "approximate"


def test_match_falls_back_to_next_deployment_after_merge():
    """Verify the earliest later deployment is used when no commit matches."""
    matcher = _matcher_with(
        _deployment("later", 48, None),
        _deployment("sooner", 12, None),
    )

    result = matcher.resolve(REPO, _change())

    assert result.deployment.deployment_id == "sooner"
    assert result.confidence == "approximate"


def test_match_returns_none_without_deployment_after_merge():
    """Verify no deployment is returned when nothing shipped after the merge."""
    matcher = _matcher_with(_deployment("before", -2, "merge-sha"))

    result = matcher.resolve(REPO, _change())

    assert result.deployment is None
    assert result.confidence == "none"
    assert matcher.match(REPO, _change()) is None


def test_match_returns_none_for_unmerged_change():
    """Verify changes without a merge timestamp never match."""
    matcher = _matcher_with(_deployment("any", 1, "merge-sha"))

    assert matcher.match(REPO, _change(merged_at=None)) is None
