"""Tests for event collection and batch lead time passes."""

import itertools
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock, patch

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from leadtime.errors import StoreError
from leadtime.lead_time import calculate_lead_times
from leadtime.models import ChangeEvent, DeploymentEvent, RepoConfig, RepositoryKey
from leadtime.pipeline import collect_repository_events, process_repository, run_lead_time_batch
from leadtime.providers import SourceProvider
from leadtime.store import LeadTimeStore

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
API = RepositoryKey(platform="github", owner="acme", name="api")
WEB = RepositoryKey(platform="gitlab", owner="acme", name="web")


def _store() -> LeadTimeStore:
    store = LeadTimeStore("sqlite://")
    store.ensure_tables()
    return store


def _change(repository: RepositoryKey, number: int, merged_hours_ago: float) -> ChangeEvent:
    merged_at = NOW - timedelta(hours=merged_hours_ago)
    return ChangeEvent(
        repository=repository,
        change_number=number,
        change_id=f"{repository.platform}-{number}",
        created_at=merged_at - timedelta(hours=4),
        merged_at=merged_at,
        first_commit_at=merged_at - timedelta(hours=10),
        head_commit=f"head-{number}",
        merge_commit=f"merge-{number}",
        is_merged=True,
    )


def _deployment(repository: RepositoryKey, deployment_id: str, deployed_at: datetime, deployment_type: str = "release"):
    return DeploymentEvent(
        repository=repository,
        deployment_id=deployment_id,
        deployed_at=deployed_at,
        commit_sha="merge-1",
        deployment_type=deployment_type,
    )


def test_collect_repository_events_stores_events_and_skips_invalid_deployments():
    """Verify provider events are upserted and invalid deployments are skipped."""
    store = _store()
    provider = Mock(spec=SourceProvider)
    provider.list_deployments.return_value = [
        _deployment(API, "release-1", NOW - timedelta(hours=1)),
        _deployment(API, "manual-1", NOW - timedelta(hours=1), deployment_type="manual"),
    ]
    provider.list_merged_changes.return_value = [_change(API, 1, 5), _change(API, 2, 6)]
    repo = RepoConfig(key=API)

    deployments, changes = collect_repository_events(provider, store, repo, days=30)

    assert (deployments, changes) == (1, 2)
    provider.list_deployments.assert_called_once_with(repo, 30)
    provider.list_merged_changes.assert_called_once_with(repo, 30)
    assert store.deployment_count(API) == 1
    assert len(store.query_merged_changes(API, days=30, now=NOW)) == 2


def test_process_repository_reports_metrics_written():
    """Verify a successful pass reports its metric count."""
    store = _store()
    store.upsert_change(_change(API, 1, 5))
    store.upsert_deployment(_deployment(API, "release-1", NOW - timedelta(hours=1)))

    result = process_repository(store, API, days=30, now=NOW)

    assert result.succeeded
    assert result.metrics_written == 1
    assert store.query_metrics(API, days=30, now=NOW)[0].match_confidence == "exact"


def test_process_repository_captures_timeout():
    """Verify an exhausted time budget is reported instead of raised."""
    store = _store()
    store.upsert_change(_change(API, 1, 5))

    clock = itertools.chain([100.0], itertools.repeat(200.0))
    with patch("leadtime.pipeline.time.monotonic", side_effect=clock):
        result = process_repository(store, API, days=30, timeout_seconds=1, now=NOW)

    assert not result.succeeded
    assert result.metrics_written == 0


def test_run_lead_time_batch_isolates_failing_repository():
    """Verify one repository's failure leaves the other repository's results intact."""
    store = _store()
    store.upsert_change(_change(API, 1, 5))
    store.upsert_change(_change(WEB, 1, 5))

    def _calculate(store_arg, repository, days, now=None, deadline=None):
        if repository == WEB:
            raise StoreError("database is locked")
        return calculate_lead_times(store_arg, repository, days, now=now, deadline=deadline)

    with patch("leadtime.pipeline.calculate_lead_times", side_effect=_calculate):
        results = run_lead_time_batch(store, [API, WEB], days=30, now=NOW)

    assert [result.repository for result in results] == [API, WEB]
    assert results[0].succeeded
    assert results[0].metrics_written == 1
    assert not results[1].succeeded
    assert "database is locked" in results[1].error
    assert [m.change_id for m in store.query_metrics(None, days=30, now=NOW)] == ["github-1"]


def test_run_lead_time_batch_without_repositories_returns_empty_list():
    """Verify an empty batch does nothing."""
    assert run_lead_time_batch(_store(), [], days=30) == []


def test_run_lead_time_batch_isolates_unexpected_exception():
    """Verify an unexpected error in one repository is reported and the others still complete."""
    store = _store()
    store.upsert_change(_change(API, 1, 5))
    store.upsert_change(_change(WEB, 1, 5))

    def _calculate(store_arg, repository, days, now=None, deadline=None):
        if repository == API:
            raise RuntimeError("corrupted row")
        return calculate_lead_times(store_arg, repository, days, now=now, deadline=deadline)

    with patch("leadtime.pipeline.calculate_lead_times", side_effect=_calculate):
        results = run_lead_time_batch(store, [API, WEB], days=30, now=NOW)

    assert not results[0].succeeded
    assert "corrupted row" in results[0].error
    assert results[1].succeeded
    assert results[1].metrics_written == 1
