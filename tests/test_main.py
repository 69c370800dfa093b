"""Tests for application orchestration in the main module."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from leadtime.config import Config
from leadtime.errors import ApiError, AuthenticationError, ConfigurationError, StoreError
from leadtime.main import collect_events, orchestrate
from leadtime.models import ChangeEvent, DeploymentEvent, RepoConfig, RepositoryKey
from leadtime.providers import GitHubProvider, RetryPolicy
from leadtime.store import LeadTimeStore

API = RepositoryKey(platform="github", owner="acme", name="api")
OPS = RepositoryKey(platform="gitlab", owner="acme", name="ops")


def _config(*keys: RepositoryKey) -> Config:
    return Config(
        repositories=tuple(RepoConfig(key=key) for key in keys),
        days=30,
        database_url="sqlite://",
        github_token="gh-secret",
        gitlab_token="gl-secret",
        gitlab_url="https://gitlab.example.com",
    )


def _provider(repository: RepositoryKey) -> Mock:
    merged_at = datetime.now(timezone.utc) - timedelta(days=2)
    provider = Mock()
    provider.list_deployments.return_value = [
        DeploymentEvent(
            repository=repository,
            deployment_id="release-1",
            deployed_at=merged_at + timedelta(hours=3),
            commit_sha="merge-1",
            deployment_type="release",
        )
    ]
    provider.list_merged_changes.return_value = [
        ChangeEvent(
            repository=repository,
            change_number=1,
            change_id="github-pr-1",
            created_at=merged_at - timedelta(hours=5),
            merged_at=merged_at,
            first_commit_at=merged_at - timedelta(hours=9),
            head_commit="head-1",
            merge_commit="merge-1",
            is_merged=True,
        )
    ]
    return provider


@pytest.fixture(autouse=True)
def _no_dotenv():
    with patch("leadtime.main.load_dotenv"):
        yield


def test_orchestrate_leadtime_collects_computes_and_reports(capsys):
    """Verify the default action collects events, computes metrics and prints the report."""
    with patch("leadtime.main.load_config", return_value=_config(API)) as load_config_mock, patch(
        "leadtime.main.get_provider", return_value=_provider(API)
    ) as get_provider_mock:
        exit_code = orchestrate(["--insights"])

    assert exit_code == 0
    load_config_mock.assert_called_once_with(config_path="config.json", days=None, database_url=None)
    get_provider_mock.assert_called_once_with("github", token="gh-secret")
    output = capsys.readouterr().out
    assert "Stored 1 deployments and 1 merged changes" in output
    assert "Lead Time for Changes (DORA Metric)" in output
    assert "Repository: github:acme/api" in output
    assert "Exact Deployment Matches: 1/1" in output
    assert "Performance: Elite" in output
    assert "Insights & Recommendations:" in output


def test_orchestrate_passes_gitlab_url_to_gitlab_provider():
    """Verify GitLab providers are created against the configured instance."""
    with patch("leadtime.main.load_config", return_value=_config(OPS)), patch(
        "leadtime.main.get_provider", return_value=_provider(OPS)
    ) as get_provider_mock:
        exit_code = orchestrate(["--action", "collect"])

    assert exit_code == 0
    get_provider_mock.assert_called_once_with(
        "gitlab", token="gl-secret", base_url="https://gitlab.example.com"
    )


def test_orchestrate_continues_after_repository_api_error(capsys):
    """Verify an API failure for one repository does not stop the run."""
    failing = Mock()
    failing.list_deployments.side_effect = ApiError("GET repos/acme/api/releases returned 404")

    with patch("leadtime.main.load_config", return_value=_config(API, OPS)), patch(
        "leadtime.main.get_provider", side_effect=[failing, _provider(OPS)]
    ):
        exit_code = orchestrate([])

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "Error collecting events" in output
    assert "Repository: gitlab:acme/ops" in output
    assert "Repository: github:acme/api" not in output


def test_orchestrate_without_repositories_prints_guidance(capsys):
    """Verify an empty configuration exits cleanly with guidance."""
    with patch("leadtime.main.load_config", return_value=_config()), patch(
        "leadtime.main.LeadTimeStore"
    ) as store_mock:
        exit_code = orchestrate([])

    assert exit_code == 0
    store_mock.assert_not_called()
    assert "No repositories configured" in capsys.readouterr().out


def test_orchestrate_report_without_metrics(capsys):
    """Verify the report action works on an empty store."""
    with patch("leadtime.main.load_config", return_value=_config()), patch(
        "leadtime.main.get_provider"
    ) as get_provider_mock:
        exit_code = orchestrate(["--action", "report"])

    assert exit_code == 0
    get_provider_mock.assert_not_called()
    assert "No lead time statistics available." in capsys.readouterr().out


@pytest.mark.parametrize(
    "error, expected_exit_code",
    [
        (ConfigurationError("bad config"), 2),
        (AuthenticationError("bad token"), 3),
        (ApiError("server down"), 4),
        (StoreError("disk full"), 5),
        (RuntimeError("boom"), 1),
    ],
)
def test_orchestrate_maps_errors_to_exit_codes(error, expected_exit_code):
    """Verify failures are mapped onto distinct process exit codes."""
    with patch("leadtime.main.load_config", side_effect=error):
        exit_code = orchestrate([])

    assert exit_code == expected_exit_code


def test_orchestrate_authentication_failure_during_collection_returns_auth_code():
    """Verify a rejected token aborts the run with the authentication exit code."""
    provider = Mock()
    provider.list_deployments.side_effect = AuthenticationError("401")

    with patch("leadtime.main.load_config", return_value=_config(API)), patch(
        "leadtime.main.get_provider", return_value=provider
    ):
        exit_code = orchestrate([])

    assert exit_code == 3


def _github_provider_returning(response: Mock) -> GitHubProvider:
    provider = GitHubProvider(token="gh-secret", retry_policy=RetryPolicy(max_attempts=2, jitter=0))
    provider._session.get = Mock(return_value=response)
    return provider


def _http_response(status_code: int = 200, payload=None, headers: dict | None = None) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.text = ""
    response.headers = headers or {}
    response.links = {}
    response.url = "https://api.github.com"
    response.json.return_value = payload if payload is not None else []
    return response


def test_collect_events_continues_after_malformed_payload(capsys):
    """Verify a repository whose payload carries a bad timestamp does not stop the next repository."""
    bad = RepositoryKey(platform="github", owner="acme", name="bad")
    config = _config(bad, API)
    store = LeadTimeStore("sqlite://")
    store.ensure_tables()
    broken = _github_provider_returning(
        _http_response(payload=[{"id": 1, "published_at": "not-a-date", "target_commitish": "abc"}])
    )
    healthy = _provider(API)

    with patch("leadtime.main.get_provider", side_effect=[broken, healthy]):
        collect_events(config, store, config.repositories)

    output = capsys.readouterr().out
    assert "Error collecting events" in output
    healthy.list_deployments.assert_called_once()
    assert store.deployment_count(API) == 1
    assert store.deployment_count(bad) == 0


def test_orchestrate_rate_limited_repository_does_not_abort_run(capsys):
    """Verify a repository that stays rate limited is skipped and the run still succeeds."""
    limited = _github_provider_returning(
        _http_response(403, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "0"})
    )

    with patch("leadtime.main.load_config", return_value=_config(API, OPS)), patch(
        "leadtime.main.get_provider", side_effect=[limited, _provider(OPS)]
    ), patch("leadtime.providers.base.time.sleep"):
        exit_code = orchestrate([])

    assert exit_code == 0
    output = capsys.readouterr().out
    assert "Error collecting events" in output
    assert "Repository: gitlab:acme/ops" in output
