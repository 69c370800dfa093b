"""Entry point wiring configuration, providers, store and reporting."""

from __future__ import annotations

import logging
import sys
from typing import List, Optional, Sequence

from dotenv import load_dotenv

from .aggregate import summarize
from .cli import parse_args
from .config import Config, load_config
from .errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    LeadTimeError,
    StoreError,
)
from .insights import generate_insights
from .models import RepoConfig, RepoSummary
from .pipeline import collect_repository_events, run_lead_time_batch
from .providers import get_provider
from .stats import format_insights, generate_report
from .store import LeadTimeStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_AUTHENTICATION = 3
EXIT_API = 4
EXIT_STORE = 5


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def collect_events(config: Config, store: LeadTimeStore, repositories: Sequence[RepoConfig]) -> None:
    """Fetch and store events for each repository.

    API failures for one repository are logged and do not stop the others;
    authentication failures abort the collection.
    """
    for repo in repositories:
        provider_kwargs = {"token": config.token_for(repo.key.platform)}
        if repo.key.platform == "gitlab":
            provider_kwargs["base_url"] = config.gitlab_url
        provider = get_provider(repo.key.platform, **provider_kwargs)

        print(f"Collecting events for {repo.key.owner}/{repo.key.name} ({repo.key.platform})...")
        try:
            deployments, changes = collect_repository_events(provider, store, repo, config.days)
        except ApiError as exc:
            logger.error("Event collection failed", extra={"repository": str(repo.key), "error": str(exc)})
            print(f"   Error collecting events: {exc}")
            continue

        print(f"   Stored {deployments} deployments and {changes} merged changes")


def report(
    store: LeadTimeStore,
    repositories: Sequence[RepoConfig],
    days: int,
    show_insights: bool,
    filtered: bool,
) -> str:
    """Build the lead time report, restricted to ``repositories`` when ``filtered``."""
    summaries: List[RepoSummary] = summarize(store, None, days)
    if filtered:
        keys = {repo.key for repo in repositories}
        summaries = [summary for summary in summaries if summary.repository in keys]

    sections = [generate_report(summaries, days)]

    if show_insights:
        sections.append("")
        sections.append("Insights & Recommendations:")
        if not summaries:
            sections.append(format_insights(generate_insights(None)))
        for summary in summaries:
            sections.append(format_insights(generate_insights(summary)))

    return "\n".join(sections)


def orchestrate(argv: Optional[Sequence[str]] = None) -> int:
    """Run the requested action and map failures to process exit codes."""
    try:
        args = parse_args(argv)
        _configure_logging(args.verbose)
        load_dotenv()

        config = load_config(config_path=args.config, days=args.days, database_url=args.database_url)
        repositories = config.select_repositories(args.repo)

        if args.action != "report" and not repositories:
            print("No repositories configured or matching the filter.")
            print(f"Add repositories to '{args.config}' to track them.")
            return EXIT_OK

        store = LeadTimeStore(config.database_url)
        try:
            store.ensure_tables()

            if args.action in ("collect", "leadtime"):
                collect_events(config, store, repositories)

            if args.action == "leadtime":
                print(f"Calculating lead time for the last {config.days} days...")
                results = run_lead_time_batch(
                    store,
                    [repo.key for repo in repositories],
                    config.days,
                    timeout_seconds=args.timeout,
                )
                for result in results:
                    if not result.succeeded:
                        print(f"   {result.repository}: lead time pass failed: {result.error}")

            if args.action in ("leadtime", "report"):
                print(
                    report(
                        store,
                        repositories,
                        config.days,
                        show_insights=args.insights,
                        filtered=bool(args.repo),
                    )
                )
        finally:
            store.close()

        return EXIT_OK
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except AuthenticationError as exc:
        print(f"Authentication error: {exc}", file=sys.stderr)
        return EXIT_AUTHENTICATION
    except ApiError as exc:
        print(f"API error: {exc}", file=sys.stderr)
        return EXIT_API
    except StoreError as exc:
        print(f"Store error: {exc}", file=sys.stderr)
        return EXIT_STORE
    except LeadTimeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED


def main() -> None:
    raise SystemExit(orchestrate())


if __name__ == "__main__":
    main()
