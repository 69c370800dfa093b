"""Command-line argument parsing for the lead time tool."""

from __future__ import annotations

import argparse
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG_PATH

ACTIONS = ("collect", "leadtime", "report")


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Args:
        value: Raw command-line argument value.

    Returns:
        The validated positive integer.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be a number") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for lead time collection and reporting.

    Returns:
        Parsed CLI arguments containing the action, configuration path, look-back
        window, repository filter and reporting options.
    """
    parser = argparse.ArgumentParser(
        prog="repo-lead-time",
        description=(
            "Collect pull request and deployment events from GitHub and GitLab and "
            "report DORA Lead Time for Changes per repository."
        ),
    )

    parser.add_argument(
        "--action",
        choices=ACTIONS,
        default="leadtime",
        help=(
            "collect: fetch events into the store; leadtime: collect, compute and report; "
            "report: report from stored metrics (default: leadtime)."
        ),
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path of the JSON repository configuration (default: {DEFAULT_CONFIG_PATH}).",
    )
    parser.add_argument(
        "--days",
        type=_positive_int,
        default=None,
        help="Number of days of history to analyze (default: settings.defaultDays or 30).",
    )
    parser.add_argument(
        "--repo",
        default=None,
        help="Only process repositories whose owner/name contains this text.",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL of the event store (default: sqlite:///data/stats.db).",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=None,
        help="Per-repository time budget in seconds for the lead time pass.",
    )
    parser.add_argument(
        "--insights",
        action="store_true",
        help="Show performance insights and recommendations per repository.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    return parser.parse_args(argv)
