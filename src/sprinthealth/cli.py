"""Command-line argument parsing for the Sprint Health Analyzer."""

from __future__ import annotations

import argparse

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


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


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments for a sprint analysis.

    Returns:
        Parsed CLI arguments containing the Jira site and account, the sprint
        to analyze, optional board and Bitbucket settings, and output options.
    """
    parser = argparse.ArgumentParser(
        prog="sprint-health-analyzer",
        description=(
            "Analyze a Jira sprint (with optional Bitbucket pull request data) and "
            "print a health report with metrics, risk and recommendations."
        ),
    )

    parser.add_argument(
        "--jira-url",
        required=True,
        help="Jira site base URL, e.g. https://acme.atlassian.net.",
    )
    parser.add_argument(
        "--email",
        required=True,
        help="Jira account email used with JIRA_API_TOKEN.",
    )
    parser.add_argument(
        "--sprint-id",
        required=True,
        help="Identifier of the sprint to analyze.",
    )
    parser.add_argument(
        "--board-id",
        default=None,
        help="Board identifier; enables comparison with the previous closed sprint.",
    )
    parser.add_argument(
        "--bitbucket-url",
        default=None,
        help="Bitbucket API base URL, e.g. https://api.bitbucket.org.",
    )
    parser.add_argument(
        "--bitbucket-user",
        default=None,
        help="Bitbucket username used with BITBUCKET_API_TOKEN.",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_int,
        default=30,
        help="Per-request timeout in seconds (default: 30).",
    )
    parser.add_argument(
        "--force-refresh",
        action="store_true",
        help="Ignore cached data and recompute the report.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the report as JSON instead of text.",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default="WARNING",
        help="Logging verbosity (default: WARNING).",
    )

    return parser.parse_args()
