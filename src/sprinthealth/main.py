"""Application entry point for the Sprint Health Analyzer."""

from __future__ import annotations

import asyncio
import json
import logging
import sys

from .bitbucket_client import BitbucketCodeReview
from .cli import parse_args
from .config import load_config
from .errors import AuthenticationError, ConfigurationError, ValidationError
from .jira_client import JiraIssueTracker
from .orchestrator import AnalysisOrchestrator
from .report import render_report, report_to_dict

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_UNEXPECTED_ERROR = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_AUTHENTICATION_ERROR = 3


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def run_analysis() -> int:
    """Run one sprint analysis from CLI arguments and print the report.

    Returns:
        Process exit code: 0 on success, 2 for invalid configuration or input,
        3 for missing credentials, 1 for anything unexpected.
    """
    try:
        args = parse_args()
        configure_logging(args.log_level)

        config = load_config(
            jira_base_url=args.jira_url,
            jira_email=args.email,
            bitbucket_base_url=args.bitbucket_url,
            bitbucket_username=args.bitbucket_user,
            board_id=args.board_id,
            timeout_seconds=args.timeout,
        )

        issue_tracker = JiraIssueTracker(config=config)
        code_review = BitbucketCodeReview(config=config) if config.has_code_review else None
        if code_review is None:
            logger.info("Bitbucket not configured; analyzing Jira data only")

        orchestrator = AnalysisOrchestrator(issue_tracker=issue_tracker, code_review=code_review)
        report = asyncio.run(
            orchestrator.analyze(
                args.sprint_id,
                board_id=config.board_id,
                force_refresh=args.force_refresh,
            )
        )

        if args.json:
            print(json.dumps(report_to_dict(report), indent=2))
        else:
            print(render_report(report))
        return EXIT_SUCCESS
    except AuthenticationError as exc:
        print(f"Authentication error: {exc}", file=sys.stderr)
        return EXIT_AUTHENTICATION_ERROR
    except (ConfigurationError, ValidationError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except Exception as exc:
        print(f"Unexpected error: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED_ERROR


def main() -> None:
    sys.exit(run_analysis())


if __name__ == "__main__":
    main()
