"""Tests for command-line argument parsing."""

import sys
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sprinthealth.cli import parse_args


def test_parse_args_with_valid_arguments(monkeypatch):
    """Verify CLI parsing succeeds when all arguments are provided."""
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "sprint-health-analyzer",
            "--jira-url",
            "https://acme.atlassian.net",
            "--email",
            "dev@acme.test",
            "--sprint-id",
            "42",
            "--board-id",
            "12",
            "--bitbucket-url",
            "https://api.bitbucket.org",
            "--bitbucket-user",
            "dev",
            "--timeout",
            "10",
            "--force-refresh",
            "--json",
            "--log-level",
            "debug",
        ],
    )

    args = parse_args()

    assert args.jira_url == "https://acme.atlassian.net"
    assert args.email == "dev@acme.test"
    assert args.sprint_id == "42"
    assert args.board_id == "12"
    assert args.bitbucket_url == "https://api.bitbucket.org"
    assert args.bitbucket_user == "dev"
    assert args.timeout == 10
    assert args.force_refresh is True
    assert args.json is True
    assert args.log_level == "DEBUG"


def test_parse_args_defaults(monkeypatch):
    """Verify optional arguments fall back to their defaults."""
    monkeypatch.setattr(
        sys,
        "argv",
        ["sprint-health-analyzer", "--jira-url", "https://acme.atlassian.net", "--email", "a@b.c", "--sprint-id", "7"],
    )

    args = parse_args()

    assert args.board_id is None
    assert args.bitbucket_url is None
    assert args.timeout == 30
    assert args.force_refresh is False
    assert args.json is False
    assert args.log_level == "WARNING"


def test_parse_args_missing_required_argument_exits(monkeypatch):
    """Verify CLI parsing exits when a required argument is missing."""
    monkeypatch.setattr(sys, "argv", ["sprint-health-analyzer", "--jira-url", "https://acme.atlassian.net"])

    with pytest.raises(SystemExit) as exc_info:
        parse_args()

    assert exc_info.value.code == 2


@pytest.mark.parametrize("timeout_value", ["0", "-5", "abc"])
def test_parse_args_invalid_timeout_exits(monkeypatch, timeout_value):
    """Verify CLI parsing rejects non-positive and non-integer timeouts."""
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "sprint-health-analyzer",
            "--jira-url",
            "https://acme.atlassian.net",
            "--email",
            "a@b.c",
            "--sprint-id",
            "7",
            "--timeout",
            timeout_value,
        ],
    )

    with pytest.raises(SystemExit) as exc_info:
        parse_args()

    assert exc_info.value.code == 2
