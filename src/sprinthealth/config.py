"""Configuration parsing and validation for the Sprint Health Analyzer."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import AuthenticationError, ConfigurationError

DEFAULT_COMPLETED_KEYWORDS: Tuple[str, ...] = ("done", "closed", "resolved", "completed")
DEFAULT_ACTIVE_KEYWORDS: Tuple[str, ...] = (
    "in progress",
    "in development",
    "in review",
    "code review",
    "testing",
    "qa",
    "ready for review",
)
DEFAULT_NOT_STARTED_KEYWORDS: Tuple[str, ...] = ("to do", "backlog", "open", "new")
DEFAULT_BLOCKED_KEYWORDS: Tuple[str, ...] = ("blocked",)


@dataclass(frozen=True)
class StatusKeywords:
    """Lowercase keyword sets matched by substring against free-text status names."""

    completed: Tuple[str, ...] = DEFAULT_COMPLETED_KEYWORDS
    active: Tuple[str, ...] = DEFAULT_ACTIVE_KEYWORDS
    not_started: Tuple[str, ...] = DEFAULT_NOT_STARTED_KEYWORDS
    blocked: Tuple[str, ...] = DEFAULT_BLOCKED_KEYWORDS

    def __post_init__(self) -> None:
        for name in ("completed", "active", "not_started", "blocked"):
            keywords = getattr(self, name)
            if any(not keyword or keyword != keyword.lower() for keyword in keywords):
                raise ConfigurationError(
                    f"Invalid status keywords for '{name}': expected non-empty lowercase strings."
                )


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used to reach the issue tracker and code review system."""

    jira_base_url: str
    jira_email: str
    jira_token: str
    bitbucket_base_url: Optional[str] = None
    bitbucket_username: Optional[str] = None
    bitbucket_token: Optional[str] = None
    board_id: Optional[str] = None
    timeout_seconds: int = 30

    @property
    def has_code_review(self) -> bool:
        """Whether enough Bitbucket settings exist to collect review requests."""
        return bool(self.bitbucket_base_url and self.bitbucket_username and self.bitbucket_token)


def load_config(
    jira_base_url: str,
    jira_email: str,
    bitbucket_base_url: Optional[str] = None,
    bitbucket_username: Optional[str] = None,
    board_id: Optional[str] = None,
    timeout_seconds: int = 30,
) -> Config:
    """Build and validate application configuration.

    API tokens are read from the environment so they never appear on the
    command line.

    Args:
        jira_base_url: Base URL of the Jira site, e.g. ``https://acme.atlassian.net``.
        jira_email: Account email used for Jira basic authentication.
        bitbucket_base_url: Optional Bitbucket API base URL.
        bitbucket_username: Optional Bitbucket username for basic authentication.
        board_id: Optional board id used for historical comparisons.
        timeout_seconds: Positive per-request timeout.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If a URL is malformed or ``timeout_seconds`` is not positive.
        AuthenticationError: If ``JIRA_API_TOKEN`` is not configured.
    """
    if timeout_seconds <= 0:
        raise ConfigurationError(
            "Invalid value for 'timeout_seconds': expected an integer greater than 0."
        )

    for label, url in (("jira_base_url", jira_base_url), ("bitbucket_base_url", bitbucket_base_url)):
        if url is not None and not url.startswith(("http://", "https://")):
            raise ConfigurationError(f"Invalid value for '{label}': expected an http(s) URL.")

    jira_token: str = os.getenv("JIRA_API_TOKEN", "").strip()
    if not jira_token:
        raise AuthenticationError(
            "Missing required Jira API token. "
            "Set the 'JIRA_API_TOKEN' environment variable before running the analyzer."
        )

    bitbucket_token = os.getenv("BITBUCKET_API_TOKEN", "").strip() or None

    return Config(
        jira_base_url=jira_base_url.rstrip("/"),
        jira_email=jira_email,
        jira_token=jira_token,
        bitbucket_base_url=bitbucket_base_url.rstrip("/") if bitbucket_base_url else None,
        bitbucket_username=bitbucket_username,
        bitbucket_token=bitbucket_token,
        board_id=board_id,
        timeout_seconds=timeout_seconds,
    )
