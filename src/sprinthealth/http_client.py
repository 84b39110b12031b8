"""Retrying JSON-over-HTTP client shared by the issue tracker and code review collaborators."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests
from requests.auth import HTTPBasicAuth

from .errors import ApiError, CollaboratorUnavailable, NotFoundError, RateLimited

logger = logging.getLogger(__name__)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ISO8601 timestamps (``Z`` or offset suffix) into timezone-aware UTC datetimes."""
    if not value:
        return None

    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    # Jira renders offsets without a colon, e.g. 2024-01-02T10:00:00.000+0000
    if len(normalized) > 5 and normalized[-5] in "+-" and normalized[-3] != ":":
        normalized = f"{normalized[:-2]}:{normalized[-2:]}"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class JsonHttpClient:
    """Small authenticated GET client with bounded retries and exponential backoff."""

    _MAX_RETRIES = 3
    _MAX_BACKOFF_SECONDS = 30

    def __init__(
        self,
        base_url: str,
        username: str,
        token: str,
        service_name: str,
        timeout_seconds: int = 30,
    ) -> None:
        """Initialize an authenticated client.

        Args:
            base_url: Root URL that request paths are appended to.
            username: Basic-auth user (account email or username).
            token: API token used as the basic-auth password.
            service_name: Human-readable upstream name used in error messages.
            timeout_seconds: Per-request timeout in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._service_name = service_name
        self._timeout_seconds = timeout_seconds

        self._auth = HTTPBasicAuth(username, token)
        self._local = threading.local()

    @property
    def _session(self) -> requests.Session:
        """Session owned by the calling thread; requests sessions are not thread-safe."""
        session = getattr(self._local, "session", None)
        if session is None:
            session = requests.Session()
            session.auth = self._auth
            session.headers.update({"Accept": "application/json"})
            self._local.session = session
        return session

    def _build_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a GET request with retry logic for 429/5xx responses.

        Raises:
            NotFoundError: If the upstream answers 404.
            RateLimited: If the upstream still answers 429 after the last retry.
            CollaboratorUnavailable: If the upstream stays unreachable or keeps
                failing with 5xx after the last retry.
            ApiError: For any other HTTP >= 400 or a non-JSON/non-object body.
        """
        url = self._build_url(path)
        query = dict(params or {})

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._session.get(url, params=query, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                if attempt == self._MAX_RETRIES:
                    raise CollaboratorUnavailable(
                        f"{self._service_name} request failed after retries: GET {url}"
                    ) from exc
                logger.debug(
                    "Retrying request after transport error",
                    extra={"url": url, "attempt": attempt},
                )
                time.sleep(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                logger.debug(
                    "Retrying request after retryable status",
                    extra={"url": url, "attempt": attempt, "status_code": status_code},
                )
                time.sleep(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code == 404:
                raise NotFoundError(f"{self._service_name} resource not found: GET {url}")

            if status_code == 429:
                raise RateLimited(f"{self._service_name} kept rate limiting requests: GET {url}")

            if status_code >= 500:
                raise CollaboratorUnavailable(
                    f"{self._service_name} unavailable: GET {url} returned {status_code}"
                )

            if status_code >= 400:
                raise ApiError(
                    f"{self._service_name} API request failed: "
                    f"GET {url} returned {status_code} - {response.text}"
                )

            try:
                payload = response.json()
            except ValueError as exc:
                raise ApiError(f"{self._service_name} API returned invalid JSON: GET {url}") from exc

            if not isinstance(payload, dict):
                raise ApiError(f"{self._service_name} API returned unexpected payload shape: GET {url}")

            return payload

        raise CollaboratorUnavailable(f"{self._service_name} request failed after retries: GET {url}")
