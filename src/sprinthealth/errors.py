"""Custom exception types for the Sprint Health Analyzer."""


class SprintHealthError(Exception):
    """Base exception for all recoverable sprint health analyzer errors."""


class ConfigurationError(SprintHealthError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(SprintHealthError):
    """Raised when issue tracker or code review credentials are unavailable."""


class ValidationError(SprintHealthError):
    """Raised when a required analysis input is missing, e.g. no sprint id."""


class ApiError(SprintHealthError):
    """Raised when an upstream API request fails or returns an unexpected response."""


class CollaboratorUnavailable(ApiError):
    """Raised when an upstream system stays unreachable after the retry budget."""


class RateLimited(ApiError):
    """Raised when an upstream system keeps throttling requests after retries."""


class NotFoundError(ApiError):
    """Raised when the requested entity does not exist upstream."""


class StorageFailure(SprintHealthError):
    """Raised when a cache read, write or delete fails."""
