"""Custom exception types for the lead time analytics tool."""


class LeadTimeError(Exception):
    """Base exception for all recoverable lead time errors."""


class ConfigurationError(LeadTimeError):
    """Raised when runtime configuration values are missing or invalid."""


class AuthenticationError(LeadTimeError):
    """Raised when a hosting platform rejects the configured credentials."""


class ApiError(LeadTimeError):
    """Raised when a platform API request fails or returns an unexpected response."""


class StoreError(LeadTimeError):
    """Raised when reading from or writing to the event store fails."""


class DataValidationError(LeadTimeError):
    """Raised when event payloads or computed metrics do not meet expected constraints."""


class RepositoryTimeoutError(LeadTimeError):
    """Raised when a repository pass runs past its caller-supplied deadline."""
