"""
Exception hierarchy for the email onebox service.

Collaborator adapters raise these so callers can tell an expected external
failure apart from a programming defect. The pipeline catches broadly at each
stage boundary; the API layer maps them to structured error payloads.
"""


class OneboxError(Exception):
    """Base class for all service errors."""


class ConfigurationError(OneboxError):
    """Raised when required configuration is missing or invalid."""


class AccountRegistrationError(OneboxError):
    """Raised when an account cannot be registered with the ingestion source."""

    def __init__(self, label: str, message: str):
        self.label = label
        super().__init__(f"Failed to register account {label}: {message}")


class ProviderExcludedError(AccountRegistrationError):
    """Raised when an account belongs to a provider on the exclusion list."""

    def __init__(self, label: str, provider: str):
        self.provider = provider
        super().__init__(label, f"provider '{provider}' is excluded")


class CategorizationError(OneboxError):
    """Raised when the categorizer cannot produce a label."""


class IndexingError(OneboxError):
    """Raised when the email index rejects a write or query."""


class ContextStoreError(OneboxError):
    """Raised when a context record cannot be stored or retrieved."""


class NotificationError(OneboxError):
    """Raised when a notification channel fails after all retries."""


class StatsUnavailableError(OneboxError):
    """
    Raised when any statistics sub-query fails.

    Statistics are informational, so a partial snapshot is never returned;
    the failing source is named in ``source``.
    """

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"Statistics unavailable from {source}: {message}")


class LLMRequestError(OneboxError):
    """Raised when the language model API fails after all retries."""
