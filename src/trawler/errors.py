"""Exception hierarchy shared by the crawl, ingest and queue layers.

Validation, not-found, state and critical errors are hard failures that
propagate to the caller. Fetch and lease errors are absorbed per page by
the crawler and only counted.
"""

from __future__ import annotations


class TrawlerError(Exception):
    """Base class for all trawler errors."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class UrlValidationError(TrawlerError, ValueError):
    """Raised for unsupported schemes, missing hosts, or unparseable URLs."""


class SsrfError(UrlValidationError):
    """Raised when a URL resolves to a private or reserved address."""


class PolicyError(TrawlerError, ValueError):
    """Raised when a crawl policy or search parameter is out of range."""


# ---------------------------------------------------------------------------
# Source state
# ---------------------------------------------------------------------------


class SourceNotFoundError(TrawlerError, LookupError):
    """Raised when a source id does not exist."""


class SourceStateError(TrawlerError):
    """Raised when a source has the wrong type or status for an operation."""


class SourceBusyError(SourceStateError):
    """Raised when a crawl is requested for a source that is already processing."""


class CriticalStateError(TrawlerError):
    """Existing chunks were deleted but their replacements failed to persist.

    The source is left in the ``critical`` status and must be inspected
    before it can be crawled again.
    """


# ---------------------------------------------------------------------------
# Transient
# ---------------------------------------------------------------------------


class FetchError(TrawlerError, RuntimeError):
    """Raised when a single page cannot be fetched or rendered."""


class LeaseTimeoutError(TrawlerError, TimeoutError):
    """Raised when no browser context becomes free within the acquire timeout."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MissingApiKeyError(TrawlerError, RuntimeError):
    """Raised when the embedding provider's API key is not set."""

    def __init__(self, provider: str, env_var: str) -> None:
        super().__init__(
            f"No API key found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )
        self.provider = provider
        self.env_var = env_var


_NON_RETRYABLE = (
    UrlValidationError,
    PolicyError,
    SourceNotFoundError,
    SourceStateError,
    CriticalStateError,
    MissingApiKeyError,
)


def is_retryable(exc: BaseException) -> bool:
    """Return True if a job that raised *exc* may be retried."""
    return not isinstance(exc, _NON_RETRYABLE)
