"""
Ingestion error taxonomy

Stage-level errors (configuration, validation, auth, rate limit, provider
failures) abort one ingestion run and are reported as a single classified
error. Item-level errors (ItemProcessingError) are isolated by the batch
scheduler and only ever show up as a `skipped` count.
"""
from typing import Optional


class IngestionError(Exception):
    """Base class for every error raised by the ingestion pipeline."""

    kind = "error"

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class ConfigurationError(IngestionError):
    """Required credential is absent; the provider is skipped, never attempted."""

    kind = "configuration"


class InvalidIdentifierError(IngestionError):
    """Identifier or input could not be normalized; rejected before any network call."""

    kind = "validation"


class ProviderAuthError(IngestionError):
    """Provider rejected our credentials (401/403)."""

    kind = "auth"


class RateLimitError(IngestionError):
    """Provider throttled us or the account is out of credits (429/402)."""

    kind = "rate_limit"


class ProviderError(IngestionError):
    """Transport failure or unexpected HTTP status from a provider."""

    kind = "provider"

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, provider)
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """Provider did not answer within the configured timeout."""

    kind = "timeout"


class FallbackExhaustedError(IngestionError):
    """
    Both providers of a fallback pair failed.

    Carries the primary's classification because the primary is the
    preferred source; the secondary's error is kept for diagnosis.
    """

    fallback_attempted = True

    def __init__(self, primary_error: IngestionError, secondary_error: Optional[Exception] = None):
        message = f"{primary_error} (fallback attempted"
        if secondary_error is not None:
            message += f", secondary failed: {secondary_error}"
        message += ")"
        super().__init__(message, primary_error.provider)
        self.primary_error = primary_error
        self.secondary_error = secondary_error
        self.kind = primary_error.kind

    def __str__(self) -> str:
        return self.message


class ItemProcessingError(IngestionError):
    """One item failed a per-item stage (dedup, enrich or persist)."""

    kind = "item"

    def __init__(self, stage: str, external_id: Optional[str], cause: Exception):
        super().__init__(f"{stage} failed for item {external_id or '<no id>'}: {cause}")
        self.stage = stage
        self.external_id = external_id
        self.cause = cause
