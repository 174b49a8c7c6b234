"""Typed exception hierarchy for provider errors.

Provider clients raise these; the refresh service catches them per
connection and records them as :class:`ProviderSyncError` values via
:meth:`ProviderError.to_sync_error`.
"""

from integrations.provider_protocol import ErrorCategory, ProviderSyncError


class ProviderError(Exception):
    """Base exception for all provider-related errors."""

    category = ErrorCategory.UNKNOWN

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)

    @property
    def retriable(self) -> bool:
        return False

    def to_sync_error(
        self,
        connection_id: str | None = None,
        institution_name: str | None = None,
    ) -> ProviderSyncError:
        """Convert to the structured error stored on a refresh result."""
        return ProviderSyncError(
            message=str(self),
            category=self.category,
            institution_name=institution_name,
            connection_id=connection_id,
            retriable=self.retriable,
        )


class ProviderAuthError(ProviderError):
    """Credentials are missing or the item needs re-login (HTTP 401/403)."""

    category = ErrorCategory.AUTH


class ProviderConnectionError(ProviderError):
    """Network failures such as timeouts or refused connections."""

    category = ErrorCategory.CONNECTION

    def __init__(self, message: str, provider_name: str = "", retriable: bool = True):
        self._retriable = retriable
        super().__init__(message, provider_name)

    @property
    def retriable(self) -> bool:
        return self._retriable


class ProviderAPIError(ProviderError):
    """HTTP 4xx/5xx responses from the provider API."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
        error_code: str = "",
    ):
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message, provider_name)

    @property
    def category(self) -> ErrorCategory:  # type: ignore[override]
        if self.status_code == 429:
            return ErrorCategory.RATE_LIMIT
        if self.status_code is not None and self.status_code >= 500:
            return ErrorCategory.CONNECTION
        return ErrorCategory.UNKNOWN

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class ProviderDataError(ProviderError):
    """Malformed or unparseable response from the provider."""

    category = ErrorCategory.DATA
