"""
Application errors for clean API error handling.

Use ServiceUnavailableError (or a subclass) when a dependency is misconfigured or
unreachable so the API can return 503 with a user-facing message. Provider errors
never reach the caller: they are caught at the action level and logged.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(ServiceUnavailableError):
    """No search provider or no language-model provider is configured."""


class CacheStoreError(ServiceUnavailableError):
    """The cache store cannot be opened, so no request can be served."""


class ProviderError(Exception):
    """A single provider call failed (network, auth, rate limit, bad payload)."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


class AllProvidersFailedError(ProviderError):
    """Every registered provider of one kind failed for the same call."""

    def __init__(self, kind: str, errors: list[str]) -> None:
        self.errors = errors
        super().__init__(kind, "; ".join(errors) or "no provider available")
