from typing import Optional


class RelayError(Exception):
    """Base exception class for the provider relay."""
    pass

class ConfigError(RelayError):
    """Raised when there is an error in a configuration file."""
    pass

class ProviderError(RelayError):
    """Raised when an upstream AI provider call fails."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider

class AuthenticationError(ProviderError):
    """Raised on HTTP 401/403. Never retried."""

    def __init__(self, provider: Optional[str] = None, message: Optional[str] = None):
        super().__init__(
            message or f"Authentication failed for {provider}. Check your API key.",
            provider,
        )

class RateLimitError(ProviderError):
    """Raised on HTTP 429 once the retries are used up."""

    def __init__(
        self,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
        message: Optional[str] = None,
    ):
        super().__init__(message or f"Rate limit exceeded for {provider}.", provider)
        self.retry_after = retry_after

class TransportError(ProviderError):
    """Raised for network failures and timeouts after the retries are used up."""
    pass

class UpstreamError(ProviderError):
    """Raised for a non-success status or an undecodable payload."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message, provider)
        self.status_code = status_code
        self.body = body

class CapabilityUnsupportedError(ProviderError):
    """Raised when an adapter does not implement the requested capability."""

    def __init__(self, capability: str, provider: Optional[str] = None):
        super().__init__(
            f"{provider} does not support {capability}. Please use a different provider.",
            provider,
        )
        self.capability = capability

class CircuitOpenError(RelayError):
    """Raised by a circuit breaker that is failing fast."""
    pass
