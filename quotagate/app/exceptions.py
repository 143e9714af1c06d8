"""Custom exceptions for the rate limiter."""


class QuotaGateError(Exception):
    """Base class for rate limiter exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500

    def __init__(self, message: str = "Rate limiter error"):
        self.message = message
        super().__init__(message)


class InvalidConfigurationError(QuotaGateError):
    """Raised when a rule or policy set fails validation.

    Detected before any store access so a bad rule never reaches Redis.
    """
    status_code = 500

    def __init__(self, message: str = "Invalid rate limit configuration", rule_path: str | None = None):
        self.rule_path = rule_path
        super().__init__(message)


class StoreUnavailableError(QuotaGateError):
    """Raised when Redis cannot be reached, times out or rejects the script.

    Callers decide whether this fails open or closed.
    Maps to HTTP 503 Service Unavailable when surfaced.
    """
    status_code = 503

    def __init__(self, message: str = "Rate limit store unavailable", key: str | None = None):
        self.key = key
        super().__init__(message)


class MalformedStoreResponseError(QuotaGateError):
    """Raised when the token bucket script returns an unexpected shape.

    This is always a compatibility bug and is never retried.
    """
    status_code = 500

    def __init__(self, response: object = None, key: str | None = None):
        self.response = response
        self.key = key
        super().__init__(f"Unexpected token bucket response for {key!r}: {response!r}")


class RateLimitExceededError(QuotaGateError):
    """Raised when a caller prefers an exception over a denied verdict.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(self, retry_after: int = 0, reset_at: float = 0.0, detail: str | None = None):
        self.retry_after = retry_after
        self.reset_at = reset_at
        message = detail or f"Rate limit exceeded. Retry after {retry_after} seconds."
        super().__init__(message)
