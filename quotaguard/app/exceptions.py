"""Custom exceptions for the admission-control engine.

None of these reach the caller of ``RateLimiter.check_rate_limit``: store
faults are converted into fail-open decisions and configuration faults into
a ``False`` return from ``update_config``.
"""


class QuotaGuardError(Exception):
    """Base class for quotaguard exceptions."""

    def __init__(self, message: str = "quotaguard error"):
        self.message = message
        super().__init__(message)


class StoreUnavailableError(QuotaGuardError):
    """Raised when the shared Redis backend cannot serve a request.

    The failover store catches it and serves the call from the local
    fallback instead.
    """

    def __init__(self, detail: str = "Shared state store unavailable"):
        self.detail = detail
        super().__init__(detail)


class LockTimeoutError(QuotaGuardError):
    """Raised when a per-key lock in the local fallback could not be acquired in time."""

    def __init__(self, key: str, timeout: float):
        self.key = key
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.3f}s waiting for lock on {key!r}")


class ConfigRejectedError(QuotaGuardError):
    """Raised when a quota configuration update is malformed.

    The previously active configuration stays authoritative.
    """

    def __init__(self, reason: str = "Invalid quota configuration"):
        self.reason = reason
        super().__init__(reason)
