"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class ServiceNotFoundError(ServiceError):
    """No client is registered under the requested service name."""

    def __init__(self, service_id: str):
        super().__init__(f"Service client not found: {service_id}", service_id=service_id)


class RejectedError(ServiceError):
    """Request refused before reaching the upstream (admission or backpressure)."""

    reason = "rejected"


class RateLimitError(RejectedError):
    """Rate limit exceeded."""

    reason = "rate_limited"

    def __init__(self, service_id: str, retry_after: float | None = None):
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for service '{service_id}'"
        if retry_after:
            msg += f", retry after {retry_after}s"
        super().__init__(msg, service_id=service_id)


class QueueFullError(RejectedError):
    """Worker pool queue is full."""

    reason = "queue_full"

    def __init__(self, service_id: str, queue_size: int):
        self.queue_size = queue_size
        super().__init__(
            f"Job queue for service '{service_id}' is full ({queue_size} pending)",
            service_id=service_id,
        )


class ContextCancelledError(ServiceError):
    """The caller's deadline passed before a result was available."""

    def __init__(self, service_id: str, timeout: float | None = None):
        self.timeout = timeout
        msg = f"Request to service '{service_id}' cancelled"
        if timeout is not None:
            msg += f" after {timeout}s"
        super().__init__(msg, service_id=service_id)


class UpstreamError(ServiceError):
    """The upstream client failed (network, timeout, HTTP status or decoding)."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, service_id=service_id)


class AllServicesFailedError(ServiceError):
    """Primary service and every fallback failed."""

    def __init__(
        self,
        service_id: str,
        attempted: list[str],
        last_error: Exception | None = None,
    ):
        self.attempted = attempted
        self.last_error = last_error
        msg = f"All services failed for: {service_id} (tried {', '.join(attempted)})"
        if last_error is not None:
            msg += f": {last_error}"
        super().__init__(msg, service_id=service_id)


class CacheError(ServiceError):
    """Cache operation failed."""

    pass
