"""
Custom exception classes for xhs-writer.

Provides a hierarchy of exceptions for the failure classes the resilience
core distinguishes: credential rejection, transient transport problems,
malformed responses and exhaustion of every recovery option.
"""

from typing import Any, Optional


class XhsWriterError(Exception):
    """Base exception for all xhs-writer errors.

    All custom exceptions inherit from this class, allowing
    catch-all error handling when needed.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        retryable: Whether presenting a "try again" affordance makes sense
    """

    retryable: bool = False

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(XhsWriterError):
    """Raised when required configuration is missing or inconsistent."""


class CacheError(XhsWriterError):
    """Raised when cache operations fail.

    Covers failures in resolving the cache directory and writing,
    deleting or clearing entries.

    Attributes:
        operation: The cache operation that failed (resolve/write/delete/clear)
        cache_key: The key involved in the failed operation
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        cache_key: Optional[str] = None,
        **kwargs
    ):
        details = {
            "operation": operation,
            "cache_key": cache_key,
            **kwargs
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.operation = operation
        self.cache_key = cache_key


class CredentialError(XhsWriterError):
    """Base class for credential pool problems."""


class NoCredentialError(CredentialError):
    """Raised when the pool cannot hand out a credential.

    Attributes:
        pool: Pool name
        configured: Number of credentials configured in the pool
    """

    def __init__(
        self,
        message: str = "No usable credential available",
        pool: Optional[str] = None,
        configured: Optional[int] = None,
    ):
        details = {"pool": pool, "configured": configured}
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.pool = pool
        self.configured = configured
        # A quarantined pool recovers after its cooldown, an empty one never does
        self.retryable = bool(configured)


class ParsingError(XhsWriterError):
    """Raised when data parsing fails.

    Indicates failure to extract or transform data from API responses
    or model output.

    Attributes:
        source: Data source that failed to parse
        parser: Parser type used (json/sse)
        raw_data: Raw data snippet (optional, for debugging)
    """

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        parser: Optional[str] = None,
        raw_data: Optional[str] = None,
        **kwargs
    ):
        details = {
            "source": source,
            "parser": parser,
            **kwargs
        }
        if raw_data:
            # Truncate raw data for readability
            details["raw_data_preview"] = raw_data[:200] + "..." if len(raw_data) > 200 else raw_data

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.source = source
        self.parser = parser
        self.raw_data = raw_data


class ResponseValidationError(ParsingError):
    """Raised when a model response does not match the declared shape.

    Attributes:
        errors: Individual problems found in the response
    """

    retryable = True

    def __init__(self, message: str, errors: Optional[list[str]] = None, **kwargs):
        super().__init__(message, parser="json", **kwargs)
        self.errors = list(errors or [])


class APIError(XhsWriterError):
    """Raised when API calls fail.

    Covers HTTP errors, network failures, and invalid responses
    from external APIs.

    Attributes:
        endpoint: API endpoint that failed
        status_code: HTTP status code (if applicable)
        response_body: Response content (if available)
        request_params: Request parameters used
    """

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_params: Optional[dict[str, Any]] = None,
        **kwargs
    ):
        details = {
            "endpoint": endpoint,
            "status_code": status_code,
            "request_params": request_params,
            **kwargs
        }
        if response_body:
            # Truncate response body for readability
            details["response_preview"] = response_body[:200] + "..." if len(response_body) > 200 else response_body

        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.endpoint = endpoint
        self.status_code = status_code
        self.response_body = response_body
        self.request_params = request_params


class AuthError(APIError):
    """Raised when the target rejects a credential (401/403 or auth message)."""


class TransportError(APIError):
    """Raised on timeouts, connection resets and other network failures."""

    retryable = True


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    retryable = True


class RateLimitError(APIError):
    """Raised when API rate limits are exceeded.

    Attributes:
        retry_after: Seconds to wait before retrying (if provided by API)
    """

    retryable = True

    def __init__(
        self,
        message: str = "API rate limit exceeded",
        retry_after: Optional[int] = None,
        **kwargs
    ):
        if retry_after is not None:
            kwargs["retry_after"] = retry_after
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class DataUnavailableError(XhsWriterError):
    """Raised when neither fresh, fetched nor fallback data exists for a key."""

    retryable = True

    def __init__(
        self,
        message: str,
        keyword: Optional[str] = None,
        category: Optional[str] = None,
        cause: Optional[str] = None,
    ):
        details = {"keyword": keyword, "category": category, "cause": cause}
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)
        self.keyword = keyword
        self.category = category
        self.cause = cause


class OrchestrationExhaustedError(XhsWriterError):
    """Raised when every backend, attempt or the deadline budget is used up.

    Attributes:
        backends_tried: Backends in the order they were tried
        attempts_per_backend: Number of attempts made against each backend
        attempts: Full attempt records (``AttemptRecord`` models)
        last_error: Message of the last underlying failure
        deadline_exhausted: True when the shared deadline stopped the loop
    """

    def __init__(
        self,
        message: str,
        attempts: Optional[list[Any]] = None,
        last_error: Optional[str] = None,
        deadline_exhausted: bool = False,
        retryable: bool = True,
    ):
        self.attempts = list(attempts or [])
        self.backends_tried: list[str] = []
        self.attempts_per_backend: dict[str, int] = {}
        for record in self.attempts:
            if record.backend not in self.attempts_per_backend:
                self.backends_tried.append(record.backend)
                self.attempts_per_backend[record.backend] = 0
            self.attempts_per_backend[record.backend] += 1
        self.last_error = last_error
        self.deadline_exhausted = deadline_exhausted
        self.retryable = retryable

        details = {
            "backends_tried": ",".join(self.backends_tried) or None,
            "attempts": len(self.attempts),
            "deadline_exhausted": deadline_exhausted or None,
            "last_error": last_error,
        }
        details = {k: v for k, v in details.items() if v is not None}
        super().__init__(message, details)

    def to_dict(self) -> dict[str, Any]:
        """Serializable summary for presentation layers."""
        return {
            "message": self.message,
            "retryable": self.retryable,
            "deadline_exhausted": self.deadline_exhausted,
            "backends_tried": self.backends_tried,
            "attempts_per_backend": self.attempts_per_backend,
            "last_error": self.last_error,
            "attempts": [record.model_dump() for record in self.attempts],
        }
