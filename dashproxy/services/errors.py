"""Exception types raised by the proxy service layer.

The HTTP layer maps these onto status codes; services never raise
framework exceptions themselves.
"""
from typing import Any, Optional


class ProxyError(Exception):
    """Base class for all service-layer errors."""


class ValidationError(ProxyError):
    """Required input is missing or blank. Raised before any upstream call."""

    def __init__(self, message: str, *, fields: Optional[list[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class CredentialError(ProxyError):
    """No credential is configured for the requested shop."""

    def __init__(self, shop_id: str):
        super().__init__(f"No credentials configured for shop '{shop_id}'")
        self.shop_id = shop_id


class UpstreamCallError(ProxyError):
    """
    A call to the commerce API returned non-2xx or failed in transport.

    ``status_code`` is None for transport faults (DNS, connect, timeout).
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Any = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.method = method
        self.path = path

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "status_code": self.status_code,
            "method": self.method,
            "path": self.path,
        }


class PaginationParseError(ProxyError):
    """A pagination link header could not be parsed."""

    def __init__(self, message: str, *, header: Optional[str] = None):
        super().__init__(message)
        self.header = header


class AggregationError(ProxyError):
    """An aggregation aborted. No partial result is available."""

    def __init__(self, message: str, *, pages_fetched: int = 0, cause: Optional[Exception] = None):
        super().__init__(message)
        self.pages_fetched = pages_fetched
        self.cause = cause


class AggregationCancelled(AggregationError):
    """The caller went away while pages were still being fetched."""


class PartialWorkflowFailure(ProxyError):
    """
    The tag was applied but the follow-up action failed.

    Carries the outcome (with ``secondary.status == "failed"``) so callers
    can report that the tag is in place.
    """

    def __init__(self, message: str, *, outcome: Any, cause: Optional[Exception] = None):
        super().__init__(message)
        self.outcome = outcome
        self.cause = cause
