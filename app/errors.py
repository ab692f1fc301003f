"""Error kinds surfaced by the SCB client and tool handlers."""

from typing import Any, Dict, List, Optional


class SCBError(Exception):
    """Base error carrying a kind, a message and, when known, the upstream response."""

    kind = "SCBError"

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        body: Optional[str] = None,
        error_type: Optional[str] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.body = body
        self.error_type = error_type
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.http_status is not None:
            payload["http_status"] = self.http_status
        if self.body is not None:
            payload["body"] = self.body
        if self.error_type:
            payload["type"] = self.error_type
        if self.detail:
            payload["detail"] = self.detail
        return payload


class RateLimitExceeded(SCBError):
    """Quota for the current window is used up. Retry after the window resets."""

    kind = "RateLimitExceeded"

    def __init__(self, message: str, reset_in_seconds: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.reset_in_seconds = reset_in_seconds

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.reset_in_seconds is not None:
            payload["reset_in_seconds"] = self.reset_in_seconds
        payload["retry"] = "Wait for the rate limit window to reset before retrying"
        return payload


class UpstreamError(SCBError):
    kind = "UpstreamError"


class UpstreamNotFound(UpstreamError):
    kind = "UpstreamNotFound"


class UpstreamValidationError(UpstreamError):
    kind = "UpstreamValidationError"


class MalformedResponse(UpstreamError):
    kind = "MalformedResponse"


class TransportError(SCBError):
    kind = "TransportError"


class FeatureUnavailable(SCBError):
    kind = "FeatureUnavailable"


class MalformedDataset(SCBError):
    """A JSON-stat2 payload whose id/size/index/value do not agree."""

    kind = "MalformedDataset"


class InvalidArguments(SCBError):
    kind = "InvalidArguments"


class SelectionInvalid(SCBError):
    """Local validation rejected the selection. Carries the errors and suggestions."""

    kind = "SelectionInvalid"

    def __init__(self, message: str, errors: List[str], suggestions: List[str], **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors
        self.suggestions = suggestions

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        payload["suggestions"] = self.suggestions
        return payload
