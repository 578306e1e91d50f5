from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Failure categories attached to a degraded ProviderVerdict"""
    NETWORK_TIMEOUT = "network_timeout"
    NETWORK_ERROR = "network_error"
    PROVIDER_HTTP_ERROR = "provider_http_error"
    MALFORMED_RESPONSE = "malformed_response"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_SUBJECT = "invalid_subject"


class InvalidSubject(ValueError):
    """Raised when a subject identifier cannot be normalized.

    This is the only error surfaced to callers; it is raised before any
    provider is contacted.
    """

    kind = ErrorKind.INVALID_SUBJECT

    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"Invalid subject '{identifier}': {reason}")


class ProviderError(Exception):
    """Internal signal used by adapters while talking to a provider.

    Adapters catch it and turn it into an errored ProviderVerdict, so it
    never crosses the adapter boundary.
    """

    def __init__(self, kind: ErrorKind, message: str = "", status: Optional[int] = None):
        self.kind = kind
        self.status = status
        super().__init__(message or kind.value)
