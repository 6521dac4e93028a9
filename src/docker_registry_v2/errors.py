"""
Registry client error classes.

Provides a clear taxonomy of errors that can occur while resolving references,
authenticating and talking to a Docker Registry HTTP API v2 endpoint.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    import httpx

    from .models import RegistryErrorEntry


class RegistryError(Exception):
    """Base class for all registry client errors."""
    pass


class ParseError(RegistryError, ValueError):
    """
    Malformed reference, index or challenge string.

    Raised locally before any request is made; never worth retrying.
    """
    pass


class InvalidContentError(RegistryError):
    """
    Response content is structurally invalid.

    Raised when:
    - a manifest exceeds the caller's maximum schema version
    - a manifest has no layers / manifests, or mismatched history
    - schema-1 signature headers are missing or inconsistent
    - a success body is not valid JSON or is truncated
    """
    pass


class BadDigestError(RegistryError):
    """
    Content digest verification failed.

    Integrity failures always abort the operation.
    """

    def __init__(self, message: str, expected: Optional[str] = None, actual: Optional[str] = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class TooManyRedirectsError(RegistryError):
    """Redirect chain exceeded the configured hop limit."""
    pass


class UploadError(RegistryError):
    """
    A step of a manifest or blob upload failed.

    The underlying failure is available as ``__cause__``.
    """
    pass


class UnsupportedAuthSchemeError(RegistryError):
    """Registry challenged with an auth scheme or realm we cannot satisfy."""
    pass


class HttpError(RegistryError):
    """
    Registry answered with an unexpected HTTP status.

    Attributes:
        response: The offending ``httpx.Response``
        status_code: Its HTTP status
        errors: Registry error entries parsed from the body (may be empty)
        rest_code: Code of the first registry error entry, or ""
        rest_text: Message of the first registry error entry, or ""
    """

    def __init__(
        self,
        message: str,
        response: Optional["httpx.Response"] = None,
        errors: Optional[List["RegistryErrorEntry"]] = None,
    ):
        super().__init__(message)
        self.response = response
        self.status_code = response.status_code if response is not None else None
        self.errors = list(errors or [])
        first = self.errors[0] if self.errors else None
        self.rest_code = (first.code or "") if first else ""
        self.rest_text = (first.message or "") if first else ""


class AuthError(HttpError):
    """Token endpoint rejected the credentials or returned no token."""
    pass


__all__ = [
    "RegistryError",
    "ParseError",
    "InvalidContentError",
    "BadDigestError",
    "TooManyRedirectsError",
    "UploadError",
    "UnsupportedAuthSchemeError",
    "HttpError",
    "AuthError",
]
