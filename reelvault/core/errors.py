"""
Error taxonomy for the storage pipeline.

Every failure the signer, gateway, orchestrator or playback manager can
surface is one of these types. Infrastructure code wraps third-party
exceptions (httpx, XML parsing) into them so callers only ever handle
our own errors.
"""

from typing import Optional


class StoreError(Exception):
    """Base class for all storage pipeline errors."""
    pass


class ConfigurationError(StoreError):
    """
    Raised when object store credentials or settings are missing.

    Fatal: the gateway cannot serve any request until configuration
    is fixed, so this is returned on every call attempt.
    """

    def __init__(self, message: str, missing: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class SigningError(StoreError):
    """Raised when a request cannot be signed (malformed input)."""
    pass


class StoreProtocolError(StoreError):
    """
    Raised when the object store answers with an unexpected shape.

    Examples: no UploadId in the initiate response, no ETag header
    on a part upload, an <Error> document inside a 200 response.
    """
    pass


class UpstreamHttpError(StoreError):
    """Raised when an upstream service answers with a non-2xx status."""

    def __init__(self, status_code: int, body: str = "", message: Optional[str] = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message or f"Upstream returned HTTP {status_code}: {body[:200]}")


class NetworkError(StoreError):
    """Raised when the transport fails before any response arrives."""
    pass


class InsufficientDataError(StoreError):
    """Raised when a request lacks the data needed to proceed."""
    pass


class InvalidTransitionError(StoreError):
    """Raised when an upload is moved through an illegal state change."""
    pass
