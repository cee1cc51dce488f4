from __future__ import annotations


class ReductError(Exception):
    """Base error for reduct."""


class DatabaseError(ReductError):
    """Database layer failure."""


class EncryptedFormatError(ReductError):
    """Stored ciphertext could not be parsed or authenticated."""


class AuthProfileError(ReductError):
    """Provider credential or auth profile could not be resolved."""


class UpstreamHTTPError(ReductError):
    """Outbound HTTP call returned a non-success status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GoogleOAuthError(AuthProfileError):
    """Service-account token exchange failed."""


class SerperError(UpstreamHTTPError):
    """Serper search request failed."""


class FileServiceError(UpstreamHTTPError):
    """File service request failed or returned an unusable payload."""


class EmailDeliveryError(ReductError):
    """Outbound mail could not be delivered."""
