"""
Exception hierarchy for sfrest.

Only ConfigurationError, AuthError and ApiError are meant to reach callers;
RetryableHttpError stays inside the request executor.
"""

from __future__ import annotations

from typing import Optional


class SalesforceRESTError(Exception):
    """Base exception for all sfrest errors."""


class ConfigurationError(SalesforceRESTError):
    """Raised when the client is missing or given invalid configuration."""


class MissingCredentialsError(ConfigurationError):
    """Raised when fields required for the password grant are not present."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__("Cannot log in without parameter(s): " + ", ".join(missing))


class ApiError(SalesforceRESTError):
    """Terminal failure of a REST call.

    ``http_status`` is ``None`` when no response was received at all
    (connection error, timeout).
    """

    def __init__(
        self,
        http_status: Optional[int],
        message: str,
        raw_body: str = "",
    ):
        self.http_status = http_status
        self.message = message
        self.raw_body = raw_body
        super().__init__(
            f"API Error: http status: {http_status} {message} Content: {raw_body}"
        )


class AuthError(ApiError):
    """Authentication failed: rejected credentials or a 401 that is not a session expiry."""


class RetryableHttpError(SalesforceRESTError):
    """Internal signal for a transient failure; never raised out of the executor."""

    def __init__(self, error: ApiError, delay: int):
        self.error = error
        self.delay = delay
        super().__init__(str(error))
