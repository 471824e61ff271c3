"""
OAuth2 username-password flow against login.salesforce.com / test.salesforce.com.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from .credentials import Credentials
from .exceptions import ApiError, AuthError, MissingCredentialsError
from .executor import RequestExecutor

_logger = logging.getLogger(__name__)

LOGIN_HOST = "https://login.salesforce.com"
SANDBOX_HOST = "https://test.salesforce.com"
TOKEN_PATH = "/services/oauth2/token"

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    instance_url: str


def token_url(is_sandbox: bool) -> str:
    return (SANDBOX_HOST if is_sandbox else LOGIN_HOST) + TOKEN_PATH


def token_preview(token: str) -> str:
    """Shortened token for logs and terminal output."""
    if len(token) <= 16:
        return token[:4] + "..."
    return f"{token[:10]}...{token[-6:]}"


class TokenAuthenticator:
    """Exchanges username/password/security token for an access token.

    The token request goes through the shared executor, so 429/5xx responses
    are retried like any other call, but it is never given a reauthenticate
    hook: a 401 here is final.
    """

    def __init__(self, executor: RequestExecutor, *, is_sandbox: bool = False) -> None:
        self.executor = executor
        self.is_sandbox = is_sandbox

    def authenticate(
        self,
        credentials: Credentials,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        security_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
    ) -> TokenGrant:
        overrides = {
            "username": username,
            "password": password,
            "security_token": security_token,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        missing = credentials.missing_for_login(overrides)
        if missing:
            raise MissingCredentialsError(missing)

        params = {k: v or getattr(credentials, k) for k, v in overrides.items()}
        body = urlencode(
            {
                "grant_type": "password",
                "username": params["username"],
                # Salesforce expects the security token appended to the password
                "password": params["password"] + params["security_token"],
                "client_id": params["client_id"],
                "client_secret": params["client_secret"],
            }
        )

        url = token_url(self.is_sandbox)
        _logger.debug("Requesting access_token for %s from %s", params["username"], url)
        try:
            data = self.executor.execute("POST", url, headers=_FORM_HEADERS, body=body)
        except AuthError:
            raise
        except ApiError as e:
            raise AuthError(e.http_status, e.message, e.raw_body) from e

        if not isinstance(data, dict) or not data.get("access_token") or not data.get("instance_url"):
            raise AuthError(None, "Token response missing access_token/instance_url", str(data))

        _logger.info("Got new access_token: %s", token_preview(data["access_token"]))
        return TokenGrant(data["access_token"], data["instance_url"].rstrip("/"))
