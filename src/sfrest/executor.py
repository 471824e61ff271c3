"""
Request execution with retry, backoff and session-expiry handling.

One ``execute`` call loops over attempts until the response is a success,
a fatal error, or the retry budget (``max_tries``) is used up.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, FrozenSet, Mapping, Optional, Union

import requests

from .exceptions import ApiError, AuthError, ConfigurationError, RetryableHttpError

_logger = logging.getLogger(__name__)

DEFAULT_RETRY_ON_STATUS: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})
INVALID_SESSION_ID = "INVALID_SESSION_ID"

_NON_NEGATIVE_INT = re.compile(r"^\d+$")

Body = Union[str, bytes, None]
Reauthenticate = Callable[[], Mapping[str, str]]


@dataclass(frozen=True)
class RetryPolicy:
    retryable_status_codes: FrozenSet[int] = DEFAULT_RETRY_ON_STATUS
    default_backoff: int = 10
    max_tries: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_tries is not None and self.max_tries < 1:
            raise ConfigurationError(
                f"max_tries must be at least 1 (or None), got {self.max_tries}"
            )

    def exhausted(self, attempt: int) -> bool:
        return self.max_tries is not None and attempt >= self.max_tries


@dataclass
class RequestAttempt:
    method: str
    url: str
    headers: Mapping[str, str]
    body: Body
    attempt_number: int


def _error_code(response: requests.Response) -> Optional[str]:
    """Salesforce error bodies are a dict or a list of dicts; return the first errorCode."""
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, list) and data:
        data = data[0]
    if isinstance(data, dict):
        return data.get("errorCode")
    return None


def _retry_after(response: requests.Response) -> Optional[int]:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return None
    raw = raw.strip()
    if not _NON_NEGATIVE_INT.match(raw):
        return None
    return int(raw)


def _api_error(response: requests.Response, cls: type = ApiError) -> ApiError:
    return cls(response.status_code, response.reason or "", response.text)


class RequestExecutor:
    """Issues HTTP requests and drives the SENDING/CLASSIFYING/RETRY_WAIT/REAUTH loop."""

    def __init__(
        self,
        session: requests.Session,
        policy: Optional[RetryPolicy] = None,
        *,
        timeout: float = 10,
    ) -> None:
        self.session = session
        self.policy = policy or RetryPolicy()
        self.timeout = timeout

    def execute(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        body: Body = None,
        reauthenticate: Optional[Reauthenticate] = None,
    ) -> Any:
        """Run the request to completion and return the decoded JSON payload.

        Returns ``None`` for a successful response with an empty body.
        ``reauthenticate`` is called on a 401 INVALID_SESSION_ID and must
        return the fresh header set; without it, that 401 is fatal.

        Raises:
            AuthError: on a 401 that cannot be recovered by re-authentication.
            ApiError: on a non-retryable status or once max_tries is reached.
        """
        attempt = RequestAttempt(method, url, dict(headers), body, 1)

        while True:
            _logger.debug(
                "Requesting: %s %s (attempt %d)", attempt.method, attempt.url, attempt.attempt_number
            )
            try:
                return self._send(attempt, reauthenticate)
            except RetryableHttpError as retry:
                if self.policy.exhausted(attempt.attempt_number):
                    _logger.debug(
                        "Try %d failed... exceeded max_tries (%d) so not going to retry",
                        attempt.attempt_number,
                        self.policy.max_tries,
                    )
                    self._log_fatal(retry.error, url)
                    raise retry.error from None
                _logger.debug(
                    "Try %d failed... sleeping %d before next attempt",
                    attempt.attempt_number,
                    retry.delay,
                )
                if retry.delay > 0:
                    time.sleep(retry.delay)
                attempt.attempt_number += 1

    def _send(self, attempt: RequestAttempt, reauthenticate: Optional[Reauthenticate]) -> Any:
        """One SENDING + CLASSIFYING step. Raises RetryableHttpError to loop again."""
        try:
            response = self.session.request(
                attempt.method,
                attempt.url,
                headers=dict(attempt.headers),
                data=attempt.body,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            delay = self.policy.default_backoff
            _logger.warning(
                "Request error (attempt %d): %s ... going to backoff and retry in %d seconds!",
                attempt.attempt_number,
                e,
                delay,
            )
            raise RetryableHttpError(ApiError(None, str(e), ""), delay) from e
        except requests.RequestException as e:
            # Bad URL, schema or header: the same request can never succeed
            error = ApiError(None, str(e), "")
            self._log_fatal(error, attempt.url)
            raise error from e

        status = response.status_code
        if 200 <= status < 300:
            return self._parse_success(response)

        if status == 401:
            return self._handle_unauthorized(response, attempt, reauthenticate)

        if status in self.policy.retryable_status_codes:
            delay = self.policy.default_backoff
            if status == 429:
                retry_after = _retry_after(response)
                if retry_after is not None:
                    delay = retry_after
                _logger.warning(
                    "Received a %d (Too Many Requests) response... going to backoff and "
                    "retry in %d seconds!",
                    status,
                    delay,
                )
            else:
                _logger.warning(
                    "Received a %d: %s ... going to backoff and retry in %d seconds!",
                    status,
                    response.text,
                    delay,
                )
            raise RetryableHttpError(_api_error(response), delay)

        error = _api_error(response)
        self._log_fatal(error, attempt.url)
        raise error

    def _handle_unauthorized(
        self,
        response: requests.Response,
        attempt: RequestAttempt,
        reauthenticate: Optional[Reauthenticate],
    ) -> Any:
        error = _api_error(response, AuthError)
        if _error_code(response) != INVALID_SESSION_ID or reauthenticate is None:
            self._log_fatal(error, attempt.url)
            raise error

        _logger.info("Session expired (INVALID_SESSION_ID); refreshing access token")
        # AuthError/ConfigurationError from here propagate without further retries
        attempt.headers = dict(reauthenticate())
        raise RetryableHttpError(_api_error(response), 0)

    @staticmethod
    def _parse_success(response: requests.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ApiError(
                response.status_code, "Invalid JSON in response", response.text
            ) from None

    @staticmethod
    def _log_fatal(error: ApiError, url: str) -> None:
        _logger.error("HTTP %s error for %s: %s", error.http_status, url, error.raw_body or error.message)
