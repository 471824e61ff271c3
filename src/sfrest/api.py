from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterator, Mapping, Optional, Union
from urllib.parse import quote

import requests

from .auth import TokenAuthenticator, token_preview
from .credentials import CredentialStore, Credentials, env_flag
from .exceptions import ConfigurationError
from .executor import DEFAULT_RETRY_ON_STATUS, RequestExecutor, RetryPolicy
from .logging_config import resolve_level
from .session import HeaderBuilder, SessionState

_logger = logging.getLogger(__name__)

_PACKAGE_LOGGER = "sfrest"


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_status_set(name: str) -> FrozenSet[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return DEFAULT_RETRY_ON_STATUS
    try:
        return frozenset(int(part) for part in raw.split(",") if part.strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be a comma separated list of status codes") from None


def _checked_level(name: str, level: Union[int, str]) -> int:
    try:
        return resolve_level(level)
    except ValueError:
        raise ConfigurationError(f"{name} is not a log level: {level!r}") from None


def _env_loglevel(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return _checked_level(name, raw)


# ----------------------------------------------------------------------
# Configuration dataclass
# ----------------------------------------------------------------------
@dataclass
class SFConfig:
    """Client options: timeouts, retry behaviour, API version and login host."""

    api_version: str = "v36.0"

    # Per HTTP call, in seconds. Does not bound a whole retry sequence.
    timeout: int = 10

    # Seconds to wait before retrying; a numeric Retry-After on 429 overrides it.
    default_backoff: int = 10

    # Reserved for paging helpers.
    default_page_size: int = 100

    retry_on_status: FrozenSet[int] = field(default_factory=lambda: DEFAULT_RETRY_ON_STATUS)

    # None means retry without limit.
    max_tries: Optional[int] = None

    is_sandbox: bool = False

    credentials_file: Optional[str] = None

    # Overrides the sfrest logger level for this client (e.g. "DEBUG").
    loglevel: Optional[Union[int, str]] = None

    @classmethod
    def from_env(cls) -> SFConfig:
        """Load configuration from environment variables."""
        return cls(
            api_version=os.getenv("SF_API_VERSION") or "v36.0",
            timeout=_env_int("SF_TIMEOUT", 10),
            default_backoff=_env_int("SF_DEFAULT_BACKOFF", 10),
            default_page_size=_env_int("SF_DEFAULT_PAGE_SIZE", 100),
            retry_on_status=_env_status_set("SF_RETRY_ON_STATUS"),
            max_tries=_env_int("SF_MAX_TRIES", None),
            is_sandbox=env_flag("SF_IS_SANDBOX"),
            credentials_file=os.getenv("SF_CREDENTIALS_FILE") or None,
            loglevel=_env_loglevel("SF_LOGLEVEL"),
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            retryable_status_codes=frozenset(self.retry_on_status),
            default_backoff=self.default_backoff,
            max_tries=self.max_tries,
        )


# ----------------------------------------------------------------------
# Main API client
# ----------------------------------------------------------------------
class SalesforceAPI:
    """Salesforce REST client using the OAuth2 username-password flow.

    Tokens are obtained lazily on the first call and refreshed automatically
    when the server reports INVALID_SESSION_ID.
    """

    def __init__(
        self,
        cfg: Optional[SFConfig] = None,
        credentials: Optional[Credentials] = None,
        *,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.cfg = cfg or SFConfig()
        if self.cfg.loglevel is not None:
            self.set_loglevel(self.cfg.loglevel)

        self.credentials = credentials or Credentials()
        self.store: Optional[CredentialStore] = None
        self.session = session or requests.Session()
        self.state = SessionState(self.credentials.access_token, self.credentials.instance_url)
        self.executor = RequestExecutor(
            self.session, self.cfg.retry_policy(), timeout=self.cfg.timeout
        )
        self.authenticator = TokenAuthenticator(self.executor, is_sandbox=self.is_sandbox)
        self.header_builder = HeaderBuilder(self.state, self.refresh_access_token)

        if self.cfg.credentials_file:
            self.load_credentials_from(CredentialStore(self.cfg.credentials_file))

    @property
    def is_sandbox(self) -> bool:
        return self.cfg.is_sandbox or self.credentials.is_sandbox

    @property
    def access_token(self) -> Optional[str]:
        return self.state.access_token

    @property
    def instance_url(self) -> Optional[str]:
        return self.state.instance_url

    @property
    def api_version(self) -> str:
        return self.cfg.api_version

    # --------------------------- Credentials / auth ------------------

    def load_credentials_from(self, store: CredentialStore) -> None:
        """Merge the stored record into this client and persist refreshed tokens there."""
        loaded = store.load()
        self.credentials = self.credentials.merged(loaded)
        self.store = store
        self.authenticator.is_sandbox = self.is_sandbox
        if loaded.has_token:
            _logger.debug("Using access token from %s", store.path)
            self.state.update_token(loaded.access_token, loaded.instance_url)

    def refresh_access_token(self, **overrides: Optional[str]) -> str:
        """Fetch a new access token; keyword arguments override stored login fields."""
        grant = self.authenticator.authenticate(self.credentials, **overrides)
        self.credentials = self.credentials.with_token(grant.access_token, grant.instance_url)
        self.state.update_token(grant.access_token, grant.instance_url)
        if self.store is not None:
            self.store.save(grant.access_token, grant.instance_url)
        _logger.info(
            "Refreshed access token %s for instance %s",
            token_preview(grant.access_token),
            grant.instance_url,
        )
        return grant.access_token

    def headers(self) -> Dict[str, str]:
        return self.header_builder.headers()

    def _reauthenticate(self) -> Dict[str, str]:
        self.refresh_access_token()
        return self.headers()

    def set_loglevel(self, level: Union[int, str]) -> None:
        numeric = _checked_level("loglevel", level)
        logger = logging.getLogger(_PACKAGE_LOGGER)
        logger.warning("Setting new loglevel: %s", logging.getLevelName(numeric))
        logger.setLevel(numeric)

    # --------------------------- Public methods -----------------------

    def request(
        self,
        method: str,
        path: str,
        *,
        body: Union[Mapping[str, Any], list, str, bytes, None] = None,
        options: Optional[str] = None,
    ) -> Any:
        """Call ``<instance_url><path>?<options>`` and return the decoded JSON, if any."""
        headers = self.headers()
        url = f"{self.instance_url}{path}"
        if options:
            url += ("&" if "?" in url else "?") + options
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        return self.executor.execute(
            method,
            url,
            headers=headers,
            body=body,
            reauthenticate=self._reauthenticate,
        )

    def query(self, query: str, options: str = "") -> Any:
        """Run a SOQL query. ``options`` is a raw query-string fragment added after ``q=``."""
        path = f"/services/data/{self.api_version}/query/"
        qs = "q=" + quote(query, safe="")
        if options:
            qs += "&" + options.lstrip("&")
        return self.request("GET", path, options=qs)

    def query_all_iter(self, query: str, options: str = "") -> Iterator[Dict[str, Any]]:
        """Yield records across pages via nextRecordsUrl."""
        res = self.query(query, options) or {}
        yield from res.get("records", [])
        next_url = res.get("nextRecordsUrl")
        while next_url:
            res = self.request("GET", next_url) or {}
            yield from res.get("records", [])
            next_url = res.get("nextRecordsUrl")
