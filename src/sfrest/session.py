from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from requests.utils import DEFAULT_ACCEPT_ENCODING

_logger = logging.getLogger(__name__)


class SessionState:
    """Current access token, instance URL and the header set derived from them.

    ``update_token`` is the only way to change the token, and it always drops
    the cached headers. Not thread-safe: share a client between threads only
    behind a lock of your own.
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        instance_url: Optional[str] = None,
    ) -> None:
        self._access_token = access_token
        self._instance_url = instance_url.rstrip("/") if instance_url else None
        self._headers: Optional[Dict[str, str]] = None

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @property
    def instance_url(self) -> Optional[str]:
        return self._instance_url

    @property
    def cached_headers(self) -> Optional[Dict[str, str]]:
        if not self._access_token:
            return None
        return self._headers

    def cache_headers(self, headers: Dict[str, str]) -> None:
        self._headers = headers

    def update_token(self, access_token: str, instance_url: str) -> None:
        self._access_token = access_token
        self._instance_url = instance_url.rstrip("/")
        self.invalidate_headers()

    def invalidate_headers(self) -> None:
        self._headers = None


class HeaderBuilder:
    """Builds the JSON + bearer header set, authenticating first if needed."""

    def __init__(self, state: SessionState, authenticate: Callable[[], object]) -> None:
        self.state = state
        self._authenticate = authenticate

    def headers(self) -> Dict[str, str]:
        cached = self.state.cached_headers
        if cached is None:
            if not self.state.access_token:
                _logger.debug("No access token yet; authenticating before first request")
                self._authenticate()
            cached = {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Accept-Encoding": DEFAULT_ACCEPT_ENCODING,
                "Authorization": f"Bearer {self.state.access_token}",
            }
            self.state.cache_headers(cached)
        return dict(cached)
