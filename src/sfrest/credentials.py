"""
Credential record and its JSON-file-backed store.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .exceptions import ConfigurationError

_logger = logging.getLogger(__name__)

LOGIN_FIELDS = ("username", "password", "security_token", "client_id", "client_secret")

_TRUTHY = {"1", "true", "yes", "on"}


def parse_flag(value: Any) -> bool:
    """Booleans from JSON or env: "false"/"0" are False, unlike bool("false")."""
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def env_flag(name: str, default: bool = False) -> bool:
    """Interpret an environment variable as a boolean flag."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return parse_flag(raw)


@dataclass
class Credentials:
    """Everything needed to obtain and use an access token.

    ``access_token`` and ``instance_url`` always travel together.
    """

    username: Optional[str] = None
    password: Optional[str] = None
    security_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    access_token: Optional[str] = None
    instance_url: Optional[str] = None
    is_sandbox: bool = False

    def __post_init__(self) -> None:
        if bool(self.access_token) != bool(self.instance_url):
            raise ConfigurationError(
                "access_token and instance_url must be provided together"
            )

    @classmethod
    def from_env(cls) -> Credentials:
        """Load credentials from SF_* environment variables."""
        return cls(
            username=os.getenv("SF_USERNAME"),
            password=os.getenv("SF_PASSWORD"),
            security_token=os.getenv("SF_SECURITY_TOKEN"),
            client_id=os.getenv("SF_CLIENT_ID"),
            client_secret=os.getenv("SF_CLIENT_SECRET"),
            access_token=os.getenv("SF_ACCESS_TOKEN") or None,
            instance_url=os.getenv("SF_INSTANCE_URL") or None,
            is_sandbox=env_flag("SF_IS_SANDBOX"),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Credentials:
        """Build from a mapping, ignoring keys that are not credential fields."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if "is_sandbox" in kwargs:
            kwargs["is_sandbox"] = parse_flag(kwargs["is_sandbox"])
        return cls(**kwargs)

    @property
    def has_token(self) -> bool:
        return bool(self.access_token and self.instance_url)

    def merged(self, other: Credentials) -> Credentials:
        """Return a copy with every non-empty field of ``other`` laid over this one."""
        updates: Dict[str, Any] = {
            name: getattr(other, name) for name in LOGIN_FIELDS if getattr(other, name)
        }
        if other.has_token:
            updates["access_token"] = other.access_token
            updates["instance_url"] = other.instance_url
        if other.is_sandbox:
            updates["is_sandbox"] = True
        return replace(self, **updates)

    def with_token(self, access_token: str, instance_url: str) -> Credentials:
        return replace(self, access_token=access_token, instance_url=instance_url)

    def missing_for_login(self, overrides: Optional[Mapping[str, Optional[str]]] = None) -> List[str]:
        """Names of password-grant fields that are empty after applying overrides."""
        overrides = overrides or {}
        return [
            name for name in LOGIN_FIELDS if not (overrides.get(name) or getattr(self, name))
        ]


class CredentialStore:
    """Durable credential record kept as a JSON object on disk."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path).expanduser()

    def __repr__(self) -> str:
        return f"CredentialStore({str(self.path)!r})"

    def _read(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot read credentials file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Credentials file {self.path} must contain a JSON object")
        return data

    def load(self) -> Credentials:
        """Read the stored record. A missing or malformed file is a configuration error."""
        _logger.debug("Trying to read credentials from file: %s", self.path)
        if not self.path.is_file():
            raise ConfigurationError(f"Not a file: {self.path}")
        return Credentials.from_mapping(self._read())

    def save(self, access_token: str, instance_url: str) -> None:
        """Merge the token pair into the stored record, keeping every other key."""
        _logger.debug("Saving access token to credentials file: %s", self.path)
        record: Dict[str, Any] = self._read() if self.path.is_file() else {}
        record["access_token"] = access_token
        record["instance_url"] = instance_url
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(record, indent=2), encoding="utf-8")
