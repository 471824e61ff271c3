import logging
from importlib.metadata import PackageNotFoundError, version

from .api import SalesforceAPI, SFConfig
from .auth import TokenAuthenticator, TokenGrant
from .credentials import CredentialStore, Credentials
from .exceptions import (
    ApiError,
    AuthError,
    ConfigurationError,
    MissingCredentialsError,
    SalesforceRESTError,
)
from .executor import RequestExecutor, RetryPolicy
from .session import HeaderBuilder, SessionState

try:
    # Change here if project is renamed and does not equal the package name
    dist_name = __name__
    __version__ = version(dist_name)
except PackageNotFoundError:  # pragma: no cover
    __version__ = "unknown"
finally:
    del version, PackageNotFoundError

# Keep library modules quiet unless the app configures logging:
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ApiError",
    "AuthError",
    "ConfigurationError",
    "CredentialStore",
    "Credentials",
    "HeaderBuilder",
    "MissingCredentialsError",
    "RequestExecutor",
    "RetryPolicy",
    "SFConfig",
    "SalesforceAPI",
    "SalesforceRESTError",
    "SessionState",
    "TokenAuthenticator",
    "TokenGrant",
]
