"""
cernsso - CERN Single Sign-On client

Obtains SSO session cookies for web applications behind the CERN
identity broker (Keycloak), authenticating with the user's Kerberos
ticket (SPNEGO) and following the broker's SAML POST-binding or
token-exchange hand-over without human interaction.

Example:
    from cernsso import SSOClient

    with SSOClient("https://gitlab.cern.ch/") as client:
        client.login()
        expiry, ok = client.valid()
"""

__version__ = "0.1.0"

from cernsso.client import SSOClient, login
from cernsso.core.config import SESSION_COOKIE, SSOConfig
from cernsso.core.exceptions import (
    CredentialError,
    ExtractionError,
    InvariantViolation,
    LoginError,
    ProtocolError,
    SSOError,
    StateError,
    TrustStoreError,
)
from cernsso.core.types import Cookie, LoginErrorKind, SameSite
from cernsso.login.browser import BrowserLoginStrategy
from cernsso.login.http_strategy import HTTPLoginStrategy
from cernsso.login.strategy import LoginStrategy
from cernsso.transport.gssapi_wrapper import CredentialProvider, KerberosCredential

__all__ = [
    "__version__",
    # Client
    "SSOClient",
    "login",
    # Configuration
    "SESSION_COOKIE",
    "SSOConfig",
    # Types
    "Cookie",
    "LoginErrorKind",
    "SameSite",
    # Strategies
    "LoginStrategy",
    "HTTPLoginStrategy",
    "BrowserLoginStrategy",
    # Credentials
    "CredentialProvider",
    "KerberosCredential",
    # Exceptions
    "SSOError",
    "CredentialError",
    "TrustStoreError",
    "ProtocolError",
    "ExtractionError",
    "LoginError",
    "StateError",
    "InvariantViolation",
]
