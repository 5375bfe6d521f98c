"""
cernsso Transport Layer

Network transport and native library integration for SSO negotiation.

Components:
- gssapi_wrapper: Kerberos credential provider (GSSAPI)
- negotiate: SPNEGO authentication flow for httpx
- trust_store: TLS trust roots
- cookie_jar: URL-keyed cookie store
- http: HTTP client factory
"""

from cernsso.transport.gssapi_wrapper import (
    CredentialProvider,
    KerberosCredential,
    Krb5Config,
    cache_path,
    gssapi_available,
    load_krb5_config,
)
from cernsso.transport.cookie_jar import SessionCookieJar
from cernsso.transport.negotiate import NegotiateAuth
from cernsso.transport.trust_store import TrustStore, TrustStoreProvider
from cernsso.transport.http import build_http_client, default_headers

__all__ = [
    # Credentials
    "CredentialProvider",
    "KerberosCredential",
    "Krb5Config",
    "cache_path",
    "gssapi_available",
    "load_krb5_config",
    # HTTP
    "NegotiateAuth",
    "SessionCookieJar",
    "TrustStore",
    "TrustStoreProvider",
    "build_http_client",
    "default_headers",
]
