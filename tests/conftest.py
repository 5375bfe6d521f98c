"""
Pytest configuration and shared fixtures for cernsso tests.
"""

import base64
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import httpx
import pytest
from structlog.testing import capture_logs as _capture_logs

from cernsso.core.config import SSOConfig
from cernsso.core.exceptions import CredentialError
from cernsso.core.types import Cookie
from cernsso.transport.gssapi_wrapper import CredentialProvider
from cernsso.transport.negotiate import is_negotiate_challenge


AUTH_SERVER = "auth.cern.ch"
KEYSTONE_HOST = "keystone.cern.ch"

Responder = Callable[[httpx.Request], httpx.Response]


# =============================================================================
# CREDENTIALS
# =============================================================================


class StaticSPNEGOAuth(httpx.Auth):
    """Negotiate flow answering up to two challenges with a fixed token."""

    def __init__(self, credential: "StaticCredential", service_principal: Optional[str], opportunistic: bool) -> None:
        self.credential = credential
        self.service_principal = service_principal
        self.opportunistic = opportunistic

    def _sign(self, request: httpx.Request) -> None:
        self.credential.principals.append(self.service_principal or f"HTTP/{request.url.host}")
        request.headers["Authorization"] = "Negotiate " + base64.b64encode(self.credential.token).decode("ascii")

    def auth_flow(self, request: httpx.Request):
        if self.opportunistic:
            self._sign(request)
        response = yield request
        for _ in range(2):
            if not is_negotiate_challenge(response):
                return
            self._sign(response.request)
            response = yield response.request


class StaticCredential(CredentialProvider):
    """In-memory credential provider returning a fixed token."""

    def __init__(self, token: bytes = b"token") -> None:
        self.token = token
        self.principals: List[str] = []
        self._released = False

    def spnego_auth(self, service_principal: Optional[str] = None, opportunistic: bool = False) -> httpx.Auth:
        if self._released:
            raise CredentialError("credential was released")
        return StaticSPNEGOAuth(self, service_principal, opportunistic)

    def release(self) -> None:
        self._released = True

    @property
    def released(self) -> bool:
        return self._released


# =============================================================================
# FAKE SSO SERVER
# =============================================================================


class FakeSSOServer:
    """
    Request handler for httpx.MockTransport.

    Routes are keyed by (method, host, path); every request is recorded.
    Unknown routes answer 404.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str, str], Responder] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, responder: Responder) -> None:
        u = httpx.URL(url)
        self.routes[(method, u.host, u.path)] = responder

    def requests_to(self, method: str, url: str) -> List[httpx.Request]:
        u = httpx.URL(url)
        return [
            r for r in self.requests
            if r.method == method and r.url.host == u.host and r.url.path == u.path
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        responder = self.routes.get((request.method, request.url.host, request.url.path))
        if responder is None:
            return httpx.Response(404, text="not found")
        return responder(request)


def require_negotiate(responder: Responder) -> Responder:
    """Wrap a responder behind a SPNEGO challenge."""

    def handler(request: httpx.Request) -> httpx.Response:
        if not request.headers.get("Authorization", "").startswith("Negotiate "):
            return httpx.Response(401, headers={"WWW-Authenticate": "Negotiate"})
        return responder(request)

    return handler


def redirect(location: str, cookies: Sequence[str] = ()) -> Responder:
    """Responder answering 302 to location, optionally setting cookies."""

    def handler(request: httpx.Request) -> httpx.Response:
        headers = [("Location", location)] + [("Set-Cookie", c) for c in cookies]
        return httpx.Response(302, headers=headers)

    return handler


def page(html: str, status: int = 200, cookies: Sequence[str] = ()) -> Responder:
    """Responder answering an HTML page."""

    def handler(request: httpx.Request) -> httpx.Response:
        headers = [("Set-Cookie", c) for c in cookies]
        return httpx.Response(status, headers=headers, html=html)

    return handler


def saml_page(
    action: str,
    fields: Sequence[Tuple[str, str]] = (("SAMLResponse", "PHNhbWw+"), ("RelayState", "/protected")),
    form_name: str = "saml-post-binding",
) -> str:
    """Broker page carrying an auto-submitting POST-binding form."""
    inputs = "".join(
        f'<input type="hidden" name="{name}" value="{value}"/>' for name, value in fields
    )
    return (
        "<html><body onload=\"document.forms[0].submit()\">"
        f'<form name="{form_name}" method="post" action="{action}">'
        f"{inputs}"
        "</form></body></html>"
    )


def login_page(href: str) -> str:
    """Broker login page offering the Kerberos button."""
    return (
        "<html><body><div id=\"kc-social-providers\"><ul>"
        f'<li><a id="social-kerberos" href="{href}">Kerberos</a></li>'
        "</ul></div></body></html>"
    )


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def current_time() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)


@pytest.fixture
def sso_config() -> SSOConfig:
    """Default configuration."""
    return SSOConfig()


@pytest.fixture
def credential() -> StaticCredential:
    """Credential returning b"token"."""
    return StaticCredential()


@pytest.fixture
def sso_server() -> FakeSSOServer:
    """Empty fake SSO server."""
    return FakeSSOServer()


@pytest.fixture
def http_client(sso_server: FakeSSOServer):
    """HTTP client routed to the fake SSO server."""
    client = httpx.Client(
        transport=httpx.MockTransport(sso_server),
        follow_redirects=True,
    )
    yield client
    client.close()


@pytest.fixture
def capture_logs():
    """Captured structlog events."""
    with _capture_logs() as logs:
        yield logs


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def make_cookie(
    name: str = "KEYCLOAK_SESSION",
    value: str = "secret",
    domain: str = AUTH_SERVER,
    path: str = "/auth/realms/cern/",
    expires: Optional[datetime] = None,
    **kwargs,
) -> Cookie:
    """Helper to create a cookie."""
    expires = expires or datetime.now(timezone.utc) + timedelta(hours=1)
    return Cookie(name=name, value=value, domain=domain, path=path, expires=expires, **kwargs)


# =============================================================================
# PYTEST MARKERS
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests requiring a real SSO environment"
    )
    config.addinivalue_line(
        "markers", "native: marks tests requiring a native GSSAPI library"
    )
