"""
cernsso Client

High-level SSO session: owns the Kerberos credential, the cookie jar and
the HTTP transport, runs the login negotiation and answers whether the
resulting session is still usable.

Example:
    with SSOClient("https://gitlab.cern.ch/") as client:
        client.login()
        expiry, ok = client.valid()
        for cookie in client.cookies:
            print(cookie.name, cookie.domain, cookie.expires)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import attrs
import httpx
import structlog

from cernsso.core.config import SESSION_COOKIE, SSOConfig
from cernsso.core.exceptions import CredentialError, SSOError
from cernsso.core.types import Cookie
from cernsso.login.http_strategy import HTTPLoginStrategy
from cernsso.login.strategy import LoginEnvironment, LoginStrategy
from cernsso.transport.cookie_jar import SessionCookieJar
from cernsso.transport.gssapi_wrapper import CredentialProvider, KerberosCredential
from cernsso.transport.http import build_http_client
from cernsso.transport.trust_store import TrustStoreProvider

logger = structlog.get_logger()


def _https_url(instance: "SSOClient", attribute: attrs.Attribute, value: str) -> None:
    url = httpx.URL(value)
    if url.scheme != "https" or not url.host:
        raise ValueError(f"{attribute.name} must be an absolute https URL, got {value!r}")


@attrs.define
class SSOClient:
    """
    Authenticated SSO session.

    The credential and, unless injected, the HTTP client are owned by the
    session and released by close().

    Attributes:
        login_url: Protected resource to log into
        config: Session configuration
    """

    login_url: str = attrs.field(validator=[attrs.validators.instance_of(str), _https_url])
    config: SSOConfig = attrs.field(factory=SSOConfig)

    _http: Optional[httpx.Client] = attrs.field(default=None, repr=False, alias="http")
    _credential: Optional[CredentialProvider] = attrs.field(
        default=None, repr=False, alias="credential"
    )
    _strategy: LoginStrategy = attrs.field(factory=HTTPLoginStrategy, alias="strategy")
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), alias="logger")

    # Internal state
    _jar: Optional[SessionCookieJar] = attrs.field(default=None, init=False, repr=False)
    _owns_http: bool = attrs.field(default=False, init=False)
    _cookies: Tuple[Cookie, ...] = attrs.field(default=(), init=False, repr=False)
    _closed: bool = attrs.field(default=False, init=False)

    def __attrs_post_init__(self) -> None:
        self._logger = self._logger.bind(login_url=self.login_url)

        if self._credential is None:
            self._credential = KerberosCredential.from_ccache(
                self.config.ccache,
                self.config.krb5_config,
                logger=self._logger,
            )

        if self._http is None:
            try:
                store = TrustStoreProvider(
                    self.config.organization_certs,
                    logger=self._logger,
                ).build()
            except SSOError:
                self._credential.release()
                raise
            self._jar = SessionCookieJar()
            self._http = build_http_client(
                store,
                self._jar,
                timeout=self.config.timeout,
                user_agent=self.config.user_agent,
            )
            self._owns_http = True
        else:
            self._jar = SessionCookieJar.for_client(self._http)

        self._logger.debug(
            "client_initialized",
            auth_server=self.config.auth_server,
            strategy=self._strategy.name,
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @property
    def cookies(self) -> Tuple[Cookie, ...]:
        """Session cookies of the last successful login (read-only)."""
        return self._cookies

    @property
    def strategy(self) -> LoginStrategy:
        return self._strategy

    @property
    def closed(self) -> bool:
        return self._closed

    def login(self) -> Tuple[Cookie, ...]:
        """
        Run the login negotiation once.

        On success the session cookie set is replaced; on failure it is
        left as it was.

        Returns:
            The new session cookies

        Raises:
            CredentialError: no usable ticket, or client closed
            LoginError: a round trip failed or was answered with an error
            ProtocolError: the broker's answer had an unexpected shape
        """
        if self._closed:
            raise CredentialError("client was closed")

        env = LoginEnvironment(
            login_url=self.login_url,
            config=self.config,
            http=self._http,
            jar=self._jar,
            credential=self._credential,
            logger=self._logger,
        )
        cookies = self._strategy.perform(env)
        self._cookies = tuple(cookies)
        return self._cookies

    def valid(self, now: Optional[datetime] = None) -> Tuple[Optional[datetime], bool]:
        """
        Check whether the session cookie is still usable.

        Args:
            now: Timezone-aware reference time (default: current UTC time)

        Returns:
            (latest session cookie expiry or None, expiry > now + margin)

        Raises:
            ValueError: now has no timezone
        """
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None or now.utcoffset() is None:
            raise ValueError(f"now must be timezone-aware, got naive {now.isoformat()}")
        expiries = [c.expires for c in self._cookies if c.name == SESSION_COOKIE]
        if not expiries:
            return None, False

        expiry = max(expiries)
        return expiry, expiry > now + self.config.validity_margin

    def trace(self) -> List[Any]:
        """Transitions of the last login negotiation."""
        return self._strategy.last_trace()

    def close(self) -> None:
        """Release the credential and the owned HTTP client. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._credential is not None:
            self._credential.release()
        if self._owns_http and self._http is not None:
            self._http.close()

        self._logger.debug("client_closed")

    def __enter__(self) -> "SSOClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================


def login(url: str, **options: Any) -> SSOClient:
    """
    Create a client and log into a URL.

    Args:
        url: Protected resource to log into
        **options: Forwarded to SSOClient (config, http, credential,
            strategy, logger)

    Returns:
        Logged-in client; the caller closes it

    Example:
        client = login("https://gitlab.cern.ch/")
        try:
            cookies = client.cookies
        finally:
            client.close()
    """
    client = SSOClient(url, **options)
    try:
        client.login()
    except Exception:
        client.close()
        raise
    return client
