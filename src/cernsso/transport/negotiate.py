"""
cernsso Negotiate Authentication

httpx authentication flow implementing HTTP SPNEGO (RFC 4559) on top of a
CredentialProvider.
"""

from __future__ import annotations

from typing import Any, Generator, Optional

import httpx
import structlog

from cernsso.transport.cookie_jar import SessionCookieJar
from cernsso.transport.gssapi_wrapper import CredentialProvider

logger = structlog.get_logger()


def service_principal(host: str) -> str:
    """HTTP service principal for a host."""
    return f"HTTP/{host}"


def is_negotiate_challenge(response: httpx.Response) -> bool:
    """Check whether a response asks for SPNEGO authentication."""
    if response.status_code != 401:
        return False
    for value in response.headers.get_list("WWW-Authenticate"):
        scheme = value.strip().split(" ", 1)[0]
        if scheme.lower() == "negotiate":
            return True
    return False


class NegotiateAuth(httpx.Auth):
    """
    SPNEGO authentication for one login exchange.

    Requests addressed to the auth server are signed up front. When the
    final response of an exchange (after redirects) is a 401 Negotiate
    challenge, the challenged request is replayed once, signed for the
    challenging host and carrying the cookies collected so far.

    Token generation is delegated to the credential's SPNEGO auth
    (httpx-gssapi for Kerberos credentials).
    """

    requires_request_body = True

    def __init__(
        self,
        credential: CredentialProvider,
        jar: SessionCookieJar,
        auth_server: Optional[str] = None,
        logger: Any = None,
    ) -> None:
        self._credential = credential
        self._jar = jar
        self._auth_server = auth_server
        self._logger = logger or structlog.get_logger()

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        opportunistic = bool(self._auth_server) and request.url.host == self._auth_server
        flow = self._credential.spnego_auth(opportunistic=opportunistic).sync_auth_flow(request)
        try:
            response = yield next(flow)
            if not is_negotiate_challenge(response):
                return

            try:
                retry = flow.send(response)
            except StopIteration:
                return

            self._logger.info(
                "negotiate_challenge",
                host=retry.url.host,
                path=retry.url.path,
            )
            retry.headers.pop("Cookie", None)
            httpx.Cookies(self._jar.jar).set_cookie_header(retry)

            # One replay only: the response to it is final.
            yield retry
        finally:
            flow.close()
