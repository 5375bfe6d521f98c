"""
cernsso HTTP Transport

Factory for the HTTP client shared by all requests of a session.
"""

from __future__ import annotations

import httpx

from cernsso.core.config import DEFAULT_USER_AGENT
from cernsso.transport.cookie_jar import SessionCookieJar
from cernsso.transport.trust_store import TrustStore


def default_headers(user_agent: str = DEFAULT_USER_AGENT) -> dict:
    """Headers sent with every SSO request."""
    return {"User-Agent": user_agent, "Accept": "*/*"}


def build_http_client(
    trust_store: TrustStore,
    jar: SessionCookieJar,
    timeout: float = 10.0,
    user_agent: str = DEFAULT_USER_AGENT,
) -> httpx.Client:
    """
    Create the session's HTTP client.

    One connection pool per session; redirects are followed.

    `timeout` bounds each network operation separately: connecting,
    every socket read and write, and waiting for a pooled connection.
    A round trip that keeps making progress can take longer in total.

    Args:
        trust_store: Verification roots
        jar: Cookie jar the client reads and writes
        timeout: Connect, read, write and pool timeout, in seconds
        user_agent: User-Agent header value
    """
    return httpx.Client(
        verify=trust_store.context,
        cookies=jar.jar,
        timeout=httpx.Timeout(timeout),
        headers=default_headers(user_agent),
        follow_redirects=True,
    )
