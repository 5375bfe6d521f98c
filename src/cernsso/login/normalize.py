"""
cernsso Cookie Normalization

Turns the transport's cookie jar into the session cookie set.

Domain, path and secure flag are always taken from the endpoint the cookie
was read against, not from what the server declared.
"""

from __future__ import annotations

import http.cookiejar
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional

import httpx
import structlog

from cernsso.core.types import Cookie, SameSite
from cernsso.transport.cookie_jar import SessionCookieJar

logger = structlog.get_logger()


def _nonstandard(cookie: http.cookiejar.Cookie, name: str) -> Any:
    for key in (name, name.lower()):
        if cookie.has_nonstandard_attr(key):
            return cookie.get_nonstandard_attr(key)
    return None


def cookie_from_jar(
    cookie: http.cookiejar.Cookie,
    endpoint: httpx.URL,
    ttl: timedelta,
    now: Optional[datetime] = None,
) -> Cookie:
    """
    Normalize one jar cookie against an endpoint.

    Args:
        cookie: Cookie as stored by the transport
        endpoint: URL the cookie was read for
        ttl: Lifetime assigned when the server gave no expiry
        now: Reference time (default: current UTC time)
    """
    now = now or datetime.now(timezone.utc)
    if cookie.expires:
        expires = datetime.fromtimestamp(cookie.expires, tz=timezone.utc)
    else:
        expires = now + ttl

    http_only = any(
        cookie.has_nonstandard_attr(key) for key in ("HttpOnly", "httponly", "HTTPOnly")
    )

    return Cookie(
        name=cookie.name,
        value=cookie.value or "",
        domain=endpoint.host,
        path=endpoint.path or "/",
        expires=expires,
        secure=endpoint.scheme == "https",
        http_only=http_only,
        same_site=SameSite.parse(_nonstandard(cookie, "SameSite")),
    )


def normalize_cookies(
    jar: SessionCookieJar,
    endpoints: Iterable[str],
    ttl: timedelta,
    now: Optional[datetime] = None,
    log: Any = None,
) -> List[Cookie]:
    """
    Build a fresh session cookie set from the jar.

    For each endpoint, in order, the cookies the jar would send to it are
    normalized and appended. The result replaces any previous set.
    """
    log = log or logger
    now = now or datetime.now(timezone.utc)

    cookies: List[Cookie] = []
    for url in endpoints:
        endpoint = httpx.URL(url)
        found = jar.cookies(endpoint)
        cookies.extend(cookie_from_jar(c, endpoint, ttl, now) for c in found)
        log.debug("cookies_collected", endpoint=url, names=[c.name for c in found])

    log.info("cookies_normalized", count=len(cookies))
    return cookies
