"""
cernsso Cookie Jar

Process-local cookie store shared with the HTTP transport. Cookies are
looked up by URL (scheme + host + path), the way a browser would attach
them to a request.
"""

from __future__ import annotations

import http.cookiejar
from typing import Iterable, Iterator, List, Optional

import attrs
import httpx

from cernsso.core.types import Cookie, SameSite


def _effective_host(host: str) -> str:
    # Same rule as http.cookiejar.eff_request_host for dotless hosts.
    host = host.lower()
    if "." not in host:
        return host + ".local"
    return host


def domain_match(host: str, domain: str) -> bool:
    """
    Check whether a stored cookie domain applies to a request host.

    Domains with a leading dot were set with a Domain attribute and match
    subdomains; others are host-only cookies and match exactly.
    """
    host = host.lower()
    domain = domain.lower()
    if domain.startswith("."):
        return host == domain[1:] or host.endswith(domain)
    return host == domain or _effective_host(host) == domain


def path_match(request_path: str, cookie_path: str) -> bool:
    """RFC 6265 section 5.1.4 path matching."""
    request_path = request_path or "/"
    cookie_path = cookie_path or "/"
    if request_path == cookie_path:
        return True
    if not request_path.startswith(cookie_path):
        return False
    return cookie_path.endswith("/") or request_path[len(cookie_path)] == "/"


@attrs.define
class SessionCookieJar:
    """
    Cookie store keyed by URL.

    Wraps the http.cookiejar.CookieJar that httpx reads and writes, so
    cookies collected by the transport during a login are visible here.

    Example:
        jar = SessionCookieJar()
        client = httpx.Client(cookies=jar.jar)
        ...
        jar.cookies("https://auth.cern.ch/auth/realms/cern/")
    """

    _jar: http.cookiejar.CookieJar = attrs.field(
        factory=http.cookiejar.CookieJar,
        alias="jar",
    )

    @classmethod
    def for_client(cls, client: httpx.Client) -> "SessionCookieJar":
        """Wrap the jar of an existing httpx client."""
        return cls(jar=client.cookies.jar)

    @property
    def jar(self) -> http.cookiejar.CookieJar:
        """Underlying jar, for handing to an HTTP client."""
        return self._jar

    def cookies(self, url: str | httpx.URL) -> List[http.cookiejar.Cookie]:
        """
        Return the stored cookies applicable to a URL, in jar order.

        Expired cookies and secure cookies on plain http are skipped.
        """
        u = httpx.URL(str(url))
        host = u.host
        secure = u.scheme == "https"

        matches = []
        for cookie in self._jar:
            if cookie.is_expired():
                continue
            if cookie.secure and not secure:
                continue
            if not domain_match(host, cookie.domain):
                continue
            if not path_match(u.path, cookie.path):
                continue
            matches.append(cookie)
        return matches

    def set_cookies(self, url: str | httpx.URL, cookies: Iterable[Cookie]) -> None:
        """
        Store cookies as if received from a URL.

        Missing domains default to the URL host (host-only) and missing
        paths to the URL path.
        """
        u = httpx.URL(str(url))
        for c in cookies:
            domain = c.domain or u.host
            rest = {}
            if c.http_only:
                rest["HttpOnly"] = None
            if c.same_site is not SameSite.DEFAULT:
                rest["SameSite"] = c.same_site.name.capitalize()

            self._jar.set_cookie(
                http.cookiejar.Cookie(
                    version=0,
                    name=c.name,
                    value=c.value,
                    port=None,
                    port_specified=False,
                    domain=domain,
                    domain_specified=domain.startswith("."),
                    domain_initial_dot=domain.startswith("."),
                    path=c.path or u.path or "/",
                    path_specified=True,
                    secure=c.secure,
                    expires=int(c.expires.timestamp()),
                    discard=False,
                    comment=None,
                    comment_url=None,
                    rest=rest,
                )
            )

    def clear(self, domain: Optional[str] = None) -> None:
        """Remove all cookies, or those of one domain."""
        if domain is None:
            self._jar.clear()
        else:
            self._jar.clear(domain)

    def __iter__(self) -> Iterator[http.cookiejar.Cookie]:
        return iter(self._jar)

    def __len__(self) -> int:
        return len(self._jar)
