"""
cernsso Browser Login Strategy

Drives a headless Chromium through the broker's login page and reads the
cookies it ends up with. Chromium performs SPNEGO itself for the hosts of
its auth-server allowlist.

Requirements:
- playwright Python package (pip install cernsso[browser])
- A Chromium build installed with `playwright install chromium`
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx
import structlog

from cernsso.core.exceptions import LoginError
from cernsso.core.types import Cookie, LoginErrorKind, SameSite
from cernsso.login.normalize import normalize_cookies
from cernsso.login.saml import KERBEROS_BUTTON_ID
from cernsso.login.strategy import LoginEnvironment, LoginStrategy
from cernsso.transport.cookie_jar import domain_match

logger = structlog.get_logger()

# Check if playwright is available
try:
    from playwright.sync_api import Error as PlaywrightError
    from playwright.sync_api import TimeoutError as PlaywrightTimeout
    from playwright.sync_api import sync_playwright

    _playwright_available = True
    _BROWSER_ERRORS: tuple = (PlaywrightError,)
    _WAIT_TIMEOUTS: tuple = (PlaywrightTimeout,)
except ImportError:
    sync_playwright = None  # type: ignore
    _playwright_available = False
    _BROWSER_ERRORS = ()
    _WAIT_TIMEOUTS = ()
    logger.debug("playwright_not_available", message="Install cernsso[browser] for browser login")


KERBEROS_BUTTON_SELECTOR = f'a[id="{KERBEROS_BUTTON_ID}"]'


def playwright_available() -> bool:
    """Check if playwright is available."""
    return _playwright_available


def cookie_from_browser(
    raw: Mapping[str, Any],
    ttl: timedelta,
    now: Optional[datetime] = None,
) -> Cookie:
    """
    Convert a cookie as reported by the browser.

    Session cookies (expires -1 or 0) are given now + ttl.
    """
    now = now or datetime.now(timezone.utc)
    expires = raw.get("expires")
    if expires is None or expires <= 0:
        expiry = now + ttl
    else:
        expiry = datetime.fromtimestamp(expires, tz=timezone.utc)

    return Cookie(
        name=raw["name"],
        value=raw.get("value", ""),
        domain=raw.get("domain", ""),
        path=raw.get("path") or "/",
        expires=expiry,
        secure=bool(raw.get("secure", False)),
        http_only=bool(raw.get("httpOnly", False)),
        same_site=SameSite.parse(raw.get("sameSite")),
    )


class BrowserLoginStrategy(LoginStrategy):
    """
    Login negotiation through a scripted browser.

    Example:
        client = SSOClient(url, strategy=BrowserLoginStrategy())
        client.login()

    Args:
        playwright_factory: Callable returning a playwright context manager
            (default: sync_playwright)
        wait_selector: Element whose visibility marks the end of the login
        wait_timeout: Seconds to wait for it
        headless: Run Chromium without a window
    """

    name = "browser"

    def __init__(
        self,
        playwright_factory: Optional[Callable[[], Any]] = None,
        wait_selector: str = "h1",
        wait_timeout: float = 5.0,
        headless: bool = True,
    ) -> None:
        self._factory = playwright_factory
        self.wait_selector = wait_selector
        self.wait_timeout = wait_timeout
        self.headless = headless

    def launch_args(self, env: LoginEnvironment) -> List[str]:
        """Chromium flags enabling SPNEGO for the SSO hosts."""
        hosts = [env.config.auth_server]
        hosts.extend(h for h in env.config.browser_allowlist if h not in hosts)
        return [f"--auth-server-allowlist={','.join(hosts)}"]

    def perform(self, env: LoginEnvironment) -> List[Cookie]:
        factory = self._factory
        if factory is None:
            if not _playwright_available:
                raise LoginError(
                    "browser login requires playwright (pip install cernsso[browser])",
                    url=env.login_url,
                    kind=LoginErrorKind.TRANSPORT,
                )
            factory = sync_playwright

        env.logger.info("login_start", url=env.login_url, strategy=self.name)
        try:
            raw_cookies = self._run_browser(env, factory)
        except _BROWSER_ERRORS as e:
            env.logger.warning("login_failed", url=env.login_url, error=str(e))
            raise LoginError(
                f"browser login failed: {e}",
                url=env.login_url,
                kind=LoginErrorKind.TRANSPORT,
            ) from e

        now = datetime.now(timezone.utc)
        received = [cookie_from_browser(raw, env.config.cookie_ttl, now) for raw in raw_cookies]
        env.logger.debug("browser_cookies_read", names=[c.name for c in received])

        for url in env.endpoints:
            host = httpx.URL(url).host
            env.jar.set_cookies(url, [c for c in received if domain_match(host, c.domain or host)])

        cookies = normalize_cookies(
            env.jar,
            env.endpoints,
            env.config.cookie_ttl,
            now=now,
            log=env.logger,
        )
        env.logger.info("login_success", url=env.login_url, cookies=len(cookies))
        return cookies

    def _run_browser(self, env: LoginEnvironment, factory: Callable[[], Any]) -> List[Dict[str, Any]]:
        timeout_ms = env.config.timeout * 1000
        with factory() as p:
            browser = p.chromium.launch(headless=self.headless, args=self.launch_args(env))
            try:
                context = browser.new_context(user_agent=env.config.user_agent)
                page = context.new_page()
                page.goto(env.login_url, timeout=timeout_ms)
                page.click(KERBEROS_BUTTON_SELECTOR, timeout=timeout_ms)
                try:
                    page.wait_for_selector(
                        self.wait_selector,
                        state="visible",
                        timeout=self.wait_timeout * 1000,
                    )
                except _WAIT_TIMEOUTS:
                    env.logger.warning(
                        "browser_wait_timeout",
                        selector=self.wait_selector,
                        timeout=self.wait_timeout,
                    )
                return list(context.cookies())
            finally:
                browser.close()
