"""
cernsso Login Strategy

Interface of the "perform login" capability. A strategy takes the login
URL and the session's collaborators and returns the normalized cookie set;
the session picks one at construction time.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Tuple

import attrs
import httpx
import structlog

from cernsso.core.config import SSOConfig
from cernsso.core.types import Cookie
from cernsso.transport.cookie_jar import SessionCookieJar
from cernsso.transport.gssapi_wrapper import CredentialProvider


@attrs.define(frozen=True)
class LoginEnvironment:
    """
    Everything one login negotiation may use.

    Attributes:
        login_url: Protected resource to log into
        config: Session configuration
        http: HTTP client shared by all round trips
        jar: Cookie jar of that client
        credential: Negotiation token source
    """

    login_url: str
    config: SSOConfig
    http: httpx.Client
    jar: SessionCookieJar
    credential: CredentialProvider
    logger: Any = attrs.field(factory=lambda: structlog.get_logger())

    @property
    def endpoints(self) -> Tuple[str, ...]:
        """URLs whose cookies make up the session, in collection order."""
        return (self.login_url,) + self.config.realm_urls


class LoginStrategy(ABC):
    """Performs one login negotiation."""

    name: str = "abstract"

    @abstractmethod
    def perform(self, env: LoginEnvironment) -> List[Cookie]:
        """
        Run the negotiation once.

        Returns:
            Normalized session cookies

        Raises:
            LoginError, ProtocolError, CredentialError
        """
        ...

    def last_trace(self) -> List[Any]:
        """Transitions of the last negotiation, when the strategy records them."""
        return []
