"""
cernsso Login Types

States, context and events of the login negotiation.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Optional, Tuple

import attrs
from attrs import field

from cernsso.core.types import Cookie


# =============================================================================
# LOGIN STATE MACHINE
# =============================================================================


class LoginState(Enum):
    """
    Login negotiation states.

    START -> KEYSTONE | SAML (-> KERBEROS_BUTTON -> SAML) -> NORMALIZE -> DONE
    Any state but DONE may move to FAILED.
    """

    START = auto()
    KERBEROS_BUTTON = auto()
    KEYSTONE = auto()
    SAML = auto()
    NORMALIZE = auto()
    DONE = auto()
    FAILED = auto()


class Branch(Enum):
    """Identity broker behavior observed after the first round trip."""

    KEYSTONE = auto()
    SAML = auto()


@attrs.define(frozen=True)
class LoginContext:
    """
    Login negotiation context.

    Cookies stay private; traces record their names only.
    """

    login_url: str
    final_url: Optional[str] = None
    branch: Optional[Branch] = None
    action: Optional[str] = None
    posted_fields: Tuple[str, ...] = ()
    cookie_count: int = 0
    error_message: str = ""
    _cookies: Tuple[Cookie, ...] = field(default=(), repr=False, alias="cookies")

    @property
    def cookies(self) -> Tuple[Cookie, ...]:
        return self._cookies


# =============================================================================
# EVENTS
# =============================================================================


@attrs.define(frozen=True, slots=True)
class KeystoneRedirectReceived:
    """Event: login URL ended on the token-exchange host."""

    final_url: str


@attrs.define(frozen=True, slots=True)
class LoginPageReceived:
    """Event: login URL answered 200 with an HTML page."""

    final_url: str


@attrs.define(frozen=True, slots=True)
class KerberosButtonFollowed:
    """Event: the broker's login page was left through its Kerberos button."""

    url: str


@attrs.define(frozen=True, slots=True)
class GrantPosted:
    """Event: token-exchange grant re-posted from the URL fragment."""

    action: str
    field_names: Tuple[str, ...]


@attrs.define(frozen=True, slots=True)
class AssertionPosted:
    """Event: SAML assertion replayed to the service provider."""

    action: str
    field_names: Tuple[str, ...]


@attrs.define(frozen=True, slots=True)
class CookiesNormalized:
    """Event: session cookie set computed from the jar."""

    _cookies: Tuple[Cookie, ...] = field(repr=False, alias="cookies")

    @property
    def cookies(self) -> Tuple[Cookie, ...]:
        return self._cookies


@attrs.define(frozen=True, slots=True)
class NegotiationFailed:
    """Event: a round trip or extraction failed."""

    error_message: str
