"""
cernsso Core Types

Fundamental type definitions shared by the transport and login layers.

Design Principles:
- Immutable: cookie records use frozen attrs
- Validated: expiry is always a concrete UTC timestamp
- Secret-aware: cookie values never appear in reprs
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum, auto
from typing import Optional

import attrs
from attrs import field, validators


# =============================================================================
# ENUMS
# =============================================================================


class SameSite(Enum):
    """Cookie same-site policy."""

    DEFAULT = auto()
    LAX = auto()
    STRICT = auto()
    NONE = auto()

    @classmethod
    def parse(cls, value: Optional[str]) -> SameSite:
        """
        Parse a SameSite attribute value.

        Unknown or missing values map to DEFAULT, like browsers do.
        """
        if not value:
            return cls.DEFAULT
        return {
            "lax": cls.LAX,
            "strict": cls.STRICT,
            "none": cls.NONE,
        }.get(value.strip().lower(), cls.DEFAULT)


class LoginErrorKind(Enum):
    """Failure class of a login round trip."""

    STATUS = auto()     # server answered with an unexpected status
    TIMEOUT = auto()    # round trip exceeded the per-request ceiling
    TRANSPORT = auto()  # connection/TLS/I/O failure


# =============================================================================
# COOKIE
# =============================================================================


def _require_utc(instance: Cookie, attribute: attrs.Attribute, value: datetime) -> None:
    if value.tzinfo is None:
        raise ValueError(f"{attribute.name} must be timezone-aware")


@attrs.define(frozen=True, slots=True)
class Cookie:
    """
    Normalized HTTP cookie.

    INVARIANT: expires is a concrete timezone-aware timestamp. Cookies that
    reach the session cookie set have already been through normalization,
    which assigns the default TTL to session cookies.
    """

    name: str = field(validator=[validators.instance_of(str), validators.min_len(1)])
    value: str = field(repr=False)
    domain: str
    path: str
    expires: datetime = field(validator=[validators.instance_of(datetime), _require_utc])
    secure: bool = False
    http_only: bool = False
    same_site: SameSite = SameSite.DEFAULT

    @property
    def url(self) -> str:
        """Endpoint the cookie is scoped to."""
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.domain.lstrip('.')}{self.path}"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check whether the cookie expired at `now` (default: current time)."""
        now = now or datetime.now(timezone.utc)
        return self.expires <= now

    def to_dict(self) -> dict:
        """Convert to dictionary, e.g. for a cookie-file writer."""
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "expires": self.expires.isoformat(),
            "secure": self.secure,
            "http_only": self.http_only,
            "same_site": self.same_site.name,
        }
