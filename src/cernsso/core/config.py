"""
cernsso Configuration

Session configuration shared by the client and its login strategies.
"""

from __future__ import annotations

import os
from datetime import timedelta
from typing import Mapping, Optional, Tuple

import attrs
from attrs import field, validators


DEFAULT_AUTH_SERVER = "auth.cern.ch"
DEFAULT_KEYSTONE_HOST = "keystone.cern.ch"
DEFAULT_REALMS = ("cern", "kerberos")
DEFAULT_USER_AGENT = "cernsso/0.1"

# Cookie whose expiry defines session validity.
SESSION_COOKIE = "KEYCLOAK_SESSION"

# Installed by the CERN-CA-certs package on CERN-managed hosts.
DEFAULT_ORGANIZATION_CERTS = (
    "/etc/pki/tls/certs/CERN_Root_Certification_Authority_2.pem",
    "/etc/pki/tls/certs/CERN_Grid_Certification_Authority.pem",
)


def _positive(instance: "SSOConfig", attribute: attrs.Attribute, value: object) -> None:
    zero = timedelta(0) if isinstance(value, timedelta) else 0
    if value <= zero:  # type: ignore[operator]
        raise ValueError(f"{attribute.name} must be positive, got {value!r}")


def _split(value: str, sep: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in value.split(sep) if part.strip())


@attrs.define(frozen=True)
class SSOConfig:
    """
    SSO session configuration.

    Attributes:
        auth_server: Hostname of the identity broker (Keycloak)
        keystone_host: Hostname of the token-exchange service
        realms: Realm names whose cookie paths are collected after login
        validity_margin: Minimum remaining lifetime of a usable session cookie
        cookie_ttl: Lifetime given to cookies the server sent without expiry
        timeout: Per network operation timeout (connect, read, write, pool), in seconds
        user_agent: User-Agent sent with every request
        organization_certs: Organization CA files added to the system roots;
            None selects the default CERN CA locations
        krb5_config: Kerberos configuration file (None: KRB5_CONFIG or /etc/krb5.conf)
        ccache: Kerberos ticket cache (None: KRB5CCNAME or the per-user default)
        browser_allowlist: Extra hosts the browser strategy may negotiate with
    """

    auth_server: str = field(default=DEFAULT_AUTH_SERVER, validator=validators.min_len(1))
    keystone_host: str = field(default=DEFAULT_KEYSTONE_HOST, validator=validators.min_len(1))
    realms: Tuple[str, ...] = field(default=DEFAULT_REALMS, converter=tuple)
    validity_margin: timedelta = field(
        default=timedelta(minutes=10),
        validator=validators.instance_of(timedelta),
    )
    cookie_ttl: timedelta = field(
        default=timedelta(hours=6),
        validator=[validators.instance_of(timedelta), _positive],
    )
    timeout: float = field(default=10.0, converter=float, validator=_positive)
    user_agent: str = DEFAULT_USER_AGENT
    organization_certs: Optional[Tuple[str, ...]] = field(
        default=None,
        converter=attrs.converters.optional(tuple),
    )
    krb5_config: Optional[str] = None
    ccache: Optional[str] = None
    browser_allowlist: Tuple[str, ...] = field(default=("login.cern.ch",), converter=tuple)

    @property
    def realm_urls(self) -> Tuple[str, ...]:
        """Realm endpoints on the auth server whose cookies make up the session."""
        return tuple(
            f"https://{self.auth_server}/auth/realms/{realm}/" for realm in self.realms
        )

    def evolve(self, **changes: object) -> "SSOConfig":
        """Return a copy with the given fields replaced."""
        return attrs.evolve(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "SSOConfig":
        """
        Create config from environment variables.

        Recognized variables:
            CERN_SSO_AUTH_SERVER, CERN_SSO_KEYSTONE_HOST,
            CERN_SSO_REALMS (comma separated), CERN_SSO_TIMEOUT (seconds),
            CERN_SSO_CA_CERTS (os.pathsep separated), KRB5_CONFIG, KRB5CCNAME
        """
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        if env.get("CERN_SSO_AUTH_SERVER"):
            kwargs["auth_server"] = env["CERN_SSO_AUTH_SERVER"]
        if env.get("CERN_SSO_KEYSTONE_HOST"):
            kwargs["keystone_host"] = env["CERN_SSO_KEYSTONE_HOST"]
        if env.get("CERN_SSO_REALMS"):
            kwargs["realms"] = _split(env["CERN_SSO_REALMS"], ",")
        if env.get("CERN_SSO_TIMEOUT"):
            kwargs["timeout"] = float(env["CERN_SSO_TIMEOUT"])
        if env.get("CERN_SSO_CA_CERTS"):
            kwargs["organization_certs"] = _split(env["CERN_SSO_CA_CERTS"], os.pathsep)
        if env.get("KRB5_CONFIG"):
            kwargs["krb5_config"] = env["KRB5_CONFIG"]
        if env.get("KRB5CCNAME"):
            kwargs["ccache"] = env["KRB5CCNAME"]

        return cls(**kwargs)
