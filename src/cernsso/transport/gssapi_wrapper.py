"""
cernsso GSSAPI Wrapper

Credential provider backed by the user's Kerberos ticket cache, used to
answer SPNEGO (HTTP Negotiate) challenges.

GSSAPI provides:
- Native Kerberos credential management
- Ticket cache integration (ccache)
- Service ticket acquisition for HTTP/<host> principals

httpx-gssapi turns the cached credentials into Negotiate headers.

Requirements:
- gssapi and httpx-gssapi packages (pip install cernsso[kerberos])
- MIT Kerberos or Heimdal libraries installed
- A ticket obtained beforehand with kinit
"""

from __future__ import annotations

import os
import re
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Dict, Generator, List, Mapping, MutableMapping, Optional, Tuple

import attrs
import httpx
import structlog

from cernsso.core.exceptions import CredentialError

logger = structlog.get_logger()

# Check if GSSAPI is available
try:
    import gssapi
    from httpx_gssapi import DISABLED, HTTPSPNEGOAuth
    from httpx_gssapi.exceptions import SPNEGOExchangeError
    _gssapi_available = True
    _gssapi_error = None
    _GSS_ERRORS: Tuple[type, ...] = (gssapi.exceptions.GSSError, SPNEGOExchangeError)
except ImportError as e:
    gssapi = None  # type: ignore
    HTTPSPNEGOAuth = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)
    _GSS_ERRORS = ()
    logger.debug("gssapi_not_available", message="Install cernsso[kerberos] for Kerberos support")
except OSError as e:
    # GSSAPI installed but underlying library not available
    gssapi = None  # type: ignore
    HTTPSPNEGOAuth = None  # type: ignore
    _gssapi_available = False
    _gssapi_error = str(e)
    _GSS_ERRORS = ()
    logger.warning("gssapi_library_error", message=str(e))


DEFAULT_KRB5_CONFIG = "/etc/krb5.conf"

# Directives MIT/Heimdal understand but this reader does not follow.
_UNSUPPORTED_DIRECTIVES = ("include", "includedir", "module")


_TYPED_CCACHE = re.compile(r"^[A-Z]+:")


def gssapi_available() -> bool:
    """Check if GSSAPI is available."""
    return _gssapi_available


# =============================================================================
# TICKET CACHE AND CONFIGURATION DISCOVERY
# =============================================================================


def cache_path(environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Locate the Kerberos ticket cache.

    KRB5CCNAME wins; a FILE: prefix is stripped. Other cache types
    (KEYRING:, KCM:, DIR:) are returned unchanged. Otherwise the per-user
    default <tmpdir>/krb5cc_<uid> is used.
    """
    env = os.environ if environ is None else environ
    value = env.get("KRB5CCNAME", "")
    if value:
        if value.startswith("FILE:"):
            return value[len("FILE:"):]
        return value

    uid = os.getuid() if hasattr(os, "getuid") else ""
    return os.path.join(tempfile.gettempdir(), f"krb5cc_{uid}")


def _is_file_cache(name: str) -> bool:
    return not _TYPED_CCACHE.match(name)


@attrs.define(frozen=True)
class Krb5Config:
    """
    Parsed Kerberos configuration.

    Sections map to nested dicts; leaf values are lists of strings since
    relations such as `kdc` may repeat.
    """

    path: str
    sections: Dict[str, Dict[str, Any]] = attrs.Factory(dict)
    ignored: Tuple[str, ...] = ()

    @property
    def default_realm(self) -> Optional[str]:
        values = self.sections.get("libdefaults", {}).get("default_realm")
        return values[0] if values else None

    @property
    def realms(self) -> Tuple[str, ...]:
        return tuple(self.sections.get("realms", {}))


def parse_krb5_config(text: str, path: str = "<string>", log: Any = None) -> Krb5Config:
    """
    Parse krb5.conf content.

    Unsupported or unparseable directives are skipped and reported in
    `ignored` instead of failing the whole file.
    """
    log = log or logger
    sections: Dict[str, Dict[str, Any]] = {}
    ignored: List[str] = []
    stack: List[Dict[str, Any]] = []

    def skip(lineno: int, line: str) -> None:
        ignored.append(line)
        log.debug("krb5_config_directive_ignored", path=path, line=lineno, directive=line)

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line[0] in "#;":
            continue

        if line.startswith("[") and line.endswith("]"):
            stack = [sections.setdefault(line[1:-1].strip(), {})]
            continue

        if line.split(None, 1)[0] in _UNSUPPORTED_DIRECTIVES:
            skip(lineno, line)
            continue

        if line == "}":
            if len(stack) > 1:
                stack.pop()
            else:
                skip(lineno, line)
            continue

        key, sep, value = line.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key or not stack:
            skip(lineno, line)
            continue

        if value == "{":
            child: Dict[str, Any] = {}
            stack[-1][key] = child
            stack.append(child)
            continue

        # A trailing '*' marks the relation final; it does not change its value.
        entry = stack[-1].setdefault(key.rstrip("*").strip(), [])
        if isinstance(entry, list):
            entry.append(value.rstrip("*").strip())
        else:
            skip(lineno, line)

    return Krb5Config(path=path, sections=sections, ignored=tuple(ignored))


def load_krb5_config(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    log: Any = None,
) -> Krb5Config:
    """
    Load the system Kerberos configuration.

    A missing file yields an empty configuration (the Kerberos library
    falls back to DNS); an unreadable one raises CredentialError.
    """
    env = os.environ if environ is None else environ
    log = log or logger
    path = path or env.get("KRB5_CONFIG") or DEFAULT_KRB5_CONFIG

    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            text = f.read()
    except FileNotFoundError:
        log.warning("krb5_config_missing", path=path)
        return Krb5Config(path=path)
    except OSError as e:
        raise CredentialError(f"could not load kerberos-5 configuration {path!r}: {e}") from e

    config = parse_krb5_config(text, path=path, log=log)
    if config.ignored:
        log.info("krb5_config_partially_parsed", path=path, ignored=len(config.ignored))
    return config



def apply_krb5_config(
    config: Krb5Config,
    environ: Optional[MutableMapping[str, str]] = None,
    log: Any = None,
) -> None:
    """
    Point the Kerberos library at a configuration file.

    libkrb5 reads its configuration location from KRB5_CONFIG whenever a
    context is created, so the path is exported before credentials are
    acquired.
    """
    env = os.environ if environ is None else environ
    log = log or logger
    if env.get("KRB5_CONFIG") == config.path:
        return
    env["KRB5_CONFIG"] = config.path
    log.info("krb5_config_applied", path=config.path)


def hostbased_name(service_principal: str) -> str:
    """
    Convert a service principal to GSSAPI host-based form.

    "HTTP/auth.cern.ch" -> "HTTP@auth.cern.ch"
    """
    if "@" in service_principal:
        return service_principal
    service, sep, host = service_principal.partition("/")
    if not sep or not service or not host:
        raise ValueError(f"Invalid service principal: {service_principal!r}")
    return f"{service}@{host}"


# =============================================================================
# CREDENTIAL PROVIDERS
# =============================================================================


class CredentialProvider(ABC):
    """
    Source of SPNEGO authentication for HTTP requests.

    A provider is single-owner: one session, one negotiation at a time.
    """

    @abstractmethod
    def spnego_auth(
        self,
        service_principal: Optional[str] = None,
        opportunistic: bool = False,
    ) -> httpx.Auth:
        """
        Build an httpx auth answering Negotiate challenges.

        Args:
            service_principal: Target principal, e.g. "HTTP/auth.cern.ch";
                None targets HTTP/<host> of each request
            opportunistic: Attach a token before any challenge is received

        Raises:
            CredentialError: no usable ticket, or provider released
        """
        ...

    @abstractmethod
    def release(self) -> None:
        """Invalidate the provider. Idempotent."""
        ...

    @property
    @abstractmethod
    def released(self) -> bool:
        ...

    def sign(self, request: httpx.Request, service_principal: str) -> httpx.Request:
        """
        Attach a negotiation token to an outgoing request.

        Args:
            request: Request to sign (modified in place)
            service_principal: Target principal, e.g. "HTTP/auth.cern.ch"

        Returns:
            The signed request
        """
        if self.released:
            raise CredentialError("credential was released")

        flow = self.spnego_auth(service_principal, opportunistic=True).sync_auth_flow(request)
        try:
            return next(flow)
        finally:
            flow.close()


class KerberosAuth(httpx.Auth):
    """
    HTTPSPNEGOAuth whose GSSAPI failures surface as CredentialError.
    """

    def __init__(self, spnego: Any, target: str) -> None:
        self._spnego = spnego
        self._target = target

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        try:
            yield from self._spnego.sync_auth_flow(request)
        except _GSS_ERRORS as e:
            raise CredentialError(
                f"could not create negotiation token for {self._target or request.url.host!r}: {e}"
            ) from e


@attrs.define
class KerberosCredential(CredentialProvider):
    """
    Credential provider backed by a Kerberos ticket cache.

    Example:
        cred = KerberosCredential.from_ccache()
        cred.sign(request, "HTTP/auth.cern.ch")
        client.get(url, auth=cred.spnego_auth())
        cred.release()
    """

    _creds: Any = attrs.field(default=None, repr=False, alias="creds")
    ccache: str = ""
    principal: Optional[str] = None
    config: Optional[Krb5Config] = None
    _released: bool = attrs.field(default=False, init=False)
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), alias="logger")

    @classmethod
    def from_ccache(
        cls,
        ccache: Optional[str] = None,
        config_path: Optional[str] = None,
        logger: Any = None,
    ) -> "KerberosCredential":
        """
        Load initiator credentials from a ticket cache.

        The Kerberos configuration is read and exported to the Kerberos
        library before the cache is opened.

        Args:
            ccache: Cache name (None: KRB5CCNAME or the per-user default)
            config_path: krb5.conf location (None: KRB5_CONFIG or /etc/krb5.conf)
            logger: structlog logger

        Raises:
            CredentialError: library missing, cache unreadable or no valid ticket
        """
        log = logger or structlog.get_logger()
        config = load_krb5_config(config_path, log=log)
        apply_krb5_config(config, log=log)

        if not _gssapi_available:
            raise CredentialError(
                f"GSSAPI library not available ({_gssapi_error}); install cernsso[kerberos]"
            )

        name = ccache or cache_path()
        if name.startswith("FILE:"):
            name = name[len("FILE:"):]
        if _is_file_cache(name) and not os.path.exists(name):
            raise CredentialError(
                f"could not load kerberos-5 cached credentials: no ticket cache at {name!r}"
            )

        try:
            creds = gssapi.Credentials(usage="initiate", store={"ccache": name})
            lifetime = creds.lifetime
            principal = str(creds.name) if creds.name else None
        except (gssapi.exceptions.GSSError, NotImplementedError) as e:
            raise CredentialError(
                f"could not load kerberos-5 cached credentials from {name!r}: {e}"
            ) from e

        if not lifetime:
            raise CredentialError(f"no usable ticket in kerberos-5 cache {name!r}")

        log.info(
            "kerberos_credential_loaded",
            principal=principal,
            ccache=name,
            lifetime=lifetime,
            default_realm=config.default_realm,
        )

        return cls(creds=creds, ccache=name, principal=principal, config=config, logger=log)

    @property
    def released(self) -> bool:
        return self._released

    @property
    def lifetime(self) -> Optional[int]:
        """Remaining credential lifetime in seconds."""
        if self._creds is None:
            return None
        return self._creds.lifetime

    def spnego_auth(
        self,
        service_principal: Optional[str] = None,
        opportunistic: bool = False,
    ) -> httpx.Auth:
        if self._released or self._creds is None:
            raise CredentialError("kerberos-5 credential was released")
        if not _gssapi_available:
            raise CredentialError(f"GSSAPI library not available: {_gssapi_error}")

        options: Dict[str, Any] = {}
        target = ""
        if service_principal is not None:
            target = hostbased_name(service_principal)
            try:
                options["target_name"] = gssapi.Name(target, gssapi.NameType.hostbased_service)
            except gssapi.exceptions.GSSError as e:
                raise CredentialError(f"invalid service principal {service_principal!r}: {e}") from e

        self._logger.debug(
            "spnego_auth_created",
            target=target or "HTTP@<request host>",
            opportunistic=opportunistic,
        )
        spnego = HTTPSPNEGOAuth(
            creds=self._creds,
            opportunistic_auth=opportunistic,
            mutual_authentication=DISABLED,
            **options,
        )
        return KerberosAuth(spnego, target)

    def release(self) -> None:
        if self._released:
            return
        self._creds = None
        self._released = True
        self._logger.debug("kerberos_credential_released", ccache=self.ccache)
