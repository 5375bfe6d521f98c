"""
cernsso Trust Store

Builds the TLS trust store used to talk to the SSO endpoints: the system
roots plus the organization root and grid certification authorities.
"""

from __future__ import annotations

import os
import ssl
from typing import Any, Optional, Sequence, Tuple

import attrs
import structlog

from cernsso.core.config import DEFAULT_ORGANIZATION_CERTS
from cernsso.core.exceptions import TrustStoreError

logger = structlog.get_logger()


@attrs.define(frozen=True)
class TrustStore:
    """
    Certificate pool ready for an HTTP client.

    Attributes:
        context: SSL context verifying against system + organization roots
        authorities: Organization CA files that were added
    """

    context: ssl.SSLContext
    authorities: Tuple[str, ...] = ()


def system_roots_available() -> bool:
    """
    Check whether the platform exposes a default CA file or directory.

    Certificates in a CA directory are loaded on demand, so a context
    backed only by one reports no CAs before its first handshake.
    """
    paths = ssl.get_default_verify_paths()
    for location in (paths.cafile, paths.capath):
        if location and os.path.exists(location):
            return True
    return False


@attrs.define
class TrustStoreProvider:
    """
    Trust store construction.

    Example:
        store = TrustStoreProvider().build()
        client = httpx.Client(verify=store.context)

    Attributes:
        organization_certs: CA files to add; None selects the default CERN
            CA locations, which are skipped when absent
    """

    organization_certs: Optional[Sequence[str]] = None
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), alias="logger")

    def build(self) -> TrustStore:
        """
        Build a fresh trust store.

        Raises:
            TrustStoreError: system roots unavailable, or a configured CA
                file missing or unreadable
        """
        try:
            context = ssl.create_default_context()
        except (ssl.SSLError, OSError) as e:
            raise TrustStoreError(f"could not load system cert pool: {e}") from e

        if not context.cert_store_stats().get("x509_ca") and not system_roots_available():
            raise TrustStoreError("could not load system cert pool: no CA certificates found")

        explicit = self.organization_certs is not None
        candidates = tuple(self.organization_certs) if explicit else DEFAULT_ORGANIZATION_CERTS

        added = []
        for path in candidates:
            if not os.path.exists(path):
                if explicit:
                    raise TrustStoreError(f"organization certificate {path!r} does not exist")
                self._logger.warning("trust_store_ca_skipped", path=path, reason="missing")
                continue
            try:
                context.load_verify_locations(cafile=path)
            except (ssl.SSLError, OSError) as e:
                raise TrustStoreError(f"could not load organization certificate {path!r}: {e}") from e
            added.append(path)

        self._logger.debug("trust_store_built", authorities=added)
        return TrustStore(context=context, authorities=tuple(added))
