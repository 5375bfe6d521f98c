"""
cernsso Exception Types

Custom exceptions for SSO negotiation errors.
"""

from typing import Optional

from cernsso.core.types import LoginErrorKind


class SSOError(Exception):
    """Base exception for all cernsso errors."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class CredentialError(SSOError):
    """
    No usable Kerberos credential.

    Raised when the ticket cache cannot be loaded, holds no valid ticket,
    or the credential provider was already released. Never retried: there
    is no other credential to fall back to.
    """

    pass


class TrustStoreError(SSOError):
    """
    TLS trust roots could not be assembled.

    Fatal for any code path that needs network egress.
    """

    pass


class ProtocolError(SSOError):
    """
    Protocol-level error.

    The identity broker answered with a shape we do not understand:
    a malformed token-exchange fragment, a missing login form, etc.
    This usually means the broker changed behavior or the user is not
    actually authenticated upstream.
    """

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        if url:
            message = f"{message} (url={url})"
        super().__init__(message)
        self.url = url


class ExtractionError(ProtocolError):
    """
    An expected HTML element or form field is absent.

    The page was found but cannot be replayed.
    """

    def __init__(
        self,
        message: str,
        element: str = "",
        url: Optional[str] = None,
    ) -> None:
        super().__init__(message, url=url)
        self.element = element


class LoginError(SSOError):
    """
    A login round trip failed.

    Covers non-200 answers, timeouts and transport-level I/O failures.
    Callers may retry a fresh login after fixing the cause (for example
    renewing the Kerberos ticket).
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        kind: LoginErrorKind = LoginErrorKind.STATUS,
    ) -> None:
        details = []
        if status_code is not None:
            details.append(f"status={status_code}")
        if url:
            details.append(f"url={url}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message, code=status_code)
        self.url = url
        self.status_code = status_code
        self.kind = kind


class StateError(SSOError):
    """
    Invalid state transition.

    An event arrived that the negotiation does not accept in its
    current state.
    """

    pass


class InvariantViolation(SSOError):
    """
    Session invariant was violated.

    The negotiation reached a state that would expose an inconsistent
    cookie set.
    """

    pass
