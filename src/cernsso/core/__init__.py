"""
cernsso Core Module

Provides foundational types and abstractions used by the transport and
login layers.

Components:
- types: Cookie record and enums
- config: Session configuration
- state_machine: Base state machine with invariant checking
- exceptions: Custom exception types
"""

from cernsso.core.types import Cookie, LoginErrorKind, SameSite
from cernsso.core.config import SESSION_COOKIE, SSOConfig
from cernsso.core.state_machine import StateMachineBase, Transition
from cernsso.core.exceptions import (
    SSOError,
    CredentialError,
    TrustStoreError,
    ProtocolError,
    ExtractionError,
    LoginError,
    StateError,
    InvariantViolation,
)

__all__ = [
    # Types
    "Cookie",
    "LoginErrorKind",
    "SameSite",
    # Config
    "SESSION_COOKIE",
    "SSOConfig",
    # State Machine
    "StateMachineBase",
    "Transition",
    # Exceptions
    "SSOError",
    "CredentialError",
    "TrustStoreError",
    "ProtocolError",
    "ExtractionError",
    "LoginError",
    "StateError",
    "InvariantViolation",
]
