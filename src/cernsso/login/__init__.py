"""
cernsso Login Layer

Login negotiation against the SSO gateway.

Components:
- extractors: HTML lookups over the broker's pages
- keystone: token-exchange fragment decoding
- saml: POST-binding form replay helpers
- normalize: session cookie normalization
- http_strategy: raw HTTP negotiation state machine
- browser: scripted-browser negotiation
"""

from cernsso.login.types import (
    Branch,
    LoginContext,
    LoginState,
)
from cernsso.login.extractors import (
    PostBindingForm,
    find_anchor_href,
    find_first,
    find_post_binding_form,
    iter_elements,
    parse_html,
)
from cernsso.login.keystone import decode_fragment, encode_form
from cernsso.login.normalize import cookie_from_jar, normalize_cookies
from cernsso.login.strategy import LoginEnvironment, LoginStrategy
from cernsso.login.http_strategy import HTTPLoginStrategy, LoginStateMachine
from cernsso.login.browser import BrowserLoginStrategy, cookie_from_browser

__all__ = [
    # State machine
    "Branch",
    "LoginContext",
    "LoginState",
    "LoginStateMachine",
    # Extractors
    "PostBindingForm",
    "find_anchor_href",
    "find_first",
    "find_post_binding_form",
    "iter_elements",
    "parse_html",
    # Keystone
    "decode_fragment",
    "encode_form",
    # Cookies
    "cookie_from_jar",
    "cookie_from_browser",
    "normalize_cookies",
    # Strategies
    "LoginEnvironment",
    "LoginStrategy",
    "HTTPLoginStrategy",
    "BrowserLoginStrategy",
]
