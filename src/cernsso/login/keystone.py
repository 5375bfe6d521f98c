"""
cernsso Keystone Grant Handling

The token-exchange service returns its grant as a URL fragment
(`#k1=v1&k2=v2`) instead of a cookie. The fragment is decoded and
re-posted as a form to the same endpoint.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple
from urllib.parse import unquote_plus, urlencode

import httpx

from cernsso.core.exceptions import ProtocolError


FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def decode_fragment(fragment: str) -> List[Tuple[str, str]]:
    """
    Decode a URL fragment into ordered key/value pairs.

    Pairs are separated by '&'; '+' decodes to a space and percent-escapes
    are resolved. Every pair must contain '='.

    Raises:
        ProtocolError: a pair is missing '=' (nothing is returned partially)
    """
    pairs = []
    for token in fragment.split("&"):
        key, sep, value = token.partition("=")
        if not sep:
            raise ProtocolError(f"malformed token-exchange fragment: {token!r} is missing '='")
        pairs.append((unquote_plus(key), unquote_plus(value)))
    return pairs


def encode_form(pairs: Sequence[Tuple[str, str]]) -> bytes:
    """Encode ordered pairs as an urlencoded form body."""
    return urlencode(list(pairs)).encode("ascii")


def base_url(url: httpx.URL) -> str:
    """scheme://host/path of a URL, without query or fragment."""
    return f"{url.scheme}://{url.netloc.decode('ascii')}{url.path}"


def raw_fragment(url: httpx.URL) -> str:
    """Fragment of a URL exactly as received, escapes still encoded."""
    return str(url).partition("#")[2]
