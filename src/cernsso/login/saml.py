"""
cernsso SAML POST-binding Helpers

Locating the identity broker's auto-submitting form, including the detour
through the broker's "Sign in with Kerberos" button when the broker shows
its login page instead of answering right away.
"""

from __future__ import annotations

from typing import Optional, Union

import httpx

from cernsso.core.exceptions import ExtractionError
from cernsso.login.extractors import (
    PostBindingForm,
    find_anchor_href,
    find_post_binding_form,
    parse_html,
)

POST_BINDING_FORM = "saml-post-binding"
KERBEROS_BUTTON_ID = "social-kerberos"


def locate_form(page: Union[bytes, str], page_url: httpx.URL) -> Optional[PostBindingForm]:
    """
    Find the POST-binding form of a page.

    Raises:
        ExtractionError: the form lacks a required field (with the page URL)
    """
    try:
        return find_post_binding_form(parse_html(page), POST_BINDING_FORM)
    except ExtractionError as e:
        raise ExtractionError(
            f"could not replay SAML post form: {e.message}",
            element=e.element,
            url=str(page_url),
        ) from e


def kerberos_button_url(page: Union[bytes, str], auth_server: str) -> Optional[str]:
    """
    Absolute URL behind the broker's Kerberos login button, if the page
    has one. Relative hrefs resolve against the auth server.
    """
    href = find_anchor_href(parse_html(page), KERBEROS_BUTTON_ID)
    if href is None:
        return None
    return str(httpx.URL(f"https://{auth_server}/").join(href))


def resolve_action(form: PostBindingForm, page_url: httpx.URL) -> str:
    """Form action resolved against the page it came from."""
    return str(page_url.join(form.action))
