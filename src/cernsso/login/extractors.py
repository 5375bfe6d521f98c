"""
cernsso HTML Extractors

Pure functions reading the identity broker's pages. Both extractors share
one iterative depth-first walk, so arbitrarily deep or irregular documents
are handled without recursion and ties are broken by document order.
"""

from __future__ import annotations

from typing import Callable, Iterator, Optional, Tuple, Union

import attrs
from bs4 import BeautifulSoup
from bs4.element import Tag

from cernsso.core.exceptions import ExtractionError

SAML_RESPONSE_FIELD = "SAMLResponse"
RELAY_STATE_FIELD = "RelayState"
REQUIRED_POST_FIELDS = (SAML_RESPONSE_FIELD, RELAY_STATE_FIELD)


@attrs.define(frozen=True, slots=True)
class PostBindingForm:
    """
    Auto-submitting SAML POST-binding form.

    Attributes:
        action: Form action URL, as found in the page
        fields: Named input values in document order
    """

    action: str
    fields: Tuple[Tuple[str, str], ...] = ()

    def field(self, name: str) -> Optional[str]:
        """Value of the first input with the given name."""
        for key, value in self.fields:
            if key == name:
                return value
        return None


def parse_html(page: Union[bytes, str]) -> BeautifulSoup:
    """Parse a page into a traversable tree."""
    return BeautifulSoup(page, "html.parser")


def iter_elements(root: Tag) -> Iterator[Tag]:
    """
    Yield element nodes below (and including) root, depth-first in
    document order.
    """
    stack = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, Tag):
            yield node
            stack.extend(reversed([c for c in node.children if isinstance(c, Tag)]))


def find_first(root: Tag, predicate: Callable[[Tag], bool]) -> Optional[Tag]:
    """First element, in document order, satisfying predicate."""
    for node in iter_elements(root):
        if predicate(node):
            return node
    return None


def _attr(node: Tag, name: str) -> Optional[str]:
    value = node.get(name)
    if isinstance(value, list):
        return " ".join(value)
    return value


def find_anchor_href(doc: Tag, anchor_id: str) -> Optional[str]:
    """
    Return the href of the first element whose id is anchor_id.

    Multiple elements sharing the id are not an error: the first one in
    document order wins. Returns None when no such element (or no href)
    exists.
    """
    node = find_first(doc, lambda n: _attr(n, "id") == anchor_id)
    if node is None:
        return None
    return _attr(node, "href") or None


def find_post_binding_form(doc: Tag, form_name: str) -> Optional[PostBindingForm]:
    """
    Locate a POST-binding form and collect its named inputs.

    Returns:
        PostBindingForm, or None when no form carries form_name

    Raises:
        ExtractionError: the form exists but lacks SAMLResponse or RelayState
    """
    form = find_first(
        doc,
        lambda n: n.name == "form" and _attr(n, "name") == form_name,
    )
    if form is None:
        return None

    fields = []
    for node in iter_elements(form):
        if node.name != "input":
            continue
        name = _attr(node, "name")
        if name:
            fields.append((name, _attr(node, "value") or ""))

    present = {name for name, _ in fields}
    for required in REQUIRED_POST_FIELDS:
        if required not in present:
            raise ExtractionError(
                f"form {form_name!r} has no {required!r} input",
                element=required,
            )

    return PostBindingForm(action=_attr(form, "action") or "", fields=tuple(fields))
