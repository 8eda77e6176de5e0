from __future__ import annotations

import logging
import re
from typing import List, Optional

from cssselect import SelectorError
from lxml import etree
from lxml.html import HtmlElement

from ..index.schema import Locator
from .dom import is_element, tag_of

logger = logging.getLogger(__name__)

_SIMPLE_ID = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")


def _same_tag_siblings(el: HtmlElement) -> List[HtmlElement]:
    parent = el.getparent()
    if parent is None:
        return [el]
    t = tag_of(el)
    return [c for c in parent if is_element(c) and tag_of(c) == t]


def css_path(el: HtmlElement) -> Optional[str]:
    """Selector from the document root (or nearest id) down to ``el``."""
    parts: List[str] = []
    node: Optional[HtmlElement] = el
    while node is not None and is_element(node):
        el_id = node.get("id")
        if el_id and _SIMPLE_ID.match(el_id):
            parts.append(f"#{el_id}")
            break
        t = tag_of(node)
        sibs = _same_tag_siblings(node)
        if len(sibs) > 1:
            t += f":nth-of-type({sibs.index(node) + 1})"
        parts.append(t)
        node = node.getparent()
    if not parts:
        return None
    return " > ".join(reversed(parts))


def structural_path(el: HtmlElement) -> str:
    el_id = el.get("id")
    if el_id and '"' not in el_id:
        return f'//*[@id="{el_id}"]'
    steps: List[str] = []
    node: Optional[HtmlElement] = el
    while node is not None and is_element(node):
        sibs = _same_tag_siblings(node)
        steps.append(f"{tag_of(node)}[{sibs.index(node) + 1}]")
        node = node.getparent()
    return "/" + "/".join(reversed(steps))


def build_locator(el: HtmlElement) -> Locator:
    return Locator(css_selector=css_path(el), xpath=structural_path(el))


def _root_of(document) -> HtmlElement:
    if hasattr(document, "getroot"):
        return document.getroot()
    return document.getroottree().getroot()


def resolve(locator: Locator, document) -> Optional[HtmlElement]:
    """Re-find the node a locator points at. ``None`` when neither path matches."""
    root = _root_of(document)
    if locator.css_selector:
        try:
            found = root.cssselect(locator.css_selector)
        except SelectorError as e:
            logger.debug("Selector %r rejected: %s", locator.css_selector, e)
            found = []
        if found:
            return found[0]
    if locator.xpath:
        try:
            found = root.xpath(locator.xpath)
        except etree.XPathError as e:
            logger.debug("XPath %r rejected: %s", locator.xpath, e)
            found = []
        for node in found:
            if isinstance(node, etree._Element) and is_element(node):
                return node
    logger.debug("Locator did not resolve: %s", locator.model_dump())
    return None
