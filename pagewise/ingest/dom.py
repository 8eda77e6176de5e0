from __future__ import annotations

import re
from typing import Callable, Iterable, Iterator, List, Optional

import lxml.html
from lxml.html import HtmlElement

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
DEFAULT_EXCLUDED_TAGS = frozenset({"iframe", "frame", "object", "embed"})

# never rendered, whatever their style says
_NON_RENDERED = frozenset({"head", "script", "style", "template", "noscript", "title", "meta", "link"})
# dropped from extracted text
_TEXT_SKIP_TAGS = frozenset({"script", "style", "nav", "noscript", "template"})

_HIDDEN_STYLE = re.compile(
    r"(display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0(?:\.0+)?\s*(?:;|$))",
    re.IGNORECASE,
)
_WS = re.compile(r"\s+")

ExcludePredicate = Callable[[HtmlElement], bool]


def parse_html(markup: str | bytes, url: str = "") -> HtmlElement:
    """Parse a full HTML document and return its root (``<html>``) element."""
    doc = lxml.html.document_fromstring(markup, base_url=url or None)
    return doc


def is_element(node) -> bool:
    # comments and processing instructions have a callable tag
    return isinstance(node.tag, str)


def tag_of(el: HtmlElement) -> str:
    return el.tag.lower() if is_element(el) else ""


def heading_level(el: HtmlElement) -> int:
    t = tag_of(el)
    if t in HEADING_TAGS:
        return int(t[1])
    return 0


def tag_excluder(tags: Iterable[str] = DEFAULT_EXCLUDED_TAGS) -> ExcludePredicate:
    names = frozenset(t.lower() for t in tags)
    return lambda el: tag_of(el) in names


def _self_hidden(el: HtmlElement) -> bool:
    if tag_of(el) in _NON_RENDERED:
        return True
    if el.get("hidden") is not None:
        return True
    if (el.get("aria-hidden") or "").lower() == "true":
        return True
    style = el.get("style")
    return bool(style and _HIDDEN_STYLE.search(style))


def is_visible(el: HtmlElement) -> bool:
    node: Optional[HtmlElement] = el
    while node is not None:
        if is_element(node) and _self_hidden(node):
            return False
        node = node.getparent()
    return True


def in_excluded(el: HtmlElement, excluded: ExcludePredicate, stop: Optional[HtmlElement] = None) -> bool:
    """True when ``el`` or one of its ancestors (up to ``stop``) matches ``excluded``."""
    node: Optional[HtmlElement] = el
    while node is not None:
        if is_element(node) and excluded(node):
            return True
        if node is stop:
            break
        node = node.getparent()
    return False


def _skip_for_text(el: HtmlElement) -> bool:
    t = tag_of(el)
    if t in _TEXT_SKIP_TAGS:
        return True
    if el.get("data-rag-ignore") is not None:
        return True
    if t == "a":
        href = (el.get("href") or "").strip().lower()
        if href.startswith("#") or "javascript:" in href:
            return True
    return False


def _collect(el: HtmlElement, parts: List[str]) -> None:
    if el.text:
        parts.append(el.text)
    for child in el:
        if is_element(child) and not _skip_for_text(child):
            _collect(child, parts)
        # the tail belongs to the parent, keep it even when the child is skipped
        if child.tail:
            parts.append(child.tail)


def extract_text(el: HtmlElement) -> str:
    """Visible-ish text of ``el`` with whitespace collapsed."""
    if not is_element(el) or _skip_for_text(el):
        return ""
    parts: List[str] = []
    _collect(el, parts)
    return _WS.sub(" ", " ".join(parts)).strip()


def iter_elements(root: HtmlElement) -> Iterator[HtmlElement]:
    """Document-order walk over element nodes only."""
    for el in root.iter():
        if is_element(el):
            yield el


def next_element_siblings(el: HtmlElement) -> Iterator[HtmlElement]:
    for sib in el.itersiblings():
        if is_element(sib):
            yield sib
