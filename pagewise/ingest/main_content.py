from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from lxml.html import HtmlElement

from .dom import HEADING_TAGS, extract_text, is_element, is_visible, tag_of

logger = logging.getLogger(__name__)

MainContentOracle = Callable[[HtmlElement], Optional[HtmlElement]]

CONTENT_SELECTORS = (
    "article",
    "#content",
    ".content",
    ".main-content",
    "#main",
    ".post",
    ".entry-content",
    ".article-body",
)

UNLIKELY_TAGS = {"nav", "footer", "header", "aside"}
UNLIKELY_ROLES = {"navigation", "banner", "contentinfo", "complementary"}
UNLIKELY_PATTERN = re.compile(r"nav|menu|sidebar|footer|header|ad-|advertisement|promo", re.I)
LIKELY_PATTERN = re.compile(r"content|main|post|article|entry|text", re.I)

MIN_CONTAINER_CHARS = 100
MAX_DEPTH = 3
CONTAINER_TAGS = {"div", "section", "article", "main"}


def _signature(el: HtmlElement) -> str:
    return f"{el.get('id') or ''} {el.get('class') or ''}"


def is_unlikely_content(el: HtmlElement) -> bool:
    if tag_of(el) in UNLIKELY_TAGS:
        return True
    if (el.get("role") or "").lower() in UNLIKELY_ROLES:
        return True
    return bool(UNLIKELY_PATTERN.search(_signature(el)))


def is_likely_content(el: HtmlElement) -> bool:
    if tag_of(el) in {"main", "article"}:
        return True
    return bool(LIKELY_PATTERN.search(_signature(el)))


def content_score(el: HtmlElement) -> float:
    text = extract_text(el)
    n = len(text)
    paragraphs = len(el.findall(".//p"))
    headings = sum(len(el.findall(f".//{h}")) for h in HEADING_TAGS)
    lists = len(el.findall(".//ul")) + len(el.findall(".//ol"))
    links = el.findall(".//a")
    link_chars = sum(len(extract_text(a)) for a in links)
    link_ratio = (link_chars / n) if n else 0.0

    score = paragraphs * 3 + headings * 5 + lists * 3 + n / 100
    score -= len(links) * 2
    score -= link_ratio * 100
    if is_likely_content(el):
        score += 25
    if is_unlikely_content(el):
        score -= 50
    if n < 25:
        score -= 20
    if link_ratio > 0.5:
        score -= 30
    return score


def find_by_heuristics(body: HtmlElement) -> HtmlElement:
    """Descend from ``body`` while one child clearly dominates its siblings."""
    current = body
    for _ in range(MAX_DEPTH):
        scored = [
            (content_score(c), c)
            for c in current
            if is_element(c) and tag_of(c) in CONTAINER_TAGS and is_visible(c)
        ]
        if not scored:
            break
        scored.sort(key=lambda x: x[0], reverse=True)
        best_score, best = scored[0]
        runner_up = scored[1][0] if len(scored) > 1 else 0.0
        if best_score > 0 and (len(scored) == 1 or best_score > 1.5 * max(runner_up, 0.0)):
            current = best
            continue
        break
    return current


def find_main_content(
    document: HtmlElement, oracle: Optional[MainContentOracle] = None
) -> HtmlElement:
    root = document.getroot() if hasattr(document, "getroot") else document

    for el in root.cssselect("main, [role=main]"):
        if is_visible(el):
            logger.debug("Main content via semantic tag <%s>", tag_of(el))
            return el

    for sel in CONTENT_SELECTORS:
        for el in root.cssselect(sel):
            if is_visible(el) and len(extract_text(el)) > MIN_CONTAINER_CHARS:
                logger.debug("Main content via selector %s", sel)
                return el

    if oracle is not None:
        try:
            picked = oracle(root)
        except Exception as e:
            logger.warning("Main-content oracle failed, falling back to heuristics: %s", e)
            picked = None
        if picked is not None:
            logger.debug("Main content via oracle <%s>", tag_of(picked))
            return picked

    body = root.find("body") if tag_of(root) == "html" else None
    if body is None:
        return root
    best = find_by_heuristics(body)
    logger.debug("Main content via heuristics <%s>", tag_of(best))
    return best
