from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Set, Tuple

from lxml.html import HtmlElement

from ..index.schema import Chunk, ContentType
from .clean import clean_content
from .dom import (
    DEFAULT_EXCLUDED_TAGS,
    HEADING_TAGS,
    ExcludePredicate,
    extract_text,
    heading_level,
    in_excluded,
    is_element,
    is_visible,
    iter_elements,
    next_element_siblings,
    tag_excluder,
    tag_of,
)
from .locator import build_locator

logger = logging.getLogger(__name__)

MIN_CHUNK_CHARS = 10
SEMANTIC_CONTAINERS = "section, article, [role=region]"

BLOCK_TAGS = {"p", "ul", "ol", "dl", "table", "blockquote", "pre", "figure"}
LIST_TAGS = {"ul", "ol", "dl"}
STRUCTURAL_TAGS = BLOCK_TAGS | {"div", "section", "article", "main", "aside", "header", "footer"} | set(HEADING_TAGS)
SKIP_TAGS = {"script", "style", "nav", "noscript", "template"}

_WS = re.compile(r"[ \t\r\f\v]+")


@dataclass
class HeadingNode:
    element: HtmlElement
    level: int
    title: str
    parent: Optional["HeadingNode"] = None
    children: List["HeadingNode"] = field(default_factory=list)

    def path(self) -> List[str]:
        out: List[str] = []
        node: Optional[HeadingNode] = self
        while node is not None:
            out.append(node.title)
            node = node.parent
        return list(reversed(out))


def build_heading_hierarchy(headings: Iterable[HtmlElement]) -> List[HeadingNode]:
    """Nest headings by numeric level. Returns the root nodes in document order."""
    roots: List[HeadingNode] = []
    stack: List[HeadingNode] = []
    for el in headings:
        node = HeadingNode(element=el, level=heading_level(el), title=extract_text(el))
        while stack and stack[-1].level >= node.level:
            stack.pop()
        if stack:
            node.parent = stack[-1]
            stack[-1].children.append(node)
        else:
            roots.append(node)
        stack.append(node)
    return roots


def walk_hierarchy(roots: List[HeadingNode]) -> Iterator[HeadingNode]:
    for node in roots:
        yield node
        yield from walk_hierarchy(node.children)


def sanitize_id(s: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", s.lower()).strip("-")


def render_heading_prefix(path: List[str]) -> str:
    return " ".join(f"[H{i + 1}: {title}]" for i, title in enumerate(path))


def serialize_table(table: HtmlElement) -> str:
    rows: List[str] = []
    for tr in table.iter("tr"):
        cells = [extract_text(c) for c in tr if is_element(c) and tag_of(c) in ("td", "th")]
        if any(cells):
            rows.append(" | ".join(cells))
    if not rows:
        return ""
    return "Table:\n" + "\n".join(rows)


def block_text(el: HtmlElement) -> str:
    """Extracted text of ``el`` with any tables inside it kept row by row."""
    if tag_of(el) == "table":
        return serialize_table(el)
    if not el.findall(".//table"):
        return extract_text(el)
    parts: List[str] = []
    if el.text and el.text.strip():
        parts.append(_WS.sub(" ", el.text.strip()))
    for child in el:
        if is_element(child) and tag_of(child) not in SKIP_TAGS:
            sub = block_text(child)
            if sub:
                parts.append(sub)
        if child.tail and child.tail.strip():
            parts.append(_WS.sub(" ", child.tail.strip()))
    return " ".join(parts)


def content_type_of(kinds: Set[str]) -> ContentType:
    if kinds == {"paragraph"}:
        return "paragraph"
    if kinds == {"list"}:
        return "list"
    return "mixed"


def _kind(el: HtmlElement) -> str:
    t = tag_of(el)
    if t == "p":
        return "paragraph"
    if t in LIST_TAGS:
        return "list"
    return "other"


def dedupe_chunks(chunks: List[Chunk]) -> List[Chunk]:
    seen: Set[str] = set()
    out: List[Chunk] = []
    for c in chunks:
        key = c.raw_text.strip().lower()
        if len(key) < MIN_CHUNK_CHARS or key in seen:
            continue
        seen.add(key)
        out.append(c)
    return out


class ScanItem(NamedTuple):
    """One step of the uncovered-content scan, in document order."""

    kind: str  # "covered" (owned by a heading chunk), "block" or "break"
    element: Optional[HtmlElement] = None
    text: str = ""


_BREAK = ScanItem("break")


class Segmenter:
    """
    Splits a document subtree into Chunks.

    Headings drive the boundaries: each visible heading owns the sibling
    elements that follow it until the next heading. Substantial content no
    heading owns is picked up in a second pass, and pages without headings
    fall back to semantic containers (or the whole root).
    """

    def __init__(
        self,
        url: str = "",
        min_content_chars: int = 30,
        min_uncovered_chars: int = 50,
        group_size: int = 5,
        excluded: Optional[ExcludePredicate] = None,
    ) -> None:
        self.url = url
        self.min_content_chars = min_content_chars
        self.min_uncovered_chars = min_uncovered_chars
        self.group_size = max(1, group_size)
        self.excluded = excluded or tag_excluder(DEFAULT_EXCLUDED_TAGS)
        self._used_ids: Set[str] = set()
        self._groups = 0
        self._headings: Set[HtmlElement] = set()

    # -- helpers ---------------------------------------------------------
    def _unique_id(self, base: str) -> str:
        cid, n = base, 2
        while cid in self._used_ids:
            cid = f"{base}-{n}"
            n += 1
        self._used_ids.add(cid)
        return cid

    def _skippable(self, el: HtmlElement) -> bool:
        return tag_of(el) in SKIP_TAGS or self.excluded(el) or not is_visible(el)

    def _holds_heading(self, el: HtmlElement) -> bool:
        """True when ``el`` is, or contains, a heading that ``collect_headings`` kept."""
        return any(d in self._headings for d in el.iter())

    def collect_headings(self, root: HtmlElement) -> List[HtmlElement]:
        out = []
        for el in iter_elements(root):
            if tag_of(el) not in HEADING_TAGS:
                continue
            if in_excluded(el, self.excluded) or not is_visible(el):
                continue
            if not extract_text(el):
                continue
            out.append(el)
        return out

    # -- entry point -----------------------------------------------------
    def segment(self, root: HtmlElement) -> List[Chunk]:
        self._used_ids = set()
        self._groups = 0
        position = {el: i for i, el in enumerate(iter_elements(root))}
        headings = self.collect_headings(root)
        self._headings = set(headings)

        placed: List[Tuple[int, Chunk]] = []
        if headings:
            forest = build_heading_hierarchy(headings)
            covered: Set[HtmlElement] = set(headings)
            chunk_ids: Dict[int, str] = {}
            for node in walk_hierarchy(forest):
                chunk = self._heading_chunk(node, covered, chunk_ids)
                if chunk is not None:
                    chunk_ids[id(node)] = chunk.id
                    placed.append((position.get(node.element, 0), chunk))
            by_element = {id(n.element): n for n in walk_hierarchy(forest)}
            for first, chunk in self._uncovered_chunks(root, covered, by_element, chunk_ids):
                placed.append((position.get(first, 0), chunk))
        else:
            logger.debug("No visible headings; chunking by semantic containers")
            for el, chunk in self._container_chunks(root):
                placed.append((position.get(el, 0), chunk))

        placed.sort(key=lambda x: x[0])
        chunks = dedupe_chunks([c for _, c in placed])
        if not chunks:
            logger.warning("Segmentation produced no chunks for %s", self.url or "<document>")
        else:
            logger.info("Segmented %s into %d chunks", self.url or "<document>", len(chunks))
        return chunks

    # -- heading chunks --------------------------------------------------
    def _content_span(self, node: HeadingNode, covered: Set[HtmlElement]) -> Tuple[str, Set[str]]:
        parts: List[str] = []
        kinds: Set[str] = set()
        for sib in next_element_siblings(node.element):
            # hidden or excluded subtrees never end a span, even around a heading
            if self._skippable(sib):
                continue
            if self._holds_heading(sib):
                break
            text = block_text(sib)
            if not text:
                continue
            parts.append(text)
            kinds.add(_kind(sib))
            covered.add(sib)
        return clean_content(" ".join(parts)), kinds

    def _heading_chunk(
        self, node: HeadingNode, covered: Set[HtmlElement], chunk_ids: Dict[int, str]
    ) -> Optional[Chunk]:
        content, kinds = self._content_span(node, covered)
        if len(content) < self.min_content_chars:
            return None

        path = node.path()
        parent_id = None
        up = node.parent
        while up is not None and parent_id is None:
            parent_id = chunk_ids.get(id(up))
            up = up.parent

        return Chunk(
            id=self._unique_id(f"heading-{node.level}-{sanitize_id('-'.join(path))}"),
            text=f"{render_heading_prefix(path)} {content}",
            raw_text=content,
            heading_path=path,
            heading_level=node.level,
            semantic_tag=tag_of(node.element),
            content_type=content_type_of(kinds),
            parent_chunk_id=parent_id,
            locator=build_locator(node.element),
            visible=True,
            url=self.url,
        )

    # -- content no heading owns -----------------------------------------
    def _is_leaf_block(self, el: HtmlElement) -> bool:
        if tag_of(el) in BLOCK_TAGS:
            return True
        return not any(
            is_element(d) and tag_of(d) in STRUCTURAL_TAGS for d in el.iterdescendants()
        )

    def _scan_blocks(self, el: HtmlElement, covered: Set[HtmlElement], out: List[ScanItem]) -> None:
        for child in el:
            if not is_element(child):
                continue
            if child in covered:
                out.append(ScanItem("covered", child))
                continue
            if self._skippable(child):
                continue
            if self._is_leaf_block(child):
                text = block_text(child)
                if len(text) >= self.min_uncovered_chars:
                    out.append(ScanItem("block", child, text))
                elif text:
                    out.append(_BREAK)
            else:
                self._scan_blocks(child, covered, out)

    def _uncovered_chunks(
        self,
        root: HtmlElement,
        covered: Set[HtmlElement],
        by_element: Dict[int, HeadingNode],
        chunk_ids: Dict[int, str],
    ) -> List[Tuple[HtmlElement, Chunk]]:
        items: List[ScanItem] = []
        self._scan_blocks(root, covered, items)

        out: List[Tuple[HtmlElement, Chunk]] = []
        group: List[Tuple[HtmlElement, str]] = []
        last_heading: Optional[HeadingNode] = None
        group_heading: Optional[HeadingNode] = None

        def flush() -> None:
            if group:
                out.append((group[0][0], self._group_chunk(group, group_heading, chunk_ids)))
                group.clear()

        for item in items:
            if item.kind == "break":
                flush()
                continue
            if item.kind == "covered":
                flush()
                node = by_element.get(id(item.element))
                if node is not None:
                    last_heading = node
                continue
            if not group:
                group_heading = last_heading
            group.append((item.element, item.text))
            if len(group) >= self.group_size:
                flush()
        flush()
        return out

    def _group_chunk(
        self,
        group: List[Tuple[HtmlElement, str]],
        heading: Optional[HeadingNode],
        chunk_ids: Dict[int, str],
    ) -> Chunk:
        content = clean_content(" ".join(t for _, t in group))
        path = heading.path() if heading is not None else []
        parent_id = None
        up = heading
        while up is not None and parent_id is None:
            parent_id = chunk_ids.get(id(up))
            up = up.parent
        first = group[0][0]
        self._groups += 1
        return Chunk(
            id=self._unique_id(f"content-{self._groups}"),
            text=f"{render_heading_prefix(path)} {content}" if path else content,
            raw_text=content,
            heading_path=path,
            heading_level=0,
            semantic_tag=tag_of(first),
            content_type=content_type_of({_kind(el) for el, _ in group}),
            parent_chunk_id=parent_id,
            locator=build_locator(first),
            visible=True,
            url=self.url,
        )

    # -- pages without headings ------------------------------------------
    def _container_chunks(self, root: HtmlElement) -> List[Tuple[HtmlElement, Chunk]]:
        containers = [
            el
            for el in root.cssselect(SEMANTIC_CONTAINERS)
            if is_visible(el) and not in_excluded(el, self.excluded)
        ]
        if not containers:
            containers = [root]
            prefix = "root"
        else:
            prefix = "section"

        out: List[Tuple[HtmlElement, Chunk]] = []
        for i, el in enumerate(containers):
            content = clean_content(block_text(el))
            if not content:
                continue
            out.append(
                (
                    el,
                    Chunk(
                        id=self._unique_id(f"{prefix}-{i}"),
                        text=content,
                        raw_text=content,
                        heading_path=[],
                        heading_level=0,
                        semantic_tag=tag_of(el),
                        content_type="mixed",
                        locator=build_locator(el),
                        visible=True,
                        url=self.url,
                    ),
                )
            )
        return out
