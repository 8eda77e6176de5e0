from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from ..index.schema import SearchResult

NOT_FOUND = "I cannot find this information in the provided context."
MIN_SOURCE_CHARS = 10


def usable_results(results: Sequence[SearchResult], top_k: int = 15) -> List[SearchResult]:
    """Top results whose content is long enough to be worth quoting."""
    return [r for r in results[:top_k] if len((r.chunk.raw_text or r.chunk.text).strip()) > MIN_SOURCE_CHARS]


def build_context(results: Sequence[SearchResult]) -> str:
    blocks = []
    for i, r in enumerate(results, start=1):
        blocks.append(f"[Source {i}]\n{r.chunk.raw_text or r.chunk.text}")
    return "\n\n".join(blocks)


def format_history(history: Optional[Sequence[Dict[str, str]]], max_turns: int = 10) -> str:
    if not history:
        return ""
    lines = []
    for turn in list(history)[-max_turns:]:
        role = (turn.get("role") or "user").strip().lower()
        who = "Assistant" if role == "assistant" else "User"
        lines.append(f"{who}: {turn.get('content', '').strip()}")
    return "\n".join(lines)


def build_answer_prompt(
    question: str,
    context: str,
    history: Optional[Sequence[Dict[str, str]]] = None,
    max_turns: int = 10,
) -> str:
    parts = [
        "Based on the context below, answer the question. Provide a detailed answer. "
        f'If the answer is not in the context, say "{NOT_FOUND}"',
        "",
    ]
    convo = format_history(history, max_turns=max_turns)
    if convo:
        parts += ["Previous conversation:", convo, ""]
    parts += [f"Question: {question}", "", "Context:", context, "", "Answer:"]
    return "\n".join(parts)
