from __future__ import annotations

import datetime
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..index.schema import Answer


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def _slug(s: str, max_len: int = 60) -> str:
    s = s.strip().lower()
    s = re.sub(r"[^a-z0-9\-\s_]+", "", s)
    s = re.sub(r"[\s_]+", "-", s)
    return s[:max_len].strip("-") or "question"


def infer_format(out_path: Optional[str], fmt: Optional[str]) -> str:
    if fmt:
        return fmt.lower()
    if out_path:
        ext = Path(out_path).suffix.lower().lstrip(".")
        if ext in {"json", "md", "txt"}:
            return ext
    return "json"


def ensure_outpath(out_path: Optional[str], fmt: str, save_dir: Optional[str], question: str) -> Path:
    if out_path:
        p = Path(out_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base_dir = Path(save_dir or "outputs")
    base_dir.mkdir(parents=True, exist_ok=True)
    return base_dir / f"{_timestamp()}_{_slug(question)}.{fmt}"


def source_label(ans: Answer, index: int) -> str:
    chunk = ans.results[index].chunk
    path = " > ".join(chunk.heading_path) if chunk.heading_path else chunk.id
    return f"[{index + 1}] {path}"


def annotate(ans: Answer) -> str:
    """Answer text with ``[n]`` markers after each cited sentence."""
    text = ans.answer or ""
    if not text or not ans.citations:
        return text
    out: List[str] = []
    pos = 0
    for c in sorted(ans.citations, key=lambda c: c.start):
        out.append(text[pos : c.end])
        out.append("".join(f"[{i + 1}]" for i in c.source_indices))
        pos = c.end
    out.append(text[pos:])
    return "".join(out)


def as_markdown(ans: Answer) -> str:
    lines: List[str] = [f"# {ans.question}", ""]
    if ans.answer:
        lines += [annotate(ans), ""]
    else:
        lines += ["_No answer generated._", ""]
    cited = sorted({i for c in ans.citations for i in c.source_indices})
    if cited:
        lines.append("## Sources")
        for i in cited:
            lines.append(f"- {source_label(ans, i)}")
        lines.append("")
    timers = ans.trace.get("timers_ms")
    if timers:
        lines += ["## Timers (ms)", "```json", json.dumps(timers, indent=2), "```"]
    return "\n".join(lines).strip() + "\n"


def as_text(ans: Answer) -> str:
    lines: List[str] = [f"QUESTION: {ans.question}", "", annotate(ans) or "(no answer)", ""]
    cited = sorted({i for c in ans.citations for i in c.source_indices})
    if cited:
        lines.append("SOURCES:")
        for i in cited:
            lines.append(f"- {source_label(ans, i)}")
        lines.append("")
    timers = ans.trace.get("timers_ms")
    if timers:
        lines.append("TIMERS_MS: " + json.dumps(timers))
    return "\n".join(lines).strip() + "\n"


def as_dict(ans: Answer) -> Dict[str, Any]:
    return {
        "question": ans.question,
        "answer": ans.answer,
        "citations": [c.model_dump() for c in ans.citations],
        "results": [
            {
                "id": r.chunk.id,
                "heading_path": r.chunk.heading_path,
                "score": r.score,
                "css_selector": r.chunk.locator.css_selector,
                "text": r.chunk.raw_text[:1000],
            }
            for r in ans.results
        ],
        "trace": ans.trace,
    }


def write_output(
    ans: Answer,
    out_path: Optional[str] = None,
    fmt: Optional[str] = None,
    save_dir: Optional[str] = None,
) -> Path:
    fmt2 = infer_format(out_path, fmt)
    target = ensure_outpath(out_path, fmt2, save_dir, ans.question)
    if fmt2 == "json":
        target.write_text(json.dumps(as_dict(ans), ensure_ascii=False, indent=2), encoding="utf-8")
    elif fmt2 == "md":
        target.write_text(as_markdown(ans), encoding="utf-8")
    elif fmt2 == "txt":
        target.write_text(as_text(ans), encoding="utf-8")
    else:
        raise ValueError(f"Unsupported format: {fmt2}")
    return target
