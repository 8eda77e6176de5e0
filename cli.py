#!/usr/bin/env python3
import argparse
import asyncio
import logging
import sys
from pathlib import Path

import requests

from pagewise.app import build_session, load_config
from pagewise.logging_utils import setup_logging
from pagewise.utils.output import annotate, source_label, write_output

logger = logging.getLogger(__name__)


def _read_source(source: str) -> tuple[bytes, str]:
    """Return (markup, url) for an http(s) URL or a local HTML file."""
    if source.startswith(("http://", "https://")):
        r = requests.get(source, timeout=(10, 60), headers={"User-Agent": "pagewise/0.1"})
        r.raise_for_status()
        return r.content, r.url
    p = Path(source).resolve()
    return p.read_bytes(), p.as_uri()


def _config(path: str | None) -> dict:
    if path is None and Path("config.yaml").exists():
        path = "config.yaml"
    return load_config(path)


async def _index(args, cfg) -> int:
    markup, url = _read_source(args.source)
    session = build_session(markup, url, cfg)
    chunks = await session.ensure_index()
    print(f"Indexed {len(chunks)} chunks from {url}")
    print(f"Session key: {session.session_key}")
    for c in chunks:
        path = " > ".join(c.heading_path) or "-"
        print(f"- {c.id} | {path} | {len(c.raw_text)} chars | q={c.quality_score}")
    return 0 if chunks else 1


async def _search(args, cfg) -> int:
    markup, url = _read_source(args.source)
    session = build_session(markup, url, cfg)
    results = await session.search(
        args.query, limit=args.limit, threshold=args.threshold, hybrid=not args.lexical_only
    )
    if not results:
        print("No results.")
    for i, r in enumerate(results, start=1):
        path = " > ".join(r.chunk.heading_path) or r.chunk.id
        print(f"[{i}] {r.score:.3f} {path}")
        print(f"    {r.chunk.locator.css_selector or r.chunk.locator.xpath}")
        print(f"    {r.chunk.raw_text[:200]}")
    return 0


async def _ask(args, cfg) -> int:
    markup, url = _read_source(args.source)
    session = build_session(markup, url, cfg)

    stream = None
    if args.stream and not args.quiet:
        def stream(piece: str) -> None:
            print(piece, end="", flush=True)

    ans = await session.ask(args.question, on_chunk=stream)

    if args.out or args.save:
        target = write_output(ans, out_path=args.out, fmt=args.format, save_dir=args.save)
        if not args.quiet:
            print(f"[saved] {target}")

    if not args.quiet:
        if stream is not None:
            print()
        print("\n=== ANSWER ===")
        if ans.answer is None:
            print(f"(no answer: {ans.trace.get('skipped', 'unknown')})")
        else:
            print(annotate(ans).strip())
        print("\n=== SOURCES ===")
        for i in range(len(ans.results)):
            print(f"- {source_label(ans, i)} ({ans.results[i].score:.3f})")
        timers = ans.trace.get("timers_ms")
        if timers:
            print(f"\ntimers_ms: {timers}")
    return 0


async def _clear(args, cfg) -> int:
    markup, url = _read_source(args.source)
    session = build_session(markup, url, cfg)
    await session.index.clear()
    print(f"Cleared cache for {session.session_key}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="pagewise",
        description="Turn a single web page into a searchable, citable knowledge base.",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable DEBUG logs (to stderr).")
    parser.add_argument("--quiet", "-q", action="store_true", help="Reduce logs to WARN and above.")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines (stderr).")
    parser.add_argument("--config", type=str, default=None, help="YAML config (default: ./config.yaml if present)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_idx = sub.add_parser("index", help="Segment and index a page")
    p_idx.add_argument("source", help="HTML file or http(s) URL")

    p_s = sub.add_parser("search", help="Hybrid search over a page")
    p_s.add_argument("source", help="HTML file or http(s) URL")
    p_s.add_argument("query", help="Search text")
    p_s.add_argument("--limit", type=int, default=None, help="Max results (default 10)")
    p_s.add_argument("--threshold", type=float, default=None, help="Min combined score (default 0.7)")
    p_s.add_argument("--lexical-only", action="store_true", help="Skip the vector half of the blend")

    p_a = sub.add_parser("ask", help="Answer a question about a page, with citations")
    p_a.add_argument("source", help="HTML file or http(s) URL")
    p_a.add_argument("question", help="Your question")
    p_a.add_argument("--stream", action="store_true", help="Print the answer as it is generated")
    p_a.add_argument("--out", type=str, default=None, help="Write result to a file (format from extension)")
    p_a.add_argument("--format", type=str, default=None, choices=["json", "md", "txt"], help="Output format")
    p_a.add_argument("--save", type=str, default=None, help="Directory to auto-save result (default outputs/)")

    p_c = sub.add_parser("clear", help="Drop the cached index for a page")
    p_c.add_argument("source", help="HTML file or http(s) URL")

    args = parser.parse_args()

    if args.verbose and args.quiet:
        print("Cannot use --verbose and --quiet together.", file=sys.stderr)
        sys.exit(2)
    if args.verbose:
        setup_logging(level="DEBUG", json_logs=args.log_json)
    elif args.quiet:
        setup_logging(level="WARNING", json_logs=args.log_json)
    else:
        setup_logging(level="INFO", json_logs=args.log_json)

    logger.debug("CLI args parsed: %s", vars(args))
    cfg = _config(args.config)

    handlers = {"index": _index, "search": _search, "ask": _ask, "clear": _clear}
    try:
        code = asyncio.run(handlers[args.cmd](args, cfg))
    except requests.exceptions.RequestException as e:
        logger.error("Could not fetch %s: %s", args.source, e)
        sys.exit(2)
    except Exception as e:
        logger.exception("%s failed: %s", args.cmd, e)
        sys.exit(2)
    sys.exit(code)


if __name__ == "__main__":
    main()
