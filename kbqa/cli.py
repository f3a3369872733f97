#!/usr/bin/env python3
"""
KB Q&A - ingest documents and query the knowledge base from the terminal.

Usage:
    kbqa ingest docs/*.md              # Ingest (or re-ingest) text files
    kbqa search "deep learning"        # Hybrid search, no generation
    kbqa ask "what is deep learning?"  # Full retrieval + generation
    kbqa serve --port 8000             # Run the HTTP API
    kbqa --config custom.yaml ...      # Use custom config file

Configuration:
    Config file: kbqa.yaml (default) or the path in KBQA_CONFIG
    Environment variables are used as fallback if config file not found
"""

import argparse
import asyncio
import os
import sys
import uuid
from pathlib import Path

import uvicorn
from tqdm import tqdm

from kbqa.api.app import create_app
from kbqa.api.dependencies import DEFAULT_CONFIG_PATH, Components, build_components
from kbqa.config import Config
from kbqa.errors import KBQAError
from kbqa.logging_utils import configure_logging


def load_config(config_path: str | None = None) -> Config:
    """Load config from YAML file or environment variables.

    Args:
        config_path: Path to YAML config file. If None, uses KBQA_CONFIG or the default path.

    Returns:
        Config object
    """
    if config_path is None:
        config_path = os.environ.get("KBQA_CONFIG", DEFAULT_CONFIG_PATH)

    if os.path.exists(config_path):
        print(f"Loading config from: {config_path}", file=sys.stderr)
        return Config.from_yaml(config_path)

    print(f"Config file not found: {config_path}", file=sys.stderr)
    print("Loading from environment variables...", file=sys.stderr)
    return Config.from_env()


def print_header(text: str):
    """Print section header."""
    print(f"\n{'=' * 50}\n{text}\n{'=' * 50}\n")


async def run_ingest(components: Components, paths: list[str]) -> int:
    """Ingest text files. Returns the number of failures."""
    print_header("Ingesting documents")
    failures = 0
    stats = {"indexed": 0, "updated": 0, "skipped": 0}

    for path in tqdm(paths, desc="Ingesting", unit="file"):
        try:
            text = Path(path).read_text(encoding="utf-8")
            result = await components.pipeline.ingest(path, text)
        except (OSError, KBQAError) as e:
            failures += 1
            tqdm.write(f"✗ {path}: {e}")
            continue
        stats[result.status] += 1
        tqdm.write(f"✓ {path}: {result.status} ({result.chunk_count} chunks)")

    print(f"\n✓ Indexed: {stats['indexed']}  Updated: {stats['updated']}  Skipped: {stats['skipped']}")
    if failures:
        print(f"  Errors: {failures}")
    return failures


async def run_search(components: Components, query: str) -> None:
    """Print fused search results."""
    print_header(f"Search: {query}")
    results = await components.searcher.search(query)
    if not results:
        print("No results.")
        return
    for i, r in enumerate(results, 1):
        branches = "+".join(p.value for p in r.provenance)
        print(f"[{i}] {r.final_score:.3f} ({branches}) {r.source_path}#{r.chunk_index}")
        preview = r.content.strip().replace("\n", " ")
        print(f"    {preview[:160]}")


async def run_ask(components: Components, query: str, session_id: str) -> None:
    """Print a generated answer with its citations."""
    result = await components.service.ask(session_id, query)
    print(result.text)
    if result.citations:
        print("\nSources:")
        for c in result.citations:
            print(f"  - {c.source_path}#{c.chunk_index} ({c.score:.3f})")
    print(f"\n[{result.provider_label} / {result.state.value}]", file=sys.stderr)


def run_serve(config: Config, host: str, port: int) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_app(build_components(config))
    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())


async def _run(args, config: Config) -> int:
    components = build_components(config)
    await asyncio.to_thread(components.vector_store.initialize)
    try:
        await components.pipeline.warm_lexical_index()
        if args.command == "ingest":
            return 1 if await run_ingest(components, args.paths) else 0
        if args.command == "search":
            await run_search(components, args.query)
        else:
            await run_ask(components, args.query, args.session_id)
        return 0
    finally:
        if components.summarizer is not None:
            await components.summarizer.drain()
        await asyncio.to_thread(components.vector_store.close)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kbqa",
        description="KB Q&A - hybrid search question answering over your documents",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to config YAML file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--log-level", default=None, help="Override configured log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest text files")
    ingest.add_argument("paths", nargs="+", help="Text files to ingest")

    search = subparsers.add_parser("search", help="Hybrid search without generation")
    search.add_argument("query", help="Search query")

    ask = subparsers.add_parser("ask", help="Answer a question")
    ask.add_argument("query", help="Question to answer")
    ask.add_argument(
        "--session-id",
        default=None,
        help="Conversation identifier (default: a new random ID)",
    )

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve.add_argument("--port", type=int, default=8000, help="Bind port")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    if getattr(args, "session_id", "") is None:
        args.session_id = uuid.uuid4().hex

    config = load_config(args.config)
    configure_logging(args.log_level or config.log_level)

    if args.command == "serve":
        run_serve(config, args.host, args.port)
        return 0

    try:
        return asyncio.run(_run(args, config))
    except KBQAError as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
