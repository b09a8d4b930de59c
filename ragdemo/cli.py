"""Command line entry point.

Usage:
    python -m ragdemo ingest notes.txt              # Index a document
    python -m ragdemo ingest notes.txt --rebuild    # Clear the index first
    python -m ragdemo ask "What is this about?"     # Answer from the saved index
    python -m ragdemo run notes.txt                 # Index, then describe the document
    python -m ragdemo translate "Hello world"       # Translate with the chat model
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from ragdemo import config
from ragdemo.errors import RagError
from ragdemo.rag.pipeline import Answer, RagPipeline

logger = structlog.get_logger()

DEFAULT_PROMPT = "Please introduce this document."


def configure_logging(level: str = None) -> None:
    """Configure structured logging to stderr."""
    logging.basicConfig(
        level=(level or config.LOG_LEVEL).upper(),
        format="%(message)s",
        stream=sys.stderr,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ragdemo",
        description="Retrieval-augmented question answering over a text document",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--log-level", default=None, help=f"Log level (default: {config.LOG_LEVEL})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Chunk, embed and store a text file")
    ingest.add_argument("path", type=Path)
    ingest.add_argument("--rebuild", action="store_true", help="Clear the existing index first")
    ingest.add_argument("--chunk-size", type=int, default=None)
    ingest.add_argument("--chunk-overlap", type=int, default=None)

    ask = subparsers.add_parser("ask", help="Answer a prompt from the saved index")
    ask.add_argument("prompt")
    _add_answer_options(ask)

    run = subparsers.add_parser("run", help="Ingest a file, then answer a prompt about it")
    run.add_argument("path", type=Path)
    run.add_argument("prompt", nargs="?", default=DEFAULT_PROMPT)
    run.add_argument("--rebuild", action="store_true", help="Clear the existing index first")
    _add_answer_options(run)

    translate = subparsers.add_parser("translate", help="Translate text with the chat model")
    translate.add_argument("text")
    translate.add_argument("--language", default="Chinese")
    translate.add_argument("--temperature", type=float, default=None)

    return parser


def _add_answer_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--top-k", type=int, default=None)
    parser.add_argument("--threshold", type=float, default=None)
    parser.add_argument("--temperature", type=float, default=None)
    parser.add_argument("--timeout", type=float, default=None, help="Deadline per model call in seconds")


def _print_answer(answer: Answer) -> None:
    print(answer.text)
    if answer.sources:
        print(f"\n{len(answer.sources)} source(s) used:")
        for source in answer.sources_summary():
            print(f"  [{source['relevance']:.3f}] {source['source']}")


async def _ingest(pipeline: RagPipeline, path: Path, rebuild: bool) -> None:
    if rebuild:
        await pipeline.store.rebuild_index()
    else:
        await pipeline.store.init_or_load()

    result = await pipeline.ingest(path)
    if result["chunks_created"]:
        await pipeline.store.save_index()
    print(f"Indexed {result['chunks_created']} chunk(s) from {path}")


async def _ask(pipeline: RagPipeline, args: argparse.Namespace) -> None:
    answer = await pipeline.ask(
        args.prompt,
        top_k=args.top_k,
        score_threshold=args.threshold,
        temperature=args.temperature,
        timeout=args.timeout,
    )
    _print_answer(answer)


async def run_command(args: argparse.Namespace) -> None:
    overrides = {}
    if getattr(args, "chunk_size", None) is not None:
        overrides["chunk_size"] = args.chunk_size
    if getattr(args, "chunk_overlap", None) is not None:
        overrides["chunk_overlap"] = args.chunk_overlap
    settings = config.get_settings().model_copy(update=overrides)

    async with RagPipeline.from_settings(settings) as pipeline:
        if args.command == "ingest":
            await _ingest(pipeline, args.path, args.rebuild)
        elif args.command == "ask":
            await pipeline.store.init_or_load()
            await _ask(pipeline, args)
        elif args.command == "run":
            await _ingest(pipeline, args.path, args.rebuild)
            await _ask(pipeline, args)
        elif args.command == "translate":
            print(await pipeline.generator.translate(
                args.text, target_language=args.language, temperature=args.temperature
            ))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        asyncio.run(run_command(args))
    except KeyboardInterrupt:
        print("\nCancelled by user.", file=sys.stderr)
        return 1
    except (RagError, OSError) as e:
        logger.error("command_failed", command=args.command, error=str(e), error_type=type(e).__name__)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
