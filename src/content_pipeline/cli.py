"""Command-line interface for the lecture content pipeline."""

import argparse
import asyncio
import json
import signal

from src.tools.rag_tools.service import ground_chat_messages, search_lecture_content
from src.utils.clients import build_services, create_clients
from src.utils.logging import get_logger

from .config import get_config
from .errors import ContentPipelineError

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Lecture Content Pipeline - caption, summarize and index lecture videos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Submit a lecture video for processing
  python -m src.content_pipeline.cli submit https://example.com/lecture.mp4

  # Reprocess a video that was already submitted
  python -m src.content_pipeline.cli submit https://example.com/lecture.mp4 --force

  # Check job status
  python -m src.content_pipeline.cli status <content-id>

  # Search indexed lecture material
  python -m src.content_pipeline.cli search "gradient descent" --top-k 3

  # Run the queue worker
  python -m src.content_pipeline.cli worker
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    submit = subparsers.add_parser("submit", help="Submit a video URL for processing")
    submit.add_argument("url", help="Source video URL")
    submit.add_argument("--language", default="ko-KR", help="Caption language (default: ko-KR)")
    submit.add_argument("--force", action="store_true", help="Reprocess an existing job")
    submit.add_argument(
        "--format", choices=["vtt", "srt", "json"], default="vtt", help="Caption output format"
    )

    status = subparsers.add_parser("status", help="Show job status")
    status.add_argument("content_id")

    recaption = subparsers.add_parser("recaption", help="Regenerate captions in another language")
    recaption.add_argument("content_id")
    recaption.add_argument("--language", required=True)

    reindex = subparsers.add_parser("reindex", help="Rebuild search vectors for a content id")
    reindex.add_argument("content_id")

    search = subparsers.add_parser("search", help="Semantic search over indexed material")
    search.add_argument("query")
    search.add_argument("--content-id")
    search.add_argument("--type", choices=["transcript", "summary"])
    search.add_argument("--language")
    search.add_argument("--top-k", type=int, default=10)
    search.add_argument("--text", action="store_true", help="Print formatted results")

    context = subparsers.add_parser("context", help="Show chat grounding context for a question")
    context.add_argument("query")
    context.add_argument("--max-chunks", type=int, default=5)

    subparsers.add_parser("worker", help="Consume the work queue until interrupted")

    return parser


def _print_json(data: object) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def run_command(args: argparse.Namespace) -> int:
    """Execute one CLI command; returns the process exit code."""
    config = get_config()
    clients = await create_clients(config)
    services = build_services(config, clients)

    logger.info("cli_started", command=args.command)

    try:
        if args.command == "submit":
            result = await services.content.create_upload_job(
                args.url,
                language=args.language,
                force=args.force,
                options={"format": args.format},
            )
            _print_json(result.to_record())

        elif args.command == "status":
            _print_json(await services.content.get_status(args.content_id))

        elif args.command == "recaption":
            await services.content.request_recaption(args.content_id, args.language)
            print(f"Recaption queued for {args.content_id} ({args.language})")

        elif args.command == "reindex":
            result = await services.content.reindex_content(args.content_id)
            _print_json(result.model_dump())

        elif args.command == "search":
            if args.text:
                print(
                    await search_lecture_content(
                        services.retrieval, args.query, args.top_k, args.content_id
                    )
                )
            else:
                response = await services.retrieval.search(
                    args.query,
                    top_k=args.top_k,
                    content_id=args.content_id,
                    type=args.type,
                    language=args.language,
                )
                _print_json(
                    {
                        "query": response.query,
                        "total": response.total,
                        "usedFallback": response.used_fallback,
                        "results": [r.to_record() for r in response.results],
                    }
                )

        elif args.command == "context":
            messages, context = await ground_chat_messages(
                services.retrieval,
                [{"role": "user", "content": args.query}],
                max_chunks=args.max_chunks,
            )
            _print_json({"context": context.model_dump(), "messages": messages})

        elif args.command == "worker":
            stop_event = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, stop_event.set)
            await services.pipeline.run_worker(stop_event)

    except ContentPipelineError as e:
        logger.error("cli_command_failed", command=args.command, error_type=type(e).__name__)
        print(f"\n❌ {type(e).__name__}: {e}")
        return 1
    finally:
        await clients.aclose()

    logger.info("cli_completed", command=args.command)
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    return asyncio.run(run_command(args))


if __name__ == "__main__":
    raise SystemExit(main())
