"""Command-line interface for the homebase context service."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from .api import create_app
from .config import ContextConfig, load_config
from .errors import ContextError
from .exporters import EXPORTERS, ThreadHistory
from .service import ContextService, build_generator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Homebase infinite-context manager")
    parser.add_argument("--env-file", default=None, help="Optional .env file to load")
    parser.add_argument("--db", default=None, help="Context SQLite DB (overrides HOMEBASE_DB_PATH)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Serve the chat context API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=5000, help="Bind port")
    serve_parser.add_argument("--debug", action="store_true", help="Flask debug mode")

    status_parser = subparsers.add_parser("status", help="Show context usage for a thread")
    status_parser.add_argument("--thread", default="main", help="Thread id")
    status_parser.add_argument("--format", choices=["text", "json"], default="text")

    summarize_parser = subparsers.add_parser("summarize", help="Compact the oldest messages")
    summarize_parser.add_argument("--thread", default="main", help="Thread id")
    summarize_parser.add_argument(
        "--force", action="store_true", help="Run even if the thread is under threshold"
    )

    subparsers.add_parser("threads", help="List threads with their context usage")

    prompt_parser = subparsers.add_parser("prompt", help="Print the assembled prompt")
    prompt_parser.add_argument("--thread", default="main", help="Thread id")

    reset_parser = subparsers.add_parser("reset", help="Delete a thread's messages and snapshots")
    reset_parser.add_argument("--thread", required=True, help="Thread id")
    reset_parser.add_argument("--yes", action="store_true", help="Skip confirmation")

    export_parser = subparsers.add_parser("export", help="Export a thread's history")
    export_parser.add_argument("--thread", default="main", help="Thread id")
    export_parser.add_argument("--format", choices=sorted(EXPORTERS), default="json")
    export_parser.add_argument("--output", default=None, help="Output file path")

    return parser


def resolve_config(args: argparse.Namespace) -> ContextConfig:
    config = load_config(args.env_file)
    if args.db:
        config = config.with_overrides(db_path=Path(args.db))
    return config


def open_service(config: ContextConfig) -> ContextService:
    return ContextService(config, generator=build_generator(config))


def serve(args: argparse.Namespace, service: ContextService) -> None:
    app = create_app(service)
    app.run(host=args.host, port=args.port, debug=args.debug)


def status(args: argparse.Namespace, service: ContextService) -> None:
    """Print utilization and snapshot history for a thread."""
    result = service.get_context_status(args.thread)
    state = result.state

    if args.format == "json":
        data = result.to_dict()
        data["level"] = service.policy.level(state)
        data["needs_summarization"] = service.policy.needs_summarization(state)
        print(json.dumps(data, indent=2))
        return

    print(f"Thread: {state.thread_id}")
    print(f"  Utilization: {state.context_utilization:.1f}% ({service.policy.level(state)})")
    print(f"  Active tokens: {state.total_tokens} / {service.config.max_context_tokens}")
    print(f"  Active messages: {state.active_message_count}")
    print(f"  Needs summarization: {service.policy.needs_summarization(state)}")
    print("Snapshots:")
    print(f"  Count: {result.snapshot_count}")
    if result.oldest_snapshot_date:
        print(f"  Oldest memory: {result.oldest_snapshot_date.isoformat()}")
    if result.latest_snapshot_date:
        print(f"  Latest snapshot: {result.latest_snapshot_date.isoformat()}")
    print(f"  Conversation: {result.estimated_conversation_length}")
    if state.stale:
        print("  (stale: store unavailable, showing cached state)")


def threads(args: argparse.Namespace, service: ContextService) -> None:
    states = service.list_threads()
    if not states:
        print("No threads")
        return
    for state in states:
        archived = service.messages.count_archived(state.thread_id)
        print(
            f"{state.thread_id}: {state.context_utilization:.1f}% "
            f"({state.active_message_count} active, {archived} archived, "
            f"{state.snapshot_count} snapshots)"
        )


def summarize(args: argparse.Namespace, service: ContextService) -> None:
    outcome = service.summarize(args.thread, force=args.force)
    if outcome.snapshot is None:
        print(f"Skipped: {outcome.reason}")
        return

    snapshot = outcome.snapshot
    print(f"Created snapshot {snapshot.id}")
    print(f"  Messages: {snapshot.message_count}")
    print(
        f"  Tokens: {snapshot.token_count} -> {snapshot.compressed_tokens} "
        f"({snapshot.compression_ratio:.0%} saved)"
    )
    print(f"  Summary: {snapshot.summary}")


def prompt(args: argparse.Namespace, service: ContextService) -> None:
    print(json.dumps(service.assemble_prompt(args.thread), indent=2, ensure_ascii=False))


def reset(args: argparse.Namespace, service: ContextService) -> None:
    if not args.yes:
        answer = input(f"Delete all history for thread '{args.thread}'? [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted")
            return
    deleted = service.reset_thread(args.thread)
    print(f"Deleted {deleted} messages from thread '{args.thread}'")


def export(args: argparse.Namespace, service: ContextService) -> None:
    exporter = EXPORTERS[args.format]()
    history = ThreadHistory(
        thread_id=args.thread,
        snapshots=service.list_snapshots(args.thread),
        active_messages=service.messages.list_active(args.thread),
    )
    output = Path(args.output or f"{args.thread}.{exporter.extension}")
    count = exporter.export(history, output)
    print(f"Exported {count} records to {output}")


COMMANDS = {
    "serve": serve,
    "status": status,
    "threads": threads,
    "summarize": summarize,
    "prompt": prompt,
    "reset": reset,
    "export": export,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.error(f"Unknown command {args.command}")

    try:
        config = resolve_config(args)
        service = open_service(config)
    except ContextError as e:
        print(f"Error: {e}")
        return 2

    try:
        handler(args, service)
    except ContextError as e:
        print(f"Error: {e}")
        return 1
    finally:
        service.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
