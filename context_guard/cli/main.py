"""CLI: context-guard serve, chat, forget, history, config validate."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from ..config import load_config, validate_config
from ..controller import SessionController
from ..logging_config import setup_logging
from ..transport.chunking import split_response_into_chunks


def _load(args):
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(args.log_level or config.logging.level, config.logging.file or None)
    return config


def cmd_serve(args):
    """Start the HTTP server."""
    import uvicorn

    from ..transport.server import create_app

    config = _load(args)
    host = args.host or config.server.host
    port = args.port or config.server.port
    app = create_app(config=config)
    print(f"context-guard on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info", timeout_graceful_shutdown=2)


async def _chat_loop(config, thread_id: str) -> None:
    async with SessionController.from_config(config) as controller:
        limit = config.response.display_limit
        while True:
            try:
                line = await asyncio.to_thread(input, "you> ")
            except EOFError:
                print()
                break
            message = line.strip()
            if not message:
                continue
            if message in ("/quit", "/exit"):
                break
            if message == "/forget":
                await controller.on_thread_deleted(thread_id)
                print("(thread forgotten)")
                continue
            response = await controller.handle_turn(thread_id, message)
            for chunk in split_response_into_chunks(response, limit):
                print(f"bot> {chunk}")


def cmd_chat(args):
    """Interactive chat on one thread from stdin."""
    config = _load(args)
    try:
        asyncio.run(_chat_loop(config, args.thread))
    except KeyboardInterrupt:
        print()


async def _forget(config, thread_id: str) -> list[str]:
    async with SessionController.from_config(config) as controller:
        return await controller.on_thread_deleted(thread_id)


def cmd_forget(args):
    """Delete a thread's history, summary and similarity entries."""
    config = _load(args)
    failed = asyncio.run(_forget(config, args.thread))
    if failed:
        print(f"Thread {args.thread}: failed to delete {', '.join(failed)}", file=sys.stderr)
        sys.exit(1)
    print(f"Thread {args.thread} forgotten.")


async def _history(config, thread_id: str) -> dict:
    async with SessionController.from_config(config) as controller:
        entries = await controller.history.read(thread_id)
        summary = await controller.summaries.get(thread_id)
        indexed = await controller.similarity.list_thread(thread_id)
    return {
        "history": [m.to_dict() for m in entries],
        "summary": summary,
        "indexed_exchanges": len(indexed),
    }


def cmd_history(args):
    """Show a thread's stored history and summary."""
    config = _load(args)
    data = asyncio.run(_history(config, args.thread))

    if args.json:
        print(json.dumps(data, ensure_ascii=False, indent=2))
        return

    if not data["history"]:
        print(f"No history for thread {args.thread}.")
    for entry in data["history"]:
        print(f"[{entry['role']}] {entry['content']}")
    print()
    print(f"Summary: {data['summary'] or '(empty)'}")
    print(f"Indexed exchanges: {data['indexed_exchanges']}")


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Model provider: {config.model.provider}")
        print(f"  Storage: {config.storage.backend}")
        print(f"  Similarity: {config.similarity.backend} (limit {config.similarity.limit})")
        print(f"  History: {config.history.max_pairs} pairs, ttl {config.history.ttl_seconds}s")
        print(f"  Weather: {'on' if config.weather.enabled else 'off'}, search: {'on' if config.search.enabled else 'off'}")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="context-guard",
        description="Conversation context management with response verification",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--log-level", help="Override logging level (DEBUG, INFO, ...)")
    subparsers = parser.add_subparsers(dest="command")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--host", help="Bind address (default from config)")
    serve_parser.add_argument("--port", "-p", type=int, help="Port (default from config)")

    chat_parser = subparsers.add_parser("chat", help="Interactive chat on one thread")
    chat_parser.add_argument("--thread", "-t", default="cli", help="Thread id")

    forget_parser = subparsers.add_parser("forget", help="Delete all state for a thread")
    forget_parser.add_argument("thread", help="Thread id")

    history_parser = subparsers.add_parser("history", help="Show a thread's history and summary")
    history_parser.add_argument("thread", help="Thread id")
    history_parser.add_argument("--json", action="store_true", help="Print as JSON")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "chat":
        cmd_chat(args)
    elif args.command == "forget":
        cmd_forget(args)
    elif args.command == "history":
        cmd_history(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: context-guard config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
