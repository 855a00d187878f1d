"""
Command line interface for OpenLoop.

Usage:
    open-loop start "Fix all failing tests" --max-iterations 20 --completion-promise DONE
    open-loop status
    open-loop cancel
    open-loop watch --server http://127.0.0.1:4096
"""

import argparse
import asyncio
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Optional

import requests

from open_loop.config import LoopSettings, load_settings
from open_loop.errors import ConfigurationError
from open_loop.loop.models import LoopOutcome
from open_loop.opencode import OpenCodeClient, OpenCodeSubmitter
from open_loop.runtime import OpenLoop

logger = logging.getLogger(__name__)

STREAM_EVENT = "event"
STREAM_FAILED = "failed"
STREAM_CLOSED = "closed"


def configure_logging(workspace: Path, settings: LoopSettings, verbose: bool = False) -> None:
    """Log to stderr and to the workspace log file."""
    log_path = workspace / settings.log_file
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_path, encoding="utf-8"),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="open-loop",
        description="OpenLoop - resend a task prompt every time the session goes idle",
    )
    parser.add_argument(
        "--workspace", "-w",
        default=".",
        help="Workspace directory holding the loop state (default: current directory)"
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config YAML (default: <workspace>/.opencode/open-loop.yaml)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start", help="Start a loop")
    start.add_argument("prompt", help="The task prompt to iterate on")
    start.add_argument(
        "--max-iterations", "-n",
        type=int,
        default=None,
        help="Maximum iterations (0 = unlimited, default from config: 0)"
    )
    start.add_argument(
        "--completion-promise", "-p",
        default=None,
        help="Text that signals completion inside <promise> tags (default: DONE)"
    )
    start.add_argument(
        "--session", "-s",
        default=os.getenv("OPENCODE_SESSION_ID"),
        help="Target session id (default: $OPENCODE_SESSION_ID)"
    )

    subparsers.add_parser("cancel", help="Cancel the active loop")
    subparsers.add_parser("status", help="Show the active loop")

    watch_parser = subparsers.add_parser(
        "watch", help="Follow an OpenCode server's events and drive the loop"
    )
    watch_parser.add_argument(
        "--server",
        default=None,
        help="OpenCode server URL (default from config or $OPENCODE_SERVER_URL)"
    )

    return parser


def _read_events(
    client: OpenCodeClient, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue
) -> None:
    """Pump the blocking event stream into the queue from a worker thread."""

    def post(item) -> None:
        if loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:
            logger.debug("Event loop closed, dropping stream item")

    try:
        for raw in client.iter_events():
            post((STREAM_EVENT, raw))
    except Exception as e:
        post((STREAM_FAILED, e))
    else:
        post((STREAM_CLOSED, None))


async def watch(plugin: OpenLoop, client: OpenCodeClient) -> None:
    """Feed server events to the loop until the stream ends."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    # Reading the stream blocks with no read timeout. A daemon thread
    # cannot hold up interpreter exit when the watch is interrupted.
    reader = threading.Thread(
        target=_read_events, args=(client, loop, queue), name="open-loop-events"
    )
    reader.daemon = True
    reader.start()

    logger.info(f"Watching events from {client.base_url}")
    try:
        while True:
            kind, value = await queue.get()
            if kind == STREAM_FAILED:
                raise value
            if kind == STREAM_CLOSED:
                logger.info("Event stream closed")
                return
            result = await plugin.dispatch(value)
            if result is not None and result.outcome is not LoopOutcome.NOOP:
                print(result.message)
    finally:
        client.close()


def run(args: argparse.Namespace) -> int:
    workspace = Path(args.workspace).resolve()
    try:
        settings = load_settings(workspace, args.config)
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    configure_logging(workspace, settings, args.verbose)

    server_url = getattr(args, "server", None) or settings.server_url
    client = OpenCodeClient(server_url, timeout=settings.request_timeout)
    plugin = OpenLoop(workspace, OpenCodeSubmitter(client), settings)

    try:
        if args.command == "start":
            print(asyncio.run(plugin.control.start(
                prompt=args.prompt,
                max_iterations=args.max_iterations,
                completion_promise=args.completion_promise,
                session_id=args.session,
            )))
        elif args.command == "cancel":
            print(asyncio.run(plugin.control.cancel()))
        elif args.command == "status":
            print(asyncio.run(plugin.control.status()))
        elif args.command == "watch":
            try:
                asyncio.run(watch(plugin, client))
            except requests.exceptions.RequestException as e:
                logger.error(f"Lost connection to {server_url}: {e}")
                return 1
            except KeyboardInterrupt:
                logger.info("Stopped watching")
    finally:
        client.close()

    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
