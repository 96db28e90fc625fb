"""CLI entry point for marksync."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

from .auth import AuthSession
from .config import Config, load_config
from .engine import BookmarkSync, run_sync
from .errors import RemoteStoreError
from .push_channel import MQTTPushChannel
from .records import DurableId
from .remote.client import RemoteStoreClient
from .store import Snapshot


class JSONFormatter(logging.Formatter):
    """Render each log record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


LOG_LEVELS = {
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging for the CLI.

    Args:
        verbose: Debug logging, unless ``log_level`` says otherwise.
        log_level: One of ``LOG_LEVELS``.
        json_output: Emit JSON lines instead of plain text.
    """
    if log_level:
        level = LOG_LEVELS.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    logging.basicConfig(level=level, handlers=[handler])

    # httpx logs every poll request at INFO
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


def format_bookmarks(snapshot: Snapshot) -> str:
    """Render the bookmark list for the terminal."""
    if not snapshot:
        return "No bookmarks yet."

    lines = []
    for record in snapshot:
        marker = "*" if record.is_transient else " "
        lines.append(f"{marker} [{record.id}] {record.title}")
        lines.append(f"    {record.url}")
    return "\n".join(lines)


def _print_snapshot(snapshot: Snapshot) -> None:
    print()
    print(format_bookmarks(snapshot))


async def cmd_run(args: argparse.Namespace) -> int:
    """Run a live sync session."""
    config = load_config(args.config)

    print(f"Remote store: {config.remote.rest_url}")
    if config.mqtt.enabled:
        print(f"Push channel: {config.mqtt.broker}:{config.mqtt.port}")
    else:
        print("Push channel: disabled (polling only)")
    print(f"Poll interval: {config.sync.poll_interval_seconds}s")

    try:
        await run_sync(config, on_change=_print_snapshot)
    except KeyboardInterrupt:
        print("\nShutting down...")
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Report whether the remote store and broker answer."""
    config = load_config(args.config)

    remote = RemoteStoreClient(config.remote, access_token=config.auth.access_token)
    remote_reachable = await remote.check_connection()

    mqtt_reachable = False
    if config.mqtt.enabled:
        mqtt_reachable = await MQTTPushChannel(config.mqtt).check_connection()

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "owner_id": config.auth.owner_id,
        "remote": {
            "url": config.remote.rest_url,
            "reachable": remote_reachable,
        },
        "mqtt": {
            "enabled": config.mqtt.enabled,
            "broker": config.mqtt.broker,
            "port": config.mqtt.port,
            "reachable": mqtt_reachable,
        },
        "sync": {
            "poll_interval_seconds": config.sync.poll_interval_seconds,
            "grace_seconds": config.sync.effective_grace_seconds,
        },
    }

    if args.json:
        print(json.dumps(status_data, indent=2))
    else:
        print("marksync Status Check")
        print("=====================")
        print(f"Owner: {config.auth.owner_id or '(not signed in)'}")
        print()
        print(f"Remote store ({config.remote.rest_url}):")
        print(f"  Status: {'Reachable' if remote_reachable else 'Not reachable'}")
        print()
        print(f"MQTT ({config.mqtt.broker}:{config.mqtt.port}):")
        if not config.mqtt.enabled:
            print("  Status: Disabled")
        elif mqtt_reachable:
            print("  Status: Reachable")
            print(f"  Topic prefix: {config.mqtt.topic_prefix}")
        else:
            print("  Status: Not reachable (polling will still keep the list in sync)")
        print()
        print(f"Poll interval: {config.sync.poll_interval_seconds}s, grace: {config.sync.effective_grace_seconds}s")

    return 0 if remote_reachable else 1


async def cmd_list(args: argparse.Namespace) -> int:
    """Fetch and print the bookmark list once."""
    config = load_config(args.config)
    if not config.auth.owner_id:
        print("Error: no owner configured (set MARKSYNC_AUTH_OWNER_ID)", file=sys.stderr)
        return 1

    remote = RemoteStoreClient(config.remote, access_token=config.auth.access_token)
    try:
        records = await remote.fetch_all(config.auth.owner_id)
    except RemoteStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2))
    else:
        print(format_bookmarks(tuple(records)))
    return 0


async def _one_shot_engine(config: Config) -> BookmarkSync:
    remote = RemoteStoreClient(config.remote, access_token=config.auth.access_token)
    auth = AuthSession(config.auth.owner_id, config.auth.access_token)
    engine = BookmarkSync(config, remote, auth=auth)
    await engine.start()
    return engine


async def cmd_add(args: argparse.Namespace) -> int:
    """Add a bookmark and wait for the remote store to confirm it."""
    config = load_config(args.config)
    if not config.auth.owner_id:
        print("Error: no owner configured (set MARKSYNC_AUTH_OWNER_ID)", file=sys.stderr)
        return 1

    engine = await _one_shot_engine(config)
    try:
        try:
            _, task = engine.add_bookmark(args.title, args.url)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

        pending = await task
        if pending.error:
            print(f"Error: {pending.error}", file=sys.stderr)
            return 1

        print(f"Added bookmark {pending.durable_id}")
        return 0
    finally:
        await engine.stop()


async def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a bookmark by its id."""
    config = load_config(args.config)
    if not config.auth.owner_id:
        print("Error: no owner configured (set MARKSYNC_AUTH_OWNER_ID)", file=sys.stderr)
        return 1

    engine = await _one_shot_engine(config)
    try:
        pending = await engine.delete_bookmark(DurableId(args.id))
        if pending.error:
            print(f"Error: {pending.error}", file=sys.stderr)
            return 1

        print(f"Deleted bookmark {args.id}")
        return 0
    finally:
        await engine.stop()


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="marksync",
        description="Keep a bookmark list in sync with a remote store",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none, environment only)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log sync decisions at debug level",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=list(LOG_LEVELS),
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Write logs as JSON lines",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Start a live sync session")
    run_parser.set_defaults(func=cmd_run)

    status_parser = subparsers.add_parser("status", help="Check remote store and broker reachability")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Print the status report as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    list_parser = subparsers.add_parser("list", help="Print the bookmark list once")
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Output bookmarks as JSON",
    )
    list_parser.set_defaults(func=cmd_list)

    add_parser = subparsers.add_parser("add", help="Add a bookmark")
    add_parser.add_argument("title", help="Bookmark title")
    add_parser.add_argument("url", help="Bookmark URL")
    add_parser.set_defaults(func=cmd_add)

    delete_parser = subparsers.add_parser("delete", help="Delete a bookmark")
    delete_parser.add_argument("id", help="Bookmark id")
    delete_parser.set_defaults(func=cmd_delete)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    return asyncio.run(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
