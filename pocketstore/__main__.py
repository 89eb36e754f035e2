"""CLI entry point for pocketstore."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .errors import PocketStoreError
from .store import PointerStore, StoreHandle
from .sync import Action, RemoteStoreClient, SyncEngine


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        # Safe JSON serialization
        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def _open_store(config: Config) -> tuple[StoreHandle, PointerStore]:
    handle = StoreHandle(config.store.db_path)
    handle.connect()
    return handle, PointerStore(handle, keep_session_versions=config.store.keep_session_versions)


def _remote_client(config: Config) -> RemoteStoreClient:
    return RemoteStoreClient(
        config.sync.remote_url,
        token=config.sync.token,
        max_retries=config.sync.retry_max_attempts,
        backoff_seconds=config.sync.retry_backoff_seconds,
        timeout=config.sync.timeout_seconds,
    )


async def cmd_serve(args: argparse.Namespace) -> int:
    """Start the KV server."""
    config = load_config(args.config)

    import uvicorn

    from .server import create_app

    host = args.host or config.server.host
    port = args.port or config.server.port

    print("Starting pocketstore KV server")
    print(f"Data dir: {config.server.data_dir}")
    print(f"URL: http://{host}:{port}")
    if not config.server.tokens:
        print("Warning: no tokens configured; every request will be rejected", file=sys.stderr)

    app = create_app(config)

    verbose = getattr(args, "verbose", False)
    config_uvicorn = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info" if verbose else "warning",
    )
    server = uvicorn.Server(config_uvicorn)
    await server.serve()
    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show local store statistics and remote reachability."""
    config = load_config(args.config)

    handle, pointers = _open_store(config)
    try:
        stats = await pointers.get_stats()
        user = await pointers.get_current_user()
    finally:
        handle.close()

    status_data = {
        "timestamp": datetime.now().isoformat(),
        "store": {
            "db_path": config.store.db_path,
            "current_user": user.id if user else None,
            **stats,
        },
        "sync": {
            "enabled": config.sync.enabled,
            "remote_url": config.sync.remote_url,
            "email": config.sync.email,
            "reachable": False,
        },
    }

    if config.sync.enabled and config.sync.remote_url:
        async with _remote_client(config) as remote:
            status_data["sync"]["reachable"] = await remote.check_connection()

    if args.json:
        print(json.dumps(status_data, indent=2))
        return 0

    store_status = status_data["store"]
    sync_status = status_data["sync"]
    print("pocketstore Status")
    print("==================")
    print(f"Database: {store_status['db_path']}")
    print(f"  Current user: {store_status['current_user'] or 'none'}")
    for kind, count in store_status["pointers_by_kind"].items():
        print(f"  {kind} pointers: {count}")
    for label, count in store_status["versions_by_label"].items():
        print(f"  {label} versions: {count}")
    print(f"  Content blobs: {store_status['content_count']}")
    print()

    print("Sync:")
    if not sync_status["enabled"]:
        print("  Status: Disabled")
    else:
        print(f"  Remote: {sync_status['remote_url']}")
        print(f"  Account: {sync_status['email']}")
        print(f"  Status: {'Reachable' if sync_status['reachable'] else 'Not reachable'}")

    return 0


async def _run_sync(args: argparse.Namespace, resolve: tuple[str, Action] | None = None) -> int:
    config = load_config(args.config)

    if not config.sync.remote_url or not config.sync.email:
        print("Error: sync.remote_url and sync.email must be configured", file=sys.stderr)
        return 1

    handle, pointers = _open_store(config)
    try:
        user = await pointers.get_current_user()
        if user is None:
            print("Error: no local user to sync", file=sys.stderr)
            return 1

        async with _remote_client(config) as remote:
            engine = SyncEngine(pointers, remote, ancestry_depth=config.sync.ancestry_depth)
            report = await engine.sync_account(config.sync.email, user.id)

            if resolve is not None:
                pointer_id, action = resolve
                result = await engine.resolve_conflict(pointer_id, action)
                print(f"Resolved {pointer_id} with {action.value}", end="")
                print(f" (renamed to {result.renamed_to})" if result.renamed_to else "")
                return 0
    except (PocketStoreError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        handle.close()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return 0 if report.success else 1

    if report.error:
        print(f"Sync failed: {report.error}", file=sys.stderr)
        return 1

    if report.migrated_keys:
        print(f"Migrated {report.migrated_keys} legacy keys")
    for result in report.results:
        line = f"  {result.pointer_id}: {result.state.value}"
        if result.action:
            line += f" ({result.action})"
        if result.error and not result.conflict:
            line += f" - {result.error}"
        print(line)
        if result.conflict:
            rec = result.conflict.recommendation
            print(f"    recommended: {rec.action.value} ({rec.reason})")

    return 0 if report.success else 1


async def cmd_sync(args: argparse.Namespace) -> int:
    """Run one sync pass for the configured account."""
    return await _run_sync(args)


async def cmd_resolve(args: argparse.Namespace) -> int:
    """Sync, then apply a decision to a conflicted pointer."""
    return await _run_sync(args, resolve=(args.pointer_id, Action(args.action)))


async def cmd_history(args: argparse.Namespace) -> int:
    """List the version history of a pointer."""
    config = load_config(args.config)

    handle, pointers = _open_store(config)
    try:
        pointer = await pointers.get(args.pointer_id)
        versions = await pointers.versions.list(args.pointer_id)
    except PocketStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        handle.close()

    if args.json:
        print(json.dumps({
            "pointer": pointer.to_dict(),
            "versions": [v.to_dict() for v in versions],
        }, indent=2))
        return 0

    print(f"{pointer.id} ({pointer.kind.value}) clock={pointer.logical_clock}")
    for version in versions:
        marker = "*" if version.hash == pointer.current_hash else " "
        print(
            f" {marker} {version.timestamp.isoformat()}  "
            f"{version.label.value:<10}  {version.hash[:16]}"
        )
    return 0


async def cmd_checkpoint(args: argparse.Namespace) -> int:
    """Mark a pointer's current state as a permanent checkpoint."""
    config = load_config(args.config)

    handle, pointers = _open_store(config)
    try:
        version = await pointers.versions.checkpoint(args.pointer_id)
    except PocketStoreError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        handle.close()

    print(f"Checkpoint {version.id} of {args.pointer_id} at {version.hash[:16]}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="pocketstore",
        description="Local-first content-addressed store with remote sync",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the KV server")
    serve_parser.add_argument(
        "-p", "--port",
        type=int,
        default=None,
        help="Port to listen on (default: server.port)",
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: server.host)",
    )
    serve_parser.set_defaults(func=cmd_serve)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show store and sync status")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    # Sync command
    sync_parser = subparsers.add_parser("sync", help="Run one sync pass")
    sync_parser.add_argument(
        "--json",
        action="store_true",
        help="Output the sync report as JSON",
    )
    sync_parser.set_defaults(func=cmd_sync)

    # Resolve command
    resolve_parser = subparsers.add_parser("resolve", help="Resolve a sync conflict")
    resolve_parser.add_argument("pointer_id", help="Conflicted pointer")
    resolve_parser.add_argument(
        "action",
        choices=[Action.OVERWRITE.value, Action.SKIP.value, Action.RENAME.value],
        help="Take the remote copy, keep the local one, or keep both",
    )
    resolve_parser.set_defaults(func=cmd_resolve)

    # History command
    history_parser = subparsers.add_parser("history", help="Show a pointer's versions")
    history_parser.add_argument("pointer_id", help="Pointer to inspect")
    history_parser.add_argument(
        "--json",
        action="store_true",
        help="Output history as JSON",
    )
    history_parser.set_defaults(func=cmd_history)

    # Checkpoint command
    checkpoint_parser = subparsers.add_parser("checkpoint", help="Checkpoint a pointer")
    checkpoint_parser.add_argument("pointer_id", help="Pointer to checkpoint")
    checkpoint_parser.set_defaults(func=cmd_checkpoint)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, getattr(args, "json", False))

    if not args.command:
        parser.print_help()
        return 1

    return asyncio.run(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
