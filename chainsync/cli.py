"""Command line interface for the chain sync service."""

import argparse
import sys

from chainsync.config import Config
from chainsync.db.healthcheck import check_tables_exist, create_tables
from chainsync.db.session import get_session, init_db
from chainsync.log import get_logger, setup_logging

logger = get_logger(__name__)


def serve(config: Config) -> None:
    """Start the HTTP server, with the poller running in the background.

    Args:
        config: Configuration object
    """
    import uvicorn

    from chainsync.app import create_app

    check_tables_exist()
    app = create_app(config)
    uvicorn.run(app, host=config.http_host, port=config.http_port, log_config=None)


def sync_once(config: Config) -> None:
    """Run one full sweep from the indexer and print a summary.

    Args:
        config: Configuration object
    """
    from chainsync.sync.indexer_client import IndexerClient
    from chainsync.sync.poller import Poller
    from chainsync.sync.store import table_counts

    check_tables_exist()
    print(f"Syncing from indexer at {config.graphql_url}")

    indexer = IndexerClient(config)
    try:
        result = Poller(config, indexer).run_once()
    finally:
        indexer.close()

    print("-" * 50)
    for entity_type, count in result.synced.items():
        print(f"  {entity_type.value}s synced: {count}")
    for entity_type, message in result.errors.items():
        print(f"  {entity_type.value}s FAILED: {message}")
    print("-" * 50)

    with get_session() as session:
        counts = table_counts(session)
    print("Table totals:")
    for name, count in counts.items():
        print(f"  {name}: {count}")
    print(f"Completed in {result.duration_seconds:.2f}s")

    if not result.ok:
        sys.exit(1)


def show_status(config: Config) -> None:
    """Print the sync-status ledger and table counts.

    Args:
        config: Configuration object
    """
    from chainsync.sync.status import status_report

    with get_session() as session:
        report = status_report(session, config.sync_stale_after_seconds)

    print(f"Indexer: {config.graphql_url}")
    print("-" * 50)
    for row in report["syncStatus"]:
        print(f"  {row['entity_type']}:")
        print(f"    Status: {row['status']}")
        print(f"    Last Block: {row['last_block_number']}")
        print(f"    Last Synced: {row['last_synced_at']}")
        print(f"    Total Synced: {row['total_synced']}")
        if row["error_message"]:
            print(f"    Error: {row['error_message']}")
    print("-" * 50)
    for name, count in report["counts"].items():
        print(f"{name}: {count}")


def setup_db(config: Config) -> None:
    """Create the tables and seed the sync-status ledger.

    Args:
        config: Configuration object
    """
    from chainsync.sync.status import seed_sync_status

    create_tables()
    with get_session() as session:
        seed_sync_status(session)
    print("Database setup complete!")


def clear_cache_command(config: Config, confirmed: bool) -> None:
    """Delete every cached entity row.

    Args:
        config: Configuration object
        confirmed: Whether --yes was given
    """
    from chainsync.sync.store import clear_cache

    if not confirmed:
        print("Refusing to clear the cache without --yes", file=sys.stderr)
        sys.exit(1)

    with get_session() as session:
        deleted = clear_cache(session)
    for table, count in deleted.items():
        print(f"  {table}: {count} rows deleted")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        description="Crowdfunding blockchain cache synchronization service",
        prog="chainsync",
    )
    parser.add_argument("--log-level", type=str, help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("serve", help="Start the webhook server and auto-sync")
    subparsers.add_parser("sync", help="Run one full sync from the indexer")
    subparsers.add_parser("status", help="Show sync status")
    subparsers.add_parser("setup-db", help="Create tables and seed the sync status")

    clear_parser = subparsers.add_parser("clear-cache", help="Delete all cached blockchain data")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm the deletion")

    return parser


def main() -> None:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Load config
    try:
        config = Config.from_env()
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config, args.log_level)
    init_db(config)

    try:
        if args.command == "serve":
            serve(config)
        elif args.command == "sync":
            sync_once(config)
        elif args.command == "status":
            show_status(config)
        elif args.command == "setup-db":
            setup_db(config)
        elif args.command == "clear-cache":
            clear_cache_command(config, args.yes)
        else:
            parser.print_help()
            sys.exit(1)

    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
