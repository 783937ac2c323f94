# retention_sync/cli/sync.py
"""
CLI commands for the retention sync.

Usage:
    python -m retention_sync.cli.sync run
    python -m retention_sync.cli.sync update-retention 8f2b7c1e-...
    python -m retention_sync.cli.sync retry-pending --limit 50
    python -m retention_sync.cli.sync pending --limit 20
    python -m retention_sync.cli.sync jobs --limit 10 --status failed
    python -m retention_sync.cli.sync export-top --limit 20 --output exports/top.json
    python -m retention_sync.cli.sync init-db
"""

import argparse
import sys

from dotenv import load_dotenv

load_dotenv()


def _setup():
    """Validate settings and configure logging. Returns settings."""
    from retention_sync.config import get_settings
    from retention_sync.logging_config import configure_logging

    settings = get_settings()
    configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)
    return settings


def cmd_run(args):
    """Run a full sync."""
    from retention_sync.services.errors import SyncAbortedError
    from retention_sync.services.sync_engine import SyncEngine

    settings = _setup()
    engine = SyncEngine.from_settings(settings)
    try:
        result = engine.sync_all()
    except SyncAbortedError as e:
        print(f"\nSync aborted: {e}")
        if e.metrics is not None:
            _print_metrics(e.metrics.snapshot())
        sys.exit(1)
    finally:
        engine.client.close()

    summary = result.summary()
    print("\n=== Sync Complete ===\n")
    print(f"Run: {summary['run_id']}")
    print(f"Duration: {summary['duration_ms']}ms")
    print(f"Roots walked: {summary['roots_walked']}")
    _print_metrics(summary)

    if result.dropped_folders:
        print(f"\nFolders not saved ({len(result.dropped_folders)}):")
        for folder_id, reason in sorted(result.dropped_folders.items()):
            print(f"  {folder_id}: {reason}")
    print()


def _print_metrics(snapshot: dict) -> None:
    print(f"  Folders: {snapshot['folders_succeeded']} ok, {snapshot['folders_failed']} failed")
    print(f"  Subfolders: {snapshot['subfolders_succeeded']} ok, {snapshot['subfolders_failed']} failed")
    print(
        f"  Data extensions: {snapshot['data_extensions_succeeded']} ok, "
        f"{snapshot['data_extensions_failed']} failed"
    )
    print(f"  Total: {snapshot['total_succeeded']} succeeded, {snapshot['total_failed']} failed")


def cmd_update_retention(args):
    """Push the retention configuration to one data extension."""
    from retention_sync.services.errors import APIError
    from retention_sync.services.sync_engine import SyncEngine

    settings = _setup()
    engine = SyncEngine.from_settings(settings)
    try:
        engine.pusher.push(args.data_extension_id, engine.config.retention)
    except APIError as e:
        print(f"Error: retention update for {args.data_extension_id} failed: {e}")
        sys.exit(1)
    finally:
        engine.client.close()

    retention = engine.config.retention
    print(
        f"Updated {args.data_extension_id}: {retention.data_retention_period_length} "
        f"(unit {retention.data_retention_period_unit_of_measure}), "
        f"row based={retention.is_row_based_retention}"
    )


def cmd_retry_pending(args):
    """Push again for data extensions left pending or failed."""
    from retention_sync.services.sync_engine import SyncEngine

    settings = _setup()
    engine = SyncEngine.from_settings(settings)
    try:
        outcome = engine.retry_pending_updates(limit=args.limit)
    finally:
        engine.client.close()

    print(f"\nRetried {outcome['attempted']} data extensions")
    print(f"  Succeeded: {outcome['succeeded']}")
    print(f"  Failed: {outcome['failed']}\n")


def cmd_pending(args):
    """List data extensions waiting for a retention update."""
    from retention_sync.config import get_settings
    from retention_sync.services.stores import DataExtensionStore

    settings = get_settings()
    store = DataExtensionStore()
    rows = store.list_needing_retention_update(limit=args.limit, max_retries=settings.RETENTION_MAX_RETRIES)

    if not rows:
        print("No data extensions need a retention update")
        return

    print(f"\n=== Pending Retention Updates ({len(rows)}) ===\n")
    for retention, name in rows:
        last_at = retention.last_api_update_at.isoformat() if retention.last_api_update_at else "never"
        print(f"{retention.data_extension_id}  {name}")
        print(
            f"  status={retention.last_api_update_status} retries={retention.api_update_retry_count} "
            f"last_attempt={last_at}"
        )
        if retention.last_api_update_error:
            print(f"  error: {retention.last_api_update_error[:200]}")
    print()


def cmd_jobs(args):
    """List recent sync jobs."""
    from retention_sync.services.stores import SyncJobStore

    store = SyncJobStore()
    jobs = store.list_recent_jobs(limit=args.limit, status=args.status)

    if not jobs:
        print("No sync jobs found")
        return

    print(f"\n=== Recent Sync Jobs ({len(jobs)}) ===\n")
    for job in jobs:
        folder = (job.job_metadata or {}).get("folder_name", "-")
        print(f"{job.id}  {job.status:<10} {folder}")
        print(
            f"  {job.succeeded_items}/{job.processed_items} succeeded "
            f"({job.success_rate:.2f}%), {job.failed_items} failed, duration={job.duration_ms}ms"
        )
        if job.error_message:
            print(f"  error: {job.error_message}")
    print()


def cmd_export_top(args):
    """Export the largest data extensions to JSON."""
    from retention_sync.services.errors import APIError
    from retention_sync.services.marketing_cloud.client import MarketingCloudClient
    from retention_sync.services.top_exporter import default_export_path, export_top_data_extensions

    settings = _setup()
    output = args.output or default_export_path(settings.MCE_ACCOUNT_ID)
    client = MarketingCloudClient.from_settings(settings)
    try:
        top = export_top_data_extensions(
            client,
            output,
            limit=args.limit,
            page_size=settings.DATA_EXTENSION_PAGE_SIZE,
        )
    except APIError as e:
        print(f"Error: export failed: {e}")
        sys.exit(1)
    finally:
        client.close()

    print(f"Exported top {len(top)} data extensions to {output}")


def cmd_init_db(args):
    """Create tables (local development; use alembic elsewhere)."""
    from retention_sync.database import init_db

    init_db()
    print("Tables created")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Marketing Cloud retention sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full sync: mirror folders and data extensions, push retention settings
  python -m retention_sync.cli.sync run

  # Push retention settings to one data extension
  python -m retention_sync.cli.sync update-retention <data_extension_id>

  # Show what still needs a retention update
  python -m retention_sync.cli.sync pending --limit 20

  # Write the 20 largest data extensions to exports/<account id>.json
  python -m retention_sync.cli.sync export-top
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run command
    run_parser = subparsers.add_parser("run", help="Run a full sync")
    run_parser.set_defaults(func=cmd_run)

    # update-retention command
    update_parser = subparsers.add_parser("update-retention", help="Push retention settings to one data extension")
    update_parser.add_argument("data_extension_id", help="Data extension id")
    update_parser.set_defaults(func=cmd_update_retention)

    # retry-pending command
    retry_parser = subparsers.add_parser("retry-pending", help="Retry pending and failed retention updates")
    retry_parser.add_argument("--limit", type=int, default=100, help="Max data extensions to retry (default: 100)")
    retry_parser.set_defaults(func=cmd_retry_pending)

    # pending command
    pending_parser = subparsers.add_parser("pending", help="List data extensions needing a retention update")
    pending_parser.add_argument("--limit", type=int, default=50, help="Max rows to show (default: 50)")
    pending_parser.set_defaults(func=cmd_pending)

    # jobs command
    jobs_parser = subparsers.add_parser("jobs", help="List recent sync jobs")
    jobs_parser.add_argument("--limit", type=int, default=20, help="Max jobs to show (default: 20)")
    jobs_parser.add_argument(
        "--status",
        choices=["pending", "running", "completed", "failed", "cancelled"],
        help="Only show jobs with this status",
    )
    jobs_parser.set_defaults(func=cmd_jobs)

    # export-top command
    export_parser = subparsers.add_parser("export-top", help="Export the largest data extensions to JSON")
    export_parser.add_argument("--limit", type=int, default=20, help="Data extensions to export (default: 20)")
    export_parser.add_argument(
        "--output",
        help="Output file (default: exports/<account id>.json, or exports/export.json)",
    )
    export_parser.set_defaults(func=cmd_export_top)

    # init-db command
    init_parser = subparsers.add_parser("init-db", help="Create tables")
    init_parser.set_defaults(func=cmd_init_db)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
