"""
Daily backup job for DocVault.

Copies every live file into today's snapshot under ``<storage_root>/backups``
and then removes snapshots older than the retention window.  Meant to be run
from cron, for example:

    0 2 * * * cd /srv/docvault && python examples/daily_backup.py

Exits with status 1 if either step fails.
"""

import argparse
import logging
import sys
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# CLI arguments
# ---------------------------------------------------------------------------


def parse_args(argv=None):
    from docvault.config import settings

    p = argparse.ArgumentParser(description="Run the DocVault daily backup and retention")
    p.add_argument(
        "--retain-days",
        type=int,
        default=settings.backup_retention_days,
        help="Snapshots older than this many days are removed (default: %(default)s)",
    )
    p.add_argument(
        "--skip-prune", action="store_true", help="Only take today's snapshot"
    )
    return p.parse_args(argv)


def _stamp() -> str:
    return datetime.now(UTC).isoformat()


def main(argv=None) -> int:
    from docvault.app import setup_logging
    from docvault.tasks.backup_tasks import run_backup_prune, run_daily_backup

    setup_logging()
    args = parse_args(argv)

    print(f"[{_stamp()}] Starting daily backup process...")
    try:
        report = run_daily_backup()
        print(
            f"[{_stamp()}] Daily backup completed: {report.copied} copied, "
            f"{len(report.failed)} failed"
        )
        if not args.skip_prune:
            removed = run_backup_prune(retain_days=args.retain_days)
            print(f"[{_stamp()}] Old backup cleanup completed ({len(removed)} removed)")
    except Exception:
        logging.getLogger(__name__).exception("Daily backup failed")
        print(f"[{_stamp()}] Daily backup failed", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
