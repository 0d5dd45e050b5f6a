"""
Backfill records from a legacy deployment without going through HTTP.

Useful for resuming a failed run: pass the offset of the last page that
did not complete.

  python scripts/run_migration.py --url https://old.example/list --offset 4200
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from vss.config import get_settings
from vss.dependencies import get_backend
from vss.db import BackendError
from vss.migration import MigrationError, MigrationWorker

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--url", default=settings.migration_url)
    parser.add_argument("--admin-key", default=settings.admin_key)
    parser.add_argument("--page-size", type=int, default=settings.migration_batch_size)
    parser.add_argument("--offset", type=int, default=settings.migration_start_index)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")

    if not args.url:
        parser.error("--url (or MIGRATION_URL) is required")
    if not args.admin_key:
        parser.error("--admin-key (or ADMIN_KEY) is required")

    worker = MigrationWorker(
        get_backend(settings),
        args.url,
        args.admin_key,
        page_size=args.page_size,
        offset=args.offset,
    )
    try:
        report = worker.run()
    except (MigrationError, BackendError) as exc:
        logger.error("Migration aborted at offset %d: %s", worker.offset, exc)
        return 1
    logger.info(
        "Done: %d records written, %d dropped, next offset %d",
        report.records_written,
        report.records_dropped,
        report.offset,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
