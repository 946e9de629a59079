"""
Entry point for the admissions desktop application.

This script opens the local SQLite store, optionally seeds it with a
synthetic snapshot, starts the auto-sync job when the installation is
configured for it and launches the graphical user interface. Run it as
a module (``python -m admission_desk.main``) or through the
``admission-desk`` console script.
"""

from __future__ import annotations

import argparse
import logging
from typing import List, Optional

from admission_desk.config import DB_PATH, DEFAULT_ADMIN_SECRET
from admission_desk.data_generator import generate_snapshot
from admission_desk.database import DatabaseManager
from admission_desk.sync import SyncService

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

logger = logging.getLogger(__name__)


def initialise_database(sync: SyncService) -> None:
    """Populate an empty store with a synthetic snapshot."""
    counts = {
        "Linha 1": 24,
        "Linha 2": 18,
    }
    result = sync.apply_snapshot(generate_snapshot(counts, evaluators=2, seed=42))
    logger.info("Demo data loaded: %d records", result.total)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Admissions desk")
    parser.add_argument("--db", default=DB_PATH, help="Path to the SQLite database")
    parser.add_argument("--demo", action="store_true", help="Seed an empty database with synthetic data")
    parser.add_argument("--no-gui", action="store_true", help="Run one sync and exit")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    args = parse_args(argv)
    db = DatabaseManager(args.db)
    sync = SyncService(db)
    if DEFAULT_ADMIN_SECRET:
        sync.auto_setup()
    if args.demo and db.count_rows("submissions") == 0:
        initialise_database(sync)

    config = sync.get_config()
    if args.no_gui:
        result = sync.auto_login_and_pull()
        logger.info("Sync %s: %s", "succeeded" if result.success else "failed", result.as_dict())
        sync.close()
        db.close()
        return

    if config.enabled and config.auto_sync and config.admin_secret:
        sync.start_auto_sync(config.interval_minutes)

    # Imported late so that headless runs do not need Qt
    from admission_desk.gui import run_gui

    run_gui(db, sync)


if __name__ == "__main__":
    main()
