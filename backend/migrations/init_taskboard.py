"""
Database Migration: Initialize Taskboard Tables

This migration:
- Creates the task, technician, group, category, audit, dashboard and
  setting tables, adding the category and ticket link columns to an
  existing tasks table
- Seeds the default project name setting
- Optionally loads a backup file exported from another installation

Usage:
    python migrations/init_taskboard.py [backup.json] [skip|overwrite]
"""

import sys
import os

# Add parent directory to path to import models
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import backup
from database import get_setting, init_db, set_setting
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "project_name": "Task Management",
}


def seed_default_settings():
    """Write default settings that are not yet present."""
    for key, value in DEFAULT_SETTINGS.items():
        if get_setting(key) is not None:
            logger.info(f"Setting '{key}' already exists. Skipping seed.")
            continue
        set_setting(key, value)
        logger.info(f"Seeded setting '{key}' = '{value}'")


def load_backup(path, strategy="skip"):
    """Restore a backup file into the database."""
    logger.info(f"Loading backup from {path} (strategy: {strategy})")
    document = backup.read_backup_file(path)
    result = backup.restore_backup(document, strategy)

    summary = result["summary"]
    logger.info(
        f"Restored {summary['total']} records: {summary['created']} created, "
        f"{summary['updated']} updated, {summary['skipped']} skipped, {summary['failed']} failed"
    )
    return result


def run_migration(backup_path=None, strategy="skip"):
    """Execute the migration."""
    logger.info("=" * 60)
    logger.info("Running Migration: Initialize Taskboard Tables")
    logger.info("=" * 60)

    try:
        init_db()
        seed_default_settings()

        if backup_path:
            load_backup(backup_path, strategy)

        logger.info("=" * 60)
        logger.info("Migration completed successfully!")
        logger.info("=" * 60)

    except Exception as e:
        logger.error(f"Migration failed: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else None
    mode = sys.argv[2] if len(sys.argv) > 2 else "skip"
    run_migration(path, mode)
