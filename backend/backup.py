"""
Backup and restore of the task, technician and group collections.

A backup is a single JSON document:

    {"version": "1.0", "timestamp": "<ISO-8601>",
     "collections": {"tasks": [...], "technicians": [...], "groups": [...]}}

Restore writes each record under its original id. With the "skip" strategy
existing records are left alone; with "overwrite" they are replaced. A record
that fails to restore is counted and logged, and the rest continue.
"""

import json
import logging
from typing import Any, Dict, List

import database as db
from config import RESTORE_CHUNK_SIZE
from models import utcnow

logger = logging.getLogger(__name__)

BACKUP_VERSION = "1.0"
VALID_COLLECTIONS = ["tasks", "technicians", "groups"]
VALID_STRATEGIES = ["skip", "overwrite"]

# Referenced collections are restored before the tasks that point at them
RESTORE_ORDER = ["technicians", "groups", "tasks"]


def validate_collections(collections: Any) -> List[str]:
    """
    Check a requested collection list.

    Raises:
        ValueError: If the list is empty or names an unknown collection
    """
    if not isinstance(collections, list) or not collections:
        raise ValueError("No collections specified for backup")
    invalid = [c for c in collections if c not in VALID_COLLECTIONS]
    if invalid:
        raise ValueError(f"Invalid collections: {', '.join(map(str, invalid))}")
    return collections


def create_backup(collections: List[str] = None) -> Dict[str, Any]:
    """
    Export the named collections.

    Args:
        collections: Collection names; all collections when omitted
    """
    collections = validate_collections(collections if collections is not None else list(VALID_COLLECTIONS))
    data = {name: db.get_collection_records(name) for name in collections}
    logger.info("Backup created: " + ", ".join(f"{n}={len(r)}" for n, r in data.items()))
    return {
        "version": BACKUP_VERSION,
        "timestamp": utcnow().isoformat() + "Z",
        "collections": data,
    }


def validate_backup(backup: Any):
    """
    Check the shape of a backup document.

    Raises:
        ValueError: Describing the first problem found
    """
    if not isinstance(backup, dict):
        raise ValueError("Invalid backup data format")
    if not backup.get("version") or not backup.get("timestamp"):
        raise ValueError("Invalid backup data format: missing version or timestamp")
    collections = backup.get("collections")
    if not isinstance(collections, dict):
        raise ValueError("Invalid backup data format: missing collections")
    for name, records in collections.items():
        if name not in VALID_COLLECTIONS:
            raise ValueError(f"Invalid collection in backup: {name}")
        if not isinstance(records, list):
            raise ValueError(f"Collection {name} must be a list")


def restore_backup(backup: Dict[str, Any], strategy: str = "skip") -> Dict[str, Any]:
    """
    Restore a backup document.

    Args:
        backup: Backup document as produced by create_backup
        strategy: "skip" (keep existing records) or "overwrite"

    Returns:
        {"success": True, "results": {collection: {created, updated,
         skipped, failed, errors}}, "summary": {...}}
    """
    validate_backup(backup)
    if strategy not in VALID_STRATEGIES:
        raise ValueError(f"Invalid restore strategy: {strategy}")
    overwrite = strategy == "overwrite"

    collections = backup["collections"]
    results = {}
    for name in RESTORE_ORDER:
        if name not in collections:
            continue
        records = collections[name]
        stats = {"total": len(records), "created": 0, "updated": 0, "skipped": 0, "failed": 0, "errors": []}

        for start in range(0, len(records), RESTORE_CHUNK_SIZE):
            for record in records[start:start + RESTORE_CHUNK_SIZE]:
                record_id = record.get("id") if isinstance(record, dict) else None
                try:
                    if not isinstance(record, dict):
                        raise ValueError("Record must be an object")
                    outcome = db.restore_record(name, record, overwrite)
                    stats[outcome] += 1
                except Exception as e:
                    logger.error(f"Failed to restore {name} record {record_id}: {e}")
                    stats["failed"] += 1
                    stats["errors"].append({"id": record_id, "error": str(e)})

        results[name] = stats
        logger.info(
            f"Restored {name}: {stats['created']} created, {stats['updated']} updated, "
            f"{stats['skipped']} skipped, {stats['failed']} failed"
        )

    summary = {
        key: sum(r[key] for r in results.values())
        for key in ("total", "created", "updated", "skipped", "failed")
    }
    return {"success": True, "strategy": strategy, "results": results, "summary": summary}


def write_backup_file(backup: Dict[str, Any], path: str):
    """Write a backup document to disk."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(backup, f, indent=2)


def read_backup_file(path: str) -> Dict[str, Any]:
    """
    Read and validate a backup document from disk.

    Raises:
        ValueError: If the file is not valid JSON or not a backup document
    """
    with open(path, "r", encoding="utf-8") as f:
        try:
            backup = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Backup file is not valid JSON: {e}")
    validate_backup(backup)
    return backup
