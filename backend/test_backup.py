import pytest

import backup
import database as db


def _seed():
    tech = db.create_technician({"name": "Jane Doe", "email": "jane@acme.com", "agentId": "123"})
    group = db.create_group({"name": "Network", "description": "Core network"})
    task = db.create_task({
        "title": "Replace switch",
        "status": "Pending",
        "assigneeId": tech["id"],
        "groupId": group["id"],
        "estimatedCompletionDate": "2025-06-10",
        "tags": ["hardware"],
        "progress": 40,
    })
    return tech, group, task


def test_create_backup_contains_requested_collections():
    _seed()

    document = backup.create_backup(["tasks", "groups"])

    assert document["version"] == "1.0"
    assert document["timestamp"].endswith("Z")
    assert set(document["collections"]) == {"tasks", "groups"}
    assert document["collections"]["tasks"][0]["title"] == "Replace switch"


@pytest.mark.parametrize("collections, message", [
    ([], "No collections specified for backup"),
    (["tasks", "secrets"], "Invalid collections: secrets"),
])
def test_create_backup_rejects_bad_collections(collections, message):
    with pytest.raises(ValueError, match=message):
        backup.create_backup(collections)


def test_restore_skip_keeps_existing_records():
    _, _, task = _seed()
    document = backup.create_backup()
    db.update_task(task["id"], {"title": "Renamed"})

    result = backup.restore_backup(document, "skip")

    assert result["summary"]["skipped"] == 3
    assert result["summary"]["created"] == 0
    assert db.get_task(task["id"])["title"] == "Renamed"


def test_restore_overwrite_replaces_existing_records():
    _, _, task = _seed()
    document = backup.create_backup()
    db.update_task(task["id"], {"title": "Renamed", "progress": 90})

    result = backup.restore_backup(document, "overwrite")

    assert result["results"]["tasks"]["updated"] == 1
    restored = db.get_task(task["id"])
    assert restored["title"] == "Replace switch"
    assert restored["progress"] == 40


def test_restore_into_empty_database_keeps_ids_and_references():
    tech, group, task = _seed()
    document = backup.create_backup()
    db.drop_db()
    db.init_db()

    result = backup.restore_backup(document)

    assert result["summary"]["created"] == 3
    restored = db.get_task(task["id"])
    assert restored["assigneeId"] == tech["id"]
    assert restored["groupId"] == group["id"]
    assert restored["tags"] == ["hardware"]
    assert db.get_technician(tech["id"])["agentId"] == "123"


def test_restore_clears_dangling_references():
    document = {
        "version": "1.0",
        "timestamp": "2025-06-01T00:00:00Z",
        "collections": {"tasks": [{"id": "task-1", "title": "Orphan", "assigneeId": "gone"}]},
    }

    backup.restore_backup(document)

    assert db.get_task("task-1")["assigneeId"] is None


def test_restore_counts_failed_records_and_continues():
    document = {
        "version": "1.0",
        "timestamp": "2025-06-01T00:00:00Z",
        "collections": {"tasks": [
            {"id": "ok", "title": "Good"},
            {"id": "bad", "title": ""},
            {"title": "No id"},
            "not an object",
        ]},
    }

    result = backup.restore_backup(document)

    stats = result["results"]["tasks"]
    assert stats["created"] == 1
    assert stats["failed"] == 3
    assert {e["id"] for e in stats["errors"]} == {"bad", None}


@pytest.mark.parametrize("document, strategy", [
    ("not a dict", "skip"),
    ({"version": "1.0", "collections": {}}, "skip"),
    ({"version": "1.0", "timestamp": "t", "collections": {"users": []}}, "skip"),
    ({"version": "1.0", "timestamp": "t", "collections": {}}, "merge"),
])
def test_restore_rejects_invalid_input(document, strategy):
    with pytest.raises(ValueError):
        backup.restore_backup(document, strategy)


def test_backup_file_round_trip(tmp_path):
    _seed()
    path = tmp_path / "backup.json"

    backup.write_backup_file(backup.create_backup(), str(path))

    assert backup.read_backup_file(str(path))["collections"]["groups"][0]["name"] == "Network"


def test_read_backup_file_rejects_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json")

    with pytest.raises(ValueError, match="not valid JSON"):
        backup.read_backup_file(str(path))


def test_migration_seeds_settings_and_loads_backup(tmp_path):
    import init_taskboard

    _, _, task = _seed()
    path = tmp_path / "export.json"
    backup.write_backup_file(backup.create_backup(), str(path))
    db.drop_db()

    init_taskboard.run_migration(str(path))

    assert db.get_setting("project_name") == "Task Management"
    assert db.get_task(task["id"])["title"] == "Replace switch"


def test_migration_keeps_existing_project_name():
    import init_taskboard

    db.set_setting("project_name", "Network Controls")

    init_taskboard.run_migration()

    assert db.get_setting("project_name") == "Network Controls"
