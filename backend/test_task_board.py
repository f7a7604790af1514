import pytest

from api_client import ApiError
from task_board import TaskBoard, UndoExpired


class FakeBoardClient:
    """In-memory API client; set fail=True to make every write raise."""

    def __init__(self, tasks):
        self.store = {t["id"]: dict(t) for t in tasks}
        self.fail = False
        self.calls = []
        self._created = 0

    def _check(self, name, *args):
        self.calls.append((name,) + args)
        if self.fail:
            raise ApiError(500, "Server unavailable")

    def list_tasks(self):
        return [dict(t) for t in self.store.values()]

    def update_task(self, task_id, updates):
        self._check("update_task", task_id, dict(updates))
        self.store[task_id] = {**self.store[task_id], **updates}
        return dict(self.store[task_id])

    def delete_task(self, task_id):
        self._check("delete_task", task_id)
        del self.store[task_id]
        return {"success": True, "id": task_id}

    def create_task(self, data):
        self._check("create_task", dict(data))
        self._created += 1
        task = {**data, "id": f"new-{self._created}"}
        self.store[task["id"]] = task
        return dict(task)

    def batch_update_tasks(self, task_ids, updates):
        self._check("batch_update_tasks", list(task_ids), dict(updates))
        for task_id in task_ids:
            self.store[task_id] = {**self.store[task_id], **updates}
        return {"success": True}

    def reorder_tasks(self, order_map):
        self._check("reorder_tasks", dict(order_map))
        return {"success": True, "updated": len(order_map)}

    def bulk_create_tasks(self, records):
        return [self.create_task(r) for r in records]


def _tasks():
    return [
        {"id": "a", "title": "Patch firewall", "status": "Open", "order": 0, "createdAt": "2025-01-01T00:00:00"},
        {"id": "b", "title": "Rotate keys", "status": "Open", "order": 1, "createdAt": "2025-01-02T00:00:00"},
        {"id": "c", "title": "Audit access", "status": "Pending", "order": 2, "createdAt": "2025-01-03T00:00:00"},
    ]


@pytest.fixture()
def api():
    return FakeBoardClient(_tasks())


@pytest.fixture()
def board(api, clock):
    return TaskBoard(api, _tasks(), clock=clock, undo_window=7)


def test_update_applies_and_offers_undo(board, api):
    action = board.update_task("a", {"status": "Resolved"})

    assert board.tasks[0]["status"] == "Resolved"
    assert action.kind == "update"
    assert action.previous == {"status": "Open"}
    assert board.pending_undo() == [action]


def test_failed_update_rolls_back_and_reraises(board, api):
    api.fail = True

    with pytest.raises(ApiError):
        board.update_task("a", {"status": "Resolved", "title": "Changed"})

    assert board.tasks[0]["status"] == "Open"
    assert board.tasks[0]["title"] == "Patch firewall"
    assert board.pending_undo() == []


def test_undo_within_window_restores_previous_values(board, api, clock):
    action = board.update_task("b", {"status": "Resolved"})
    clock.now += 6.9

    restored = board.undo(action.action_id)

    assert restored["status"] == "Open"
    assert api.calls[-1] == ("update_task", "b", {"status": "Open"})
    assert board.pending_undo() == []


def test_undo_after_window_is_rejected(board, clock):
    action = board.update_task("b", {"status": "Resolved"})
    clock.now += 7

    with pytest.raises(UndoExpired):
        board.undo(action.action_id)
    assert board.tasks[1]["status"] == "Resolved"


def test_undo_unknown_action_is_rejected(board):
    with pytest.raises(UndoExpired):
        board.undo("missing")


def test_ticket_link_update_is_not_undoable(board):
    assert board.update_task("a", {"ticketNumber": "42", "ticketUrl": "https://x/a/tickets/42"}) is None
    assert board.pending_undo() == []


def test_delete_and_undo_recreates_task_in_place(board, api):
    board.select("b")
    action = board.delete_task("b")

    assert [t["id"] for t in board.tasks] == ["a", "c"]
    assert "b" not in board.selected

    restored = board.undo(action.action_id)

    assert [t["title"] for t in board.tasks] == ["Patch firewall", "Rotate keys", "Audit access"]
    assert restored["id"] == "new-1"
    name, payload = api.calls[-1]
    assert name == "create_task"
    assert "id" not in payload and "createdAt" not in payload


def test_failed_delete_restores_task(board, api):
    api.fail = True

    with pytest.raises(ApiError):
        board.delete_task("b")
    assert [t["id"] for t in board.tasks] == ["a", "b", "c"]


def test_expired_actions_are_dropped(board, clock):
    board.update_task("a", {"status": "Pending"})
    clock.now += 3
    second = board.update_task("b", {"status": "Pending"})
    clock.now += 5

    assert board.pending_undo() == [second]


def test_batch_update_clears_selection_on_success(board, api):
    board.select("a")
    board.select("c")

    updated = board.batch_update({"status": "Resolved"})

    assert updated == ["a", "c"]
    assert board.selected == set()
    assert [t["status"] for t in board.tasks] == ["Resolved", "Open", "Resolved"]


def test_batch_update_rolls_back_on_failure(board, api):
    board.select("a")
    board.select("b")
    api.fail = True

    with pytest.raises(ApiError):
        board.batch_update({"status": "Resolved"})

    assert [t["status"] for t in board.tasks] == ["Open", "Open", "Pending"]
    assert board.selected == {"a", "b"}


def test_batch_update_requires_selection(board):
    with pytest.raises(ValueError):
        board.batch_update({"status": "Resolved"})


def test_move_task_persists_order(board, api):
    board.move_task("c", 0)

    assert [t["id"] for t in board.tasks] == ["c", "a", "b"]
    assert [t["order"] for t in board.tasks] == [0, 1, 2]
    assert api.calls[-1] == ("reorder_tasks", {"c": 0, "a": 1, "b": 2})


def test_move_task_rolls_back_on_failure(board, api):
    api.fail = True

    with pytest.raises(ApiError):
        board.move_task("c", 0)
    assert [t["id"] for t in board.tasks] == ["a", "b", "c"]


def test_bulk_add_appends_created_tasks(board):
    created = board.bulk_add([{"title": "One"}, {"title": "Two"}])

    assert [t["id"] for t in created] == ["new-1", "new-2"]
    assert board.tasks[-1]["title"] == "Two"
