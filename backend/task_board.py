"""
Client-side task list with optimistic updates and a timed undo.

Edits are applied to the local list first and then written through the API
client. A failed write puts the local list back as it was and re-raises. A
successful update or delete registers an undo action that stays available
for the undo window (seven seconds by default). Undo state lives only in
memory.
"""

import copy
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from config import UNDO_WINDOW_SECONDS

logger = logging.getLogger(__name__)

# Ticket linkage changes are not undoable; the ticket already exists remotely
TICKET_FIELDS = {"ticketNumber", "ticketUrl"}

# Fields the server assigns; dropped when re-creating a deleted task
SERVER_FIELDS = {"id", "createdAt", "lastUpdated"}


class UndoExpired(Exception):
    """Raised when undo is requested after the window closed."""


@dataclass
class UndoAction:
    """A reversible change offered to the user."""
    action_id: str
    kind: str  # "update" or "delete"
    task_id: str
    message: str
    expires_at: float
    previous: Dict[str, Any] = field(default_factory=dict)
    index: int = 0


class TaskBoard:
    """
    Local task list backed by the API.

    Args:
        client: Object with create_task, update_task, delete_task,
            batch_update_tasks, bulk_create_tasks, reorder_tasks and
            list_tasks (see api_client.TaskboardClient)
        tasks: Initial task list; call load() to fetch instead
        clock: Monotonic time source
        undo_window: Seconds an undo stays available
    """

    def __init__(self, client: Any, tasks: List[Dict[str, Any]] = None,
                 clock: Callable[[], float] = time.monotonic,
                 undo_window: float = UNDO_WINDOW_SECONDS):
        self.client = client
        self.tasks: List[Dict[str, Any]] = list(tasks or [])
        self.clock = clock
        self.undo_window = undo_window
        self.selected: set = set()
        self._undo: Dict[str, UndoAction] = {}

    def load(self) -> List[Dict[str, Any]]:
        self.tasks = self.client.list_tasks()
        return self.tasks

    def _index(self, task_id: str) -> int:
        for i, task in enumerate(self.tasks):
            if task.get("id") == task_id:
                return i
        raise KeyError(f"Task not in board: {task_id}")

    def _register(self, kind: str, task_id: str, message: str,
                  previous: Dict[str, Any], index: int = 0) -> UndoAction:
        self.expire()
        action = UndoAction(
            action_id=str(uuid.uuid4()),
            kind=kind,
            task_id=task_id,
            message=message,
            expires_at=self.clock() + self.undo_window,
            previous=previous,
            index=index,
        )
        self._undo[action.action_id] = action
        return action

    def expire(self) -> int:
        """Drop undo actions whose window has closed."""
        now = self.clock()
        stale = [aid for aid, a in self._undo.items() if a.expires_at <= now]
        for aid in stale:
            del self._undo[aid]
        return len(stale)

    def pending_undo(self) -> List[UndoAction]:
        """Undo actions still available, oldest first."""
        self.expire()
        return sorted(self._undo.values(), key=lambda a: a.expires_at)

    # -------------------------------------------------------------------------
    # Optimistic edits
    # -------------------------------------------------------------------------

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Optional[UndoAction]:
        """
        Update fields of a task.

        Returns:
            The undo action, or None for ticket linkage updates

        Raises:
            Whatever the client raised; the local task is restored first
        """
        index = self._index(task_id)
        original = copy.deepcopy(self.tasks[index])
        self.tasks[index] = {**original, **updates}

        try:
            saved = self.client.update_task(task_id, updates)
        except Exception:
            logger.warning(f"Update of task {task_id} failed; rolling back")
            self.tasks[self._index(task_id)] = original
            raise

        self.tasks[self._index(task_id)] = saved or self.tasks[index]

        if set(updates) <= TICKET_FIELDS:
            return None
        previous = {k: original.get(k) for k in updates}
        changed = ", ".join(sorted(updates))
        return self._register("update", task_id, f"Updated {changed} on \"{original.get('title')}\"", previous)

    def delete_task(self, task_id: str) -> UndoAction:
        """
        Delete a task.

        Raises:
            Whatever the client raised; the task is put back in place first
        """
        index = self._index(task_id)
        snapshot = self.tasks.pop(index)
        self.selected.discard(task_id)

        try:
            self.client.delete_task(task_id)
        except Exception:
            logger.warning(f"Delete of task {task_id} failed; restoring it")
            self.tasks.insert(index, snapshot)
            raise

        return self._register("delete", task_id, f"Deleted \"{snapshot.get('title')}\"", snapshot, index)

    def undo(self, action_id: str) -> Dict[str, Any]:
        """
        Revert an update or delete while its window is open.

        A deleted task comes back under a new id at its original position.

        Returns:
            The task as stored after the undo

        Raises:
            UndoExpired: If the window has closed or the action is unknown
        """
        action = self._undo.pop(action_id, None)
        if action is None or action.expires_at <= self.clock():
            raise UndoExpired("This action can no longer be undone")

        if action.kind == "update":
            restored = self.client.update_task(action.task_id, action.previous)
            index = self._index(action.task_id)
            self.tasks[index] = restored or {**self.tasks[index], **action.previous}
            return self.tasks[index]

        payload = {k: v for k, v in action.previous.items() if k not in SERVER_FIELDS}
        created = self.client.create_task(payload)
        self.tasks.insert(min(action.index, len(self.tasks)), created)
        return created

    # -------------------------------------------------------------------------
    # Selection and batch edits
    # -------------------------------------------------------------------------

    def select(self, task_id: str):
        self._index(task_id)
        self.selected.add(task_id)

    def deselect(self, task_id: str):
        self.selected.discard(task_id)

    def clear_selection(self):
        self.selected.clear()

    def batch_update(self, updates: Dict[str, Any]) -> List[str]:
        """
        Apply updates to every selected task.

        Optimistic with rollback; no undo is offered. The selection is
        cleared on success.
        """
        task_ids = [t["id"] for t in self.tasks if t["id"] in self.selected]
        if not task_ids:
            raise ValueError("No tasks selected")

        originals = {tid: copy.deepcopy(self.tasks[self._index(tid)]) for tid in task_ids}
        for tid in task_ids:
            index = self._index(tid)
            self.tasks[index] = {**self.tasks[index], **updates}

        try:
            self.client.batch_update_tasks(task_ids, updates)
        except Exception:
            logger.warning(f"Batch update of {len(task_ids)} tasks failed; rolling back")
            for tid, original in originals.items():
                self.tasks[self._index(tid)] = original
            raise

        self.clear_selection()
        return task_ids

    def move_task(self, task_id: str, new_index: int):
        """Move a task to a new board position and persist the order."""
        previous = list(self.tasks)
        task = self.tasks.pop(self._index(task_id))
        new_index = max(0, min(new_index, len(self.tasks)))
        self.tasks.insert(new_index, task)

        order_map = {t["id"]: i for i, t in enumerate(self.tasks)}
        try:
            self.client.reorder_tasks(order_map)
        except Exception:
            self.tasks = previous
            raise
        for i, t in enumerate(self.tasks):
            t["order"] = i

    # -------------------------------------------------------------------------
    # Additions
    # -------------------------------------------------------------------------

    def add_task(self, data: Dict[str, Any]) -> Dict[str, Any]:
        created = self.client.create_task(data)
        self.tasks.append(created)
        return created

    def bulk_add(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Create reviewed extraction results (see name_matching.build_task_records)."""
        created = self.client.bulk_create_tasks(records)
        self.tasks.extend(created)
        return created
