"""
Filtering and grouping of task lists for the list, kanban, group and
timeline views.
"""

from datetime import datetime, time as dt_time
from typing import Any, Dict, List, Optional

from models import TaskStatus
from validation import parse_date

UNASSIGNED = "unassigned"
NO_GROUP = "none"


def _as_list(value: Any) -> List[str]:
    if value in (None, "", "all"):
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return list(value)


def end_of_day(value: Any) -> Optional[datetime]:
    """Parse an end-of-range date; date-only values extend to 23:59:59."""
    parsed = parse_date(value)
    if parsed is None:
        return None
    if isinstance(value, str) and len(value.strip()) == 10:
        return datetime.combine(parsed.date(), dt_time(23, 59, 59))
    return parsed


def filter_tasks(tasks: List[Dict[str, Any]], filters: Dict[str, Any],
                 technicians: List[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """
    Apply list-view filters.

    Args:
        tasks: Task dictionaries
        filters: Any of search, status, priority, assigneeId ("unassigned"
            for tasks without one), groupId ("none" for ungrouped), tags,
            startDate and endDate (due date range, end inclusive)
        technicians: Used so the search also matches assignee names

    Raises:
        ValueError: If a date filter cannot be parsed
    """
    names = {t["id"]: (t.get("name") or "").lower() for t in technicians or []}

    search = (filters.get("search") or "").strip().lower()
    statuses = _as_list(filters.get("status"))
    priorities = _as_list(filters.get("priority"))
    assignees = _as_list(filters.get("assigneeId"))
    groups = _as_list(filters.get("groupId"))
    tags = [t.lower() for t in _as_list(filters.get("tags"))]
    start = parse_date(filters.get("startDate"))
    end = end_of_day(filters.get("endDate"))

    result = []
    for task in tasks:
        if search:
            haystack = " ".join([
                task.get("title") or "",
                task.get("explanation") or "",
                task.get("ticketNumber") or "",
                names.get(task.get("assigneeId"), ""),
            ]).lower()
            if search not in haystack:
                continue
        if statuses and task.get("status") not in statuses:
            continue
        if priorities and task.get("priorityLevel") not in priorities:
            continue
        if assignees:
            key = task.get("assigneeId") or UNASSIGNED
            if key not in assignees:
                continue
        if groups:
            key = task.get("groupId") or NO_GROUP
            if key not in groups:
                continue
        if tags:
            task_tags = [t.lower() for t in task.get("tags") or []]
            if not all(t in task_tags for t in tags):
                continue
        if start or end:
            due = parse_date(task.get("estimatedCompletionDate"))
            if due is None:
                continue
            if start and due < start:
                continue
            if end and due > end:
                continue
        result.append(task)
    return result


def _by_order(tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(tasks, key=lambda t: (t.get("order") or 0, t.get("createdAt") or ""))


def kanban_columns(tasks: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Tasks per status column, each column in board order."""
    columns = {status.value: [] for status in TaskStatus}
    for task in tasks:
        columns.setdefault(task.get("status") or TaskStatus.OPEN.value, []).append(task)
    return {status: _by_order(items) for status, items in columns.items()}


def group_tasks(tasks: List[Dict[str, Any]], groups: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Tasks per group, groups in name order, ungrouped tasks last.

    Tasks pointing at an unknown group are shown as ungrouped.
    """
    buckets = {g["id"]: [] for g in groups}
    ungrouped = []
    for task in tasks:
        group_id = task.get("groupId")
        if group_id in buckets:
            buckets[group_id].append(task)
        else:
            ungrouped.append(task)

    result = [
        {"groupId": g["id"], "name": g.get("name"), "tasks": _by_order(buckets[g["id"]])}
        for g in sorted(groups, key=lambda g: (g.get("name") or "").lower())
    ]
    result.append({"groupId": None, "name": "No Group", "tasks": _by_order(ungrouped)})
    return result


def timeline_items(tasks: List[Dict[str, Any]], technicians: List[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Tasks with a due date as timeline bars, earliest due first."""
    names = {t["id"]: t.get("name") for t in technicians or []}
    items = []
    for task in tasks:
        due = task.get("estimatedCompletionDate")
        if not due:
            continue
        items.append({
            "id": task["id"],
            "title": task.get("title"),
            "start": task.get("createdAt") or task.get("lastUpdated") or due,
            "end": due,
            "status": task.get("status"),
            "progress": task.get("progress") or 0,
            "assignee": names.get(task.get("assigneeId")) or "Unassigned",
        })
    return sorted(items, key=lambda i: i["end"])
