"""
Dashboard statistics and report generation over task lists.
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from document_parser import html_to_text
from models import PriorityLevel, TaskStatus
from task_views import end_of_day
from validation import parse_date

UPCOMING_DAYS = 7

REPORT_COLUMNS = {
    "title": "Title",
    "explanation": "Description",
    "status": "Status",
    "priorityLevel": "Priority",
    "assignee": "Assignee",
    "group": "Group",
    "estimatedCompletionDate": "Due Date",
    "progress": "Progress",
    "tags": "Tags",
    "ticketNumber": "Ticket",
    "lastUpdated": "Last Updated",
    "externalUrl": "External URL",
}
DEFAULT_REPORT_COLUMNS = ["title", "explanation", "status", "assignee", "estimatedCompletionDate", "progress"]


def _due_date(task: Dict[str, Any]) -> Optional[date]:
    try:
        parsed = parse_date(task.get("estimatedCompletionDate"))
    except ValueError:
        return None
    return parsed.date() if parsed else None


def dashboard_summary(tasks: List[Dict[str, Any]], technicians: List[Dict[str, Any]],
                      today: date = None) -> Dict[str, Any]:
    """
    Headline numbers for the dashboard.

    Returns:
        total, statusCounts, priorityCounts, completionRate (whole percent of
        Resolved tasks), workload (per assignee, busiest first),
        upcomingDeadlines (open tasks due within a week, soonest first) and
        overdue (open tasks due before today, most overdue first)
    """
    today = today or date.today()
    names = {t["id"]: t.get("name") for t in technicians}

    status_counts = {s.value: 0 for s in TaskStatus}
    priority_counts = {p.value: 0 for p in PriorityLevel}
    priority_counts["None"] = 0
    workload: Dict[str, Dict[str, Any]] = {}
    upcoming = []
    overdue = []

    for task in tasks:
        status = task.get("status") or TaskStatus.OPEN.value
        status_counts[status] = status_counts.get(status, 0) + 1
        priority_counts[task.get("priorityLevel") or "None"] = \
            priority_counts.get(task.get("priorityLevel") or "None", 0) + 1

        assignee_id = task.get("assigneeId")
        key = assignee_id if assignee_id in names else "unassigned"
        entry = workload.setdefault(key, {
            "id": assignee_id if key != "unassigned" else None,
            "name": names.get(assignee_id) if key != "unassigned" else "Unassigned",
            "total": 0,
            "completed": 0,
            "inProgress": 0,
            "open": 0,
        })
        entry["total"] += 1
        if status == TaskStatus.RESOLVED.value:
            entry["completed"] += 1
        elif status == TaskStatus.PENDING.value:
            entry["inProgress"] += 1
        else:
            entry["open"] += 1

        if status == TaskStatus.RESOLVED.value:
            continue
        due = _due_date(task)
        if due is None:
            continue
        item = {
            "id": task.get("id"),
            "title": task.get("title"),
            "dueDate": due.isoformat(),
            "assignee": names.get(assignee_id) or "Unassigned",
            "priorityLevel": task.get("priorityLevel"),
        }
        if due < today:
            item["daysOverdue"] = (today - due).days
            overdue.append(item)
        elif due <= today + timedelta(days=UPCOMING_DAYS):
            item["daysUntilDue"] = (due - today).days
            upcoming.append(item)

    total = len(tasks)
    resolved = status_counts.get(TaskStatus.RESOLVED.value, 0)
    return {
        "total": total,
        "statusCounts": status_counts,
        "priorityCounts": priority_counts,
        "completionRate": round(resolved / total * 100) if total else 0,
        "workload": sorted(workload.values(), key=lambda w: (-w["total"], w["name"] or "")),
        "upcomingDeadlines": sorted(upcoming, key=lambda i: i["dueDate"]),
        "overdue": sorted(overdue, key=lambda i: i["dueDate"]),
    }


def _cell(column: str, task: Dict[str, Any], names: Dict[str, str], group_names: Dict[str, str]) -> str:
    if column == "explanation":
        return html_to_text(task.get("explanation") or "")
    if column == "assignee":
        return names.get(task.get("assigneeId")) or "Unassigned"
    if column == "group":
        return group_names.get(task.get("groupId")) or "No Group"
    if column == "estimatedCompletionDate":
        due = _due_date(task)
        return due.isoformat() if due else "No due date"
    if column == "progress":
        return f"{task.get('progress') or 0}%"
    if column == "tags":
        return ", ".join(task.get("tags") or [])
    if column == "lastUpdated":
        return (task.get("lastUpdated") or "")[:19].replace("T", " ") or "Never"
    if column == "externalUrl":
        return task.get("externalUrl") or "None"
    value = task.get(column)
    return "" if value is None else str(value)


def generate_report_rows(tasks: List[Dict[str, Any]], technicians: List[Dict[str, Any]],
                         groups: List[Dict[str, Any]], config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build a tabular task report.

    Args:
        tasks: Task dictionaries
        technicians: For assignee names
        groups: For group names
        config: Optional status (list), assigneeId, groupId, startDate,
            endDate (inclusive, date-only extends to end of day), dateField
            ("estimatedCompletionDate" or "lastUpdated") and columns

    Returns:
        {"title", "columns", "headers", "rows", "count", "filters"}

    Raises:
        ValueError: On unknown columns, bad dates or when nothing matches
    """
    names = {t["id"]: t.get("name") for t in technicians}
    group_names = {g["id"]: g.get("name") for g in groups}

    columns = config.get("columns") or DEFAULT_REPORT_COLUMNS
    unknown = [c for c in columns if c not in REPORT_COLUMNS]
    if unknown:
        raise ValueError(f"Unknown report columns: {', '.join(unknown)}")

    statuses = config.get("status") or []
    if isinstance(statuses, str):
        statuses = [] if statuses == "all" else [statuses]
    assignee = config.get("assigneeId")
    group = config.get("groupId")
    date_field = config.get("dateField") or "estimatedCompletionDate"
    if date_field not in ("estimatedCompletionDate", "lastUpdated"):
        raise ValueError(f"Invalid date field: {date_field}")
    start = parse_date(config.get("startDate"))
    end = end_of_day(config.get("endDate"))

    selected = []
    for task in tasks:
        if statuses and task.get("status") not in statuses:
            continue
        if assignee and assignee != "all":
            if assignee == "unassigned":
                if task.get("assigneeId"):
                    continue
            elif task.get("assigneeId") != assignee:
                continue
        if group and group != "all" and task.get("groupId") != group:
            continue
        if start or end:
            value = parse_date(task.get(date_field))
            if value is None:
                continue
            if start and value < start:
                continue
            if end and value > end:
                continue
        selected.append(task)

    if not selected:
        raise ValueError("No tasks match the selected filters")

    selected.sort(key=lambda t: (t.get("order") or 0))
    return {
        "title": config.get("title") or "Task Report",
        "columns": list(columns),
        "headers": [REPORT_COLUMNS[c] for c in columns],
        "rows": [[_cell(c, t, names, group_names) for c in columns] for t in selected],
        "count": len(selected),
        "filters": {
            "status": statuses or "all",
            "assignee": names.get(assignee) or assignee or "all",
            "group": group_names.get(group) or group or "all",
            "startDate": config.get("startDate"),
            "endDate": config.get("endDate"),
            "dateField": date_field,
        },
    }
