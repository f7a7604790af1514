from datetime import date

import pytest

from analytics import dashboard_summary, generate_report_rows
from export_report import export_report_to_csv, export_report_to_xlsx
from report_pdf import generate_report_pdf
from task_views import filter_tasks, group_tasks, kanban_columns, timeline_items

TODAY = date(2025, 6, 10)

TECHNICIANS = [{"id": "t1", "name": "Jane Doe"}, {"id": "t2", "name": "John Smith"}]
GROUPS = [{"id": "g1", "name": "Network"}, {"id": "g2", "name": "Access"}]


def _task(task_id, status="Open", due=None, assignee=None, group=None, priority=None, order=0, **extra):
    task = {
        "id": task_id,
        "title": f"Task {task_id}",
        "explanation": f"<p>Details of <strong>{task_id}</strong></p>",
        "status": status,
        "priorityLevel": priority,
        "estimatedCompletionDate": due,
        "assigneeId": assignee,
        "groupId": group,
        "order": order,
        "tags": [],
        "progress": 0,
        "createdAt": "2025-06-01T00:00:00",
        "lastUpdated": "2025-06-02T09:30:00",
    }
    task.update(extra)
    return task


TASKS = [
    _task("1", "Open", "2025-06-05T00:00:00", "t1", "g1", "High", 0),
    _task("2", "Pending", "2025-06-12T00:00:00", "t1", None, "Low", 1, tags=["network", "urgent"]),
    _task("3", "Resolved", "2025-06-01T00:00:00", "t2", "g2", None, 2, progress=100),
    _task("4", "Open", None, None, "g1", "Critical", 3),
    _task("5", "Open", "2025-07-30T00:00:00", "ghost", None, "Medium", 4),
]


def test_dashboard_summary_counts():
    summary = dashboard_summary(TASKS, TECHNICIANS, TODAY)

    assert summary["total"] == 5
    assert summary["statusCounts"] == {"Open": 3, "Pending": 1, "Resolved": 1}
    assert summary["priorityCounts"]["None"] == 1
    assert summary["priorityCounts"]["Critical"] == 1
    assert summary["completionRate"] == 20


def test_dashboard_summary_deadlines():
    summary = dashboard_summary(TASKS, TECHNICIANS, TODAY)

    assert [i["id"] for i in summary["overdue"]] == ["1"]
    assert summary["overdue"][0]["daysOverdue"] == 5
    assert [i["id"] for i in summary["upcomingDeadlines"]] == ["2"]
    assert summary["upcomingDeadlines"][0]["daysUntilDue"] == 2


def test_dashboard_summary_workload_busiest_first():
    workload = dashboard_summary(TASKS, TECHNICIANS, TODAY)["workload"]

    assert workload[0]["name"] == "Jane Doe"
    assert workload[0]["total"] == 2
    assert workload[0]["inProgress"] == 1
    unassigned = next(w for w in workload if w["name"] == "Unassigned")
    assert unassigned["total"] == 2  # no assignee plus an unknown assignee


def test_dashboard_summary_empty():
    summary = dashboard_summary([], [], TODAY)

    assert summary["total"] == 0
    assert summary["completionRate"] == 0


def test_report_filters_by_status_and_assignee():
    report = generate_report_rows(TASKS, TECHNICIANS, GROUPS, {"status": ["Open", "Pending"], "assigneeId": "t1"})

    assert report["count"] == 2
    assert report["headers"] == ["Title", "Description", "Status", "Assignee", "Due Date", "Progress"]
    assert report["rows"][0] == ["Task 1", "Details of 1", "Open", "Jane Doe", "2025-06-05", "0%"]
    assert report["filters"]["assignee"] == "Jane Doe"


def test_report_date_range_end_is_inclusive():
    report = generate_report_rows(TASKS, TECHNICIANS, GROUPS, {
        "startDate": "2025-06-01", "endDate": "2025-06-05", "columns": ["title", "group"],
    })

    assert report["rows"] == [["Task 1", "Network"], ["Task 3", "Access"]]


def test_report_unassigned_filter():
    report = generate_report_rows(TASKS, TECHNICIANS, GROUPS, {"assigneeId": "unassigned", "columns": ["title"]})

    assert report["rows"] == [["Task 4"]]


def test_report_without_matches_raises():
    with pytest.raises(ValueError, match="No tasks match"):
        generate_report_rows(TASKS, TECHNICIANS, GROUPS, {"groupId": "nope"})


def test_report_rejects_unknown_columns():
    with pytest.raises(ValueError, match="Unknown report columns"):
        generate_report_rows(TASKS, TECHNICIANS, GROUPS, {"columns": ["title", "secret"]})


def test_report_exports():
    report = generate_report_rows(TASKS, TECHNICIANS, GROUPS, {"columns": ["title", "status", "tags"]})

    csv_text = export_report_to_csv(report)
    assert csv_text.splitlines()[0] == "Title,Status,Tags"
    assert '"network, urgent"' in csv_text

    assert export_report_to_xlsx(report)[:2] == b"PK"
    assert generate_report_pdf(report)[:4] == b"%PDF"


def test_filter_tasks_combines_filters():
    assert [t["id"] for t in filter_tasks(TASKS, {"status": "Open", "groupId": "g1"})] == ["1", "4"]
    assert [t["id"] for t in filter_tasks(TASKS, {"assigneeId": "unassigned"})] == ["4"]
    assert [t["id"] for t in filter_tasks(TASKS, {"groupId": "none"})] == ["2", "5"]
    assert [t["id"] for t in filter_tasks(TASKS, {"tags": "URGENT"})] == ["2"]
    assert [t["id"] for t in filter_tasks(TASKS, {"endDate": "2025-06-05"})] == ["1", "3"]


def test_filter_tasks_search_matches_assignee_name():
    assert [t["id"] for t in filter_tasks(TASKS, {"search": "john"}, TECHNICIANS)] == ["3"]


def test_filter_tasks_rejects_bad_dates():
    with pytest.raises(ValueError):
        filter_tasks(TASKS, {"startDate": "soon"})


def test_board_views():
    columns = kanban_columns(TASKS)
    assert [t["id"] for t in columns["Open"]] == ["1", "4", "5"]

    grouped = group_tasks(TASKS, GROUPS)
    assert [g["name"] for g in grouped] == ["Access", "Network", "No Group"]
    assert [t["id"] for t in grouped[-1]["tasks"]] == ["2", "5"]

    timeline = timeline_items(TASKS, TECHNICIANS)
    assert [i["id"] for i in timeline] == ["3", "1", "2", "5"]
    assert timeline[-1]["assignee"] == "Unassigned"
