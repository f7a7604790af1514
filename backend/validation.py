"""
Payload validation for task, technician and group writes.

Request bodies use the camelCase field names of the JSON API; the helpers here
translate them to model column names and raise ValueError with a message that
can be returned to the caller as-is.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from models import PriorityLevel, TaskStatus

# JSON field -> Task column
TASK_FIELDS = {
    "title": "title",
    "explanation": "explanation",
    "status": "status",
    "priorityLevel": "priority_level",
    "estimatedCompletionDate": "estimated_completion_date",
    "assigneeId": "assignee_id",
    "groupId": "group_id",
    "categoryId": "category_id",
    "order": "sort_order",
    "tags": "tags",
    "progress": "progress",
    "externalUrl": "external_url",
    "ticketNumber": "ticket_number",
    "ticketUrl": "ticket_url",
    "lastUpdated": "last_updated",
}

DATE_FIELDS = {"estimatedCompletionDate", "lastUpdated"}
REFERENCE_FIELDS = {"assigneeId", "groupId", "categoryId"}

VALID_STATUSES = [s.value for s in TaskStatus]
VALID_PRIORITIES = [p.value for p in PriorityLevel]


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a date value from a request body.

    Accepts ISO-8601 strings (with or without time, "Z" suffix allowed),
    date/datetime objects and epoch-seconds objects of the form
    {"seconds": n}. Empty values return None. Aware datetimes are converted
    to naive UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a date
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, dict) and "seconds" in value:
        try:
            parsed = datetime.fromtimestamp(float(value["seconds"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError):
            raise ValueError(f"Invalid date: {value}")
    elif isinstance(value, str):
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        except ValueError:
            raise ValueError(f"Invalid date: {value}")
    else:
        raise ValueError(f"Invalid date: {value}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _clean_tags(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [t.strip() for t in value.split(',') if t.strip()]
    if not isinstance(value, list):
        raise ValueError("Tags must be a list of strings")
    return [str(t).strip() for t in value if str(t).strip()]


def _clean_progress(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        progress = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid progress: {value}")
    if progress < 0 or progress > 100:
        raise ValueError("Progress must be between 0 and 100")
    return progress


def clean_task_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate a task payload and map it to column values.

    Args:
        data: Request body using JSON field names
        partial: True for updates, where only supplied fields are checked

    Returns:
        Dictionary keyed by Task column name

    Raises:
        ValueError: On the first invalid field
    """
    if not isinstance(data, dict):
        raise ValueError("Task data must be an object")

    if not partial or "title" in data:
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValueError("Missing required fields")

    cleaned = {}
    for field, column in TASK_FIELDS.items():
        if field not in data:
            continue
        value = data[field]

        if field == "title":
            value = value.strip()
        elif field in DATE_FIELDS:
            value = parse_date(value)
        elif field == "status":
            if value not in VALID_STATUSES:
                raise ValueError(f"Invalid status: {value}. Must be one of {VALID_STATUSES}")
        elif field == "priorityLevel":
            if value in (None, ""):
                value = None
            elif value not in VALID_PRIORITIES:
                raise ValueError(f"Invalid priority: {value}. Must be one of {VALID_PRIORITIES}")
        elif field in REFERENCE_FIELDS:
            value = value or None
        elif field == "tags":
            value = _clean_tags(value)
        elif field == "progress":
            value = _clean_progress(value)
        elif field == "order":
            try:
                value = int(value) if value is not None else 0
            except (TypeError, ValueError):
                raise ValueError(f"Invalid order: {value}")

        cleaned[column] = value

    return cleaned


def validate_technician(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate a technician payload.

    Returns:
        Dictionary keyed by Technician column name
    """
    if not isinstance(data, dict):
        raise ValueError("Technician data must be an object")

    cleaned = {}
    if not partial or "name" in data:
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Name is required")
        cleaned["name"] = name.strip()

    if "email" in data:
        email = (data.get("email") or "").strip()
        if email and "@" not in email:
            raise ValueError("Invalid email address")
        cleaned["email"] = email or None

    if "agentId" in data:
        agent_id = data.get("agentId")
        agent_id = str(agent_id).strip() if agent_id not in (None, "") else None
        if agent_id and not agent_id.isdigit():
            raise ValueError("Agent ID must be numeric")
        cleaned["agent_id"] = agent_id

    if "location" in data:
        cleaned["location"] = data.get("location")
    if "departmentIds" in data:
        cleaned["department_ids"] = list(data.get("departmentIds") or [])

    return cleaned


def validate_group(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate a group payload."""
    if not isinstance(data, dict):
        raise ValueError("Group data must be an object")

    cleaned = {}
    if not partial or "name" in data:
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Group name is required")
        cleaned["name"] = name.strip()
    if "description" in data:
        cleaned["description"] = data.get("description") or ""
    return cleaned
