"""
Database connection and session management for the Taskboard application.
"""

import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.orm import sessionmaker, scoped_session

from config import DATABASE_URL
from models import (
    Base,
    Task,
    Technician,
    Group,
    Category,
    AuditEvent,
    Dashboard,
    Setting,
    utcnow
)
from validation import clean_task_fields, validate_group, validate_technician, parse_date

logger = logging.getLogger(__name__)

# Create engine
engine = create_engine(DATABASE_URL, echo=False)

# Create session factory
session_factory = sessionmaker(bind=engine)
Session = scoped_session(session_factory)


class RecordNotFound(Exception):
    """Raised when a multi-record operation references a missing record."""

    def __init__(self, entity: str, record_id: str):
        super().__init__(f"{entity} not found: {record_id}")
        self.entity = entity
        self.record_id = record_id


def init_db():
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(engine)
    _ensure_task_columns()
    logger.info(f"Database initialized at {DATABASE_URL}")


def _ensure_task_columns():
    """Add new columns to the tasks table if the database already exists."""
    inspector = inspect(engine)
    if "tasks" not in inspector.get_table_names():
        return

    columns = {col["name"] for col in inspector.get_columns("tasks")}
    alters = []
    if "category_id" not in columns:
        alters.append("ALTER TABLE tasks ADD COLUMN category_id VARCHAR(36)")
    if "ticket_url" not in columns:
        alters.append("ALTER TABLE tasks ADD COLUMN ticket_url VARCHAR(1000)")

    if not alters:
        return

    with engine.begin() as conn:
        for stmt in alters:
            conn.execute(text(stmt))


def drop_db():
    """Drop all tables (use with caution!)."""
    Base.metadata.drop_all(engine)
    logger.info("All tables dropped")


@contextmanager
def get_session():
    """
    Context manager for database sessions.

    Usage:
        with get_session() as session:
            session.query(Task).all()
    """
    session = Session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        raise e
    finally:
        session.close()


def _new_id() -> str:
    return str(uuid.uuid4())


def _check_references(session, cleaned: Dict[str, Any]):
    """Reject task writes whose technician, group or category ids do not resolve."""
    checks = (
        ("assignee_id", Technician, "Technician"),
        ("group_id", Group, "Group"),
        ("category_id", Category, "Category"),
    )
    for column, model, label in checks:
        ref = cleaned.get(column)
        if ref and session.get(model, ref) is None:
            raise ValueError(f"{label} not found: {ref}")


# =============================================================================
# TASK FUNCTIONS
# =============================================================================

def get_all_tasks() -> List[dict]:
    """Get all tasks in board order."""
    with get_session() as session:
        tasks = session.query(Task)\
            .order_by(Task.sort_order.asc(), Task.created_at.asc())\
            .all()
        return [t.to_dict() for t in tasks]


def get_task(task_id: str) -> Optional[dict]:
    """
    Get a task by ID.

    Returns:
        Dictionary representation of the task, or None if not found
    """
    with get_session() as session:
        task = session.get(Task, task_id)
        return task.to_dict() if task else None


def create_task(data: Dict[str, Any], task_id: str = None) -> dict:
    """
    Create a task.

    Args:
        data: Task payload using JSON field names
        task_id: Optional id to use instead of a generated one

    Returns:
        The created task dictionary

    Raises:
        ValueError: If the payload is invalid
    """
    cleaned = clean_task_fields(data)
    with get_session() as session:
        _check_references(session, cleaned)
        if "sort_order" not in cleaned:
            cleaned["sort_order"] = session.query(Task).count()
        cleaned.setdefault("last_updated", utcnow())

        task = Task(id=task_id or _new_id(), **cleaned)
        session.add(task)
        session.flush()
        return task.to_dict()


def create_tasks_bulk(items: List[Dict[str, Any]]) -> List[dict]:
    """
    Create many tasks in a single transaction.

    Every item is validated before anything is written; one invalid item
    rejects the whole request.

    Raises:
        ValueError: Naming the index of the first invalid item
    """
    if not isinstance(items, list) or not items:
        raise ValueError("Request body must be a non-empty array of tasks")

    cleaned_items = []
    for index, item in enumerate(items):
        if not isinstance(item, dict) or not str(item.get("title") or "").strip():
            raise ValueError(f"Task at index {index} is missing a title")
        try:
            cleaned_items.append(clean_task_fields(item))
        except ValueError as e:
            raise ValueError(f"Task at index {index}: {e}")

    with get_session() as session:
        start_order = session.query(Task).count()
        now = utcnow()
        created = []
        for index, cleaned in enumerate(cleaned_items):
            try:
                _check_references(session, cleaned)
            except ValueError as e:
                raise ValueError(f"Task at index {index}: {e}")
            cleaned.setdefault("sort_order", start_order + index)
            cleaned.setdefault("last_updated", now)
            task = Task(id=_new_id(), **cleaned)
            session.add(task)
            created.append(task)
        session.flush()
        return [t.to_dict() for t in created]


def update_task(task_id: str, data: Dict[str, Any]) -> Optional[dict]:
    """
    Apply a partial update to a task.

    Returns:
        The updated task dictionary, or None if not found
    """
    cleaned = clean_task_fields(data, partial=True)
    with get_session() as session:
        task = session.get(Task, task_id)
        if not task:
            return None
        _check_references(session, cleaned)
        cleaned.setdefault("last_updated", utcnow())
        for column, value in cleaned.items():
            setattr(task, column, value)
        session.flush()
        return task.to_dict()


def delete_task(task_id: str) -> bool:
    """
    Delete a task by ID.

    Returns:
        True if deleted, False if not found
    """
    with get_session() as session:
        task = session.get(Task, task_id)
        if task:
            session.delete(task)
            return True
        return False


def batch_update_tasks(task_ids: List[str], updates: Dict[str, Any]) -> List[str]:
    """
    Apply the same updates to several tasks in one transaction.

    Raises:
        ValueError: If the updates are invalid
        RecordNotFound: If any id does not exist (nothing is written)
    """
    cleaned = clean_task_fields(updates, partial=True)
    with get_session() as session:
        _check_references(session, cleaned)
        cleaned.setdefault("last_updated", utcnow())
        for task_id in task_ids:
            task = session.get(Task, task_id)
            if not task:
                raise RecordNotFound("Task", task_id)
            for column, value in cleaned.items():
                setattr(task, column, value)
        return list(task_ids)


def reorder_tasks(order_map: Dict[str, Any]) -> int:
    """
    Set the board position of several tasks.

    Args:
        order_map: Mapping of task id to new order index

    Returns:
        Number of tasks updated
    """
    with get_session() as session:
        updated = 0
        for task_id, order in order_map.items():
            task = session.get(Task, task_id)
            if not task:
                raise RecordNotFound("Task", task_id)
            try:
                task.sort_order = int(order)
            except (TypeError, ValueError):
                raise ValueError(f"Invalid order for task {task_id}: {order}")
            updated += 1
        return updated


def merge_tasks(task_ids: List[str], merged_data: Dict[str, Any]) -> dict:
    """
    Replace several tasks by one merged task.

    The merged task takes the board position of the first source task.
    """
    if not task_ids:
        raise ValueError("No tasks to merge")
    cleaned = clean_task_fields(merged_data)
    with get_session() as session:
        sources = []
        for task_id in task_ids:
            task = session.get(Task, task_id)
            if not task:
                raise RecordNotFound("Task", task_id)
            sources.append(task)

        _check_references(session, cleaned)
        cleaned.setdefault("sort_order", min(t.sort_order or 0 for t in sources))
        cleaned.setdefault("last_updated", utcnow())

        for task in sources:
            session.delete(task)
        merged = Task(id=_new_id(), **cleaned)
        session.add(merged)
        session.flush()
        return merged.to_dict()


# =============================================================================
# TECHNICIAN FUNCTIONS
# =============================================================================

def get_all_technicians() -> List[dict]:
    """Get all technicians sorted by name."""
    with get_session() as session:
        techs = session.query(Technician).order_by(Technician.name.asc()).all()
        return [t.to_dict() for t in techs]


def get_technician(tech_id: str) -> Optional[dict]:
    """Get a technician by ID, or None if not found."""
    with get_session() as session:
        tech = session.get(Technician, tech_id)
        return tech.to_dict() if tech else None


def create_technician(data: Dict[str, Any], tech_id: str = None) -> dict:
    """Create a technician from a validated payload."""
    cleaned = validate_technician(data)
    with get_session() as session:
        tech = Technician(id=tech_id or _new_id(), **cleaned)
        session.add(tech)
        session.flush()
        return tech.to_dict()


def update_technician(tech_id: str, data: Dict[str, Any]) -> Optional[dict]:
    """Update a technician. Returns None if not found."""
    cleaned = validate_technician(data, partial=True)
    with get_session() as session:
        tech = session.get(Technician, tech_id)
        if not tech:
            return None
        for column, value in cleaned.items():
            setattr(tech, column, value)
        tech.last_updated = utcnow()
        session.flush()
        return tech.to_dict()


def delete_technician(tech_id: str) -> Optional[int]:
    """
    Delete a technician and unassign their tasks.

    Returns:
        Number of tasks unassigned, or None if the technician was not found
    """
    with get_session() as session:
        tech = session.get(Technician, tech_id)
        if not tech:
            return None
        updated = session.query(Task)\
            .filter(Task.assignee_id == tech_id)\
            .update({Task.assignee_id: None, Task.last_updated: utcnow()}, synchronize_session=False)
        session.delete(tech)
        return updated


def sync_technicians(agents: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge ticketing-system agents into the technician list.

    Each agent is matched first by agent id, then by email (case-insensitive,
    which also records the agent id), and added when neither matches. A
    failure on one agent is recorded and the rest continue.

    Returns:
        {"added": n, "updated": n, "failed": n, "errors": [...]}
    """
    results = {"added": 0, "updated": 0, "failed": 0, "errors": []}

    for agent in agents:
        agent_id = str(agent.get("agentId") or "").strip()
        email = (agent.get("email") or "").strip()
        try:
            with get_session() as session:
                tech = None
                if agent_id:
                    tech = session.query(Technician)\
                        .filter(Technician.agent_id == agent_id)\
                        .first()
                if tech is None and email:
                    tech = session.query(Technician)\
                        .filter(func.lower(Technician.email) == email.lower())\
                        .first()

                if tech is None:
                    session.add(Technician(
                        id=_new_id(),
                        name=agent.get("name") or email or agent_id,
                        email=email or None,
                        agent_id=agent_id or None,
                        location=agent.get("location_name"),
                        department_ids=agent.get("department_ids") or []
                    ))
                    results["added"] += 1
                else:
                    tech.name = agent.get("name") or tech.name
                    tech.email = email or tech.email
                    tech.agent_id = agent_id or tech.agent_id
                    tech.location = agent.get("location_name") or tech.location
                    tech.department_ids = agent.get("department_ids") or tech.department_ids
                    tech.last_updated = utcnow()
                    results["updated"] += 1
        except Exception as e:
            logger.error(f"Failed to sync agent {agent_id or email}: {e}", exc_info=True)
            results["failed"] += 1
            results["errors"].append({"agentId": agent_id, "email": email, "error": str(e)})

    logger.info(
        f"Sync complete: {results['added']} added, {results['updated']} updated, "
        f"{results['failed']} failed"
    )
    return results


# =============================================================================
# GROUP FUNCTIONS
# =============================================================================

def get_all_groups() -> List[dict]:
    """Get all groups sorted by name."""
    with get_session() as session:
        groups = session.query(Group).order_by(Group.name.asc()).all()
        return [g.to_dict() for g in groups]


def get_group(group_id: str) -> Optional[dict]:
    """Get a group by ID, or None if not found."""
    with get_session() as session:
        group = session.get(Group, group_id)
        return group.to_dict() if group else None


def create_group(data: Dict[str, Any], group_id: str = None) -> dict:
    """Create a group."""
    cleaned = validate_group(data)
    with get_session() as session:
        group = Group(id=group_id or _new_id(), **cleaned)
        session.add(group)
        session.flush()
        return group.to_dict()


def update_group(group_id: str, data: Dict[str, Any]) -> Optional[dict]:
    """Update a group. Returns None if not found."""
    cleaned = validate_group(data, partial=True)
    with get_session() as session:
        group = session.get(Group, group_id)
        if not group:
            return None
        for column, value in cleaned.items():
            setattr(group, column, value)
        session.flush()
        return group.to_dict()


def delete_group(group_id: str) -> Optional[int]:
    """
    Delete a group and clear it from member tasks.

    Returns:
        Number of tasks updated, or None if the group was not found
    """
    with get_session() as session:
        group = session.get(Group, group_id)
        if not group:
            return None
        updated = session.query(Task)\
            .filter(Task.group_id == group_id)\
            .update({Task.group_id: None, Task.last_updated: utcnow()}, synchronize_session=False)
        session.delete(group)
        return updated


# =============================================================================
# CATEGORY FUNCTIONS
# =============================================================================

def get_all_categories() -> List[dict]:
    """Get all categories sorted by label."""
    with get_session() as session:
        categories = session.query(Category).order_by(Category.value.asc()).all()
        return [c.to_dict() for c in categories]


def create_category(value: str, display_id: int = None, category_id: str = None) -> dict:
    """Create a category."""
    if not value or not str(value).strip():
        raise ValueError("Category value is required")
    with get_session() as session:
        category = Category(id=category_id or _new_id(), value=str(value).strip(), display_id=display_id)
        session.add(category)
        session.flush()
        return category.to_dict()


def update_category(category_id: str, data: Dict[str, Any]) -> Optional[dict]:
    """Update a category label or display id. Returns None if not found."""
    with get_session() as session:
        category = session.get(Category, category_id)
        if not category:
            return None
        if "value" in data:
            value = str(data.get("value") or "").strip()
            if not value:
                raise ValueError("Category value is required")
            category.value = value
        if "displayId" in data:
            category.display_id = data.get("displayId")
        session.flush()
        return category.to_dict()


def delete_category(category_id: str) -> Optional[int]:
    """
    Delete a category and clear it from tasks.

    Returns:
        Number of tasks updated, or None if the category was not found
    """
    with get_session() as session:
        category = session.get(Category, category_id)
        if not category:
            return None
        updated = session.query(Task)\
            .filter(Task.category_id == category_id)\
            .update({Task.category_id: None, Task.last_updated: utcnow()}, synchronize_session=False)
        session.delete(category)
        return updated


def upsert_categories(choices: List[Dict[str, Any]]) -> Dict[str, int]:
    """
    Insert or update categories keyed by their ticketing-system choice id.

    Returns:
        {"added": n, "updated": n}
    """
    added = updated = 0
    with get_session() as session:
        for choice in choices:
            category_id = str(choice["id"])
            category = session.get(Category, category_id)
            if category is None:
                session.add(Category(
                    id=category_id,
                    value=choice.get("value") or "",
                    display_id=choice.get("displayId")
                ))
                added += 1
            else:
                category.value = choice.get("value") or category.value
                category.display_id = choice.get("displayId", category.display_id)
                updated += 1
    return {"added": added, "updated": updated}


# =============================================================================
# AUDIT TRAIL FUNCTIONS
# =============================================================================

def save_audit_event(**fields) -> dict:
    """Append an audit event."""
    with get_session() as session:
        event = AuditEvent(**fields)
        session.add(event)
        session.flush()
        return event.to_dict()


def query_audit_events(filters: Dict[str, Any] = None, page: int = 1, per_page: int = 50) -> dict:
    """
    Query audit events newest first.

    Args:
        filters: Optional action, entityType, userId, startDate, endDate
        page: Page number (1-indexed)
        per_page: Number of items per page

    Returns:
        Dictionary with events and pagination info
    """
    filters = filters or {}
    with get_session() as session:
        query = session.query(AuditEvent)

        if filters.get("action"):
            query = query.filter(AuditEvent.action == filters["action"])
        if filters.get("entityType"):
            query = query.filter(AuditEvent.entity_type == filters["entityType"])
        if filters.get("userId"):
            query = query.filter(AuditEvent.user_id == filters["userId"])

        start = parse_date(filters.get("startDate"))
        if start:
            query = query.filter(AuditEvent.timestamp >= start)
        end = parse_date(filters.get("endDate"))
        if end:
            query = query.filter(AuditEvent.timestamp <= end)

        total = query.count()
        offset = (page - 1) * per_page

        events = query.order_by(AuditEvent.timestamp.desc(), AuditEvent.id.desc())\
            .offset(offset)\
            .limit(per_page)\
            .all()

        return {
            "events": [e.to_dict() for e in events],
            "pagination": {
                "page": page,
                "per_page": per_page,
                "total": total,
                "pages": (total + per_page - 1) // per_page
            }
        }


def get_audit_facets() -> dict:
    """Distinct actions, entity types and users, for filter dropdowns."""
    with get_session() as session:
        actions = [row[0] for row in session.query(AuditEvent.action).distinct().all()]
        entity_types = [row[0] for row in session.query(AuditEvent.entity_type).distinct().all()]
        users = session.query(AuditEvent.user_id, AuditEvent.user_name).distinct().all()
        return {
            "actions": sorted(actions),
            "entityTypes": sorted(entity_types),
            "users": [{"userId": u[0], "userName": u[1]} for u in users]
        }


# =============================================================================
# DASHBOARD AND SETTINGS FUNCTIONS
# =============================================================================

def get_dashboards() -> List[dict]:
    """Get all saved dashboards."""
    with get_session() as session:
        dashboards = session.query(Dashboard).order_by(Dashboard.created_at.asc()).all()
        return [d.to_dict() for d in dashboards]


def get_dashboard(dashboard_id: str) -> Optional[dict]:
    """Get a saved dashboard, or None if not found."""
    with get_session() as session:
        dashboard = session.get(Dashboard, dashboard_id)
        return dashboard.to_dict() if dashboard else None


def save_dashboard(data: Dict[str, Any], dashboard_id: str = None) -> Optional[dict]:
    """
    Create a dashboard, or update one when dashboard_id is given.

    Returns:
        The dashboard dictionary, or None if updating a missing dashboard
    """
    if not isinstance(data, dict):
        raise ValueError("Dashboard data must be an object")
    name = data.get("name")
    widgets = data.get("widgets")
    if widgets is not None and not isinstance(widgets, list):
        raise ValueError("Widgets must be a list")

    with get_session() as session:
        if dashboard_id:
            dashboard = session.get(Dashboard, dashboard_id)
            if not dashboard:
                return None
            if name is not None:
                if not str(name).strip():
                    raise ValueError("Dashboard name is required")
                dashboard.name = str(name).strip()
            if widgets is not None:
                dashboard.widgets = widgets
            dashboard.updated_at = utcnow()
        else:
            if not name or not str(name).strip():
                raise ValueError("Dashboard name is required")
            dashboard = Dashboard(id=_new_id(), name=str(name).strip(), widgets=widgets or [])
            session.add(dashboard)
        session.flush()
        return dashboard.to_dict()


def delete_dashboard(dashboard_id: str) -> bool:
    """Delete a saved dashboard."""
    with get_session() as session:
        dashboard = session.get(Dashboard, dashboard_id)
        if dashboard:
            session.delete(dashboard)
            return True
        return False


def get_setting(key: str, default: str = None) -> Optional[str]:
    """Read a setting value."""
    with get_session() as session:
        setting = session.get(Setting, key)
        return setting.value if setting else default


def set_setting(key: str, value: str) -> dict:
    """Write a setting value."""
    with get_session() as session:
        setting = session.get(Setting, key)
        if setting is None:
            setting = Setting(key=key, value=value)
            session.add(setting)
        else:
            setting.value = value
            setting.updated_at = utcnow()
        session.flush()
        return setting.to_dict()


# =============================================================================
# BACKUP SUPPORT
# =============================================================================

COLLECTION_MODELS = {
    "tasks": Task,
    "technicians": Technician,
    "groups": Group,
}


def get_collection_records(collection: str) -> List[dict]:
    """Export every record of a backup collection."""
    model = COLLECTION_MODELS[collection]
    with get_session() as session:
        return [r.to_dict() for r in session.query(model).all()]


def _record_columns(collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
    if collection == "tasks":
        cleaned = clean_task_fields(record)
    elif collection == "technicians":
        cleaned = validate_technician(record)
    else:
        cleaned = validate_group(record)

    created_at = parse_date(record.get("createdAt"))
    if created_at:
        cleaned["created_at"] = created_at
    return cleaned


def _drop_dangling_references(session, record_id: str, cleaned: Dict[str, Any]):
    checks = (
        ("assignee_id", Technician),
        ("group_id", Group),
        ("category_id", Category),
    )
    for column, model in checks:
        ref = cleaned.get(column)
        if ref and session.get(model, ref) is None:
            logger.warning(f"Restored task {record_id} references missing {column} {ref}; clearing it")
            cleaned[column] = None


def restore_record(collection: str, record: Dict[str, Any], overwrite: bool) -> str:
    """
    Write one backup record, keeping its id.

    Returns:
        "created", "updated" or "skipped"
    """
    record_id = record.get("id")
    if not record_id:
        raise ValueError("Record is missing an id")

    model = COLLECTION_MODELS[collection]
    cleaned = _record_columns(collection, record)

    with get_session() as session:
        existing = session.get(model, record_id)
        if existing is not None and not overwrite:
            return "skipped"

        if collection == "tasks":
            _drop_dangling_references(session, record_id, cleaned)

        if existing is None:
            session.add(model(id=record_id, **cleaned))
            return "created"

        for column, value in cleaned.items():
            setattr(existing, column, value)
        return "updated"
