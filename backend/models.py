"""
SQLAlchemy models for the Taskboard application.
"""

from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class TaskStatus(Enum):
    """Workflow status of a task."""
    OPEN = "Open"
    PENDING = "Pending"
    RESOLVED = "Resolved"


class PriorityLevel(Enum):
    """Priority of a task."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class Task(Base):
    """
    Represents a tracked task (also called a control).

    References to technicians, groups and categories are plain ids; they are
    checked on write and nulled when the referenced record is deleted.
    """
    __tablename__ = 'tasks'

    id = Column(String(36), primary_key=True)  # UUID
    title = Column(String(500), nullable=False)
    explanation = Column(Text, nullable=True)  # Rich-text HTML
    status = Column(String(20), default=TaskStatus.OPEN.value)
    priority_level = Column(String(20), nullable=True)
    estimated_completion_date = Column(DateTime, nullable=True)  # Due date

    assignee_id = Column(String(36), nullable=True, index=True)
    group_id = Column(String(36), nullable=True, index=True)
    category_id = Column(String(36), nullable=True, index=True)

    sort_order = Column(Integer, default=0)
    tags = Column(JSON, default=list)
    progress = Column(Integer, default=0)  # 0-100

    # External ticket linkage
    external_url = Column(String(1000), nullable=True)
    ticket_number = Column(String(50), nullable=True)
    ticket_url = Column(String(1000), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    last_updated = Column(DateTime, default=utcnow)

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "explanation": self.explanation or "",
            "status": self.status,
            "priorityLevel": self.priority_level,
            "estimatedCompletionDate": _iso(self.estimated_completion_date),
            "assigneeId": self.assignee_id,
            "groupId": self.group_id,
            "categoryId": self.category_id,
            "order": self.sort_order or 0,
            "tags": self.tags or [],
            "progress": self.progress or 0,
            "externalUrl": self.external_url,
            "ticketNumber": self.ticket_number,
            "ticketUrl": self.ticket_url,
            "createdAt": _iso(self.created_at),
            "lastUpdated": _iso(self.last_updated)
        }


class Technician(Base):
    """
    Represents a person who can be assigned tasks.
    """
    __tablename__ = 'technicians'

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    agent_id = Column(String(50), nullable=True, index=True)  # Freshservice agent id
    location = Column(String(255), nullable=True)
    department_ids = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow)
    last_updated = Column(DateTime, default=utcnow)

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email or "",
            "agentId": self.agent_id or "",
            "location": self.location,
            "departmentIds": self.department_ids or [],
            "createdAt": _iso(self.created_at),
            "lastUpdated": _iso(self.last_updated)
        }


class Group(Base):
    """
    Represents a named collection of tasks.
    """
    __tablename__ = 'groups'

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description or "",
            "createdAt": _iso(self.created_at)
        }


class Category(Base):
    """
    Represents a category label, usually synced from the ticketing system.
    """
    __tablename__ = 'categories'

    id = Column(String(36), primary_key=True)
    value = Column(String(255), nullable=False)
    display_id = Column(Integer, nullable=True)

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "value": self.value,
            "displayId": self.display_id
        }


class AuditEvent(Base):
    """
    Append-only record of a user action.
    """
    __tablename__ = 'audit_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, default=utcnow, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    user_name = Column(String(255), nullable=True)
    user_email = Column(String(255), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), nullable=False, index=True)
    entity_id = Column(String(255), nullable=True)
    entity_name = Column(String(500), nullable=True)
    details = Column(JSON, default=dict)
    ip_address = Column(String(100), nullable=True)

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "timestamp": _iso(self.timestamp),
            "userId": self.user_id,
            "userName": self.user_name,
            "userEmail": self.user_email,
            "action": self.action,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "entityName": self.entity_name,
            "details": self.details or {},
            "ipAddress": self.ip_address
        }


class Dashboard(Base):
    """
    A saved dashboard layout (list of widget configurations).
    """
    __tablename__ = 'dashboards'

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    widgets = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "widgets": self.widgets or [],
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at)
        }


class Setting(Base):
    """
    Key/value application settings.
    """
    __tablename__ = 'settings'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            "key": self.key,
            "value": self.value,
            "updatedAt": _iso(self.updated_at)
        }
