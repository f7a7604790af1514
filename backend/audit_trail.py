"""
User action audit trail.

Events are append-only. Logging an event must never break the action being
audited, so failures here are logged and reported as None.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import database as db

logger = logging.getLogger(__name__)


class AuditAction:
    """Action names recorded in the trail."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT_REPORT = "export_report"
    RESTORE = "restore"
    BACKUP = "backup"
    SYNC = "sync"


class EntityType:
    """Entity names recorded in the trail."""
    TASK = "task"
    TECHNICIAN = "technician"
    GROUP = "group"
    CATEGORY = "category"
    REPORT = "report"
    DASHBOARD = "dashboard"
    BACKUP = "backup"
    TICKET = "ticket"
    SETTING = "setting"
    AUTH = "auth"
    API = "api"


@dataclass
class AuditUser:
    """Identity of the caller performing an action."""
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None


def user_from_headers(headers) -> Optional[AuditUser]:
    """Caller identity from X-User-Id / X-User-Name / X-User-Email headers."""
    user_id = (headers.get("X-User-Id") or "").strip()
    if not user_id:
        return None
    return AuditUser(
        user_id=user_id,
        name=headers.get("X-User-Name") or None,
        email=headers.get("X-User-Email") or None,
    )


def log_action(user: Optional[AuditUser], action: str, entity_type: str,
               entity_id: str = None, entity_name: str = None,
               details: Dict[str, Any] = None, ip_address: str = None) -> Optional[dict]:
    """
    Record an action.

    Returns:
        The stored event, or None when there is no user or storing failed
    """
    if user is None:
        logger.warning(f"Cannot log audit action {action} on {entity_type}: no user")
        return None

    try:
        return db.save_audit_event(
            user_id=user.user_id,
            user_name=user.name or "Unknown",
            user_email=user.email or "Unknown",
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name or entity_id,
            details=details or {},
            ip_address=ip_address,
        )
    except Exception as e:
        logger.error(f"Error logging audit action {action} on {entity_type}: {e}", exc_info=True)
        return None


def log_create(user, entity_type: str, entity_id: str, entity_name: str = None,
               data: Dict[str, Any] = None, ip_address: str = None):
    return log_action(user, AuditAction.CREATE, entity_type, entity_id, entity_name,
                      {"data": data or {}}, ip_address)


def log_update(user, entity_type: str, entity_id: str, entity_name: str = None,
               changes: Dict[str, Any] = None, ip_address: str = None):
    return log_action(user, AuditAction.UPDATE, entity_type, entity_id, entity_name,
                      {"changes": changes or {}}, ip_address)


def log_delete(user, entity_type: str, entity_id: str, entity_name: str = None,
               ip_address: str = None):
    return log_action(user, AuditAction.DELETE, entity_type, entity_id, entity_name,
                      None, ip_address)


def log_bulk_operation(user, action: str, entity_type: str, entity_ids: List[str],
                       details: Dict[str, Any] = None, ip_address: str = None):
    """Record one event for an action applied to many records."""
    merged = {"ids": list(entity_ids), "count": len(entity_ids)}
    merged.update(details or {})
    return log_action(user, f"bulk_{action}", entity_type, None,
                      f"{len(entity_ids)} {entity_type}s", merged, ip_address)


def log_report_export(user, report_type: str, filters: Dict[str, Any] = None,
                      ip_address: str = None):
    return log_action(user, AuditAction.EXPORT_REPORT, EntityType.REPORT, None, report_type,
                      {"reportType": report_type, "filters": filters or {}}, ip_address)


def log_dashboard_action(user, action: str, dashboard_id: str, dashboard_name: str = None,
                         details: Dict[str, Any] = None, ip_address: str = None):
    return log_action(user, action, EntityType.DASHBOARD, dashboard_id, dashboard_name,
                      details, ip_address)


def log_api_call(user, method: str, endpoint: str, status_code: int = None,
                 ip_address: str = None):
    return log_action(user, f"api_{method.lower()}", EntityType.API, endpoint, endpoint,
                      {"statusCode": status_code}, ip_address)


def query_events(filters: Dict[str, Any] = None, page: int = 1, per_page: int = 50) -> dict:
    """Events newest first, filtered by action, entity type, user and time range."""
    page = max(page, 1)
    per_page = min(max(per_page, 1), 500)
    return db.query_audit_events(filters, page=page, per_page=per_page)
