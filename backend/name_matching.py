"""
Name resolution for AI-extracted tasks.

Extracted tasks carry free-text names for the assignee, group and category.
These helpers resolve them to stored records with plain containment checks;
the first record in list order that satisfies a rule wins, and rules are tried
from strictest to loosest.
"""

import logging
from typing import Any, Dict, List, Optional

from models import PriorityLevel, TaskStatus
from validation import parse_date

logger = logging.getLogger(__name__)


def _normalize(value: Any) -> str:
    return str(value or "").strip().lower()


def match_technician(name: str, technicians: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Resolve a free-text person name to a technician.

    Rules, in order:
    1. exact name match
    2. technician name contains the input
    3. input contains the technician name
    4. any technician name part (longer than one character) appears in the input
    5. any input part (two characters or more) contains, or is contained in,
       a technician name part

    Args:
        name: Name as written by the extractor
        technicians: Technician dictionaries with a "name" key

    Returns:
        The matching technician, or None
    """
    needle = _normalize(name)
    if not needle:
        return None

    named = [(t, _normalize(t.get("name"))) for t in technicians]
    named = [(t, n) for t, n in named if n]

    for tech, tech_name in named:
        if tech_name == needle:
            return tech

    for tech, tech_name in named:
        if needle in tech_name:
            return tech

    for tech, tech_name in named:
        if tech_name in needle:
            return tech

    for tech, tech_name in named:
        if any(len(part) > 1 and part in needle for part in tech_name.split()):
            return tech

    input_parts = [p for p in needle.split() if len(p) >= 2]
    for tech, tech_name in named:
        tech_parts = tech_name.split()
        for part in input_parts:
            if any(part in tp or tp in part for tp in tech_parts):
                return tech

    logger.debug(f"No technician match for '{name}'")
    return None


def _match_by_label(label: str, records: List[Dict[str, Any]], key: str) -> Optional[Dict[str, Any]]:
    needle = _normalize(label)
    if not needle:
        return None

    labelled = [(r, _normalize(r.get(key))) for r in records]
    labelled = [(r, v) for r, v in labelled if v]

    for record, value in labelled:
        if value == needle:
            return record

    for record, value in labelled:
        if needle in value or value in needle:
            return record

    return None


def match_group(name: str, groups: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Resolve a group name: exact match, then containment either way."""
    return _match_by_label(name, groups, "name")


def match_category(name: str, categories: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Resolve a category label: exact match, then containment either way."""
    return _match_by_label(name, categories, "value")


def map_priority(value: Any) -> str:
    """Map a free-text priority to a PriorityLevel value, defaulting to Medium."""
    text = _normalize(value)
    for level in PriorityLevel:
        if text == level.value.lower():
            return level.value
    if text in ("urgent", "highest", "p1"):
        return PriorityLevel.CRITICAL.value
    return PriorityLevel.MEDIUM.value


def build_task_records(extracted: List[Dict[str, Any]],
                       technicians: List[Dict[str, Any]],
                       groups: List[Dict[str, Any]],
                       categories: List[Dict[str, Any]],
                       start_order: int = 0) -> List[Dict[str, Any]]:
    """
    Turn reviewed extraction results into task payloads ready for bulk create.

    Unresolvable names become null references and unparseable due dates are
    dropped, so a single sloppy extraction never blocks the whole batch.

    Args:
        extracted: Normalized extraction results (title, details, assignee,
            group, category, dueDate, priority, ticketNumber, externalUrl)
        technicians: Known technicians
        groups: Known groups
        categories: Known categories
        start_order: Board position of the first new task

    Returns:
        List of task payloads using JSON field names
    """
    records = []
    for index, item in enumerate(extracted):
        tech = match_technician(item.get("assignee"), technicians)
        group = match_group(item.get("group"), groups)
        category = match_category(item.get("category"), categories)

        try:
            due = parse_date(item.get("dueDate"))
        except ValueError:
            logger.warning(f"Ignoring unparseable due date '{item.get('dueDate')}' on '{item.get('title')}'")
            due = None

        records.append({
            "title": (item.get("title") or "Untitled Task").strip(),
            "explanation": item.get("details") or "",
            "status": TaskStatus.OPEN.value,
            "priorityLevel": map_priority(item.get("priority")),
            "estimatedCompletionDate": due.isoformat() if due else None,
            "assigneeId": tech["id"] if tech else None,
            "groupId": group["id"] if group else None,
            "categoryId": category["id"] if category else None,
            "ticketNumber": item.get("ticketNumber") or None,
            "externalUrl": item.get("externalUrl") or None,
            "order": start_order + index,
            "progress": 0,
            "tags": [],
        })
    return records
