"""
Parsing of free-form language model output into task lists.

Model replies are not guaranteed to be clean JSON: streamed extraction output
mixes model text with "[System: ...]" progress lines, replies get cut off, and
objects are sometimes wrapped in prose or code fences. Every parser here tries
a fixed sequence of strategies and uses the first one that yields valid JSON.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# "[System: Optimized 12 tasks to 9 consolidated tasks.]" followed by a JSON array
OPTIMIZATION_MARKER = re.compile(
    r"\[System: Optimized (\d+) tasks to (\d+) consolidated tasks\.\]"
)
NAIVE_OBJECT = re.compile(r"\{[\s\S]*?\}")
TASKS_ARRAY = re.compile(r'"tasks"\s*:\s*\[([\s\S]*?)\]')
PERMISSIVE_OBJECT = re.compile(r'\{[\s\S]*?("tasks"\s*:[\s\S]*?|\[[\s\S]*?\])[\s\S]*?\}')
TITLE_ARRAY = re.compile(r'\[\s*\{\s*"title"[\s\S]*?\}\s*\]')
TITLE_LINE = re.compile(r"(?:Task|Title):\s*([^\n]+)")
CODE_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class ExtractionParseError(ValueError):
    """Raised when no task data can be recovered from model output."""


def normalize_task(task: Dict[str, Any]) -> Dict[str, Any]:
    """Fill the fields every extracted task is expected to carry."""
    return {
        "title": task.get("title") or "Untitled Task",
        "details": task.get("details") or task.get("explanation") or task.get("description") or "",
        "assignee": task.get("assignee") or None,
        "group": task.get("group") or None,
        "category": task.get("category") or None,
        "dueDate": task.get("dueDate") or None,
        "priority": task.get("priority") or "Medium",
        "ticketNumber": task.get("ticketNumber") or None,
        "externalUrl": task.get("externalUrl") or None,
    }


def tasks_from_json(data: Any) -> List[Dict[str, Any]]:
    """
    Pull the task list out of a parsed JSON value.

    Accepts {"tasks": [...]}, a bare list, or a single object with a title.
    """
    if isinstance(data, dict):
        if isinstance(data.get("tasks"), list):
            items = data["tasks"]
        elif isinstance(data.get("title"), str):
            items = [data]
        else:
            items = []
    elif isinstance(data, list):
        items = data
    else:
        items = []
    return [normalize_task(t) for t in items if isinstance(t, dict)]


def find_balanced_object(text: str, start: int = 0) -> Optional[str]:
    """
    Return the first balanced {...} block at or after start.

    Braces inside JSON string literals are ignored.
    """
    begin = text.find("{", start)
    if begin < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(begin, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[begin:i + 1]
    return None


def _loads(candidate: Optional[str]) -> Any:
    if candidate is None:
        return None
    try:
        return json.loads(candidate)
    except ValueError:
        return None


def _after_marker(text: str) -> Any:
    matches = list(OPTIMIZATION_MARKER.finditer(text))
    if not matches:
        return None
    tail = text[matches[-1].end():]
    begin = tail.find("[")
    end = tail.rfind("]")
    if begin < 0 or end <= begin:
        return None
    return _loads(tail[begin:end + 1])


def parse_streamed_tasks(text: str) -> List[Dict[str, Any]]:
    """
    Recover the task list from accumulated streamed extraction output.

    Strategies, in order:
    1. the JSON array that follows the optimization marker
    2. the first balanced {...} block
    3. the first non-greedy {...} regex match

    Raises:
        ExtractionParseError: If no strategy yields at least one task
    """
    if not text or not text.strip():
        raise ExtractionParseError("Empty response from extraction service")

    strategies = (
        ("optimization marker", lambda: _after_marker(text)),
        ("balanced braces", lambda: _loads(find_balanced_object(text))),
        ("naive object", lambda: _loads(_first_match(NAIVE_OBJECT, text))),
    )
    for name, strategy in strategies:
        data = strategy()
        if data is None:
            continue
        tasks = tasks_from_json(data)
        if tasks:
            logger.info(f"Parsed {len(tasks)} tasks from stream using {name}")
            return tasks

    raise ExtractionParseError("No tasks could be extracted from the response")


def _first_match(pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(0) if match else None


def is_response_incomplete(text: str) -> bool:
    """
    Guess whether a model reply was cut off.

    A reply that parses as JSON is complete; anything else (empty, unbalanced
    braces, trailing comma or quote, or otherwise malformed) is treated as
    incomplete so a continuation can be requested.
    """
    if not text:
        return True
    try:
        json.loads(text)
        return False
    except ValueError:
        return True


def extract_tasks_from_response(text: str) -> List[Dict[str, Any]]:
    """
    Best-effort task recovery from a complete (non-streamed) model reply.

    Tries, in order: the "tasks" array rebuilt into an object, permissive
    object matches, the first plain object, a bare array of titled objects,
    and finally "Task:"/"Title:" lines turned into minimal tasks. Returns an
    empty list when nothing is found.
    """
    if not text:
        return []

    data = None
    tasks_match = TASKS_ARRAY.search(text)
    if tasks_match:
        data = _loads('{"tasks":[' + tasks_match.group(1) + ']}')

    if data is None:
        for match in PERMISSIVE_OBJECT.finditer(text):
            data = _loads(match.group(0))
            if data is not None:
                break

    if data is None:
        data = _loads(_first_match(NAIVE_OBJECT, text))

    tasks = tasks_from_json(data) if data is not None else []

    if not tasks:
        array = _loads(_first_match(TITLE_ARRAY, text))
        if isinstance(array, list):
            tasks = tasks_from_json(array)

    if not tasks:
        titles = [m.group(1).strip() for m in TITLE_LINE.finditer(text)]
        if titles:
            logger.warning(f"Falling back to title-line extraction for {len(titles)} tasks")
            tasks = [
                normalize_task({
                    "title": title,
                    "details": f"<p>Automatically extracted from text: {title}</p>",
                })
                for title in titles
            ]

    return tasks


def extract_json_array(text: str) -> Optional[list]:
    """Parse a JSON array from a reply that may be fenced or wrapped in prose."""
    if not text:
        return None

    data = _loads(text.strip())
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("tasks"), list):
        return data["tasks"]

    fence = CODE_FENCE.search(text)
    if fence:
        data = _loads(fence.group(1).strip())
        if isinstance(data, list):
            return data

    begin = text.find("[")
    end = text.rfind("]")
    if 0 <= begin < end:
        data = _loads(text[begin:end + 1])
        if isinstance(data, list):
            return data
    return None


def extract_analysis(text: str) -> Dict[str, Any]:
    """
    Parse a duplicate/similar-task analysis reply.

    Expected shape: {"analysis": {"duplicates": [...], "similar": [...]}}.

    Raises:
        ExtractionParseError: If no object with an "analysis" key is found
    """
    data = _loads((text or "").strip())
    if not (isinstance(data, dict) and "analysis" in data):
        data = None
        start = 0
        while data is None:
            block = find_balanced_object(text or "", start)
            if block is None:
                break
            candidate = _loads(block) if '"analysis"' in block else None
            if isinstance(candidate, dict) and "analysis" in candidate:
                data = candidate
            start = (text or "").find("{", start) + 1

    if data is None:
        raise ExtractionParseError("Could not find analysis JSON in the response")

    analysis = data.get("analysis") or {}
    return {
        "analysis": {
            "duplicates": analysis.get("duplicates") or [],
            "similar": analysis.get("similar") or [],
        }
    }
