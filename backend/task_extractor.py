"""
AI task extraction backed by the OpenAI chat completions API.

Text extraction uses JSON mode on the standard chat model. Document and email
extraction stream the model reply so the caller can show progress; the stream
carries the raw model text interleaved with "[System: ...]" progress lines and,
for documents, ends with the optimization marker followed by the final JSON
task array (see llm_output.parse_streamed_tasks).
"""

import json
import logging
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional

from openai import OpenAI

from config import (
    OPENAI_API_KEY,
    OPENAI_MODEL,
    OPENAI_STANDARD_MODEL,
    OPENAI_THINKING_MODEL,
    OPENAI_TIMEOUT_SECONDS,
)
from llm_output import (
    ExtractionParseError,
    extract_json_array,
    extract_tasks_from_response,
    is_response_incomplete,
    normalize_task,
    parse_streamed_tasks,
    tasks_from_json,
)

logger = logging.getLogger(__name__)

MAX_EMAIL_TASKS = 3

CONTINUE_PROMPT = (
    "Please continue. It seems your response was cut off. Continue exactly where "
    "you left off and make sure the JSON is complete."
)

TASK_JSON_SHAPE = """
{
  "tasks": [
    {
      "title": "...",
      "details": "<p>HTML formatted details...</p>",
      "assignee": "...",
      "group": "...",
      "category": "...",
      "dueDate": "YYYY-MM-DD",
      "priority": "Low|Medium|High|Critical",
      "ticketNumber": "...",
      "externalUrl": "..."
    }
  ]
}
"""


class ExtractionError(Exception):
    """Raised when the extraction service cannot produce a result."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _context_lines(technicians: List[Dict[str, Any]] = None,
                   groups: List[Dict[str, Any]] = None,
                   categories: List[Dict[str, Any]] = None,
                   current_date: str = None) -> str:
    lines = []
    if technicians:
        lines.append("Available technicians: " + ", ".join(t.get("name", "") for t in technicians) + ".")
    if groups:
        lines.append("Available groups: " + ", ".join(g.get("name", "") for g in groups) + ".")
    if categories:
        lines.append("Available categories: " + ", ".join(c.get("value", "") for c in categories) + ".")
    today = current_date or date.today().isoformat()
    lines.append(f"Today's date is {today}. If no due date is provided, set it to one week from today.")
    return "\n".join(lines)


def _bulk_system_prompt(context: str) -> str:
    return f"""You are an assistant that extracts information about multiple tasks from unstructured text.
{context}

For each task found in the text, extract:
- title: the main name of the task
- details: a longer description, formatted as HTML (<p>, <ul>/<ol>, <li>, <strong>, <em>)
- assignee: the person assigned, matched to the full name of an available technician when possible
  (if only a first name is mentioned, use the technician's full name)
- group: matched to an available group when possible
- category: the closest available category, using its exact name
- dueDate: YYYY-MM-DD; convert natural language dates relative to today; one week from today if not given
- priority: Low, Medium, High or Critical; infer from the wording (urgent = High/Critical), Medium if unclear
- ticketNumber and externalUrl when mentioned

Tasks may be separated by new lines, numbers, bullet points or other formatting.
Extract ALL tasks. Set missing fields to null.
Return only a JSON object of this shape, with no commentary:
{TASK_JSON_SHAPE}"""


class TaskExtractor:
    """
    Wraps an OpenAI client for the extraction operations.

    Args:
        client: OpenAI-compatible client; created from configuration on first
            use when omitted
    """

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            if not OPENAI_API_KEY:
                raise ExtractionError("OpenAI API key is not configured", 500)
            self._client = OpenAI(api_key=OPENAI_API_KEY, timeout=OPENAI_TIMEOUT_SECONDS)
        return self._client

    # -------------------------------------------------------------------------
    # Low-level calls
    # -------------------------------------------------------------------------

    def _complete(self, model: str, messages: List[Dict[str, str]],
                  json_mode: bool = False, temperature: float = None) -> str:
        kwargs: Dict[str, Any] = {"model": model, "messages": messages}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if temperature is not None:
            kwargs["temperature"] = temperature

        response = self.client.chat.completions.create(**kwargs)
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExtractionError("Empty response from OpenAI", 502)
        return content

    def _stream(self, model: str, messages: List[Dict[str, str]]) -> Iterator[str]:
        stream = self.client.chat.completions.create(model=model, messages=messages, stream=True)
        for chunk in stream:
            if not chunk.choices:
                continue
            content = getattr(chunk.choices[0].delta, "content", None)
            if content:
                yield content

    # -------------------------------------------------------------------------
    # Text extraction
    # -------------------------------------------------------------------------

    def extract_task(self, text: str, technicians: List[Dict[str, Any]] = None,
                     categories: List[Dict[str, Any]] = None, current_date: str = None) -> Dict[str, Any]:
        """
        Extract a single task from free text.

        Returns:
            {title, explanation, technician, category, estimatedCompletionDate,
             priority, ticketNumber, externalUrl}
        """
        if not text or not isinstance(text, str):
            raise ExtractionError("Text content is required", 400)

        context = _context_lines(technicians=technicians, categories=categories, current_date=current_date)
        system = f"""You are an assistant that extracts information about a single task from unstructured text.
{context}

Extract: title, explanation (HTML formatted), technician (full name of an available technician when possible),
category (exact name of the closest available category), dueDate (YYYY-MM-DD),
priority (Low, Medium, High or Critical; Medium if unclear), ticketNumber and externalUrl.
Set missing fields to null and return only a JSON object with those keys."""

        content = self._complete(
            OPENAI_MODEL,
            [{"role": "system", "content": system}, {"role": "user", "content": text}],
            json_mode=True,
            temperature=0.1,
        )
        try:
            data = json.loads(content)
        except ValueError:
            logger.error(f"Failed to parse single-task response: {content[:200]}")
            raise ExtractionError("Failed to parse the extraction response", 502)
        if not isinstance(data, dict):
            raise ExtractionError("Unexpected extraction response format", 502)

        return {
            "title": data.get("title") or "",
            "explanation": data.get("explanation") or data.get("details") or "",
            "technician": data.get("technician") or data.get("assignee") or "",
            "category": data.get("category") or "",
            "estimatedCompletionDate": data.get("dueDate") or data.get("estimatedCompletionDate") or "",
            "priority": data.get("priority") or "Medium",
            "ticketNumber": data.get("ticketNumber") or "",
            "externalUrl": data.get("externalUrl") or "",
        }

    def extract_bulk_tasks(self, text: str, technicians: List[Dict[str, Any]] = None,
                           groups: List[Dict[str, Any]] = None,
                           categories: List[Dict[str, Any]] = None,
                           current_date: str = None) -> List[Dict[str, Any]]:
        """
        Extract every task described in free text.

        Returns:
            Normalized task dictionaries (see llm_output.normalize_task)
        """
        if not text or not isinstance(text, str):
            raise ExtractionError("Text content is required", 400)

        context = _context_lines(technicians, groups, categories, current_date)
        logger.info(f"Extracting bulk tasks from {len(text)} characters of text")
        content = self._complete(
            OPENAI_MODEL,
            [{"role": "system", "content": _bulk_system_prompt(context)}, {"role": "user", "content": text}],
            json_mode=True,
            temperature=0.1,
        )
        try:
            data = json.loads(content)
        except ValueError:
            logger.error(f"Failed to parse bulk response: {content[:200]}")
            raise ExtractionError("Failed to parse the extraction response", 502)

        tasks = tasks_from_json(data)
        if not tasks and isinstance(data, dict) and data:
            tasks = [normalize_task(data)]
        if not tasks:
            raise ExtractionError("No tasks were found in the response", 422)

        try:
            today = date.fromisoformat(current_date[:10]) if current_date else None
        except ValueError:
            today = None
        for task in tasks:
            task["dueDate"] = task["dueDate"] or default_due_date(today)
        return tasks

    # -------------------------------------------------------------------------
    # Document extraction
    # -------------------------------------------------------------------------

    def optimize_tasks(self, tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Merge duplicate and overlapping tasks with the thinking model.

        Returns the input unchanged when the model call or its parsing fails.
        """
        if not tasks:
            return tasks

        system = (
            "You are a task consolidation assistant. Review the task list, merge duplicates and "
            "closely overlapping tasks, keep distinct tasks separate, and preserve assignees, "
            "groups, categories, due dates, priorities, ticket numbers and URLs. "
            "Return only a JSON array of task objects with the same fields as the input."
        )
        try:
            content = self._complete(
                OPENAI_THINKING_MODEL,
                [{"role": "system", "content": system}, {"role": "user", "content": json.dumps(tasks)}],
            )
            optimized = extract_json_array(content)
        except Exception as e:
            logger.error(f"Task optimization failed, keeping original tasks: {e}", exc_info=True)
            return tasks

        if not optimized:
            logger.warning("Task optimization returned no usable array, keeping original tasks")
            return tasks
        return [normalize_task(t) for t in optimized if isinstance(t, dict)] or tasks

    def stream_document_extraction(self, text: str, technicians: List[Dict[str, Any]] = None,
                                   groups: List[Dict[str, Any]] = None,
                                   categories: List[Dict[str, Any]] = None,
                                   current_date: str = None,
                                   use_thinking_model: bool = False) -> Iterator[str]:
        """
        Stream task extraction from document text.

        Yields the model output as it arrives, asks for a continuation once if
        the reply looks cut off, then consolidates the tasks and ends with the
        optimization marker and the final JSON array.
        """
        model = OPENAI_THINKING_MODEL if use_thinking_model else OPENAI_STANDARD_MODEL
        context = _context_lines(technicians, groups, categories, current_date)
        messages = [
            {"role": "system", "content": _bulk_system_prompt(context)},
            {"role": "user", "content": f"Extract all tasks from this document:\n\n{text}"},
        ]

        yield f"[System: Analyzing document with {model}...]\n\n"
        response_text = ""
        try:
            for chunk in self._stream(model, messages):
                response_text += chunk
                yield chunk

            if is_response_incomplete(response_text):
                yield "\n\n[System: Response appears incomplete. Requesting continuation...]\n\n"
                messages.append({"role": "assistant", "content": response_text})
                messages.append({"role": "user", "content": CONTINUE_PROMPT})
                for chunk in self._stream(model, messages):
                    response_text += chunk
                    yield chunk
        except Exception as e:
            logger.error(f"Error streaming document extraction: {e}", exc_info=True)
            yield f"\nError during streaming: {e}"
            return

        yield "\n\n[System: Optimizing and consolidating tasks...]\n\n"
        extracted = extract_tasks_from_response(response_text)
        if not extracted:
            yield "\n\n[System: Could not extract tasks for optimization. Original extraction will be used.]\n\n"
            return

        optimized = self.optimize_tasks(extracted)
        yield (
            f"\n\n[System: Optimized {len(extracted)} tasks to "
            f"{len(optimized)} consolidated tasks.]\n\n"
        )
        yield json.dumps(optimized, indent=2)

    def run_document_extraction(self, text: str, progress: Callable[[str], None] = None,
                                **options) -> List[Dict[str, Any]]:
        """
        Blocking document extraction for background jobs.

        Args:
            text: Document text
            progress: Optional callback receiving each streamed piece
            **options: Passed to stream_document_extraction

        Raises:
            ExtractionError: If no tasks can be recovered
        """
        pieces = []
        for piece in self.stream_document_extraction(text, **options):
            pieces.append(piece)
            if progress:
                progress(piece)
        try:
            return parse_streamed_tasks("".join(pieces))
        except ExtractionParseError as e:
            raise ExtractionError(str(e), 422)

    # -------------------------------------------------------------------------
    # Email and task analysis
    # -------------------------------------------------------------------------

    def stream_email_analysis(self, email: Dict[str, Any], use_thinking_model: bool = False) -> Iterator[str]:
        """
        Stream extraction of at most three tasks from a parsed email.

        Args:
            email: Output of document_parser.parse_email
        """
        model = OPENAI_THINKING_MODEL if use_thinking_model else OPENAI_STANDARD_MODEL
        yield "[System: Starting email analysis...]\n"
        yield f"[System: Using {model} for analysis...]\n"

        attachment_line = ""
        if email.get("has_attachments"):
            names = ", ".join(email.get("attachments") or [])
            yield "[System: Email contains attachments...]\n"
            attachment_line = f"Attachments: {names}\n"

        style = (
            "Be thorough and give detailed explanations in the task details."
            if use_thinking_model else "Be concise in your task extraction."
        )
        prompt = f"""You are a task extraction assistant that analyzes emails and identifies tasks that need to be completed.
{style}

Guidelines:
1. Identify clear, actionable tasks with specific titles
2. Assign priority levels (Low, Medium, High, Critical)
3. Extract due dates when mentioned (YYYY-MM-DD)
4. Identify the assignee when specified or implied
5. Include the relevant context in the task details as HTML
6. Return a MAXIMUM of {MAX_EMAIL_TASKS} tasks; combine related tasks if there are more

Email Information:
Subject: {email.get('subject', '')}
From: {email.get('from', '')}
Date: {email.get('date', '')}
Has Attachments: {'Yes' if email.get('has_attachments') else 'No'}
{attachment_line}
Email Content:
{email.get('text', '')}

Return only a JSON object of this shape with real task data:
{TASK_JSON_SHAPE}"""

        yield "[System: Analyzing email content...]\n"
        response_text = ""
        try:
            for chunk in self._stream(model, [{"role": "user", "content": prompt}]):
                response_text += chunk
                yield chunk
        except Exception as e:
            logger.error(f"Error streaming email analysis: {e}", exc_info=True)
            yield f"\nError during streaming: {e}"
            return

        if is_response_incomplete(response_text):
            yield "\n\n[System: Warning - Response is not valid JSON. Processing may fail.]\n"
        yield "\n\n[System: Analysis complete.]\n"

    def stream_task_analysis(self, tasks: List[Dict[str, Any]], use_thinking_model: bool = False) -> Iterator[str]:
        """
        Stream a duplicate/similar-task analysis of existing tasks.

        The reply is a JSON object {"analysis": {"duplicates": [...], "similar": [...]}}
        where each group lists task ids, a reason, a recommended action and,
        for duplicates, a proposed merged task.
        """
        model = OPENAI_THINKING_MODEL if use_thinking_model else OPENAI_STANDARD_MODEL
        summary = [
            {
                "id": t.get("id"),
                "title": t.get("title"),
                "explanation": t.get("explanation"),
                "status": t.get("status"),
                "assigneeId": t.get("assigneeId"),
                "groupId": t.get("groupId"),
            }
            for t in tasks
        ]
        prompt = f"""Analyze these tasks and find duplicates and similar tasks.
Duplicates describe the same work; similar tasks overlap and could be grouped.

Return only a JSON object:
{{"analysis": {{
  "duplicates": [{{"tasks": ["<id>", "<id>"], "reason": "...", "recommendedAction": "merge",
                   "mergedTask": {{"title": "...", "explanation": "..."}}}}],
  "similar": [{{"tasks": ["<id>", "<id>"], "reason": "...", "recommendedAction": "..."}}]
}}}}

Tasks:
{json.dumps(summary, indent=2)}"""

        yield f"[System: Analyzing {len(tasks)} tasks with {model}...]\n\n"
        try:
            for chunk in self._stream(model, [{"role": "user", "content": prompt}]):
                yield chunk
        except Exception as e:
            logger.error(f"Error streaming task analysis: {e}", exc_info=True)
            yield f"\nError during streaming: {e}"


def default_due_date(today: date = None) -> str:
    """One week from today, the due date used when none is given."""
    return ((today or date.today()) + timedelta(days=7)).isoformat()


extractor = TaskExtractor()
