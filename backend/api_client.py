"""
Python client for the Taskboard REST API.

Mirrors what the browser front end does: entity CRUD calls, reading streamed
extraction responses, recovering the task list from the streamed text, and
falling back to a background extraction job polled until it finishes.
"""

import json
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from config import JOB_INACTIVITY_TIMEOUT_SECONDS, JOB_POLL_INTERVAL_SECONDS
from extraction_jobs import HEARTBEAT_LINE
from llm_output import ExtractionParseError, extract_analysis, parse_streamed_tasks, tasks_from_json

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-success response from the API, carrying the server's message."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class JobTimeout(Exception):
    """Raised when an extraction job shows no progress for too long."""


class TaskboardClient:
    """
    Client for one Taskboard server.

    Args:
        base_url: Server root, e.g. "http://localhost:5000"
        session: Optional requests session, replaceable in tests
        user: Optional {"id", "name", "email"} sent as audit headers
        poll_interval: Seconds between job status requests
        inactivity_timeout: Seconds without job progress before giving up
        clock: Monotonic time source
        sleep: Sleep function used between polls
    """

    def __init__(self, base_url: str, session: requests.Session = None,
                 user: Dict[str, str] = None, timeout: float = 30,
                 poll_interval: float = JOB_POLL_INTERVAL_SECONDS,
                 inactivity_timeout: float = JOB_INACTIVITY_TIMEOUT_SECONDS,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.inactivity_timeout = inactivity_timeout
        self.clock = clock
        self.sleep = sleep
        if user:
            self.session.headers.update({
                "X-User-Id": user.get("id", ""),
                "X-User-Name": user.get("name", ""),
                "X-User-Email": user.get("email", ""),
            })

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _raise_for_status(self, response: requests.Response):
        if response.ok:
            return
        try:
            body = response.json()
            message = body.get("message") or body.get("error") or response.reason
        except ValueError:
            message = response.text or response.reason
        raise ApiError(response.status_code, message)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        response = self.session.request(method, f"{self.base_url}{path}", **kwargs)
        self._raise_for_status(response)
        return response

    def _json(self, method: str, path: str, **kwargs) -> Any:
        return self._request(method, path, **kwargs).json()

    @staticmethod
    def read_stream(response: requests.Response, on_chunk: Callable[[str], None] = None) -> str:
        """Accumulate a streamed text body, reporting each chunk as it arrives."""
        received = []
        for chunk in response.iter_content(chunk_size=None, decode_unicode=True):
            if not chunk:
                continue
            if isinstance(chunk, bytes):
                chunk = chunk.decode("utf-8", errors="replace")
            received.append(chunk)
            if on_chunk:
                on_chunk(chunk)
        return "".join(received)

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def list_tasks(self, filters: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        return self._json("GET", "/api/tasks", params=filters or {})

    def get_task(self, task_id: str) -> Dict[str, Any]:
        return self._json("GET", f"/api/tasks/{task_id}")

    def create_task(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._json("POST", "/api/tasks", json=data)

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._json("POST", "/api/tasks/update", json={"id": task_id, **updates})

    def delete_task(self, task_id: str) -> Dict[str, Any]:
        return self._json("DELETE", f"/api/tasks/{task_id}")

    def bulk_create_tasks(self, tasks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._json("POST", "/api/tasks/bulk", json=tasks)["tasks"]

    def batch_update_tasks(self, task_ids: List[str], updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._json("POST", "/api/tasks/batch", json={"taskIds": task_ids, "updates": updates})

    def reorder_tasks(self, order_map: Dict[str, int]) -> Dict[str, Any]:
        return self._json("POST", "/api/tasks/reorder", json=order_map)

    def list_technicians(self) -> List[Dict[str, Any]]:
        return self._json("GET", "/api/technicians")

    def list_groups(self) -> List[Dict[str, Any]]:
        return self._json("GET", "/api/groups")

    def list_categories(self) -> List[Dict[str, Any]]:
        return self._json("GET", "/api/categories")

    # -------------------------------------------------------------------------
    # Extraction
    # -------------------------------------------------------------------------

    def extract_bulk_tasks(self, text: str, **context) -> List[Dict[str, Any]]:
        """Extract tasks from free text (non-streamed)."""
        return self._json("POST", "/api/extract/bulk", json={"text": text, **context})["tasks"]

    @staticmethod
    def _context_form(technicians, groups, categories, use_thinking_model) -> Dict[str, str]:
        return {
            "technicians": json.dumps([{"id": t["id"], "name": t.get("name")} for t in technicians or []]),
            "groups": json.dumps([{"id": g["id"], "name": g.get("name")} for g in groups or []]),
            "categories": json.dumps([{"id": c["id"], "value": c.get("value")} for c in categories or []]),
            "useThinkingModel": "true" if use_thinking_model else "false",
        }

    def start_pdf_job(self, pdf_path: str, technicians=None, groups=None, categories=None,
                      use_thinking_model: bool = False) -> str:
        """Start a background extraction job for a PDF and return its id."""
        form = self._context_form(technicians, groups, categories, use_thinking_model)
        form["streamOutput"] = "false"
        with open(pdf_path, "rb") as fh:
            body = self._json(
                "POST", "/api/extract/pdf",
                files={"file": (os.path.basename(pdf_path), fh, "application/pdf")},
                data=form,
            )
        return body["jobId"]

    def get_job(self, job_id: str) -> Dict[str, Any]:
        return self._json("GET", f"/api/extract/jobs/{job_id}")

    def poll_job(self, job_id: str) -> Any:
        """
        Wait for an extraction job to finish.

        Polls one request at a time at a fixed interval. The inactivity timer
        restarts whenever the job reports new progress. Heartbeat lines are
        not progress: they are written while the worker is silent.

        Returns:
            The job result

        Raises:
            ApiError: If the job failed or cannot be found
            JobTimeout: If the job made no progress within the inactivity timeout
        """
        last_seen = None
        last_change = self.clock()
        while True:
            job = self.get_job(job_id)
            status = job.get("status")
            if status == "completed":
                return job.get("result")
            if status == "failed":
                raise ApiError(500, job.get("error") or "Extraction job failed")

            content = (job.get("streamContent") or "").replace(HEARTBEAT_LINE, "")
            progress = (status, len(content))
            if progress != last_seen:
                last_seen = progress
                last_change = self.clock()
            elif self.clock() - last_change >= self.inactivity_timeout:
                raise JobTimeout(f"Extraction job {job_id} made no progress for {self.inactivity_timeout:.0f}s")

            self.sleep(self.poll_interval)

    def extract_tasks_from_pdf(self, pdf_path: str, technicians=None, groups=None, categories=None,
                               use_thinking_model: bool = False,
                               on_chunk: Callable[[str], None] = None) -> List[Dict[str, Any]]:
        """
        Extract tasks from a PDF.

        Streams the extraction and parses the accumulated text. If the stream
        breaks or cannot be parsed, makes one fallback attempt through a
        background job. A second failure is raised to the caller.
        """
        form = self._context_form(technicians, groups, categories, use_thinking_model)
        form["streamOutput"] = "true"

        try:
            with open(pdf_path, "rb") as fh:
                response = self._request(
                    "POST", "/api/extract/pdf",
                    files={"file": (os.path.basename(pdf_path), fh, "application/pdf")},
                    data=form,
                    stream=True,
                )
            with response:
                text = self.read_stream(response, on_chunk)
            return parse_streamed_tasks(text)
        except (ExtractionParseError, requests.exceptions.RequestException) as e:
            logger.warning(f"Streamed extraction unusable ({e}); retrying as a background job")

        job_id = self.start_pdf_job(pdf_path, technicians, groups, categories, use_thinking_model)
        tasks = tasks_from_json(self.poll_job(job_id))
        if not tasks:
            raise ApiError(422, "No tasks could be extracted from the document")
        return tasks

    def analyze_email(self, eml_path: str, use_thinking_model: bool = False,
                      on_chunk: Callable[[str], None] = None) -> List[Dict[str, Any]]:
        """Extract up to three tasks from an .eml file."""
        with open(eml_path, "rb") as fh:
            response = self._request(
                "POST", "/api/extract/email",
                files={"file": (os.path.basename(eml_path), fh, "message/rfc822")},
                data={"useThinkingModel": "true" if use_thinking_model else "false"},
                stream=True,
            )
        with response:
            text = self.read_stream(response, on_chunk)
        return parse_streamed_tasks(text)

    def analyze_tasks(self, task_ids: Optional[List[str]] = None,
                      on_chunk: Callable[[str], None] = None) -> Dict[str, Any]:
        """Ask for duplicate and similar-task groups among existing tasks."""
        response = self._request(
            "POST", "/api/tasks/analyze",
            json={"taskIds": task_ids} if task_ids else {},
            stream=True,
        )
        with response:
            text = self.read_stream(response, on_chunk)
        return extract_analysis(text)
