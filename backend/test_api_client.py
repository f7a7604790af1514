import json
import threading
import time

import pytest
import requests

from api_client import ApiError, JobTimeout, TaskboardClient
from conftest import FakeResponse, FakeSession
from extraction_jobs import HEARTBEAT_LINE, JobStore

BASE = "http://taskboard.local"
JOB_PATH = "/api/extract/jobs/job-1"


def _client(routes, clock, **kwargs):
    session = FakeSession(routes)
    client = TaskboardClient(BASE, session=session, clock=clock, sleep=clock.sleep, **kwargs)
    return client, session


def _job(status, stream="", result=None, error=None):
    return FakeResponse(200, {
        "jobId": "job-1",
        "status": status,
        "streamContent": stream,
        "result": result,
        "error": error,
    })


def test_error_response_carries_server_message(clock):
    client, _ = _client({
        ("GET", "/api/tasks/nope"): FakeResponse(404, {"error": "Task not found", "message": "No task found with ID: nope"}),
    }, clock)

    with pytest.raises(ApiError) as exc:
        client.get_task("nope")

    assert exc.value.status_code == 404
    assert exc.value.message == "No task found with ID: nope"


def test_user_identity_is_sent_as_headers(clock):
    client, session = _client({}, clock, user={"id": "u-1", "name": "Alex", "email": "alex@example.com"})

    assert session.headers["X-User-Id"] == "u-1"
    assert session.headers["X-User-Email"] == "alex@example.com"


def test_bulk_create_reads_tasks_key(clock):
    client, session = _client({
        ("POST", "/api/tasks/bulk"): FakeResponse(201, {"success": True, "count": 1, "tasks": [{"id": "x", "title": "A"}]}),
    }, clock)

    assert client.bulk_create_tasks([{"title": "A"}]) == [{"id": "x", "title": "A"}]
    assert session.calls[0].kwargs["json"] == [{"title": "A"}]


def test_poll_job_returns_result_when_completed(clock):
    client, session = _client({
        ("GET", JOB_PATH): [
            _job("pending"),
            _job("processing", "partial"),
            _job("completed", "partial output", result=[{"title": "Done"}]),
        ],
    }, clock, poll_interval=2)

    assert client.poll_job("job-1") == [{"title": "Done"}]
    assert clock.sleeps == [2, 2]
    assert len(session.calls) == 3


def test_poll_job_raises_when_job_failed(clock):
    client, _ = _client({
        ("GET", JOB_PATH): [_job("processing"), _job("failed", error="No tasks could be extracted")],
    }, clock)

    with pytest.raises(ApiError, match="No tasks could be extracted"):
        client.poll_job("job-1")


def test_poll_job_times_out_without_progress(clock):
    client, session = _client({("GET", JOB_PATH): _job("processing", "same")}, clock,
                              poll_interval=2, inactivity_timeout=5)

    with pytest.raises(JobTimeout):
        client.poll_job("job-1")

    assert len(session.calls) == 4


def test_poll_job_keeps_waiting_while_progress_continues(clock):
    responses = [_job("processing", "x" * n) for n in range(1, 6)]
    responses.append(_job("completed", "x" * 6, result=[]))
    client, _ = _client({("GET", JOB_PATH): responses}, clock, poll_interval=2, inactivity_timeout=3)

    assert client.poll_job("job-1") == []
    assert sum(clock.sleeps) == 10


def test_poll_job_does_not_count_heartbeats_as_progress(clock):
    responses = [_job("processing", "reading" + HEARTBEAT_LINE * n) for n in range(10)]
    client, _ = _client({("GET", JOB_PATH): responses}, clock, poll_interval=2, inactivity_timeout=5)

    with pytest.raises(JobTimeout):
        client.poll_job("job-1")

    assert sum(clock.sleeps) == 6


class _JobStoreSession:
    """Serves job status requests straight from a JobStore."""

    def __init__(self, store):
        self.store = store
        self.headers = {}

    def request(self, method, url, **kwargs):
        status = self.store.get_status(url.rsplit("/", 1)[1])
        if status is None:
            return FakeResponse(404, {"error": "Job not found"})
        return FakeResponse(200, status)


def test_poll_job_gives_up_on_stalled_worker_despite_heartbeats():
    store = JobStore(heartbeat=0.02)
    release = threading.Event()

    def work(progress):
        progress("[System: Analyzing document...]\n")
        release.wait(5)
        return []

    job_id = store.start(work)
    client = TaskboardClient(BASE, session=_JobStoreSession(store), poll_interval=0.02, inactivity_timeout=0.3)
    try:
        with pytest.raises(JobTimeout):
            client.poll_job(job_id)
        assert HEARTBEAT_LINE in store.get_status(job_id)["streamContent"]
    finally:
        release.set()
        store.wait(job_id, timeout=5)


def test_poll_job_follows_live_worker_to_completion():
    store = JobStore(heartbeat=0.02)

    def work(progress):
        for n in range(8):
            progress(f"chunk {n}\n")
            time.sleep(0.05)
        return [{"title": "Replace switch"}]

    job_id = store.start(work)
    client = TaskboardClient(BASE, session=_JobStoreSession(store), poll_interval=0.02, inactivity_timeout=0.3)

    assert client.poll_job(job_id) == [{"title": "Replace switch"}]


def test_pdf_extraction_uses_streamed_result(clock, tmp_path):
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF-1.4 test")
    stream = [
        "[System: Analyzing document with o4-mini...]\n\n",
        '{"tasks": [{"title": "Draft"}]}',
        "\n\n[System: Optimized 1 tasks to 1 consolidated tasks.]\n\n",
        json.dumps([{"title": "Replace switch"}]),
    ]
    client, session = _client({
        ("POST", "/api/extract/pdf"): FakeResponse(200, chunks=stream),
    }, clock)
    received = []

    tasks = client.extract_tasks_from_pdf(str(pdf), on_chunk=received.append)

    assert [t["title"] for t in tasks] == ["Replace switch"]
    assert received == stream
    assert session.calls[0].kwargs["data"]["streamOutput"] == "true"
    assert session.calls[0].kwargs["stream"] is True


def test_pdf_extraction_falls_back_to_job_when_stream_unparseable(clock, tmp_path):
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF-1.4 test")
    client, session = _client({
        ("POST", "/api/extract/pdf"): [
            FakeResponse(200, chunks=["[System: Analyzing...]\n", "Error during streaming: timeout"]),
            FakeResponse(202, {"jobId": "job-1", "status": "pending"}),
        ],
        ("GET", JOB_PATH): [_job("processing", "working"), _job("completed", result=[{"title": "From job"}])],
    }, clock)

    tasks = client.extract_tasks_from_pdf(str(pdf))

    assert [t["title"] for t in tasks] == ["From job"]
    posts = [c for c in session.calls if c.method == "POST"]
    assert [p.kwargs["data"]["streamOutput"] for p in posts] == ["true", "false"]


def test_pdf_extraction_falls_back_when_connection_drops(clock, tmp_path):
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF-1.4 test")
    client, _ = _client({
        ("POST", "/api/extract/pdf"): [
            requests.exceptions.ConnectionError("reset"),
            FakeResponse(202, {"jobId": "job-1"}),
        ],
        ("GET", JOB_PATH): _job("completed", result={"tasks": [{"title": "Recovered"}]}),
    }, clock)

    assert [t["title"] for t in client.extract_tasks_from_pdf(str(pdf))] == ["Recovered"]


def test_pdf_extraction_second_failure_is_raised(clock, tmp_path):
    pdf = tmp_path / "doc.pdf"
    pdf.write_bytes(b"%PDF-1.4 test")
    client, _ = _client({
        ("POST", "/api/extract/pdf"): [
            FakeResponse(200, chunks=["garbage"]),
            FakeResponse(202, {"jobId": "job-1"}),
        ],
        ("GET", JOB_PATH): _job("failed", error="Empty response from OpenAI"),
    }, clock)

    with pytest.raises(ApiError, match="Empty response"):
        client.extract_tasks_from_pdf(str(pdf))


def test_analyze_tasks_parses_streamed_analysis(clock):
    body = ["[System: Analyzing 2 tasks...]\n\n", '{"analysis": {"similar": [{"tasks": ["a", "b"]}]}}']
    client, session = _client({("POST", "/api/tasks/analyze"): FakeResponse(200, chunks=body)}, clock)

    result = client.analyze_tasks(["a", "b"])

    assert result["analysis"]["similar"][0]["tasks"] == ["a", "b"]
    assert session.calls[0].kwargs["json"] == {"taskIds": ["a", "b"]}
