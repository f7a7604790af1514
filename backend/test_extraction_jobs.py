import threading
import time

from extraction_jobs import JobStore


def test_completed_job_keeps_result_and_progress():
    store = JobStore()

    def work(progress, text):
        progress("reading ")
        progress(text)
        return [{"title": text}]

    job_id = store.start(work, "Patch servers")
    assert store.wait(job_id, timeout=5)

    status = store.get_status(job_id)
    assert status["status"] == "completed"
    assert status["result"] == [{"title": "Patch servers"}]
    assert status["streamContent"].startswith("reading Patch servers")
    assert status["error"] is None


def test_failed_job_records_error_message():
    store = JobStore()

    def work(progress):
        raise RuntimeError("model unavailable")

    job_id = store.start(work)
    store.wait(job_id, timeout=5)

    status = store.get_status(job_id)
    assert status["status"] == "failed"
    assert status["error"] == "model unavailable"
    assert status["result"] is None


def test_unknown_job_has_no_status():
    assert JobStore().get_status("missing") is None


def test_quiet_worker_gets_heartbeat_lines():
    store = JobStore(heartbeat=0.01)
    release = threading.Event()

    def work(progress):
        release.wait(5)
        return []

    job_id = store.start(work)
    deadline = time.time() + 5
    while "Still processing" not in (store.get_status(job_id)["streamContent"]) and time.time() < deadline:
        time.sleep(0.01)
    release.set()
    store.wait(job_id, timeout=5)

    assert "[System: Still processing...]" in store.get_status(job_id)["streamContent"]


def test_cleanup_purges_old_jobs(clock):
    store = JobStore(max_age=60, clock=clock)
    job_id = store.start(lambda progress: [])
    store.wait(job_id, timeout=5)

    clock.now += 30
    assert store.cleanup() == 0
    assert store.get_status(job_id)["status"] == "completed"

    clock.now += 31
    assert store.cleanup() == 1
    assert store.get_status(job_id) is None
