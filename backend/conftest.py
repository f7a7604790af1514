# backend/conftest.py

import os
import tempfile
from types import SimpleNamespace
from urllib.parse import urlsplit

import pytest

# Point the application at a throwaway database and upload folder before
# config is imported anywhere.
_TMP_DIR = tempfile.mkdtemp(prefix="taskboard-tests-")
os.environ["DATABASE_PATH"] = os.path.join(_TMP_DIR, "test.db")
os.environ.pop("DATABASE_URL", None)
os.environ["UPLOAD_FOLDER"] = os.path.join(_TMP_DIR, "uploads")

import database as db  # noqa: E402


# =============================================================================
# FAKES
# =============================================================================

class FakeCompletions:
    """
    Stand-in for client.chat.completions.

    Replies are consumed in order (the last one repeats). A reply that is an
    exception instance is raised. Streamed replies are cut into small chunks.
    """

    def __init__(self, replies, chunk_size=16):
        self.replies = list(replies)
        self.chunk_size = chunk_size
        self.calls = []

    def _next(self):
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self._next()
        if isinstance(reply, Exception):
            raise reply

        if kwargs.get("stream"):
            pieces = [reply[i:i + self.chunk_size] for i in range(0, len(reply), self.chunk_size)]
            return iter([
                SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=p))])
                for p in pieces
            ])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


class FakeOpenAI:
    """OpenAI-compatible client returning canned replies."""

    def __init__(self, *replies):
        self.completions = FakeCompletions(replies or [""])
        self.chat = SimpleNamespace(completions=self.completions)


class FakeResponse:
    """Just enough of requests.Response for the API clients."""

    def __init__(self, status_code=200, json_data=None, text=None, chunks=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text if text is not None else ("" if json_data is None else str(json_data))
        self.chunks = chunks
        self.reason = "OK" if self.ok else "Error"

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def iter_content(self, chunk_size=None, decode_unicode=False):
        for chunk in self.chunks if self.chunks is not None else [self.text]:
            yield chunk

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """
    requests.Session replacement routing on (method, path).

    Each route holds a response, a list of responses consumed in order (the
    last one repeats), or an exception to raise.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.headers = {}

    def request(self, method, url, **kwargs):
        path = urlsplit(url).path
        self.calls.append(SimpleNamespace(method=method, url=url, path=path, kwargs=kwargs))
        route = self.routes.get((method, path))
        if route is None:
            return FakeResponse(404, {"error": "Not found"})
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if isinstance(route, Exception):
            raise route
        return route


class FakeClock:
    """Manually advanced time source; also usable as a sleep function."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def fresh_db():
    """Every test starts from empty tables."""
    db.Session.remove()
    db.drop_db()
    db.init_db()
    yield
    db.Session.remove()


@pytest.fixture()
def app():
    import app as app_module
    app_module.app.config["TESTING"] = True
    return app_module.app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def user_headers():
    return {"X-User-Id": "u-1", "X-User-Name": "Alex Admin", "X-User-Email": "alex@example.com"}


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_pdf(tmp_path):
    """Write a one-page text PDF and return its path."""
    from reportlab.lib.pagesizes import letter
    from reportlab.pdfgen import canvas

    def _make(lines, name="document.pdf"):
        path = tmp_path / name
        pdf = canvas.Canvas(str(path), pagesize=letter)
        y = 720
        for line in lines:
            pdf.drawString(72, y, line)
            y -= 18
        pdf.save()
        return str(path)

    return _make
