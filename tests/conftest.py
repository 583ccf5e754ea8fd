"""Shared fixtures: an app per test, rooted in tmp_path."""
import pytest
from fastapi.testclient import TestClient

from server import create_app
from superupload_backend.config import Settings
from superupload_backend.sessions import SessionStore


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(expiry_seconds=600, clock=clock)


@pytest.fixture
def uploads_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def static_root(tmp_path):
    root = tmp_path / "static"
    root.mkdir()
    (root / "index.html").write_text("<h1>index</h1>", encoding="utf-8")
    (root / "app.js").write_text("console.log('hi');", encoding="utf-8")
    (root / "sub").mkdir()
    (tmp_path / "secret.txt").write_text("top secret", encoding="utf-8")
    return root


@pytest.fixture
def settings(tmp_path, uploads_dir, static_root):
    template = tmp_path / "save.tmpl"
    template.write_text(
        "<p>{{session.upload.name}} ({{session.upload.size}})</p><pre>{{fields.description}}</pre>",
        encoding="utf-8",
    )
    return Settings(
        uploads_dir=uploads_dir,
        static_root=static_root,
        save_template=template,
        status_delay_seconds=0,
        sweep_interval_seconds=3600,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
