import random

import pytest
from fastapi.testclient import TestClient


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Point every store at a fresh temporary data directory."""
    root = tmp_path / "data"
    monkeypatch.setenv("HANZI_DATA_DIR", str(root))
    return root


@pytest.fixture
def client():
    from hanzi.main import app
    return TestClient(app)


class ManualHandle:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Collects scheduled callbacks; tests fire them explicitly."""

    def __init__(self):
        self.handles = []

    def schedule(self, delay, callback):
        handle = ManualHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self):
        return [h for h in self.handles if not h.cancelled]

    def fire_all(self):
        fired = 0
        while self.pending:
            handle = self.pending[0]
            self.handles.remove(handle)
            handle.callback()
            fired += 1
        return fired


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def quiz_store(monkeypatch, scheduler):
    """Replace the app's quiz session store with a deterministic one."""
    from hanzi import services
    from hanzi.utils.quiz_sessions import QuizSessionStore

    store = QuizSessionStore(
        on_complete=services.persist_quiz_result,
        scheduler=scheduler,
        auto_advance_seconds=2.0,
        rng_factory=lambda: random.Random(7),
    )
    monkeypatch.setattr("hanzi.main._quiz_sessions", store)
    yield store
    store.close()


def register(client, username="learner", password="pass"):
    r = client.post("/auth/register", json={"username": username, "password": password})
    assert r.status_code == 200, r.text
    return r


SAMPLE_CHARACTERS = [
    {"character": "备", "pinyin": "bèi", "meaning": "prepare", "phrase": "准备"},
    {"character": "文", "pinyin": "wén", "meaning": "writing", "phrase": "文字"},
    {"character": "学", "pinyin": "xué", "meaning": "study", "phrase": "学习"},
    {"character": "水", "pinyin": "shuǐ", "meaning": "water", "phrase": "喝水"},
    {"character": "火", "pinyin": "huǒ", "meaning": "fire", "phrase": ""},
]
