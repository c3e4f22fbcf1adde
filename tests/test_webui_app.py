from __future__ import annotations

import asyncio
import logging
import logging.handlers
from pathlib import Path

from fastapi.testclient import TestClient

from bookmark_reorganizer.applier import ReorganizationApplier
from bookmark_reorganizer.categorizer import BookmarkCategorizer
from bookmark_reorganizer.engine import Reorganizer
from bookmark_reorganizer.errors import StoreOperationError
from bookmark_reorganizer.models import RootBackup, SnapshotNode
from bookmark_reorganizer.store import InMemoryBookmarkStore
from bookmark_reorganizer.webui_server.app import create_app
from bookmark_reorganizer.webui_server.main import configure_logging
from bookmark_reorganizer.webui_server.settings import WebUISettings, load_webui_settings

FLAT = RootBackup(bookmark_bar=(SnapshotNode("A", url="http://a"), SnapshotNode("B", url="http://b")))
API = "/reorganizer/api/v1"


def _settings(tmp_path: Path) -> WebUISettings:
    return WebUISettings(
        bind_host="127.0.0.1",
        bind_port=4830,
        base_path="/reorganizer",
        bookmarks_file=None,
        provider=None,
        logs_dir=tmp_path / "logs",
        event_buffer=50,
    )


def _engine(store=None, categorizer=None) -> Reorganizer:
    store = store or InMemoryBookmarkStore()
    asyncio.run(ReorganizationApplier(store).restore(FLAT))
    return Reorganizer(store, categorizer)


def _state(engine: Reorganizer) -> RootBackup:
    return asyncio.run(engine.applier.backup())


def test_plan_apply_undo_redo_flow(tmp_path: Path):
    categorizer = BookmarkCategorizer(
        query_text=lambda _prompt: '```json\n{"Cat1":{"A":"http://a",},}\n```',
        provider_name="fake",
        retries=1,
    )
    engine = _engine(categorizer=categorizer)
    app = create_app(engine=engine, settings=_settings(tmp_path))

    with TestClient(app) as client:
        health = client.get(f"{API}/health")
        assert health.status_code == 200
        assert health.json()["categorizer"] is True

        bookmarks = client.get(f"{API}/bookmarks").json()
        assert bookmarks["count"] == 2

        plan = client.post(f"{API}/plan", json={})
        assert plan.status_code == 200
        mapping = plan.json()["mapping"]
        assert mapping == {"Cat1": {"A": "http://a"}, "Other": {"B": "http://b"}}

        applied = client.post(f"{API}/apply", json={"mapping": mapping})
        assert applied.status_code == 200
        body = applied.json()
        assert body["result"]["folders_created"] == 2
        assert body["result"]["previous"]["bookmark_bar"][0] == {"title": "A", "url": "http://a"}
        assert body["frame"]["type"] == "reorganize"
        assert body["can_undo"] is True

        undone = client.post(f"{API}/undo")
        assert undone.status_code == 200
        assert undone.json()["can_redo"] is True
        assert _state(engine) == FLAT

        redone = client.post(f"{API}/redo")
        assert redone.json()["frame"]["id"] == body["frame"]["id"]

        history = client.get(f"{API}/history").json()
        assert [item["type"] for item in history["items"]] == ["reorganize"]

        events = client.get(f"{API}/events").json()["items"]
        kinds = [event["kind"] for event in events]
        assert "applied" in kinds and "undone" in kinds and "redone" in kinds


def test_plan_with_explicit_bookmarks_and_move(tmp_path: Path):
    categorizer = BookmarkCategorizer(query_text=lambda _prompt: "{}", provider_name="fake", retries=1)
    app = create_app(engine=_engine(categorizer=categorizer), settings=_settings(tmp_path))

    with TestClient(app) as client:
        plan = client.post(f"{API}/plan", json={"bookmarks": [{"title": "Z", "url": "http://z"}]})
        assert plan.json()["mapping"] == {"Other": {"Z": "http://z"}}

        moved = client.post(
            f"{API}/mapping/move",
            json={"mapping": {"Other": {"Z": "http://z"}}, "title": "Z", "from_category": "Other", "to_category": "Misc"},
        )
        assert moved.status_code == 200
        assert moved.json() == {"mapping": {"Misc": {"Z": "http://z"}}, "stats": {"folders": 1, "bookmarks": 1}}

        missing = client.post(
            f"{API}/mapping/move",
            json={"mapping": {"Other": {}}, "title": "Z", "from_category": "Other", "to_category": "Misc"},
        )
        assert missing.status_code == 404


def test_plan_without_provider_returns_503(tmp_path: Path):
    app = create_app(engine=_engine(), settings=_settings(tmp_path))
    with TestClient(app) as client:
        assert client.post(f"{API}/plan", json={}).status_code == 503
        assert client.post(f"{API}/apply", json={"mapping": {" ": {}}}).status_code == 422


def test_overlapping_operation_returns_409(tmp_path: Path):
    engine = _engine()
    app = create_app(engine=engine, settings=_settings(tmp_path))
    with TestClient(app) as client:
        with engine.gate.hold("apply"):
            response = client.post(f"{API}/undo")
            assert client.get(f"{API}/health").json()["busy"] is True
        assert response.status_code == 409
        assert response.json()["active"] == "apply"


def test_store_failure_returns_502_and_undo_recovers(tmp_path: Path):
    class FlakyStore(InMemoryBookmarkStore):
        armed = False

        async def create(self, parent_id, title, url=None, index=None):
            if self.armed and url is not None:
                self.armed = False
                raise StoreOperationError("quota exceeded")
            return await super().create(parent_id, title, url, index)

    store = FlakyStore()
    engine = _engine(store=store)
    store.armed = True
    app = create_app(engine=engine, settings=_settings(tmp_path))

    with TestClient(app) as client:
        failed = client.post(f"{API}/apply", json={"mapping": {"Cat": {"A": "http://a"}}})
        assert failed.status_code == 502
        assert failed.json()["phase"] == "recreate"
        assert failed.json()["recoverable"] is True

        assert client.post(f"{API}/undo").status_code == 200
    assert _state(engine) == FLAT


def test_apply_with_partial_mapping_keeps_missing_bookmarks(tmp_path: Path):
    engine = _engine()
    app = create_app(engine=engine, settings=_settings(tmp_path))

    with TestClient(app) as client:
        applied = client.post(f"{API}/apply", json={"mapping": {"Cat1": {"A": "http://a"}}})
        assert applied.status_code == 200
        assert applied.json()["result"]["bookmarks_created"] == 2
        urls = sorted(item["url"] for item in client.get(f"{API}/bookmarks").json()["items"])
        assert urls == ["http://a", "http://b"]


def test_apply_saves_file_backed_store_off_the_event_loop(tmp_path: Path):
    class SavingStore(InMemoryBookmarkStore):
        def __init__(self):
            super().__init__()
            self.saves = []

        def save(self):
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                self.saves.append("worker")
            else:
                self.saves.append("event-loop")

    store = SavingStore()
    app = create_app(engine=_engine(store=store), settings=_settings(tmp_path))

    with TestClient(app) as client:
        assert client.post(f"{API}/apply", json={"mapping": {"Cat1": {"A": "http://a"}}}).status_code == 200
        assert client.post(f"{API}/undo").status_code == 200

    assert store.saves == ["worker", "worker"]


def test_load_webui_settings_normalizes_base_path(monkeypatch):
    monkeypatch.setenv("WEB_BASE_PATH", "tools/")
    monkeypatch.setenv("WEB_BIND_PORT", "70000")
    monkeypatch.delenv("BOOKMARKS_FILE", raising=False)
    settings = load_webui_settings()
    assert settings.base_path == "/tools"
    assert settings.bind_port == 65535


def test_configure_logging_writes_rotating_file(tmp_path: Path):
    root = logging.getLogger()
    before = list(root.handlers)
    level = root.level
    log_file = tmp_path / "logs" / "server.log"
    try:
        configure_logging(log_file)
        added = [handler for handler in root.handlers if handler not in before]
        assert any(isinstance(handler, logging.handlers.RotatingFileHandler) for handler in added)
        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("uvicorn.access").level == logging.WARNING
        logging.getLogger("bookmark_reorganizer.test").warning("hello")
        for handler in added:
            handler.flush()
        assert "hello" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in [handler for handler in root.handlers if handler not in before]:
            root.removeHandler(handler)
            handler.close()
        root.setLevel(level)
