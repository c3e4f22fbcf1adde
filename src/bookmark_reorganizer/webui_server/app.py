from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..categorizer import BookmarkCategorizer
from ..config import resolve_root_folders, resolve_undo_capacity
from ..engine import EngineEvent, Reorganizer
from ..errors import ConcurrentOperationRejected, ProviderConfigError, StoreOperationError
from ..models import ApplyResult, RootFolders
from ..providers import resolve_query_text
from ..snapshot import backup_to_dict
from ..store import BookmarkStore, ChromeBookmarksFileStore, InMemoryBookmarkStore
from ..undo import UndoFrame, frame_summary
from .schemas import ApplyRequest, MoveEntryRequest, PlanRequest
from .settings import WebUISettings, load_webui_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    settings: WebUISettings
    engine: Reorganizer
    events: deque[dict[str, Any]]


def require_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Web UI services are not initialized.")
    return services


def _build_store(settings: WebUISettings) -> tuple[BookmarkStore, RootFolders]:
    if settings.bookmarks_file is None:
        print("[webui] BOOKMARKS_FILE is not set; serving an empty in-memory bookmark tree.", flush=True)
        bar, other = resolve_root_folders()
        store = InMemoryBookmarkStore(roots={bar: "Bookmarks bar", other: "Other bookmarks"})
        return store, RootFolders(bookmark_bar=bar, other=other)
    store = ChromeBookmarksFileStore(settings.bookmarks_file)
    return store, RootFolders(bookmark_bar=store.root_id("bookmark_bar"), other=store.root_id("other"))


def _build_categorizer(settings: WebUISettings) -> BookmarkCategorizer | None:
    try:
        query_text, provider_name = resolve_query_text(settings.provider)
    except ProviderConfigError as exc:
        print(f"[webui] categorization disabled: {exc}", flush=True)
        return None
    return BookmarkCategorizer(query_text=query_text, provider_name=provider_name)


async def _persist(engine: Reorganizer) -> None:
    save = getattr(engine.store, "save", None)
    if callable(save):
        await asyncio.to_thread(save)


def _frame_payload(engine: Reorganizer, frame: UndoFrame | None) -> dict[str, Any]:
    return {
        "frame": frame_summary(frame) if frame is not None else None,
        "can_undo": engine.history.can_undo,
        "can_redo": engine.history.can_redo,
    }


def _apply_payload(result: ApplyResult) -> dict[str, Any]:
    return {
        "folders_created": result.folders_created,
        "bookmarks_created": result.bookmarks_created,
        "removed": result.removed,
        "previous": backup_to_dict(result.previous),
    }


def create_app(engine: Reorganizer | None = None, settings: WebUISettings | None = None) -> FastAPI:
    settings = settings or load_webui_settings()
    if engine is None:
        store, roots = _build_store(settings)
        engine = Reorganizer(store, _build_categorizer(settings), roots, capacity=resolve_undo_capacity())

    services = Services(settings=settings, engine=engine, events=deque(maxlen=settings.event_buffer))

    def record_event(event: EngineEvent) -> None:
        services.events.append({"kind": event.kind, **event.detail})

    engine.subscribe(record_event)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services
        print(
            f"[start] webui-server listening on http://{settings.bind_host}:{settings.bind_port}{settings.base_path}",
            flush=True,
        )
        yield

    app = FastAPI(title="Bookmark Reorganizer", version="1.0", lifespan=lifespan)
    api_prefix = f"{settings.base_path}/api/v1"

    @app.exception_handler(ConcurrentOperationRejected)
    async def concurrent_operation(_request: Request, exc: ConcurrentOperationRejected) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc), "active": exc.active})

    @app.exception_handler(StoreOperationError)
    async def store_failure(_request: Request, exc: StoreOperationError) -> JSONResponse:
        logger.error("store operation failed in %s: %s", exc.phase or "request", exc)
        return JSONResponse(
            status_code=502,
            content={
                "detail": str(exc),
                "phase": exc.phase,
                "completed": exc.completed,
                "recoverable": exc.recoverable,
            },
        )

    @app.get(f"{api_prefix}/health")
    async def health(services: Services = Depends(require_services)) -> dict[str, Any]:
        return {
            "ok": True,
            "base_path": settings.base_path,
            "version": __version__,
            "busy": services.engine.busy,
            "categorizer": services.engine.categorizer is not None,
        }

    @app.get(f"{api_prefix}/bookmarks")
    async def list_bookmarks(services: Services = Depends(require_services)) -> dict[str, Any]:
        links = await services.engine.collect_bookmarks()
        return {"items": [{"title": link.title, "url": link.url} for link in links], "count": len(links)}

    @app.post(f"{api_prefix}/plan")
    async def plan(payload: PlanRequest, services: Services = Depends(require_services)) -> dict[str, Any]:
        bookmarks = [item.model_dump() for item in payload.bookmarks] if payload.bookmarks is not None else None
        try:
            result = await services.engine.plan(bookmarks)
        except ProviderConfigError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {
            "mapping": result.mapping,
            "parse_failed": result.parse_failed,
            "provider": result.provider,
            "stats": result.stats,
        }

    @app.post(f"{api_prefix}/mapping/move")
    async def move_mapping_entry(payload: MoveEntryRequest, services: Services = Depends(require_services)) -> dict[str, Any]:
        try:
            mapping = services.engine.move_entry(payload.mapping, payload.title, payload.from_category, payload.to_category)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0]) if exc.args else "Entry not found.") from exc
        return {"mapping": mapping, "stats": services.engine.mapping_stats(mapping)}

    @app.post(f"{api_prefix}/apply")
    async def apply(payload: ApplyRequest, services: Services = Depends(require_services)) -> dict[str, Any]:
        result = await services.engine.apply(payload.mapping, payload.description)
        await _persist(services.engine)
        frame = services.engine.history.undo_stack[0]
        return {"result": _apply_payload(result), **_frame_payload(services.engine, frame)}

    @app.post(f"{api_prefix}/undo")
    async def undo(services: Services = Depends(require_services)) -> dict[str, Any]:
        frame = await services.engine.undo()
        if frame is not None:
            await _persist(services.engine)
        return _frame_payload(services.engine, frame)

    @app.post(f"{api_prefix}/redo")
    async def redo(services: Services = Depends(require_services)) -> dict[str, Any]:
        frame = await services.engine.redo()
        if frame is not None:
            await _persist(services.engine)
        return _frame_payload(services.engine, frame)

    @app.get(f"{api_prefix}/history")
    async def history(services: Services = Depends(require_services)) -> dict[str, Any]:
        return {
            "items": services.engine.operation_history(),
            "can_undo": services.engine.history.can_undo,
            "can_redo": services.engine.history.can_redo,
        }

    @app.get(f"{api_prefix}/events")
    async def events(services: Services = Depends(require_services)) -> dict[str, Any]:
        return {"items": list(services.events)}

    return app
