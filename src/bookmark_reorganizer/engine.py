from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Literal

from .applier import ReorganizationApplier
from .categorizer import BookmarkCategorizer, CategorizationResult
from .config import env_or_config
from .errors import ProviderConfigError, StoreOperationError
from .models import ApplyResult, BookmarkLink, CategoryMapping, RootBackup, RootFolders
from .normalizer import DEFAULT_FALLBACK_CATEGORY, mapping_stats, move_entry, normalize_categorization
from .store import BookmarkStore
from .traversal import iter_links
from .undo import DEFAULT_UNDO_CAPACITY, OperationGate, ReorganizeFrame, UndoFrame, UndoRedoStack, frame_summary

logger = logging.getLogger(__name__)

EventKind = Literal["phase", "planned", "applied", "apply_failed", "undone", "redone"]


@dataclass(frozen=True)
class EngineEvent:
    kind: EventKind
    detail: dict[str, Any] = field(default_factory=dict)


Listener = Callable[[EngineEvent], None]


class Reorganizer:
    """Plan, apply and undo bookmark reorganizations against one store.

    Apply, undo and redo share a single gate; a call made while another one is
    running raises ConcurrentOperationRejected instead of waiting.
    """

    def __init__(
        self,
        store: BookmarkStore,
        categorizer: BookmarkCategorizer | None = None,
        roots: RootFolders | None = None,
        *,
        capacity: int = DEFAULT_UNDO_CAPACITY,
        target_root: str = "bookmark_bar",
        fallback_category: str | None = None,
        listeners: Iterable[Listener] = (),
    ) -> None:
        self.store = store
        self.categorizer = categorizer
        self.roots = roots or RootFolders()
        if fallback_category is None and categorizer is not None:
            fallback_category = categorizer.fallback_category
        if fallback_category is None:
            fallback_category = env_or_config("FALLBACK_CATEGORY", "categorizer.fallback_category", DEFAULT_FALLBACK_CATEGORY)
        self.fallback_category = str(fallback_category or "").strip() or DEFAULT_FALLBACK_CATEGORY
        self.gate = OperationGate()
        self.applier = ReorganizationApplier(store, self.roots, target_root=target_root, on_phase=self._on_phase)
        self.history = UndoRedoStack(store, self.applier, capacity=capacity, gate=self.gate)
        self._listeners: list[Listener] = list(listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; the returned callable removes it again."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: EventKind, **detail: Any) -> None:
        event = EngineEvent(kind=kind, detail=detail)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("listener failed on %s event", kind)

    def _on_phase(self, phase: str, detail: dict[str, Any]) -> None:
        self._emit("phase", phase=phase, **detail)

    @property
    def busy(self) -> bool:
        return self.gate.busy

    async def collect_bookmarks(self) -> list[BookmarkLink]:
        """Every link under both rewritable roots, bookmarks bar first, in tree order."""
        bar, other = await asyncio.gather(
            self.store.get_subtree(self.roots.bookmark_bar),
            self.store.get_subtree(self.roots.other),
        )
        return list(iter_links([*(bar.children or []), *(other.children or [])]))

    def cover(self, mapping: CategoryMapping, bookmarks: Iterable[Any]) -> CategoryMapping:
        """Fit ``mapping`` to ``bookmarks``: drop unknown entries, send missing ones to the fallback folder."""
        return normalize_categorization(mapping, bookmarks, self.fallback_category)

    async def prepare_mapping(self, mapping: CategoryMapping) -> CategoryMapping:
        """``mapping`` as apply would write it against the bookmarks the store holds now."""
        return self.cover(mapping, await self.collect_bookmarks())

    @staticmethod
    def _backup_links(backup: RootBackup) -> list[BookmarkLink]:
        return list(iter_links([*backup.bookmark_bar, *backup.other]))

    async def plan(self, bookmarks: Iterable[Any] | None = None) -> CategorizationResult:
        if self.categorizer is None:
            raise ProviderConfigError("No categorizer configured; pass a mapping to apply instead.")
        links = list(bookmarks) if bookmarks is not None else await self.collect_bookmarks()
        result = await self.categorizer.categorize(links)
        self._emit("planned", parse_failed=result.parse_failed, **mapping_stats(result.mapping))
        return result

    async def apply(self, mapping: CategoryMapping, description: str | None = None) -> ApplyResult:
        """Rewrite the roots into ``mapping``'s folders.

        The mapping is first fitted to the links in the backup, so a bookmark
        the mapping leaves out lands in the fallback folder instead of being
        cleared away with the old tree.
        """
        with self.gate.hold("apply"):
            backup = await self.applier.backup()
            mapping = self.cover(mapping, self._backup_links(backup))
            stats = mapping_stats(mapping)
            text = description or f"Reorganized {stats['bookmarks']} bookmark(s) into {stats['folders']} folder(s)"
            try:
                result = await self.applier.apply_mapping(mapping, backup)
            except StoreOperationError as exc:
                # The roots may be half rewritten; keep a frame so undo can bring the backup back.
                self.history.add_frame(
                    ReorganizeFrame(
                        previous_state=backup,
                        new_state=self.applier.intended_state(mapping),
                        description=f"{text} (failed during {exc.phase})",
                    )
                )
                self._emit("apply_failed", phase=exc.phase, completed=exc.completed, error=str(exc))
                raise
            frame = self.history.add_frame(
                ReorganizeFrame(previous_state=result.previous, new_state=result.new, description=text)
            )
        self._emit(
            "applied",
            frame_id=frame.id,
            folders=result.folders_created,
            bookmarks=result.bookmarks_created,
            removed=result.removed,
        )
        return result

    async def undo(self) -> UndoFrame | None:
        frame = await self.history.perform_undo()
        if frame is not None:
            self._emit("undone", frame_id=frame.id, type=frame.kind)
        return frame

    async def redo(self) -> UndoFrame | None:
        frame = await self.history.perform_redo()
        if frame is not None:
            self._emit("redone", frame_id=frame.id, type=frame.kind)
        return frame

    def operation_history(self) -> list[dict[str, Any]]:
        return [frame_summary(frame) for frame in self.history.operation_history()]

    @staticmethod
    def move_entry(mapping: CategoryMapping, title: str, from_category: str, to_category: str) -> CategoryMapping:
        return move_entry(mapping, title, from_category, to_category)

    @staticmethod
    def mapping_stats(mapping: CategoryMapping) -> dict[str, int]:
        return mapping_stats(mapping)
