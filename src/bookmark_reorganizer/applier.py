"""Destructive rewrite of the two rewritable bookmark roots.

Every run follows the same three phases: backup, clear, recreate. The sequence
is not atomic. A failing store call aborts the run immediately and raises
:class:`StoreOperationError` with the backup attached; nothing is retried (a
retried create can duplicate a bookmark) and nothing is rolled back. Recovery
is a later restore from that backup.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from .errors import StoreOperationError
from .models import ROOT_NAMES, ApplyResult, BookmarkNode, CategoryMapping, RootBackup, RootFolders, SnapshotNode
from .snapshot import snapshot_children, snapshot_from_mapping
from .store import BookmarkStore
from .traversal import count_nodes, max_depth

logger = logging.getLogger(__name__)

PhaseCallback = Callable[[str, dict[str, Any]], None]


@dataclass
class _Progress:
    done: int = 0


async def _settle(*steps: Awaitable[Any]) -> list[Any]:
    """Run independent steps concurrently and wait for all of them before raising."""
    results = await asyncio.gather(*steps, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


class ReorganizationApplier:
    def __init__(
        self,
        store: BookmarkStore,
        roots: RootFolders | None = None,
        *,
        target_root: str = "bookmark_bar",
        on_phase: PhaseCallback | None = None,
    ) -> None:
        self.store = store
        self.roots = roots or RootFolders()
        self.target_root = target_root
        self.target_id = self.roots.id_for(target_root)
        self.on_phase = on_phase

    def _emit(self, phase: str, **detail: Any) -> None:
        logger.info("%s: %s", phase, detail)
        if self.on_phase is not None:
            self.on_phase(phase, detail)

    @staticmethod
    def _phase_error(phase: str, exc: Exception, backup: RootBackup | None, completed: int) -> StoreOperationError:
        message = f"{phase} failed after {completed} store operation(s): {exc}"
        if backup is not None:
            message += "; roots may be partially rewritten, restore from the backup to recover"
        return StoreOperationError(message, phase=phase, backup=backup, completed=completed)

    async def backup(self) -> RootBackup:
        try:
            bar, other = await _settle(
                snapshot_children(self.store, self.roots.bookmark_bar),
                snapshot_children(self.store, self.roots.other),
            )
        except Exception as exc:
            raise self._phase_error("backup", exc, None, 0) from exc
        folders, links = count_nodes([*bar, *other])
        self._emit(
            "backup",
            bookmark_bar=len(bar),
            other=len(other),
            folders=folders,
            links=links,
            depth=max_depth([*bar, *other]),
        )
        return RootBackup(bookmark_bar=bar, other=other)

    async def _clear_root(self, root_id: str, progress: _Progress) -> None:
        children = await self.store.get_children(root_id)
        for child in children:
            await self.store.remove_tree(child.id)
            progress.done += 1

    async def _clear(self, backup: RootBackup | None) -> int:
        progress = _Progress()
        try:
            await _settle(*(self._clear_root(root_id, progress) for root_id in self.roots.ids()))
        except Exception as exc:
            raise self._phase_error("clear", exc, backup, progress.done) from exc
        self._emit("clear", removed=progress.done)
        return progress.done

    async def _recreate_nodes(self, parent_id: str, nodes: Sequence[SnapshotNode], progress: _Progress) -> None:
        # frame: [parent id, nodes, next position]
        stack: list[list[Any]] = [[parent_id, nodes, 0]]
        while stack:
            frame = stack[-1]
            parent, items, position = frame
            if position >= len(items):
                stack.pop()
                continue
            frame[2] = position + 1
            node = items[position]
            created = await self.store.create(parent, node.title, node.url)
            progress.done += 1
            if node.url is None and node.children:
                stack.append([created.id, node.children, 0])

    async def recreate_subtree(self, parent_id: str, node: SnapshotNode, index: int | None = None) -> BookmarkNode:
        """Create ``node`` at ``index`` under ``parent_id``, then its descendants in order."""
        created = await self.store.create(parent_id, node.title, node.url, index)
        if node.url is None and node.children:
            await self._recreate_nodes(created.id, node.children, _Progress())
        return created

    async def _create_categories(self, mapping: CategoryMapping, progress: _Progress) -> tuple[int, int]:
        folders = 0
        bookmarks = 0
        for category, entries in mapping.items():
            folder = await self.store.create(self.target_id, category)
            progress.done += 1
            folders += 1
            for title, url in entries.items():
                await self.store.create(folder.id, title, url)
                progress.done += 1
                bookmarks += 1
        return folders, bookmarks

    def intended_state(self, mapping: CategoryMapping) -> RootBackup:
        """Structure both roots hold after ``apply_mapping(mapping)`` succeeds."""
        folders = snapshot_from_mapping(mapping)
        return RootBackup(**{name: folders if name == self.target_root else () for name in ROOT_NAMES})

    async def apply_mapping(self, mapping: CategoryMapping, backup: RootBackup | None = None) -> ApplyResult:
        if backup is None:
            backup = await self.backup()
        removed = await self._clear(backup)

        progress = _Progress()
        try:
            folders, bookmarks = await self._create_categories(mapping, progress)
        except Exception as exc:
            raise self._phase_error("recreate", exc, backup, removed + progress.done) from exc
        self._emit("recreate", folders=folders, bookmarks=bookmarks)
        return ApplyResult(
            previous=backup,
            new=self.intended_state(mapping),
            folders_created=folders,
            bookmarks_created=bookmarks,
            removed=removed,
        )

    async def restore(self, state: RootBackup) -> int:
        """Rebuild both roots from snapshots; returns the number of nodes created.

        ``state`` doubles as the recovery backup for a failure during this run,
        since it is exactly what the roots should end up holding.
        """
        await self._clear(state)
        progress = _Progress()
        try:
            for name in ROOT_NAMES:
                await self._recreate_nodes(self.roots.id_for(name), state.for_root(name), progress)
        except Exception as exc:
            raise self._phase_error("restore", exc, state, progress.done) from exc
        self._emit("restore", created=progress.done)
        return progress.done
