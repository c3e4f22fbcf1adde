from __future__ import annotations

import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from threading import Lock
from typing import Any, ClassVar, Iterator, Literal, Union, assert_never
from uuid import uuid4

from .applier import ReorganizationApplier
from .errors import ConcurrentOperationRejected
from .models import NodeFields, NodePosition, PlacedSnapshot, RootBackup
from .store import BookmarkStore

logger = logging.getLogger(__name__)

DEFAULT_UNDO_CAPACITY = 50

FrameKind = Literal["reorganize", "move", "delete", "create", "update"]


def _frame_id() -> str:
    return f"undo_{uuid4().hex[:12]}"


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, kw_only=True)
class _FrameBase:
    id: str = field(default_factory=_frame_id)
    timestamp: datetime = field(default_factory=_utc_now)
    description: str = ""
    affected_bookmark_ids: tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class ReorganizeFrame(_FrameBase):
    kind: ClassVar[FrameKind] = "reorganize"
    previous_state: RootBackup
    new_state: RootBackup


@dataclass(frozen=True, kw_only=True)
class MoveFrame(_FrameBase):
    kind: ClassVar[FrameKind] = "move"
    previous_state: tuple[NodePosition, ...]
    new_state: tuple[NodePosition, ...]


@dataclass(frozen=True, kw_only=True)
class DeleteFrame(_FrameBase):
    kind: ClassVar[FrameKind] = "delete"
    # node_id is the subtree's current store id, refreshed each time undo recreates it
    new_state: tuple[PlacedSnapshot, ...]


@dataclass(frozen=True, kw_only=True)
class CreateFrame(_FrameBase):
    kind: ClassVar[FrameKind] = "create"
    new_state: tuple[PlacedSnapshot, ...]


@dataclass(frozen=True, kw_only=True)
class UpdateFrame(_FrameBase):
    kind: ClassVar[FrameKind] = "update"
    previous_state: tuple[NodeFields, ...]
    new_state: tuple[NodeFields, ...]


UndoFrame = Union[ReorganizeFrame, MoveFrame, DeleteFrame, CreateFrame, UpdateFrame]


class OperationGate:
    """Admits one history-mutating operation at a time; overlapping callers are rejected."""

    def __init__(self) -> None:
        self._lock = Lock()
        self.active: str | None = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise ConcurrentOperationRejected(operation, self.active or "another operation")
        self.active = operation
        try:
            yield
        finally:
            self.active = None
            self._lock.release()


def _positions_in_order(positions: tuple[NodePosition, ...]) -> list[NodePosition]:
    # Ascending index per parent so each insert lands at its recorded slot.
    return sorted(positions, key=lambda position: (position.parent_id, position.index))


class UndoRedoStack:
    """Bounded undo and redo stacks, newest frame first.

    Node-level frames record store ids. Replaying a ReorganizeFrame rebuilds
    both roots with fresh ids, so an older node-level frame beneath it no
    longer resolves: undoing it raises BookmarkNotFoundError and the frame
    stays on the stack.
    """

    def __init__(
        self,
        store: BookmarkStore,
        applier: ReorganizationApplier,
        capacity: int = DEFAULT_UNDO_CAPACITY,
        gate: OperationGate | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("Undo capacity must be at least 1.")
        self.store = store
        self.applier = applier
        self.capacity = capacity
        self.gate = gate or OperationGate()
        self.undo_stack: deque[UndoFrame] = deque(maxlen=capacity)
        self.redo_stack: deque[UndoFrame] = deque(maxlen=capacity)

    @property
    def can_undo(self) -> bool:
        return bool(self.undo_stack)

    @property
    def can_redo(self) -> bool:
        return bool(self.redo_stack)

    def add_frame(self, frame: UndoFrame) -> UndoFrame:
        if len(self.undo_stack) == self.capacity:
            logger.debug("evicting undo frame %s", self.undo_stack[-1].id)
        self.undo_stack.appendleft(frame)
        self.redo_stack.clear()
        return frame

    def clear_history(self) -> None:
        self.undo_stack.clear()
        self.redo_stack.clear()

    def operation_history(self) -> list[UndoFrame]:
        return sorted([*self.undo_stack, *self.redo_stack], key=lambda frame: frame.timestamp, reverse=True)

    async def perform_undo(self) -> UndoFrame | None:
        with self.gate.hold("undo"):
            if not self.undo_stack:
                return None
            frame = self.undo_stack[0]
            started = time.monotonic()
            replayed = await self._apply_inverse(frame)
            # Only a fully replayed frame changes stacks; a failure leaves it in place.
            self.undo_stack.popleft()
            self.redo_stack.appendleft(replayed)
            logger.info("undo %s (%s) completed in %.3fs", frame.id, frame.kind, time.monotonic() - started)
            return replayed

    async def perform_redo(self) -> UndoFrame | None:
        with self.gate.hold("redo"):
            if not self.redo_stack:
                return None
            frame = self.redo_stack[0]
            started = time.monotonic()
            replayed = await self._apply_forward(frame)
            self.redo_stack.popleft()
            self.undo_stack.appendleft(replayed)
            logger.info("redo %s (%s) completed in %.3fs", frame.id, frame.kind, time.monotonic() - started)
            return replayed

    async def _apply_inverse(self, frame: UndoFrame) -> UndoFrame:
        match frame:
            case ReorganizeFrame():
                await self.applier.restore(frame.previous_state)
                return frame
            case MoveFrame():
                await self._move_to(frame.previous_state)
                return frame
            case DeleteFrame():
                return replace(frame, new_state=await self._recreate(frame.new_state))
            case CreateFrame():
                await self._remove(frame.new_state)
                return frame
            case UpdateFrame():
                await self._write_fields(frame.previous_state)
                return frame
            case _:
                assert_never(frame)

    async def _apply_forward(self, frame: UndoFrame) -> UndoFrame:
        match frame:
            case ReorganizeFrame():
                await self.applier.restore(frame.new_state)
                return frame
            case MoveFrame():
                await self._move_to(frame.new_state)
                return frame
            case DeleteFrame():
                await self._remove(frame.new_state)
                return frame
            case CreateFrame():
                return replace(frame, new_state=await self._recreate(frame.new_state))
            case UpdateFrame():
                await self._write_fields(frame.new_state)
                return frame
            case _:
                assert_never(frame)

    async def _move_to(self, positions: tuple[NodePosition, ...]) -> None:
        for position in _positions_in_order(positions):
            await self.store.move(position.node_id, position.parent_id, position.index)

    async def _write_fields(self, values: tuple[NodeFields, ...]) -> None:
        for item in values:
            await self.store.update(item.node_id, title=item.title, url=item.url)

    async def _remove(self, placed: tuple[PlacedSnapshot, ...]) -> None:
        for item in placed:
            if item.node_id is None:
                raise ValueError(f"Cannot remove '{item.node.title}': no store id recorded.")
            await self.store.remove_tree(item.node_id)

    async def _recreate(self, placed: tuple[PlacedSnapshot, ...]) -> tuple[PlacedSnapshot, ...]:
        order = sorted(
            range(len(placed)),
            key=lambda i: (placed[i].parent_id, placed[i].index if placed[i].index is not None else len(placed) + i),
        )
        refreshed: list[PlacedSnapshot | None] = [None] * len(placed)
        for i in order:
            item = placed[i]
            created = await self.applier.recreate_subtree(item.parent_id, item.node, item.index)
            refreshed[i] = replace(item, node_id=created.id)
        return tuple(refreshed)


def frame_summary(frame: UndoFrame) -> dict[str, Any]:
    return {
        "id": frame.id,
        "type": frame.kind,
        "timestamp": frame.timestamp.isoformat(),
        "description": frame.description,
        "affected_bookmark_ids": list(frame.affected_bookmark_ids),
    }
