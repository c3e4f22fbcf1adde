from __future__ import annotations

import json
import logging
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from .errors import BookmarkNotFoundError, StoreOperationError
from .models import BookmarkNode
from .traversal import transform, walk

logger = logging.getLogger(__name__)

# Chromium stores timestamps as microseconds since 1601-01-01.
CHROME_EPOCH_OFFSET_MICROS = 11_644_473_600 * 1_000_000
CHROME_ROOT_KEYS: tuple[str, ...] = ("bookmark_bar", "other", "synced")
CHROME_ROOT_TITLES: dict[str, str] = {
    "bookmark_bar": "Bookmarks bar",
    "other": "Other bookmarks",
    "synced": "Mobile bookmarks",
}


def chrome_time_now() -> int:
    return int(time.time() * 1_000_000) + CHROME_EPOCH_OFFSET_MICROS


class BookmarkStore(Protocol):
    async def get_children(self, folder_id: str) -> list[BookmarkNode]: ...

    async def get_subtree(self, folder_id: str) -> BookmarkNode: ...

    async def create(
        self,
        parent_id: str,
        title: str,
        url: str | None = None,
        index: int | None = None,
    ) -> BookmarkNode: ...

    async def remove_tree(self, node_id: str) -> None: ...

    async def move(self, node_id: str, parent_id: str, index: int | None = None) -> BookmarkNode: ...

    async def update(self, node_id: str, title: str | None = None, url: str | None = None) -> BookmarkNode: ...


@dataclass
class _Record:
    id: str
    title: str
    url: str | None
    parent_id: str | None
    children: list[str] | None
    date_added: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class InMemoryBookmarkStore:
    """Bookmark tree held in memory with browser-style id allocation.

    Top-level roots cannot be removed, moved or renamed. Every read returns
    fresh node objects, so callers never hold references into the store.
    """

    def __init__(self, roots: dict[str, str] | None = None) -> None:
        self._records: dict[str, _Record] = {}
        self._root_ids: list[str] = []
        self._next_id = 1
        for root_id, title in (roots if roots is not None else {"1": "Bookmarks bar", "2": "Other bookmarks"}).items():
            self._add_root(root_id, title)

    def _add_root(self, root_id: str, title: str, **extra: Any) -> _Record:
        record = _Record(id=root_id, title=title, url=None, parent_id=None, children=[], extra=dict(extra))
        self._records[root_id] = record
        self._root_ids.append(root_id)
        self._bump_next_id(root_id)
        return record

    def _bump_next_id(self, node_id: str) -> None:
        if node_id.isdigit():
            self._next_id = max(self._next_id, int(node_id) + 1)

    def _allocate_id(self) -> str:
        node_id = str(self._next_id)
        self._next_id += 1
        return node_id

    def _record(self, node_id: str) -> _Record:
        record = self._records.get(str(node_id))
        if record is None:
            raise BookmarkNotFoundError(f"Bookmark node '{node_id}' does not exist.")
        return record

    def _folder(self, node_id: str) -> _Record:
        record = self._record(node_id)
        if record.children is None:
            raise StoreOperationError(f"Bookmark node '{node_id}' is not a folder.")
        return record

    def _index_in_parent(self, record: _Record) -> int | None:
        if record.parent_id is None:
            return self._root_ids.index(record.id)
        return self._records[record.parent_id].children.index(record.id)

    def _to_node(self, record: _Record, children: tuple[BookmarkNode, ...] | None = None) -> BookmarkNode:
        return BookmarkNode(
            id=record.id,
            title=record.title,
            url=record.url,
            children=list(children) if children is not None else None,
            parent_id=record.parent_id,
            index=self._index_in_parent(record),
            date_added=record.date_added,
        )

    def _record_children(self, record: _Record) -> list[_Record] | None:
        if record.children is None:
            return None
        return [self._records[child_id] for child_id in record.children]

    def _insert_child(self, parent: _Record, node_id: str, index: int | None) -> None:
        if index is None or index >= len(parent.children):
            parent.children.append(node_id)
        else:
            parent.children.insert(max(index, 0), node_id)

    async def get_children(self, folder_id: str) -> list[BookmarkNode]:
        folder = self._folder(folder_id)
        return [self._to_node(self._records[child_id]) for child_id in folder.children]

    async def get_subtree(self, folder_id: str) -> BookmarkNode:
        record = self._record(folder_id)
        return transform([record], self._to_node, self._record_children)[0]

    async def create(
        self,
        parent_id: str,
        title: str,
        url: str | None = None,
        index: int | None = None,
    ) -> BookmarkNode:
        parent = self._folder(parent_id)
        record = _Record(
            id=self._allocate_id(),
            title=str(title),
            url=url,
            parent_id=parent.id,
            children=None if url is not None else [],
            date_added=chrome_time_now(),
        )
        self._records[record.id] = record
        self._insert_child(parent, record.id, index)
        return self._to_node(record)

    async def remove_tree(self, node_id: str) -> None:
        record = self._record(node_id)
        if record.parent_id is None:
            raise StoreOperationError(f"Root folder '{node_id}' cannot be removed.")
        parent = self._records[record.parent_id]
        parent.children.remove(record.id)
        for visit in list(walk([record], self._record_children)):
            del self._records[visit.node.id]

    async def move(self, node_id: str, parent_id: str, index: int | None = None) -> BookmarkNode:
        record = self._record(node_id)
        if record.parent_id is None:
            raise StoreOperationError(f"Root folder '{node_id}' cannot be moved.")
        target = self._folder(parent_id)
        if any(visit.node.id == target.id for visit in walk([record], self._record_children)):
            raise StoreOperationError(f"Cannot move '{node_id}' into its own subtree.")
        self._records[record.parent_id].children.remove(record.id)
        record.parent_id = target.id
        self._insert_child(target, record.id, index)
        return self._to_node(record)

    async def update(self, node_id: str, title: str | None = None, url: str | None = None) -> BookmarkNode:
        record = self._record(node_id)
        if record.parent_id is None:
            raise StoreOperationError(f"Root folder '{node_id}' cannot be modified.")
        if url is not None and record.url is None:
            raise StoreOperationError(f"Folder '{node_id}' cannot be given a URL.")
        if title is not None:
            record.title = str(title)
        if url is not None:
            record.url = url
        return self._to_node(record)


def create_file_backup(path: Path) -> Path:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = path.with_name(f"{path.name}.backup_{timestamp}")
    shutil.copy2(path, backup_path)
    return backup_path


class ChromeBookmarksFileStore(InMemoryBookmarkStore):
    """Chromium ``Bookmarks`` JSON file exposed through the store interface.

    Mutations stay in memory until :meth:`save`. The first save copies the
    original file aside. The browser must be closed while the file is edited,
    otherwise it overwrites the result on exit.
    """

    def __init__(self, path: Path | str) -> None:
        super().__init__(roots={})
        self.path = Path(path)
        self.file_backup: Path | None = None
        if not self.path.exists():
            raise FileNotFoundError(f"Bookmarks file not found: {self.path}")
        self._document = json.loads(self.path.read_text(encoding="utf-8"))
        roots = self._document.get("roots") if isinstance(self._document, dict) else None
        if not isinstance(roots, dict):
            raise ValueError(f"{self.path} is not a Chromium bookmarks file (missing 'roots').")
        self._root_keys: dict[str, str] = {}
        for key in CHROME_ROOT_KEYS:
            raw_root = roots.get(key)
            if isinstance(raw_root, dict):
                self._load_root(key, raw_root)
        logger.debug("loaded %d bookmark nodes from %s", len(self._records), self.path)

    def root_id(self, key: str) -> str:
        for root_id, root_key in self._root_keys.items():
            if root_key == key:
                return root_id
        raise KeyError(key)

    def _load_root(self, key: str, raw_root: dict[str, Any]) -> None:
        root_id = str(raw_root.get("id") or "")
        extra = {k: v for k, v in raw_root.items() if k not in {"children", "id", "name", "type"}}
        self._add_root(root_id, str(raw_root.get("name") or CHROME_ROOT_TITLES[key]), **extra)
        self._root_keys[root_id] = key

        stack: list[tuple[str, list[Any]]] = [(root_id, list(raw_root.get("children") or []))]
        while stack:
            parent_id, raw_children = stack.pop()
            parent = self._records[parent_id]
            for raw in raw_children:
                if not isinstance(raw, dict):
                    continue
                node_id = str(raw.get("id") or self._allocate_id())
                is_url = raw.get("type") == "url"
                record = _Record(
                    id=node_id,
                    title=str(raw.get("name") or ""),
                    url=str(raw.get("url") or "") if is_url else None,
                    parent_id=parent_id,
                    children=None if is_url else [],
                    date_added=int(raw["date_added"]) if str(raw.get("date_added") or "").isdigit() else None,
                    extra={k: v for k, v in raw.items() if k not in {"children", "id", "name", "type", "url", "date_added"}},
                )
                self._records[node_id] = record
                self._bump_next_id(node_id)
                parent.children.append(node_id)
                if not is_url:
                    stack.append((node_id, list(raw.get("children") or [])))

    def _record_to_json(self, record: _Record, children: tuple[dict[str, Any], ...] | None) -> dict[str, Any]:
        payload: dict[str, Any] = dict(record.extra)
        payload.setdefault("guid", str(uuid4()))
        date_added = record.date_added if record.date_added is not None else chrome_time_now()
        payload["date_added"] = str(payload.get("date_added") or date_added)
        payload["id"] = record.id
        payload["name"] = record.title
        if record.url is not None:
            payload["type"] = "url"
            payload["url"] = record.url
        else:
            payload["type"] = "folder"
            payload["children"] = list(children or ())
            payload.setdefault("date_modified", str(chrome_time_now()))
        return payload

    def to_document(self) -> dict[str, Any]:
        document = dict(self._document)
        roots = dict(document.get("roots") or {})
        for root_id, key in self._root_keys.items():
            roots[key] = transform([self._records[root_id]], self._record_to_json, self._record_children)[0]
        document["roots"] = roots
        # An empty checksum skips the integrity check Chromium runs on load.
        document["checksum"] = ""
        return document

    def save(self) -> Path:
        if self.file_backup is None:
            self.file_backup = create_file_backup(self.path)
            print(f"[ok] Backed up bookmarks file to {self.file_backup}", flush=True)
        payload = json.dumps(self.to_document(), indent=3, ensure_ascii=False)
        self.path.write_text(payload + "\n", encoding="utf-8")
        logger.info("wrote %d bookmark nodes to %s", len(self._records), self.path)
        return self.path
