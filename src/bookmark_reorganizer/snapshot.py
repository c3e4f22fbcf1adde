from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .models import BookmarkNode, CategoryMapping, RootBackup, SnapshotNode
from .traversal import transform

if TYPE_CHECKING:
    from .store import BookmarkStore


def _build_snapshot(node: BookmarkNode, children: tuple[SnapshotNode, ...] | None) -> SnapshotNode:
    title = str(node.title or "")
    if node.url is not None:
        return SnapshotNode(title=title, url=str(node.url))
    return SnapshotNode(title=title, children=children or ())


def _live_children(node: BookmarkNode) -> list[BookmarkNode] | None:
    if node.url is not None:
        return None
    return list(node.children or [])


def snapshot_nodes(nodes: list[BookmarkNode]) -> tuple[SnapshotNode, ...]:
    return tuple(transform(nodes, _build_snapshot, _live_children))


def snapshot_node(node: BookmarkNode) -> SnapshotNode:
    return snapshot_nodes([node])[0]


async def snapshot_children(store: BookmarkStore, folder_id: str) -> tuple[SnapshotNode, ...]:
    """Detached copy of every descendant of ``folder_id``, the folder itself excluded."""
    subtree = await store.get_subtree(folder_id)
    return snapshot_nodes(list(subtree.children or []))


def snapshot_from_mapping(mapping: CategoryMapping) -> tuple[SnapshotNode, ...]:
    return tuple(
        SnapshotNode(
            title=category,
            children=tuple(SnapshotNode(title=title, url=url) for title, url in entries.items()),
        )
        for category, entries in mapping.items()
    )


def _dict_children(item: Any) -> list[Any] | None:
    if not isinstance(item, dict):
        raise ValueError(f"Snapshot entries must be objects, got {type(item).__name__}.")
    if item.get("url") is not None:
        return None
    children = item.get("children") or []
    if not isinstance(children, list):
        raise ValueError(f"Snapshot folder '{item.get('title')}' has non-list children.")
    return children


def _build_from_dict(item: dict[str, Any], children: tuple[SnapshotNode, ...] | None) -> SnapshotNode:
    title = str(item.get("title") or "")
    if children is None:
        return SnapshotNode(title=title, url=str(item["url"]))
    return SnapshotNode(title=title, children=children)


def _build_dict(node: SnapshotNode, children: tuple[dict[str, Any], ...] | None) -> dict[str, Any]:
    if node.url is not None:
        return {"title": node.title, "url": node.url}
    return {"title": node.title, "children": list(children or ())}


def snapshot_to_dict(nodes: tuple[SnapshotNode, ...]) -> list[dict[str, Any]]:
    return transform(nodes, _build_dict)


def snapshot_from_dict(items: list[Any]) -> tuple[SnapshotNode, ...]:
    if not isinstance(items, list):
        raise ValueError("Snapshot payload must be a JSON array.")
    return tuple(transform(items, _build_from_dict, _dict_children))


def backup_to_dict(backup: RootBackup) -> dict[str, Any]:
    return {
        "bookmark_bar": snapshot_to_dict(backup.bookmark_bar),
        "other": snapshot_to_dict(backup.other),
    }


def backup_from_dict(payload: Any) -> RootBackup:
    if not isinstance(payload, dict):
        raise ValueError("Backup payload must be a JSON object with 'bookmark_bar' and 'other'.")
    return RootBackup(
        bookmark_bar=snapshot_from_dict(payload.get("bookmark_bar") or []),
        other=snapshot_from_dict(payload.get("other") or []),
    )
