from __future__ import annotations

from dataclasses import dataclass

# category name -> (bookmark title -> url); insertion order is creation order
CategoryMapping = dict[str, dict[str, str]]

ROOT_NAMES: tuple[str, ...] = ("bookmark_bar", "other")


@dataclass
class BookmarkNode:
    """A live node owned by a bookmark store. Leaves carry ``url``, folders carry ``children``."""

    id: str
    title: str
    url: str | None = None
    children: list[BookmarkNode] | None = None
    parent_id: str | None = None
    index: int | None = None
    date_added: int | None = None

    @property
    def is_folder(self) -> bool:
        return self.url is None


@dataclass(frozen=True)
class BookmarkLink:
    title: str
    url: str


@dataclass(frozen=True)
class SnapshotNode:
    """Detached copy of a bookmark subtree with no store identifiers."""

    title: str
    url: str | None = None
    children: tuple[SnapshotNode, ...] | None = None

    def __post_init__(self) -> None:
        if self.url is not None and self.children is not None:
            raise ValueError(f"Snapshot node '{self.title}' cannot have both url and children.")
        if self.url is None and self.children is None:
            object.__setattr__(self, "children", ())

    @property
    def is_folder(self) -> bool:
        return self.url is None


@dataclass(frozen=True)
class RootFolders:
    bookmark_bar: str = "1"
    other: str = "2"

    def ids(self) -> tuple[str, str]:
        return self.bookmark_bar, self.other

    def id_for(self, root_name: str) -> str:
        if root_name not in ROOT_NAMES:
            raise ValueError(f"Unknown root '{root_name}', expected one of: {', '.join(ROOT_NAMES)}")
        return getattr(self, root_name)


@dataclass(frozen=True)
class RootBackup:
    """Snapshot sequences for the direct children of both rewritable roots."""

    bookmark_bar: tuple[SnapshotNode, ...] = ()
    other: tuple[SnapshotNode, ...] = ()

    def for_root(self, root_name: str) -> tuple[SnapshotNode, ...]:
        if root_name not in ROOT_NAMES:
            raise ValueError(f"Unknown root '{root_name}', expected one of: {', '.join(ROOT_NAMES)}")
        return getattr(self, root_name)


@dataclass(frozen=True)
class NodePosition:
    node_id: str
    parent_id: str
    index: int


@dataclass(frozen=True)
class NodeFields:
    node_id: str
    title: str
    url: str | None = None


@dataclass(frozen=True)
class PlacedSnapshot:
    """A subtree pinned to a parent/index, plus the store id it currently lives under."""

    parent_id: str
    index: int | None
    node: SnapshotNode
    node_id: str | None = None


@dataclass(frozen=True)
class ApplyResult:
    previous: RootBackup
    new: RootBackup
    folders_created: int = 0
    bookmarks_created: int = 0
    removed: int = 0
