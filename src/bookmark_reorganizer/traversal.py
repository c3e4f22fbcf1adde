"""Iterative tree walks shared by snapshotting, restore and link collection.

Every walk uses an explicit stack so deeply nested bookmark folders never hit
the interpreter recursion limit.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Iterator, Sequence, TypeVar

from .models import BookmarkLink

N = TypeVar("N")
R = TypeVar("R")

ChildrenOf = Callable[[Any], "Sequence[Any] | None"]


def node_children(node: Any) -> Sequence[Any] | None:
    return node.children


@dataclass(frozen=True)
class Visit(Generic[N]):
    node: N
    depth: int
    parent: N | None
    index: int


def walk(roots: Iterable[N], children_of: ChildrenOf = node_children) -> Iterator[Visit[N]]:
    """Yield every node in pre-order (document order), roots at depth 0."""
    stack: list[Visit[N]] = [
        Visit(node, 0, None, index) for index, node in reversed(list(enumerate(roots)))
    ]
    while stack:
        visit = stack.pop()
        yield visit
        children = children_of(visit.node)
        if children:
            for index in range(len(children) - 1, -1, -1):
                stack.append(Visit(children[index], visit.depth + 1, visit.node, index))


def transform(
    roots: Iterable[N],
    build: Callable[[N, "tuple[R, ...] | None"], R],
    children_of: ChildrenOf = node_children,
) -> list[R]:
    """Rebuild a forest bottom-up.

    ``build`` receives each node with the already-built results of its children,
    or ``None`` for leaves. Child order is preserved at every level.
    """
    out: list[R] = []
    for root in roots:
        # frame: [node, children or None, next child index, built children]
        stack: list[list[Any]] = [[root, children_of(root), 0, []]]
        while stack:
            frame = stack[-1]
            node, children, position, built = frame
            if children is not None and position < len(children):
                frame[2] = position + 1
                child = children[position]
                stack.append([child, children_of(child), 0, []])
                continue
            stack.pop()
            value = build(node, tuple(built) if children is not None else None)
            if stack:
                stack[-1][3].append(value)
            else:
                out.append(value)
    return out


def iter_links(roots: Iterable[Any], children_of: ChildrenOf = node_children) -> Iterator[BookmarkLink]:
    for visit in walk(roots, children_of):
        url = getattr(visit.node, "url", None)
        if url:
            yield BookmarkLink(title=visit.node.title, url=url)


def max_depth(roots: Iterable[Any], children_of: ChildrenOf = node_children) -> int:
    """Depth of the deepest node, counting roots as depth 1; 0 for an empty forest."""
    deepest = 0
    for visit in walk(roots, children_of):
        deepest = max(deepest, visit.depth + 1)
    return deepest


def count_nodes(roots: Iterable[Any], children_of: ChildrenOf = node_children) -> tuple[int, int]:
    """Return (folders, links) across the whole forest."""
    folders = 0
    links = 0
    for visit in walk(roots, children_of):
        if getattr(visit.node, "url", None):
            links += 1
        else:
            folders += 1
    return folders, links
