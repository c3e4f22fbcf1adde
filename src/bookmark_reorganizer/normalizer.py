from __future__ import annotations

from collections import defaultdict, deque
from typing import Any, Iterable

from .models import BookmarkLink, CategoryMapping

DEFAULT_FALLBACK_CATEGORY = "Other"


def _normalize_name(value: Any) -> str:
    return " ".join(str(value or "").split())


def _unique_title(title: str, taken: dict[str, str]) -> str:
    if title not in taken:
        return title
    suffix = 2
    while f"{title} ({suffix})" in taken:
        suffix += 1
    return f"{title} ({suffix})"


def accepted_categories(candidate: Any) -> list[tuple[str, list[tuple[str, str]]]]:
    """Keep only the "category -> (title -> url)" shape, in candidate order.

    Categories with blank names merge into nothing and are skipped; their
    bookmarks are recovered later as missing ones.
    """
    if not isinstance(candidate, dict):
        return []
    merged: dict[str, list[tuple[str, str]]] = {}
    for raw_name, entries in candidate.items():
        if not isinstance(entries, dict):
            continue
        name = _normalize_name(raw_name)
        if not name:
            continue
        valid = [
            (title, url)
            for title, url in entries.items()
            if isinstance(title, str) and isinstance(url, str)
        ]
        if valid:
            merged.setdefault(name, []).extend(valid)
    return list(merged.items())


class _BookmarkClaims:
    """Hands out each input bookmark once, by URL first and title second."""

    def __init__(self, bookmarks: list[BookmarkLink]) -> None:
        self.bookmarks = bookmarks
        self.claimed = [False] * len(bookmarks)
        self._by_url: dict[str, deque[int]] = defaultdict(deque)
        self._by_title: dict[str, deque[int]] = defaultdict(deque)
        for index, bookmark in enumerate(bookmarks):
            self._by_url[bookmark.url].append(index)
            self._by_title[bookmark.title].append(index)

    def _take(self, queue: deque[int] | None) -> int | None:
        while queue:
            index = queue.popleft()
            if not self.claimed[index]:
                self.claimed[index] = True
                return index
        return None

    def claim(self, title: str, url: str) -> BookmarkLink | None:
        index = self._take(self._by_url.get(url))
        if index is None:
            index = self._take(self._by_title.get(title))
        if index is None:
            return None
        return self.bookmarks[index]

    def unclaimed(self) -> list[BookmarkLink]:
        return [bookmark for bookmark, taken in zip(self.bookmarks, self.claimed) if not taken]


def as_links(bookmarks: Iterable[Any]) -> list[BookmarkLink]:
    links: list[BookmarkLink] = []
    for item in bookmarks:
        if isinstance(item, BookmarkLink):
            links.append(item)
        elif isinstance(item, dict):
            links.append(BookmarkLink(title=str(item.get("title") or ""), url=str(item.get("url") or "")))
        else:
            links.append(BookmarkLink(title=str(item.title), url=str(item.url)))
    return links


def normalize_categorization(
    candidate: Any,
    bookmarks: Iterable[Any],
    fallback_category: str = DEFAULT_FALLBACK_CATEGORY,
) -> CategoryMapping:
    """Repair a model-proposed mapping so every input bookmark appears exactly once.

    Entries the model invented, or repeated, are dropped. Bookmarks the model
    left out go to ``fallback_category``, which is always present in the result.
    Running the function again on its own output is a no-op.
    """
    links = as_links(bookmarks)
    claims = _BookmarkClaims(links)
    result: CategoryMapping = {}

    for name, entries in accepted_categories(candidate):
        resolved: dict[str, str] = result.get(name, {})
        for title, url in entries:
            bookmark = claims.claim(title, url)
            if bookmark is None:
                continue
            resolved[_unique_title(bookmark.title, resolved)] = bookmark.url
        if resolved:
            result[name] = resolved

    fallback = result.setdefault(fallback_category, {})
    for bookmark in claims.unclaimed():
        fallback[_unique_title(bookmark.title, fallback)] = bookmark.url
    return result


def fallback_mapping(
    bookmarks: Iterable[Any],
    fallback_category: str = DEFAULT_FALLBACK_CATEGORY,
) -> CategoryMapping:
    return normalize_categorization(None, bookmarks, fallback_category)


def mapping_stats(mapping: CategoryMapping) -> dict[str, int]:
    return {
        "folders": len(mapping),
        "bookmarks": sum(len(entries) for entries in mapping.values()),
    }


def move_entry(mapping: CategoryMapping, title: str, from_category: str, to_category: str) -> CategoryMapping:
    """Return a copy of ``mapping`` with one entry moved to another category.

    A source category emptied by the move is removed; the target is created
    at the end when missing.
    """
    if from_category not in mapping or title not in mapping[from_category]:
        raise KeyError(f"'{title}' is not in category '{from_category}'.")
    if from_category == to_category:
        return {name: dict(entries) for name, entries in mapping.items()}

    updated = {name: dict(entries) for name, entries in mapping.items()}
    url = updated[from_category].pop(title)
    if not updated[from_category]:
        del updated[from_category]
    target = updated.setdefault(to_category, {})
    target[_unique_title(title, target)] = url
    return updated
