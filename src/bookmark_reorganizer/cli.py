from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any

from .categorizer import BookmarkCategorizer
from .config import env_or_config, resolve_repo_path, to_bool
from .engine import Reorganizer
from .errors import ReorganizerError, StoreOperationError
from .models import CategoryMapping, RootBackup, RootFolders
from .normalizer import accepted_categories, mapping_stats
from .providers import PROVIDER_CHOICES, resolve_query_text
from .snapshot import backup_from_dict, backup_to_dict
from .store import ChromeBookmarksFileStore
from .traversal import count_nodes


def _bookmarks_path(value: str | None) -> Path:
    raw = value or env_or_config("BOOKMARKS_FILE", "bookmarks.file", "")
    if not str(raw or "").strip():
        raise ValueError("No bookmarks file given. Pass --bookmarks or set BOOKMARKS_FILE.")
    return resolve_repo_path(str(raw).strip())


def _open_store(path: Path) -> tuple[ChromeBookmarksFileStore, RootFolders]:
    store = ChromeBookmarksFileStore(path)
    try:
        roots = RootFolders(bookmark_bar=store.root_id("bookmark_bar"), other=store.root_id("other"))
    except KeyError as exc:
        raise ValueError(f"{path} has no {exc} root folder.") from exc
    return store, roots


def _build_categorizer(provider: str | None) -> BookmarkCategorizer:
    query_text, provider_name = resolve_query_text(provider)
    return BookmarkCategorizer(query_text=query_text, provider_name=provider_name)


def load_mapping(path: Path) -> CategoryMapping:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"{path} must hold a JSON object of category -> {{title: url}}.")
    return {name: dict(entries) for name, entries in accepted_categories(payload)}


def write_backup(backup: RootBackup, bookmarks_path: Path) -> Path:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    target = bookmarks_path.with_name(f"{bookmarks_path.name}.reorganize_{timestamp}.json")
    target.write_text(json.dumps(backup_to_dict(backup), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return target


def _print_plan(mapping: CategoryMapping) -> None:
    for category, entries in mapping.items():
        print(f"[plan] {category}: {len(entries)} bookmark(s)", flush=True)
        for title, url in entries.items():
            print(f"[plan]   {title} -> {url}", flush=True)


async def _run_plan(args: argparse.Namespace) -> int:
    store, roots = _open_store(_bookmarks_path(args.bookmarks))
    engine = Reorganizer(store, _build_categorizer(args.provider), roots)
    result = await engine.plan()
    payload = json.dumps(result.mapping, indent=2, ensure_ascii=False)
    if args.output:
        output = Path(args.output)
        output.write_text(payload + "\n", encoding="utf-8")
        print(f"[ok] Wrote mapping to {output}", flush=True)
    else:
        print(payload, flush=True)
    return 0


async def _run_apply(args: argparse.Namespace) -> int:
    bookmarks_path = _bookmarks_path(args.bookmarks)
    store, roots = _open_store(bookmarks_path)
    if args.mapping:
        engine = Reorganizer(store, None, roots)
        mapping = load_mapping(Path(args.mapping))
    else:
        engine = Reorganizer(store, _build_categorizer(args.provider), roots)
        mapping = (await engine.plan()).mapping

    mapping = await engine.prepare_mapping(mapping)
    stats = mapping_stats(mapping)
    dry_run = args.dry_run or to_bool(env_or_config("DRY_RUN", "runtime.dry_run", False))
    print(
        f"[start] apply folders={stats['folders']} bookmarks={stats['bookmarks']} "
        f"file={bookmarks_path} dry_run={dry_run}",
        flush=True,
    )
    if dry_run:
        _print_plan(mapping)
        print("[done] Dry run, bookmarks file left unchanged.", flush=True)
        return 0

    try:
        result = await engine.apply(mapping)
    except StoreOperationError as exc:
        print(f"[error] {exc}", flush=True)
        if exc.backup is not None:
            saved = write_backup(exc.backup, bookmarks_path)
            print(f"[warn] Bookmarks file left unchanged; pre-apply snapshot saved to {saved}", flush=True)
        return 1

    saved = write_backup(result.previous, bookmarks_path)
    print(f"[ok] Saved pre-apply snapshot to {saved}", flush=True)
    store.save()
    print(
        f"[summary] removed={result.removed} folders_created={result.folders_created} "
        f"bookmarks_created={result.bookmarks_created}",
        flush=True,
    )
    print(f"[done] Restore with: bookmark-reorganizer restore --backup {saved}", flush=True)
    return 0


async def _run_restore(args: argparse.Namespace) -> int:
    bookmarks_path = _bookmarks_path(args.bookmarks)
    backup_path = Path(args.backup)
    backup = backup_from_dict(json.loads(backup_path.read_text(encoding="utf-8")))
    store, roots = _open_store(bookmarks_path)
    engine = Reorganizer(store, None, roots)
    print(f"[start] restore from {backup_path} into {bookmarks_path}", flush=True)
    try:
        with engine.gate.hold("restore"):
            created = await engine.applier.restore(backup)
    except StoreOperationError as exc:
        print(f"[error] {exc}", flush=True)
        return 1
    store.save()
    folders, links = count_nodes([*backup.bookmark_bar, *backup.other])
    print(f"[done] Restored {created} bookmark node(s): {folders} folder(s), {links} link(s).", flush=True)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reorganize browser bookmarks into model-proposed folders.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--bookmarks", default=None, help="Path to a Chromium 'Bookmarks' JSON file.")
        sub.add_argument(
            "--provider",
            choices=list(PROVIDER_CHOICES),
            default=None,
            help="Override the categorization provider.",
        )

    plan = subparsers.add_parser("plan", help="Ask the model for a folder mapping and print it.")
    add_common(plan)
    plan.add_argument("--output", default=None, help="Write the mapping JSON to this file instead of stdout.")

    apply = subparsers.add_parser("apply", help="Rewrite the bookmarks bar into category folders.")
    add_common(apply)
    apply.add_argument("--mapping", default=None, help="Apply a saved mapping JSON instead of asking the model.")
    apply.add_argument("--dry-run", action="store_true", help="Print the planned folders without writing.")

    restore = subparsers.add_parser("restore", help="Rebuild both roots from a saved pre-apply snapshot.")
    restore.add_argument("--bookmarks", default=None, help="Path to a Chromium 'Bookmarks' JSON file.")
    restore.add_argument("--backup", required=True, help="Snapshot JSON written by a previous apply.")
    return parser


_COMMANDS: dict[str, Any] = {
    "plan": _run_plan,
    "apply": _run_apply,
    "restore": _run_restore,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_COMMANDS[args.command](args))
    except (ReorganizerError, ValueError, OSError) as exc:
        print(f"[error] {exc}", flush=True)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
