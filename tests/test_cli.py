import json
from pathlib import Path

from bookmark_reorganizer import cli


def _write_bookmarks(path: Path) -> None:
    document = {
        "checksum": "",
        "roots": {
            "bookmark_bar": {
                "children": [
                    {"id": "4", "name": "A", "type": "url", "url": "http://a"},
                    {"id": "5", "name": "B", "type": "url", "url": "http://b"},
                ],
                "id": "1",
                "name": "Bookmarks bar",
                "type": "folder",
            },
            "other": {"children": [], "id": "2", "name": "Other bookmarks", "type": "folder"},
            "synced": {"children": [], "id": "3", "name": "Mobile bookmarks", "type": "folder"},
        },
        "version": 1,
    }
    path.write_text(json.dumps(document), encoding="utf-8")


def _bar(path: Path) -> list:
    return json.loads(path.read_text(encoding="utf-8"))["roots"]["bookmark_bar"]["children"]


def test_apply_mapping_then_restore(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.delenv("DRY_RUN", raising=False)
    bookmarks = tmp_path / "Bookmarks"
    _write_bookmarks(bookmarks)
    mapping = tmp_path / "mapping.json"
    mapping.write_text(json.dumps({"Cat1": {"A": "http://a"}, "Other": {"B": "http://b"}}), encoding="utf-8")

    assert cli.main(["apply", "--bookmarks", str(bookmarks), "--mapping", str(mapping)]) == 0

    bar = _bar(bookmarks)
    assert [(item["name"], item["type"]) for item in bar] == [("Cat1", "folder"), ("Other", "folder")]
    assert bar[0]["children"][0]["url"] == "http://a"
    snapshots = list(tmp_path.glob("Bookmarks.reorganize_*.json"))
    assert len(snapshots) == 1
    out = capsys.readouterr().out
    assert "[summary] removed=2 folders_created=2 bookmarks_created=2" in out

    assert cli.main(["restore", "--bookmarks", str(bookmarks), "--backup", str(snapshots[0])]) == 0
    assert "[done] Restored 2 bookmark node(s): 0 folder(s), 2 link(s)." in capsys.readouterr().out
    assert [(item["name"], item.get("url")) for item in _bar(bookmarks)] == [("A", "http://a"), ("B", "http://b")]


def test_apply_dry_run_leaves_file_untouched(tmp_path: Path, capsys):
    bookmarks = tmp_path / "Bookmarks"
    _write_bookmarks(bookmarks)
    before = bookmarks.read_text(encoding="utf-8")
    mapping = tmp_path / "mapping.json"
    mapping.write_text(json.dumps({"Cat1": {"A": "http://a"}}), encoding="utf-8")

    code = cli.main(["apply", "--bookmarks", str(bookmarks), "--mapping", str(mapping), "--dry-run"])

    assert code == 0
    assert bookmarks.read_text(encoding="utf-8") == before
    out = capsys.readouterr().out
    assert "[plan] Cat1: 1 bookmark(s)" in out
    assert "[plan]   B -> http://b" in out
    assert not list(tmp_path.glob("Bookmarks.backup_*"))


def test_plan_writes_mapping(tmp_path: Path, monkeypatch):
    bookmarks = tmp_path / "Bookmarks"
    _write_bookmarks(bookmarks)
    output = tmp_path / "plan.json"
    monkeypatch.setattr(
        cli,
        "resolve_query_text",
        lambda _provider: (lambda _prompt: '{"Letters": {"A": "http://a", "B": "http://b"}}', "fake"),
    )

    assert cli.main(["plan", "--bookmarks", str(bookmarks), "--output", str(output)]) == 0
    assert json.loads(output.read_text(encoding="utf-8")) == {
        "Letters": {"A": "http://a", "B": "http://b"},
        "Other": {},
    }


def test_missing_bookmarks_file_reports_error(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.delenv("BOOKMARKS_FILE", raising=False)
    monkeypatch.setenv("BOOKMARK_REORGANIZER_CONFIG", str(tmp_path / "absent.json"))
    monkeypatch.setattr("bookmark_reorganizer.config._config_cache", None)

    assert cli.main(["apply", "--mapping", str(tmp_path / "m.json")]) == 1
    assert "[error] No bookmarks file given" in capsys.readouterr().out

    assert cli.main(["apply", "--bookmarks", str(tmp_path / "nope"), "--mapping", "m.json"]) == 1


def test_apply_partial_mapping_keeps_every_bookmark(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.delenv("DRY_RUN", raising=False)
    monkeypatch.delenv("FALLBACK_CATEGORY", raising=False)
    bookmarks = tmp_path / "Bookmarks"
    _write_bookmarks(bookmarks)
    mapping = tmp_path / "mapping.json"
    mapping.write_text(json.dumps({"Cat1": {"A": "http://a"}}), encoding="utf-8")

    assert cli.main(["apply", "--bookmarks", str(bookmarks), "--mapping", str(mapping)]) == 0

    bar = _bar(bookmarks)
    urls = [child["url"] for folder in bar for child in folder["children"]]
    assert sorted(urls) == ["http://a", "http://b"]
    assert "bookmarks_created=2" in capsys.readouterr().out
