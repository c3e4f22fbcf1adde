import asyncio

import pytest

from bookmark_reorganizer.models import BookmarkNode, RootBackup, SnapshotNode
from bookmark_reorganizer.snapshot import (
    backup_from_dict,
    backup_to_dict,
    snapshot_children,
    snapshot_from_dict,
    snapshot_from_mapping,
    snapshot_node,
    snapshot_to_dict,
)
from bookmark_reorganizer.store import InMemoryBookmarkStore


def test_snapshot_children_detaches_from_store():
    store = InMemoryBookmarkStore()

    async def scenario():
        folder = await store.create("1", "Dev")
        await store.create(folder.id, "Python", "https://python.org")
        await store.create("1", "News", "https://news.example")
        snapshot = await snapshot_children(store, "1")
        await store.update(folder.id, title="Renamed")
        return snapshot

    snapshot = asyncio.run(scenario())
    assert snapshot == (
        SnapshotNode("Dev", children=(SnapshotNode("Python", url="https://python.org"),)),
        SnapshotNode("News", url="https://news.example"),
    )


def test_snapshot_node_from_live_node():
    live = BookmarkNode(id="9", title="Dev", children=[BookmarkNode(id="10", title="A", url="http://a")])
    assert snapshot_node(live) == SnapshotNode("Dev", children=(SnapshotNode("A", url="http://a"),))


def test_snapshot_node_rejects_url_and_children():
    with pytest.raises(ValueError):
        SnapshotNode("Bad", url="http://a", children=())
    assert SnapshotNode("Folder").children == ()


def test_snapshot_from_mapping_keeps_order():
    nodes = snapshot_from_mapping({"B": {"x": "http://x"}, "A": {}})
    assert [node.title for node in nodes] == ["B", "A"]
    assert nodes[0].children == (SnapshotNode("x", url="http://x"),)
    assert nodes[1].children == ()


def test_backup_dict_round_trip():
    backup = RootBackup(
        bookmark_bar=(SnapshotNode("Dev", children=(SnapshotNode("A", url="http://a"),)),),
        other=(SnapshotNode("B", url="http://b"),),
    )
    payload = backup_to_dict(backup)
    assert payload["other"] == [{"title": "B", "url": "http://b"}]
    assert backup_from_dict(payload) == backup
    assert backup_from_dict({}) == RootBackup()


@pytest.mark.parametrize("payload", [{"title": "x"}, ["not-an-object"], [{"title": "F", "children": "nope"}]])
def test_snapshot_from_dict_rejects_bad_payloads(payload):
    with pytest.raises(ValueError):
        snapshot_from_dict(payload)


def test_backup_from_dict_rejects_non_object():
    with pytest.raises(ValueError):
        backup_from_dict([])
    assert snapshot_to_dict(()) == []
