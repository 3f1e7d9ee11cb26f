from pathlib import Path

import pytest

from drivemirror.core.errors import RemoteFetchError
from drivemirror.providers.onedrive.models import RemoteNode
from drivemirror.providers.onedrive.paths import (
    destination_path,
    full_name,
    relative_path,
    root_prefix,
    top_level_folder,
)
from drivemirror.providers.onedrive.tree import flatten


def _node(name: str, parent: str | None, is_folder: bool = False) -> RemoteNode:
    return RemoteNode(id=name, name=name, parent_path=parent, is_folder=is_folder)


def test_relative_path_strips_entry_point_root():
    entry = _node("B", "/drives/d1/root:/A", is_folder=True)
    leaf = _node("d.txt", "/drives/d1/root:/A/B/C")

    root = root_prefix(entry)
    rel = relative_path(leaf, root)

    assert full_name(entry) == "/A/B"
    assert root == "/A"
    assert rel == "/B/C/d.txt"
    assert destination_path("/out", rel) == Path("/out") / "B" / "C" / "d.txt"
    assert top_level_folder(rel) == "B"


def test_entry_point_at_drive_root():
    entry = _node("Share", "/drive/root:", is_folder=True)
    leaf = _node("x.txt", "/drive/root:/Share")

    assert root_prefix(entry) == ""
    assert relative_path(leaf, root_prefix(entry)) == "/Share/x.txt"


def test_unparseable_parent_path_resolves_to_empty():
    assert full_name(_node("a.txt", "/drives/d1/items/abc")) == ""
    assert full_name(_node("a.txt", None)) == ""
    assert top_level_folder("") == ""


class _TreeClient:
    def __init__(self, nodes: dict[str, RemoteNode], fail: set[str] | None = None):
        self.nodes = nodes
        self.fail = fail or set()
        self.calls: list[str] = []

    def expand_children(self, node: RemoteNode) -> RemoteNode:
        self.calls.append(node.id)
        if node.id in self.fail:
            raise RemoteFetchError("graph_error_status_500")
        return self.nodes[node.id]


def _shallow(node: RemoteNode) -> RemoteNode:
    return node.model_copy(update={"children": []})


def test_flatten_file_is_singleton():
    leaf = _node("a.txt", "/drive/root:/X")
    client = _TreeClient({})

    assert flatten(client, leaf) == [leaf]
    assert client.calls == []


def test_flatten_expands_every_folder_level():
    a = _node("a.txt", "/drive/root:/X")
    b = _node("b.txt", "/drive/root:/X/Sub")
    sub = _node("Sub", "/drive/root:/X", is_folder=True).model_copy(update={"children": [_shallow(b)]})
    top = _node("X", "/drive/root:", is_folder=True).model_copy(update={"children": [_shallow(a), _shallow(sub)]})
    client = _TreeClient({"a.txt": a, "Sub": sub, "b.txt": b})

    leaves = flatten(client, top)

    assert sorted(n.id for n in leaves) == ["a.txt", "b.txt"]
    assert client.calls == ["a.txt", "Sub", "b.txt"]


def test_flatten_propagates_expansion_failure():
    a = _node("a.txt", "/drive/root:/X")
    top = _node("X", "/drive/root:", is_folder=True).model_copy(update={"children": [_shallow(a)]})
    client = _TreeClient({"a.txt": a}, fail={"a.txt"})

    with pytest.raises(RemoteFetchError):
        flatten(client, top)


def test_flatten_bounds_depth():
    nodes: dict[str, RemoteNode] = {}
    child: RemoteNode | None = None
    for level in range(5, 0, -1):
        folder = _node(f"f{level}", "/drive/root:", is_folder=True)
        if child is not None:
            folder = folder.model_copy(update={"children": [_shallow(child)]})
        nodes[folder.id] = folder
        child = folder
    root = nodes["f1"]

    with pytest.raises(RemoteFetchError, match="tree_depth_exceeded"):
        flatten(_TreeClient(nodes), root, max_depth=3)
    assert flatten(_TreeClient(nodes), root, max_depth=10) == []
