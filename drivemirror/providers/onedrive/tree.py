from __future__ import annotations

from typing import Protocol

from drivemirror.core.errors import RemoteFetchError

from .models import RemoteNode

DEFAULT_MAX_DEPTH = 64


class TreeClient(Protocol):
    def expand_children(self, node: RemoteNode) -> RemoteNode: ...


def flatten(client: TreeClient, node: RemoteNode, max_depth: int = DEFAULT_MAX_DEPTH) -> list[RemoteNode]:
    """Return every file below `node` (or `[node]` if it is a file).

    Child references on a listing are shallow, so each one is re-fetched with its
    own children before descending. Any fetch failure propagates and nothing is
    returned for this entry point.
    """
    result: list[RemoteNode] = []
    _collect_files(client, node, result, depth=0, max_depth=max_depth)
    return result


def _collect_files(client: TreeClient, node: RemoteNode, acc: list[RemoteNode], depth: int, max_depth: int):
    if not node.is_folder:
        acc.append(node)
        return

    if depth >= max_depth:
        raise RemoteFetchError(f"tree_depth_exceeded: max_depth={max_depth} at item={node.id}")

    for child in node.children:
        expanded = client.expand_children(child)
        _collect_files(client, expanded, acc, depth + 1, max_depth)
