from __future__ import annotations

from pathlib import Path

import pytest

from drivemirror.core.errors import RemoteFetchError
from drivemirror.providers.onedrive.metadata_store import MetadataStore
from drivemirror.providers.onedrive.models import RemoteNode
from drivemirror.providers.onedrive.sync_engine import SyncEngine

T1 = "2024-01-01T10:00:00Z"
T2 = "2024-02-01T10:00:00Z"


class FakeGraphClient:
    """In-memory drive: folders and files addressed by id, shares addressed by link."""

    def __init__(self, drive_id: str = "drive-1"):
        self.drive_id = drive_id
        self.items: dict[str, RemoteNode] = {}
        self.children: dict[str, list[str]] = {}
        self.shares: dict[str, str] = {}
        self.contents: dict[str, bytes] = {}
        self.fetched: list[str] = []
        self.expanded: list[str] = []
        self.fail_fetch: set[str] = set()
        self.fail_expand: set[str] = set()

    def _parent_ref(self, folder_path: str) -> str:
        return f"/drives/{self.drive_id}/root:{folder_path}"

    def add_folder(self, item_id: str, folder_path: str, name: str, parent_id: str | None = None) -> str:
        self.items[item_id] = RemoteNode(
            id=item_id,
            name=name,
            parent_path=self._parent_ref(folder_path),
            drive_id=self.drive_id,
            is_folder=True,
            web_url=f"https://example.test/{name}",
        )
        self.children.setdefault(item_id, [])
        if parent_id:
            self.children[parent_id].append(item_id)
        return item_id

    def add_file(
        self,
        item_id: str,
        folder_path: str,
        name: str,
        parent_id: str | None = None,
        content: bytes = b"data",
        modified: str = T1,
    ) -> str:
        self.items[item_id] = RemoteNode(
            id=item_id,
            name=name,
            parent_path=self._parent_ref(folder_path),
            drive_id=self.drive_id,
            is_folder=False,
            last_modified=modified,
            web_url=f"https://example.test/{name}",
        )
        self.contents[item_id] = content
        if parent_id:
            self.children[parent_id].append(item_id)
        return item_id

    def share(self, ref: str, item_id: str):
        self.shares[ref] = item_id

    def remove(self, item_id: str):
        for kids in self.children.values():
            if item_id in kids:
                kids.remove(item_id)

    def touch(self, item_id: str, modified: str, content: bytes | None = None):
        self.items[item_id] = self.items[item_id].model_copy(update={"last_modified": modified})
        if content is not None:
            self.contents[item_id] = content

    def _node(self, item_id: str) -> RemoteNode:
        kids = [self.items[c].model_copy(update={"children": []}) for c in self.children.get(item_id, [])]
        return self.items[item_id].model_copy(update={"children": kids})

    def resolve_entry_point(self, ref: str) -> RemoteNode:
        if ref not in self.shares:
            raise RemoteFetchError("graph_error_status_404: itemNotFound", status_code=404)
        return self._node(self.shares[ref])

    def expand_children(self, node: RemoteNode) -> RemoteNode:
        self.expanded.append(node.id)
        if node.id in self.fail_expand:
            raise RemoteFetchError("graph_error_status_503: serviceNotAvailable", status_code=503)
        return self._node(node.id)

    def fetch_content(self, node: RemoteNode) -> bytes:
        self.fetched.append(node.id)
        if node.id in self.fail_fetch:
            raise RemoteFetchError("download_failed_status_500", status_code=500)
        return self.contents[node.id]


@pytest.fixture()
def drive() -> FakeGraphClient:
    return FakeGraphClient()


@pytest.fixture()
def out_dir(tmp_path: Path) -> Path:
    return tmp_path / "out"


@pytest.fixture()
def store(tmp_path: Path) -> MetadataStore:
    return MetadataStore(tmp_path / ".metadata.json")


@pytest.fixture()
def make_engine(drive: FakeGraphClient, store: MetadataStore, out_dir: Path):
    def _make(max_depth: int = 64) -> SyncEngine:
        return SyncEngine(drive, store, workspace_dir=out_dir, log_func=lambda *_: None, max_depth=max_depth)

    return _make
