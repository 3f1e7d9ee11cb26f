import base64
from typing import Any

import requests

from drivemirror.core.errors import RemoteFetchError

from .models import RemoteNode

BASE = "https://graph.microsoft.com/v1.0"


def encode_share_url(url: str) -> str:
    """Turn a sharing link into a Graph share id (``u!`` + unpadded url-safe base64)."""
    value = base64.b64encode(url.encode("utf-8")).decode("ascii")
    encoded = "u!" + value.rstrip("=")
    return encoded.replace("/", "_").replace("+", "-")


class GraphClient:
    def __init__(self, token: str, base_url: str = BASE, timeout: int = 30):
        self.token = token or ""
        self.base_url = (base_url or BASE).rstrip("/")
        self.timeout = timeout

    def _auth_headers(self) -> dict[str, str]:
        if not self.token:
            raise RemoteFetchError("no_token")
        return {"Authorization": f"Bearer {self.token}"}

    def _get_json(self, url: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        headers = self._auth_headers()
        try:
            res = requests.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteFetchError(f"request_failed: {e}") from e

        if res.status_code >= 400:
            text = (res.text or "").strip()
            raise RemoteFetchError(f"graph_error_status_{res.status_code}: {text[:200]}", status_code=res.status_code)
        try:
            payload = res.json()
        except ValueError as e:
            raise RemoteFetchError("invalid_response_non_json", status_code=res.status_code) from e
        if not isinstance(payload, dict) or not payload.get("id"):
            raise RemoteFetchError("invalid_response_drive_item", status_code=res.status_code)
        return payload

    def resolve_entry_point(self, ref: str) -> RemoteNode:
        payload = self._get_json(
            f"{self.base_url}/shares/{encode_share_url(ref)}/driveItem",
            params={"$expand": "children"},
        )
        return RemoteNode.from_graph(payload)

    def expand_children(self, node: RemoteNode) -> RemoteNode:
        if not node.drive_id:
            raise RemoteFetchError(f"drive_id_missing: item={node.id}")
        payload = self._get_json(
            f"{self.base_url}/drives/{node.drive_id}/items/{node.id}",
            params={"$expand": "children"},
        )
        return RemoteNode.from_graph(payload)

    def fetch_content(self, node: RemoteNode) -> bytes:
        if not node.drive_id:
            raise RemoteFetchError(f"drive_id_missing: item={node.id}")
        headers = self._auth_headers()
        url = f"{self.base_url}/drives/{node.drive_id}/items/{node.id}/content"
        try:
            res = requests.get(url, headers=headers, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            raise RemoteFetchError(f"download_failed: {e}") from e
        if res.status_code >= 400:
            raise RemoteFetchError(f"download_failed_status_{res.status_code}", status_code=res.status_code)
        return res.content
