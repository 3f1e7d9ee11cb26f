from .graph_client import GraphClient, encode_share_url
from .metadata_store import MetadataStore
from .sync_engine import SyncEngine

__all__ = ["GraphClient", "MetadataStore", "SyncEngine", "encode_share_url"]
