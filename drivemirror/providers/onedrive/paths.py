"""Map remote drive paths onto destination paths.

A drive item's ``parentReference.path`` looks like ``/drives/<id>/root:/Docs/Team``.
Everything before the first ``:`` addresses the drive; the rest is the
human-readable folder path. For an entry point at ``/A/B`` the root prefix is
``/A``, so a descendant ``/A/B/C/d.txt`` lands at ``<output_dir>/B/C/d.txt``.
"""

from __future__ import annotations

import posixpath
from pathlib import Path

from .models import RemoteNode

PATH_DELIMITER = ":"


def full_name(node: RemoteNode) -> str:
    if not node.parent_path:
        return ""
    _, found, after = node.parent_path.partition(PATH_DELIMITER)
    if not found:
        return ""
    return posixpath.join(after, node.name)


def root_prefix(node: RemoteNode) -> str:
    return posixpath.dirname(full_name(node))


def relative_path(node: RemoteNode, root: str) -> str:
    full = full_name(node)
    if root and full.startswith(root):
        return full[len(root):]
    return full


def destination_path(output_dir: str | Path, rel: str) -> Path:
    return Path(output_dir) / rel.lstrip("/")


def top_level_folder(rel: str) -> str:
    return rel.lstrip("/").split("/", 1)[0]
