import json
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Set

from drivemirror.core.errors import DownloadError, LocalIOError, PersistError, RemoteFetchError, SyncError

from .metadata_store import MetadataStore
from .models import FileRecord, RemoteNode, SyncState
from .paths import destination_path, relative_path, root_prefix, top_level_folder
from .tree import DEFAULT_MAX_DEPTH, flatten

STATUS_DONE = "Done"

_GO_TIME_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2}) (?P<time>\d{2}:\d{2}:\d{2})(?P<frac>\.\d+)? (?P<tz>[+-]\d{4})(?: \S+)?$"
)


def now_iso():
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def parse_timestamp(value: str) -> Optional[float]:
    """Parse a remote last-modified stamp into epoch seconds, or None if unrecognized.

    Accepts ISO-8601 (with or without a trailing ``Z``), epoch seconds or
    milliseconds, and ``2006-01-02 15:04:05.999 -0700 MST`` style stamps written
    by earlier releases.
    """
    text = (value or "").strip()
    if not text:
        return None

    if text.isdigit():
        n = int(text)
        return n / 1000.0 if n > 100_000_000_000 else float(n)

    m = _GO_TIME_RE.match(text)
    if m:
        digits = (m.group("frac") or ".")[1:7]
        frac = f".{digits.ljust(6, '0')}" if digits else ""
        tz = m.group("tz")
        text = f"{m.group('date')}T{m.group('time')}{frac}{tz[:3]}:{tz[3:]}"
    elif text.endswith("Z"):
        text = text[:-1] + "+00:00"

    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def stamps_differ(stored: str, remote: str) -> bool:
    a = parse_timestamp(stored)
    b = parse_timestamp(remote)
    if a is not None and b is not None:
        return a != b
    return (stored or "") != (remote or "")


@dataclass
class WorkItem:
    node: RemoteNode
    root: str


@dataclass
class SyncContext:
    """Everything one run mutates. Built by `run_once`, never shared between runs."""

    state: SyncState
    output_dir: Path
    summary: dict
    items: Dict[str, WorkItem] = field(default_factory=dict)
    seen_folders: Set[str] = field(default_factory=set)


def is_inside(path: Path, root: Path) -> bool:
    """True when ``path`` lies strictly below ``root``."""
    target = path.resolve()
    base = root.resolve()
    return target != base and target.is_relative_to(base)


def remove_path(path: Path, root: Path) -> bool:
    """Delete a file or directory tree below ``root``.

    Returns False without touching anything when ``path`` is ``root`` itself or
    lies outside it. A missing path counts as success.
    """
    if not is_inside(path, root):
        return False
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        return True
    except OSError as e:
        raise LocalIOError(f"delete_failed: {path}: {e}") from e
    return True


def _safe_folder_name(name: str) -> bool:
    return bool(name) and name not in {".", ".."} and "/" not in name


def _taken_over(item_id: str, dest: Path, owners: Dict[Path, Set[str]], live_dests: Dict[str, Path]) -> bool:
    """True when another id held ``dest`` at the start of the run and no longer resolves to it."""
    return any(other != item_id and live_dests.get(other) != dest for other in owners.get(dest, ()))


class SyncEngine:
    def __init__(
        self,
        client,
        store: MetadataStore,
        workspace_dir: str | Path,
        log_func: Callable[..., None],
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.client = client
        self.store = store
        self.workspace_dir = Path(workspace_dir)
        self.log_func = log_func
        self.max_depth = max_depth

    def _log(self, level: str, module: str, message: str, detail: Optional[str] = None):
        self.log_func(level, module, message, detail)

    def _output_dir(self, state: SyncState) -> Path:
        if state.input.output_dir:
            return Path(state.input.output_dir).expanduser()
        return self.workspace_dir

    def _record_path(self, ctx: SyncContext, record: FileRecord) -> Path:
        p = Path(record.file_path)
        return p if p.is_absolute() else ctx.output_dir / p

    def _persist(self, ctx: SyncContext):
        self.store.save(ctx.state)

    def _collect(self, ctx: SyncContext):
        for ref in ctx.state.input.shared_links:
            node = self.client.resolve_entry_point(ref)
            root = root_prefix(node)
            leaves = flatten(self.client, node, max_depth=self.max_depth)
            self._log(
                "INFO",
                "sync",
                "entry_point_listed",
                json.dumps({"ref": ref, "root": root, "files": len(leaves)}, ensure_ascii=False),
            )
            for leaf in leaves:
                # Later entry points win when the same id shows up twice.
                ctx.items[leaf.id] = WorkItem(node=leaf, root=root)
        ctx.summary["remote_total"] = len(ctx.items)

    def _ensure_dir(self, path: Path):
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(f"mkdir_failed: {path}: {e}") from e

    def _download(self, node: RemoteNode, dest: Path):
        try:
            data = self.client.fetch_content(node)
        except RemoteFetchError as e:
            raise DownloadError(f"download_failed: {dest}: {e}", path=str(dest)) from e

        tmp_path: Optional[Path] = None
        try:
            with tempfile.NamedTemporaryFile(dir=dest.parent, prefix=f".{dest.name}.", delete=False) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(data)
            os.replace(tmp_path, dest)
        except OSError as e:
            raise LocalIOError(f"write_failed: {dest}: {e}") from e
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink(missing_ok=True)

    def _needs_download(self, record: Optional[FileRecord], node: RemoteNode, dest: Path, taken_over: bool = False) -> bool:
        if not dest.exists():
            return True
        # The file on disk belongs to another id.
        if taken_over:
            return True
        if record is None:
            return False
        return stamps_differ(record.updated_at, node.last_modified)

    def _relative(self, work: WorkItem) -> str:
        """Relative destination of an item, or "" when none can be derived."""
        rel = relative_path(work.node, work.root)
        if rel.strip("/"):
            return rel
        # No parseable parent path: place the item by name under the output dir.
        if _safe_folder_name(work.node.name):
            return "/" + work.node.name
        return ""

    def _owners(self, ctx: SyncContext) -> Dict[Path, Set[str]]:
        owners: Dict[Path, Set[str]] = {}
        for item_id, record in ctx.state.output.files.items():
            if record.file_path:
                owners.setdefault(self._record_path(ctx, record), set()).add(item_id)
        return owners

    def _live_dests(self, ctx: SyncContext) -> Dict[str, Path]:
        dests: Dict[str, Path] = {}
        for item_id, work in ctx.items.items():
            rel = self._relative(work)
            if rel:
                dests[item_id] = destination_path(ctx.output_dir, rel)
        return dests

    def _remove(self, ctx: SyncContext, path: Path) -> bool:
        if remove_path(path, ctx.output_dir):
            return True
        self._log("WARNING", "sync", "delete_refused", json.dumps({"path": str(path), "output_dir": str(ctx.output_dir)}, ensure_ascii=False))
        return False

    def _apply(self, ctx: SyncContext):
        total = len(ctx.items)
        # Snapshot before any record moves, so processing order cannot hide a takeover.
        owners = self._owners(ctx)
        live_dests = self._live_dests(ctx)

        for index, item_id in enumerate(sorted(ctx.items), start=1):
            work = ctx.items[item_id]
            node = work.node
            dest = live_dests.get(item_id)

            if dest is None:
                self._log("WARNING", "sync", "unplaceable_item", json.dumps({"id": item_id, "name": node.name}, ensure_ascii=False))
                ctx.summary["skipped"] += 1
            else:
                self._apply_item(ctx, item_id, node, dest, owners, live_dests)
                top = top_level_folder(self._relative(work))
                if _safe_folder_name(top):
                    ctx.seen_folders.add(top)
                    ctx.state.output.add_folder(top)

            ctx.state.output.status = f"Synced {index} of {total} files"
            self._persist(ctx)

    def _apply_item(
        self,
        ctx: SyncContext,
        item_id: str,
        node: RemoteNode,
        dest: Path,
        owners: Dict[Path, Set[str]],
        live_dests: Dict[str, Path],
    ):
        files = ctx.state.output.files
        taken_over = _taken_over(item_id, dest, owners, live_dests)

        record = files.get(item_id)
        if record is None:
            record = FileRecord(file_path=str(dest), url=node.web_url, updated_at=node.last_modified)
            files[item_id] = record
        elif record.file_path and self._record_path(ctx, record) != dest:
            old = self._record_path(ctx, record)
            self._log("INFO", "sync", "moved_upstream", json.dumps({"old": str(old), "new": str(dest)}, ensure_ascii=False))
            # Another live item may have taken over the old path.
            if old not in live_dests.values():
                self._remove(ctx, old)
            record.file_path = str(dest)
        elif not record.file_path:
            record.file_path = str(dest)

        self._ensure_dir(dest.parent)

        if self._needs_download(record, node, dest, taken_over=taken_over):
            self._download(node, dest)
            record.updated_at = node.last_modified
            record.url = node.web_url
            ctx.summary["downloaded"] += 1
            self._log("INFO", "sync", "downloaded", str(dest))
        else:
            ctx.summary["skipped"] += 1
            self._log("DEBUG", "sync", "up_to_date", str(dest))

    def _prune_files(self, ctx: SyncContext):
        files = ctx.state.output.files
        live_paths = {self._record_path(ctx, files[i]) for i in ctx.items if i in files}
        for item_id in list(files):
            if item_id in ctx.items:
                continue
            record = files[item_id]
            if record.file_path:
                path = self._record_path(ctx, record)
                # A different id may now own the same path (file replaced upstream).
                if path not in live_paths:
                    self._log("INFO", "sync", "deleting_file", str(path))
                    if self._remove(ctx, path):
                        ctx.summary["files_deleted"] += 1
            del files[item_id]

    def _prune_folders(self, ctx: SyncContext):
        folders = ctx.state.output.folders
        for name in list(folders):
            if name in ctx.seen_folders:
                continue
            if _safe_folder_name(name):
                path = ctx.output_dir / name
                self._log("INFO", "sync", "deleting_folder", str(path))
                if self._remove(ctx, path):
                    ctx.summary["folders_deleted"] += 1
            del folders[name]

    def _plan(self, ctx: SyncContext):
        files = ctx.state.output.files
        owners = self._owners(ctx)
        live_dests = self._live_dests(ctx)
        for item_id, work in ctx.items.items():
            dest = live_dests.get(item_id)
            if dest is None:
                ctx.summary["skipped"] += 1
                continue
            rel = self._relative(work)
            taken_over = _taken_over(item_id, dest, owners, live_dests)
            if self._needs_download(files.get(item_id), work.node, dest, taken_over=taken_over):
                ctx.summary["planned_downloads"] += 1
            else:
                ctx.summary["skipped"] += 1
            top = top_level_folder(rel)
            if _safe_folder_name(top):
                ctx.seen_folders.add(top)
        ctx.summary["planned_file_deletes"] = sum(1 for i in files if i not in ctx.items)
        ctx.summary["planned_folder_deletes"] = sum(1 for f in ctx.state.output.folders if f not in ctx.seen_folders)

    def run_once(self, run_type: str = "manual", dry_run: bool = False) -> dict:
        """Run collect, apply, prune, finish against the metadata document.

        Raises NotFoundError / PersistError when the document cannot be loaded.
        Every later failure is written to ``output.error`` and returned as
        ``summary["fatal_error"]``.
        """
        state = self.store.load()
        output_dir = self._output_dir(state)
        summary = {
            "run_type": run_type,
            "dry_run": dry_run,
            "started_at": now_iso(),
            "metadata_path": str(self.store.path),
            "output_dir": str(output_dir),
            "entry_points": len(state.input.shared_links),
            "remote_total": 0,
            "downloaded": 0,
            "skipped": 0,
            "files_deleted": 0,
            "folders_deleted": 0,
        }
        if dry_run:
            summary.update({"planned_downloads": 0, "planned_file_deletes": 0, "planned_folder_deletes": 0})
        ctx = SyncContext(state=state, output_dir=output_dir, summary=summary)

        try:
            self._collect(ctx)
            if dry_run:
                self._plan(ctx)
                summary["status"] = state.output.status
                summary["finished_at"] = now_iso()
                return summary

            self._apply(ctx)
            self._prune_files(ctx)
            self._prune_folders(ctx)

            state.output.status = STATUS_DONE
            state.output.error = ""
            self._persist(ctx)
        except SyncError as e:
            self._fail(ctx, e)
        except OSError as e:
            self._fail(ctx, LocalIOError(str(e)))

        summary["status"] = state.output.status
        summary["finished_at"] = now_iso()
        if "fatal_error" not in summary:
            self._log("INFO", "sync", "run_finished", json.dumps(summary, ensure_ascii=False))
        return summary

    def _fail(self, ctx: SyncContext, error: SyncError):
        ctx.state.output.error = str(error)
        ctx.summary["fatal_error"] = str(error)
        detail = {"error": str(error), "type": type(error).__name__}
        if isinstance(error, DownloadError):
            detail["path"] = error.path
        self._log("ERROR", "sync", "run_failed", json.dumps(detail, ensure_ascii=False))
        try:
            self._persist(ctx)
        except PersistError as pe:
            self._log("ERROR", "sync", "persist_failed", str(pe))
