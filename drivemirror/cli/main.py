from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from drivemirror.core import config as config_module
from drivemirror.core.config import (
    AppConfig,
    load_config,
    resolve_bearer_token,
    resolve_metadata_path,
    resolve_workspace_dir,
)
from drivemirror.core.errors import SyncError
from drivemirror.core.logging_setup import make_log_func, setup_logging
from drivemirror.providers.onedrive import GraphClient, MetadataStore, SyncEngine, encode_share_url

app = typer.Typer(add_completion=False)
console = Console()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_config_or_exit(path: Optional[Path] = None) -> AppConfig:
    try:
        return load_config(path or config_module.DEFAULT_CONFIG_PATH)
    except (ValidationError, yaml.YAMLError, ValueError, OSError) as e:
        print(json.dumps({"ok": False, "error": f"load_config_failed: {e}"}, ensure_ascii=False, indent=2))
        raise typer.Exit(1)


def _metadata_store(cfg: AppConfig, metadata: Optional[Path]) -> MetadataStore:
    return MetadataStore(metadata or resolve_metadata_path(cfg))


def _build_sync_engine(cfg: AppConfig, metadata: Optional[Path]) -> SyncEngine:
    client = GraphClient(
        token=resolve_bearer_token(cfg),
        base_url=cfg.graph.base_url,
        timeout=int(cfg.graph.timeout_sec),
    )
    return SyncEngine(
        client,
        _metadata_store(cfg, metadata),
        workspace_dir=resolve_workspace_dir(cfg),
        log_func=make_log_func(),
        max_depth=cfg.sync.max_depth,
    )


@app.command("run")
def run(
    dry_run: bool = typer.Option(False, "--dry-run", help="List remote trees and report the plan; write nothing."),
    run_type: str = typer.Option("manual_cli", "--run-type", help="Label recorded in the run summary."),
    metadata: Optional[Path] = typer.Option(None, "--metadata", help="Metadata document (default: <workspace>/.metadata.json)."),
):
    """Mirror every shared link in the metadata document and print a summary JSON."""
    cfg = _load_config_or_exit()
    setup_logging(cfg.logging.level, cfg.logging.file)
    engine = _build_sync_engine(cfg, metadata)

    try:
        summary = engine.run_once(run_type=run_type, dry_run=dry_run)
    except SyncError as e:
        print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False, indent=2))
        raise typer.Exit(1)

    print(json.dumps(summary, ensure_ascii=False, indent=2))
    if summary.get("fatal_error"):
        raise typer.Exit(1)


@app.command("init")
def init(
    links: list[str] = typer.Argument(..., help="Sharing links to mirror."),
    output_dir: str = typer.Option("", "--output-dir", help="Destination directory (default: workspace)."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing metadata document."),
    metadata: Optional[Path] = typer.Option(None, "--metadata", help="Metadata document to write."),
):
    """Write a fresh metadata document with the given inputs."""
    cfg = _load_config_or_exit()
    store = _metadata_store(cfg, metadata)
    try:
        state = store.init(links, output_dir=output_dir, overwrite=force)
    except SyncError as e:
        print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False, indent=2))
        raise typer.Exit(1)
    print(
        json.dumps(
            {
                "ok": True,
                "metadata_path": str(store.path),
                "shared_links": state.input.shared_links,
                "output_dir": state.input.output_dir,
            },
            ensure_ascii=False,
            indent=2,
        )
    )


@app.command()
def status(
    metadata: Optional[Path] = typer.Option(None, "--metadata", help="Metadata document to inspect."),
):
    """Show the last recorded run state."""
    cfg = _load_config_or_exit()
    store = _metadata_store(cfg, metadata)
    try:
        state = store.load()
    except SyncError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    out = state.output
    table = Table(title="drivemirror status")
    table.add_column("Key")
    table.add_column("Value")
    table.add_row("metadata", str(store.path))
    table.add_row("shared_links", str(len(state.input.shared_links)))
    table.add_row("output_dir", state.input.output_dir or f"(workspace) {resolve_workspace_dir(cfg)}")
    table.add_row("status", out.status or "(never run)")
    table.add_row("error", out.error or "-")
    table.add_row("files", str(len(out.files)))
    table.add_row("folders", ", ".join(sorted(out.folders)) or "-")
    console.print(table)

    if out.files:
        files = Table(title="tracked files")
        files.add_column("Id")
        files.add_column("Path")
        files.add_column("Updated")
        for item_id in sorted(out.files):
            record = out.files[item_id]
            files.add_row(item_id, record.file_path, record.updated_at)
        console.print(files)


@app.command("encode-link")
def encode_link(url: str = typer.Argument(..., help="Sharing link.")):
    """Print the Graph share id for a sharing link."""
    print(encode_share_url(url))


@app.command("config-show")
def config_show(path: Optional[Path] = typer.Option(None, "--path")):
    """Show the current config (token redacted)."""
    cfg = _load_config_or_exit(path)
    data = cfg.model_dump()
    if data["graph"].get("token"):
        data["graph"]["token"] = "***"
    print(json.dumps(data, ensure_ascii=False, indent=2))


@app.command("config-validate")
def config_validate(
    path: Optional[Path] = typer.Option(None, "--path"),
    strict: bool = typer.Option(False, "--strict", help="Return non-zero when validation fails."),
):
    """Validate config and runtime prerequisites."""
    path = path or config_module.DEFAULT_CONFIG_PATH
    out: dict[str, Any] = {
        "ok": True,
        "checked_at": _now_iso(),
        "config_path": str(path),
        "checks": {
            "config_exists": path.exists(),
            "token_available": False,
            "workspace_exists": False,
            "metadata_exists": False,
            "log_parent_ready": False,
        },
        "warnings": [],
        "errors": [],
    }

    try:
        cfg = load_config(path)
    except (ValidationError, yaml.YAMLError, ValueError, OSError) as e:
        out["ok"] = False
        out["errors"].append(f"load_config_failed: {e}")
        print(json.dumps(out, ensure_ascii=False, indent=2))
        if strict:
            raise typer.Exit(1)
        return

    out["checks"]["token_available"] = bool(resolve_bearer_token(cfg))
    if not out["checks"]["token_available"]:
        out["errors"].append(f"token_missing: set ${cfg.graph.token_env} or graph.token")

    workspace = resolve_workspace_dir(cfg)
    out["checks"]["workspace_exists"] = workspace.is_dir()
    if not out["checks"]["workspace_exists"]:
        out["errors"].append(f"workspace_missing: {workspace}")

    metadata_path = resolve_metadata_path(cfg)
    out["checks"]["metadata_exists"] = metadata_path.is_file()
    if not out["checks"]["metadata_exists"]:
        out["warnings"].append(f"metadata_missing: {metadata_path} (run `drivemirror init`)")

    if cfg.logging.file:
        try:
            Path(cfg.logging.file).expanduser().parent.mkdir(parents=True, exist_ok=True)
            out["checks"]["log_parent_ready"] = True
        except OSError as e:
            out["errors"].append(f"log_parent_unavailable: {e}")
    else:
        out["checks"]["log_parent_ready"] = True

    out["ok"] = len(out["errors"]) == 0
    print(json.dumps(out, ensure_ascii=False, indent=2))
    if strict and not out["ok"]:
        raise typer.Exit(1)


def main():
    app()


if __name__ == "__main__":
    main()
