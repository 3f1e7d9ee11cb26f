from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

WORKSPACE_ENV = "GPTSCRIPT_WORKSPACE_DIR"
CONFIG_ENV = "DRIVEMIRROR_CONFIG"


class GraphConfig(BaseModel):
    base_url: str = "https://graph.microsoft.com/v1.0"
    # Name of the env var holding a ready-made bearer token; `token` is the fallback.
    token_env: str = "GPTSCRIPT_GRAPH_MICROSOFT_COM_BEARER_TOKEN"
    token: str = ""
    timeout_sec: int = Field(default=30, ge=1, le=3600)


class SyncConfig(BaseModel):
    # Empty means: $GPTSCRIPT_WORKSPACE_DIR, else the current directory.
    workspace_dir: str = ""
    metadata_file: str = ".metadata.json"
    max_depth: int = Field(default=64, ge=1, le=1024)


class LoggingConfig(BaseModel):
    level: str = "INFO"
    # Empty means console only.
    file: str = ""


class AppConfig(BaseModel):
    graph: GraphConfig = Field(default_factory=GraphConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _default_config_path() -> Path:
    override = (os.environ.get(CONFIG_ENV) or "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "drivemirror" / "config.yaml"


DEFAULT_CONFIG_PATH = _default_config_path()


def ensure_runtime_dirs(cfg: AppConfig):
    if cfg.logging.file:
        Path(cfg.logging.file).expanduser().parent.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> AppConfig:
    import yaml

    path = path or DEFAULT_CONFIG_PATH
    if not path.exists():
        cfg = AppConfig()
        save_config(cfg, path)
        ensure_runtime_dirs(cfg)
        return cfg

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    cfg = AppConfig.model_validate(data)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path | None = None):
    import yaml

    path = path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")


def resolve_workspace_dir(cfg: AppConfig) -> Path:
    env_dir = (os.environ.get(WORKSPACE_ENV) or "").strip()
    if env_dir:
        return Path(env_dir).expanduser()
    if cfg.sync.workspace_dir:
        return Path(cfg.sync.workspace_dir).expanduser()
    return Path.cwd()


def resolve_metadata_path(cfg: AppConfig) -> Path:
    return resolve_workspace_dir(cfg) / cfg.sync.metadata_file


def resolve_bearer_token(cfg: AppConfig) -> str:
    if cfg.graph.token_env:
        token = (os.environ.get(cfg.graph.token_env) or "").strip()
        if token:
            return token
    return cfg.graph.token.strip()
