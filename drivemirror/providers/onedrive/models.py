from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RemoteNode(BaseModel):
    """One drive item as seen on this run. Never persisted."""

    id: str
    name: str = ""
    # "<addressable prefix>:<human path>", e.g. "/drives/b!x/root:/Docs/Team".
    parent_path: str | None = None
    drive_id: str = ""
    is_folder: bool = False
    last_modified: str = ""
    web_url: str = ""
    # Shallow references; only populated when fetched with children expanded.
    children: list[RemoteNode] = Field(default_factory=list)

    @classmethod
    def from_graph(cls, payload: dict[str, Any]) -> RemoteNode:
        parent_raw = payload.get("parentReference")
        parent = parent_raw if isinstance(parent_raw, dict) else {}
        children_raw = payload.get("children") or []
        children = [cls.from_graph(c) for c in children_raw if isinstance(c, dict)] if isinstance(children_raw, list) else []
        drive_id = str(parent.get("driveId") or "")
        for child in children:
            if not child.drive_id:
                child.drive_id = drive_id
        return cls(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            parent_path=parent.get("path") if isinstance(parent.get("path"), str) else None,
            drive_id=drive_id,
            # Anything without a file facet (folders, remote folders, packages) is expanded, not downloaded.
            is_folder=payload.get("file") is None,
            last_modified=str(payload.get("lastModifiedDateTime") or ""),
            web_url=str(payload.get("webUrl") or ""),
            children=children,
        )


class FileRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(default="", alias="filePath")
    url: str = ""
    updated_at: str = Field(default="", alias="updatedAt")


class SyncInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    shared_links: list[str] = Field(default_factory=list, alias="sharedLinks")
    output_dir: str = Field(default="", alias="outputDir")

    @field_validator("shared_links", mode="before")
    @classmethod
    def _null_links(cls, value):
        return value if value is not None else []

    @field_validator("output_dir", mode="before")
    @classmethod
    def _null_output_dir(cls, value):
        return value if value is not None else ""


class SyncOutput(BaseModel):
    status: str = ""
    error: str = ""
    files: dict[str, FileRecord] = Field(default_factory=dict)
    # Top-level folder name -> {}; the object shape keeps older documents readable.
    folders: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @field_validator("status", "error", mode="before")
    @classmethod
    def _null_text(cls, value):
        return value if value is not None else ""

    @field_validator("files", mode="before")
    @classmethod
    def _null_files(cls, value):
        return value if value is not None else {}

    @field_validator("folders", mode="before")
    @classmethod
    def _folder_shape(cls, value):
        if value is None:
            return {}
        if isinstance(value, list):
            return {str(name): {} for name in value}
        return value

    def add_folder(self, name: str) -> None:
        self.folders.setdefault(name, {})


class SyncState(BaseModel):
    input: SyncInput = Field(default_factory=SyncInput)
    output: SyncOutput = Field(default_factory=SyncOutput)

    @field_validator("input", "output", mode="before")
    @classmethod
    def _null_section(cls, value):
        return value if value is not None else {}

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
