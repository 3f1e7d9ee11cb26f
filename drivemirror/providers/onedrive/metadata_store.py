from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from drivemirror.core.errors import NotFoundError, PersistError

from .models import SyncInput, SyncState


class MetadataStore:
    """The `.metadata.json` document: inputs for a run plus everything it has recorded so far."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> SyncState:
        if not self.path.exists():
            raise NotFoundError(f"metadata_not_found: {self.path}")
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistError(f"metadata_unreadable: {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistError(f"metadata_invalid: {self.path}: expected a JSON object")
        try:
            return SyncState.model_validate(data)
        except ValidationError as e:
            raise PersistError(f"metadata_invalid: {self.path}: {e}") from e

    def save(self, state: SyncState) -> None:
        try:
            text = json.dumps(state.to_document(), ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as e:
            raise PersistError(f"metadata_serialize_failed: {e}") from e

        tmp_path: Path | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.path.parent, prefix=f".{self.path.name}.", delete=False
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(text)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistError(f"metadata_write_failed: {self.path}: {e}") from e
        finally:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink(missing_ok=True)

    def init(self, shared_links: list[str], output_dir: str = "", overwrite: bool = False) -> SyncState:
        if self.exists() and not overwrite:
            raise PersistError(f"metadata_exists: {self.path}")
        state = SyncState(input=SyncInput(shared_links=list(shared_links), output_dir=output_dir or ""))
        self.save(state)
        return state
