"""
Notes — small key/value memories that survive restarts.

Each note is ``<notes_dir>/<safe key>.json`` holding ``{key, content,
created_at, updated_at}``. Keys are free text chosen by the model, so they are
mapped to file names by replacing anything outside letters, digits, CJK,
``_`` and ``-`` with ``_``. Saving an existing key keeps its ``created_at``.

The tool-script library stores its metadata here too, under ``tool:<name>``.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, ValidationError

logger = structlog.get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9一-鿿_-]")


def safe_key(key: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", key)


class Note(BaseModel):
    key: str
    content: str
    created_at: datetime
    updated_at: datetime


class NoteStore:
    """File-per-key note storage."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{safe_key(key)}.json"

    def save(self, key: str, content: str) -> Note:
        now = datetime.now(timezone.utc)
        existing = self.read(key)
        note = Note(
            key=key,
            content=content,
            created_at=existing.created_at if existing is not None else now,
            updated_at=now,
        )
        self._path(key).write_text(
            json.dumps(note.model_dump(mode="json"), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        logger.debug("notes.saved", key=key, created=existing is None)
        return note

    def read(self, key: str) -> Optional[Note]:
        path = self._path(key)
        if not path.is_file():
            return None
        return self._load(path)

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.is_file():
            return False
        path.unlink()
        logger.debug("notes.deleted", key=key)
        return True

    def list_keys(self) -> list[str]:
        return [note.key for note in self.all()]

    def all(self) -> list[Note]:
        notes = []
        for path in sorted(self.directory.glob("*.json")):
            note = self._load(path)
            if note is not None:
                notes.append(note)
        return notes

    def _load(self, path: Path) -> Optional[Note]:
        try:
            return Note.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as exc:
            logger.warning("notes.malformed", path=str(path), error=str(exc)[:200])
            return None
