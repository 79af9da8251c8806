"""
Config Store — one JSON file per delegated session.

Records live at ``<directory>/<id>.json``. Ids are generated by Pixie, never
typed by the operator, so they map to file names directly; anything that looks
like a path is refused rather than sanitized.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import structlog
from pydantic import ValidationError

from pixie.delegation.models import SessionConfig

logger = structlog.get_logger(__name__)


class ConfigStore:
    """Durable CRUD for SessionConfig records."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, config_id: str) -> Optional[Path]:
        if not config_id or "/" in config_id or "\\" in config_id or config_id.startswith("."):
            return None
        return self.directory / f"{config_id}.json"

    def save(self, config: SessionConfig) -> None:
        """Create or overwrite the record for ``config.id``."""
        path = self._path_for(config.id)
        if path is None:
            raise ValueError(f"Invalid delegate id: {config.id!r}")
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps(config.model_dump(mode="json"), ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        logger.info("config_store.saved", delegate_id=config.id)

    def load(self, config_id: str) -> Optional[SessionConfig]:
        path = self._path_for(config_id)
        if path is None or not path.is_file():
            return None
        return self._read(path)

    def load_all(self) -> list[SessionConfig]:
        """Every readable record, oldest first. Malformed files are skipped."""
        if not self.directory.exists():
            return []
        configs: list[SessionConfig] = []
        for path in sorted(self.directory.glob("*.json")):
            config = self._read(path)
            if config is not None:
                configs.append(config)
        configs.sort(key=lambda c: (c.created_at, c.id))
        return configs

    def clear_all(self) -> int:
        """Remove every record; returns how many were removed."""
        self.directory.mkdir(parents=True, exist_ok=True)
        removed = 0
        for path in sorted(self.directory.glob("*.json")):
            path.unlink(missing_ok=True)
            removed += 1
        logger.info("config_store.cleared", removed=removed)
        return removed

    def _read(self, path: Path) -> Optional[SessionConfig]:
        try:
            return SessionConfig.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as exc:
            logger.warning(
                "config_store.malformed_record",
                path=str(path),
                error=str(exc)[:200],
            )
            return None
