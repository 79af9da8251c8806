"""
Toolbox — a library of small scripts the assistant writes for itself.

Scripts live in ``<data_dir>/tools/``; their metadata (description, usage,
language) is stored as a note under ``tool:<name>`` so it survives restarts
and shows up alongside other memories. Scripts dropped into the folder by
hand are picked up by ``sync`` with placeholder metadata.
"""

from __future__ import annotations

import asyncio
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

import structlog
from pydantic import BaseModel, ValidationError

from pixie.notes import NoteStore

logger = structlog.get_logger(__name__)

TOOL_NOTE_PREFIX = "tool:"

Language = Literal["python", "bash", "javascript", "typescript", "other"]

_EXTENSIONS: dict[str, str] = {
    "python": ".py",
    "bash": ".sh",
    "javascript": ".js",
    "typescript": ".ts",
}

_SUFFIX_LANGUAGES: dict[str, Language] = {
    ".py": "python",
    ".sh": "bash",
    ".bash": "bash",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
}

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9一-鿿_-]")


def _interpreter(language: str) -> Optional[list[str]]:
    return {
        "python": [sys.executable or "python3"],
        "bash": ["bash"],
        "javascript": ["node"],
        "typescript": ["npx", "tsx"],
    }.get(language)


def detect_language(filename: str) -> Language:
    return _SUFFIX_LANGUAGES.get(Path(filename).suffix.lower(), "other")


class ToolScript(BaseModel):
    name: str
    description: str
    usage: str
    language: Language
    filename: str
    created_at: datetime
    updated_at: datetime


class ToolRunResult(BaseModel):
    success: bool
    output: str = ""
    error: Optional[str] = None
    exit_code: Optional[int] = None


class ToolScriptLibrary:
    """Save, look up and run tool scripts."""

    def __init__(self, directory: Path, notes: NoteStore, *, timeout: float = 60.0, cwd: Path | None = None) -> None:
        self.directory = directory
        self._notes = notes
        self._timeout = timeout
        self._cwd = cwd
        directory.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def save(self, name: str, code: str, description: str, usage: str, language: str = "python") -> ToolScript:
        safe_name = _UNSAFE_NAME_CHARS.sub("_", name)
        extension = _EXTENSIONS.get(language)
        if extension is None:
            raise ValueError(f"Unsupported language: {language}")
        filename = f"{safe_name}{extension}"
        (self.directory / filename).write_text(code, encoding="utf-8")

        now = datetime.now(timezone.utc)
        existing = self.get(safe_name)
        script = ToolScript(
            name=safe_name,
            description=description,
            usage=usage,
            language=detect_language(filename),
            filename=filename,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self._store(script)
        logger.info("toolbox.saved", name=safe_name, filename=filename)
        return script

    def update_code(self, name: str, code: str) -> Optional[ToolScript]:
        script = self.get(name)
        if script is None:
            return None
        (self.directory / script.filename).write_text(code, encoding="utf-8")
        script = script.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        self._store(script)
        logger.info("toolbox.updated", name=name)
        return script

    def get(self, name: str) -> Optional[ToolScript]:
        note = self._notes.read(TOOL_NOTE_PREFIX + name)
        if note is None:
            return None
        try:
            return ToolScript.model_validate_json(note.content)
        except ValidationError as exc:
            logger.warning("toolbox.malformed_metadata", name=name, error=str(exc)[:200])
            return None

    def get_code(self, name: str) -> Optional[str]:
        script = self.get(name)
        if script is None:
            return None
        path = self.directory / script.filename
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def list_scripts(self) -> list[ToolScript]:
        scripts = []
        for note in self._notes.all():
            if not note.key.startswith(TOOL_NOTE_PREFIX):
                continue
            try:
                scripts.append(ToolScript.model_validate_json(note.content))
            except ValidationError:
                logger.warning("toolbox.malformed_metadata", key=note.key)
        return scripts

    def search(self, keyword: str) -> list[ToolScript]:
        needle = keyword.lower()
        return [
            s
            for s in self.list_scripts()
            if needle in f"{s.name} {s.description} {s.usage}".lower()
        ]

    def sync(self) -> list[str]:
        """Record untracked script files; returns the names added."""
        added = []
        for path in sorted(self.directory.iterdir()):
            if not path.is_file() or path.name.startswith("."):
                continue
            name = path.stem
            if self.get(name) is not None:
                continue
            now = datetime.now(timezone.utc)
            self._store(
                ToolScript(
                    name=name,
                    description="(no description yet)",
                    usage="(no usage yet)",
                    language=detect_language(path.name),
                    filename=path.name,
                    created_at=now,
                    updated_at=now,
                )
            )
            added.append(name)
        if added:
            logger.info("toolbox.synced", added=added)
        return added

    def _store(self, script: ToolScript) -> None:
        self._notes.save(TOOL_NOTE_PREFIX + script.name, script.model_dump_json(indent=2))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(self, name: str, args: Optional[list[str]] = None) -> ToolRunResult:
        script = self.get(name)
        if script is None:
            return ToolRunResult(success=False, error=f'Tool "{name}" not found')
        path = self.directory / script.filename
        if not path.is_file():
            return ToolRunResult(success=False, error=f'Tool file "{script.filename}" not found')
        interpreter = _interpreter(script.language)
        if interpreter is None:
            return ToolRunResult(success=False, error=f"Unsupported language: {script.language}")

        proc = await asyncio.create_subprocess_exec(
            *interpreter,
            str(path),
            *(args or []),
            cwd=str(self._cwd) if self._cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("toolbox.run_timeout", name=name, timeout=self._timeout)
            return ToolRunResult(success=False, error=f"Timed out after {self._timeout}s")

        output = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            logger.info("toolbox.run_failed", name=name, exit_code=proc.returncode)
            return ToolRunResult(
                success=False,
                output=output,
                error=stderr.decode("utf-8", errors="replace")[-4000:] or f"exit code {proc.returncode}",
                exit_code=proc.returncode,
            )
        logger.info("toolbox.run_succeeded", name=name)
        return ToolRunResult(success=True, output=output, exit_code=0)
