"""
Filesystem tools — read, write and list files inside the session's working directory.

A ``ContextVar`` controls which paths the current asyncio task may touch:

  ``None``  (default)       — **unrestricted**; any path the process can reach.
  ``(Path(...), ...)``      — **scoped**; only paths under these directories.
                              Sessions with a working directory set this for
                              the duration of their turn.
  ``()``  (empty tuple)     — **denied**.

Relative paths are resolved against the first allowed directory. Writing to
Pixie's own source tree is allowed; the orchestrator notices the change after
the reply and restarts the process.
"""

from __future__ import annotations

import os
from contextvars import ContextVar
from pathlib import Path

from pixie.tools.registry import ToolDefinition, ToolRegistry

ALLOWED_FS_PATHS: ContextVar[tuple[Path, ...] | None] = ContextVar(
    "ALLOWED_FS_PATHS", default=None
)

_MAX_CONTENT_CHARS = 100_000


def _is_relative_to(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
        return True
    except ValueError:
        return False


def validate_path(
    requested: str,
    *,
    require_exists: bool = False,
) -> tuple[Path, str | None]:
    """Validate a requested path against the current task's access scope.

    Returns ``(resolved_path, None)`` on success or ``(Path(), error_msg)``
    on failure.
    """
    allowed = ALLOWED_FS_PATHS.get()

    if allowed is not None and not allowed:
        return Path(), "Filesystem access denied: no allowed paths configured."

    candidate = Path(requested).expanduser()
    if allowed and not candidate.is_absolute():
        candidate = allowed[0] / candidate
    try:
        # realpath also resolves symlinks, so escapes via links are caught below.
        resolved = Path(os.path.realpath(candidate))
    except (OSError, ValueError) as exc:
        return Path(), f"Invalid path: {exc}"

    if allowed and not any(resolved == d or _is_relative_to(resolved, d) for d in allowed):
        return Path(), f"Access denied: '{resolved}' is not within the working directory."

    if require_exists and not resolved.exists():
        return Path(), f"File not found: '{resolved}'."

    return resolved, None


async def read_file(path: str, max_lines: int = 500, offset: int = 0) -> str:
    resolved, err = validate_path(path, require_exists=True)
    if err:
        return err
    if not resolved.is_file():
        return f"Not a regular file: '{resolved}'."
    try:
        text = resolved.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        return f"Error reading file: {exc}"
    lines = text.splitlines(keepends=True)
    offset = max(0, offset)
    selected = lines[offset : offset + max(1, max_lines)]
    content = "".join(selected)
    if len(content) > _MAX_CONTENT_CHARS:
        content = content[:_MAX_CONTENT_CHARS] + "\n... [truncated at 100 000 chars]"
    return (
        f"# {resolved}  (lines {offset}–{offset + len(selected) - 1}"
        f" of {len(lines)})\n{content}"
    )


async def write_file(path: str, content: str, mode: str = "write") -> str:
    resolved, err = validate_path(path)
    if err:
        return err
    if mode not in ("write", "append"):
        return f"Invalid mode '{mode}'. Must be 'write' or 'append'."
    try:
        resolved.parent.mkdir(parents=True, exist_ok=True)
        if mode == "append":
            with resolved.open("a", encoding="utf-8") as fh:
                fh.write(content)
        else:
            resolved.write_text(content, encoding="utf-8")
    except OSError as exc:
        return f"Error writing file: {exc}"
    return f"Wrote {len(content)} chars to {resolved} ({mode})."


async def list_directory(path: str = ".") -> str:
    resolved, err = validate_path(path, require_exists=True)
    if err:
        return err
    if not resolved.is_dir():
        return f"Not a directory: '{resolved}'."
    entries = []
    for child in sorted(resolved.iterdir(), key=lambda p: (not p.is_dir(), p.name)):
        if child.name.startswith("."):
            continue
        entries.append(f"{child.name}/" if child.is_dir() else child.name)
    return f"# {resolved}\n" + ("\n".join(entries) if entries else "(empty)")


def register_file_tools(registry: ToolRegistry) -> None:
    registry.register(
        ToolDefinition(
            name="read_file",
            description=(
                "Read a text file inside the working directory (Pixie's own project "
                "folder). Returns the file text with a header showing path and line range."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path, relative to the working directory."},
                    "max_lines": {"type": "integer", "description": "Maximum lines to return. Default 500."},
                    "offset": {"type": "integer", "description": "First line to return (0-based). Default 0."},
                },
                "required": ["path"],
            },
            handler=read_file,
            category="files",
        )
    )
    registry.register(
        ToolDefinition(
            name="write_file",
            description=(
                "Write or append to a file inside the working directory, creating parent "
                "directories as needed. Editing Pixie's source code triggers a restart "
                "once the current reply has been delivered."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path, relative to the working directory."},
                    "content": {"type": "string", "description": "Text to write."},
                    "mode": {
                        "type": "string",
                        "enum": ["write", "append"],
                        "description": "'write' (overwrite, default) or 'append'.",
                    },
                },
                "required": ["path", "content"],
            },
            handler=write_file,
            category="files",
        )
    )
    registry.register(
        ToolDefinition(
            name="list_directory",
            description="List the entries of a directory inside the working directory.",
            input_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "Directory path. Default '.'."},
                },
            },
            handler=list_directory,
            category="files",
        )
    )
