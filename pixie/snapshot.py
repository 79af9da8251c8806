"""
Source snapshots — detect that the assistant edited its own code.

A snapshot maps every file under the watched paths to its modification time
(nanoseconds). Comparing a snapshot taken before a request with one taken
after tells the orchestrator whether anything in the source tree changed and,
if so, that the running process image is stale.

Hidden directories and bytecode caches are skipped: importing a module writes
``__pycache__`` entries that are not source edits.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

FileSnapshot = dict[Path, int]

_SKIPPED_DIRS = frozenset({"__pycache__", "node_modules"})
_SKIPPED_SUFFIXES = frozenset({".pyc", ".pyo"})


def _walk(root: Path, result: FileSnapshot) -> None:
    if root.is_file():
        result[root] = root.stat().st_mtime_ns
        return
    if not root.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in _SKIPPED_DIRS
        )
        for filename in filenames:
            path = Path(dirpath) / filename
            if path.suffix in _SKIPPED_SUFFIXES:
                continue
            try:
                result[path] = path.stat().st_mtime_ns
            except FileNotFoundError:
                # Removed between listing and stat.
                continue


def take_snapshot(paths: Iterable[Path]) -> FileSnapshot:
    """Map every watched file to its mtime."""
    snapshot: FileSnapshot = {}
    for root in paths:
        _walk(Path(root), snapshot)
    return snapshot


def detect_changes(before: FileSnapshot, after: FileSnapshot, base: Path | None = None) -> list[str]:
    """Paths added or modified, then ``"<path> (deleted)"`` for removed ones.

    Paths are reported relative to *base* when they fall under it.
    """

    def _show(path: Path) -> str:
        if base is not None:
            try:
                return str(path.relative_to(base))
            except ValueError:
                pass
        return str(path)

    changed = [_show(path) for path, mtime in after.items() if before.get(path) != mtime]
    changed.extend(f"{_show(path)} (deleted)" for path in before if path not in after)
    return changed
