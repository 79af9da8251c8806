from __future__ import annotations

import pytest

from pixie.tools.filesystem import (
    ALLOWED_FS_PATHS,
    list_directory,
    read_file,
    register_file_tools,
    validate_path,
    write_file,
)
from pixie.tools.registry import ToolRegistry


@pytest.fixture()
def scoped(tmp_path):
    root = tmp_path.resolve()
    token = ALLOWED_FS_PATHS.set((root,))
    yield root
    ALLOWED_FS_PATHS.reset(token)


def test_relative_paths_resolve_against_scope(scoped):
    resolved, err = validate_path("notes/a.txt")
    assert err is None
    assert resolved == scoped / "notes" / "a.txt"


def test_escape_is_denied(scoped):
    _, err = validate_path("../outside.txt")
    assert err is not None
    assert "Access denied" in err


def test_symlink_escape_is_denied(scoped, tmp_path_factory):
    outside = tmp_path_factory.mktemp("outside")
    (outside / "secret.txt").write_text("s", encoding="utf-8")
    (scoped / "link").symlink_to(outside)
    _, err = validate_path("link/secret.txt")
    assert "Access denied" in err


def test_empty_scope_denies_everything(tmp_path):
    token = ALLOWED_FS_PATHS.set(())
    try:
        _, err = validate_path(str(tmp_path))
    finally:
        ALLOWED_FS_PATHS.reset(token)
    assert "denied" in err


def test_unrestricted_by_default(tmp_path):
    resolved, err = validate_path(str(tmp_path / "x"))
    assert err is None
    assert resolved == (tmp_path / "x").resolve()


@pytest.mark.asyncio
async def test_write_then_read(scoped):
    result = await write_file("src/app.py", "line1\nline2\n")
    assert result.startswith("Wrote 12 chars")
    await write_file("src/app.py", "line3\n", mode="append")

    text = await read_file("src/app.py")
    assert text.splitlines()[1:] == ["line1", "line2", "line3"]
    assert "of 3" in text.splitlines()[0]


@pytest.mark.asyncio
async def test_read_with_offset(scoped):
    (scoped / "f.txt").write_text("a\nb\nc\n", encoding="utf-8")
    text = await read_file("f.txt", max_lines=1, offset=1)
    assert text.splitlines()[1:] == ["b"]


@pytest.mark.asyncio
async def test_read_missing_file(scoped):
    assert "File not found" in await read_file("nope.txt")


@pytest.mark.asyncio
async def test_write_invalid_mode(scoped):
    assert "Invalid mode" in await write_file("x.txt", "x", mode="truncate")


@pytest.mark.asyncio
async def test_list_directory(scoped):
    (scoped / "sub").mkdir()
    (scoped / "b.txt").write_text("b", encoding="utf-8")
    (scoped / ".hidden").write_text("h", encoding="utf-8")
    listing = await list_directory(".")
    assert listing.splitlines()[1:] == ["sub/", "b.txt"]


def test_register_file_tools():
    registry = ToolRegistry()
    register_file_tools(registry)
    assert registry.names() == ["read_file", "write_file", "list_directory"]
