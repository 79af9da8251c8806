"""Tests for pixie.notes.NoteStore."""

from __future__ import annotations

import time

import pytest

from pixie.notes import NoteStore, safe_key


@pytest.fixture()
def notes(tmp_path) -> NoteStore:
    return NoteStore(tmp_path / "notes")


class TestSafeKey:
    def test_keeps_letters_digits_cjk(self):
        assert safe_key("todo-list_2") == "todo-list_2"
        assert safe_key("購物清單") == "購物清單"

    def test_replaces_everything_else(self):
        assert safe_key("tool:weather") == "tool_weather"
        assert safe_key("../x y") == "___x_y"


class TestNoteStore:
    def test_save_and_read(self, notes):
        notes.save("groceries", "milk, eggs")
        note = notes.read("groceries")
        assert note.key == "groceries"
        assert note.content == "milk, eggs"

    def test_overwrite_preserves_created_at(self, notes):
        first = notes.save("plan", "v1")
        time.sleep(0.01)
        second = notes.save("plan", "v2")
        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at
        assert notes.read("plan").content == "v2"

    def test_read_missing(self, notes):
        assert notes.read("nope") is None

    def test_delete(self, notes):
        notes.save("temp", "x")
        assert notes.delete("temp") is True
        assert notes.read("temp") is None
        assert notes.delete("temp") is False

    def test_list_keys_keeps_original_keys(self, notes):
        notes.save("tool:weather", "{}")
        notes.save("birthday", "March 3")
        assert sorted(notes.list_keys()) == ["birthday", "tool:weather"]

    def test_malformed_file_is_skipped(self, notes):
        notes.save("ok", "fine")
        (notes.directory / "bad.json").write_text("not json", encoding="utf-8")
        assert [n.key for n in notes.all()] == ["ok"]
