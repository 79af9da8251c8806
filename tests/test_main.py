from __future__ import annotations

from pixie.main import _redact_sensitive_fields, _redact_token, run_assistant


def test_bot_token_is_masked_in_any_field():
    event = {
        "event": "httpx.request",
        "url": "https://api.telegram.org/bot123456789:AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw/getMe",
    }
    out = _redact_sensitive_fields(None, "info", event)
    assert "AAHdqTcvCH1vGWJxfSeofSAs0K5PALDsaw" not in out["url"]
    assert "[REDACTED_TELEGRAM_TOKEN]" in out["url"]


def test_message_bodies_are_truncated():
    out = _redact_sensitive_fields(None, "info", {"text": "x" * 500, "model": "y" * 500})
    assert out["text"] == "x" * 200 + "... [truncated]"
    assert out["model"] == "y" * 500


def test_non_string_fields_untouched():
    out = _redact_sensitive_fields(None, "info", {"count": 3})
    assert out == {"count": 3}


def test_redact_token_leaves_plain_text():
    assert _redact_token("hello 12:34") == "hello 12:34"


def test_run_assistant_reports_configuration_errors(monkeypatch, tmp_path, capsys):
    for name in ("ANTHROPIC_API_KEY", "ANTHROPIC_AUTH_TOKEN", "TELEGRAM_BOT_TOKEN", "TELEGRAM_AUTHORIZED_USER_ID"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PIXIE_DATA_DIR", str(tmp_path / "data"))
    assert run_assistant() == 1
    assert "Configuration error" in capsys.readouterr().err
