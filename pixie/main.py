"""
Main — Pixie's entry point.

``pixie run`` (or ``python -m pixie.main run``):
  1. Loads configuration from the environment and ``.env``
  2. Configures logging (console + ``<data_dir>/logs/pixie.log``)
  3. Builds the orchestrator with the Anthropic runtime and Telegram channel
  4. Runs until a signal, ``/restart`` or a source change stops it
  5. Exits with the orchestrator's exit code (42 asks the supervisor to relaunch)
"""

from __future__ import annotations

import asyncio
import logging
import re
import sys
from pathlib import Path
from typing import Optional

import structlog

from pixie.config import PixieConfig
from pixie.errors import ConfigurationError

_TELEGRAM_BOT_TOKEN_RE = re.compile(r"(?<!\d)\d{6,12}:[A-Za-z0-9_-]{20,}")


def _redact_token(text: str) -> str:
    return _TELEGRAM_BOT_TOKEN_RE.sub("[REDACTED_TELEGRAM_TOKEN]", text)


def _redact_sensitive_fields(logger, method_name, event_dict):
    """
    Structlog processor that keeps message bodies and bot tokens out of logs.

    Operator messages and model output are truncated; Telegram bot tokens are
    masked wherever they appear in a string field (PTB puts them in URLs).
    """
    sensitive_keys = {"content", "text", "message", "prompt", "reply"}
    max_display_len = 200

    for key, val in list(event_dict.items()):
        if not isinstance(val, str):
            continue
        val = _redact_token(val)
        if key in sensitive_keys and len(val) > max_display_len:
            val = val[:max_display_len] + "... [truncated]"
        event_dict[key] = val

    return event_dict


_logging_configured = False


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Configure structlog and standard-library logging.

    Later calls are no-ops.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", level=numeric_level)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(handler)

    # Third-party HTTP clients log every request at INFO.
    for noisy in ("httpx", "httpcore", "telegram.ext.Updater"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _redact_sensitive_fields,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger(__name__)


def run_assistant() -> int:
    """Load config, run the orchestrator, return the exit code."""
    try:
        config = PixieConfig()
    except ConfigurationError as e:
        print(f"[pixie] Configuration error: {e}", file=sys.stderr)
        return 1

    configure_logging(config.assistant.log_level, config.assistant.log_dir / "pixie.log")

    from pixie.orchestrator import build_orchestrator

    orchestrator = build_orchestrator(config)
    logger.info("pixie.starting", config=repr(config))
    try:
        exit_code = asyncio.run(orchestrator.run())
    except KeyboardInterrupt:
        exit_code = 0
    logger.info("pixie.exiting", exit_code=exit_code)
    return exit_code


def main() -> None:
    from pixie.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
