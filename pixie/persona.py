"""
Persona — the primary session's system prompt.

The persona text comes from ``PIXIE_PERSONA_FILE`` when set (the file replaces
the built-in prompt entirely); the installed skills' summary is appended so the
model knows which instruction sets it can load.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import structlog

from pixie.skills import SkillRegistry

logger = structlog.get_logger(__name__)

DEFAULT_PERSONA = """\
You are Pixie, a personal assistant serving a single operator over Telegram.

Be concise and direct. Reply in the operator's language.

You can:
- delegate focused sub-tasks to delegated sessions (create_delegate,
  send_to_delegate). Call find_delegates first and reuse a matching delegate
  instead of creating a duplicate. Every delegate call is billed, so delegate
  only when a separate role, model or context genuinely helps;
- keep notes that survive restarts (save_note, read_note, list_notes);
- write reusable scripts into your toolbox and run them (save_tool,
  execute_tool). Search the toolbox before writing a new script;
- read and edit files in your own project folder. Editing your source code
  restarts you after the current reply is delivered, so finish the reply first.
"""


def load_persona(persona_file: Optional[Path]) -> str:
    if persona_file is None:
        return DEFAULT_PERSONA
    try:
        text = persona_file.read_text(encoding="utf-8").strip()
    except OSError as exc:
        logger.warning("persona.read_failed", path=str(persona_file), error=str(exc))
        return DEFAULT_PERSONA
    if not text:
        logger.warning("persona.empty_file", path=str(persona_file))
        return DEFAULT_PERSONA
    return text


def build_system_prompt(persona_file: Optional[Path], skills: SkillRegistry) -> str:
    """Persona text followed by the "Available Skills" section, if any."""
    persona = load_persona(persona_file)
    summary = skills.skills_summary()
    if not summary:
        return persona
    return f"{persona.rstrip()}\n\n{summary}"
