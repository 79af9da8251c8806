"""
Skills — Markdown instruction sets the primary session can load on demand.

A skill is a ``.md`` file with a JSON frontmatter block:

    ---
    {
      "name": "trip_planner",
      "description": "Plan a multi-day trip with budget and bookings.",
      "keywords": ["travel", "trip", "itinerary"]
    }
    ---

    Step-by-step instructions the model follows with its other tools.

Only names and descriptions go into the system prompt (see
``skills_summary``); the body is fetched with the ``load_skill`` tool when the
model decides a skill applies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

_WORD_RE = re.compile(r"[一-鿿]+|[a-z0-9]+")


@dataclass
class SkillDefinition:
    """A parsed skill file."""
    name: str
    description: str
    body: str
    keywords: list[str] = field(default_factory=list)
    source_file: Optional[Path] = None


class SkillRegistry:
    """In-memory catalog of discovered skills."""

    def __init__(self) -> None:
        self._skills: dict[str, SkillDefinition] = {}

    def register(self, skill: SkillDefinition) -> bool:
        if skill.name in self._skills:
            logger.warning(
                "skill_registry.duplicate",
                name=skill.name,
                existing=str(self._skills[skill.name].source_file),
                ignored=str(skill.source_file),
            )
            return False
        self._skills[skill.name] = skill
        return True

    def get(self, name: str) -> Optional[SkillDefinition]:
        return self._skills.get(name)

    def all_skills(self) -> list[SkillDefinition]:
        return sorted(self._skills.values(), key=lambda s: s.name)

    def __len__(self) -> int:
        return len(self._skills)

    def skills_summary(self) -> str:
        """The "Available Skills" section appended to the system prompt."""
        skills = self.all_skills()
        if not skills:
            return ""
        lines = ["## Available Skills", ""]
        lines.extend(f"- **{s.name}**: {s.description}" for s in skills)
        lines.append("")
        lines.append("Call load_skill with a skill's name to read its full instructions.")
        return "\n".join(lines)

    def find_relevant(self, text: str, threshold: float = 0.1) -> list[SkillDefinition]:
        """Skills related to *text*, best match first.

        Score: +1.0 when the skill name appears in the text, +0.3 per keyword
        contained in the text, +0.1 per word/keyword overlap, +0.05 per text
        word found in the description.
        """
        lowered = text.lower()
        words = _WORD_RE.findall(lowered)
        scored: list[tuple[float, SkillDefinition]] = []
        for skill in self.all_skills():
            score = 0.0
            if skill.name.lower() in lowered:
                score += 1.0
            for keyword in (k.lower() for k in skill.keywords):
                if keyword in lowered:
                    score += 0.3
                score += 0.1 * sum(1 for w in words if w in keyword or keyword in w)
            description = skill.description.lower()
            score += 0.05 * sum(1 for w in words if w in description)
            if score >= threshold:
                scored.append((score, skill))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [skill for _, skill in scored]
