"""
Skill Loader — discovers and parses skill definition files.

Skill files are Markdown documents with a JSON frontmatter block:

    ---
    { JSON skill metadata }
    ---

    Instruction body...

Files that cannot be parsed are skipped with a warning; one broken skill never
stops the others from loading.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import structlog

from pixie.skills import SkillDefinition, SkillRegistry
from pixie.toolbox import ToolScript

logger = structlog.get_logger(__name__)

# Match --- JSON block --- at the very start of the file
_FRONTMATTER_RE = re.compile(r"^\s*---\s*\n(\{.*?\})\s*\n---\s*\n?(.*)", re.DOTALL)

SKILL_FILENAME = "SKILL.md"


def parse_skill_file(path: Path) -> SkillDefinition | None:
    """Parse a skill .md file; None (with a warning logged) if it is invalid."""
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("skill_loader.read_error", path=str(path), error=str(e))
        return None

    match = _FRONTMATTER_RE.match(raw)
    if not match:
        logger.warning(
            "skill_loader.no_frontmatter",
            path=str(path),
            hint="File must start with --- { JSON } --- frontmatter",
        )
        return None

    try:
        meta: dict[str, Any] = json.loads(match.group(1).strip())
    except json.JSONDecodeError as e:
        logger.warning("skill_loader.invalid_json", path=str(path), error=str(e))
        return None

    name = meta.get("name")
    description = meta.get("description")
    if not name or not description:
        logger.warning(
            "skill_loader.missing_fields",
            path=str(path),
            missing=[f for f in ("name", "description") if not meta.get(f)],
        )
        return None

    body = match.group(2).strip()
    if not body:
        logger.warning("skill_loader.empty_body", path=str(path))
        return None

    keywords = meta.get("keywords", [])
    if not isinstance(keywords, list):
        keywords = []

    return SkillDefinition(
        name=str(name),
        description=str(description),
        body=body,
        keywords=[str(k) for k in keywords],
        source_file=path,
    )


def discover_skills(directory: Path) -> list[SkillDefinition]:
    """Parse every ``*.md`` (and ``*/SKILL.md``) under *directory*, sorted by name."""
    if not directory.exists():
        logger.info("skill_loader.directory_missing", path=str(directory))
        return []

    candidates = sorted(directory.glob("*.md")) + sorted(directory.glob(f"*/{SKILL_FILENAME}"))
    skills: list[SkillDefinition] = []
    for md_file in candidates:
        if md_file.name.startswith("."):
            continue
        skill = parse_skill_file(md_file)
        if skill is not None:
            skills.append(skill)

    skills.sort(key=lambda s: s.name)
    logger.info("skill_loader.discovered", count=len(skills), directory=str(directory))
    return skills


def load_registry(directory: Path) -> SkillRegistry:
    registry = SkillRegistry()
    for skill in discover_skills(directory):
        registry.register(skill)
    return registry


# ---------------------------------------------------------------------------
# Reference documents
# ---------------------------------------------------------------------------

def _references_dir(skill: SkillDefinition) -> Path | None:
    # Only folder skills (``<name>/SKILL.md``) carry a references/ directory.
    if skill.source_file is None or skill.source_file.name != SKILL_FILENAME:
        return None
    return skill.source_file.parent / "references"


def list_skill_references(skill: SkillDefinition) -> list[str]:
    """File names under the skill's ``references/`` folder, sorted."""
    refs_dir = _references_dir(skill)
    if refs_dir is None or not refs_dir.is_dir():
        return []
    return sorted(
        p.name for p in refs_dir.iterdir() if p.is_file() and not p.name.startswith(".")
    )


def load_skill_reference(skill: SkillDefinition, ref_name: str) -> str | None:
    """Contents of one reference document, or None if it does not exist."""
    if ref_name not in list_skill_references(skill):
        return None
    path = _references_dir(skill) / ref_name
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("skill_loader.reference_unreadable", path=str(path), error=str(e))
        return None


# ---------------------------------------------------------------------------
# Promoting a toolbox script
# ---------------------------------------------------------------------------

_CODE_PREVIEW_CHARS = 500


def _default_skill_body(script: ToolScript, code: str, description: str) -> str:
    preview = code[:_CODE_PREVIEW_CHARS]
    if len(code) > _CODE_PREVIEW_CHARS:
        preview += "\n...(truncated)"
    return (
        f"# {script.name}\n\n"
        f"{description}\n\n"
        "## Usage\n\n"
        f"{script.usage}\n\n"
        f"This skill ships one script, `scripts/{script.filename}`. "
        f"Run it with execute_tool(name=\"{script.name}\", args=[...]).\n\n"
        "## Script preview\n\n"
        f"```{script.language}\n{preview}\n```"
    )


def write_skill_from_script(
    skills_dir: Path,
    script: ToolScript,
    code: str,
    description: str,
    body: str | None = None,
) -> Path:
    """Write ``<skills_dir>/<name>/SKILL.md`` plus a copy of the script.

    Returns the path of the new SKILL.md. The folder layout matches what
    ``discover_skills`` picks up, so the skill survives restarts.
    """
    skill_dir = skills_dir / script.name
    scripts_dir = skill_dir / "scripts"
    scripts_dir.mkdir(parents=True, exist_ok=True)

    keywords = [w for w in re.split(r"[_\-\s]+", script.name.lower()) if w]
    meta = {"name": script.name, "description": description, "keywords": keywords}
    content = body.strip() if body and body.strip() else _default_skill_body(script, code, description)

    skill_file = skill_dir / SKILL_FILENAME
    skill_file.write_text(
        f"---\n{json.dumps(meta, ensure_ascii=False, indent=2)}\n---\n\n{content}\n",
        encoding="utf-8",
    )
    (scripts_dir / script.filename).write_text(code, encoding="utf-8")
    logger.info("skill_loader.script_promoted", name=script.name, path=str(skill_file))
    return skill_file
