"""
Built-in Tools — notes, the tool-script library and skills.

These are the capabilities that ship with Pixie besides delegation and file
access. Handlers are closures over the stores they operate on, created when the
orchestrator starts; each returns a short string (often JSON) for the model.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import structlog

from pixie.notes import NoteStore
from pixie.skills import SkillRegistry
from pixie.skills.loader import (
    list_skill_references,
    load_skill_reference,
    parse_skill_file,
    write_skill_from_script,
)
from pixie.toolbox import TOOL_NOTE_PREFIX, ToolScript, ToolScriptLibrary
from pixie.tools.registry import ToolDefinition, ToolRegistry

logger = structlog.get_logger(__name__)


def _script_summary(script: ToolScript) -> dict:
    return {
        "name": script.name,
        "description": script.description,
        "usage": script.usage,
        "language": script.language,
    }


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    notes: NoteStore,
    toolbox: ToolScriptLibrary,
    skills: SkillRegistry,
    skills_dir: Path,
) -> None:
    """Register every built-in tool with handlers bound to the given stores."""
    _register_note_tools(registry, notes)
    _register_toolbox_tools(registry, toolbox)
    _register_skill_tools(registry, skills, toolbox, skills_dir)


def _register_note_tools(registry: ToolRegistry, notes: NoteStore) -> None:

    async def save_note(key: str, content: str) -> str:
        note = notes.save(key, content)
        return f"Saved note '{note.key}'."

    async def read_note(key: str) -> str:
        note = notes.read(key)
        if note is None:
            return f"No note named '{key}'."
        return note.content

    async def delete_note(key: str) -> str:
        if notes.delete(key):
            return f"Deleted note '{key}'."
        return f"No note named '{key}'."

    async def list_notes() -> str:
        keys = [k for k in notes.list_keys() if not k.startswith(TOOL_NOTE_PREFIX)]
        if not keys:
            return "No notes saved yet."
        return "\n".join(f"- {k}" for k in keys)

    registry.register(
        ToolDefinition(
            name="save_note",
            description=(
                "Save a note that survives restarts: operator preferences, facts "
                "worth keeping, plans in progress. Saving an existing key "
                "replaces its content."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "key": {"type": "string", "description": "Short name for the note."},
                    "content": {"type": "string", "description": "The note text."},
                },
                "required": ["key", "content"],
            },
            handler=save_note,
            category="notes",
        )
    )
    registry.register(
        ToolDefinition(
            name="read_note",
            description="Read a saved note by key.",
            input_schema={
                "type": "object",
                "properties": {"key": {"type": "string", "description": "Note key."}},
                "required": ["key"],
            },
            handler=read_note,
            category="notes",
        )
    )
    registry.register(
        ToolDefinition(
            name="delete_note",
            description="Delete a saved note by key.",
            input_schema={
                "type": "object",
                "properties": {"key": {"type": "string", "description": "Note key."}},
                "required": ["key"],
            },
            handler=delete_note,
            category="notes",
        )
    )
    registry.register(
        ToolDefinition(
            name="list_notes",
            description="List the keys of all saved notes.",
            input_schema={"type": "object", "properties": {}},
            handler=list_notes,
            category="notes",
        )
    )


def _register_toolbox_tools(registry: ToolRegistry, toolbox: ToolScriptLibrary) -> None:

    async def save_tool(
        name: str, code: str, description: str, usage: str, language: str = "python"
    ) -> str:
        try:
            script = toolbox.save(name, code, description, usage, language)
        except ValueError as exc:
            return f"Error: {exc}"
        return f"Saved tool '{script.name}' as {script.filename}."

    async def update_tool(name: str, code: str) -> str:
        script = toolbox.update_code(name, code)
        if script is None:
            return f"No tool named '{name}'."
        return f"Updated tool '{script.name}'."

    async def list_tools() -> str:
        scripts = toolbox.list_scripts()
        return json.dumps(
            {"count": len(scripts), "tools": [_script_summary(s) for s in scripts]},
            ensure_ascii=False,
        )

    async def search_tools(keyword: str) -> str:
        scripts = toolbox.search(keyword)
        return json.dumps(
            {"count": len(scripts), "tools": [_script_summary(s) for s in scripts]},
            ensure_ascii=False,
        )

    async def get_tool_code(name: str) -> str:
        code = toolbox.get_code(name)
        if code is None:
            return f"No tool named '{name}'."
        return code

    async def execute_tool(name: str, args: Optional[list[str]] = None) -> str:
        result = await toolbox.run(name, [str(a) for a in (args or [])])
        logger.info("builtin_tools.execute_tool", name=name, success=result.success)
        return result.model_dump_json(exclude_none=True)

    registry.register(
        ToolDefinition(
            name="save_tool",
            description=(
                "Save a reusable script to the toolbox so later conversations can run "
                "it with execute_tool. Search the toolbox first to avoid duplicates."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Tool name (letters, digits, _ and -)."},
                    "code": {"type": "string", "description": "Full script source."},
                    "description": {"type": "string", "description": "What the tool does."},
                    "usage": {"type": "string", "description": "How to call it, including arguments."},
                    "language": {
                        "type": "string",
                        "enum": ["python", "bash", "javascript", "typescript"],
                        "description": "Script language. Default python.",
                    },
                },
                "required": ["name", "code", "description", "usage"],
            },
            handler=save_tool,
            category="toolbox",
        )
    )
    registry.register(
        ToolDefinition(
            name="update_tool",
            description="Replace the source code of an existing toolbox script.",
            input_schema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Tool name."},
                    "code": {"type": "string", "description": "New script source."},
                },
                "required": ["name", "code"],
            },
            handler=update_tool,
            category="toolbox",
        )
    )
    registry.register(
        ToolDefinition(
            name="list_tools",
            description="List every script in the toolbox with its description and usage.",
            input_schema={"type": "object", "properties": {}},
            handler=list_tools,
            category="toolbox",
        )
    )
    registry.register(
        ToolDefinition(
            name="search_tools",
            description="Find toolbox scripts whose name, description or usage contains a keyword.",
            input_schema={
                "type": "object",
                "properties": {"keyword": {"type": "string", "description": "Search keyword."}},
                "required": ["keyword"],
            },
            handler=search_tools,
            category="toolbox",
        )
    )
    registry.register(
        ToolDefinition(
            name="get_tool_code",
            description="Show the source code of a toolbox script.",
            input_schema={
                "type": "object",
                "properties": {"name": {"type": "string", "description": "Tool name."}},
                "required": ["name"],
            },
            handler=get_tool_code,
            category="toolbox",
        )
    )
    registry.register(
        ToolDefinition(
            name="execute_tool",
            description=(
                "Run a toolbox script with command-line arguments and return its "
                "output, error text and exit code."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Tool name."},
                    "args": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "Command-line arguments.",
                    },
                },
                "required": ["name"],
            },
            handler=execute_tool,
            category="toolbox",
            # The script runner enforces its own timeout.
            timeout=600.0,
        )
    )


def _register_skill_tools(
    registry: ToolRegistry,
    skills: SkillRegistry,
    toolbox: ToolScriptLibrary,
    skills_dir: Path,
) -> None:

    async def list_skills() -> str:
        return skills.skills_summary() or "No skills installed."

    async def load_skill(name: str) -> str:
        skill = skills.get(name)
        if skill is None:
            return f"No skill named '{name}'."
        return f"# Skill: {skill.name}\n\n{skill.body}"

    async def find_skills(query: str) -> str:
        matches = skills.find_relevant(query)
        if not matches:
            return "No matching skills."
        return "\n".join(f"- **{s.name}**: {s.description}" for s in matches[:5])

    async def load_skill_reference_tool(skill_name: str, ref_name: str) -> str:
        skill = skills.get(skill_name)
        if skill is None:
            return json.dumps({"error": f"No skill named '{skill_name}'."})
        available = list_skill_references(skill)
        if not available:
            return json.dumps({"error": f"Skill '{skill_name}' has no reference documents."})
        content = load_skill_reference(skill, ref_name)
        if content is None:
            return json.dumps(
                {
                    "error": f"No reference '{ref_name}' in skill '{skill_name}'.",
                    "available": available,
                },
                ensure_ascii=False,
            )
        return json.dumps(
            {"skill_name": skill_name, "ref_name": ref_name, "content": content},
            ensure_ascii=False,
        )

    async def upgrade_tool_to_skill(
        tool_name: str, description: str, body: Optional[str] = None
    ) -> str:
        script = toolbox.get(tool_name)
        code = toolbox.get_code(tool_name)
        if script is None or code is None:
            return json.dumps({"error": f"No tool named '{tool_name}'."})
        if skills.get(script.name) is not None:
            return json.dumps({"error": f"A skill named '{script.name}' already exists."})
        path = write_skill_from_script(skills_dir, script, code, description, body)
        skill = parse_skill_file(path)
        if skill is None or not skills.register(skill):
            return json.dumps({"error": f"Wrote {path} but could not load it as a skill."})
        logger.info("builtin_tools.tool_upgraded", name=script.name, path=str(path))
        return json.dumps(
            {"success": True, "skill": skill.name, "path": str(path)}, ensure_ascii=False
        )

    registry.register(
        ToolDefinition(
            name="list_skills",
            description="List installed skills with their descriptions.",
            input_schema={"type": "object", "properties": {}},
            handler=list_skills,
            category="skills",
        )
    )
    registry.register(
        ToolDefinition(
            name="load_skill",
            description=(
                "Load the full instructions of a skill. Do this before following a "
                "skill listed under Available Skills."
            ),
            input_schema={
                "type": "object",
                "properties": {"name": {"type": "string", "description": "Skill name."}},
                "required": ["name"],
            },
            handler=load_skill,
            category="skills",
        )
    )
    registry.register(
        ToolDefinition(
            name="find_skills",
            description="Find skills relevant to a request, best match first.",
            input_schema={
                "type": "object",
                "properties": {"query": {"type": "string", "description": "The request or topic."}},
                "required": ["query"],
            },
            handler=find_skills,
            category="skills",
        )
    )
    registry.register(
        ToolDefinition(
            name="load_skill_reference",
            description=(
                "Read one reference document bundled with a folder skill "
                "(<skill>/references/<file>). The error lists the available names."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "skill_name": {"type": "string", "description": "Skill name."},
                    "ref_name": {"type": "string", "description": "Reference file name."},
                },
                "required": ["skill_name", "ref_name"],
            },
            handler=load_skill_reference_tool,
            category="skills",
        )
    )
    registry.register(
        ToolDefinition(
            name="upgrade_tool_to_skill",
            description=(
                "Promote a toolbox script to a full skill: writes <name>/SKILL.md "
                "with the description and instructions, and copies the script into "
                "the skill's scripts/ folder. The skill is available immediately."
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "tool_name": {"type": "string", "description": "Toolbox script name."},
                    "description": {"type": "string", "description": "What the skill does."},
                    "body": {
                        "type": "string",
                        "description": "Skill instructions. Generated from the script when omitted.",
                    },
                },
                "required": ["tool_name", "description"],
            },
            handler=upgrade_tool_to_skill,
            category="skills",
        )
    )
