"""SKILL.md parsing and rendering.

Skills live in the repository as ``.claude/skills/<name>/SKILL.md``: a YAML
frontmatter block delimited by ``---`` followed by the instruction body.
"""

import re
from dataclasses import dataclass, field
from typing import Any

import structlog
import yaml

from terragon_sandbox.core.skills_config import UserSkill

logger = structlog.get_logger(__name__)

SKILLS_DIR = ".claude/skills"
SKILL_FILE_NAME = "SKILL.md"


@dataclass
class SkillFrontmatter:
    name: str | None = None
    description: str | None = None
    argument_hint: str | None = None
    disable_model_invocation: bool | None = None
    user_invocable: bool | None = None
    allowed_tools: list[str] = field(default_factory=list)
    model: str | None = None
    context: str | None = None
    agent: str | None = None


@dataclass
class ParsedSkillContent:
    frontmatter: SkillFrontmatter
    body: str


@dataclass
class SkillContentResult:
    """A resolved skill ready for invocation."""

    name: str
    description: str
    content: str
    file_path: str
    argument_hint: str | None = None
    disable_model_invocation: bool = False
    user_invocable: bool = True


def skill_file_path(skill_name: str) -> str:
    """Repository-relative path of a skill's SKILL.md."""
    return f"{SKILLS_DIR}/{skill_name}/{SKILL_FILE_NAME}"


def _split_frontmatter(content: str) -> tuple[str, str] | None:
    """Return (frontmatter, body), or None when there is no complete block."""
    if not content.startswith("---"):
        return None

    end_index = content.find("\n---\n", 4)
    if end_index != -1:
        return content[4:end_index], content[end_index + 5:].strip()
    if content.endswith("\n---"):
        return content[4:len(content) - 4], ""
    return None


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().strip("\"'").lower() in ("true", "yes", "1")


def _clean(value: Any) -> str:
    return str(value).strip().strip("\"'")


def _load_frontmatter_mapping(raw: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        logger.warning("Malformed skill frontmatter", error=str(e))
        return {}
    return data if isinstance(data, dict) else {}


def parse_skill_frontmatter(content: str) -> SkillFrontmatter:
    """Extract the frontmatter fields of a SKILL.md document."""
    result = SkillFrontmatter()
    split = _split_frontmatter(content)
    if split is None:
        return result

    data = _load_frontmatter_mapping(split[0])

    for key, attr in (
        ("name", "name"),
        ("description", "description"),
        ("argument-hint", "argument_hint"),
        ("model", "model"),
        ("context", "context"),
        ("agent", "agent"),
    ):
        if data.get(key) is not None:
            setattr(result, attr, _clean(data[key]))

    if data.get("disable-model-invocation") is not None:
        result.disable_model_invocation = _parse_bool(data["disable-model-invocation"])
    if data.get("user-invocable") is not None:
        result.user_invocable = _parse_bool(data["user-invocable"])

    allowed_tools = data.get("allowed-tools")
    if isinstance(allowed_tools, list):
        result.allowed_tools = [_clean(tool) for tool in allowed_tools if _clean(tool)]
    elif allowed_tools:
        result.allowed_tools = [tool.strip() for tool in _clean(allowed_tools).split(",") if tool.strip()]

    return result


def parse_skill_content(content: str) -> ParsedSkillContent:
    """Split a SKILL.md document into frontmatter and body."""
    frontmatter = parse_skill_frontmatter(content)
    split = _split_frontmatter(content)
    body = content if split is None else split[1]
    return ParsedSkillContent(frontmatter=frontmatter, body=body)


def render_skill_markdown(skill: UserSkill) -> str:
    """Render a user skill as a SKILL.md document."""
    frontmatter: dict[str, Any] = {
        "name": skill.name,
        "description": skill.description,
    }
    if skill.argument_hint:
        frontmatter["argument-hint"] = skill.argument_hint
    frontmatter["disable-model-invocation"] = skill.disable_model_invocation
    frontmatter["user-invocable"] = skill.user_invocable

    yaml_str = yaml.safe_dump(
        frontmatter, default_flow_style=False, allow_unicode=True, sort_keys=False
    )
    return f"---\n{yaml_str}---\n\n{skill.content.strip()}\n"


def process_skill_arguments(skill_body: str, args: str, session_id: str | None = None) -> str:
    """Substitute argument placeholders in a skill body.

    Positional ``$ARGUMENTS[N]`` and ``$N`` are replaced before ``$ARGUMENTS``
    so the full-string substitution does not consume them.
    """
    processed = skill_body
    arg_parts = args.split()

    for index, arg in enumerate(arg_parts):
        processed = processed.replace(f"$ARGUMENTS[{index}]", arg)

    for index, arg in enumerate(arg_parts):
        processed = re.sub(rf"\${index}(?!\d)", lambda _m, value=arg: value, processed)

    processed = processed.replace("$ARGUMENTS", args)

    if session_id:
        processed = processed.replace("${CLAUDE_SESSION_ID}", session_id)

    return processed


def user_skill_to_content_result(skill: UserSkill) -> SkillContentResult:
    """Present a user-configured skill in the same shape as a repository skill."""
    return SkillContentResult(
        name=skill.name,
        description=skill.description,
        argument_hint=skill.argument_hint,
        disable_model_invocation=skill.disable_model_invocation,
        user_invocable=skill.user_invocable,
        content=skill.content,
        file_path=f"[user-configured:{skill.name}]",
    )


def skill_content_from_markdown(skill_name: str, raw_content: str) -> SkillContentResult:
    """Resolve a repository SKILL.md into an invocable skill."""
    parsed = parse_skill_content(raw_content)
    fm = parsed.frontmatter
    return SkillContentResult(
        name=fm.name or skill_name,
        description=fm.description or "Custom skill",
        argument_hint=fm.argument_hint,
        disable_model_invocation=fm.disable_model_invocation is True,
        user_invocable=fm.user_invocable is not False,
        content=parsed.body,
        file_path=skill_file_path(skill_name),
    )
