"""User skill configuration: validation and immutable update helpers.

A skills config is the JSON document ``{"skills": {<name>: <skill>}}`` that
users edit in the environment settings. It is validated structurally, then
checked against the reserved command names, then checked for key/name
agreement. Validation never raises; it returns a ``ValidationResult``.
"""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

T = TypeVar("T")

SKILL_NAME_PATTERN = r"^[a-zA-Z0-9_-]+$"

# Built-in agent commands that user skills may not shadow
RESERVED_SKILL_NAMES: tuple[str, ...] = (
    "init",
    "pr-comments",
    "review",
    "clear",
    "compact",
    "help",
    "bug",
    "config",
    "cost",
    "doctor",
    "login",
    "logout",
    "mcp",
    "memory",
    "model",
    "permissions",
    "resume",
    "terminal-setup",
    "vim",
)

INVALID_SKILLS_CONFIG = "Invalid skills configuration"


class UserSkill(BaseModel):
    """A user-authored skill."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: StrictStr = Field(min_length=1, pattern=SKILL_NAME_PATTERN)
    display_name: StrictStr | None = Field(default=None, alias="displayName")
    description: StrictStr = Field(min_length=1)
    argument_hint: StrictStr | None = Field(default=None, alias="argumentHint")
    content: StrictStr = Field(min_length=1)
    disable_model_invocation: StrictBool = Field(default=False, alias="disableModelInvocation")
    user_invocable: StrictBool = Field(default=True, alias="userInvocable")


class SkillsConfig(BaseModel):
    """Skills keyed by skill name."""

    model_config = ConfigDict(frozen=True)

    skills: dict[StrictStr, UserSkill]

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize to the persisted JSON shape (camelCase, optional fields omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class ValidationResult(Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None

    @classmethod
    def ok(cls, data: T) -> "ValidationResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ValidationResult[T]":
        return cls(success=False, error=error)


# Custom messages for constraint failures, keyed by (field alias, error type)
_FIELD_MESSAGES = {
    ("name", "string_too_short"): "Name is required",
    ("name", "string_pattern_mismatch"): (
        "Name must contain only letters, numbers, dashes, and underscores"
    ),
    ("description", "string_too_short"): "Description is required",
    ("content", "string_too_short"): "Skill content is required",
}

_EXPECTED_TYPES = {
    "string_type": "string",
    "bool_type": "boolean",
    "dict_type": "object",
    "model_type": "object",
    "model_attributes_type": "object",
}


def json_type_name(value: Any) -> str:
    """Name a Python value by its JSON type."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def describe_error(error: dict[str, Any]) -> str:
    """Turn one pydantic error into a user-facing message."""
    error_type = error["type"]
    loc = error.get("loc", ())

    if error_type == "missing":
        return "Required"

    field_name = loc[-1] if loc else None
    custom = _FIELD_MESSAGES.get((field_name, error_type))
    if custom:
        return custom

    expected = _EXPECTED_TYPES.get(error_type)
    if expected:
        return f"Expected {expected}, received {json_type_name(error.get('input'))}"

    return error.get("msg") or INVALID_SKILLS_CONFIG


def format_validation_error(exc: ValidationError, fallback: str = INVALID_SKILLS_CONFIG) -> str:
    """Pick the deepest error (first wins on ties) and format it as ``path: message``."""
    errors = exc.errors()
    if not errors:
        return fallback

    most_specific = errors[0]
    for error in errors[1:]:
        if len(error.get("loc", ())) > len(most_specific.get("loc", ())):
            most_specific = error

    path = ".".join(str(part) for part in most_specific.get("loc", ()))
    message = describe_error(most_specific)
    return f"{path}: {message}" if path else message


def validate_skills_config(raw: Any) -> ValidationResult[SkillsConfig]:
    """Validate a raw skills config document.

    Args:
        raw: Parsed JSON value of unknown shape

    Returns:
        ValidationResult with the parsed SkillsConfig, or the first error
    """
    try:
        config = SkillsConfig.model_validate(raw)
    except ValidationError as exc:
        return ValidationResult.fail(format_validation_error(exc))

    for skill_key in config.skills:
        if skill_key.lower() in RESERVED_SKILL_NAMES:
            return ValidationResult.fail(
                f"Cannot use '{skill_key}' as a skill name (reserved for built-in commands)"
            )

    for skill_key, skill in config.skills.items():
        if skill.name != skill_key:
            return ValidationResult.fail(
                f"Skill key '{skill_key}' does not match skill name '{skill.name}'"
            )

    return ValidationResult.ok(config)


def create_empty_skills_config() -> SkillsConfig:
    return SkillsConfig(skills={})


def add_skill_to_config(config: SkillsConfig, skill: UserSkill) -> SkillsConfig:
    """Insert or overwrite ``skill`` under its name."""
    return SkillsConfig(skills={**config.skills, skill.name: skill})


def remove_skill_from_config(config: SkillsConfig, skill_name: str) -> SkillsConfig:
    """Remove ``skill_name``; absent names leave the config unchanged."""
    return SkillsConfig(
        skills={name: skill for name, skill in config.skills.items() if name != skill_name}
    )


def update_skill_in_config(config: SkillsConfig, old_name: str, skill: UserSkill) -> SkillsConfig:
    """Replace a skill, moving it to a new key when it was renamed.

    Sibling skills are preserved. An in-place update keeps the key position.
    """
    if old_name != skill.name:
        remaining = {name: s for name, s in config.skills.items() if name != old_name}
        return SkillsConfig(skills={**remaining, skill.name: skill})
    return SkillsConfig(skills={**config.skills, skill.name: skill})


def merge_skills_configs(
    global_config: SkillsConfig | None,
    repo_config: SkillsConfig | None,
) -> SkillsConfig:
    """Layer repository skills over global skills; repository entries win."""
    merged: dict[str, UserSkill] = {}
    if global_config is not None:
        merged.update(global_config.skills)
    if repo_config is not None:
        merged.update(repo_config.skills)
    return SkillsConfig(skills=merged)
