"""Merge of the user's custom system prompt with per-repository smart context."""

CUSTOM_INSTRUCTIONS_SEPARATOR = "\n\n---\n\n## Custom Instructions\n\n"


def merge_context_content(
    custom_system_prompt: str | None = None,
    smart_context: str | None = None,
) -> str | None:
    """Combine the two context sources.

    Smart context (project setup) comes first, the custom prompt (user
    overrides) follows under a "Custom Instructions" heading. When only one
    is non-blank it is returned trimmed; when both are blank, None.
    """
    custom = (custom_system_prompt or "").strip()
    smart = (smart_context or "").strip()

    if not custom and not smart:
        return None
    if not custom:
        return smart
    if not smart:
        return custom
    return f"{smart}{CUSTOM_INSTRUCTIONS_SEPARATOR}{custom}"
