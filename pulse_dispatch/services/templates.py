"""Template placeholder rendering.

Placeholders have the form ``{{ name }}`` (surrounding whitespace optional).
Rendering is plain string substitution: no escaping, no nested expressions,
and placeholders without a matching key are left verbatim.
"""

import re
from typing import Any

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(text: str | None, data: dict[str, Any] | None) -> str:
    """Replace every ``{{ key }}`` for each key in ``data`` with ``str(value)``.

    Substitution is a single pass over the template, so placeholder text
    inside a substituted value is never expanded.
    """
    if not text:
        return ""
    values = {str(key): value for key, value in (data or {}).items()}

    def substitute(match: re.Match) -> str:
        name = match.group(1)
        if name not in values:
            return match.group(0)
        value = values[name]
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(substitute, text)


def extract_variables(*texts: str | None) -> list[str]:
    """Return placeholder names in order of first appearance, without duplicates."""
    seen: list[str] = []
    for text in texts:
        for name in PLACEHOLDER_PATTERN.findall(text or ""):
            if name not in seen:
                seen.append(name)
    return seen
