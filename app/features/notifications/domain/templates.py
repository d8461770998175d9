"""Template rendering for bulk notifications."""

import re

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def render_template(text: str | None, variables: dict[str, str] | None) -> str | None:
    """
    Replace ``{{name}}`` tokens with values from ``variables``.

    Tokens without a matching variable are left in place verbatim.
    """
    if text is None or not variables:
        return text

    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        if name in variables:
            return str(variables[name])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_substitute, text)


def missing_variables(text: str | None, variables: dict[str, str] | None) -> list[str]:
    """Names of placeholders in ``text`` that ``variables`` does not provide."""
    if not text:
        return []
    provided = variables or {}
    return [name for name in PLACEHOLDER_PATTERN.findall(text) if name not in provided]
