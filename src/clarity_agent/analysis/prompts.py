"""Instruction prompts for the free-form prompt backend."""

from __future__ import annotations

from typing import Any

from langchain_core.prompts import PromptTemplate

_CLARITY_PROMPT = """
Please improve the clarity of the following text. Focus on:
- Removing unnecessary words and phrases
- Making the meaning clearer and more direct
- Improving sentence structure for better readability
- Maintaining the original meaning and intent

Text to improve: "{text}"

Please provide only the improved text without any explanations.{directives}
""".strip()

CLARITY_PROMPT = PromptTemplate.from_template(_CLARITY_PROMPT)

_TONE_DIRECTIVES = {
    "more-formal": "Use a more formal tone.",
    "more-casual": "Use a more casual tone.",
}
_LENGTH_DIRECTIVES = {
    "shorter": "Make the text more concise.",
    "longer": "Expand the text for more clarity.",
}


def escape_embedded_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def build_clarity_prompt(text: str, parameters: dict[str, Any] | None = None) -> str:
    """Embed ``text`` into the clarity instruction with tone/length directives."""
    parameters = parameters or {}
    directives = [
        directive
        for directive in (
            _TONE_DIRECTIVES.get(parameters.get("tone") or "as-is"),
            _LENGTH_DIRECTIVES.get(parameters.get("length") or "as-is"),
        )
        if directive
    ]
    suffix = "".join(f"\n{directive}" for directive in directives)
    return CLARITY_PROMPT.format(text=escape_embedded_text(text), directives=suffix)
