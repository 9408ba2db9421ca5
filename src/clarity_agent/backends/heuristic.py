"""Deterministic rewrite backend used when no language model is configured.

Applies a fixed table of wordy-phrase substitutions plus tone-driven contraction
rules and reports each substitution as a granular change against the original text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from clarity_agent.types import BackendKind, BackendOutput, ChangeKind, SessionCapabilities


@dataclass(frozen=True, slots=True)
class RewriteRule:
    pattern: re.Pattern[str]
    replacement: str
    kind: ChangeKind
    reason: str


def _rule(phrase: str, replacement: str, kind: ChangeKind, reason: str) -> RewriteRule:
    return RewriteRule(
        pattern=re.compile(rf"\b{re.escape(phrase)}\b", flags=re.IGNORECASE),
        replacement=replacement,
        kind=kind,
        reason=reason,
    )


_WORDY = "Replaces a wordy phrase with a shorter equivalent"

_CONCISENESS_RULES: tuple[RewriteRule, ...] = (
    _rule("in spite of the fact that", "although", ChangeKind.CONCISENESS, _WORDY),
    _rule("due to the fact that", "because", ChangeKind.CONCISENESS, _WORDY),
    _rule("at this point in time", "now", ChangeKind.CONCISENESS, _WORDY),
    _rule("in the event that", "if", ChangeKind.CONCISENESS, _WORDY),
    _rule("for the purpose of", "for", ChangeKind.CONCISENESS, _WORDY),
    _rule("a large number of", "many", ChangeKind.CONCISENESS, _WORDY),
    _rule("in order to", "to", ChangeKind.CONCISENESS, _WORDY),
    _rule("is able to", "can", ChangeKind.CONCISENESS, _WORDY),
    _rule("are able to", "can", ChangeKind.CONCISENESS, _WORDY),
    _rule("with regard to", "about", ChangeKind.CONCISENESS, _WORDY),
    _rule("prior to", "before", ChangeKind.CONCISENESS, _WORDY),
    _rule("utilize", "use", ChangeKind.WORD_CHOICE, "Prefers the plainer word"),
    _rule("very unique", "unique", ChangeKind.WORD_CHOICE, "Unique is not gradable"),
)

_CONTRACTIONS = (
    ("do not", "don't"),
    ("does not", "doesn't"),
    ("cannot", "can't"),
    ("will not", "won't"),
    ("it is", "it's"),
    ("I am", "I'm"),
    ("we are", "we're"),
    ("they are", "they're"),
)

_FORMAL_RULES: tuple[RewriteRule, ...] = tuple(
    _rule(short, long, ChangeKind.WORD_CHOICE, "Formal tone avoids contractions")
    for long, short in _CONTRACTIONS
)
_CASUAL_RULES: tuple[RewriteRule, ...] = tuple(
    _rule(long, short, ChangeKind.WORD_CHOICE, "Casual tone favors contractions")
    for long, short in _CONTRACTIONS
)


@dataclass(frozen=True, slots=True)
class HeuristicSession:
    rules: tuple[RewriteRule, ...]


class HeuristicRewriteBackend:
    """Offline rewrite backend with granular change reporting."""

    kind = BackendKind.REWRITE

    def __init__(self, *, capabilities: SessionCapabilities | None = None) -> None:
        self.capabilities = capabilities or SessionCapabilities()

    async def is_available(self) -> bool:
        return True

    async def create_session(self, parameters: dict[str, Any]) -> HeuristicSession:
        rules = list(_CONCISENESS_RULES)
        tone = parameters.get("tone")
        if tone == "more-formal":
            rules.extend(_FORMAL_RULES)
        elif tone == "more-casual":
            rules.extend(_CASUAL_RULES)
        return HeuristicSession(rules=tuple(rules))

    async def invoke(self, handle: HeuristicSession, text: str) -> BackendOutput:
        improved, changes = apply_rules(text, handle.rules)
        return BackendOutput(improved_text=improved, changes=changes or None)

    async def release(self, handle: HeuristicSession) -> None:
        return None


def apply_rules(text: str, rules: tuple[RewriteRule, ...]) -> tuple[str, list[dict[str, Any]]]:
    """Apply non-overlapping rule matches; earlier rules win ties at the same offset.

    Returns the rewritten text and change dicts whose offsets index the input text.
    """
    matches: list[tuple[int, int, RewriteRule]] = []
    for priority, rule in enumerate(rules):
        for match in rule.pattern.finditer(text):
            matches.append((match.start(), priority, rule))
    matches.sort(key=lambda item: (item[0], item[1]))

    pieces: list[str] = []
    changes: list[dict[str, Any]] = []
    cursor = 0
    for start, _, rule in matches:
        match = rule.pattern.match(text, start)
        if match is None or start < cursor:
            continue
        end = match.end()
        original = text[start:end]
        replacement = _match_case(original, rule.replacement)
        if replacement == original:
            continue
        pieces.append(text[cursor:start])
        pieces.append(replacement)
        changes.append(
            {
                "change_kind": rule.kind.value,
                "original_phrase": original,
                "improved_phrase": replacement,
                "reason": rule.reason,
                "start_offset": start,
                "end_offset": end,
            }
        )
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces), changes


def _match_case(original: str, replacement: str) -> str:
    if original[:1].isupper() and not replacement[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement
