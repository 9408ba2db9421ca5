"""User preferences, their mapping to backend parameters, and preference stores."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, Protocol
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from clarity_agent.errors import PreferenceValidationError, TextValidationError

LOGGER = logging.getLogger(__name__)

ActivationMode = Literal["auto", "shortcut", "manual"]
Tone = Literal["formal", "neutral", "casual"]

ACTIVATION_MODES = ("auto", "shortcut", "manual")
TONES = ("formal", "neutral", "casual")

TONE_PARAMETERS = ("more-formal", "as-is", "more-casual")
LENGTH_PARAMETERS = ("shorter", "as-is", "longer")
FORMAT_PARAMETERS = ("plain-text", "markdown")

_TONE_MAPPING = {"formal": "more-formal", "neutral": "as-is", "casual": "more-casual"}

_MODIFIER = r"(?:Ctrl|Cmd|Alt|Shift)"
_SHORTCUT_RE = re.compile(rf"^{_MODIFIER}(?:\+{_MODIFIER}){{0,2}}\+[A-Z]$")
_DOMAIN_RE = re.compile(r"^(\*\.)?[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*$")
_URL_RE = re.compile(r"^https?://[a-zA-Z0-9-]+(\.[a-zA-Z0-9-]+)*($|/.*)?$")

_STORAGE_KEY = "user_preferences"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_valid_shortcut(binding: object) -> bool:
    return isinstance(binding, str) and bool(_SHORTCUT_RE.match(binding))


def is_valid_domain_pattern(pattern: object) -> bool:
    if not isinstance(pattern, str) or not pattern.strip():
        return False
    return bool(_DOMAIN_RE.match(pattern) or _URL_RE.match(pattern))


def extract_domain(url: str) -> str | None:
    if url.startswith(("http://", "https://")):
        return urlsplit(url).hostname
    if "." in url:
        return url.split("/")[0]
    return url or None


def _matches(domain: str, patterns: list[str]) -> bool:
    for pattern in patterns:
        if pattern.startswith("*."):
            base = pattern[2:]
            if domain == base or domain.endswith("." + base):
                return True
        elif pattern.startswith("http"):
            if domain == extract_domain(pattern):
                return True
        elif domain == pattern:
            return True
    return False


class Preferences(BaseModel):
    """User-facing configuration record.

    Mutate through the ``set_*``/``add_*``/``remove_*`` helpers so that
    ``last_modified`` stays accurate. Serialized with camelCase keys.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    activation_mode: ActivationMode = "auto"
    shortcut_binding: str = "Ctrl+Shift+C"
    auto_activate_min_words: int = Field(default=3, ge=1, le=100)
    preferred_tone: Tone = "neutral"
    show_change_details: bool = True
    enabled_domain_patterns: list[str] = Field(default_factory=list)
    disabled_domain_patterns: list[str] = Field(default_factory=list)
    last_modified: datetime = Field(default_factory=_utcnow)

    @field_validator("shortcut_binding")
    @classmethod
    def _check_shortcut(cls, value: str) -> str:
        if not is_valid_shortcut(value):
            raise ValueError("shortcut_binding must be a valid key combination")
        return value

    @field_validator("enabled_domain_patterns", "disabled_domain_patterns")
    @classmethod
    def _check_domains(cls, value: list[str]) -> list[str]:
        for pattern in value:
            if not is_valid_domain_pattern(pattern):
                raise ValueError(f"Invalid domain pattern: {pattern}")
        return value

    # -- setters ---------------------------------------------------------

    def set_activation_mode(self, mode: str) -> None:
        if mode not in ACTIVATION_MODES:
            raise PreferenceValidationError(f"Invalid activation mode: {mode}")
        self.activation_mode = mode  # type: ignore[assignment]
        self._touch()

    def set_shortcut_binding(self, binding: str) -> None:
        if not is_valid_shortcut(binding):
            raise PreferenceValidationError("Invalid keyboard shortcut format")
        self.shortcut_binding = binding
        self._touch()

    def set_auto_activate_min_words(self, min_words: int) -> None:
        if isinstance(min_words, bool) or not isinstance(min_words, int) or not 1 <= min_words <= 100:
            raise PreferenceValidationError("Min words must be between 1 and 100")
        self.auto_activate_min_words = min_words
        self._touch()

    def set_preferred_tone(self, tone: str) -> None:
        if tone not in TONES:
            raise PreferenceValidationError(f"Invalid tone: {tone}")
        self.preferred_tone = tone  # type: ignore[assignment]
        self._touch()

    def toggle_change_details(self) -> None:
        self.show_change_details = not self.show_change_details
        self._touch()

    def add_enabled_domain(self, pattern: str) -> None:
        if not is_valid_domain_pattern(pattern):
            raise PreferenceValidationError(f"Invalid domain pattern: {pattern}")
        if pattern not in self.enabled_domain_patterns:
            self.enabled_domain_patterns.append(pattern)
            self._touch()
        self.remove_disabled_domain(pattern)

    def remove_enabled_domain(self, pattern: str) -> None:
        if pattern in self.enabled_domain_patterns:
            self.enabled_domain_patterns.remove(pattern)
            self._touch()

    def add_disabled_domain(self, pattern: str) -> None:
        if not is_valid_domain_pattern(pattern):
            raise PreferenceValidationError(f"Invalid domain pattern: {pattern}")
        if pattern not in self.disabled_domain_patterns:
            self.disabled_domain_patterns.append(pattern)
            self._touch()
        self.remove_enabled_domain(pattern)

    def remove_disabled_domain(self, pattern: str) -> None:
        if pattern in self.disabled_domain_patterns:
            self.disabled_domain_patterns.remove(pattern)
            self._touch()

    def _touch(self) -> None:
        self.last_modified = _utcnow()

    # -- queries ---------------------------------------------------------

    def is_domain_enabled(self, url: str) -> bool:
        """Disabled patterns win; an empty enabled list means enabled everywhere."""
        domain = extract_domain(url)
        if not domain:
            return True
        if _matches(domain, self.disabled_domain_patterns):
            return False
        if not self.enabled_domain_patterns:
            return True
        return _matches(domain, self.enabled_domain_patterns)

    def should_auto_activate(self, word_count: int) -> bool:
        return self.activation_mode == "auto" and word_count >= self.auto_activate_min_words

    def to_backend_parameters(self, *, length: str | None = None) -> dict[str, str]:
        return build_backend_parameters(self, length=length)

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_storage(cls, data: dict[str, Any]) -> "Preferences":
        return cls.model_validate(data)

    # -- presets ---------------------------------------------------------

    @classmethod
    def minimalist(cls) -> "Preferences":
        return cls(activation_mode="shortcut", show_change_details=False, auto_activate_min_words=10)

    @classmethod
    def power_user(cls) -> "Preferences":
        return cls(
            activation_mode="auto",
            show_change_details=True,
            auto_activate_min_words=1,
            preferred_tone="formal",
        )

    @classmethod
    def default(cls) -> "Preferences":
        return cls()


# ---------------------------------------------------------------------------
# Preferences -> backend parameters
# ---------------------------------------------------------------------------


def map_tone(tone: str | None) -> str:
    return _TONE_MAPPING.get(tone, "as-is") if tone else "as-is"


def build_backend_parameters(
    preferences: Preferences | None, *, length: str | None = None
) -> dict[str, str]:
    """Translate preferences into backend parameters; no side effects."""
    tone = preferences.preferred_tone if preferences is not None else None
    parameters = {
        "tone": map_tone(tone),
        "format": "plain-text",
        "length": length or "as-is",
    }
    validate_backend_parameters(parameters)
    return parameters


def validate_backend_parameters(parameters: dict[str, Any]) -> None:
    tone = parameters.get("tone")
    if tone is not None and tone not in TONE_PARAMETERS:
        raise TextValidationError(f"Invalid tone parameter: {tone}")
    length = parameters.get("length")
    if length is not None and length not in LENGTH_PARAMETERS:
        raise TextValidationError(f"Invalid length parameter: {length}")
    fmt = parameters.get("format")
    if fmt is not None and fmt not in FORMAT_PARAMETERS:
        raise TextValidationError(f"Invalid format parameter: {fmt}")


# ---------------------------------------------------------------------------
# Preference stores
# ---------------------------------------------------------------------------


class PreferenceStore(Protocol):
    async def load(self) -> Preferences:
        """Return stored preferences, or defaults when nothing is stored."""
        ...

    async def save(self, preferences: Preferences) -> None:
        ...


class InMemoryPreferenceStore:
    """Keeps the serialized preferences record in process memory."""

    def __init__(self, initial: Preferences | None = None) -> None:
        self._data: dict[str, Any] | None = initial.to_storage() if initial else None

    async def load(self) -> Preferences:
        if self._data is None:
            return Preferences()
        return Preferences.from_storage(self._data)

    async def save(self, preferences: Preferences) -> None:
        self._data = preferences.to_storage()


class SqlitePreferenceStore:
    """Stores the preferences record as JSON in a local SQLite key-value table."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._ready = False

    async def load(self) -> Preferences:
        raw = await asyncio.to_thread(self._read)
        if raw is None:
            return Preferences()
        try:
            return Preferences.from_storage(json.loads(raw))
        except (ValueError, TypeError) as exc:
            LOGGER.warning(
                "preferences.load_failed",
                extra={"extra_payload": {"path": str(self._db_path), "error": str(exc)}},
            )
            return Preferences()

    async def save(self, preferences: Preferences) -> None:
        payload = json.dumps(preferences.to_storage())
        await asyncio.to_thread(self._write, payload)

    def _read(self) -> str | None:
        self._ensure_ready()
        with sqlite3.connect(self._db_path) as conn:
            cur = conn.execute("SELECT value FROM kv WHERE key = ?", (_STORAGE_KEY,))
            row = cur.fetchone()
        return row[0] if row else None

    def _write(self, value: str) -> None:
        self._ensure_ready()
        with sqlite3.connect(self._db_path) as conn:
            conn.execute(
                "INSERT INTO kv(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (_STORAGE_KEY, value),
            )
            conn.commit()

    def _ensure_ready(self) -> None:
        # The file is created on first use, not at construction.
        if not self._ready:
            _ensure_kv_table(self._db_path)
            self._ready = True


def _ensure_kv_table(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        conn.commit()
