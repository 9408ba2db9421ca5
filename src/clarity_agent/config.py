"""Configuration models for the clarity analysis service."""

from __future__ import annotations

import os
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, Field


class AnalysisConfig(BaseModel):
    """Configures request validation, backend selection and history."""

    max_text_length: int = Field(default=5000, ge=1)
    history_capacity: int = Field(default=10, ge=1)
    default_backend: Literal["rewrite", "prompt"] = "rewrite"
    fallback_enabled: bool = True
    display_truncate: int = Field(default=100, ge=4)
    pending_decisions_capacity: int = Field(default=50, ge=1)


class SessionConfig(BaseModel):
    """Configures backend session lifetime and the maintenance sweep cadence."""

    idle_timeout_ms: int = Field(default=300_000, ge=1)
    sweep_interval_seconds: float = Field(default=300.0, gt=0.0)


class BatchConfig(BaseModel):
    """Configures windowed batch analysis."""

    max_concurrent: int = Field(default=3, ge=1)
    pacing_ms: int = Field(default=100, ge=0)


class ServiceConfig(BaseModel):
    """Root configuration aggregating every section."""

    ENV_PREFIX: ClassVar[str] = "CLARITY_"

    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    preferences_db: str | None = None

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "ServiceConfig":
        """Build a config from ``CLARITY_*`` environment variables.

        Unset variables keep their defaults; invalid values raise
        ``pydantic.ValidationError``.
        """
        env = os.environ if environ is None else environ
        prefix = cls.ENV_PREFIX

        def _get(name: str) -> str | None:
            value = env.get(prefix + name)
            return value if value not in (None, "") else None

        analysis: dict[str, Any] = {}
        if (value := _get("DEFAULT_BACKEND")) is not None:
            analysis["default_backend"] = value
        if (value := _get("FALLBACK_ENABLED")) is not None:
            analysis["fallback_enabled"] = value
        if (value := _get("MAX_TEXT_LENGTH")) is not None:
            analysis["max_text_length"] = value
        if (value := _get("HISTORY_CAPACITY")) is not None:
            analysis["history_capacity"] = value

        sessions: dict[str, Any] = {}
        if (value := _get("SESSION_IDLE_TIMEOUT_MS")) is not None:
            sessions["idle_timeout_ms"] = value
        if (value := _get("SESSION_SWEEP_INTERVAL_SECONDS")) is not None:
            sessions["sweep_interval_seconds"] = value

        batch: dict[str, Any] = {}
        if (value := _get("BATCH_MAX_CONCURRENT")) is not None:
            batch["max_concurrent"] = value
        if (value := _get("BATCH_PACING_MS")) is not None:
            batch["pacing_ms"] = value

        return cls.model_validate(
            {
                "analysis": analysis,
                "sessions": sessions,
                "batch": batch,
                "preferences_db": _get("PREFERENCES_DB"),
            }
        )
