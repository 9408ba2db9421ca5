"""Clarity Agent package."""

from .config import AnalysisConfig, BatchConfig, ServiceConfig, SessionConfig

__all__ = ["AnalysisConfig", "BatchConfig", "ServiceConfig", "SessionConfig"]
