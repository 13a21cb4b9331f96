"""Provide the public `atlas_tasks` package exports."""

from __future__ import annotations

from .config import EngineConfig, load_engine_config
from .task_engine import TaskEngine, TaskResponse

__all__ = ["EngineConfig", "TaskEngine", "TaskResponse", "load_engine_config"]
