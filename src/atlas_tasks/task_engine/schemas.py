"""Pydantic input models bounding every caller-supplied field.

Inputs are parsed once at the engine boundary; the legacy
``metadata.dependencies`` shim runs before parsing.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..constants import (
    DESCRIPTION_MAX_LENGTH,
    MAX_ARRAY_ITEMS,
    MAX_DEPENDENCIES,
    MAX_NOTES,
    METADATA_STRING_MAX_LENGTH,
    NAME_MAX_LENGTH,
    NOTE_MAX_LENGTH,
    REASONING_MAX_LENGTH,
)
from ..errors import InvalidInput
from .model import TaskPriority, TaskStatus, TaskType, normalize_legacy_dependencies


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=False)


class MetadataInput(_Strict):
    priority: Optional[TaskPriority] = None
    tags: Optional[list[str]] = Field(default=None, max_length=MAX_ARRAY_ITEMS)
    assignee: Optional[str] = Field(default=None, max_length=METADATA_STRING_MAX_LENGTH)
    reasoning: Optional[str] = Field(default=None, max_length=REASONING_MAX_LENGTH)
    notes: Optional[list[str]] = Field(default=None, max_length=MAX_NOTES)

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return value
        for tag in value:
            if len(tag) > METADATA_STRING_MAX_LENGTH:
                raise ValueError(f"tags cannot exceed {METADATA_STRING_MAX_LENGTH} characters each")
        return list(dict.fromkeys(value))

    @field_validator("notes")
    @classmethod
    def _bounded_notes(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return value
        for note in value:
            if len(note) > NOTE_MAX_LENGTH:
                raise ValueError(f"notes cannot exceed {NOTE_MAX_LENGTH} characters each")
        return value


class CreateTaskInput(_Strict):
    name: str = Field(min_length=1, max_length=NAME_MAX_LENGTH)
    path: Optional[str] = None
    parent_path: Optional[str] = None
    description: str = Field(default="", max_length=DESCRIPTION_MAX_LENGTH)
    type: TaskType = TaskType.TASK
    # Accepted for compatibility; creation always starts at pending.
    status: Optional[TaskStatus] = None
    dependencies: list[str] = Field(default_factory=list, max_length=MAX_DEPENDENCIES)
    metadata: MetadataInput = Field(default_factory=MetadataInput)

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class UpdateTaskInput(_Strict):
    name: Optional[str] = Field(default=None, min_length=1, max_length=NAME_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    type: Optional[TaskType] = None
    status: Optional[TaskStatus] = None
    dependencies: Optional[list[str]] = Field(default=None, max_length=MAX_DEPENDENCIES)
    metadata: Optional[MetadataInput] = None

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value


class BulkOperation(_Strict):
    type: Literal["create", "update", "delete"]
    path: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


def _format_errors(exc: ValidationError) -> list[str]:
    out: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return out


def parse_create(data: dict[str, Any]) -> CreateTaskInput:
    try:
        return CreateTaskInput.model_validate(normalize_legacy_dependencies(data))
    except ValidationError as exc:
        raise InvalidInput("Invalid create input", _format_errors(exc)) from exc


def parse_update(data: dict[str, Any]) -> UpdateTaskInput:
    try:
        return UpdateTaskInput.model_validate(normalize_legacy_dependencies(data))
    except ValidationError as exc:
        raise InvalidInput("Invalid update input", _format_errors(exc)) from exc


def parse_operation(raw: Any) -> BulkOperation:
    if isinstance(raw, BulkOperation):
        return raw
    try:
        return BulkOperation.model_validate(raw)
    except ValidationError as exc:
        raise InvalidInput("Invalid bulk operation", _format_errors(exc)) from exc
