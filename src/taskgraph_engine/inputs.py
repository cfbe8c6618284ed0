"""Pydantic models for caller-supplied input shapes.

Engine entry points accept either these models or plain dicts; pydantic
failures are turned into :class:`~taskgraph_engine.errors.ValidationError`
naming the first offending field.
"""

from __future__ import annotations

from typing import Any, Optional, TypeVar, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .model import TaskPriority

M = TypeVar("M", bound=BaseModel)


def _coerce_ids(value: Any) -> Any:
    if value is None:
        return value
    if isinstance(value, (str, int)):
        value = [value]
    if isinstance(value, (list, tuple, set)):
        return [str(v).strip() if isinstance(v, (str, int)) and not isinstance(v, bool) else v for v in value]
    return value


class TaskInput(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str
    description: str = ""
    details: str = ""
    test_strategy: str = Field(default="", validation_alias=AliasChoices("test_strategy", "testStrategy"))
    priority: Optional[TaskPriority] = None
    dependencies: list[str] = Field(default_factory=list)

    @field_validator("dependencies", mode="before")
    @classmethod
    def coerce_dependency_ids(cls, value: Any) -> Any:
        return _coerce_ids(value)


class TaskPatch(BaseModel):
    """Partial update; only fields explicitly provided are applied."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    details: Optional[str] = None
    test_strategy: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("test_strategy", "testStrategy")
    )
    priority: Optional[TaskPriority] = None
    dependencies: Optional[list[str]] = None

    @field_validator("dependencies", mode="before")
    @classmethod
    def coerce_dependency_ids(cls, value: Any) -> Any:
        return _coerce_ids(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SubtaskInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str = ""
    assignee: Optional[str] = None
    completed: bool = False


class SubtaskPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    assignee: Optional[str] = None
    completed: Optional[bool] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


def parse_input(model_cls: type[M], data: Union[M, dict[str, Any], None]) -> M:
    """Validate ``data`` against ``model_cls``."""
    if isinstance(data, model_cls):
        return data
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("input", f"Expected an object, got {type(data).__name__}")
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field_name = ".".join(str(part) for part in first.get("loc", ())) or "input"
        raise ValidationError(field_name, f"{field_name}: {first.get('msg', 'invalid value')}") from exc


def check_title(value: Optional[str], *, max_length: int, field_name: str = "title") -> str:
    """Return the stripped title or raise if it is empty or too long."""
    title = (value or "").strip()
    if not title:
        raise ValidationError(field_name, f"'{field_name}' is required and must be non-empty")
    if len(title) > max_length:
        raise ValidationError(
            field_name,
            f"'{field_name}' must be at most {max_length} characters, got {len(title)}",
            max_length=max_length,
        )
    return title
