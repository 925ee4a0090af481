# src/mentor_tasks/tasks/schemas.py

"""Request schemas validated at the API boundary, before anything reaches the core."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..core.errors import ValidationFailed
from .task_models import Cadence

M = TypeVar("M", bound=BaseModel)


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class UserCreate(_Strict):
    fullname: str = Field(..., min_length=1, max_length=200)
    domain: str = ""
    mentor_id: str | None = None


class TemplateCreate(_Strict):
    mentor_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    cadence: Cadence | None = None
    due_in_days: int | None = Field(default=None, ge=1, le=366)


class AssignmentRequest(_Strict):
    mentor_id: str = Field(..., min_length=1)
    template_id: str = Field(..., min_length=1)
    user_ids: list[str] = Field(..., min_length=1)
    due_at: float | None = None

    @field_validator("user_ids")
    @classmethod
    def _no_blank_ids(cls, v: list[str]) -> list[str]:
        cleaned = [u.strip() for u in v]
        if any(not u for u in cleaned):
            raise ValueError("user ids must be non-empty")
        return cleaned


class SubmissionRequest(_Strict):
    task_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    filename: str = Field(..., min_length=1, max_length=255)
    content: bytes
    content_type: str = "application/octet-stream"


class TaskEdit(_Strict):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None

    @model_validator(mode="after")
    def _something_to_change(self) -> TaskEdit:
        if self.title is None and self.description is None:
            raise ValueError("nothing to change: give a title or a description")
        return self


def parse(model: type[M], data: Any) -> M:
    """Validate `data` (dict or model instance) into `model`; ValidationFailed on bad input."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationFailed(f"invalid {model.__name__}: {problems}") from e
