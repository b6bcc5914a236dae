"""Tri-state existence result produced by the existence oracle."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class ExistenceStatus(str, Enum):
    """Whether an artifact is known to be at a registry."""

    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    UNCERTAIN = "uncertain"


class ExistenceResult(BaseModel):
    """Outcome of one existence check.

    ``certain`` is only ever true for EXISTS or NOT_EXISTS, and an
    UNCERTAIN status is never certain.
    """

    model_config = ConfigDict(frozen=True)

    status: ExistenceStatus
    certain: bool
    error_detail: str | None = None

    @model_validator(mode="after")
    def _check_certainty(self) -> ExistenceResult:
        if self.status == ExistenceStatus.UNCERTAIN and self.certain:
            raise ValueError("an uncertain result cannot be certain")
        return self

    @classmethod
    def exists(cls) -> ExistenceResult:
        return cls(status=ExistenceStatus.EXISTS, certain=True)

    @classmethod
    def not_exists(cls) -> ExistenceResult:
        return cls(status=ExistenceStatus.NOT_EXISTS, certain=True)

    @classmethod
    def uncertain(cls, error_detail: str | None = None) -> ExistenceResult:
        return cls(
            status=ExistenceStatus.UNCERTAIN,
            certain=False,
            error_detail=error_detail,
        )

    @property
    def certainly_exists(self) -> bool:
        return self.certain and self.status == ExistenceStatus.EXISTS
