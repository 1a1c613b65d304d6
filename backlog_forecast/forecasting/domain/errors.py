from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ForecastingError(Exception):
    """Base class for conditions reported by the forecasting engine."""


class InsufficientDataError(ForecastingError):
    """Too few samples to compute a meaningful result.

    This is a normal, user-facing outcome rather than a fault.
    """


class InvalidInputError(ForecastingError, ValueError):
    """Inputs rejected at the boundary before any simulation work."""


class SimulationCancelledError(ForecastingError):
    """Raised between trial blocks when the caller asks to stop."""


class FailureKind(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    INVALID_INPUT = "invalid_input"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str

    @classmethod
    def from_exception(cls, exc: ForecastingError) -> "Failure":
        if isinstance(exc, InsufficientDataError):
            kind = FailureKind.INSUFFICIENT_DATA
        elif isinstance(exc, SimulationCancelledError):
            kind = FailureKind.CANCELLED
        else:
            kind = FailureKind.INVALID_INPUT
        return cls(kind=kind, message=str(exc))


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or a tagged failure; never both."""

    value: T | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    def unwrap(self) -> T:
        if self.failure is not None:
            raise RuntimeError(f"{self.failure.kind.value}: {self.failure.message}")
        assert self.value is not None
        return self.value

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, exc: ForecastingError) -> "Outcome[T]":
        return cls(failure=Failure.from_exception(exc))
