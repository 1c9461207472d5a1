from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from common.errors import GarageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: GarageError | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: GarageError) -> "OperationResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """Return the value, or raise the carried error for callers that translate exceptions."""
        if not self.ok:
            raise self.error
        return self.value


def returns_result(func):
    """Run a core operation and report business-rule failures as an OperationResult.

    Only GarageError is converted; anything else is a bug and propagates.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> OperationResult:
        try:
            return OperationResult.success(func(*args, **kwargs))
        except GarageError as exc:
            logger.info(
                "operation_rejected operation=%s",
                func.__name__,
                extra={"error_code": exc.code},
            )
            return OperationResult.failure(exc)

    return wrapper
