from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field, model_validator

from .errors import ERRORS_BY_KIND, BackofficeError, ErrorKind

T = TypeVar("T")


class Result(BaseModel, Generic[T]):
    """Uniform envelope returned by every lifecycle operation.

    A failed result never carries data; read the payload through ``unwrap()``
    so a failure cannot be mistaken for an empty success.
    """

    success: bool
    data: Optional[T] = None
    message: Optional[str] = None
    error: Optional[ErrorKind] = None
    warnings: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_shape(self):
        if self.success and self.error is not None:
            raise ValueError("successful result cannot carry an error kind")
        if not self.success:
            if self.data is not None:
                raise ValueError("failed result cannot carry data")
            if self.error is None:
                raise ValueError("failed result requires an error kind")
        return self

    @classmethod
    def ok(cls, data: Optional[T] = None, message: Optional[str] = None,
           warnings: Optional[list[str]] = None) -> "Result[T]":
        return cls(success=True, data=data, message=message, warnings=warnings or [])

    @classmethod
    def fail(cls, exc: BackofficeError) -> "Result[T]":
        return cls(success=False, message=exc.message, error=exc.kind)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def unwrap(self) -> T:
        if not self.success:
            raise ERRORS_BY_KIND[self.error](self.message or self.error.value)
        return self.data
