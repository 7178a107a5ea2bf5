"""Coded result envelope handed to the HTTP boundary."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ResponseCode(str, Enum):
    """Coarse machine-readable result codes."""

    SUCCESS = "00"
    NOT_FOUND = "05"
    GENERAL_ERROR = "06"
    VALIDATION_ERROR = "09"


@dataclass
class Result(Generic[T]):
    """Outcome of a service call: success flag, code, message and payload."""

    success: bool
    code: ResponseCode
    message: str
    data: Optional[T] = None

    @classmethod
    def ok(cls, data: T, message: str = "Operation successful") -> "Result[T]":
        return cls(success=True, code=ResponseCode.SUCCESS, message=message, data=data)

    @classmethod
    def not_found(cls, message: str = "Resource not found") -> "Result[T]":
        return cls(success=False, code=ResponseCode.NOT_FOUND, message=message)

    @classmethod
    def validation_error(cls, message: str = "Validation error") -> "Result[T]":
        return cls(success=False, code=ResponseCode.VALIDATION_ERROR, message=message)

    @classmethod
    def error(cls, message: str = "An error occurred") -> "Result[T]":
        return cls(success=False, code=ResponseCode.GENERAL_ERROR, message=message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON-ready envelope."""
        data = self.data
        if data is not None and hasattr(data, "__dataclass_fields__"):
            data = asdict(data)
        return {
            "success": self.success,
            "code": self.code.value,
            "message": self.message,
            "data": data,
        }
