"""
Collect-all validation result shared by the config validators.
"""

from dataclasses import dataclass, field
from typing import Generic, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError

from sems.domain.errors import ErrorDetail

T = TypeVar("T")


@dataclass
class ValidationResult(Generic[T]):
    is_valid: bool
    errors: list[ErrorDetail] = field(default_factory=list)
    data: Optional[T] = None

    @classmethod
    def ok(cls, data: T) -> "ValidationResult[T]":
        return cls(is_valid=True, data=data)

    @classmethod
    def failed(cls, errors: list[ErrorDetail]) -> "ValidationResult[T]":
        return cls(is_valid=False, errors=list(errors))


def pydantic_error_details(exc: PydanticValidationError, prefix: str = "") -> list[ErrorDetail]:
    """Flatten a pydantic ValidationError into field-level details."""
    details = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error["loc"])
        field_name = f"{prefix}.{path}" if prefix and path else (prefix or path)
        details.append(ErrorDetail(field=field_name, message=error["msg"], code="INVALID_VALUE"))
    return details
