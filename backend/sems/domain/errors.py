"""
Domain errors raised by the event governance engine.

- ValidationError: field-level problems, always the full list
- NotFoundError: a referenced event or facility does not exist
- BusinessRuleError: authorization or lifecycle rule violated; single message

The HTTP layer translates these in sems.api.errors.
"""

from typing import Optional

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    """A single field-level validation problem."""

    field: str
    message: str
    code: Optional[str] = None


class SemsError(Exception):
    """Base class for engine errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(SemsError):
    def __init__(self, message: str, details: list[ErrorDetail]):
        super().__init__(message)
        self.details = list(details)


class NotFoundError(SemsError):
    def __init__(self, message: str, resource: str, resource_id: str):
        super().__init__(message)
        self.resource = resource
        self.resource_id = resource_id


class BusinessRuleError(SemsError):
    FORBIDDEN = "FORBIDDEN"
    VIOLATION = "BUSINESS_RULE_VIOLATION"

    def __init__(self, message: str, code: str = VIOLATION):
        super().__init__(message)
        self.code = code

    @classmethod
    def forbidden(cls, message: str) -> "BusinessRuleError":
        return cls(message, code=cls.FORBIDDEN)
