"""Domain types, errors and time helpers shared by services and the API."""

from sems.domain.errors import BusinessRuleError, ErrorDetail, NotFoundError, SemsError, ValidationError

__all__ = ["BusinessRuleError", "ErrorDetail", "NotFoundError", "SemsError", "ValidationError"]
