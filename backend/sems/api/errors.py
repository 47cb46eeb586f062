"""
Exception handlers translating domain errors into the API error envelope:

    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}
"""

from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sems.core.logging import get_logger
from sems.domain.errors import BusinessRuleError, NotFoundError, ValidationError

logger = get_logger(__name__)


def error_response(status_code: int, code: str, message: str, details: Optional[Any] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {"code": code, "message": message, "details": details},
        },
    )


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    details = [d.model_dump() for d in exc.details]
    logger.warning("validation_failed", message=exc.message, errors=len(details))
    return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", exc.message, details)


async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
            "code": "INVALID_VALUE",
        }
        for err in exc.errors()
    ]
    logger.warning("request_validation_failed", errors=len(details))
    return error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "Invalid request", details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = "UNAUTHORIZED" if exc.status_code == status.HTTP_401_UNAUTHORIZED else "HTTP_ERROR"
    return error_response(exc.status_code, code, str(exc.detail))


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.warning("resource_not_found", resource=exc.resource, resource_id=exc.resource_id)
    return error_response(status.HTTP_404_NOT_FOUND, "NOT_FOUND", exc.message)


async def business_rule_handler(request: Request, exc: BusinessRuleError) -> JSONResponse:
    status_code = status.HTTP_403_FORBIDDEN if exc.code == BusinessRuleError.FORBIDDEN else status.HTTP_409_CONFLICT
    logger.warning("business_rule_rejected", code=exc.code, message=exc.message)
    return error_response(status_code, exc.code, exc.message)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(BusinessRuleError, business_rule_handler)
