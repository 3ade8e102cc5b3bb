"""
RFC 7807 Problem Details exception handling.

Every error leaving the API is an ``application/problem+json`` document
carrying a machine-readable ``code`` and the request's trace ID. Segment rule
errors are part of the same hierarchy so that a bad condition submitted to
``/segments/preview`` and a missing segment look alike to clients.

See: https://datatracker.ietf.org/doc/html/rfc7807
"""

from typing import Optional, Dict, Any, List
from enum import Enum
from pydantic import BaseModel
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import uuid
from datetime import datetime, timezone

from app.middleware.correlation import get_request_id

logger = logging.getLogger(__name__)

PROBLEM_BASE_URI = "https://api.minicrm.dev/problems"

STATUS_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    422: "Validation Error",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in problem documents."""

    UNAUTHORIZED = "AUTH_001"
    FORBIDDEN = "AUTH_002"

    VALIDATION_ERROR = "VAL_001"

    # Segment rules
    UNSUPPORTED_FIELD = "RULE_001"
    UNSUPPORTED_OPERATOR = "RULE_002"
    INVALID_VALUE = "RULE_003"
    INVALID_FIELD_TYPE = "RULE_004"

    NOT_FOUND = "RES_001"
    CONFLICT = "RES_003"

    EXTERNAL_SERVICE_ERROR = "EXT_001"

    INTERNAL_ERROR = "SRV_001"
    SERVICE_UNAVAILABLE = "SRV_002"


# Fallback codes for plain HTTPExceptions raised by FastAPI/Starlette
STATUS_CODES = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.UNAUTHORIZED,
    403: ErrorCode.FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.VALIDATION_ERROR,
    409: ErrorCode.CONFLICT,
    422: ErrorCode.VALIDATION_ERROR,
    502: ErrorCode.EXTERNAL_SERVICE_ERROR,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


def _trace_id() -> str:
    request_id = get_request_id()
    if request_id and request_id != "unknown":
        return request_id
    return str(uuid.uuid4())[:12]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ProblemDetail(BaseModel):
    """RFC 7807 body, extended with ``code``, ``timestamp``, ``trace_id`` and field ``errors``."""

    type: str = "about:blank"
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    code: str
    timestamp: str
    trace_id: str
    errors: Optional[List[Dict[str, Any]]] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": f"{PROBLEM_BASE_URI}/rule-001",
                "title": "Bad Request",
                "status": 400,
                "detail": "Unsupported field: loyaltyTier",
                "instance": "/api/v2/segments/preview",
                "code": "RULE_001",
                "timestamp": "2026-01-29T10:30:00Z",
                "trace_id": "abc123def456",
                "errors": [{"field": "loyaltyTier"}],
            }
        }
    }

    @classmethod
    def build(
        cls,
        status: int,
        code: ErrorCode,
        detail: str,
        instance: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        title: Optional[str] = None,
        trace_id: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> "ProblemDetail":
        return cls(
            type=f"{PROBLEM_BASE_URI}/{code.value.lower().replace('_', '-')}",
            title=title or STATUS_TITLES.get(status, "Error"),
            status=status,
            detail=detail,
            instance=instance,
            code=code.value,
            timestamp=timestamp or _utc_timestamp(),
            trace_id=trace_id or _trace_id(),
            errors=errors,
        )


class CRMException(HTTPException):
    """
    Base exception rendered as a problem document.

    Usage:
        raise CRMException(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail="Segment not found",
        )
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        title: Optional[str] = None,
        instance: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.title = title or STATUS_TITLES.get(status_code, "Error")
        self.instance = instance
        self.errors = errors
        self.trace_id = _trace_id()
        self.timestamp = _utc_timestamp()
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    def __str__(self) -> str:
        return self.detail

    def to_problem_detail(self, instance: Optional[str] = None) -> ProblemDetail:
        return ProblemDetail.build(
            status=self.status_code,
            code=self.code,
            detail=self.detail,
            instance=self.instance or instance,
            errors=self.errors,
            title=self.title,
            trace_id=self.trace_id,
            timestamp=self.timestamp,
        )


class NotFoundError(CRMException):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: Any):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail=f"{resource} with ID {resource_id} was not found",
        )


class ValidationError(CRMException):
    """Request is well-formed JSON but semantically invalid (422)."""

    def __init__(self, detail: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            status_code=422,
            code=ErrorCode.VALIDATION_ERROR,
            detail=detail,
            errors=errors,
        )


class UnauthorizedError(CRMException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=401,
            code=ErrorCode.UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(CRMException):
    def __init__(self, detail: str = "Permission denied"):
        super().__init__(status_code=403, code=ErrorCode.FORBIDDEN, detail=detail)


class ConflictError(CRMException):
    def __init__(self, detail: str):
        super().__init__(status_code=409, code=ErrorCode.CONFLICT, detail=detail)


class ExternalServiceError(CRMException):
    """An upstream dependency failed or returned garbage (502)."""

    def __init__(self, service: str, detail: str):
        self.service = service
        super().__init__(
            status_code=502,
            code=ErrorCode.EXTERNAL_SERVICE_ERROR,
            detail=f"{service} service error: {detail}",
        )


# Segment rule errors
#
# Raised while a rule tree is compiled, before any customer is scanned.

class RuleError(CRMException):
    """Base class for an invalid segment rule condition (400)."""

    code_for_rule: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(
        self,
        detail: str,
        field: Optional[str] = None,
        operator: Optional[str] = None,
    ):
        self.field = field
        self.operator = operator
        location = {k: v for k, v in (("field", field), ("operator", operator)) if v is not None}
        super().__init__(
            status_code=400,
            code=self.code_for_rule,
            detail=detail,
            errors=[location] if location else None,
        )


class UnsupportedFieldError(RuleError):
    """The condition names a field outside the field registry."""

    code_for_rule = ErrorCode.UNSUPPORTED_FIELD

    def __init__(self, field: Any):
        super().__init__(f"Unsupported field: {field}", field=str(field))


class UnsupportedOperatorError(RuleError):
    """The operator is not known for any field type."""

    code_for_rule = ErrorCode.UNSUPPORTED_OPERATOR

    def __init__(self, field: str, operator: Any):
        super().__init__(
            f"Unsupported operator '{operator}' for field '{field}'",
            field=field,
            operator=str(operator),
        )


class InvalidFieldTypeError(RuleError):
    """The operator belongs to a different field type than the field."""

    code_for_rule = ErrorCode.INVALID_FIELD_TYPE

    def __init__(self, field: str, operator: str, field_type: str):
        self.field_type = field_type
        super().__init__(
            f"Operator '{operator}' cannot be applied to {field_type} field '{field}'",
            field=field,
            operator=operator,
        )


class InvalidValueError(RuleError):
    """The condition value cannot be coerced for its field and operator."""

    code_for_rule = ErrorCode.INVALID_VALUE

    def __init__(self, field: str, operator: str, reason: str):
        super().__init__(
            f"Invalid value for '{field} {operator}': {reason}",
            field=field,
            operator=operator,
        )


# Exception handlers for FastAPI

def _problem_response(
    problem: ProblemDetail,
    request: Request,
    allowed_origins: Optional[List[str]],
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    response = JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers,
    )
    # Handlers run outside CORSMiddleware for unhandled errors
    origin = request.headers.get("origin", "")
    if allowed_origins and origin in allowed_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Vary"] = "Origin"
    return response


def create_exception_handlers(allowed_origins: List[str]):
    """
    Build the exception handlers registered in main.py.

    Returns a dict keyed ``crm``, ``http``, ``validation`` and ``generic``.
    """

    async def handle_crm_exception(request: Request, exc: CRMException) -> JSONResponse:
        logger.warning(
            "%s %s: %s", exc.code.value, request.url.path, exc.detail,
            extra={"trace_id": exc.trace_id, "status_code": exc.status_code},
        )
        problem = exc.to_problem_detail(instance=str(request.url.path))
        return _problem_response(problem, request, allowed_origins, exc.headers)

    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        problem = ProblemDetail.build(
            status=exc.status_code,
            code=STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
            detail=str(exc.detail),
            instance=str(request.url.path),
        )
        return _problem_response(problem, request, allowed_origins, getattr(exc, "headers", None))

    async def handle_validation_exception(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        problem = ProblemDetail.build(
            status=422,
            code=ErrorCode.VALIDATION_ERROR,
            detail="Request validation failed",
            instance=str(request.url.path),
            errors=errors,
        )
        return _problem_response(problem, request, allowed_origins)

    async def handle_generic_exception(request: Request, exc: Exception) -> JSONResponse:
        trace_id = _trace_id()
        logger.exception(
            "Unhandled exception on %s", request.url.path, extra={"trace_id": trace_id}
        )

        from app.config import settings
        detail = str(exc) if settings.DEBUG else "An unexpected error occurred"

        problem = ProblemDetail.build(
            status=500,
            code=ErrorCode.INTERNAL_ERROR,
            detail=detail,
            instance=str(request.url.path),
            trace_id=trace_id,
        )
        return _problem_response(problem, request, allowed_origins)

    return {
        "crm": handle_crm_exception,
        "http": handle_http_exception,
        "validation": handle_validation_exception,
        "generic": handle_generic_exception,
    }
